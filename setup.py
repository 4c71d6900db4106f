"""Setup script for the conductor-core package."""

from setuptools import setup, find_packages

setup(
    name="conductor-core",
    version="0.1.0",
    packages=find_packages(exclude=("tests", "tests.*")),
    python_requires=">=3.10",
    install_requires=[
        "pydantic>=2.5",
        "pydantic-settings>=2.1",
        "structlog>=23.2",
        "prometheus-client>=0.19",
        "qdrant-client>=1.10",
        "langchain-core>=0.2",
        "langchain-ollama>=0.1",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
            "pytest-asyncio>=0.23",
            "hypothesis>=6.90",
        ],
    },
    description="Conductor - request orchestration core for multi-stage assistant pipelines",
    author="Conductor Team",
)
