"""Request orchestration core: retrieval, planning, tool policy and answer refinement."""

__version__ = "0.1.0"
