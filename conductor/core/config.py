from __future__ import annotations

from functools import lru_cache
from typing import Any, Literal, Mapping

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RetrievalSettings(BaseModel):
    tool_collection: str = Field("tools", min_length=1, description="Index collection holding tool descriptions.")
    module_collection: str = Field("modules", min_length=1, description="Index collection holding module descriptions.")
    short_query_chars: int = Field(40, ge=1, description="Queries shorter than this are treated as simple.")
    simple_top_k: int = Field(2, ge=1)
    complex_top_k: int = Field(5, ge=1)
    min_score: float = Field(0.3, ge=0.0, le=1.0, description="Minimum similarity for a candidate to be kept.")
    search_timeout_seconds: float = Field(2.0, gt=0.0, description="Per-search timeout before the list degrades to empty.")


class PlanningSettings(BaseModel):
    fast_recall_max: int = Field(3, ge=1, le=10, description="Upper bucket edge for FAST_RECALL on both axes.")
    balanced_max: int = Field(6, ge=1, le=10, description="Upper bucket edge for BALANCED on both axes.")
    complex_threshold: int = Field(7, ge=1, le=10)
    simple_tool_cap: int = Field(2, ge=0)
    moderate_tool_cap: int = Field(3, ge=0)
    complex_tool_cap: int = Field(5, ge=0)
    module_top_k: int = Field(4, ge=0, description="Number of retrieved specialists merged into the plan.")
    fast_path_max_chars: int = Field(40, ge=1)


class RatingWeights(BaseModel):
    clarity: float = Field(0.2, ge=0.0)
    relevance: float = Field(0.3, ge=0.0)
    helpfulness: float = Field(0.3, ge=0.0)
    consistency: float = Field(0.2, ge=0.0)
    code_validity: float = Field(0.1, ge=0.0)


class RefinementSettings(BaseModel):
    quality_threshold: float = Field(4.0, ge=0.0, le=5.0)
    max_iterations: int = Field(3, ge=1, description="Maximum evaluated drafts per request, including the first.")
    skip_complexity_max: int = Field(3, ge=0, le=10, description="Plans at or below this complexity skip evaluation.")
    deficiency_threshold: float = Field(0.6, ge=0.0, le=1.0)
    weights: RatingWeights = Field(default_factory=RatingWeights)  # type: ignore[arg-type]
    hallucination_penalty: float = Field(1.5, ge=0.0, description="Rating points removed at full hallucination risk.")
    inconsistency_penalty: float = Field(1.0, ge=0.0, description="Rating points removed at zero consistency.")
    policy_violation_penalty: float = Field(0.25, ge=0.0, le=1.0, description="Consistency lost per rejected tool used.")


class SupervisorSettings(BaseModel):
    retention: int = Field(20, ge=1, description="Evaluations kept per conversation.")
    max_conversations: int = Field(1_000, ge=1)
    conversation_ttl_seconds: float = Field(3_600.0, gt=0.0)


class OllamaSettings(BaseModel):
    host: str = Field("http://localhost", description="Base URL where Ollama is running.")
    port: int = Field(11434, ge=1, le=65535)
    model: str = Field("llama3", description="Default model served via Ollama.")
    temperature: float = Field(0.2, ge=0.0, le=1.0)


class LLMSettings(BaseModel):
    provider: Literal["ollama"] = "ollama"
    ollama: OllamaSettings = Field(default_factory=OllamaSettings)  # type: ignore[arg-type]
    timeout_seconds: float = Field(30.0, gt=0.0)
    max_retries: int = Field(1, ge=0)
    backoff_seconds: float = Field(0.5, ge=0.0)


class QdrantSettings(BaseModel):
    url: str = Field("http://localhost:6333", description="Qdrant host URL.")
    api_key: str | None = Field(default=None, description="Optional Qdrant API key.")


class StyleSettings(BaseModel):
    tone: Literal["neutral", "casual", "formal"] = "neutral"


class ObservabilitySettings(BaseModel):
    prometheus_enabled: bool = Field(True)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_format: Literal["json", "console"] = Field("json", description="Renderer for structured log lines.")


class PipelineSettings(BaseModel):
    deadline_seconds: float = Field(60.0, gt=0.0, description="Request-scoped deadline for one pipeline run.")


class Settings(BaseSettings):
    environment: Literal["local", "test", "production"] = Field("local")

    retrieval: RetrievalSettings = Field(default_factory=RetrievalSettings)  # type: ignore[arg-type]
    planning: PlanningSettings = Field(default_factory=PlanningSettings)  # type: ignore[arg-type]
    refinement: RefinementSettings = Field(default_factory=RefinementSettings)  # type: ignore[arg-type]
    supervisor: SupervisorSettings = Field(default_factory=SupervisorSettings)  # type: ignore[arg-type]
    llm: LLMSettings = Field(default_factory=LLMSettings)  # type: ignore[arg-type]
    qdrant: QdrantSettings = Field(default_factory=QdrantSettings)  # type: ignore[arg-type]
    style: StyleSettings = Field(default_factory=StyleSettings)  # type: ignore[arg-type]
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)  # type: ignore[arg-type]
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)  # type: ignore[arg-type]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )


@lru_cache(maxsize=1)
def _get_cached_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]


def get_settings(overrides: Mapping[str, Any] | None = None) -> Settings:
    """Return settings, using cached defaults unless overrides are provided."""
    if overrides:
        return Settings(**dict(overrides))
    return _get_cached_settings()
