from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .enums import FocusArea, Intent, Strategy, Verdict


class ScoredCandidate(BaseModel):
    """A tool or module identifier returned by similarity search."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    score: float = Field(ge=0.0, le=1.0)


class RetrievalState(BaseModel):
    """Candidates retrieved for one request; read-only once created."""

    model_config = ConfigDict(frozen=True)

    raw_query: str
    suggested_tools: tuple[ScoredCandidate, ...] = ()
    suggested_modules: tuple[ScoredCandidate, ...] = ()
    tools_degraded: bool = False
    modules_degraded: bool = False

    @property
    def suggested_tool_ids(self) -> tuple[str, ...]:
        return tuple(candidate.id for candidate in self.suggested_tools)

    @property
    def suggested_module_ids(self) -> tuple[str, ...]:
        return tuple(candidate.id for candidate in self.suggested_modules)

    @property
    def degraded(self) -> bool:
        return self.tools_degraded or self.modules_degraded


class ExecutionPlan(BaseModel):
    """The single decision record for one request.

    Plans are frozen; stages that need more information derive new values
    instead of mutating the plan.
    """

    model_config = ConfigDict(frozen=True)

    plan_id: UUID = Field(default_factory=uuid4)
    query: str
    intent: Intent
    complexity: int = Field(ge=1, le=10)
    ambiguity: int = Field(ge=1, le=10)
    focus_area: FocusArea = FocusArea.GENERAL
    ignore_areas: frozenset[FocusArea] = frozenset()
    strategy: Strategy
    approved_tools: frozenset[str] = frozenset()
    selected_modules: tuple[str, ...] = ()
    confidence: float = Field(ge=0.0, le=1.0)
    fast_path: bool = False
    degraded: bool = False
    ruleset_version: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("selected_modules")
    @classmethod
    def _unique_modules(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        if len(set(value)) != len(value):
            raise ValueError("selected_modules must not contain duplicates")
        return value


class QualityEvaluation(BaseModel):
    """Scores for one evaluated draft. Sub-scores are in [0, 1], the rating in [0, 5]."""

    model_config = ConfigDict(frozen=True)

    evaluation_id: UUID = Field(default_factory=uuid4)
    clarity: float = Field(ge=0.0, le=1.0)
    relevance: float = Field(ge=0.0, le=1.0)
    helpfulness: float = Field(ge=0.0, le=1.0)
    consistency: float = Field(ge=0.0, le=1.0)
    hallucination_risk: float = Field(ge=0.0, le=1.0)
    code_validity: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    token_count: int = Field(ge=0)
    final_rating: float = Field(ge=0.0, le=5.0)
    verdict: Verdict
    issues: tuple[str, ...] = ()
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def skipped(self) -> bool:
        return self.verdict is Verdict.SKIPPED

    @classmethod
    def skipped_for(cls, text: str) -> "QualityEvaluation":
        """Synthetic evaluation for drafts that bypass scoring."""
        return cls(
            clarity=0.0,
            relevance=0.0,
            helpfulness=0.0,
            consistency=1.0,
            hallucination_risk=0.0,
            token_count=len(text.split()),
            final_rating=0.0,
            verdict=Verdict.SKIPPED,
            issues=("evaluation skipped for low-complexity request",),
        )

    def as_dict(self) -> dict[str, float | int | str | None]:
        return {
            "clarity": round(self.clarity, 3),
            "relevance": round(self.relevance, 3),
            "helpfulness": round(self.helpfulness, 3),
            "consistency": round(self.consistency, 3),
            "hallucination_risk": round(self.hallucination_risk, 3),
            "code_validity": None if self.code_validity is None else round(self.code_validity, 3),
            "token_count": self.token_count,
            "final_rating": round(self.final_rating, 3),
            "verdict": self.verdict.value,
        }


__all__ = ["ScoredCandidate", "RetrievalState", "ExecutionPlan", "QualityEvaluation"]
