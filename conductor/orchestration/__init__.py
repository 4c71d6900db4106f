"""
Orchestration Package

Request-scoped orchestration components:
- Rule-based planning into an immutable execution plan
- Tool policy enforcement
- Module capability registry and context assembly
- Bounded quality refinement loop
- Conversation and module supervision
- The end-to-end pipeline (``conductor.orchestration.pipeline``)
"""

from .enums import FocusArea, Intent, RefinementState, Strategy, Tone, Verdict
from .exceptions import (
    ConductorError,
    ModelInvocationError,
    PipelineCancelled,
    PlanningFallback,
    PolicyViolation,
    RequestDeadlineExceeded,
    RetrievalDegraded,
    SupervisorWriteFailure,
)
from .state import ExecutionPlan, QualityEvaluation, RetrievalState, ScoredCandidate

__all__ = [
    # Enums
    "FocusArea",
    "Intent",
    "RefinementState",
    "Strategy",
    "Tone",
    "Verdict",
    # Errors
    "ConductorError",
    "ModelInvocationError",
    "PipelineCancelled",
    "PlanningFallback",
    "PolicyViolation",
    "RequestDeadlineExceeded",
    "RetrievalDegraded",
    "SupervisorWriteFailure",
    # State
    "ExecutionPlan",
    "QualityEvaluation",
    "RetrievalState",
    "ScoredCandidate",
]
