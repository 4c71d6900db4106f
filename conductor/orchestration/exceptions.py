from __future__ import annotations

from typing import Iterable


class ConductorError(RuntimeError):
    """Base class for orchestration failures."""


class RetrievalDegraded(ConductorError):
    """Raised when a similarity search fails or times out; recovered as an empty list."""

    def __init__(self, collection: str, reason: str) -> None:
        super().__init__(f"Retrieval from '{collection}' degraded: {reason}")
        self.collection = collection
        self.reason = reason


class PlanningFallback(ConductorError):
    """Raised when intent classification falls back to the static keyword table."""


class ModelInvocationError(ConductorError):
    """Raised when the model provider fails, times out, or returns empty text."""


class PolicyViolation(ConductorError):
    """Raised when the model reports using tools the policy directive rejected."""

    def __init__(self, tools: Iterable[str]) -> None:
        self.tools = tuple(sorted(tools))
        super().__init__(f"Model used rejected tools: {', '.join(self.tools)}")


class SupervisorWriteFailure(ConductorError):
    """Raised when conversation or module bookkeeping cannot be updated."""


class PipelineCancelled(ConductorError):
    """Raised when a pipeline run is cancelled before producing an answer."""


class RequestDeadlineExceeded(PipelineCancelled):
    """Raised when a pipeline run exceeds its request deadline."""


__all__ = [
    "ConductorError",
    "RetrievalDegraded",
    "PlanningFallback",
    "ModelInvocationError",
    "PolicyViolation",
    "SupervisorWriteFailure",
    "PipelineCancelled",
    "RequestDeadlineExceeded",
]
