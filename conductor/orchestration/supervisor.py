"""Process-wide bookkeeping for conversations and modules.

Writes for one conversation are serialized by a per-conversation lock; the
shared index lock is only held to look up or create an entry, so different
conversations never wait on each other's updates.
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable
from uuid import UUID

from ..core.config import Settings, SupervisorSettings, get_settings
from ..core.logging import get_logger
from ..core.metrics import set_supervisor_conversations
from .enums import Strategy, Verdict
from .exceptions import SupervisorWriteFailure
from .state import ExecutionPlan, QualityEvaluation

logger = get_logger(name=__name__)


@dataclass(frozen=True, slots=True)
class ModulePerformance:
    module_id: str
    count: int
    mean: float
    minimum: float
    maximum: float


@dataclass(frozen=True, slots=True)
class ConversationState:
    conversation_id: str
    created_at: datetime
    updated_at: datetime
    plan_count: int
    evaluation_count: int
    last_strategy: Strategy | None
    module_scores: tuple[tuple[str, float], ...]
    recent_verdicts: tuple[Verdict, ...]

    def scores_for(self, module_id: str) -> list[float]:
        return [score for owner, score in self.module_scores if owner == module_id]


@dataclass(slots=True)
class _ModuleStats:
    count: int = 0
    mean: float = 0.0
    minimum: float = float("inf")
    maximum: float = float("-inf")

    def add(self, rating: float) -> None:
        self.count += 1
        self.mean += (rating - self.mean) / self.count
        self.minimum = min(self.minimum, rating)
        self.maximum = max(self.maximum, rating)


@dataclass(slots=True)
class _ConversationRecord:
    conversation_id: str
    retention: int
    touched: float
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    plan_count: int = 0
    evaluation_count: int = 0
    last_strategy: Strategy | None = None
    last_evaluation_id: UUID | None = None
    module_scores: deque[tuple[str, float]] = field(init=False)
    recent_verdicts: deque[Verdict] = field(init=False)

    def __post_init__(self) -> None:
        self.module_scores = deque(maxlen=self.retention)
        self.recent_verdicts = deque(maxlen=self.retention)

    def snapshot(self) -> ConversationState:
        return ConversationState(
            conversation_id=self.conversation_id,
            created_at=self.created_at,
            updated_at=self.updated_at,
            plan_count=self.plan_count,
            evaluation_count=self.evaluation_count,
            last_strategy=self.last_strategy,
            module_scores=tuple(self.module_scores),
            recent_verdicts=tuple(self.recent_verdicts),
        )


class Supervisor:
    def __init__(
        self,
        *,
        settings: SupervisorSettings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings or SupervisorSettings()
        self._clock = clock
        self._index_lock = threading.Lock()
        self._records: OrderedDict[str, _ConversationRecord] = OrderedDict()
        self._locks: dict[str, threading.Lock] = {}
        self._modules_lock = threading.Lock()
        self._modules: dict[str, _ModuleStats] = {}

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "Supervisor":
        settings = settings or get_settings()
        return cls(settings=settings.supervisor)

    def record_plan(self, conversation_id: str, plan: ExecutionPlan) -> None:
        try:
            lock, record = self._acquire(conversation_id)
            with lock:
                record.plan_count += 1
                record.last_strategy = plan.strategy
                record.updated_at = datetime.now(timezone.utc)
        except SupervisorWriteFailure:
            raise
        except Exception as exc:
            raise SupervisorWriteFailure(f"record_plan failed for {conversation_id}") from exc

    def record_evaluation(self, conversation_id: str, module_id: str, evaluation: QualityEvaluation) -> None:
        """Attribute ``evaluation`` to ``module_id`` within the conversation.

        The same evaluation may be reported once per participating module; its
        verdict is only appended to the conversation history the first time.
        """
        try:
            lock, record = self._acquire(conversation_id)
            with lock:
                if record.last_evaluation_id != evaluation.evaluation_id:
                    record.last_evaluation_id = evaluation.evaluation_id
                    record.evaluation_count += 1
                    record.recent_verdicts.append(evaluation.verdict)
                if not evaluation.skipped:
                    record.module_scores.append((module_id, evaluation.final_rating))
                record.updated_at = datetime.now(timezone.utc)
            if not evaluation.skipped:
                with self._modules_lock:
                    self._modules.setdefault(module_id, _ModuleStats()).add(evaluation.final_rating)
        except SupervisorWriteFailure:
            raise
        except Exception as exc:
            raise SupervisorWriteFailure(f"record_evaluation failed for {conversation_id}") from exc

    def get_conversation_state(self, conversation_id: str) -> ConversationState | None:
        with self._index_lock:
            record = self._records.get(conversation_id)
            lock = self._locks.get(conversation_id)
        if record is None or lock is None:
            return None
        with lock:
            return record.snapshot()

    def module_performance(self, module_id: str) -> ModulePerformance | None:
        with self._modules_lock:
            stats = self._modules.get(module_id)
            if stats is None:
                return None
            return ModulePerformance(module_id, stats.count, stats.mean, stats.minimum, stats.maximum)

    def all_module_performance(self) -> list[ModulePerformance]:
        with self._modules_lock:
            return [
                ModulePerformance(module_id, stats.count, stats.mean, stats.minimum, stats.maximum)
                for module_id, stats in sorted(self._modules.items())
            ]

    def cleanup(self, max_age_seconds: float | None = None) -> int:
        """Evict conversations idle for longer than ``max_age_seconds`` (default: TTL)."""
        max_age = self._settings.conversation_ttl_seconds if max_age_seconds is None else max_age_seconds
        with self._index_lock:
            removed = self._evict_idle_locked(self._clock(), max_age)
            set_supervisor_conversations(len(self._records))
        if removed:
            logger.info("supervisor_cleanup", removed=removed)
        return removed

    def __len__(self) -> int:
        with self._index_lock:
            return len(self._records)

    def _acquire(self, conversation_id: str) -> tuple[threading.Lock, _ConversationRecord]:
        if not conversation_id:
            raise SupervisorWriteFailure("conversation_id must not be empty")
        now = self._clock()
        with self._index_lock:
            self._evict_idle_locked(now, self._settings.conversation_ttl_seconds)
            record = self._records.get(conversation_id)
            if record is None:
                record = _ConversationRecord(
                    conversation_id=conversation_id,
                    retention=self._settings.retention,
                    touched=now,
                )
                self._records[conversation_id] = record
                self._locks[conversation_id] = threading.Lock()
                while len(self._records) > self._settings.max_conversations:
                    evicted, _ = self._records.popitem(last=False)
                    self._locks.pop(evicted, None)
                    logger.debug("supervisor_evicted", conversation_id=evicted, reason="lru")
            else:
                record.touched = now
                self._records.move_to_end(conversation_id)
            set_supervisor_conversations(len(self._records))
            return self._locks[conversation_id], record

    def _evict_idle_locked(self, now: float, max_age: float) -> int:
        removed = 0
        # Entries are kept in access order, so the idle ones sit at the front.
        while self._records:
            conversation_id, record = next(iter(self._records.items()))
            if now - record.touched <= max_age:
                break
            del self._records[conversation_id]
            self._locks.pop(conversation_id, None)
            removed += 1
        return removed


__all__ = ["ConversationState", "ModulePerformance", "Supervisor"]
