"""Per-request pipeline.

Retriever -> Planner -> ContextAssembler -> PolicyEnforcer -> ModelInvoker
-> QualityRefiner -> StyleFormatter. Each stage receives its predecessor's
output explicitly; the plan is never stored outside the call chain.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Sequence

from ..core.config import Settings, get_settings
from ..core.logging import configure_logging, get_logger, request_context
from ..core.metrics import (
    mark_pipeline_completed,
    mark_pipeline_started,
    record_model_invocation,
    record_supervisor_write_failure,
)
from ..services.llm import ConversationTurn, ModelInvoker
from ..services.retrieval import Retriever
from ..services.semantic_index import SemanticIndex
from ..services.style import StyleFormatter
from .context import ContextAssembler
from .enums import RefinementState
from .exceptions import ModelInvocationError, PipelineCancelled, RequestDeadlineExceeded, SupervisorWriteFailure
from .planner import ConductorPlanner
from .refinement import QualityRefiner
from .registry import ModuleRegistry, default_registry
from .state import ExecutionPlan, QualityEvaluation
from .supervisor import ConversationState, Supervisor
from .tool_policy import PolicyEnforcer

logger = get_logger(name=__name__)


@dataclass(slots=True)
class PipelineResult:
    final_answer: str
    used_tools: list[str]
    used_modules: list[str]
    plan: ExecutionPlan
    evaluation: QualityEvaluation
    outcome: RefinementState
    directives: list[str] = field(default_factory=list)


class ConductorPipeline:
    def __init__(
        self,
        *,
        retriever: Retriever,
        planner: ConductorPlanner,
        invoker: ModelInvoker,
        refiner: QualityRefiner,
        assembler: ContextAssembler | None = None,
        enforcer: PolicyEnforcer | None = None,
        formatter: StyleFormatter | None = None,
        supervisor: Supervisor | None = None,
        deadline_seconds: float = 60.0,
    ) -> None:
        self._retriever = retriever
        self._planner = planner
        self._invoker = invoker
        self._refiner = refiner
        self._assembler = assembler or ContextAssembler(registry=planner.registry)
        self._enforcer = enforcer or PolicyEnforcer()
        self._formatter = formatter or StyleFormatter()
        self._supervisor = supervisor
        self._deadline_seconds = deadline_seconds

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        index: SemanticIndex,
        invoker: ModelInvoker,
        supervisor: Supervisor | None = None,
        registry: ModuleRegistry | None = None,
    ) -> "ConductorPipeline":
        settings = settings or get_settings()
        configure_logging(settings.observability.log_level, log_format=settings.observability.log_format)
        registry = registry or default_registry()
        supervisor = supervisor or Supervisor.from_settings(settings)
        return cls(
            retriever=Retriever.from_settings(settings, index=index),
            planner=ConductorPlanner.from_settings(settings, registry=registry),
            invoker=invoker,
            refiner=QualityRefiner.from_settings(settings, invoker=invoker, supervisor=supervisor),
            assembler=ContextAssembler(registry=registry),
            formatter=StyleFormatter.from_settings(settings),
            supervisor=supervisor,
            deadline_seconds=settings.pipeline.deadline_seconds,
        )

    async def run(
        self,
        conversation_id: str,
        raw_query: str,
        *,
        history: Sequence[ConversationTurn] = (),
        deadline_seconds: float | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> PipelineResult:
        """Answer one query within the request deadline.

        Raises :class:`ModelInvocationError` when the initial draft fails,
        :class:`RequestDeadlineExceeded` when the deadline passes and
        :class:`PipelineCancelled` when ``cancel_event`` is set first. In-flight
        stages are cancelled in both cases; no partial result is returned.
        """
        deadline = deadline_seconds if deadline_seconds is not None else self._deadline_seconds
        mark_pipeline_started()
        started = time.perf_counter()
        status = "failed"
        strategy = "unknown"
        try:
            with request_context(conversation_id=conversation_id):
                result = await self._run_with_deadline(conversation_id, raw_query, history, deadline, cancel_event)
        except RequestDeadlineExceeded:
            status = "deadline_exceeded"
            logger.warning("pipeline_deadline_exceeded", conversation_id=conversation_id, deadline=deadline)
            raise
        except PipelineCancelled:
            status = "cancelled"
            logger.info("pipeline_cancelled", conversation_id=conversation_id)
            raise
        except asyncio.CancelledError:
            status = "cancelled"
            raise
        except ModelInvocationError:
            logger.error("pipeline_failed", conversation_id=conversation_id, reason="initial draft failed")
            raise
        else:
            status = "completed"
            strategy = result.plan.strategy.value
            return result
        finally:
            mark_pipeline_completed(status=status, strategy=strategy, latency=time.perf_counter() - started)

    async def _run_with_deadline(
        self,
        conversation_id: str,
        raw_query: str,
        history: Sequence[ConversationTurn],
        deadline: float,
        cancel_event: asyncio.Event | None,
    ) -> PipelineResult:
        execution = asyncio.ensure_future(self._execute(conversation_id, raw_query, history))
        cancel_waiter = asyncio.ensure_future(cancel_event.wait()) if cancel_event is not None else None
        waiters = {execution} if cancel_waiter is None else {execution, cancel_waiter}
        try:
            done, _ = await asyncio.wait(waiters, timeout=deadline, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            execution.cancel()
            raise
        finally:
            if cancel_waiter is not None:
                cancel_waiter.cancel()

        if execution in done:
            return execution.result()

        execution.cancel()
        await asyncio.gather(execution, return_exceptions=True)
        if cancel_waiter is not None and cancel_waiter in done:
            raise PipelineCancelled(f"Request for conversation '{conversation_id}' was cancelled")
        raise RequestDeadlineExceeded(f"Request for conversation '{conversation_id}' exceeded {deadline}s")

    async def _execute(
        self,
        conversation_id: str,
        raw_query: str,
        history: Sequence[ConversationTurn],
    ) -> PipelineResult:
        retrieval = await self._retriever.retrieve(raw_query)
        snapshot = self._conversation_state(conversation_id)
        plan = self._planner.plan(raw_query, retrieval, snapshot)
        self._record_plan(conversation_id, plan)

        context = self._assembler.assemble(plan)
        directive = self._enforcer.enforce(plan, retrieval)
        directives = [directive.render(), context.render()]

        try:
            draft = await self._invoker.complete(history, directives, raw_query)
        except ModelInvocationError:
            record_model_invocation(purpose="draft", outcome="failed")
            raise
        record_model_invocation(purpose="draft", outcome="success")

        refinement = await self._refiner.refine(
            draft,
            plan,
            conversation_id=conversation_id,
            directive=directive,
            system_directives=directives,
            history=history,
        )
        final_answer = self._formatter.format(refinement.answer)
        logger.info(
            "pipeline_completed",
            conversation_id=conversation_id,
            plan_id=str(plan.plan_id),
            strategy=plan.strategy.value,
            outcome=refinement.outcome.value,
            rating=refinement.evaluation.final_rating,
            rounds=refinement.rounds,
        )
        return PipelineResult(
            final_answer=final_answer,
            used_tools=list(refinement.tools_used),
            used_modules=list(plan.selected_modules),
            plan=plan,
            evaluation=refinement.evaluation,
            outcome=refinement.outcome,
            directives=directives,
        )

    def _conversation_state(self, conversation_id: str) -> ConversationState | None:
        if self._supervisor is None:
            return None
        return self._supervisor.get_conversation_state(conversation_id)

    def _record_plan(self, conversation_id: str, plan: ExecutionPlan) -> None:
        if self._supervisor is None:
            return
        try:
            self._supervisor.record_plan(conversation_id, plan)
        except SupervisorWriteFailure as exc:
            record_supervisor_write_failure(operation="record_plan")
            logger.warning("supervisor_write_failed", operation="record_plan", error=str(exc))


__all__ = ["ConductorPipeline", "PipelineResult"]
