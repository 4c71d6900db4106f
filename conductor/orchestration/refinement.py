"""Bounded draft -> evaluate -> revise loop.

States: DRAFTED -> EVALUATED -> ACCEPTED | REFINING -> EVALUATED ... | EXHAUSTED.
Low-complexity plans go DRAFTED -> SKIPPED without any evaluation or model call.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from ..core.config import RefinementSettings, Settings, get_settings
from ..core.logging import get_logger
from ..core.metrics import record_model_invocation, record_refinement, record_supervisor_write_failure
from ..services.llm import Completion, ConversationTurn, ModelInvoker
from ..services.scoring import QualityEvaluator, deficiency_notes
from .enums import RefinementState
from .exceptions import ModelInvocationError, PolicyViolation, SupervisorWriteFailure
from .state import ExecutionPlan, QualityEvaluation
from .supervisor import Supervisor
from .tool_policy import PolicyDirective, PolicyEnforcer

logger = get_logger(name=__name__)


@dataclass(slots=True)
class RefinementResult:
    answer: str
    evaluation: QualityEvaluation
    outcome: RefinementState
    rounds: int
    revision_calls: int
    tools_used: tuple[str, ...] = ()
    kept_ratings: list[float] = field(default_factory=list)
    transitions: list[RefinementState] = field(default_factory=list)


def build_revision_prompt(draft: str, query: str, notes: Sequence[str]) -> str:
    lines = ["Improve this response:", "", draft.strip(), "", f"Original query: {query.strip()}"]
    if notes:
        lines.append("")
        lines.append("Address these deficiencies:")
        lines.extend(f"- {note}" for note in notes)
    return "\n".join(lines)


class QualityRefiner:
    def __init__(
        self,
        *,
        invoker: ModelInvoker,
        evaluator: QualityEvaluator | None = None,
        supervisor: Supervisor | None = None,
        settings: RefinementSettings | None = None,
        enforcer: PolicyEnforcer | None = None,
    ) -> None:
        self._settings = settings or RefinementSettings()
        self._invoker = invoker
        self._evaluator = evaluator or QualityEvaluator.from_settings(self._settings)
        self._supervisor = supervisor
        self._enforcer = enforcer or PolicyEnforcer()

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        invoker: ModelInvoker,
        supervisor: Supervisor | None = None,
    ) -> "QualityRefiner":
        settings = settings or get_settings()
        return cls(
            invoker=invoker,
            evaluator=QualityEvaluator.from_settings(settings),
            supervisor=supervisor,
            settings=settings.refinement,
        )

    async def refine(
        self,
        draft: str | Completion,
        plan: ExecutionPlan,
        *,
        conversation_id: str | None = None,
        directive: PolicyDirective | None = None,
        system_directives: Sequence[str] = (),
        history: Sequence[ConversationTurn] = (),
    ) -> RefinementResult:
        current = draft if isinstance(draft, Completion) else Completion(text=draft)
        transitions = [RefinementState.DRAFTED]
        violations = self._audit(current, directive)

        if plan.complexity <= self._settings.skip_complexity_max:
            evaluation = QualityEvaluation.skipped_for(current.text)
            transitions.append(RefinementState.SKIPPED)
            logger.info("refinement_skipped", plan_id=str(plan.plan_id), complexity=plan.complexity)
            self._report(conversation_id, plan, evaluation)
            record_refinement(outcome=RefinementState.SKIPPED.value, rounds=0, rating=None)
            return RefinementResult(
                answer=current.text,
                evaluation=evaluation,
                outcome=RefinementState.SKIPPED,
                rounds=0,
                revision_calls=0,
                tools_used=current.tools_used,
                transitions=transitions,
            )

        threshold = self._settings.quality_threshold
        best = current
        best_evaluation = self._evaluate(current, plan, violations, conversation_id)
        transitions.append(RefinementState.EVALUATED)
        kept_ratings = [best_evaluation.final_rating]
        rounds = 1
        revision_calls = 0
        round_failed = False

        while best_evaluation.final_rating < threshold and rounds < self._settings.max_iterations:
            transitions.append(RefinementState.REFINING)
            notes = deficiency_notes(best_evaluation, threshold=self._settings.deficiency_threshold)
            prompt = build_revision_prompt(best.text, plan.query, notes)
            revision_calls += 1
            try:
                candidate = await self._invoker.complete(history, system_directives, prompt)
            except ModelInvocationError as exc:
                record_model_invocation(purpose="revision", outcome="failed")
                logger.warning("refinement_round_failed", plan_id=str(plan.plan_id), round=rounds + 1, error=str(exc))
                round_failed = True
                break
            record_model_invocation(purpose="revision", outcome="success")

            candidate_evaluation = self._evaluate(
                candidate, plan, self._audit(candidate, directive), conversation_id
            )
            transitions.append(RefinementState.EVALUATED)
            rounds += 1
            # Ties keep the later draft since it incorporated more feedback.
            if candidate_evaluation.final_rating >= best_evaluation.final_rating:
                best, best_evaluation = candidate, candidate_evaluation
                kept_ratings.append(best_evaluation.final_rating)

        if best_evaluation.final_rating >= threshold and not round_failed:
            outcome = RefinementState.ACCEPTED
        else:
            outcome = RefinementState.EXHAUSTED
            logger.info(
                "refinement_exhausted",
                plan_id=str(plan.plan_id),
                rounds=rounds,
                rating=best_evaluation.final_rating,
                threshold=threshold,
                round_failed=round_failed,
            )
        transitions.append(outcome)
        record_refinement(outcome=outcome.value, rounds=rounds, rating=best_evaluation.final_rating)
        return RefinementResult(
            answer=best.text,
            evaluation=best_evaluation,
            outcome=outcome,
            rounds=rounds,
            revision_calls=revision_calls,
            tools_used=best.tools_used,
            kept_ratings=kept_ratings,
            transitions=transitions,
        )

    def _audit(self, completion: Completion, directive: PolicyDirective | None) -> int:
        if directive is None:
            return 0
        try:
            self._enforcer.audit(directive, completion.tools_used)
        except PolicyViolation as exc:
            logger.warning("policy_violation", tools=list(exc.tools))
            return len(exc.tools)
        return 0

    def _evaluate(
        self,
        completion: Completion,
        plan: ExecutionPlan,
        violations: int,
        conversation_id: str | None,
    ) -> QualityEvaluation:
        evaluation = self._evaluator.evaluate(completion.text, plan.query, policy_violations=violations)
        logger.debug("draft_evaluated", plan_id=str(plan.plan_id), **evaluation.as_dict())
        self._report(conversation_id, plan, evaluation)
        return evaluation

    def _report(self, conversation_id: str | None, plan: ExecutionPlan, evaluation: QualityEvaluation) -> None:
        if self._supervisor is None or conversation_id is None:
            return
        for module_id in plan.selected_modules:
            try:
                self._supervisor.record_evaluation(conversation_id, module_id, evaluation)
            except SupervisorWriteFailure as exc:
                record_supervisor_write_failure(operation="record_evaluation")
                logger.warning(
                    "supervisor_write_failed",
                    operation="record_evaluation",
                    module=module_id,
                    error=str(exc),
                )


__all__ = ["QualityRefiner", "RefinementResult", "build_revision_prompt"]
