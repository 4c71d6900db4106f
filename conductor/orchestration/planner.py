from __future__ import annotations

from typing import TYPE_CHECKING, Iterable

from ..core.config import PlanningSettings, Settings, get_settings
from ..core.logging import get_logger
from ..core.metrics import record_plan
from ..tools.catalog import fallback_tools_for, normalize_tool_name, tool_category
from .enums import FocusArea, Intent, Strategy
from .exceptions import PlanningFallback
from .registry import FAST_PATH_MODULES, ModuleRegistry, default_registry
from .rules import (
    FALLBACK_CONFIDENCE,
    RULESET_VERSION,
    STRONG_CONFIDENCE,
    FastPathMatch,
    IntentMatch,
    classify_intent,
    derive_strategy,
    detect_focus_area,
    detect_ignore_areas,
    match_fast_path,
    score_ambiguity,
    score_complexity,
)
from .state import ExecutionPlan, RetrievalState, ScoredCandidate
from .tool_policy import get_intent_tool_policy

if TYPE_CHECKING:
    from .supervisor import ConversationState

logger = get_logger(name=__name__)

_DEGRADED_CONFIDENCE_DROP = 0.1
_DEFAULT_SCORE = 5


def _ranked(candidates: Iterable[ScoredCandidate]) -> list[ScoredCandidate]:
    return sorted(candidates, key=lambda candidate: (-candidate.score, candidate.id))


class ConductorPlanner:
    """Builds the single execution plan for a request.

    Planning is a pure function of the query and the retrieval result; it never
    raises. Empty or degraded retrieval switches tool approval to the static
    keyword table and is logged as degraded mode.
    """

    def __init__(
        self,
        *,
        settings: PlanningSettings | None = None,
        registry: ModuleRegistry | None = None,
    ) -> None:
        self._settings = settings or PlanningSettings()
        self._registry = registry or default_registry()

    @classmethod
    def from_settings(cls, settings: Settings | None = None, *, registry: ModuleRegistry | None = None) -> "ConductorPlanner":
        settings = settings or get_settings()
        return cls(settings=settings.planning, registry=registry)

    @property
    def registry(self) -> ModuleRegistry:
        return self._registry

    def plan(
        self,
        query: str,
        retrieval: RetrievalState,
        history: "ConversationState | None" = None,
    ) -> ExecutionPlan:
        text = query.strip()
        if not text:
            return self._default_plan(query)

        fast = match_fast_path(text, max_chars=self._settings.fast_path_max_chars)
        if fast is not None:
            return self._fast_plan(query, fast)

        complexity = score_complexity(text)
        ambiguity = score_ambiguity(text)
        ignore_areas = detect_ignore_areas(text)
        focus_area = detect_focus_area(text, ignore_areas)

        try:
            match = self._classify(text)
        except PlanningFallback as exc:
            match = self._fallback_intent(text)
            logger.info("planner_intent_fallback", reason=str(exc), intent=match.intent.value)

        approved, degraded = self._approve_tools(text, match.intent, complexity, retrieval)
        confidence = match.confidence
        if degraded or retrieval.degraded:
            confidence = max(0.0, confidence - _DEGRADED_CONFIDENCE_DROP)

        plan = ExecutionPlan(
            query=query,
            intent=match.intent,
            complexity=complexity,
            ambiguity=ambiguity,
            focus_area=focus_area,
            ignore_areas=ignore_areas,
            strategy=self._strategy(complexity, ambiguity),
            approved_tools=frozenset(approved),
            selected_modules=self._select_modules(retrieval, ignore_areas),
            confidence=round(confidence, 4),
            degraded=degraded,
            ruleset_version=RULESET_VERSION,
        )
        self._log_plan(plan, mode="degraded" if degraded else "full", history=history)
        return plan

    def tool_cap(self, complexity: int) -> int:
        if complexity >= self._settings.complex_threshold:
            return self._settings.complex_tool_cap
        if complexity <= self._settings.fast_recall_max:
            return self._settings.simple_tool_cap
        return self._settings.moderate_tool_cap

    def _strategy(self, complexity: int, ambiguity: int) -> Strategy:
        return derive_strategy(
            complexity,
            ambiguity,
            fast_recall_max=self._settings.fast_recall_max,
            balanced_max=self._settings.balanced_max,
        )

    def _classify(self, text: str) -> IntentMatch:
        match = classify_intent(text)
        if not match.matched:
            raise PlanningFallback("no intent rule matched")
        return match

    def _fallback_intent(self, text: str) -> IntentMatch:
        categories = {tool_category(tool) for tool in fallback_tools_for(text)}
        intent = Intent.CALCULATION if "math" in categories else Intent.GENERAL
        return IntentMatch(intent, FALLBACK_CONFIDENCE, False)

    def _approve_tools(
        self,
        text: str,
        intent: Intent,
        complexity: int,
        retrieval: RetrievalState,
    ) -> tuple[list[str], bool]:
        cap = self.tool_cap(complexity)
        policy = get_intent_tool_policy(intent)

        # Approve the retrieved ids as given; normalized names only dedupe.
        suggested: list[str] = []
        seen: set[str] = set()
        for candidate in _ranked(retrieval.suggested_tools):
            key = normalize_tool_name(candidate.id)
            if key not in seen:
                seen.add(key)
                suggested.append(candidate.id)

        if suggested:
            allowed, removed = policy.filter_tools(suggested)
            if removed:
                logger.debug("planner_tools_filtered", intent=intent.value, removed=removed)
            return allowed[:cap], False

        fallback = fallback_tools_for(text)[:cap]
        logger.warning(
            "planner_degraded_mode",
            reason="tool search degraded" if retrieval.tools_degraded else "no tool suggestions",
            intent=intent.value,
            fallback_tools=fallback,
        )
        return fallback, True

    def _select_modules(self, retrieval: RetrievalState, ignore_areas: frozenset[FocusArea]) -> tuple[str, ...]:
        specialists: list[str] = []
        for candidate in _ranked(retrieval.suggested_modules):
            if len(specialists) >= self._settings.module_top_k:
                break
            module = self._registry.get(candidate.id)
            if module is None:
                logger.debug("planner_unknown_module", module=candidate.id)
                continue
            if module.core or module.module_id in specialists:
                continue
            if module.focus_tags & ignore_areas:
                continue
            specialists.append(module.module_id)
        return self._registry.ordered([*self._registry.core_ids(), *specialists])

    def _fast_plan(self, query: str, fast: FastPathMatch) -> ExecutionPlan:
        plan = ExecutionPlan(
            query=query,
            intent=fast.intent,
            complexity=1,
            ambiguity=1,
            strategy=self._strategy(1, 1),
            approved_tools=frozenset({fast.tool}),
            selected_modules=self._registry.ordered(FAST_PATH_MODULES),
            confidence=STRONG_CONFIDENCE,
            fast_path=True,
            ruleset_version=RULESET_VERSION,
        )
        self._log_plan(plan, mode="fast_path")
        return plan

    def _default_plan(self, query: str) -> ExecutionPlan:
        plan = ExecutionPlan(
            query=query,
            intent=Intent.GENERAL,
            complexity=_DEFAULT_SCORE,
            ambiguity=_DEFAULT_SCORE,
            strategy=self._strategy(_DEFAULT_SCORE, _DEFAULT_SCORE),
            selected_modules=self._registry.core_ids(),
            confidence=FALLBACK_CONFIDENCE,
            ruleset_version=RULESET_VERSION,
        )
        self._log_plan(plan, mode="default")
        return plan

    def _log_plan(self, plan: ExecutionPlan, *, mode: str, history: "ConversationState | None" = None) -> None:
        record_plan(
            strategy=plan.strategy.value,
            intent=plan.intent.value,
            mode=mode,
            approved_tools=len(plan.approved_tools),
        )
        logger.info(
            "plan_created",
            plan_id=str(plan.plan_id),
            mode=mode,
            intent=plan.intent.value,
            strategy=plan.strategy.value,
            complexity=plan.complexity,
            ambiguity=plan.ambiguity,
            focus_area=plan.focus_area.value,
            approved_tools=sorted(plan.approved_tools),
            selected_modules=list(plan.selected_modules),
            confidence=plan.confidence,
            previous_strategy=history.last_strategy.value if history and history.last_strategy else None,
        )


__all__ = ["ConductorPlanner"]
