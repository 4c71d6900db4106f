from __future__ import annotations

from hypothesis import given, settings as hypothesis_settings, strategies as st
import pytest
from prometheus_client import REGISTRY

from conductor.core.config import PlanningSettings
from conductor.orchestration.enums import FocusArea, Intent, Strategy
from conductor.orchestration.planner import ConductorPlanner
from conductor.orchestration.registry import FAST_PATH_MODULES
from conductor.orchestration.rules import derive_strategy
from conductor.orchestration.state import RetrievalState, ScoredCandidate
from conductor.services.retrieval import Retriever
from conductor.services.semantic_index import InMemorySemanticIndex
from conductor.tools.catalog import FALLBACK_WHITELIST

SLOW_QUERY = (
    "Our checkout service started failing after the last deploy and I have been trying to debug it "
    "all morning without luck. Can you fix this? Then walk me through what changed in the architecture "
    "and why the retries make it worse?"
)
CORE_MODULES = ("planner", "tool_policy", "quality_refiner", "style_formatter")


def _retrieval(query: str, tools=(), modules=(), *, tools_degraded: bool = False) -> RetrievalState:
    return RetrievalState(
        raw_query=query,
        suggested_tools=tuple(ScoredCandidate(id=tool, score=score) for tool, score in tools),
        suggested_modules=tuple(ScoredCandidate(id=module, score=score) for module, score in modules),
        tools_degraded=tools_degraded,
    )


@pytest.fixture()
def planner() -> ConductorPlanner:
    return ConductorPlanner()


def test_trivial_arithmetic_takes_fast_path(planner: ConductorPlanner) -> None:
    plan = planner.plan("what is 2+4?", _retrieval("what is 2+4?"))

    assert plan.fast_path
    assert plan.intent is Intent.CALCULATION
    assert plan.strategy is Strategy.FAST_RECALL
    assert plan.approved_tools == frozenset({"math.add"})
    assert plan.selected_modules == FAST_PATH_MODULES
    assert (plan.complexity, plan.ambiguity) == (1, 1)


def test_fast_path_ignores_retrieved_tools(planner: ConductorPlanner) -> None:
    retrieval = _retrieval("what time is it?", tools=[("email.send", 0.9)])

    plan = planner.plan("what time is it?", retrieval)

    assert plan.approved_tools == frozenset({"datetime.now"})


def test_complex_debug_request_plans_slow_reasoning(planner: ConductorPlanner) -> None:
    retrieval = _retrieval(
        SLOW_QUERY,
        tools=[("code.analyze", 0.8), ("code.stacktrace", 0.7), ("email.send", 0.6), ("search.web", 0.5)],
        modules=[
            ("error_prediction", 0.9),
            ("code_review", 0.85),
            ("knowledge_graph", 0.8),
            ("advanced_capabilities", 0.75),
            ("cognitive_bias", 0.7),
            ("theory_of_mind", 0.65),
        ],
    )

    plan = planner.plan(SLOW_QUERY, retrieval)

    assert not plan.fast_path
    assert plan.intent is Intent.DEBUG
    assert plan.focus_area is FocusArea.DEBUG
    assert plan.complexity >= 7
    assert plan.strategy is Strategy.SLOW_REASONING
    assert plan.approved_tools == frozenset({"code.analyze", "code.stacktrace", "search.web"})
    assert plan.selected_modules == CORE_MODULES + (
        "error_prediction",
        "code_review",
        "knowledge_graph",
        "advanced_capabilities",
    )
    assert not plan.degraded


def test_tool_cap_follows_complexity(planner: ConductorPlanner) -> None:
    retrieval = _retrieval(
        "implement a csv parser",
        tools=[("code.format", 0.5), ("code.analyze", 0.9), ("docs.lookup", 0.7), ("test.generate", 0.8)],
    )

    plan = planner.plan("implement a csv parser", retrieval)

    assert plan.intent is Intent.IMPLEMENTATION
    assert plan.complexity <= 3
    assert plan.approved_tools == frozenset({"code.analyze", "test.generate"})


def test_tool_cap_thresholds() -> None:
    planner = ConductorPlanner(settings=PlanningSettings())

    assert planner.tool_cap(1) == 2
    assert planner.tool_cap(5) == 3
    assert planner.tool_cap(9) == 5


def test_empty_retrieval_uses_keyword_fallback(planner: ConductorPlanner) -> None:
    query = "what's the weather forecast for tomorrow in Paris and should I take an umbrella"

    plan = planner.plan(query, _retrieval(query, tools_degraded=True))

    assert plan.degraded
    assert plan.approved_tools == frozenset({"datetime.now", "weather.lookup"})
    assert plan.confidence == pytest.approx(0.6)
    assert REGISTRY.get_sample_value(
        "conductor_plans_total",
        {"strategy": plan.strategy.value, "intent": plan.intent.value, "mode": "degraded"},
    )


def test_negated_area_excludes_matching_specialists(planner: ConductorPlanner) -> None:
    query = "Speed up this slow report query but don't worry about tests, just focus on performance please"
    retrieval = _retrieval(query, modules=[("test_design", 0.9), ("performance_tuning", 0.8)])

    plan = planner.plan(query, retrieval)

    assert plan.ignore_areas == frozenset({FocusArea.TESTING})
    assert plan.focus_area is FocusArea.PERFORMANCE
    assert "test_design" not in plan.selected_modules
    assert plan.selected_modules == CORE_MODULES + ("performance_tuning",)


def test_unknown_and_duplicate_modules_are_dropped(planner: ConductorPlanner) -> None:
    query = "explain how the scheduler assigns work to threads"
    retrieval = _retrieval(
        query,
        tools=[("docs.lookup", 0.6)],
        modules=[("made_up", 0.99), ("planner", 0.95), ("knowledge_graph", 0.9), ("knowledge_graph", 0.4)],
    )

    plan = planner.plan(query, retrieval)

    assert plan.selected_modules == CORE_MODULES + ("knowledge_graph",)


def test_approved_ids_keep_their_retrieved_spelling(planner: ConductorPlanner) -> None:
    query = "please analyze the bug in my parser"
    retrieval = _retrieval(query, tools=[("Code/Analyze", 0.9), ("code.analyze", 0.8), ("docs.lookup", 0.5)])

    plan = planner.plan(query, retrieval)

    assert plan.approved_tools == frozenset({"Code/Analyze", "docs.lookup"})
    assert plan.approved_tools <= set(retrieval.suggested_tool_ids)


@pytest.mark.asyncio
async def test_retrieved_everyday_tool_is_approved_for_plain_questions(planner: ConductorPlanner) -> None:
    query = "what's the weather forecast in Paris today?"
    retrieval = await Retriever(index=InMemorySemanticIndex.with_defaults()).retrieve(query)

    plan = planner.plan(query, retrieval)

    assert "weather.lookup" in retrieval.suggested_tool_ids
    assert plan.intent is Intent.EXPLANATION
    assert "weather.lookup" in plan.approved_tools
    assert not plan.degraded


def test_unmatched_intent_falls_back_to_general(planner: ConductorPlanner) -> None:
    query = "hello there friend, lovely day"

    plan = planner.plan(query, _retrieval(query, tools=[("email.send", 0.5), ("code.analyze", 0.4)]))

    assert plan.intent is Intent.GENERAL
    assert plan.confidence == pytest.approx(0.5)
    assert plan.approved_tools == frozenset({"email.send"})


def test_empty_query_gets_default_plan(planner: ConductorPlanner) -> None:
    plan = planner.plan("   ", _retrieval("   "))

    assert plan.intent is Intent.GENERAL
    assert plan.strategy is Strategy.BALANCED
    assert plan.selected_modules == CORE_MODULES
    assert plan.approved_tools == frozenset()


_TOOL_IDS = st.sampled_from(
    [
        "math.add",
        "MATH.ADD",
        "math.divide",
        "code.analyze",
        "Code/Analyze",
        "code.format",
        "search.web",
        "Search Web",
        "email.send",
        "weather.lookup",
        "test.run",
        "docs.lookup",
    ]
)
_CANDIDATES = st.lists(st.tuples(_TOOL_IDS, st.floats(min_value=0.0, max_value=1.0)), max_size=6)
_QUERIES = st.text(
    alphabet=st.sampled_from(list("abcdefghijklmnopqrstuvwxyz 0123456789+-*/?.")),
    max_size=120,
) | st.sampled_from([SLOW_QUERY, "what is 2+4?", "fix it", "implement a csv parser"])


@given(query=_QUERIES, tools=_CANDIDATES)
@hypothesis_settings(max_examples=75, deadline=None)
def test_planning_is_deterministic(query: str, tools: list[tuple[str, float]]) -> None:
    planner = ConductorPlanner()
    retrieval = _retrieval(query, tools=tools)

    first = planner.plan(query, retrieval).model_dump(exclude={"plan_id", "created_at"})
    second = planner.plan(query, retrieval).model_dump(exclude={"plan_id", "created_at"})

    assert first == second


@given(query=_QUERIES, tools=_CANDIDATES)
@hypothesis_settings(max_examples=75, deadline=None)
def test_approved_tools_come_from_suggestions_or_whitelist(query: str, tools: list[tuple[str, float]]) -> None:
    planner = ConductorPlanner()
    retrieval = _retrieval(query, tools=tools)

    plan = planner.plan(query, retrieval)

    assert plan.approved_tools <= set(retrieval.suggested_tool_ids) | FALLBACK_WHITELIST
    assert len(plan.approved_tools) <= 5


@given(query=_QUERIES)
@hypothesis_settings(max_examples=75, deadline=None)
def test_strategy_is_a_function_of_the_scores(query: str) -> None:
    plan = ConductorPlanner().plan(query, _retrieval(query))

    assert plan.strategy is derive_strategy(plan.complexity, plan.ambiguity)
    assert set(plan.selected_modules) >= set(FAST_PATH_MODULES)
