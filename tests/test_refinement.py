from __future__ import annotations

import asyncio

from hypothesis import given, settings as hypothesis_settings, strategies as st
import pytest
from prometheus_client import REGISTRY

from conductor.core.config import RefinementSettings
from conductor.orchestration.enums import Intent, RefinementState, Strategy, Verdict
from conductor.orchestration.exceptions import ModelInvocationError, SupervisorWriteFailure
from conductor.orchestration.refinement import QualityRefiner, build_revision_prompt
from conductor.orchestration.state import ExecutionPlan
from conductor.orchestration.supervisor import Supervisor
from conductor.orchestration.tool_policy import PolicyDirective
from conductor.services.llm import Completion
from tests.helpers.stubs import BrokenSupervisor, ScriptedEvaluator, StubInvoker


def _plan(complexity: int = 6, modules: tuple[str, ...] = ("planner", "quality_refiner")) -> ExecutionPlan:
    return ExecutionPlan(
        query="why is my cache returning stale values after a deploy",
        intent=Intent.DEBUG,
        complexity=complexity,
        ambiguity=2,
        strategy=Strategy.BALANCED,
        selected_modules=modules,
        confidence=0.9,
    )


def _outcome_count(outcome: str) -> float:
    return REGISTRY.get_sample_value("conductor_refinement_outcomes_total", {"outcome": outcome}) or 0.0


@pytest.mark.asyncio
async def test_low_complexity_plans_skip_evaluation() -> None:
    invoker = StubInvoker()
    evaluator = ScriptedEvaluator([])
    refiner = QualityRefiner(invoker=invoker, evaluator=evaluator)
    before = _outcome_count("skipped")

    result = await refiner.refine("6", _plan(complexity=1))

    assert result.outcome is RefinementState.SKIPPED
    assert result.answer == "6"
    assert result.rounds == 0
    assert result.evaluation.verdict is Verdict.SKIPPED
    assert invoker.calls == []
    assert evaluator.evaluated == []
    assert _outcome_count("skipped") == before + 1


@pytest.mark.asyncio
async def test_loop_stops_after_max_iterations() -> None:
    invoker = StubInvoker(["second draft", "third draft"])
    refiner = QualityRefiner(invoker=invoker, evaluator=ScriptedEvaluator([2.5, 3.1, 3.9]))

    result = await refiner.refine("first draft", _plan())

    assert result.rounds == 3
    assert result.revision_calls == 2
    assert len(invoker.calls) == 2
    assert result.outcome is RefinementState.EXHAUSTED
    assert result.answer == "third draft"
    assert result.evaluation.final_rating == pytest.approx(3.9)
    assert result.kept_ratings == [2.5, 3.1, 3.9]
    assert result.transitions[0] is RefinementState.DRAFTED
    assert result.transitions[-1] is RefinementState.EXHAUSTED


@pytest.mark.asyncio
async def test_good_first_draft_is_accepted_without_revision() -> None:
    invoker = StubInvoker()
    refiner = QualityRefiner(invoker=invoker, evaluator=ScriptedEvaluator([4.2]))

    result = await refiner.refine("solid answer", _plan())

    assert result.outcome is RefinementState.ACCEPTED
    assert result.rounds == 1
    assert invoker.calls == []


@pytest.mark.asyncio
async def test_revision_reaching_threshold_is_accepted() -> None:
    refiner = QualityRefiner(invoker=StubInvoker(["better"]), evaluator=ScriptedEvaluator([3.0, 4.5]))

    result = await refiner.refine("weak", _plan())

    assert result.outcome is RefinementState.ACCEPTED
    assert result.answer == "better"
    assert result.rounds == 2


@pytest.mark.asyncio
async def test_worse_revision_is_discarded() -> None:
    invoker = StubInvoker(["worse", "also worse"])
    refiner = QualityRefiner(invoker=invoker, evaluator=ScriptedEvaluator([3.5, 2.0, 3.0]))

    result = await refiner.refine("original", _plan())

    assert result.answer == "original"
    assert result.evaluation.final_rating == pytest.approx(3.5)
    assert result.kept_ratings == [3.5]
    # The second revision still starts from the kept draft.
    assert invoker.calls[1][2].splitlines()[2] == "original"


@pytest.mark.asyncio
async def test_tied_revision_replaces_the_kept_draft() -> None:
    refiner = QualityRefiner(
        invoker=StubInvoker(["revised"]),
        evaluator=ScriptedEvaluator([3.0, 3.0]),
        settings=RefinementSettings(max_iterations=2),
    )

    result = await refiner.refine("original", _plan())

    assert result.answer == "revised"
    assert result.outcome is RefinementState.EXHAUSTED


@pytest.mark.asyncio
async def test_failed_revision_keeps_best_draft() -> None:
    invoker = StubInvoker([ModelInvocationError("provider down")])
    refiner = QualityRefiner(invoker=invoker, evaluator=ScriptedEvaluator([3.2]))

    result = await refiner.refine("draft", _plan())

    assert result.outcome is RefinementState.EXHAUSTED
    assert result.answer == "draft"
    assert result.revision_calls == 1
    assert result.rounds == 1


@pytest.mark.asyncio
async def test_revision_prompt_carries_draft_query_and_directives() -> None:
    invoker = StubInvoker(["better"])
    refiner = QualityRefiner(invoker=invoker, evaluator=ScriptedEvaluator([1.0, 4.8]))
    plan = _plan()

    await refiner.refine("short draft", plan, system_directives=("[POLICY]",))

    _, directives, prompt = invoker.calls[0]
    assert directives == ("[POLICY]",)
    assert prompt.startswith("Improve this response:\n\nshort draft\n\n")
    assert f"Original query: {plan.query}" in prompt


def test_build_revision_prompt_lists_notes() -> None:
    prompt = build_revision_prompt(" draft ", "query?", ["Be clearer.", "Add an example."])

    assert prompt.splitlines() == [
        "Improve this response:",
        "",
        "draft",
        "",
        "Original query: query?",
        "",
        "Address these deficiencies:",
        "- Be clearer.",
        "- Add an example.",
    ]


@pytest.mark.asyncio
async def test_rejected_tool_use_lowers_consistency() -> None:
    directive = PolicyDirective(approved=frozenset({"code.analyze"}), rejected=frozenset({"email.send"}))
    refiner = QualityRefiner(invoker=StubInvoker(), evaluator=ScriptedEvaluator([4.5]))

    result = await refiner.refine(
        Completion(text="done", tools_used=("email.send",)),
        _plan(),
        directive=directive,
    )

    assert result.evaluation.consistency == pytest.approx(0.75)
    assert result.tools_used == ("email.send",)


@pytest.mark.asyncio
async def test_evaluations_are_reported_per_module() -> None:
    supervisor = Supervisor()
    refiner = QualityRefiner(
        invoker=StubInvoker(["revised"]),
        evaluator=ScriptedEvaluator([3.0, 4.4]),
        supervisor=supervisor,
    )

    await refiner.refine("draft", _plan(), conversation_id="conv-1")

    state = supervisor.get_conversation_state("conv-1")
    assert state is not None
    assert state.evaluation_count == 2
    assert state.scores_for("planner") == [3.0, 4.4]
    assert state.scores_for("quality_refiner") == [3.0, 4.4]


@pytest.mark.asyncio
async def test_supervisor_failures_do_not_break_refinement() -> None:
    before = REGISTRY.get_sample_value(
        "conductor_supervisor_write_failures_total", {"operation": "record_evaluation"}
    ) or 0.0
    refiner = QualityRefiner(
        invoker=StubInvoker(),
        evaluator=ScriptedEvaluator([4.6]),
        supervisor=BrokenSupervisor(),
    )

    result = await refiner.refine("fine", _plan(), conversation_id="conv-1")

    assert result.outcome is RefinementState.ACCEPTED
    after = REGISTRY.get_sample_value("conductor_supervisor_write_failures_total", {"operation": "record_evaluation"})
    assert after == before + 2


@pytest.mark.asyncio
async def test_one_failed_module_write_does_not_skip_the_others() -> None:
    class _FailsForPlanner(Supervisor):
        def record_evaluation(self, conversation_id, module_id, evaluation):
            if module_id == "planner":
                raise SupervisorWriteFailure("planner shard unavailable")
            super().record_evaluation(conversation_id, module_id, evaluation)

    supervisor = _FailsForPlanner()
    refiner = QualityRefiner(invoker=StubInvoker(), evaluator=ScriptedEvaluator([4.6]), supervisor=supervisor)

    await refiner.refine("fine", _plan(), conversation_id="conv-1")

    state = supervisor.get_conversation_state("conv-1")
    assert state.scores_for("planner") == []
    assert state.scores_for("quality_refiner") == [4.6]


@given(ratings=st.lists(st.floats(min_value=0.0, max_value=5.0), min_size=3, max_size=3))
@hypothesis_settings(max_examples=50, deadline=None)
def test_kept_rating_never_decreases(ratings: list[float]) -> None:
    refiner = QualityRefiner(invoker=StubInvoker(), evaluator=ScriptedEvaluator(ratings))

    result = asyncio.run(refiner.refine("draft", _plan()))

    assert result.kept_ratings == sorted(result.kept_ratings)
    assert 1 <= result.rounds <= 3
    assert result.revision_calls == result.rounds - 1
    consumed = ratings[: result.rounds]
    assert result.evaluation.final_rating == max(consumed)
    if result.outcome is RefinementState.ACCEPTED:
        assert result.evaluation.final_rating >= 4.0
