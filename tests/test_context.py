from __future__ import annotations

from conductor.orchestration.context import ContextAssembler
from conductor.orchestration.enums import FocusArea, Intent, Strategy
from conductor.orchestration.state import ExecutionPlan


def _plan(modules: tuple[str, ...], *, tools: frozenset[str] = frozenset()) -> ExecutionPlan:
    return ExecutionPlan(
        query="why does the login handler crash",
        intent=Intent.DEBUG,
        complexity=8,
        ambiguity=3,
        focus_area=FocusArea.DEBUG,
        strategy=Strategy.SLOW_REASONING,
        approved_tools=tools,
        selected_modules=modules,
        confidence=0.95,
    )


def test_modules_are_resolved_with_reasons() -> None:
    payload = ContextAssembler().assemble(_plan(("planner", "error_prediction", "cognitive_bias")))

    reasons = {module.capability.module_id: module.reason for module in payload.modules}
    assert reasons == {
        "planner": "core module",
        "error_prediction": "matches focus area DEBUG",
        "cognitive_bias": "retrieved for DEBUG request",
    }


def test_render_lists_modules_tools_and_strategy() -> None:
    payload = ContextAssembler().assemble(
        _plan(("planner", "code_review"), tools=frozenset({"code.stacktrace", "code.analyze"}))
    )

    lines = payload.render().splitlines()

    assert lines[0] == "[ACTIVE MODULES]"
    assert lines[1].startswith("- planner:")
    assert lines[2].startswith("- code_review:")
    assert "[ACTIVE TOOLS]" in lines
    assert "code.analyze, code.stacktrace" in lines
    assert lines[-1].startswith("[STRATEGY] SLOW_REASONING:")


def test_no_tools_renders_none() -> None:
    payload = ContextAssembler().assemble(_plan(("planner",)))

    assert "(none)" in payload.render().splitlines()


def test_unknown_modules_are_skipped() -> None:
    payload = ContextAssembler().assemble(_plan(("planner", "retired_module")))

    assert payload.module_ids == ["planner"]


def test_render_respects_max_chars() -> None:
    payload = ContextAssembler(max_chars=120).assemble(
        _plan(("planner", "tool_policy", "quality_refiner", "style_formatter"))
    )

    module_lines = [line for line in payload.render().splitlines() if line.startswith("- ")]

    assert 0 < len(module_lines) < 4
    assert sum(len(line) for line in module_lines) <= 120
