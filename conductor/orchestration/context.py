from __future__ import annotations

from dataclasses import dataclass, field

from ..core.logging import get_logger
from .enums import Strategy
from .registry import ModuleCapability, ModuleRegistry, default_registry
from .state import ExecutionPlan

logger = get_logger(name=__name__)

_STRATEGY_GUIDANCE: dict[Strategy, str] = {
    Strategy.FAST_RECALL: "Answer directly and briefly.",
    Strategy.BALANCED: "Answer with a short justification and one example where useful.",
    Strategy.SLOW_REASONING: "Reason step by step, state assumptions, and verify the result before answering.",
}


@dataclass(slots=True)
class ActiveModule:
    capability: ModuleCapability
    reason: str


@dataclass(slots=True)
class ContextPayload:
    strategy: Strategy
    modules: list[ActiveModule] = field(default_factory=list)
    tools: list[str] = field(default_factory=list)
    max_chars: int = 2_000

    @property
    def module_ids(self) -> list[str]:
        return [module.capability.module_id for module in self.modules]

    def render(self) -> str:
        lines = ["[ACTIVE MODULES]"]
        remaining = self.max_chars
        for module in self.modules:
            line = f"- {module.capability.module_id}: {module.capability.description} ({module.reason})"
            if module.capability.instructions:
                line += f" {module.capability.instructions}"
            if len(line) > remaining:
                break
            lines.append(line)
            remaining -= len(line)
        lines.append("[ACTIVE TOOLS]")
        lines.append(", ".join(self.tools) if self.tools else "(none)")
        lines.append(f"[STRATEGY] {self.strategy.name}: {_STRATEGY_GUIDANCE[self.strategy]}")
        return "\n".join(lines)


class ContextAssembler:
    """Resolves the plan's module identifiers into a prompt note. No I/O."""

    def __init__(self, *, registry: ModuleRegistry | None = None, max_chars: int = 2_000) -> None:
        self._registry = registry or default_registry()
        self._max_chars = max_chars

    def assemble(self, plan: ExecutionPlan) -> ContextPayload:
        modules: list[ActiveModule] = []
        for capability in self._registry.resolve(plan.selected_modules):
            modules.append(ActiveModule(capability=capability, reason=self._reason(capability, plan)))
        missing = [module_id for module_id in plan.selected_modules if module_id not in self._registry]
        if missing:
            logger.warning("context_unresolved_modules", modules=missing)
        return ContextPayload(
            strategy=plan.strategy,
            modules=modules,
            tools=sorted(plan.approved_tools),
            max_chars=self._max_chars,
        )

    @staticmethod
    def _reason(capability: ModuleCapability, plan: ExecutionPlan) -> str:
        if capability.core:
            return "core module"
        if plan.focus_area in capability.focus_tags:
            return f"matches focus area {plan.focus_area.name}"
        return f"retrieved for {plan.intent.name} request"


__all__ = ["ActiveModule", "ContextAssembler", "ContextPayload"]
