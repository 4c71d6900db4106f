from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Iterator

from .enums import FocusArea


@dataclass(frozen=True, slots=True)
class ModuleCapability:
    """A module that may take part in a request, resolved by stable identifier."""

    module_id: str
    description: str
    priority: int
    core: bool = False
    focus_tags: frozenset[FocusArea] = field(default_factory=frozenset)
    instructions: str = ""


class ModuleRegistry:
    """Maps module identifiers to capabilities and orders them by static priority."""

    def __init__(self, modules: Iterable[ModuleCapability] = ()) -> None:
        self._modules: dict[str, ModuleCapability] = {}
        for module in modules:
            self.register(module)

    def register(self, module: ModuleCapability) -> None:
        if module.module_id in self._modules:
            raise ValueError(f"Module '{module.module_id}' is already registered")
        self._modules[module.module_id] = module

    def get(self, module_id: str) -> ModuleCapability | None:
        return self._modules.get(module_id)

    def __contains__(self, module_id: object) -> bool:
        return module_id in self._modules

    def __iter__(self) -> Iterator[ModuleCapability]:
        return iter(self._modules.values())

    def __len__(self) -> int:
        return len(self._modules)

    def core_ids(self) -> tuple[str, ...]:
        return self.ordered(module.module_id for module in self._modules.values() if module.core)

    def specialists(self) -> list[ModuleCapability]:
        return [module for module in self._modules.values() if not module.core]

    def ordered(self, module_ids: Iterable[str]) -> tuple[str, ...]:
        """Sort known ids by (core first, priority, id); unknown ids are dropped."""
        known = {module_id for module_id in module_ids if module_id in self._modules}
        return tuple(
            sorted(
                known,
                key=lambda module_id: (
                    not self._modules[module_id].core,
                    self._modules[module_id].priority,
                    module_id,
                ),
            )
        )

    def resolve(self, module_ids: Iterable[str]) -> list[ModuleCapability]:
        return [self._modules[module_id] for module_id in module_ids if module_id in self._modules]


FAST_PATH_MODULES: tuple[str, ...] = ("planner", "tool_policy", "style_formatter")

DEFAULT_MODULES: tuple[ModuleCapability, ...] = (
    ModuleCapability(
        "planner",
        "Builds the execution plan: intent, complexity, approved tools and strategy",
        priority=0,
        core=True,
    ),
    ModuleCapability(
        "tool_policy",
        "Restricts tool use to the tools approved for this request",
        priority=10,
        core=True,
    ),
    ModuleCapability(
        "quality_refiner",
        "Evaluates the draft answer and requests revisions until it meets the quality bar",
        priority=20,
        core=True,
    ),
    ModuleCapability(
        "style_formatter",
        "Applies the final tone and formatting pass to the answer",
        priority=30,
        core=True,
    ),
    ModuleCapability(
        "error_prediction",
        "Predicts likely runtime errors, crashes and failure modes in code and proposes fixes",
        priority=100,
        focus_tags=frozenset({FocusArea.DEBUG}),
        instructions="Anticipate the failure modes of the proposed solution.",
    ),
    ModuleCapability(
        "code_review",
        "Reviews source code for bugs, readability and maintainability problems",
        priority=110,
        focus_tags=frozenset({FocusArea.DEBUG, FocusArea.REFACTOR}),
        instructions="Point out concrete defects before stylistic concerns.",
    ),
    ModuleCapability(
        "security_audit",
        "Audits code and designs for security vulnerabilities such as injection and broken authentication",
        priority=120,
        focus_tags=frozenset({FocusArea.SECURITY}),
        instructions="Flag every input that reaches a sensitive sink unchecked.",
    ),
    ModuleCapability(
        "performance_tuning",
        "Finds performance bottlenecks, slow queries, memory and latency problems and suggests optimizations",
        priority=130,
        focus_tags=frozenset({FocusArea.PERFORMANCE}),
        instructions="Quantify the expected gain of each optimization.",
    ),
    ModuleCapability(
        "test_design",
        "Designs unit and integration tests and improves test coverage",
        priority=140,
        focus_tags=frozenset({FocusArea.TESTING}),
        instructions="Cover edge cases and failure paths, not only the happy path.",
    ),
    ModuleCapability(
        "knowledge_graph",
        "Relates concepts, components and dependencies of the system architecture",
        priority=200,
        focus_tags=frozenset({FocusArea.ARCHITECTURE}),
        instructions="Explain how the affected components depend on each other.",
    ),
    ModuleCapability(
        "advanced_capabilities",
        "Handles complex multi-step reasoning, algorithm design and architecture trade-offs",
        priority=210,
        focus_tags=frozenset({FocusArea.ARCHITECTURE, FocusArea.IMPLEMENTATION}),
        instructions="Break the problem into ordered steps before answering.",
    ),
    ModuleCapability(
        "cognitive_bias",
        "Checks the reasoning for assumptions, overconfidence and cognitive biases",
        priority=300,
        instructions="State assumptions explicitly and avoid overconfident claims.",
    ),
    ModuleCapability(
        "theory_of_mind",
        "Infers what the user most likely means when the request is vague or underspecified",
        priority=310,
        instructions="Name the interpretation you chose when the request is ambiguous.",
    ),
    ModuleCapability(
        "learning_growth",
        "Explains concepts step by step for learning and understanding",
        priority=400,
        instructions="Prefer examples over abstract definitions.",
    ),
    ModuleCapability(
        "response_summarizer",
        "Summarizes long answers into a concise result with key points",
        priority=500,
        instructions="Lead with the answer, then the supporting detail.",
    ),
)


def default_registry() -> ModuleRegistry:
    return ModuleRegistry(DEFAULT_MODULES)


__all__ = ["ModuleCapability", "ModuleRegistry", "FAST_PATH_MODULES", "DEFAULT_MODULES", "default_registry"]
