from __future__ import annotations

from dataclasses import dataclass
from fnmatch import fnmatch
from functools import lru_cache
from typing import Iterable, Mapping, Sequence

from ..core.metrics import record_policy_violation
from ..tools.catalog import normalize_tool_name
from .enums import Intent
from .exceptions import PolicyViolation
from .state import ExecutionPlan, RetrievalState

POLICY_HEADER = "[TOOL EXECUTION POLICY]"
POLICY_FOOTER = "[END TOOL EXECUTION POLICY]"


@dataclass(frozen=True)
class IntentToolPolicy:
    allowed_patterns: tuple[str, ...]
    denied_patterns: tuple[str, ...] = ()
    default_allow: bool = False

    def is_allowed(self, tool: str) -> bool:
        identifier = normalize_tool_name(tool)
        for pattern in self.denied_patterns:
            if fnmatch(identifier, pattern):
                return False
        if not self.allowed_patterns:
            return True
        if any(fnmatch(identifier, pattern) for pattern in self.allowed_patterns):
            return True
        return self.default_allow

    def filter_tools(self, tools: Sequence[str]) -> tuple[list[str], list[str]]:
        allowed: list[str] = []
        removed: list[str] = []
        for tool in tools:
            if self.is_allowed(tool):
                allowed.append(tool)
            else:
                removed.append(tool)
        return allowed, removed


# Everyday assistant lookups that plain questions may need whatever their topic.
_EVERYDAY_PATTERNS: tuple[str, ...] = ("weather.*", "datetime.*", "calendar.*", "email.*", "search.*")

_POLICY_DEFINITIONS: Mapping[Intent, Mapping[str, Sequence[str]]] = {
    Intent.CALCULATION: {
        "allowed": ("math.*",),
    },
    Intent.DEBUG: {
        "allowed": ("code.*", "test.run", "docs.*", "search.*"),
        "denied": ("email.*", "calendar.*"),
    },
    Intent.REFACTOR: {
        "allowed": ("code.*", "test.run", "docs.*"),
    },
    Intent.IMPLEMENTATION: {
        "allowed": ("code.*", "test.generate", "docs.*", "search.*"),
    },
    Intent.EXPLANATION: {
        "allowed": ("docs.*", "code.read_file", "code.analyze", *_EVERYDAY_PATTERNS),
    },
    Intent.TESTING: {
        "allowed": ("test.*", "code.*"),
    },
    # Everyday assistant requests: anything except the code tooling.
    Intent.GENERAL: {
        "allowed": (),
        "denied": ("code.*", "test.*"),
    },
}


@lru_cache(maxsize=16)
def get_intent_tool_policy(intent: Intent) -> IntentToolPolicy:
    definition = _POLICY_DEFINITIONS.get(intent, {})
    return IntentToolPolicy(
        allowed_patterns=tuple(str(pattern) for pattern in definition.get("allowed", ()) if pattern),
        denied_patterns=tuple(str(pattern) for pattern in definition.get("denied", ()) if pattern),
    )


@dataclass(frozen=True, slots=True)
class PolicyDirective:
    approved: frozenset[str]
    rejected: frozenset[str]

    @property
    def forbids_all(self) -> bool:
        return not self.approved

    def render(self) -> str:
        lines = [POLICY_HEADER]
        if self.forbids_all:
            lines.append("You must not use any tools for this request.")
            lines.append("Answer from your own knowledge.")
        else:
            lines.append("Approved tools (use only these):")
            lines.extend(f"- {tool}" for tool in sorted(self.approved))
            if self.rejected:
                lines.append("Rejected tools (using any of these is an error):")
                lines.extend(f"- {tool}" for tool in sorted(self.rejected))
        lines.append(POLICY_FOOTER)
        return "\n".join(lines)


class PolicyEnforcer:
    """Turns a plan into the tool directive injected ahead of the model request.

    Enforcement is advisory: the directive instructs the model, nothing here
    sandboxes tool execution. :meth:`audit` reports violations after the fact.
    """

    def enforce(self, plan: ExecutionPlan, retrieval: RetrievalState) -> PolicyDirective:
        approved = frozenset(normalize_tool_name(tool) for tool in plan.approved_tools)
        suggested = {normalize_tool_name(tool) for tool in retrieval.suggested_tool_ids}
        return PolicyDirective(approved=approved, rejected=frozenset(suggested - approved))

    def audit(self, directive: PolicyDirective, used_tools: Iterable[str]) -> None:
        """Raise :class:`PolicyViolation` when any used tool was not approved."""
        violations = {normalize_tool_name(tool) for tool in used_tools} - directive.approved
        if not violations:
            return
        for tool in sorted(violations):
            record_policy_violation(tool=tool)
        raise PolicyViolation(violations)


__all__ = [
    "IntentToolPolicy",
    "PolicyDirective",
    "PolicyEnforcer",
    "get_intent_tool_policy",
    "POLICY_HEADER",
    "POLICY_FOOTER",
]
