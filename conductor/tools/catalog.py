from __future__ import annotations

import re
from dataclasses import dataclass

__all__ = [
    "ToolDescriptor",
    "DEFAULT_TOOLS",
    "FALLBACK_WHITELIST",
    "OPERATOR_TOOLS",
    "DATETIME_TOOL",
    "normalize_tool_name",
    "tool_category",
    "fallback_tools_for",
]


_NAME_PATTERN = re.compile(r"[\\/\s]+")
_ALIAS_COLLAPSE = re.compile(r"\.+")


def normalize_tool_name(name: str) -> str:
    """Return a normalized identifier used for catalog and policy lookups."""
    if not isinstance(name, str):
        raise TypeError("Tool name must be a string")
    collapsed = _NAME_PATTERN.sub(".", name.strip())
    collapsed = _ALIAS_COLLAPSE.sub(".", collapsed)
    collapsed = collapsed.strip(".")
    return collapsed.lower()


def tool_category(name: str) -> str:
    """Return the leading segment of a tool id (``math.add`` -> ``math``)."""
    return normalize_tool_name(name).split(".", 1)[0]


@dataclass(frozen=True, slots=True)
class ToolDescriptor:
    tool_id: str
    description: str

    @property
    def category(self) -> str:
        return tool_category(self.tool_id)


DEFAULT_TOOLS: tuple[ToolDescriptor, ...] = (
    ToolDescriptor("math.add", "Add two numbers and return the sum"),
    ToolDescriptor("math.subtract", "Subtract one number from another and return the difference"),
    ToolDescriptor("math.multiply", "Multiply two numbers and return the product"),
    ToolDescriptor("math.divide", "Divide one number by another and return the quotient"),
    ToolDescriptor("datetime.now", "Get the current date and time"),
    ToolDescriptor("weather.lookup", "Look up the current weather forecast and temperature for a city"),
    ToolDescriptor("email.send", "Send an email message to a recipient"),
    ToolDescriptor("calendar.events", "List calendar events, meetings and schedule entries"),
    ToolDescriptor("search.web", "Search the web for the latest documentation and information"),
    ToolDescriptor("code.analyze", "Analyze source code structure and report problems"),
    ToolDescriptor("code.read_file", "Read a source code file from the project"),
    ToolDescriptor("code.format", "Format and clean up source code"),
    ToolDescriptor("code.stacktrace", "Parse an error stack trace and locate the failing line"),
    ToolDescriptor("code.dependencies", "Inspect project dependencies and versions"),
    ToolDescriptor("test.generate", "Generate unit tests for a function or class"),
    ToolDescriptor("test.run", "Run the test suite and report failures"),
    ToolDescriptor("docs.lookup", "Look up library and API documentation"),
)


OPERATOR_TOOLS: dict[str, str] = {
    "+": "math.add",
    "-": "math.subtract",
    "*": "math.multiply",
    "x": "math.multiply",
    "/": "math.divide",
}

DATETIME_TOOL = "datetime.now"

# Ordered; a query may match several entries.
_KEYWORD_FALLBACK: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\b(add|plus|sum)\b|\d\s*\+\s*\d"), "math.add"),
    (re.compile(r"\b(subtract|minus)\b|\d\s*-\s*\d"), "math.subtract"),
    (re.compile(r"\b(multiply|times|product)\b|\d\s*[*x]\s*\d"), "math.multiply"),
    (re.compile(r"\b(divide|divided)\b|\d\s*/\s*\d"), "math.divide"),
    (re.compile(r"\b(date|time|today|tomorrow|yesterday|clock)\b"), DATETIME_TOOL),
    (re.compile(r"\b(weather|forecast|temperature|rain)\b"), "weather.lookup"),
    (re.compile(r"\b(email|e-mail|mail)\b"), "email.send"),
    (re.compile(r"\b(search|find|look up|latest)\b"), "search.web"),
    (re.compile(r"\b(event|events|meeting|meetings|schedule)\b"), "calendar.events"),
)

FALLBACK_WHITELIST: frozenset[str] = frozenset(tool for _, tool in _KEYWORD_FALLBACK)


def fallback_tools_for(query: str) -> list[str]:
    """Tools the static keyword table associates with ``query``, in table order."""
    lowered = query.lower()
    matched: list[str] = []
    for pattern, tool in _KEYWORD_FALLBACK:
        if tool not in matched and pattern.search(lowered):
            matched.append(tool)
    return matched

