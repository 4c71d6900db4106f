"""Versioned heuristic rule tables used by the planner.

Every function here is pure: the same query always yields the same scores,
intent and strategy. Rule precedence is the order of the tables below; a
future classifier can replace :func:`classify_intent` without touching the
pipeline.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Sequence

from ..tools.catalog import DATETIME_TOOL, OPERATOR_TOOLS
from .enums import FocusArea, Intent, Strategy

RULESET_VERSION = "1.3"

STRONG_CONFIDENCE = 0.95
WEAK_CONFIDENCE = 0.7
FALLBACK_CONFIDENCE = 0.5


def _words(*terms: str) -> re.Pattern[str]:
    return re.compile(r"\b(?:" + "|".join(terms) + r")\b")


def _clamp(value: int, lower: int = 1, upper: int = 10) -> int:
    return max(lower, min(upper, value))


# ---------------------------------------------------------------------------
# Complexity
# ---------------------------------------------------------------------------

_LONG_QUERY_CHARS = 100
_VERY_LONG_QUERY_CHARS = 200
_WORDS_PER_POINT = 5
_MAX_WORD_POINTS = 3
_MAX_SUB_QUESTION_POINTS = 2

_TECHNICAL = _words(
    r"algorithms?",
    r"architecture",
    r"optimi[sz]\w*",
    r"refactor\w*",
    r"debug\w*",
    r"migrat\w*",
    r"concurren\w*",
    r"distributed",
    r"scalab\w*",
)
_SEQUENCING = re.compile(r"\b(?:then|after that|and also|step by step|finally|afterwards)\b")


def score_complexity(query: str) -> int:
    """Score how much work a query asks for, from 1 (trivial) to 10.

    +2 over 100 characters and +2 more over 200, +1 per five words (max 3),
    +2 for technical or multi-step verbs, +1 per extra question mark (max 2),
    +1 for sequencing connectors such as "then" or "after that".
    """
    text = query.strip()
    lowered = text.lower()
    score = 1
    if len(text) > _LONG_QUERY_CHARS:
        score += 2
    if len(text) > _VERY_LONG_QUERY_CHARS:
        score += 2
    score += min(len(text.split()) // _WORDS_PER_POINT, _MAX_WORD_POINTS)
    if _TECHNICAL.search(lowered):
        score += 2
    score += min(max(text.count("?") - 1, 0), _MAX_SUB_QUESTION_POINTS)
    if _SEQUENCING.search(lowered):
        score += 1
    return _clamp(score)


# ---------------------------------------------------------------------------
# Ambiguity
# ---------------------------------------------------------------------------

_SHORT_QUERY_CHARS = 20
_PRONOUN_DENSITY = 0.15

_VAGUE_REFERENTS = _words("it", "this", "that", "thing", "stuff", "something")
_HEDGES = _words("maybe", "probably", "might", "could", "perhaps", "somehow", "kind of", "sort of")
_PEOPLE = _words("he", "she", "they", "we", "them")
_DANGLING_ACTION = re.compile(r"\b(?:fix|change|update|check|debug|improve|handle)\s+(?:this|that|it)\b")
# Code fences, inline code, dotted or called identifiers and file names count as referents.
_REFERENT = re.compile(r"```|`[^`]+`|\w+\(\)|\b\w+\.\w+\b|\b[a-z]+[A-Z]\w*\b|\b\w+_\w+\b")


def score_ambiguity(query: str) -> int:
    """Score how underspecified a query is, from 1 (precise) to 10.

    +2 for vague referents, +1 for hedges, +2 under 20 characters, +1 for
    people pronouns, +1 when vague pronouns exceed 15% of the words, and +3
    when an action points at "this"/"that"/"it" with no concrete referent.
    """
    text = query.strip()
    lowered = text.lower()
    score = 1
    vague = _VAGUE_REFERENTS.findall(lowered)
    if vague:
        score += 2
    if _HEDGES.search(lowered):
        score += 1
    if len(text) < _SHORT_QUERY_CHARS:
        score += 2
    if _PEOPLE.search(lowered):
        score += 1
    words = text.split()
    if words and len(vague) / len(words) > _PRONOUN_DENSITY:
        score += 1
    if _DANGLING_ACTION.search(lowered) and not _REFERENT.search(text):
        score += 3
    return _clamp(score)


# ---------------------------------------------------------------------------
# Intent
# ---------------------------------------------------------------------------

_ARITHMETIC_EXPRESSION = re.compile(r"\d\s*[-+*/x]\s*\d")


@dataclass(frozen=True, slots=True)
class IntentRule:
    intent: Intent
    strong: re.Pattern[str]
    weak: re.Pattern[str] | None = None

    def match(self, lowered: str) -> float | None:
        if self.strong.search(lowered):
            return STRONG_CONFIDENCE
        if self.weak is not None and self.weak.search(lowered):
            return WEAK_CONFIDENCE
        return None


@dataclass(frozen=True, slots=True)
class IntentMatch:
    intent: Intent
    confidence: float
    matched: bool


# First matching rule wins.
INTENT_RULES: tuple[IntentRule, ...] = (
    IntentRule(
        Intent.CALCULATION,
        re.compile(_ARITHMETIC_EXPRESSION.pattern + r"|\b(?:calculate|compute|arithmetic)\b"),
        _words("sum", "total", "plus", "minus", "multiply", "divide"),
    ),
    IntentRule(
        Intent.DEBUG,
        _words(r"bugs?", r"errors?", r"exceptions?", "traceback", r"crash\w*", "stack trace"),
        _words("fix", r"fail\w*", "broken", "wrong", r"issues?"),
    ),
    IntentRule(
        Intent.REFACTOR,
        _words(r"refactor\w*", r"restructur\w*"),
        _words("improve", r"optimi[sz]e", "clean up", "cleanup", "simplify", "rename"),
    ),
    IntentRule(
        Intent.TESTING,
        _words(r"unit tests?", r"integration tests?", r"test cases?", "pytest", "test coverage"),
        _words("test", "tests", "testing", "mock", "mocks"),
    ),
    IntentRule(
        Intent.IMPLEMENTATION,
        _words("implement", "build", "create"),
        _words("write", "code", "add", "develop", "make"),
    ),
    IntentRule(
        Intent.EXPLANATION,
        _words("explain", "what is", "why", "how does", "how do"),
        _words("how", "what", "understand", "describe"),
    ),
)


def classify_intent(query: str, rules: Sequence[IntentRule] = INTENT_RULES) -> IntentMatch:
    lowered = query.lower()
    for rule in rules:
        confidence = rule.match(lowered)
        if confidence is not None:
            return IntentMatch(rule.intent, confidence, True)
    return IntentMatch(Intent.GENERAL, FALLBACK_CONFIDENCE, False)


# ---------------------------------------------------------------------------
# Focus and ignore areas
# ---------------------------------------------------------------------------

FOCUS_RULES: tuple[tuple[FocusArea, re.Pattern[str]], ...] = (
    (FocusArea.DEBUG, _words(r"bugs?", r"errors?", r"crash\w*", r"exceptions?", r"debug\w*")),
    (FocusArea.SECURITY, _words("security", r"vulnerab\w*", r"auth\w*", "injection", "xss", "csrf")),
    (FocusArea.PERFORMANCE, _words("performance", "slow", "latency", "memory", r"optimi[sz]\w*", "fast", "faster")),
    (FocusArea.ARCHITECTURE, _words("architecture", "design", r"patterns?", r"scalab\w*", r"modules?")),
    (FocusArea.TESTING, _words("test", "tests", "testing", "coverage")),
    (FocusArea.REFACTOR, _words(r"refactor\w*", "clean", "cleanup", r"readab\w*")),
    (FocusArea.IMPLEMENTATION, _words("implement", "build", "create", "write")),
)

_NEGATION = re.compile(
    r"\b(?:don't|dont|do not|no need to|without|ignore|skip|avoid|never mind)\s+"
    r"(?:(?:worry|care|bother|think)\s+(?:about|with)\s+|touch(?:ing)?\s+|the\s+|any\s+)*"
    r"([\w-]+)"
)


def detect_ignore_areas(query: str) -> frozenset[FocusArea]:
    """Focus areas the user explicitly waved off ("don't worry about tests")."""
    lowered = query.lower()
    ignored: set[FocusArea] = set()
    for match in _NEGATION.finditer(lowered):
        target = match.group(1)
        for area, pattern in FOCUS_RULES:
            if pattern.fullmatch(target):
                ignored.add(area)
    return frozenset(ignored)


def detect_focus_area(query: str, ignore: frozenset[FocusArea] = frozenset()) -> FocusArea:
    lowered = query.lower()
    for area, pattern in FOCUS_RULES:
        if area in ignore:
            continue
        if pattern.search(lowered):
            return area
    return FocusArea.GENERAL


# ---------------------------------------------------------------------------
# Strategy
# ---------------------------------------------------------------------------


def derive_strategy(complexity: int, ambiguity: int, *, fast_recall_max: int = 3, balanced_max: int = 6) -> Strategy:
    """Lookup on the (complexity, ambiguity) bucket; the only source of a plan's strategy."""
    if complexity <= fast_recall_max and ambiguity <= fast_recall_max:
        return Strategy.FAST_RECALL
    if complexity <= balanced_max and ambiguity <= balanced_max:
        return Strategy.BALANCED
    return Strategy.SLOW_REASONING


# ---------------------------------------------------------------------------
# Fast path
# ---------------------------------------------------------------------------

_NUMBER = r"\(?\s*-?\d+(?:\.\d+)?\s*\)?"
_ARITHMETIC_QUERY = re.compile(
    r"^\s*(?:what\s+is|what's|whats|calculate|compute|how\s+much\s+is)?\s*"
    r"(?P<expr>" + _NUMBER + r"(?:\s*[-+*/x]\s*" + _NUMBER + r")+)"
    r"\s*[?=.!]?\s*$",
    re.IGNORECASE,
)
_OPERATOR = re.compile(r"[\d)]\s*([-+*/x])")
_DATETIME_QUERY = re.compile(
    r"^\s*(?:"
    r"what\s+time\s+is\s+it(?:\s+now)?"
    r"|what(?:'s|\s+is)\s+the\s+(?:current\s+)?(?:time|date)(?:\s+(?:today|now|right\s+now))?"
    r"|what(?:'s|\s+is)\s+today'?s\s+date"
    r"|what\s+day\s+is\s+(?:it|today)"
    r"|(?:current\s+)?(?:time|date)(?:\s+now)?"
    r")\s*[?.!]?\s*$",
    re.IGNORECASE,
)


@dataclass(frozen=True, slots=True)
class FastPathMatch:
    intent: Intent
    tool: str
    kind: str


def match_fast_path(query: str, *, max_chars: int = 40) -> FastPathMatch | None:
    """Match the trivial grammar: one arithmetic expression or one date/time request.

    Both alternatives are anchored so any extra words (``what is recursion?``)
    fall through to full planning.
    """
    text = query.strip()
    if not text or len(text) > max_chars or text.count("?") > 1:
        return None
    arithmetic = _ARITHMETIC_QUERY.match(text)
    if arithmetic:
        operator = _OPERATOR.search(arithmetic.group("expr"))
        if operator is not None:
            return FastPathMatch(Intent.CALCULATION, OPERATOR_TOOLS[operator.group(1).lower()], "arithmetic")
    if _DATETIME_QUERY.match(text):
        return FastPathMatch(Intent.GENERAL, DATETIME_TOOL, "datetime")
    return None


__all__ = [
    "RULESET_VERSION",
    "STRONG_CONFIDENCE",
    "WEAK_CONFIDENCE",
    "FALLBACK_CONFIDENCE",
    "IntentRule",
    "IntentMatch",
    "INTENT_RULES",
    "FastPathMatch",
    "classify_intent",
    "derive_strategy",
    "detect_focus_area",
    "detect_ignore_areas",
    "match_fast_path",
    "score_ambiguity",
    "score_complexity",
]
