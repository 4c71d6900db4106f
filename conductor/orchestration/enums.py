from __future__ import annotations

from enum import Enum


class Intent(str, Enum):
    CALCULATION = "calculation"
    DEBUG = "debug"
    REFACTOR = "refactor"
    IMPLEMENTATION = "implementation"
    EXPLANATION = "explanation"
    TESTING = "testing"
    GENERAL = "general"


class Strategy(str, Enum):
    FAST_RECALL = "fast_recall"
    BALANCED = "balanced"
    SLOW_REASONING = "slow_reasoning"


class FocusArea(str, Enum):
    DEBUG = "debug"
    REFACTOR = "refactor"
    TESTING = "testing"
    ARCHITECTURE = "architecture"
    PERFORMANCE = "performance"
    SECURITY = "security"
    IMPLEMENTATION = "implementation"
    GENERAL = "general"


class Verdict(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    ACCEPTABLE = "acceptable"
    POOR = "poor"
    SKIPPED = "skipped"


class RefinementState(str, Enum):
    DRAFTED = "drafted"
    EVALUATED = "evaluated"
    REFINING = "refining"
    ACCEPTED = "accepted"
    EXHAUSTED = "exhausted"
    SKIPPED = "skipped"


class Tone(str, Enum):
    NEUTRAL = "neutral"
    CASUAL = "casual"
    FORMAL = "formal"


__all__ = ["Intent", "Strategy", "FocusArea", "Verdict", "RefinementState", "Tone"]
