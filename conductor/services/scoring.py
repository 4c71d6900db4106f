from __future__ import annotations

import re

from ..core.config import RatingWeights, RefinementSettings, Settings, get_settings
from ..orchestration.enums import Verdict
from ..orchestration.state import QualityEvaluation

_STOP_WORDS = frozenset(
    {
        "a", "an", "the", "is", "are", "was", "were", "be", "been", "have", "has", "had", "do", "does", "did",
        "will", "would", "could", "should", "may", "might", "must", "can", "to", "of", "in", "on", "at", "for",
        "with", "about", "by", "from", "as", "into", "then", "when", "where", "why", "how", "all", "some", "not",
        "only", "so", "than", "too", "very", "just", "also", "now", "what", "which", "who", "this", "that",
        "these", "those", "it", "its", "i", "me", "my", "we", "our", "us", "you", "your", "he", "she", "they",
        "them", "their", "if", "and", "but", "or", "because", "please", "tell", "give", "fix", "help",
    }
)
_WORD = re.compile(r"\b[a-z][a-z0-9_]+\b")
_NUMBER = re.compile(r"\d+(?:\.\d+)?")
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")
_CODE_BLOCK = re.compile(r"```[\w+-]*\n?(.*?)```", re.DOTALL)
_INLINE_CODE_HINT = re.compile(r"^\s*(?:def |class |function |public |private |import |from \S+ import )", re.MULTILINE)

_TRANSITIONS = ("however", "therefore", "additionally", "furthermore", "in conclusion", "first", "second", "finally")
_LIST_MARKERS = ("- ", "* ", "1. ", "• ")
_EXAMPLE_MARKERS = ("for example", "e.g.", "such as", "for instance")
_ACTIONABLE_MARKERS = ("you can", "try ", "step ", "should", "run ", "use ")

_OVERCONFIDENT = (
    "definitely",
    "absolutely",
    "certainly",
    "100% sure",
    "guaranteed",
    "without a doubt",
    "always works",
    "never fails",
    "obviously",
)
_UNSUPPORTED_CLAIMS = ("studies show", "research proves", "experts agree", "scientists agree", "it is well known")
_ATTRIBUTION = re.compile(r"according to|https?://|\(\d{4}\)|\bet al\b")
_CONTRADICTION_PAIRS = (
    ("always", "never"),
    ("must", "optional"),
)
_HARD_CONTRADICTIONS = (
    ("is required", "is optional"),
    ("must be", "must not be"),
)
_BRACKETS = {"(": ")", "[": "]", "{": "}"}

_HIGH_WEIGHT = 0.5
_MEDIUM_WEIGHT = 0.2
_LOW_WEIGHT = 0.05
_CONSISTENCY_ISSUE_COST = 0.2
_CODE_ISSUE_COST = 0.25


def _clamp(value: float, lower: float = 0.0, upper: float = 1.0) -> float:
    return max(lower, min(upper, value))


def verdict_for(rating: float) -> Verdict:
    if rating >= 4.5:
        return Verdict.EXCELLENT
    if rating >= 3.5:
        return Verdict.GOOD
    if rating >= 2.5:
        return Verdict.ACCEPTABLE
    return Verdict.POOR


def extract_key_terms(text: str) -> list[str]:
    terms: list[str] = []
    for word in _WORD.findall(text.lower()):
        if word in _STOP_WORDS or len(word) <= 2 or word in terms:
            continue
        terms.append(word)
    return terms


def extract_code(text: str) -> list[str]:
    blocks = _CODE_BLOCK.findall(text)
    if blocks:
        return blocks
    if _INLINE_CODE_HINT.search(text):
        return [text]
    return []


class QualityEvaluator:
    """Scores a draft on independent sub-scores and folds them into a 0-5 rating.

    Sub-scores are in [0, 1]. The rating is five times the weighted mean of
    clarity, relevance, helpfulness, consistency and (when the answer holds
    code) code validity, minus ``hallucination_penalty * risk`` and
    ``inconsistency_penalty * (1 - consistency)``, floored at 0.
    """

    def __init__(
        self,
        *,
        weights: RatingWeights | None = None,
        hallucination_penalty: float = 1.5,
        inconsistency_penalty: float = 1.0,
        policy_violation_penalty: float = 0.25,
    ) -> None:
        self._weights = weights or RatingWeights()
        self._hallucination_penalty = hallucination_penalty
        self._inconsistency_penalty = inconsistency_penalty
        self._policy_violation_penalty = policy_violation_penalty

    @classmethod
    def from_settings(cls, settings: Settings | RefinementSettings | None = None) -> "QualityEvaluator":
        if settings is None:
            settings = get_settings()
        section = settings.refinement if isinstance(settings, Settings) else settings
        return cls(
            weights=section.weights,
            hallucination_penalty=section.hallucination_penalty,
            inconsistency_penalty=section.inconsistency_penalty,
            policy_violation_penalty=section.policy_violation_penalty,
        )

    def evaluate(self, answer: str, query: str, *, policy_violations: int = 0) -> QualityEvaluation:
        issues: list[str] = []
        clarity = self._score_clarity(answer, issues)
        relevance = self._score_relevance(answer, query, issues)
        helpfulness = self._score_helpfulness(answer, issues)
        consistency = self._score_consistency(answer, issues)
        if policy_violations:
            consistency = _clamp(consistency - self._policy_violation_penalty * policy_violations)
            issues.append(f"Used {policy_violations} tool(s) rejected by the policy")
        hallucination_risk = self._score_hallucination_risk(answer, issues)
        code_validity = self._score_code_validity(answer, issues)

        rating = self.rate(
            clarity=clarity,
            relevance=relevance,
            helpfulness=helpfulness,
            consistency=consistency,
            hallucination_risk=hallucination_risk,
            code_validity=code_validity,
        )
        return QualityEvaluation(
            clarity=round(clarity, 4),
            relevance=round(relevance, 4),
            helpfulness=round(helpfulness, 4),
            consistency=round(consistency, 4),
            hallucination_risk=round(hallucination_risk, 4),
            code_validity=None if code_validity is None else round(code_validity, 4),
            token_count=len(answer.split()),
            final_rating=round(rating, 4),
            verdict=verdict_for(rating),
            issues=tuple(issues),
        )

    def rate(
        self,
        *,
        clarity: float,
        relevance: float,
        helpfulness: float,
        consistency: float,
        hallucination_risk: float,
        code_validity: float | None = None,
    ) -> float:
        weighted = [
            (self._weights.clarity, clarity),
            (self._weights.relevance, relevance),
            (self._weights.helpfulness, helpfulness),
            (self._weights.consistency, consistency),
        ]
        if code_validity is not None:
            weighted.append((self._weights.code_validity, code_validity))
        total_weight = sum(weight for weight, _ in weighted)
        base = 5.0 * sum(weight * score for weight, score in weighted) / total_weight if total_weight else 0.0
        penalties = (
            self._hallucination_penalty * hallucination_risk
            + self._inconsistency_penalty * (1.0 - consistency)
        )
        return _clamp(base - penalties, 0.0, 5.0)

    def _score_clarity(self, answer: str, issues: list[str]) -> float:
        if not answer.strip():
            issues.append("Empty response")
            return 0.0
        score = 0.6
        if "\n\n" in answer:
            score += 0.1
        if any(marker in answer for marker in _LIST_MARKERS):
            score += 0.1
        lowered = answer.lower()
        if any(transition in lowered for transition in _TRANSITIONS):
            score += 0.1
        sentences = [sentence for sentence in _SENTENCE_SPLIT.split(answer.strip()) if sentence]
        words = len(answer.split())
        if len(sentences) <= 2 and words <= 40:
            score += 0.2
        elif sentences and words / len(sentences) > 30:
            score -= 0.2
            issues.append("Sentences are too long")
        return _clamp(score)

    def _score_relevance(self, answer: str, query: str, issues: list[str]) -> float:
        if not answer.strip():
            return 0.0
        lowered = answer.lower()
        key_terms = extract_key_terms(query)
        if _NUMBER.search(query) and re.search(r"\d\s*[-+*/x]\s*\d", query):
            return 0.9 if _NUMBER.search(answer) else 0.4
        if not key_terms:
            return 0.8
        addressed = sum(1 for term in key_terms if term in lowered)
        coverage = addressed / len(key_terms)
        if coverage < 0.3:
            issues.append(f"Low topic coverage ({addressed}/{len(key_terms)} key terms)")
        return _clamp(coverage + 0.2)

    def _score_helpfulness(self, answer: str, issues: list[str]) -> float:
        if not answer.strip():
            return 0.0
        lowered = answer.lower()
        score = 0.5
        if len(answer) < 20:
            score -= 0.1
        elif len(answer) >= 80:
            score += 0.1
        if any(marker in lowered for marker in _EXAMPLE_MARKERS):
            score += 0.1
        if "```" in answer:
            score += 0.1
        if any(marker in lowered for marker in _ACTIONABLE_MARKERS):
            score += 0.1
        numbers = _NUMBER.findall(answer)
        if numbers:
            score += min(0.1, 0.05 * len(numbers))
        if score < 0.5:
            issues.append("Response offers little actionable detail")
        return _clamp(score)

    def _score_consistency(self, answer: str, issues: list[str]) -> float:
        lowered = answer.lower()
        found = 0
        for left, right in _CONTRADICTION_PAIRS + _HARD_CONTRADICTIONS:
            if re.search(rf"\b{left}\b", lowered) and re.search(rf"\b{right}\b", lowered):
                issues.append(f"Potential contradiction: '{left}' and '{right}'")
                found += 1
        sentences = [sentence.strip().lower() for sentence in _SENTENCE_SPLIT.split(answer) if sentence.strip()]
        if len(sentences) != len(set(sentences)):
            issues.append("Detected repetitive content")
            found += 1
        for sentence in sentences:
            if sentence.rstrip(".!?") in {"this", "that", "this is it", "that is it"}:
                issues.append("Dangling statement without a referent")
                found += 1
                break
        return _clamp(1.0 - _CONSISTENCY_ISSUE_COST * found)

    def _score_hallucination_risk(self, answer: str, issues: list[str]) -> float:
        lowered = answer.lower()
        high = sum(
            1
            for left, right in _HARD_CONTRADICTIONS
            if re.search(rf"\b{left}\b", lowered) and re.search(rf"\b{right}\b", lowered)
        )
        medium = 0
        if "the only way" in lowered:
            medium += 1
        if not _ATTRIBUTION.search(lowered):
            medium += sum(1 for claim in _UNSUPPORTED_CLAIMS if claim in lowered)
        low = sum(1 for pattern in _OVERCONFIDENT if pattern in lowered)
        risk = _clamp(_HIGH_WEIGHT * high + _MEDIUM_WEIGHT * medium + _LOW_WEIGHT * low)
        if risk > 0:
            issues.append(f"Hallucination signals (high={high}, medium={medium}, low={low})")
        return risk

    def _score_code_validity(self, answer: str, issues: list[str]) -> float | None:
        blocks = extract_code(answer)
        if not blocks and answer.count("```") == 0:
            return None
        problems = 0
        if answer.count("```") % 2:
            problems += 1
            issues.append("Unclosed code fence")
        for block in blocks:
            if not block.strip():
                problems += 1
                issues.append("Empty code block")
                continue
            stack: list[str] = []
            balanced = True
            for char in block:
                if char in _BRACKETS:
                    stack.append(_BRACKETS[char])
                elif char in _BRACKETS.values():
                    if not stack or stack.pop() != char:
                        balanced = False
                        break
            if not balanced or stack:
                problems += 1
                issues.append("Unbalanced brackets in code")
        return _clamp(1.0 - _CODE_ISSUE_COST * problems)


_DEFICIENCY_NOTES = {
    "clarity": "Improve clarity: use shorter sentences and a clear structure.",
    "relevance": "Answer the original question directly and cover all of its parts.",
    "helpfulness": "Be more helpful: add concrete steps, numbers or an example.",
    "consistency": "Remove contradictory or repeated statements, and use only approved tools.",
    "code_validity": "Fix the code: close every code fence and balance all brackets.",
}


def deficiency_notes(evaluation: QualityEvaluation, *, threshold: float) -> list[str]:
    """Notes for every sub-score below ``threshold`` (and for high hallucination risk)."""
    notes: list[str] = []
    for name, note in _DEFICIENCY_NOTES.items():
        value = getattr(evaluation, name)
        if value is not None and value < threshold:
            notes.append(note)
    if evaluation.hallucination_risk > 1.0 - threshold:
        notes.append("Avoid overconfident or unsupported claims; qualify what you are unsure about.")
    return notes


__all__ = ["QualityEvaluator", "deficiency_notes", "extract_code", "extract_key_terms", "verdict_for"]
