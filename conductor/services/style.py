from __future__ import annotations

import re
from typing import Callable

from ..core.config import Settings, get_settings
from ..core.logging import get_logger
from ..core.metrics import record_style_failure
from ..orchestration.enums import Tone

logger = get_logger(name=__name__)

# Fenced blocks and inline code pass through untouched.
_PROTECTED = re.compile(r"(```.*?```|`[^`\n]+`)", re.DOTALL)
_TRAILING_SPACE = re.compile(r"[ \t]+$", re.MULTILINE)
_EXTRA_BLANK_LINES = re.compile(r"\n{3,}")
_FILLER_OPENERS = re.compile(
    r"^(?:as an ai(?: language model)?,?\s*|certainly!\s*|sure!\s*|of course!\s*|great question!\s*)",
    re.IGNORECASE,
)

# "it's" before a participle stands for "it has".
_IT_HAS = re.compile(r"\bit's(?=\s+(?:been|got|gotten)\b)", re.IGNORECASE)

_CONTRACTIONS: tuple[tuple[str, str], ...] = (
    ("cannot", "can't"),
    ("do not", "don't"),
    ("does not", "doesn't"),
    ("did not", "didn't"),
    ("will not", "won't"),
    ("is not", "isn't"),
    ("are not", "aren't"),
    ("should not", "shouldn't"),
    ("would not", "wouldn't"),
    ("it is", "it's"),
    ("you are", "you're"),
)


def _case_like(source: str, replacement: str) -> str:
    if source[:1].isupper():
        return replacement[:1].upper() + replacement[1:]
    return replacement


def _substitute(text: str, pairs: tuple[tuple[str, str], ...]) -> str:
    for source, target in pairs:
        pattern = re.compile(rf"\b{re.escape(source)}\b", re.IGNORECASE)
        text = pattern.sub(lambda match, target=target: _case_like(match.group(0), target), text)
    return text


def _contract(text: str) -> str:
    return _substitute(text, _CONTRACTIONS)


def _expand(text: str) -> str:
    text = _IT_HAS.sub(lambda match: _case_like(match.group(0), "it has"), text)
    text = _substitute(text, tuple((short, long) for long, short in _CONTRACTIONS))
    return _FILLER_OPENERS.sub("", text)


_TONE_TRANSFORMS: dict[Tone, Callable[[str], str] | None] = {
    Tone.NEUTRAL: None,
    Tone.CASUAL: _contract,
    Tone.FORMAL: _expand,
}


class StyleFormatter:
    """Deterministic phrasing pass applied to the accepted answer.

    Only whitespace and phrasing change; words, numbers and code are kept.
    Any failure returns the input unchanged.
    """

    def __init__(self, *, tone: Tone = Tone.NEUTRAL) -> None:
        self._tone = tone

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "StyleFormatter":
        settings = settings or get_settings()
        return cls(tone=Tone(settings.style.tone))

    @property
    def tone(self) -> Tone:
        return self._tone

    def format(self, answer: str) -> str:
        try:
            return self._apply(answer)
        except Exception:
            record_style_failure()
            logger.warning("style_transform_failed", tone=self._tone.value, exc_info=True)
            return answer

    def _apply(self, answer: str) -> str:
        transform = _TONE_TRANSFORMS[self._tone]
        parts = _PROTECTED.split(answer)
        formatted: list[str] = []
        for index, part in enumerate(parts):
            # split() with one capture group puts protected spans at odd indexes.
            if index % 2:
                formatted.append(part)
                continue
            if transform is not None:
                part = transform(part)
            part = _TRAILING_SPACE.sub("", part)
            formatted.append(_EXTRA_BLANK_LINES.sub("\n\n", part))
        return "".join(formatted).strip()


__all__ = ["StyleFormatter"]
