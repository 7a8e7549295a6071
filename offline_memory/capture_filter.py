"""
Capture Filter - decides which conversation messages are worth storing.

Two independent stages:
- sanitize_captures(): hygiene, always first. Drops empty messages and any
  message carrying our own injected context (prevents recall feedback loops).
- should_skip_capture(): noise heuristic. Exact-match acknowledgement list,
  never substring matching, so substantive text is not dropped.
"""

from dataclasses import dataclass
from typing import Iterable, List

from .text_utils import CONTEXT_MARKERS

# Acknowledgement-only replies, compared case-insensitively against the whole text
ACK_TOKENS = frozenset({
    "ok", "ok.", "okay", "kk", "merci", "thanks", "thx", "oui", "non", "yep", "nope",
    "\U0001F44D",  # thumbs up
    "\U0001F44C",  # ok hand
    "✅",      # check mark
})


@dataclass(frozen=True)
class Capture:
    """A single role-tagged text candidate extracted from a turn."""
    role: str
    text: str


def _has_letter_or_digit(text: str) -> bool:
    return any(ch.isalnum() for ch in text)


def should_skip_capture(text: str, min_chars: int) -> bool:
    """Return True when text is noise that should not be persisted."""
    t = (text or "").strip()
    if not t:
        return True
    if min_chars > 0 and len(t) < min_chars:
        return True
    # Pure punctuation / emoji
    if not _has_letter_or_digit(t):
        return True
    if t.casefold() in ACK_TOKENS:
        return True
    return False


def sanitize_captures(captures: Iterable[Capture]) -> List[Capture]:
    """Trim texts, drop empties and drop self-injected context. Order preserved."""
    cleaned = []
    for capture in captures:
        text = str(capture.text or "").strip()
        if not text:
            continue
        if any(marker in text for marker in CONTEXT_MARKERS):
            continue
        cleaned.append(Capture(role=capture.role, text=text))
    return cleaned
