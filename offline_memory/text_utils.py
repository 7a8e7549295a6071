"""
Text normalization helpers shared by capture and recall.

normalize_for_dedupe() output is only ever hashed, never persisted.
"""

import hashlib
import re
import time

# Tags wrapping the context blocks injected before a turn.
SHORT_TERM_TAG = "short-term-memory"
RELEVANT_TAG = "relevant-memories"
CONTEXT_TAGS = (SHORT_TERM_TAG, RELEVANT_TAG)
CONTEXT_MARKERS = tuple(f"<{tag}>" for tag in CONTEXT_TAGS)

ELLIPSIS = "…"

_INJECTED_BLOCK_RE = re.compile(
    "|".join(rf"<{tag}>[\s\S]*?</{tag}>" for tag in CONTEXT_TAGS)
)
_WHITESPACE_RE = re.compile(r"\s+")


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


def normalize_for_dedupe(text: str) -> str:
    """
    Canonicalize text for dedupe hashing.

    Removes previously injected context blocks, collapses whitespace runs,
    trims and lower-cases.
    """
    stripped = _INJECTED_BLOCK_RE.sub(" ", text or "")
    return collapse_whitespace(stripped).lower()


def text_hash(text: str) -> str:
    """40-char hex SHA-1 digest of already-normalized text."""
    return hashlib.sha1(text.encode("utf-8")).hexdigest()


def clip(text: str, max_chars: int) -> str:
    """Cut text to max_chars, appending an ellipsis when something was cut."""
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + ELLIPSIS
