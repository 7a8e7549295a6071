"""
Dedupe Index - the recent window of content hashes used to suppress repeats.

The window is rebuilt from the store on every turn, bounded by a time cutoff
and by a maximum number of scanned rows (whichever is hit first). It is then
extended in memory while the turn is processed, so duplicates inside one
batch are caught too.

Not transactionally isolated: two concurrent turns may both pass the check for
the same text. Dedupe is noise reduction, not a uniqueness guarantee.
"""

import logging
from typing import Iterable, Optional, Set

logger = logging.getLogger(__name__)


class DedupeWindow:
    """Set of content hashes seen within the window. Disabled when window_ms == 0."""

    def __init__(self, window_ms: int, hashes: Optional[Iterable[str]] = None):
        self.window_ms = window_ms
        self._hashes: Set[str] = {h.lower() for h in (hashes or ())}

    @property
    def enabled(self) -> bool:
        return self.window_ms > 0

    @classmethod
    async def load(cls, store, now_ms: int, window_ms: int, max_check: int) -> "DedupeWindow":
        """Materialize the window from the store's most recent rows."""
        if window_ms <= 0:
            return cls(window_ms)
        hashes = await store.recent_hashes(now_ms - window_ms, max_check)
        logger.debug(f"Dedupe window loaded: {len(hashes)} hash(es) from last {window_ms}ms")
        return cls(window_ms, hashes)

    def seen(self, content_hash: str) -> bool:
        return self.enabled and content_hash.lower() in self._hashes

    def add(self, content_hash: str) -> None:
        self._hashes.add(content_hash.lower())

    def check_and_add(self, content_hash: str) -> bool:
        """Return True if the hash is a duplicate; otherwise record it."""
        if self.seen(content_hash):
            return True
        self.add(content_hash)
        return False

    def __len__(self) -> int:
        return len(self._hashes)

    def __contains__(self, content_hash: str) -> bool:
        return self.seen(content_hash)
