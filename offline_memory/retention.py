"""
Retention / GC policy.

An item is eligible when it is older than the retention horizon and its tag is
not protected. Protected tags always win, whatever the age. Items without a tag
are never implicitly protected.
"""

import logging
from dataclasses import dataclass, field, asdict
from typing import Any, Callable, Dict, Iterable, List, Optional

from .config import DAY_MS
from .text_utils import now_ms

logger = logging.getLogger(__name__)

DRY_RUN_SAMPLE = 20


@dataclass
class RetentionPolicy:
    retention_days: Optional[int]
    protected_tags: List[str] = field(default_factory=list)

    def cutoff_ms(self, now: int) -> int:
        return now - int(self.retention_days) * DAY_MS


@dataclass
class GCResult:
    skipped: bool = False
    reason: Optional[str] = None
    dry_run: bool = True
    cutoff: Optional[int] = None
    retention_days: Optional[int] = None
    protected_tags: List[str] = field(default_factory=list)
    candidates: int = 0
    sample: List[Dict[str, Any]] = field(default_factory=list)
    deleted_items: int = 0
    deleted_embeddings: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


async def collect_garbage(
    store,
    retention_days: Optional[int],
    protected_tags: Iterable[str],
    scan_limit: int = 1000,
    dry_run: bool = True,
    clock: Callable[[], int] = now_ms,
) -> GCResult:
    """
    Select (dry run) or delete items past the retention horizon.

    Selection is oldest-first and capped at scan_limit per pass. Deletion of
    items and their embeddings is one transaction; the VACUUM afterwards is
    best effort.
    """
    protected = [str(tag) for tag in protected_tags]
    if retention_days is None:
        return GCResult(skipped=True, reason="retention_days not set", protected_tags=protected)

    policy = RetentionPolicy(retention_days=int(retention_days), protected_tags=protected)
    cutoff = policy.cutoff_ms(clock())
    limit = max(1, min(5000, int(scan_limit)))

    await store.ensure_ready()
    rows = await store.gc_candidates(cutoff, protected, limit)
    result = GCResult(
        dry_run=dry_run,
        cutoff=cutoff,
        retention_days=policy.retention_days,
        protected_tags=protected,
        candidates=len(rows),
    )

    if dry_run:
        result.sample = rows[:DRY_RUN_SAMPLE]
        logger.info(f"GC dry-run: {len(rows)} candidate(s) (retention_days={policy.retention_days})")
        return result

    result.deleted_items, result.deleted_embeddings = await store.delete_items([r["id"] for r in rows])
    logger.info(f"GC deleted items={result.deleted_items}, embeddings={result.deleted_embeddings}")

    if result.deleted_items:
        try:
            await store.vacuum()
        except Exception as e:
            logger.debug(f"VACUUM after GC failed (non-fatal): {e}")

    return result
