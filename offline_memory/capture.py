"""
Capture Pipeline - persists the worthwhile part of a completed turn.

extract -> sanitize -> cap per turn -> dedupe window -> noise filter
-> normalize + hash -> clip -> insert

A failing insert skips that message only. A failing pipeline (store
unreachable) is logged and reported, never raised into the host.
"""

import logging
from dataclasses import dataclass, field, asdict
from typing import Any, Callable, List, Optional

from .capture_filter import Capture, sanitize_captures, should_skip_capture
from .config import Settings
from .dedupe import DedupeWindow
from .exceptions import OfflineMemoryError, PartialFailure
from .messages import extract_captures
from .text_utils import clip, normalize_for_dedupe, now_ms, text_hash

logger = logging.getLogger(__name__)


@dataclass
class CaptureReport:
    """Outcome of one capture pass."""
    candidates: int = 0
    stored: int = 0
    skipped_noise: int = 0
    skipped_duplicate: int = 0
    failed: int = 0
    dropped_over_cap: int = 0
    stored_ids: List[str] = field(default_factory=list)
    error: Optional[str] = None

    def raise_for_failures(self) -> None:
        if self.failed:
            raise PartialFailure(stored=self.stored, failed=self.failed)

    def to_dict(self) -> dict:
        return asdict(self)


class CapturePipeline:
    """Turns a finished turn's messages into deduplicated stored items."""

    def __init__(self, store, settings: Settings, clock: Callable[[], int] = now_ms):
        self.store = store
        self.settings = settings
        self.clock = clock

    def entity_for(self, role: str) -> str:
        if role == "user":
            return self.settings.user_entity_id
        return self.settings.agent_entity_id

    def prepare(self, raw_messages: List[Any]) -> List[Capture]:
        """Extraction and hygiene only, no store access."""
        return sanitize_captures(extract_captures(raw_messages))

    async def run(
        self,
        raw_messages: List[Any],
        session_key: Optional[str] = None,
        channel: Optional[str] = None,
    ) -> CaptureReport:
        report = CaptureReport()
        try:
            await self._run(report, raw_messages, session_key, channel)
        except (OfflineMemoryError, OSError) as e:
            report.error = str(e)
            logger.error(f"Capture failed: {e}", exc_info=True)
        return report

    async def _run(
        self,
        report: CaptureReport,
        raw_messages: List[Any],
        session_key: Optional[str],
        channel: Optional[str],
    ) -> None:
        cfg = self.settings
        cleaned = self.prepare(raw_messages)
        if not cleaned:
            return

        batch = cleaned[:cfg.capture_max_per_turn]
        report.candidates = len(batch)
        report.dropped_over_cap = len(cleaned) - len(batch)

        await self.store.ensure_ready()
        now = self.clock()
        window = await DedupeWindow.load(
            self.store, now, cfg.capture_dedupe_window_ms, cfg.capture_dedupe_max_check
        )

        for capture in batch:
            if should_skip_capture(capture.text, cfg.capture_min_chars):
                report.skipped_noise += 1
                continue

            h = text_hash(normalize_for_dedupe(capture.text))
            if window.check_and_add(h):
                report.skipped_duplicate += 1
                continue

            meta = {
                "role": capture.role,
                "sessionKey": session_key,
                "channel": channel,
                "ts": now,
                "h": h,
            }
            try:
                item = await self.store.insert_item(
                    text=clip(capture.text, cfg.capture_max_chars),
                    tags=capture.role,
                    source=cfg.capture_source,
                    meta=meta,
                    entity_id=self.entity_for(capture.role),
                    process_id=cfg.process_id,
                    session_id=session_key,
                    content_hash=h,
                )
            except OfflineMemoryError as e:
                report.failed += 1
                logger.warning(f"Capture insert failed, continuing with the rest: {e}")
                continue

            report.stored += 1
            report.stored_ids.append(item["id"])

        if report.stored > 0:
            logger.info(f"Auto-captured {report.stored} message(s)")
        if report.failed:
            logger.warning(str(PartialFailure(stored=report.stored, failed=report.failed)))
