"""
Recall - search dispatch and pre-turn context assembly.

Recaller.recall() picks lexical or hybrid search (through the degradation
guard). RecallAssembler builds the context block injected before a turn:

    <short-term-memory>   recent messages of the same session
    <relevant-memories>   top matches for the prompt

Recall never breaks a turn: any failure means "no context".
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .config import Settings
from .degradation import HybridDegradationGuard
from .exceptions import BackendUnavailable
from .store import FilterOpts, SearchResult, escape_query
from .text_utils import RELEVANT_TAG, SHORT_TERM_TAG, clip, collapse_whitespace

logger = logging.getLogger(__name__)

SHORT_TERM_SNIPPET_CHARS = 300
RELEVANT_SNIPPET_CHARS = 200
SESSION_TAGS = ("user", "assistant")


class Recaller:
    """Runs a memory search in the configured mode."""

    def __init__(self, store, settings: Settings, guard: Optional[HybridDegradationGuard] = None):
        self.store = store
        self.settings = settings
        self.guard = guard or HybridDegradationGuard.from_settings(settings)

    async def recall(
        self,
        query: str,
        limit: Optional[int] = None,
        filter: Optional[FilterOpts] = None,
    ) -> List[SearchResult]:
        cfg = self.settings
        top_k = max(1, min(20, limit if limit is not None else cfg.top_k))
        await self.store.ensure_ready()

        if cfg.mode != "hybrid":
            return (await self.store.lexical_search(query, top_k)).results

        reason = await self.guard.probe(query)
        if reason is not None:
            self.guard.report_degraded(reason)
            return (await self.store.lexical_search(query, top_k)).results

        escaped = escape_query(query)
        try:
            if filter is not None and not filter.is_empty:
                return await self.store.hybrid_search_filtered(
                    escaped,
                    top_k=top_k,
                    candidates=cfg.candidates,
                    semantic_weight=cfg.semantic_weight,
                    filter=filter,
                )
            return await self.store.hybrid_search(
                escaped,
                top_k=top_k,
                candidates=cfg.candidates,
                semantic_weight=cfg.semantic_weight,
            )
        except BackendUnavailable as e:
            self.guard.report_degraded(str(e))
            return (await self.store.lexical_search(query, top_k)).results


def format_session_line(row: Dict[str, Any]) -> Optional[str]:
    """Render one stored message as "[role: X] snippet"; None for empty text."""
    role = "assistant" if row.get("tags") == "assistant" else "user"
    text = collapse_whitespace(str(row.get("text") or ""))
    if not text:
        return None
    return f"[role: {role}] {clip(text, SHORT_TERM_SNIPPET_CHARS)}"


def build_short_term_lines(
    rows_newest_first: List[Dict[str, Any]],
    max_messages: int,
    max_chars: int,
) -> List[str]:
    """
    Walk session rows oldest-first, stopping at the message or character cap.

    A line that would overflow the character budget ends the block; lines are
    never cut in the middle.
    """
    lines: List[str] = []
    chars = 0
    for row in reversed(rows_newest_first):
        if len(lines) >= max_messages or chars >= max_chars:
            break
        line = format_session_line(row)
        if line is None:
            continue
        if chars + len(line) > max_chars:
            break
        lines.append(line)
        chars += len(line)
    return lines


def format_memory_line(item: Dict[str, Any]) -> str:
    """Render one search hit as a bullet with tag/source/date annotations."""
    text = collapse_whitespace(str(item.get("text") or ""))
    snippet = clip(text, RELEVANT_SNIPPET_CHARS)

    tag = str(item.get("tags") or "").strip()
    source = str(item.get("source") or "").strip()
    created_at = item.get("created_at")
    date = ""
    if created_at:
        date = datetime.fromtimestamp(int(created_at) / 1000, tz=timezone.utc).strftime("%Y-%m-%d")

    bits = " ".join(b for b in (
        tag and f"tag:{tag}",
        source and f"src:{source}",
        date and f"date:{date}",
    ) if b)
    return f"- {snippet} ({bits})" if bits else f"- {snippet}"


def wrap_block(tag: str, header: str, lines: List[str]) -> str:
    return f"<{tag}>\n{header}\n" + "\n".join(lines) + f"\n</{tag}>"


class RecallAssembler:
    """Builds the optional context string prepended to the agent's input."""

    def __init__(self, store, settings: Settings, recaller: Recaller):
        self.store = store
        self.settings = settings
        self.recaller = recaller

    async def short_term_block(self, session_id: Optional[str]) -> str:
        if not session_id:
            return ""
        cfg = self.settings
        rows = await self.store.session_history(session_id, SESSION_TAGS, cfg.short_term_scan)
        lines = build_short_term_lines(rows, cfg.short_term_max_messages, cfg.short_term_max_chars)
        if not lines:
            return ""
        return wrap_block(SHORT_TERM_TAG, "Recent messages (same session):", lines)

    async def long_term_block(self, prompt: str) -> str:
        cfg = self.settings
        if len(prompt) < cfg.min_prompt_chars:
            return ""
        results = await self.recaller.recall(prompt, cfg.recall_inject_count)
        results = results[:cfg.recall_inject_count]
        if not results:
            return ""
        logger.info(f"Injecting memories (n={len(results)})")
        return wrap_block(
            RELEVANT_TAG,
            "The following memories may be relevant to this conversation:",
            [format_memory_line(r.item) for r in results],
        )

    async def assemble(self, prompt: str, session_id: Optional[str] = None) -> Optional[str]:
        """Return the context block, or None when nothing applies or recall failed."""
        prompt = (prompt or "").strip()
        try:
            await self.store.ensure_ready()
            blocks = [
                await self.short_term_block(session_id),
                await self.long_term_block(prompt),
            ]
        except Exception as e:
            logger.warning(f"Auto-recall failed (non-fatal): {e}")
            return None

        blocks = [b for b in blocks if b]
        if not blocks:
            return None
        return "\n\n".join(blocks)
