"""
Tool operations exposed to the agent: store, recall, forget, stats, gc.

Parameters arrive as loose dicts (camelCase from the host, snake_case from the
CLI). They are validated with pydantic; malformed input raises ValidationError
before any store access.
"""

import logging
from typing import Any, Dict, List, Optional

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from .config import Settings
from .exceptions import ValidationError
from .recall import Recaller
from .retention import collect_garbage
from .store import FilterOpts

logger = logging.getLogger(__name__)

RECALL_PREVIEW_ITEMS = 5
RECALL_PREVIEW_CHARS = 160


class _Params(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class StoreParams(_Params):
    text: str = Field(min_length=1)
    importance: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    category: Optional[str] = None
    entity_id: Optional[str] = Field(default=None, alias="entityId")
    process_id: Optional[str] = Field(default=None, alias="processId")
    session_id: Optional[str] = Field(default=None, alias="sessionId")


class RecallParams(_Params):
    query: str = Field(min_length=1)
    limit: Optional[int] = Field(default=None, ge=1, le=20)
    entity_id: Optional[str] = Field(default=None, alias="entityId")
    process_id: Optional[str] = Field(default=None, alias="processId")
    session_id: Optional[str] = Field(default=None, alias="sessionId")

    def filter(self) -> Optional[FilterOpts]:
        opts = FilterOpts(self.entity_id, self.process_id, self.session_id)
        return None if opts.is_empty else opts


class ForgetParams(_Params):
    memory_id: Optional[str] = Field(default=None, alias="memoryId")
    query: Optional[str] = None


class StatsParams(_Params):
    include_tags: bool = Field(default=True, alias="includeTags")
    top_tags: int = Field(default=10, ge=1, le=50, alias="topTags")


class GCParams(_Params):
    dry_run: bool = Field(default=True, alias="dryRun")
    retention_days: Optional[int] = Field(default=None, ge=1, le=3650, alias="retentionDays")
    protect_tags: Optional[List[str]] = Field(default=None, alias="protectTags")
    limit: Optional[int] = Field(default=None, ge=1, le=5000)


def parse_params(model: type, params: Optional[Dict[str, Any]]):
    """Validate raw tool parameters, converting pydantic errors to ValidationError."""
    try:
        return model.model_validate(params or {})
    except pydantic.ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'params'}: {err['msg']}"
            for err in e.errors()
        )
        raise ValidationError(problems) from e


def tool_result(message: str, **details: Any) -> Dict[str, Any]:
    return {
        "content": [{"type": "text", "text": message}],
        "details": {"ok": True, **details},
    }


def result_to_dict(result) -> Dict[str, Any]:
    item = result.item
    return {
        "id": item.get("id"),
        "created_at": item.get("created_at"),
        "title": item.get("title"),
        "text": item.get("text"),
        "tags": item.get("tags"),
        "source": item.get("source"),
        "source_id": item.get("source_id"),
        "entity_id": item.get("entity_id"),
        "process_id": item.get("process_id"),
        "session_id": item.get("session_id"),
        "score": result.score,
        "lexical_score": result.lexical_score,
        "semantic_score": result.semantic_score,
    }


class MemoryTools:
    """Implements the agent-callable memory tools on top of one store."""

    def __init__(self, store, settings: Settings, recaller: Recaller):
        self.store = store
        self.settings = settings
        self.recaller = recaller

    async def memory_store(self, params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        p = parse_params(StoreParams, params)
        await self.store.ensure_ready()
        item = await self.store.insert_item(
            text=p.text,
            tags=p.category,
            source=self.settings.capture_source,
            meta={"importance": p.importance, "category": p.category or "other"},
            entity_id=p.entity_id,
            process_id=p.process_id or self.settings.process_id,
            session_id=p.session_id,
        )
        return tool_result(
            f"Stored memory ({item['id']})",
            id=item["id"],
            entity_id=item["entity_id"],
            process_id=item["process_id"],
            session_id=item["session_id"],
        )

    async def memory_recall(self, params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        p = parse_params(RecallParams, params)
        filter = p.filter()
        results = await self.recaller.recall(p.query, p.limit, filter)
        items = [result_to_dict(r) for r in results]

        if not items:
            message = "No relevant memories found."
        else:
            preview = "\n".join(
                f"{i}. {str(it['text'] or '')[:RECALL_PREVIEW_CHARS]}"
                for i, it in enumerate(items[:RECALL_PREVIEW_ITEMS], start=1)
            )
            message = f"Found {len(items)} memories:\n{preview}"

        return tool_result(
            message,
            query=p.query,
            items=items,
            filter=filter.to_dict() if filter else None,
        )

    async def memory_forget(self, params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        p = parse_params(ForgetParams, params)
        if not p.memory_id and not (p.query and p.query.strip()):
            raise ValidationError("Provide memoryId or query")

        await self.store.ensure_ready()
        delete_id = p.memory_id
        if not delete_id:
            results = await self.recaller.recall(p.query, 5)
            if not results:
                return tool_result("No matches.", deleted=0)
            delete_id = results[0].item["id"]

        deleted = await self.store.delete_item(delete_id)
        message = f"Deleted memory {delete_id}" if deleted else f"No deletion for {delete_id}"
        return tool_result(message, deleted=deleted, id=delete_id)

    async def memory_stats(self, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        p = parse_params(StatsParams, params)
        await self.store.ensure_ready()
        stats = await self.store.stats(include_tags=p.include_tags, top_tags=p.top_tags)
        stats["retention"] = {
            "retention_days": self.settings.retention_days,
            "protected_tags": list(self.settings.retention_protected_tags),
        }
        message = (
            f"items={stats['items']}, embeddings={stats['embeddings']}, "
            f"db_bytes={stats['db_bytes'] if stats['db_bytes'] is not None else '?'}, "
            f"entities={len(stats['entities'])}"
        )
        return tool_result(message, **stats)

    async def memory_gc(self, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        p = parse_params(GCParams, params)
        days = p.retention_days if p.retention_days is not None else self.settings.retention_days
        protected = p.protect_tags if p.protect_tags is not None else self.settings.retention_protected_tags

        result = await collect_garbage(
            self.store,
            retention_days=days,
            protected_tags=protected,
            scan_limit=p.limit if p.limit is not None else self.settings.gc_scan_limit,
            dry_run=p.dry_run,
        )
        if result.skipped:
            message = "GC skipped (retention_days not set)."
        elif result.dry_run:
            message = f"GC dry-run: candidates={result.candidates} (retention_days={result.retention_days})"
        else:
            message = f"GC deleted items={result.deleted_items}, embeddings={result.deleted_embeddings}"
        return tool_result(message, **result.to_dict())
