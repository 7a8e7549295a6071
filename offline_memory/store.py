"""
Memory Store - SQLite implementation of the store contract used by capture,
recall and retention.

Operations:
- open_store / ensure schema / migrations (via DatabaseManager.init_db)
- insert_item
- lexical_search (FTS5 bm25, LIKE fallback)
- hybrid_search / hybrid_search_filtered (lexical pool re-ranked by embeddings)
- recent_hashes, session_history (pipeline helpers)
- gc_candidates, delete_items (transactional), vacuum, delete_item, stats

Every SQL failure is reported as StoreError; embedding failures as
BackendUnavailable.
"""

import logging
import os
import re
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import select, delete, func, or_, text
from sqlalchemy.exc import SQLAlchemyError

from .database import DatabaseManager
from .exceptions import BackendUnavailable, StoreError
from .models import Item, Embedding
from .text_utils import now_ms
from . import vectors

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)
_ESCAPED_TOKEN_RE = re.compile(r'"([^"]+)"')


@dataclass
class FilterOpts:
    """Equality filters for filtered hybrid search. None means unfiltered."""
    entity_id: Optional[str] = None
    process_id: Optional[str] = None
    session_id: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not (self.entity_id or self.process_id or self.session_id)

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "entity_id": self.entity_id,
            "process_id": self.process_id,
            "session_id": self.session_id,
        }


@dataclass
class SearchResult:
    item: Dict[str, Any]
    score: float
    lexical_score: Optional[float] = None
    semantic_score: Optional[float] = None


@dataclass
class LexicalSearch:
    results: List[SearchResult] = field(default_factory=list)
    escaped_query: str = ""


def escape_query(query: str) -> str:
    """Turn free text into a safe FTS5 expression: quoted tokens joined by OR."""
    tokens = _TOKEN_RE.findall(query or "")
    return " OR ".join(f'"{token}"' for token in tokens)


def _normalize_scores(raw: Sequence[float]) -> List[float]:
    """Min-max scale to [0, 1]; equal scores all map to 1.0."""
    if not raw:
        return []
    low, high = min(raw), max(raw)
    if high == low:
        return [1.0 for _ in raw]
    return [(value - low) / (high - low) for value in raw]


class MemoryStore:
    """Store handle bound to one SQLite file."""

    def __init__(self, db: DatabaseManager, embedder: Optional[vectors.OllamaEmbedder] = None):
        self.db = db
        self.embedder = embedder
        self._fts: Optional[bool] = None

    @asynccontextmanager
    async def _errors(self, action: str):
        try:
            yield
        except SQLAlchemyError as e:
            raise StoreError(f"{action} failed: {e}") from e

    async def ensure_ready(self) -> None:
        await self.db.init_db()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def insert_item(
        self,
        text: str,
        tags: Optional[str] = None,
        source: Optional[str] = None,
        meta: Optional[Dict[str, Any]] = None,
        entity_id: Optional[str] = None,
        process_id: Optional[str] = None,
        session_id: Optional[str] = None,
        content_hash: Optional[str] = None,
        title: Optional[str] = None,
        source_id: Optional[str] = None,
        item_id: Optional[str] = None,
        created_at: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Insert one item and return it with its assigned id and created_at."""
        item = Item(
            id=item_id or str(uuid.uuid4()),
            created_at=created_at if created_at is not None else now_ms(),
            title=title,
            text=text,
            tags=tags,
            source=source,
            source_id=source_id,
            meta=meta or {},
            entity_id=entity_id,
            process_id=process_id,
            session_id=session_id,
            content_hash=content_hash,
        )
        async with self._errors("insert"):
            async with self.db.get_session() as session:
                session.add(item)
        return item.to_dict()

    async def delete_item(self, item_id: str) -> int:
        """Delete one item (and its embeddings). Returns rows deleted."""
        deleted_items, _ = await self.delete_items([item_id])
        return deleted_items

    async def delete_items(self, ids: Sequence[str]) -> Tuple[int, int]:
        """
        Delete items and their embeddings in a single transaction.

        Returns:
            (deleted_items, deleted_embeddings)
        """
        ids = list(ids)
        if not ids:
            return 0, 0

        async with self._errors("delete"):
            async with self.db.get_session() as session:
                emb_result = await session.execute(
                    delete(Embedding).where(Embedding.item_id.in_(ids))
                )
                item_result = await session.execute(
                    delete(Item).where(Item.id.in_(ids))
                )
                return int(item_result.rowcount or 0), int(emb_result.rowcount or 0)

    async def vacuum(self) -> None:
        async with self._errors("vacuum"):
            await self.db.vacuum()

    # ------------------------------------------------------------------
    # Pipeline reads
    # ------------------------------------------------------------------

    async def recent_hashes(self, since_ms: int, limit: int) -> List[str]:
        """
        Content hashes of the most recent items created at or after since_ms.

        Scans at most `limit` rows, newest first. Rows written before the
        content_hash column existed fall back to meta["h"].
        """
        async with self._errors("dedupe scan"):
            async with self.db.get_session() as session:
                result = await session.execute(
                    select(Item.content_hash, Item.meta)
                    .where(Item.created_at >= since_ms)
                    .order_by(Item.created_at.desc())
                    .limit(limit)
                )
                rows = result.all()

        hashes = []
        for content_hash, meta in rows:
            value = content_hash
            if not value and isinstance(meta, dict):
                value = meta.get("h")
            if isinstance(value, str) and value:
                hashes.append(value.lower())
        return hashes

    async def session_history(
        self,
        session_id: str,
        tags: Iterable[str] = ("user", "assistant"),
        limit: int = 50,
    ) -> List[Dict[str, Any]]:
        """Most recent items of one session, newest first."""
        async with self._errors("session history"):
            async with self.db.get_session() as session:
                result = await session.execute(
                    select(Item)
                    .where(Item.session_id == session_id, Item.tags.in_(list(tags)))
                    .order_by(Item.created_at.desc())
                    .limit(limit)
                )
                return [item.to_dict() for item in result.scalars().all()]

    async def gc_candidates(
        self,
        cutoff_ms: int,
        protected_tags: Sequence[str],
        limit: int,
    ) -> List[Dict[str, Any]]:
        """
        Items older than cutoff_ms whose tag is not protected, oldest first.

        NULL tags are always eligible.
        """
        query = select(Item.id, Item.created_at, Item.tags).where(Item.created_at < cutoff_ms)
        if protected_tags:
            query = query.where(or_(Item.tags.is_(None), Item.tags.not_in(list(protected_tags))))
        query = query.order_by(Item.created_at.asc()).limit(limit)

        async with self._errors("gc scan"):
            async with self.db.get_session() as session:
                result = await session.execute(query)
                return [
                    {"id": row.id, "created_at": row.created_at, "tags": row.tags}
                    for row in result.all()
                ]

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def _fts_enabled(self, session) -> bool:
        if self._fts is None:
            result = await session.execute(text(
                "SELECT name FROM sqlite_master WHERE type='table' AND name='items_fts'"
            ))
            self._fts = result.first() is not None
        return self._fts

    @staticmethod
    def _filter_clauses(filter: Optional[FilterOpts]) -> list:
        clauses = []
        if filter is None:
            return clauses
        if filter.entity_id:
            clauses.append(Item.entity_id == filter.entity_id)
        if filter.process_id:
            clauses.append(Item.process_id == filter.process_id)
        if filter.session_id:
            clauses.append(Item.session_id == filter.session_id)
        return clauses

    async def _match(
        self,
        escaped_query: str,
        limit: int,
        filter: Optional[FilterOpts] = None,
    ) -> List[SearchResult]:
        """Lexical match for an already-escaped query, best first."""
        if not escaped_query:
            return []

        async with self._errors("lexical search"):
            async with self.db.get_session() as session:
                if await self._fts_enabled(session):
                    sql = (
                        "SELECT items.id AS id, bm25(items_fts) AS bm25_score "
                        "FROM items_fts JOIN items ON items.rowid = items_fts.rowid "
                        "WHERE items_fts MATCH :q"
                    )
                    params: Dict[str, Any] = {"q": escaped_query, "limit": limit}
                    for column, value in (filter.to_dict() if filter else {}).items():
                        if value:
                            sql += f" AND items.{column} = :{column}"
                            params[column] = value
                    sql += " ORDER BY bm25_score LIMIT :limit"

                    ranked = (await session.execute(text(sql), params)).all()
                    if not ranked:
                        return []
                    loaded = await session.execute(
                        select(Item).where(Item.id.in_([row.id for row in ranked]))
                    )
                    by_id = {item.id: item for item in loaded.scalars().all()}
                    # bm25: lower is better
                    return [
                        SearchResult(item=by_id[row.id].to_dict(), score=-float(row.bm25_score),
                                     lexical_score=-float(row.bm25_score))
                        for row in ranked if row.id in by_id
                    ]

                tokens = [t.lower() for t in _ESCAPED_TOKEN_RE.findall(escaped_query)]
                if not tokens:
                    return []
                like = [Item.text.icontains(token, autoescape=True) for token in tokens]
                result = await session.execute(
                    select(Item)
                    .where(or_(*like), *self._filter_clauses(filter))
                    .order_by(Item.created_at.desc())
                    .limit(max(limit * 4, limit))
                )
                scored = []
                for item in result.scalars().all():
                    lowered = (item.text or "").lower()
                    hits = sum(1 for token in tokens if token in lowered)
                    score = hits / len(tokens)
                    scored.append(SearchResult(item=item.to_dict(), score=score, lexical_score=score))
                scored.sort(key=lambda r: r.score, reverse=True)
                return scored[:limit]

    async def lexical_search(self, query: str, limit: int) -> LexicalSearch:
        escaped = escape_query(query)
        return LexicalSearch(results=await self._match(escaped, limit), escaped_query=escaped)

    async def _item_vectors(self, items: List[Dict[str, Any]]) -> Dict[str, List[float]]:
        """Cached embeddings for items, computing and caching the missing ones."""
        model = self.embedder.model
        ids = [item["id"] for item in items]

        async with self._errors("embedding lookup"):
            async with self.db.get_session() as session:
                result = await session.execute(
                    select(Embedding.item_id, Embedding.vector)
                    .where(Embedding.item_id.in_(ids), Embedding.model == model)
                )
                cached = {item_id: vectors.decode(blob) for item_id, blob in result.all()}

        missing = [item for item in items if not cached.get(item["id"])]
        if missing:
            fresh = await self.embedder.embed_many([item["text"] for item in missing])
            for item, vector in zip(missing, fresh):
                cached[item["id"]] = vector
            try:
                async with self.db.get_session() as session:
                    for item, vector in zip(missing, fresh):
                        await session.merge(Embedding(
                            item_id=item["id"],
                            model=model,
                            dim=len(vector),
                            vector=vectors.encode(vector),
                        ))
            except SQLAlchemyError as e:
                logger.debug(f"Embedding cache write failed (non-fatal): {e}")
        return cached

    async def hybrid_search(
        self,
        escaped_query: str,
        top_k: int,
        candidates: int,
        semantic_weight: float,
        filter: Optional[FilterOpts] = None,
    ) -> List[SearchResult]:
        """
        Re-rank the lexical candidate pool by embedding similarity.

        final = (1 - w) * lexical + w * semantic, both scaled to [0, 1].
        """
        if self.embedder is None:
            raise BackendUnavailable("no embedding backend configured")

        pool = await self._match(escaped_query, max(candidates, top_k), filter)
        if not pool:
            return []

        query_text = " ".join(_ESCAPED_TOKEN_RE.findall(escaped_query))
        query_vector = await self.embedder.embed(query_text)
        item_vectors = await self._item_vectors([r.item for r in pool])

        lexical = _normalize_scores([r.lexical_score or 0.0 for r in pool])
        results = []
        for result, lex in zip(pool, lexical):
            semantic = vectors.cosine_similarity(query_vector, item_vectors.get(result.item["id"]) or [])
            results.append(SearchResult(
                item=result.item,
                score=(1.0 - semantic_weight) * lex + semantic_weight * semantic,
                lexical_score=lex,
                semantic_score=semantic,
            ))

        results.sort(key=lambda r: r.score, reverse=True)
        return results[:top_k]

    async def hybrid_search_filtered(
        self,
        escaped_query: str,
        top_k: int,
        candidates: int,
        semantic_weight: float,
        filter: FilterOpts,
    ) -> List[SearchResult]:
        return await self.hybrid_search(escaped_query, top_k, candidates, semantic_weight, filter=filter)

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    async def stats(self, include_tags: bool = True, top_tags: int = 10) -> Dict[str, Any]:
        async with self._errors("stats"):
            async with self.db.get_session() as session:
                items = (await session.execute(select(func.count()).select_from(Item))).scalar() or 0
                embeddings = (await session.execute(select(func.count()).select_from(Embedding))).scalar() or 0
                low, high = (await session.execute(
                    select(func.min(Item.created_at), func.max(Item.created_at))
                )).one()

                tags = None
                if include_tags:
                    count = func.count().label("c")
                    rows = (await session.execute(
                        select(Item.tags, count).group_by(Item.tags).order_by(count.desc()).limit(top_tags)
                    )).all()
                    tags = [{"tag": tag, "count": int(c)} for tag, c in rows]

                entities = (await session.execute(
                    select(Item.entity_id).where(Item.entity_id.is_not(None)).distinct()
                )).scalars().all()

        try:
            db_bytes: Optional[int] = os.path.getsize(self.db.db_path)
        except OSError:
            db_bytes = None

        return {
            "db_path": str(self.db.db_path),
            "db_bytes": db_bytes,
            "items": int(items),
            "embeddings": int(embeddings),
            "created_at": {"min": low, "max": high},
            "tags": tags,
            "entities": list(entities),
        }


async def open_store(db_path: str, embedder: Optional[vectors.OllamaEmbedder] = None) -> MemoryStore:
    """Open the store at db_path, creating and migrating the schema as needed."""
    store = MemoryStore(DatabaseManager(db_path), embedder=embedder)
    await store.ensure_ready()
    return store
