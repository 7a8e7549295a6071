"""Tests for the SQLite memory store."""

import os

import pytest

from offline_memory.exceptions import BackendUnavailable
from offline_memory.models import Embedding
from offline_memory.store import FilterOpts, escape_query, open_store
from offline_memory.text_utils import now_ms
from offline_memory import vectors


class TestEscapeQuery:

    def test_quotes_tokens_joined_by_or(self):
        """Query tokens should be quoted and joined with OR."""
        assert escape_query("dark mode, please!") == '"dark" OR "mode" OR "please"'

    def test_operators_are_neutralized(self):
        """FTS operators in a query should be neutralized."""
        escaped = escape_query('foo AND "bar" -baz (qux*)')
        assert escaped == '"foo" OR "AND" OR "bar" OR "baz" OR "qux"'

    def test_no_tokens(self):
        """A query without tokens should escape to nothing."""
        assert escape_query("?!...") == ""
        assert escape_query("") == ""


class TestInsertAndSearch:

    @pytest.mark.asyncio
    async def test_insert_returns_item(self, store):
        """insert_item should return the stored row."""
        before = now_ms()
        item = await store.insert_item(text="I like green tea", tags="user", session_id="s1")
        assert item["id"]
        assert item["created_at"] >= before
        assert item["tags"] == "user"
        assert item["session_id"] == "s1"
        assert item["meta"] == {}

    @pytest.mark.asyncio
    async def test_lexical_search_finds_matching_item(self, store):
        """Lexical search should find a matching item."""
        await store.insert_item(text="My favourite editor is neovim")
        await store.insert_item(text="The weather is nice today")

        found = await store.lexical_search("which editor do I use", 5)

        assert found.escaped_query.startswith('"which"')
        assert [r.item["text"] for r in found.results] == ["My favourite editor is neovim"]
        assert found.results[0].lexical_score is not None

    @pytest.mark.asyncio
    async def test_more_matching_tokens_rank_higher(self, store):
        """Items matching more tokens should rank higher."""
        await store.insert_item(text="python packaging notes")
        await store.insert_item(text="python asyncio packaging sqlite notes")

        found = await store.lexical_search("python asyncio sqlite", 5)

        assert found.results[0].item["text"] == "python asyncio packaging sqlite notes"

    @pytest.mark.asyncio
    async def test_punctuation_query_returns_nothing(self, store):
        """A punctuation-only query should return nothing."""
        await store.insert_item(text="something")
        found = await store.lexical_search("!!!", 5)
        assert found.results == []
        assert found.escaped_query == ""

    @pytest.mark.asyncio
    async def test_hostile_query_does_not_raise(self, store):
        """A query full of FTS syntax should not raise."""
        await store.insert_item(text="quote test")
        found = await store.lexical_search('quote" OR (NEAR "x', 5)
        assert [r.item["text"] for r in found.results] == ["quote test"]

    @pytest.mark.asyncio
    async def test_like_fallback_without_fts(self, store):
        """Search should fall back to LIKE when the FTS table is missing."""
        await store.insert_item(text="Deploy scripts live in ops/")
        await store.insert_item(text="unrelated")
        store._fts = False

        found = await store.lexical_search("deploy", 5)

        assert [r.item["text"] for r in found.results] == ["Deploy scripts live in ops/"]
        assert found.results[0].score == 1.0

    @pytest.mark.asyncio
    async def test_like_fallback_escapes_wildcards(self, store):
        """The LIKE fallback should treat wildcards literally."""
        await store.insert_item(text="100% done")
        await store.insert_item(text="100 items")
        store._fts = False

        found = await store._match('"100%"', 5)

        assert [r.item["text"] for r in found] == ["100% done"]


class TestPipelineReads:

    @pytest.mark.asyncio
    async def test_recent_hashes_newest_first_and_bounded(self, store):
        """recent_hashes should return the newest hashes within the bounds."""
        now = now_ms()
        await store.insert_item(text="a", content_hash="a" * 40, created_at=now - 3000)
        await store.insert_item(text="b", content_hash="B" * 40, created_at=now - 2000)
        await store.insert_item(text="c", meta={"h": "c" * 40}, created_at=now - 1000)

        assert await store.recent_hashes(now - 2500, 10) == ["c" * 40, "b" * 40]
        assert await store.recent_hashes(now - 5000, 1) == ["c" * 40]

    @pytest.mark.asyncio
    async def test_session_history(self, store):
        """session_history should return a session's rows for the given roles."""
        now = now_ms()
        await store.insert_item(text="q1", tags="user", session_id="s1", created_at=now - 300)
        await store.insert_item(text="a1", tags="assistant", session_id="s1", created_at=now - 200)
        await store.insert_item(text="note", tags="personal", session_id="s1", created_at=now - 150)
        await store.insert_item(text="other", tags="user", session_id="s2", created_at=now - 100)

        rows = await store.session_history("s1", ("user", "assistant"), 50)

        assert [r["text"] for r in rows] == ["a1", "q1"]

    @pytest.mark.asyncio
    async def test_gc_candidates(self, store):
        """gc_candidates should skip protected and recent items."""
        now = now_ms()
        await store.insert_item(text="old untagged", created_at=now - 5000)
        await store.insert_item(text="old personal", tags="personal", created_at=now - 4000)
        await store.insert_item(text="old user", tags="user", created_at=now - 3000)
        await store.insert_item(text="new user", tags="user", created_at=now)

        rows = await store.gc_candidates(now - 1000, ["personal"], 10)

        assert [r["tags"] for r in rows] == [None, "user"]
        assert rows[0]["created_at"] < rows[1]["created_at"]


class TestDelete:

    @pytest.mark.asyncio
    async def test_delete_items_removes_embeddings(self, store):
        """Deleting items should remove their embeddings."""
        item = await store.insert_item(text="to be removed")
        async with store.db.get_session() as session:
            session.add(Embedding(item_id=item["id"], model="m", dim=2, vector=vectors.encode([1.0, 0.0])))

        deleted_items, deleted_embeddings = await store.delete_items([item["id"]])

        assert (deleted_items, deleted_embeddings) == (1, 1)
        stats = await store.stats()
        assert stats["items"] == 0
        assert stats["embeddings"] == 0

    @pytest.mark.asyncio
    async def test_delete_missing_item(self, store):
        """Deleting a missing id should delete nothing."""
        assert await store.delete_item("does-not-exist") == 0
        assert await store.delete_items([]) == (0, 0)

    @pytest.mark.asyncio
    async def test_deleted_item_leaves_search_index(self, store):
        """A deleted item should no longer be found by search."""
        item = await store.insert_item(text="ephemeral zebra fact")
        await store.delete_item(item["id"])
        found = await store.lexical_search("zebra", 5)
        assert found.results == []

    @pytest.mark.asyncio
    async def test_vacuum(self, store):
        """vacuum should run on a live store."""
        await store.insert_item(text="x")
        await store.vacuum()


class TestHybridSearch:

    @pytest.mark.asyncio
    async def test_requires_embedder(self, store):
        """Hybrid search without an embedder should raise."""
        await store.insert_item(text="apple pie")
        with pytest.raises(BackendUnavailable):
            await store.hybrid_search('"apple"', top_k=5, candidates=50, semantic_weight=0.7)

    @pytest.mark.asyncio
    async def test_semantic_score_reorders_pool(self, hybrid_store):
        """Semantic similarity should reorder the lexical pool."""
        hybrid_store.embedder.table = {
            "apple": [1.0, 0.0],
            "apple pie recipe": [0.0, 1.0],
            "apple orchard visit": [1.0, 0.0],
        }
        await hybrid_store.insert_item(text="apple pie recipe")
        await hybrid_store.insert_item(text="apple orchard visit")

        results = await hybrid_store.hybrid_search('"apple"', top_k=5, candidates=50, semantic_weight=1.0)

        assert [r.item["text"] for r in results] == ["apple orchard visit", "apple pie recipe"]
        assert results[0].semantic_score == pytest.approx(1.0)
        assert results[1].semantic_score == pytest.approx(0.0)

    @pytest.mark.asyncio
    async def test_embeddings_are_cached(self, hybrid_store):
        """Item embeddings should be computed once and cached."""
        await hybrid_store.insert_item(text="banana bread")
        await hybrid_store.insert_item(text="banana split")

        await hybrid_store.hybrid_search('"banana"', top_k=5, candidates=50, semantic_weight=0.5)
        calls_after_first = len(hybrid_store.embedder.calls)
        await hybrid_store.hybrid_search('"banana"', top_k=5, candidates=50, semantic_weight=0.5)

        # second search only embeds the query
        assert len(hybrid_store.embedder.calls) == calls_after_first + 1
        assert (await hybrid_store.stats())["embeddings"] == 2

    @pytest.mark.asyncio
    async def test_filtered_search(self, hybrid_store):
        """Filtered hybrid search should only return matching entities."""
        await hybrid_store.insert_item(text="cherry from alice", entity_id="alice", session_id="s1")
        await hybrid_store.insert_item(text="cherry from bob", entity_id="bob", session_id="s1")

        results = await hybrid_store.hybrid_search_filtered(
            '"cherry"', top_k=5, candidates=50, semantic_weight=0.5,
            filter=FilterOpts(entity_id="bob"),
        )

        assert [r.item["entity_id"] for r in results] == ["bob"]

    @pytest.mark.asyncio
    async def test_top_k_limits_results(self, hybrid_store):
        """top_k should limit the number of results."""
        for i in range(6):
            await hybrid_store.insert_item(text=f"grape note {i}")

        results = await hybrid_store.hybrid_search('"grape"', top_k=3, candidates=10, semantic_weight=0.5)

        assert len(results) == 3

    @pytest.mark.asyncio
    async def test_backend_failure_propagates(self, hybrid_store):
        """An embedding backend failure should propagate."""
        hybrid_store.embedder.fail = True
        await hybrid_store.insert_item(text="kiwi")
        with pytest.raises(BackendUnavailable):
            await hybrid_store.hybrid_search('"kiwi"', top_k=5, candidates=50, semantic_weight=0.5)


class TestStats:

    @pytest.mark.asyncio
    async def test_stats(self, store):
        """stats should report counts, entities and top tags."""
        await store.insert_item(text="a", tags="user", entity_id="user", created_at=1000)
        await store.insert_item(text="b", tags="user", entity_id="agent", created_at=2000)
        await store.insert_item(text="c", tags="personal", created_at=3000)

        stats = await store.stats(include_tags=True, top_tags=1)

        assert stats["items"] == 3
        assert stats["created_at"] == {"min": 1000, "max": 3000}
        assert stats["tags"] == [{"tag": "user", "count": 2}]
        assert sorted(stats["entities"]) == ["agent", "user"]
        assert stats["db_bytes"] is not None

    @pytest.mark.asyncio
    async def test_stats_without_tags(self, store):
        """stats without tags should omit the tag list."""
        stats = await store.stats(include_tags=False)
        assert stats["tags"] is None
        assert stats["items"] == 0


@pytest.mark.asyncio
async def test_open_store_creates_database(db_path):
    """open_store should create and migrate the database file."""
    store = await open_store(db_path)
    try:
        assert os.path.exists(db_path)
        assert (await store.stats())["items"] == 0
    finally:
        await store.db.close()
