# tests/conftest.py
"""
Pytest configuration for OfflineMemory tests.
"""

import asyncio
import json
import shutil
import tempfile
from pathlib import Path
from typing import Dict, List, Optional

import pytest
import pytest_asyncio

from offline_memory.config import Settings
from offline_memory.database import DatabaseManager
from offline_memory.exceptions import BackendUnavailable
from offline_memory.store import MemoryStore


def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as an asyncio test."
    )


class FakeEmbedder:
    """
    Stand-in for OllamaEmbedder.

    Texts found in `table` get that vector, everything else gets `default`.
    """

    def __init__(self, table: Optional[Dict[str, List[float]]] = None,
                 default: Optional[List[float]] = None, fail: bool = False):
        self.model = "fake-embed"
        self.table = table or {}
        self.default = default or [0.0, 0.0, 1.0]
        self.fail = fail
        self.calls: List[List[str]] = []

    async def embed_many(self, texts, timeout_s=None):
        self.calls.append(list(texts))
        if self.fail:
            raise BackendUnavailable("embeddings request failed: ConnectError")
        return [list(self.table.get(t, self.default)) for t in texts]

    async def embed(self, text, timeout_s=None):
        return (await self.embed_many([text]))[0]


class HealthyGuard:
    """Degradation guard whose probe always succeeds."""

    def __init__(self):
        self.reported: List[str] = []

    async def probe(self, query):
        return None

    def report_degraded(self, reason):
        self.reported.append(reason)
        return True


class FailingGuard(HealthyGuard):
    """Degradation guard whose probe always fails."""

    async def probe(self, query):
        return "probe timed out after 0.80s"


@pytest.fixture
def temp_dir():
    """Create a temporary directory for a store."""
    path = tempfile.mkdtemp()
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def db_path(temp_dir):
    return str(Path(temp_dir) / "memory.sqlite")


@pytest.fixture
def settings(db_path):
    """Settings pointing at the temp store, isolated from any .env file."""
    return Settings(db_path=db_path, _env_file=None)


@pytest_asyncio.fixture
async def store(db_path):
    """An initialized store without an embedding backend."""
    s = MemoryStore(DatabaseManager(db_path))
    await s.ensure_ready()
    yield s
    await s.db.close()


@pytest_asyncio.fixture
async def hybrid_store(db_path):
    """An initialized store that uses a FakeEmbedder (set .embedder.table in the test)."""
    s = MemoryStore(DatabaseManager(db_path), embedder=FakeEmbedder())
    await s.ensure_ready()
    yield s
    await s.db.close()


@pytest_asyncio.fixture
async def trickling_embeddings_server():
    """
    A local HTTP server that answers /v1/embeddings with a valid 200 response,
    sent one byte every 50ms (several seconds end to end).

    Yields the base URL.
    """
    body = json.dumps({"data": [{"index": 0, "embedding": [0.1, 0.2, 0.3]}]}).encode()
    head = (
        "HTTP/1.1 200 OK\r\n"
        "Content-Type: application/json\r\n"
        f"Content-Length: {len(body)}\r\n"
        "\r\n"
    ).encode()
    response = head + body
    handlers = set()

    async def handle(reader, writer):
        handlers.add(asyncio.current_task())
        try:
            await reader.readuntil(b"\r\n\r\n")
            for i in range(len(response)):
                writer.write(response[i:i + 1])
                await writer.drain()
                await asyncio.sleep(0.05)
        except (ConnectionError, asyncio.IncompleteReadError):
            pass
        finally:
            writer.close()

    server = await asyncio.start_server(handle, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    yield f"http://127.0.0.1:{port}"

    for task in handlers:
        task.cancel()
    await asyncio.gather(*handlers, return_exceptions=True)
    server.close()
    await server.wait_closed()
