"""
Vector Embeddings - semantic side of hybrid search.

This module provides:
- An Ollama embedding client (OpenAI-compatible /v1/embeddings endpoint)
- Packing of vectors as float32 bytes for SQLite storage
- Cosine similarity
"""

import asyncio
import logging
import struct
from typing import List, Optional

import httpx
import numpy as np

from .exceptions import BackendUnavailable

logger = logging.getLogger(__name__)


def encode(vector: List[float]) -> bytes:
    """Pack a vector as float32 bytes for SQLite storage."""
    return struct.pack(f'{len(vector)}f', *vector)


def decode(data: bytes) -> Optional[List[float]]:
    """Decode vector bytes back to a list of floats."""
    if not data:
        return None

    num_floats = len(data) // 4  # 4 bytes per float
    return list(struct.unpack(f'{num_floats}f', data))


def cosine_similarity(vec1: List[float], vec2: List[float]) -> float:
    """Compute cosine similarity between two vectors."""
    a = np.array(vec1, dtype=float)
    b = np.array(vec2, dtype=float)

    if a.shape != b.shape:
        return 0.0

    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)

    if norm_a == 0 or norm_b == 0:
        return 0.0

    return float(np.dot(a, b) / (norm_a * norm_b))


class OllamaEmbedder:
    """
    Embedding client for an Ollama server.

    Every request is bounded by timeout_s. Any transport error, timeout or
    non-2xx answer surfaces as BackendUnavailable.
    """

    def __init__(self, base_url: str, model: str, timeout_s: float = 3.0):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout_s = timeout_s

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/v1/embeddings"

    async def embed_many(self, texts: List[str], timeout_s: Optional[float] = None) -> List[List[float]]:
        """Embed a batch of texts, preserving order."""
        if not texts:
            return []

        payload = {"model": self.model, "input": texts}
        timeout = timeout_s or self.timeout_s
        try:
            data = await asyncio.wait_for(self._post(payload, timeout), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise BackendUnavailable(f"embeddings request timed out after {timeout:.2f}s") from e
        except httpx.HTTPStatusError as e:
            raise BackendUnavailable(f"embeddings HTTP {e.response.status_code}") from e
        except (httpx.HTTPError, ValueError) as e:
            raise BackendUnavailable(f"embeddings request failed: {e!r}") from e

        try:
            rows = sorted(data["data"], key=lambda row: row.get("index", 0))
            vectors = [list(map(float, row["embedding"])) for row in rows]
        except (KeyError, TypeError, ValueError) as e:
            raise BackendUnavailable(f"malformed embeddings response: {e!r}") from e

        if len(vectors) != len(texts):
            raise BackendUnavailable(
                f"embeddings response size mismatch ({len(vectors)} != {len(texts)})"
            )
        return vectors

    async def embed(self, text: str, timeout_s: Optional[float] = None) -> List[float]:
        """Embed a single text."""
        return (await self.embed_many([text], timeout_s=timeout_s))[0]

    async def _post(self, payload: dict, timeout: float) -> dict:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.post(self.endpoint, json=payload)
            response.raise_for_status()
            return response.json()
