"""
Hybrid Degradation Guard.

Before paying for hybrid search, send one cheap embeddings request with a short
timeout. If it fails, this call runs lexical-only. The "hybrid degraded"
warning is rate limited so an outage does not flood the log.

The only state is the limiter's last-emitted timestamp, owned by the guard
instance (tests reset it with WarningRateLimiter.reset()).
"""

import asyncio
import logging
import time
from typing import Callable, Optional

import httpx

logger = logging.getLogger(__name__)


class WarningRateLimiter:
    """Allows at most one emission per interval."""

    def __init__(self, interval_s: float = 3600.0, clock: Callable[[], float] = time.monotonic):
        self.interval_s = interval_s
        self.clock = clock
        self.last_emitted: Optional[float] = None
        self.suppressed = 0

    def should_emit(self) -> bool:
        now = self.clock()
        if self.last_emitted is not None and now - self.last_emitted < self.interval_s:
            self.suppressed += 1
            return False
        self.last_emitted = now
        return True

    def reset(self) -> None:
        self.last_emitted = None
        self.suppressed = 0


class HybridDegradationGuard:
    """Liveness probe for the embedding backend plus rate-limited degradation warnings."""

    def __init__(
        self,
        base_url: str,
        model: str,
        timeout_s: float = 0.8,
        limiter: Optional[WarningRateLimiter] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout_s = timeout_s
        self.limiter = limiter or WarningRateLimiter()

    @classmethod
    def from_settings(cls, settings) -> "HybridDegradationGuard":
        return cls(
            base_url=settings.ollama_base_url,
            model=settings.embedding_model,
            timeout_s=settings.effective_probe_timeout_s,
            limiter=WarningRateLimiter(interval_s=settings.degraded_warning_interval_s),
        )

    async def probe(self, query: str) -> Optional[str]:
        """
        Check the embeddings endpoint.

        The whole exchange, body included, is bounded end to end by timeout_s.

        Returns:
            None when healthy, otherwise a short failure reason.
        """
        payload = {"model": self.model, "input": query}
        try:
            response = await asyncio.wait_for(self._post(payload), timeout=self.timeout_s)
        except (asyncio.TimeoutError, httpx.TimeoutException):
            return f"probe timed out after {self.timeout_s:.2f}s"
        except httpx.HTTPError as e:
            return f"probe failed: {e!r}"

        if not response.is_success:
            return f"embeddings HTTP {response.status_code}"
        return None

    async def _post(self, payload: dict) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.timeout_s) as client:
            return await client.post(f"{self.base_url}/v1/embeddings", json=payload)

    def report_degraded(self, reason: str) -> bool:
        """Log the degradation if the limiter allows it. Returns True if logged."""
        if not self.limiter.should_emit():
            logger.debug(f"Hybrid degraded to lexical ({reason}), warning suppressed")
            return False
        logger.warning(f"Hybrid search degraded to lexical ({reason})")
        return True
