"""
Host integration surface.

- before_agent_start(event) -> {"prepend_context": str} or None
- agent_end(event) -> None (fire and forget)
- execute_tool(name, params) -> tool result dict

Neither hook raises into the host: failures are logged and turn into "no
context" / "nothing stored".
"""

import logging
from typing import Any, Dict, Optional

from .capture import CapturePipeline, CaptureReport
from .config import Settings, settings as default_settings
from .database import DatabaseManager
from .degradation import HybridDegradationGuard
from .exceptions import OfflineMemoryError, ValidationError
from .logging_config import with_request_id
from .messages import AfterTurnEvent, BeforeTurnEvent
from .recall import Recaller, RecallAssembler
from .store import MemoryStore
from .tools import MemoryTools
from .vectors import OllamaEmbedder

logger = logging.getLogger(__name__)

PLUGIN_ID = "offline-memory"


class MemoryPlugin:
    """Wires store, guard, recall, capture and tools for one database."""

    def __init__(self, settings: Optional[Settings] = None, store: Optional[MemoryStore] = None):
        self.settings = settings or default_settings
        if store is None:
            embedder = OllamaEmbedder(
                base_url=self.settings.ollama_base_url,
                model=self.settings.embedding_model,
                timeout_s=self.settings.ollama_timeout_s,
            )
            store = MemoryStore(DatabaseManager(self.settings.get_db_path()), embedder=embedder)
        self.store = store
        self.guard = HybridDegradationGuard.from_settings(self.settings)
        self.recaller = Recaller(self.store, self.settings, self.guard)
        self.assembler = RecallAssembler(self.store, self.settings, self.recaller)
        self.capture = CapturePipeline(self.store, self.settings)
        self.tools = MemoryTools(self.store, self.settings, self.recaller)
        logger.debug(f"{PLUGIN_ID} loaded (db={self.store.db.db_path}, mode={self.settings.mode})")

    @with_request_id
    async def before_agent_start(self, event: Any) -> Optional[Dict[str, str]]:
        """Pre-turn hook: context to prepend to the agent's input, if any."""
        if not self.settings.auto_recall:
            return None
        parsed = BeforeTurnEvent.parse(event)
        context = await self.assembler.assemble(parsed.prompt, parsed.session_key)
        if not context:
            return None
        return {"prepend_context": context}

    @with_request_id
    async def agent_end(self, event: Any) -> Optional[CaptureReport]:
        """Post-turn hook: capture the turn's messages. Returns the report for callers that want it."""
        if not self.settings.auto_capture:
            return None
        try:
            parsed = AfterTurnEvent.parse(event)
            if not parsed.success:
                return None
            if not isinstance(parsed.messages, list):
                logger.warning(
                    f"agent_end missing messages (type={type(parsed.messages).__name__})"
                )
                return None
            if not parsed.messages:
                return None
            return await self.capture.run(parsed.messages, parsed.session_key, parsed.channel)
        except Exception as e:
            logger.error(f"agent_end failed: {e}", exc_info=True)
            return None

    async def execute_tool(self, name: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Dispatch a tool call. Validation and store errors become ok=False results."""
        handler = getattr(self.tools, name, None)
        if not name.startswith("memory_") or handler is None:
            return _error_result(f"Unknown tool: {name}")
        try:
            return await handler(params)
        except ValidationError as e:
            return _error_result(str(e))
        except OfflineMemoryError as e:
            logger.warning(f"{name} failed: {e}")
            return _error_result(str(e))

    async def close(self) -> None:
        await self.store.db.close()


def _error_result(message: str) -> Dict[str, Any]:
    return {
        "content": [{"type": "text", "text": message}],
        "details": {"ok": False, "error": message},
    }
