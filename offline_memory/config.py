"""
Centralized configuration using Pydantic Settings.

All settings are loaded from environment variables with OFFLINE_MEMORY_ prefix.
Example: OFFLINE_MEMORY_MODE=hybrid

Numeric settings are clamped into their supported range instead of rejected,
so a sloppy host config never prevents the hooks from loading.
"""

import logging
from pathlib import Path
from typing import Any, List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000

# (min, max) bounds for clamped numeric settings
_BOUNDS = {
    "top_k": (1, 20),
    "candidates": (10, 500),
    "semantic_weight": (0.0, 1.0),
    "ollama_timeout_ms": (250, 60000),
    "probe_timeout_ms": (50, 60000),
    "degraded_warning_interval_s": (1, 7 * 24 * 3600),
    "capture_max_per_turn": (1, 50),
    "capture_min_chars": (0, 500),
    "capture_max_chars": (200, 20000),
    "capture_dedupe_window_ms": (0, 30 * DAY_MS),
    "capture_dedupe_max_check": (10, 2000),
    "retention_days": (1, 3650),
    "gc_scan_limit": (1, 5000),
}


def default_db_path() -> str:
    """Default database location under the user's home directory."""
    return str(Path.home() / ".offline-memory" / "offline.sqlite")


class Settings(BaseSettings):
    """OfflineMemory configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="OFFLINE_MEMORY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage
    db_path: str = ""  # Auto-detect if not set

    # Hooks
    auto_recall: bool = True
    auto_capture: bool = True

    # Recall
    top_k: int = 5
    mode: str = "lexical"  # lexical | hybrid
    candidates: int = 50
    semantic_weight: float = 0.7

    # Semantic backend (Ollama, OpenAI-compatible embeddings endpoint)
    ollama_base_url: str = "http://127.0.0.1:11434"
    embedding_model: str = "bge-m3"
    ollama_timeout_ms: int = 3000
    probe_timeout_ms: int = 800
    degraded_warning_interval_s: int = 3600

    # Capture noise controls
    capture_max_per_turn: int = 20
    capture_min_chars: int = 16
    capture_max_chars: int = 4000
    capture_dedupe_window_ms: int = DAY_MS
    capture_dedupe_max_check: int = 300

    # Retention (optional)
    retention_days: Optional[int] = None
    retention_protected_tags: List[str] = ["personal"]
    gc_scan_limit: int = 1000

    # Context assembly
    short_term_scan: int = 50
    short_term_max_messages: int = 15
    short_term_max_chars: int = 2000
    recall_inject_count: int = 3
    min_prompt_chars: int = 5

    # Attribution (placeholder policy, override per deployment)
    capture_source: str = "conversation"
    process_id: str = "assistant"
    user_entity_id: str = "user"
    agent_entity_id: str = "agent"

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    @field_validator(*_BOUNDS.keys(), mode="before")
    @classmethod
    def _clamp(cls, value: Any, info) -> Any:
        if value is None or value == "":
            return None if info.field_name == "retention_days" else value
        low, high = _BOUNDS[info.field_name]
        number = float(value)
        clamped = max(low, min(high, number))
        if isinstance(low, int) and isinstance(high, int):
            return int(clamped)
        return clamped

    @field_validator("mode", mode="before")
    @classmethod
    def _known_mode(cls, value: Any) -> str:
        return "hybrid" if str(value).strip().lower() == "hybrid" else "lexical"

    @field_validator("retention_protected_tags", mode="before")
    @classmethod
    def _tags_as_strings(cls, value: Any) -> Any:
        if isinstance(value, (list, tuple, set)):
            return [str(v) for v in value]
        return value

    @property
    def effective_probe_timeout_s(self) -> float:
        """Probe timeout, never longer than the full embedding timeout."""
        return min(self.probe_timeout_ms, self.ollama_timeout_ms) / 1000.0

    @property
    def ollama_timeout_s(self) -> float:
        return self.ollama_timeout_ms / 1000.0

    def get_db_path(self) -> str:
        """
        Determine the SQLite database path.

        Priority:
        1. db_path setting (explicit override via OFFLINE_MEMORY_DB_PATH)
        2. ~/.offline-memory/offline.sqlite

        The parent directory is created when missing.
        """
        path = Path(self.db_path or default_db_path()).expanduser()
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.debug(f"Could not create storage directory {path.parent}: {e}")
        return str(path)


# Singleton instance
settings = Settings()
