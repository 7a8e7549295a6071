"""Tests for settings loading and clamping."""

from pathlib import Path

from offline_memory.config import DAY_MS, Settings


class TestSettings:

    def test_defaults(self):
        """Settings should have the documented defaults."""
        s = Settings(_env_file=None)
        assert s.mode == "lexical"
        assert s.top_k == 5
        assert s.capture_dedupe_window_ms == DAY_MS
        assert s.retention_days is None
        assert s.retention_protected_tags == ["personal"]
        assert s.ollama_base_url == "http://127.0.0.1:11434"

    def test_out_of_range_values_are_clamped(self):
        """Out-of-range numeric settings should be clamped."""
        s = Settings(
            top_k=500,
            candidates=1,
            semantic_weight=1.5,
            capture_max_chars=10,
            capture_dedupe_window_ms=-5,
            retention_days=99999,
            _env_file=None,
        )
        assert s.top_k == 20
        assert s.candidates == 10
        assert s.semantic_weight == 1.0
        assert s.capture_max_chars == 200
        assert s.capture_dedupe_window_ms == 0
        assert s.retention_days == 3650

    def test_unknown_mode_falls_back_to_lexical(self):
        """An unknown recall mode should fall back to lexical."""
        assert Settings(mode="vector", _env_file=None).mode == "lexical"
        assert Settings(mode=" HYBRID ", _env_file=None).mode == "hybrid"

    def test_environment_variables(self, monkeypatch):
        """Settings should be read from OFFLINE_MEMORY_ environment variables."""
        monkeypatch.setenv("OFFLINE_MEMORY_MODE", "hybrid")
        monkeypatch.setenv("OFFLINE_MEMORY_TOP_K", "7")
        monkeypatch.setenv("OFFLINE_MEMORY_AUTO_CAPTURE", "false")
        monkeypatch.setenv("OFFLINE_MEMORY_RETENTION_PROTECTED_TAGS", '["personal", "work"]')

        s = Settings(_env_file=None)

        assert s.mode == "hybrid"
        assert s.top_k == 7
        assert s.auto_capture is False
        assert s.retention_protected_tags == ["personal", "work"]

    def test_empty_retention_days_means_disabled(self):
        """An empty retention_days value should disable retention."""
        assert Settings(retention_days="", _env_file=None).retention_days is None

    def test_probe_timeout_never_exceeds_embedding_timeout(self):
        """The probe timeout should be capped by the embedding timeout."""
        assert Settings(probe_timeout_ms=800, ollama_timeout_ms=3000, _env_file=None).effective_probe_timeout_s == 0.8
        assert Settings(probe_timeout_ms=800, ollama_timeout_ms=500, _env_file=None).effective_probe_timeout_s == 0.5

    def test_get_db_path_creates_parent(self, tmp_path):
        """get_db_path should create the parent directory."""
        target = tmp_path / "nested" / "dir" / "memory.sqlite"
        path = Settings(db_path=str(target), _env_file=None).get_db_path()
        assert path == str(target)
        assert Path(path).parent.is_dir()

    def test_default_db_path(self, monkeypatch, tmp_path):
        """The default db path should live under the user's home directory."""
        monkeypatch.setenv("HOME", str(tmp_path))
        path = Settings(db_path="", _env_file=None).get_db_path()
        assert path == str(tmp_path / ".offline-memory" / "offline.sqlite")
