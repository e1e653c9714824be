"""
Tests for configuration module.
"""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from warmcache.config import Settings, clear_settings_cache, get_settings


class TestSettingsValidation:
    """Tests for Settings validation."""

    def test_settings_loads_from_env(self, mock_env_vars: dict[str, str]) -> None:
        """Test that settings correctly loads from environment variables."""
        settings = get_settings()

        assert settings.CACHE_PREFIX == "test-"
        assert settings.APP_NAME == "testapp"
        assert settings.CACHE_VERSION_TAG == "v2"
        assert settings.APP_ORIGIN == "https://app.example.com"
        assert settings.WARMING_TASK_DELAY_MS == 0
        assert settings.IDLE_POLL_MS == 1
        assert settings.LOG_LEVEL == "DEBUG"

    def test_defaults(self) -> None:
        """Test defaults when nothing is configured."""
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(_env_file=None)

        assert settings.CACHE_PREFIX == "warmcache-"
        assert settings.WARMING_MAX_CONCURRENT == 2
        assert settings.WARMING_TASK_DELAY_MS == 1500
        assert settings.IDLE_POLL_MS == 500
        assert settings.WARMING_MAX_REQUEUES == 20
        assert settings.SESSION_QUOTA_BYTES is None
        assert settings.LOG_FILE is None

    def test_origin_requires_scheme(self) -> None:
        """Test that APP_ORIGIN must be an http(s) origin."""
        with patch.dict(os.environ, {"APP_ORIGIN": "app.example.com"}, clear=True):
            with pytest.raises(ValidationError) as exc_info:
                Settings(_env_file=None)

        assert "APP_ORIGIN" in str(exc_info.value)

    def test_origin_trailing_slash_stripped(self) -> None:
        with patch.dict(os.environ, {"APP_ORIGIN": "https://app.example.com/"}, clear=True):
            settings = Settings(_env_file=None)

        assert settings.APP_ORIGIN == "https://app.example.com"

    def test_idle_backoff_ceiling_below_base_rejected(self) -> None:
        env_vars = {"IDLE_POLL_MS": "1000", "IDLE_POLL_MAX_MS": "500"}
        with patch.dict(os.environ, env_vars, clear=True):
            with pytest.raises(ValidationError):
                Settings(_env_file=None)

    def test_max_concurrent_bounds(self) -> None:
        with patch.dict(os.environ, {"WARMING_MAX_CONCURRENT": "0"}, clear=True):
            with pytest.raises(ValidationError):
                Settings(_env_file=None)

    def test_host_lists_parse_json(self) -> None:
        env_vars = {"DATA_API_HOSTS": '["data.example.com", "backup.example.com"]'}
        with patch.dict(os.environ, env_vars, clear=True):
            settings = Settings(_env_file=None)

        assert settings.DATA_API_HOSTS == ["data.example.com", "backup.example.com"]

    def test_critical_api_urls(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            assert Settings(_env_file=None).CRITICAL_API_URLS == []

        env_vars = {"CRITICAL_API_URLS": '["/api/items/count", "/api/states"]'}
        with patch.dict(os.environ, env_vars, clear=True):
            settings = Settings(_env_file=None)

        assert settings.CRITICAL_API_URLS == ["/api/items/count", "/api/states"]
        assert settings.redacted_display()["CRITICAL_API_URLS"] == "/api/items/count, /api/states"


class TestSettingsHelpers:
    """Tests for settings helpers."""

    def test_get_settings_is_cached(self, mock_env_vars: dict[str, str]) -> None:
        assert get_settings() is get_settings()

    def test_clear_settings_cache(self, mock_env_vars: dict[str, str]) -> None:
        first = get_settings()
        clear_settings_cache()
        assert get_settings() is not first

    def test_ensure_directories(self, mock_settings: Settings) -> None:
        assert mock_settings.CACHE_DB_PATH.parent.is_dir()

    def test_redacted_display_covers_fields(self, mock_settings: Settings) -> None:
        display = mock_settings.redacted_display()

        assert display["CACHE_PREFIX"] == "test-"
        assert display["CACHE_DB_PATH"] == str(mock_settings.CACHE_DB_PATH)
        assert display["LOG_FILE"] is None
        assert isinstance(display["REFERENCE_API_HOSTS"], str)

    def test_log_file_path(self, temp_dir: Path) -> None:
        with patch.dict(os.environ, {"LOG_FILE": str(temp_dir / "log.jsonl")}, clear=True):
            settings = Settings(_env_file=None)

        assert settings.LOG_FILE == temp_dir / "log.jsonl"
