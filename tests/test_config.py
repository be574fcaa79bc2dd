"""Tests for settings loading."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from voicefill.config import Backend, Environment, Settings, get_settings


class TestSettings:
    def test_defaults(self, monkeypatch) -> None:
        monkeypatch.delenv("VOICEFILL_DEBOUNCE_MS", raising=False)
        settings = Settings(_env_file=None)
        assert settings.environment == Environment.DEVELOPMENT
        assert settings.extraction_backend == Backend.LOCAL
        assert settings.debounce_ms == 1000
        assert settings.debounce_seconds == 1.0
        assert settings.low_confidence_threshold == 0.7
        assert settings.is_development
        assert not settings.is_production

    def test_env_override(self, monkeypatch) -> None:
        monkeypatch.setenv("VOICEFILL_DEBOUNCE_MS", "250")
        monkeypatch.setenv("VOICEFILL_EXTRACTION_BACKEND", "remote")
        monkeypatch.setenv("VOICEFILL_ENVIRONMENT", "production")
        settings = Settings(_env_file=None)
        assert settings.debounce_ms == 250
        assert settings.debounce_seconds == 0.25
        assert settings.extraction_backend == Backend.REMOTE
        assert settings.is_production

    def test_rejects_bad_threshold(self) -> None:
        with pytest.raises(ValidationError):
            Settings(_env_file=None, low_confidence_threshold=1.5)

    def test_rejects_zero_timeout(self) -> None:
        with pytest.raises(ValidationError):
            Settings(_env_file=None, extraction_timeout_seconds=0)

    def test_get_settings_is_cached(self) -> None:
        assert get_settings() is get_settings()
