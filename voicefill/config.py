"""
Application configuration via environment variables.

Uses Pydantic BaseSettings to load and validate all config from env vars
or a .env.local file. Every setting has a sensible default for local
development so the service can start with no configuration at all: the
heuristic extractor runs in-process and nothing talks to the network.
"""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Deployment environment selector."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class Backend(str, Enum):
    """Where extraction / validation runs."""

    LOCAL = "local"
    REMOTE = "remote"


class Settings(BaseSettings):
    """
    Central configuration for the Voice Form Fill Service.

    Values are loaded from environment variables first (prefixed with
    ``VOICEFILL_``), falling back to a `.env.local` file in the project
    root. Secrets should NEVER be committed.
    """

    model_config = SettingsConfigDict(
        env_prefix="VOICEFILL_",
        env_file=".env.local",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Environment ──────────────────────────────────────────────
    environment: Environment = Environment.DEVELOPMENT

    # ── Extraction / Validation services ─────────────────────────
    extraction_backend: Backend = Field(default=Backend.LOCAL, description="Heuristic in-process or remote AI service")
    validation_backend: Backend = Field(default=Backend.LOCAL, description="Local rules or remote AI validation")
    ai_api_url: str = Field(default="http://localhost:8000", description="Base URL of the AI extraction service")
    ai_api_key: str = Field(default="", description="Bearer token for the AI extraction service")
    extraction_timeout_seconds: float = Field(default=15.0, gt=0, le=120, description="Max wait for one extraction call")
    validation_timeout_seconds: float = Field(default=5.0, gt=0, le=60, description="Max wait for one remote validation")

    # ── Speech capture ───────────────────────────────────────────
    speech_language: str = Field(default="en-US", description="BCP-47 language passed to the recognizer")
    debounce_ms: int = Field(default=1000, ge=0, le=10_000, description="Quiet window before a transcript commit")

    # ── Extraction policy ────────────────────────────────────────
    low_confidence_threshold: float = Field(default=0.7, ge=0.0, le=1.0, description="Below this, results are logged as low confidence")
    email_suggestion_domain: str = Field(default="example.com", description="Domain used for email hints")

    # ── Operational Limits ───────────────────────────────────────
    max_sessions: int = Field(default=500, ge=1, le=100_000, description="Max live fill sessions held in memory")

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO", description="Root log level")

    # ── Derived helpers ──────────────────────────────────────────

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        return self.environment == Environment.DEVELOPMENT

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000.0


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Return cached Settings instance.

    Using lru_cache ensures we read env vars exactly once, and every
    module that calls ``get_settings()`` gets the same object.
    """
    return Settings()
