"""Shared test fixtures and fakes for Voice Form Fill tests.

Provides a deterministic speech capability, a hand-driven extraction
backend, and the sample form used by the end-to-end scenarios.
"""

from __future__ import annotations

import asyncio
from typing import Optional

import pytest

from voicefill.config import Settings, get_settings
from voicefill.schemas.extraction import ExtractionResult
from voicefill.schemas.form import FieldSpec, FieldValue
from voicefill.services.field_extraction import ExtractionBackend
from voicefill.services.speech_capability import SpeechCapability


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeSpeechCapability(SpeechCapability):
    """Recognizer driven by the test.

    ``stop()`` reports the end event right away unless ``end_on_stop``
    is False, in which case the test calls ``end()`` itself.
    """

    def __init__(self, end_on_stop: bool = True, fail_on_start: bool = False) -> None:
        super().__init__()
        self.end_on_stop = end_on_stop
        self.fail_on_start = fail_on_start
        self.start_calls = 0
        self.stop_calls = 0
        self.running = False

    def start(self) -> None:
        if self.fail_on_start:
            raise RuntimeError("microphone busy")
        self.start_calls += 1
        self.running = True

    def stop(self) -> None:
        self.stop_calls += 1
        was_running = self.running
        self.running = False
        if self.end_on_stop and was_running:
            self.emit_end()

    def say(self, text: str, final: bool = True) -> None:
        self.emit_result(final, text)

    def fail(self, code: str, message: Optional[str] = None) -> None:
        self.emit_error(code, message)

    def end(self) -> None:
        self.running = False
        self.emit_end()


class FakeExtractionBackend(ExtractionBackend):
    """Extraction backend whose calls stay pending until the test settles them."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, FieldValue, asyncio.Future]] = []
        self.closed = False

    async def extract(self, transcript: str, fields: list[FieldSpec], current_values: FieldValue) -> ExtractionResult:
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self.calls.append((transcript, dict(current_values), future))
        return await future

    def resolve(self, index: int, field_values: FieldValue, **kwargs) -> None:
        _, _, future = self.calls[index]
        future.set_result(ExtractionResult(field_values=field_values, confidence=kwargs.pop("confidence", 0.9), **kwargs))

    def fail(self, index: int, error: Exception) -> None:
        _, _, future = self.calls[index]
        future.set_exception(error)

    async def aclose(self) -> None:
        self.closed = True


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings() -> Settings:
    return Settings(debounce_ms=0, extraction_timeout_seconds=5.0)


@pytest.fixture
def contact_fields() -> list[FieldSpec]:
    return [
        FieldSpec(id="name", type="text", required=True),
        FieldSpec(id="email", type="email", required=True),
    ]


@pytest.fixture
def fake_capability() -> FakeSpeechCapability:
    return FakeSpeechCapability()


@pytest.fixture
def fake_backend() -> FakeExtractionBackend:
    return FakeExtractionBackend()


@pytest.fixture
def manual_end_capability() -> FakeSpeechCapability:
    """Capability whose end event only arrives when the test calls ``end()``."""
    return FakeSpeechCapability(end_on_stop=False)


@pytest.fixture
def failing_capability() -> FakeSpeechCapability:
    return FakeSpeechCapability(fail_on_start=True)
