"""
Speech capability boundary.

A speech capability is whatever actually turns audio into text: the
browser's recognizer, a streaming STT provider, or a test fake. The
capture session only needs ``start``/``stop`` plus three event hooks,
so every recognizer is adapted to ``SpeechCapability``.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Callable, Optional

from voicefill.logging_config import get_logger

logger = get_logger(__name__)

ResultHandler = Callable[[bool, str], None]
ErrorHandler = Callable[[str, Optional[str]], None]
EndHandler = Callable[[], None]


class SpeechCapability(ABC):
    """
    Continuous, interim-result-capable speech-to-text.

    Implementations call the bound handlers:

    - ``on_result(is_final, transcript_chunk)`` per utterance segment,
    - ``on_error(code, message)`` with a platform error code,
    - ``on_end()`` once recognition has fully stopped (also after
      ``stop()``, possibly asynchronously).
    """

    def __init__(self) -> None:
        self._on_result: Optional[ResultHandler] = None
        self._on_error: Optional[ErrorHandler] = None
        self._on_end: Optional[EndHandler] = None

    def bind(self, on_result: ResultHandler, on_error: ErrorHandler, on_end: EndHandler) -> None:
        self._on_result = on_result
        self._on_error = on_error
        self._on_end = on_end

    @property
    def available(self) -> bool:
        return True

    @abstractmethod
    def start(self) -> None:
        ...

    @abstractmethod
    def stop(self) -> None:
        ...

    # Helpers for implementations

    def emit_result(self, is_final: bool, transcript_chunk: str) -> None:
        if self._on_result is not None:
            self._on_result(is_final, transcript_chunk)

    def emit_error(self, code: str, message: Optional[str] = None) -> None:
        if self._on_error is not None:
            self._on_error(code, message)

    def emit_end(self) -> None:
        if self._on_end is not None:
            self._on_end()


class PushSpeechCapability(SpeechCapability):
    """
    Relay for a recognizer running elsewhere (the respondent's browser).

    The browser owns the microphone and posts its recognition events to
    the API, which feeds them in with ``push_result`` / ``push_error`` /
    ``push_end``. Events are only forwarded while the relay is started.
    ``stop()`` ends the relay on the next loop iteration, mirroring the
    asynchronous end event of a real recognizer.
    """

    def __init__(self, language: str = "en-US") -> None:
        super().__init__()
        self.language = language
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    def start(self) -> None:
        self._active = True
        logger.debug("push_capability_started", language=self.language)

    def stop(self) -> None:
        if not self._active:
            return
        self._active = False
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.emit_end()
            return
        loop.call_soon(self.emit_end)

    def push_result(self, is_final: bool, transcript_chunk: str) -> bool:
        """Forward a browser result. Returns False if the relay is stopped."""
        if not self._active:
            logger.debug("push_result_dropped", reason="inactive")
            return False
        self.emit_result(is_final, transcript_chunk)
        return True

    def push_error(self, code: str, message: Optional[str] = None) -> None:
        self.emit_error(code, message)

    def push_end(self) -> None:
        """The browser recognizer ended on its own."""
        if self._active:
            self._active = False
            self.emit_end()
