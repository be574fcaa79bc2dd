"""
Speech Capture Session.

Wraps an injected ``SpeechCapability`` into a session with explicit
start/stop and a debounced transcript:

- every recognized chunk updates the transcript immediately, so the UI
  can caption live;
- merging the interim guess into the final text, and telling listeners
  the transcript was *committed*, waits for a quiet window
  (``Settings.debounce_ms``) restarted on every chunk. Commits are what
  drive extraction, so extraction does not run on every partial word;
- ``stop()`` commits whatever is still pending before asking the
  capability to end.

All callbacks run on the event loop thread; the session itself holds no
locks.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Callable, Optional

from voicefill.config import get_settings
from voicefill.errors import (
    SpeechErrorCategory,
    SpeechRecognitionError,
    UnsupportedPlatform,
    classify_speech_error,
)
from voicefill.logging_config import get_logger
from voicefill.schemas.transcript import TranscriptState, join_text
from voicefill.services.speech_capability import SpeechCapability

logger = get_logger(__name__)

UpdateListener = Callable[[TranscriptState], None]
CommitListener = Callable[[str], None]
ErrorListener = Callable[[SpeechRecognitionError], None]
EndListener = Callable[[], None]


class CaptureState(str, Enum):
    STOPPED = "stopped"
    RECORDING = "recording"
    STOPPING = "stopping"  # stop requested, waiting for the capability's end event


class SpeechCaptureSession:
    """
    One continuous recording session against a speech capability.

    Args:
        capability: The recognizer. ``None`` means the platform has no
            speech support; ``start()`` then raises ``UnsupportedPlatform``.
        debounce_ms: Quiet window before a commit. Defaults to
            ``Settings.debounce_ms``.
    """

    def __init__(
        self,
        capability: Optional[SpeechCapability],
        debounce_ms: Optional[int] = None,
    ) -> None:
        if debounce_ms is None:
            debounce_ms = get_settings().debounce_ms
        self._debounce_seconds = max(debounce_ms, 0) / 1000.0
        self._capability = capability

        self._state = CaptureState.STOPPED
        self._final_text = ""
        self._interim_text = ""
        self._committed_text = ""
        self._timer: Optional[asyncio.TimerHandle] = None
        self._restart_pending = False

        self._update_listeners: list[UpdateListener] = []
        self._commit_listeners: list[CommitListener] = []
        self._error_listeners: list[ErrorListener] = []
        self._end_listeners: list[EndListener] = []

        if capability is not None:
            capability.bind(self._handle_result, self._handle_error, self._handle_end)

    # -- Public state --

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def is_recording(self) -> bool:
        return self._state == CaptureState.RECORDING

    @property
    def transcript(self) -> TranscriptState:
        return TranscriptState(final_text=self._final_text, interim_text=self._interim_text)

    @property
    def supported(self) -> bool:
        return self._capability is not None and self._capability.available

    # -- Listener registration --

    def on_update(self, callback: UpdateListener) -> None:
        self._update_listeners.append(callback)

    def on_commit(self, callback: CommitListener) -> None:
        self._commit_listeners.append(callback)

    def on_error(self, callback: ErrorListener) -> None:
        self._error_listeners.append(callback)

    def on_end(self, callback: EndListener) -> None:
        self._end_listeners.append(callback)

    # -- Lifecycle --

    def start(self) -> None:
        """
        Begin recording with a fresh transcript.

        Raises:
            UnsupportedPlatform: No speech capability is available.
            SpeechRecognitionError: The capability refused to start.
        """
        if not self.supported:
            raise UnsupportedPlatform("Speech recognition is not supported on this platform.")

        if self._state == CaptureState.RECORDING:
            return
        if self._state == CaptureState.STOPPING:
            # The previous run has not ended yet; restart once it does
            self._restart_pending = True
            logger.debug("capture_restart_deferred")
            return
        self._begin()

    def stop(self) -> None:
        """
        Ask the capability to end. Idempotent.

        Words still inside the debounce window are committed first, so a
        stop never leaves recognized speech unextracted.
        """
        self._restart_pending = False
        if self._state != CaptureState.RECORDING:
            return
        self.flush()
        if self._state != CaptureState.RECORDING:
            # A commit listener already stopped us
            return
        self._state = CaptureState.STOPPING
        logger.info("capture_stopping")
        self._stop_capability()

    def flush(self) -> None:
        """Commit pending text now instead of waiting for the quiet window."""
        if self._state != CaptureState.RECORDING:
            return
        self._cancel_timer()
        self._commit()

    def reset_transcript(self) -> None:
        """Clear the transcript without stopping capture."""
        self._cancel_timer()
        self._final_text = ""
        self._interim_text = ""
        self._committed_text = ""
        self._notify_update()

    def _begin(self) -> None:
        if self._capability is None:
            raise UnsupportedPlatform("Speech recognition is not supported on this platform.")
        self._cancel_timer()
        self._final_text = ""
        self._interim_text = ""
        self._committed_text = ""
        self._state = CaptureState.RECORDING
        try:
            self._capability.start()
        except Exception as e:
            self._state = CaptureState.STOPPED
            logger.error("capture_start_failed", error=str(e))
            raise SpeechRecognitionError(
                code="start-failed",
                category=SpeechErrorCategory.UNKNOWN,
                fatal=True,
                detail=str(e),
            ) from e
        logger.info("capture_started")
        self._notify_update()

    # -- Capability events --

    def _handle_result(self, is_final: bool, transcript_chunk: str) -> None:
        if self._state == CaptureState.STOPPED:
            # Frozen: late results after the end event are dropped
            return

        self._cancel_timer()
        chunk = transcript_chunk.strip()
        if is_final:
            self._final_text = join_text(self._final_text, chunk)
            self._interim_text = ""
        else:
            self._interim_text = chunk
        self._notify_update()

        if self._state == CaptureState.RECORDING:
            self._schedule_commit()

    def _handle_error(self, code: str, message: Optional[str] = None) -> None:
        error = classify_speech_error(code, message)
        logger.warning(
            "capture_error",
            code=error.code,
            category=error.category,
            fatal=error.fatal,
        )

        if not error.fatal or self._state == CaptureState.STOPPED:
            self._notify_error(error)
            return

        self._restart_pending = False
        if self._state == CaptureState.STOPPING:
            # Already waiting for the end event
            self._notify_error(error)
            return

        # Stopped for good only once the capability reports its end; a
        # start() before then is deferred like any other restart.
        self._cancel_timer()
        self._merge_interim()
        self._state = CaptureState.STOPPING
        self._notify_update()
        self._notify_error(error)
        if self._state == CaptureState.STOPPING:
            self._stop_capability()

    def _handle_end(self) -> None:
        if self._state == CaptureState.STOPPED:
            return

        self._cancel_timer()
        self._merge_interim()
        self._state = CaptureState.STOPPED
        logger.info("capture_ended", final_length=len(self._final_text))
        self._notify_update()

        if self._restart_pending:
            self._restart_pending = False
            try:
                self._begin()
                return
            except SpeechRecognitionError as e:
                self._notify_error(e)

        for end_listener in list(self._end_listeners):
            self._call(end_listener)

    # -- Debounce --

    def _schedule_commit(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop to wait on: commit right away
            self._commit()
            return
        self._timer = loop.call_later(self._debounce_seconds, self._commit)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _commit(self) -> None:
        self._timer = None
        if self._state != CaptureState.RECORDING:
            return

        if self._interim_text:
            self._merge_interim()
            self._notify_update()

        text = self._final_text
        if not text or text == self._committed_text:
            return
        self._committed_text = text
        logger.debug("transcript_committed", length=len(text))
        for listener in list(self._commit_listeners):
            self._call(listener, text)

    def _merge_interim(self) -> None:
        if self._interim_text:
            self._final_text = join_text(self._final_text, self._interim_text)
            self._interim_text = ""

    # -- Helpers --

    def _stop_capability(self) -> None:
        if self._capability is None:
            self._handle_end()
            return
        try:
            self._capability.stop()
        except Exception as e:
            logger.warning("capture_stop_failed", error=str(e))
            # No end event will come: finish the stop here
            self._handle_end()

    def _notify_error(self, error: SpeechRecognitionError) -> None:
        for listener in list(self._error_listeners):
            self._call(listener, error)

    def _notify_update(self) -> None:
        state = self.transcript
        for listener in list(self._update_listeners):
            self._call(listener, state)

    @staticmethod
    def _call(listener: Callable, *args: object) -> None:
        try:
            listener(*args)
        except Exception as e:
            logger.error("capture_listener_failed", listener=repr(listener), error=str(e))
