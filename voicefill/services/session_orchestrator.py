"""
Session Orchestrator.

Runs one fill session end to end: owns the capture session, the
extraction backend, the value store and the clarification controller,
and wires their callbacks into the state machine in
``session_machine``.

Events are queued and processed one at a time (run to completion), so a
callback fired while a command is executing never interleaves with it.
Extraction calls run as background tasks; their outcomes come back as
events tagged with the sequence number they were issued under.
"""

from __future__ import annotations

import asyncio
import uuid
from collections import deque
from typing import Callable, Mapping, Optional

import structlog

from voicefill.config import Settings, get_settings
from voicefill.errors import (
    ExtractionServiceError,
    SessionStateError,
    SpeechErrorCategory,
    SpeechRecognitionError,
    UnsupportedPlatform,
    get_user_message,
)
from voicefill.logging_config import get_logger
from voicefill.schemas.form import FieldSpec, FieldValue, index_fields
from voicefill.schemas.session import (
    ClarificationOutcome,
    SessionNotice,
    SessionSnapshot,
    SessionState,
)
from voicefill.services.clarification import ClarificationController
from voicefill.services.field_extraction import ExtractionBackend, create_extraction_backend
from voicefill.services.field_validator import FieldValidatorBackend, create_validator_backend
from voicefill.services.field_values import FieldValueStore
from voicefill.services.session_machine import (
    ApplyValues,
    CaptureEnded,
    CaptureFailed,
    ClarificationCancelled,
    ClarificationResolved,
    CloseClarification,
    Command,
    DiscardResult,
    Event,
    ExtractionFailed,
    ExtractionSucceeded,
    IssueExtraction,
    Notify,
    OpenClarification,
    SessionModel,
    StartCapture,
    StartRequested,
    StopCapture,
    StopRequested,
    Submit,
    SubmitRequested,
    TranscriptCommitted,
    transition,
)
from voicefill.services.speech_capture import SpeechCaptureSession

logger = get_logger(__name__)

MAX_NOTICES = 20
VALIDATION_REJECTED_CATEGORY = "validation.rejected"

ChangeListener = Callable[[SessionSnapshot], None]


class SessionOrchestrator:
    """
    One respondent filling one form by voice.

    Args:
        fields: The form being filled. Field ids must be unique.
        capture: Speech capture session to drive.
        extractor: Extraction backend. When omitted, one is built from
            settings and closed by ``aclose()``.
        validator: Backend for clarification answers.
        settings: Defaults to ``get_settings()``.
        session_id: Defaults to a random id.
    """

    def __init__(
        self,
        fields: list[FieldSpec],
        capture: SpeechCaptureSession,
        extractor: Optional[ExtractionBackend] = None,
        validator: Optional[FieldValidatorBackend] = None,
        settings: Optional[Settings] = None,
        session_id: Optional[str] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self.session_id = session_id or uuid.uuid4().hex
        self._fields = list(fields)
        self._fields_by_id = index_fields(self._fields)

        self._capture = capture
        self._owns_extractor = extractor is None
        self._extractor = extractor or create_extraction_backend(self._settings)
        self._values = FieldValueStore(self._fields)
        self._clarification = ClarificationController(
            self._fields_by_id,
            self._values,
            validator or create_validator_backend(self._settings),
            reset_transcript=capture.reset_transcript,
        )

        self._model = SessionModel()
        self._queue: deque[Event] = deque()
        self._dispatching = False
        self._tasks: set[asyncio.Task] = set()
        self._notices: list[SessionNotice] = []
        self._listeners: list[ChangeListener] = []
        self._submitted: Optional[Mapping[str, str]] = None
        self._closed = False

        capture.on_commit(lambda text: self.dispatch(TranscriptCommitted(text=text)))
        capture.on_error(self._on_capture_error)
        capture.on_end(lambda: self.dispatch(CaptureEnded()))
        capture.on_update(lambda _transcript: self._notify_listeners())

    # -- Public state --

    @property
    def state(self) -> SessionState:
        return self._model.state

    @property
    def fields(self) -> list[FieldSpec]:
        return list(self._fields)

    @property
    def field_values(self) -> FieldValue:
        return self._values.snapshot()

    @property
    def clarification(self) -> ClarificationController:
        return self._clarification

    @property
    def notices(self) -> list[SessionNotice]:
        return list(self._notices)

    @property
    def pending_extractions(self) -> int:
        return len(self._tasks)

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            session_id=self.session_id,
            state=self._model.state,
            field_values=self._values.snapshot(),
            transcript=self._capture.transcript,
            clarification_prompt=self._clarification.prompt,
            notices=list(self._notices),
        )

    def on_change(self, listener: ChangeListener) -> None:
        """Called with a fresh snapshot after every processed event."""
        self._listeners.append(listener)

    # -- Operations --

    def start(self) -> SessionState:
        self._ensure_open()
        self.dispatch(StartRequested())
        return self.state

    def stop(self) -> SessionState:
        """Stop recording. Speech still inside the debounce window is extracted first."""
        self._ensure_open()
        if self.state in (SessionState.RECORDING, SessionState.EXTRACTING):
            self._capture.flush()
        self.dispatch(StopRequested())
        return self.state

    async def respond(self, answer: str, keep_recording: bool = True) -> ClarificationOutcome:
        """
        Answer the open clarification question.

        Raises:
            SessionStateError: No clarification is open.
        """
        self._ensure_open()
        if self.state != SessionState.CLARIFYING:
            raise SessionStateError(f"Cannot respond while {self.state.value}")

        outcome = await self._clarification.respond(answer)
        if outcome.resolved:
            self.dispatch(ClarificationResolved(keep_recording=keep_recording))
        else:
            self._add_notice(
                SessionNotice(
                    category=VALIDATION_REJECTED_CATEGORY,
                    message=outcome.error or "Invalid response",
                )
            )
            self._notify_listeners()
        return outcome

    def cancel(self, keep_recording: bool = False) -> bool:
        """Dismiss the open clarification. Returns False if none was open."""
        self._ensure_open()
        if self.state != SessionState.CLARIFYING:
            return False
        self.dispatch(ClarificationCancelled(keep_recording=keep_recording))
        return True

    def submit(self) -> Mapping[str, str]:
        """
        Freeze the values and hand them off.

        Raises:
            SessionStateError: Extraction or clarification is in progress.
        """
        self._ensure_open()
        if self.state == SessionState.SUBMITTED and self._submitted is not None:
            return self._submitted
        self.dispatch(SubmitRequested())
        if self.state != SessionState.SUBMITTED or self._submitted is None:
            raise SessionStateError(f"Cannot submit while {self.state.value}")
        return self._submitted

    async def aclose(self) -> None:
        """Stop capture and drop in-flight extractions."""
        if self._closed:
            return
        self._closed = True
        self._capture.stop()

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

        if self._owns_extractor:
            await self._extractor.aclose()
        logger.info("session_closed", session_id=self.session_id)

    # -- Event loop --

    def dispatch(self, event: Event) -> None:
        """Queue an event; process the queue unless already doing so."""
        if self._closed:
            logger.debug("event_dropped_after_close", trigger=type(event).__name__)
            return
        self._queue.append(event)
        if self._dispatching:
            return

        self._dispatching = True
        try:
            with structlog.contextvars.bound_contextvars(session_id=self.session_id):
                while self._queue:
                    self._step(self._queue.popleft())
        finally:
            self._dispatching = False

    def _step(self, event: Event) -> None:
        previous = self._model.state
        self._model, commands = transition(self._model, event)
        if self._model.state != previous:
            logger.info(
                "session_state_changed",
                from_state=previous.value,
                to_state=self._model.state.value,
                trigger=type(event).__name__,
            )
        for command in commands:
            self._execute(command)
        self._notify_listeners()

    def _execute(self, command: Command) -> None:
        if isinstance(command, StartCapture):
            self._start_capture()
        elif isinstance(command, StopCapture):
            self._capture.stop()
        elif isinstance(command, IssueExtraction):
            self._issue_extraction(command)
        elif isinstance(command, ApplyValues):
            changed = self._values.merge(command.values)
            logger.info("field_values_applied", seq=command.seq, changed=sorted(changed))
        elif isinstance(command, OpenClarification):
            if not self._clarification.open(command.prompt):
                self.dispatch(ClarificationCancelled(keep_recording=True))
        elif isinstance(command, CloseClarification):
            self._clarification.cancel()
        elif isinstance(command, Notify):
            self._add_notice(
                SessionNotice(category=command.category, message=command.message, fatal=command.fatal)
            )
        elif isinstance(command, DiscardResult):
            logger.info("stale_extraction_discarded", seq=command.seq, reason=command.reason)
        elif isinstance(command, Submit):
            self._submitted = self._values.frozen()
            logger.info("session_submitted", field_count=len(self._submitted))
        else:
            raise TypeError(f"Unknown session command: {command!r}")

    # -- Command helpers --

    def _start_capture(self) -> None:
        try:
            self._capture.start()
        except UnsupportedPlatform:
            category = SpeechErrorCategory.UNSUPPORTED_PLATFORM
            self.dispatch(CaptureFailed(category=category, message=get_user_message(category), fatal=True))
        except SpeechRecognitionError as e:
            self.dispatch(CaptureFailed(category=e.category, message=get_user_message(e.category), fatal=True))

    def _issue_extraction(self, command: IssueExtraction) -> None:
        if command.supersedes is not None:
            logger.info("extraction_superseded", stale_seq=command.supersedes, seq=command.seq)
        task = asyncio.create_task(
            self._run_extraction(command.seq, command.transcript, self._values.snapshot())
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_extraction(self, seq: int, transcript: str, current_values: FieldValue) -> None:
        try:
            result = await asyncio.wait_for(
                self._extractor.extract(transcript, self._fields, current_values),
                timeout=self._settings.extraction_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.error(
                "extraction_timed_out",
                seq=seq,
                timeout=self._settings.extraction_timeout_seconds,
            )
            self.dispatch(ExtractionFailed(seq=seq, error="Extraction timed out"))
            return
        except ExtractionServiceError as e:
            logger.error("extraction_failed", seq=seq, error=str(e))
            self.dispatch(ExtractionFailed(seq=seq, error=str(e)))
            return
        except Exception as e:
            logger.exception("extraction_crashed", seq=seq, error=str(e))
            self.dispatch(ExtractionFailed(seq=seq, error=str(e)))
            return

        if result.confidence < self._settings.low_confidence_threshold:
            logger.warning(
                "extraction_low_confidence",
                seq=seq,
                confidence=result.confidence,
                threshold=self._settings.low_confidence_threshold,
            )
        self.dispatch(ExtractionSucceeded(seq=seq, result=result))

    def _on_capture_error(self, error: SpeechRecognitionError) -> None:
        self.dispatch(
            CaptureFailed(
                category=error.category,
                message=get_user_message(error.category),
                fatal=error.fatal,
            )
        )

    def _add_notice(self, notice: SessionNotice) -> None:
        if notice.category == SpeechErrorCategory.UNSUPPORTED_PLATFORM and any(
            n.category == notice.category for n in self._notices
        ):
            return
        if notice.fatal:
            logger.warning("session_notice", category=notice.category, fatal=True)
        else:
            logger.info("session_notice", category=notice.category)
        self._notices.append(notice)
        del self._notices[:-MAX_NOTICES]

    def _notify_listeners(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error("session_listener_failed", error=str(e))

    def _ensure_open(self) -> None:
        if self._closed:
            raise SessionStateError("Session is closed")
