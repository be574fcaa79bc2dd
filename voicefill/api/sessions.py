"""
API Router: Fill Session Endpoints.

The respondent's browser runs the speech recognizer and relays its
events here; each session is driven by a ``SessionOrchestrator`` held
in memory.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException

from voicefill.config import get_settings
from voicefill.errors import SessionStateError
from voicefill.logging_config import get_logger
from voicefill.schemas.session import (
    CancelRequest,
    ClarificationOutcome,
    CreateSessionRequest,
    RespondRequest,
    SessionSnapshot,
    SubmitResponse,
)
from voicefill.schemas.transcript import RecognitionErrorEvent, RecognitionResult
from voicefill.services.field_extraction import ExtractionBackend, create_extraction_backend
from voicefill.services.field_validator import FieldValidatorBackend, create_validator_backend
from voicefill.services.session_orchestrator import SessionOrchestrator
from voicefill.services.speech_capability import PushSpeechCapability
from voicefill.services.speech_capture import SpeechCaptureSession

logger = get_logger(__name__)
router = APIRouter(prefix="/sessions", tags=["Sessions"])


class SessionRegistry:
    """Live fill sessions plus the backends they share."""

    def __init__(self, max_sessions: Optional[int] = None) -> None:
        settings = get_settings()
        self.max_sessions = max_sessions or settings.max_sessions
        self._sessions: dict[str, tuple[SessionOrchestrator, PushSpeechCapability]] = {}
        self._extractor: Optional[ExtractionBackend] = None
        self._validator: Optional[FieldValidatorBackend] = None

    def __len__(self) -> int:
        return len(self._sessions)

    def create(self, body: CreateSessionRequest) -> SessionOrchestrator:
        if len(self._sessions) >= self.max_sessions:
            raise HTTPException(status_code=503, detail="Too many active sessions")

        settings = get_settings()
        if self._extractor is None:
            self._extractor = create_extraction_backend(settings)
        if self._validator is None:
            self._validator = create_validator_backend(settings)

        capability = PushSpeechCapability(language=settings.speech_language)
        orchestrator = SessionOrchestrator(
            fields=body.fields,
            capture=SpeechCaptureSession(capability, debounce_ms=settings.debounce_ms),
            extractor=self._extractor,
            validator=self._validator,
            settings=settings,
        )
        self._sessions[orchestrator.session_id] = (orchestrator, capability)
        logger.info("session_created", session_id=orchestrator.session_id, field_count=len(body.fields))
        return orchestrator

    def get(self, session_id: str) -> tuple[SessionOrchestrator, PushSpeechCapability]:
        entry = self._sessions.get(session_id)
        if entry is None:
            raise HTTPException(status_code=404, detail="Session not found")
        return entry

    async def remove(self, session_id: str) -> None:
        orchestrator, _ = self.get(session_id)
        del self._sessions[session_id]
        await orchestrator.aclose()

    async def aclose(self) -> None:
        for session_id in list(self._sessions):
            await self.remove(session_id)
        if self._extractor is not None:
            await self._extractor.aclose()
            self._extractor = None
        self._validator = None


# Shared registry, closed on app shutdown
registry = SessionRegistry()


def _conflict(e: SessionStateError) -> HTTPException:
    return HTTPException(status_code=409, detail=str(e))


@router.post("", response_model=SessionSnapshot, response_model_by_alias=True)
async def create_session(body: CreateSessionRequest) -> SessionSnapshot:
    """Open a fill session for a form."""
    try:
        orchestrator = registry.create(body)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return orchestrator.snapshot()


@router.get("/{session_id}", response_model=SessionSnapshot, response_model_by_alias=True)
async def get_session(session_id: str) -> SessionSnapshot:
    orchestrator, _ = registry.get(session_id)
    return orchestrator.snapshot()


@router.delete("/{session_id}")
async def delete_session(session_id: str) -> dict[str, str]:
    await registry.remove(session_id)
    return {"session_id": session_id, "status": "closed"}


@router.post("/{session_id}/start", response_model=SessionSnapshot, response_model_by_alias=True)
async def start_recording(session_id: str) -> SessionSnapshot:
    orchestrator, _ = registry.get(session_id)
    try:
        orchestrator.start()
    except SessionStateError as e:
        raise _conflict(e)
    return orchestrator.snapshot()


@router.post("/{session_id}/stop", response_model=SessionSnapshot, response_model_by_alias=True)
async def stop_recording(session_id: str) -> SessionSnapshot:
    orchestrator, _ = registry.get(session_id)
    try:
        orchestrator.stop()
    except SessionStateError as e:
        raise _conflict(e)
    return orchestrator.snapshot()


@router.post("/{session_id}/submit", response_model=SubmitResponse, response_model_by_alias=True)
async def submit_session(session_id: str) -> SubmitResponse:
    """Freeze the session's values. Rejected while extracting or clarifying."""
    orchestrator, _ = registry.get(session_id)
    try:
        values = orchestrator.submit()
    except SessionStateError as e:
        raise _conflict(e)
    return SubmitResponse(session_id=session_id, field_values=dict(values))


# -- Speech relay --


@router.post("/{session_id}/speech/results", response_model=SessionSnapshot, response_model_by_alias=True)
async def push_speech_result(session_id: str, body: RecognitionResult) -> SessionSnapshot:
    orchestrator, capability = registry.get(session_id)
    capability.push_result(body.is_final, body.transcript_chunk)
    return orchestrator.snapshot()


@router.post("/{session_id}/speech/errors", response_model=SessionSnapshot, response_model_by_alias=True)
async def push_speech_error(session_id: str, body: RecognitionErrorEvent) -> SessionSnapshot:
    orchestrator, capability = registry.get(session_id)
    capability.push_error(body.code, body.message or None)
    return orchestrator.snapshot()


@router.post("/{session_id}/speech/end", response_model=SessionSnapshot, response_model_by_alias=True)
async def push_speech_end(session_id: str) -> SessionSnapshot:
    orchestrator, capability = registry.get(session_id)
    capability.push_end()
    return orchestrator.snapshot()


# -- Clarification --


@router.post(
    "/{session_id}/clarification/respond",
    response_model=ClarificationOutcome,
    response_model_by_alias=True,
)
async def respond_to_clarification(session_id: str, body: RespondRequest) -> ClarificationOutcome:
    orchestrator, _ = registry.get(session_id)
    try:
        return await orchestrator.respond(body.answer, keep_recording=body.keep_recording)
    except SessionStateError as e:
        raise _conflict(e)


@router.post("/{session_id}/clarification/cancel", response_model=SessionSnapshot, response_model_by_alias=True)
async def cancel_clarification(session_id: str, body: Optional[CancelRequest] = None) -> SessionSnapshot:
    orchestrator, _ = registry.get(session_id)
    keep_recording = body.keep_recording if body is not None else False
    try:
        if not orchestrator.cancel(keep_recording=keep_recording):
            raise HTTPException(status_code=409, detail="No clarification is open")
    except SessionStateError as e:
        raise _conflict(e)
    return orchestrator.snapshot()
