"""
Data models for fill sessions as seen by the UI.
"""

from enum import Enum
from typing import Optional

from pydantic import Field

from voicefill.schemas.base import WireModel
from voicefill.schemas.extraction import ClarificationPrompt, ValidationOutcome
from voicefill.schemas.form import FieldSpec, FieldValue
from voicefill.schemas.transcript import TranscriptState


class SessionState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    EXTRACTING = "extracting"
    CLARIFYING = "clarifying"
    SUBMITTED = "submitted"


class SessionNotice(WireModel):
    """A user-visible, non-blocking message."""
    category: str
    message: str
    fatal: bool = False


class SessionSnapshot(WireModel):
    session_id: str
    state: SessionState
    field_values: FieldValue
    transcript: TranscriptState
    clarification_prompt: Optional[ClarificationPrompt] = None
    notices: list[SessionNotice] = Field(default_factory=list)


class ClarificationOutcome(WireModel):
    """What happened to one clarification answer."""
    resolved: bool
    field_id: str
    value: Optional[str] = None
    validation: Optional[ValidationOutcome] = None
    error: Optional[str] = None


class CreateSessionRequest(WireModel):
    fields: list[FieldSpec] = Field(min_length=1)


class RespondRequest(WireModel):
    answer: str
    keep_recording: bool = True


class CancelRequest(WireModel):
    keep_recording: bool = False


class SubmitResponse(WireModel):
    session_id: str
    field_values: FieldValue
