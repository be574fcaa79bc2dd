"""
Fill session state machine.

Pure transition logic, no I/O: ``transition(model, event)`` returns the
next model plus the commands the runtime (``SessionOrchestrator``) must
carry out, in order. Keeping the rules here makes ordering and
staleness decisions testable without an event loop.

States::

    idle -> recording -> extracting -> recording
                             |
                             +-> clarifying -> recording | idle
    idle | recording -> submitted

Every extraction call gets the next sequence number. Only the result
of the latest call that is still awaited is accepted; anything else
is stale and discarded when it arrives.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Callable, Optional, Union

from voicefill.schemas.extraction import ClarificationPrompt, ExtractionResult
from voicefill.schemas.form import FieldValue
from voicefill.schemas.session import SessionState


@dataclass(frozen=True)
class SessionModel:
    state: SessionState = SessionState.IDLE
    seq: int = 0                    # last issued extraction number
    awaiting: Optional[int] = None  # extraction whose result is still wanted


# -- Events --


@dataclass(frozen=True)
class StartRequested:
    pass


@dataclass(frozen=True)
class StopRequested:
    pass


@dataclass(frozen=True)
class TranscriptCommitted:
    text: str


@dataclass(frozen=True)
class ExtractionSucceeded:
    seq: int
    result: ExtractionResult


@dataclass(frozen=True)
class ExtractionFailed:
    seq: int
    error: str


@dataclass(frozen=True)
class CaptureFailed:
    category: str
    message: str
    fatal: bool


@dataclass(frozen=True)
class CaptureEnded:
    pass


@dataclass(frozen=True)
class ClarificationResolved:
    keep_recording: bool = True


@dataclass(frozen=True)
class ClarificationCancelled:
    keep_recording: bool = False


@dataclass(frozen=True)
class SubmitRequested:
    pass


Event = Union[
    StartRequested, StopRequested, TranscriptCommitted, ExtractionSucceeded,
    ExtractionFailed, CaptureFailed, CaptureEnded, ClarificationResolved,
    ClarificationCancelled, SubmitRequested,
]


# -- Commands --


@dataclass(frozen=True)
class StartCapture:
    pass


@dataclass(frozen=True)
class StopCapture:
    pass


@dataclass(frozen=True)
class IssueExtraction:
    seq: int
    transcript: str
    supersedes: Optional[int] = None


@dataclass(frozen=True)
class ApplyValues:
    seq: int
    values: FieldValue


@dataclass(frozen=True)
class OpenClarification:
    prompt: ClarificationPrompt


@dataclass(frozen=True)
class CloseClarification:
    pass


@dataclass(frozen=True)
class Notify:
    category: str
    message: str
    fatal: bool = False


@dataclass(frozen=True)
class DiscardResult:
    seq: int
    reason: str


@dataclass(frozen=True)
class Submit:
    pass


Command = Union[
    StartCapture, StopCapture, IssueExtraction, ApplyValues, OpenClarification,
    CloseClarification, Notify, DiscardResult, Submit,
]

Transition = tuple[SessionModel, list[Command]]

EXTRACTION_FAILED_CATEGORY = "extraction.failed"
EXTRACTION_FAILED_MESSAGE = "Failed to process voice input. Please try again."

_CAPTURING = (SessionState.RECORDING, SessionState.EXTRACTING)


def _on_start(model: SessionModel, event: StartRequested) -> Transition:
    if model.state == SessionState.IDLE:
        return replace(model, state=SessionState.RECORDING), [StartCapture()]
    return model, []


def _on_stop(model: SessionModel, event: StopRequested) -> Transition:
    if model.state in _CAPTURING:
        # The awaited result, if any, still lands: stopping never drops data
        return replace(model, state=SessionState.IDLE), [StopCapture()]
    if model.state == SessionState.CLARIFYING:
        return replace(model, state=SessionState.IDLE), [CloseClarification(), StopCapture()]
    return model, []


def _on_transcript(model: SessionModel, event: TranscriptCommitted) -> Transition:
    if model.state not in _CAPTURING:
        return model, []
    seq = model.seq + 1
    return (
        replace(model, state=SessionState.EXTRACTING, seq=seq, awaiting=seq),
        [IssueExtraction(seq=seq, transcript=event.text, supersedes=model.awaiting)],
    )


def _on_success(model: SessionModel, event: ExtractionSucceeded) -> Transition:
    if event.seq != model.awaiting:
        return model, [DiscardResult(seq=event.seq, reason="stale")]
    if model.state in (SessionState.CLARIFYING, SessionState.SUBMITTED):
        return replace(model, awaiting=None), [DiscardResult(seq=event.seq, reason=model.state.value)]

    settled = replace(model, awaiting=None)
    commands: list[Command] = [ApplyValues(seq=event.seq, values=dict(event.result.field_values))]

    if model.state != SessionState.EXTRACTING:
        # Arrived after a manual stop: keep the values, ask nothing
        return settled, commands

    prompt = event.result.clarification_prompt
    if event.result.needs_clarification and prompt is not None:
        commands += [StopCapture(), OpenClarification(prompt=prompt)]
        return replace(settled, state=SessionState.CLARIFYING), commands

    return replace(settled, state=SessionState.RECORDING), commands


def _on_failure(model: SessionModel, event: ExtractionFailed) -> Transition:
    if event.seq != model.awaiting:
        return model, [DiscardResult(seq=event.seq, reason="stale")]
    settled = replace(model, awaiting=None)
    notice = Notify(category=EXTRACTION_FAILED_CATEGORY, message=EXTRACTION_FAILED_MESSAGE)
    if model.state == SessionState.EXTRACTING:
        return replace(settled, state=SessionState.RECORDING), [notice]
    return settled, [notice]


def _on_capture_failed(model: SessionModel, event: CaptureFailed) -> Transition:
    commands: list[Command] = [Notify(category=event.category, message=event.message, fatal=event.fatal)]
    if event.fatal and model.state in _CAPTURING:
        return replace(model, state=SessionState.IDLE), commands
    return model, commands


def _on_capture_ended(model: SessionModel, event: CaptureEnded) -> Transition:
    # The recognizer ended on its own (silence timeout, tab hidden...)
    if model.state in _CAPTURING:
        return replace(model, state=SessionState.IDLE), []
    return model, []


def _on_resolved(model: SessionModel, event: ClarificationResolved) -> Transition:
    if model.state != SessionState.CLARIFYING:
        return model, []
    if event.keep_recording:
        return replace(model, state=SessionState.RECORDING), [StartCapture()]
    return replace(model, state=SessionState.IDLE), []


def _on_cancelled(model: SessionModel, event: ClarificationCancelled) -> Transition:
    if model.state != SessionState.CLARIFYING:
        return model, []
    if event.keep_recording:
        return replace(model, state=SessionState.RECORDING), [CloseClarification(), StartCapture()]
    return replace(model, state=SessionState.IDLE), [CloseClarification()]


def _on_submit(model: SessionModel, event: SubmitRequested) -> Transition:
    if model.state == SessionState.IDLE:
        return replace(model, state=SessionState.SUBMITTED, awaiting=None), [Submit()]
    if model.state == SessionState.RECORDING:
        return replace(model, state=SessionState.SUBMITTED, awaiting=None), [StopCapture(), Submit()]
    return model, []


_HANDLERS: dict[type, Callable[[SessionModel, object], Transition]] = {
    StartRequested: _on_start,
    StopRequested: _on_stop,
    TranscriptCommitted: _on_transcript,
    ExtractionSucceeded: _on_success,
    ExtractionFailed: _on_failure,
    CaptureFailed: _on_capture_failed,
    CaptureEnded: _on_capture_ended,
    ClarificationResolved: _on_resolved,
    ClarificationCancelled: _on_cancelled,
    SubmitRequested: _on_submit,
}


def transition(model: SessionModel, event: Event) -> Transition:
    """Apply one event. Events that make no sense in a state are no-ops."""
    handler = _HANDLERS.get(type(event))
    if handler is None:
        raise TypeError(f"Unknown session event: {event!r}")
    return handler(model, event)
