"""
Voice Form Fill error hierarchy.

All service exceptions inherit from ``VoiceFillError`` so callers can
catch a single base class while still handling specific failures.

Speech capability failures arrive as platform error codes (the Web
Speech API vocabulary: ``no-speech``, ``not-allowed``, ...). They are
mapped to stable categories here so the rest of the pipeline never
branches on raw platform strings.

A rejected clarification answer is *not* an exception: it is an
invalid ``ValidationOutcome`` that keeps the clarification open.
"""

from __future__ import annotations

from typing import Optional


class VoiceFillError(Exception):
    """Base exception for all Voice Form Fill errors."""


class UnsupportedPlatform(VoiceFillError):
    """No speech capability is available. Fatal to the fill session."""


class SpeechRecognitionError(VoiceFillError):
    """The speech capability reported a failure.

    Recoverable at the session level: recording stops (when ``fatal``)
    but the respondent can start again.
    """

    def __init__(self, code: str, category: str, fatal: bool, detail: Optional[str] = None) -> None:
        self.code = code
        self.category = category
        self.fatal = fatal
        self.detail = detail
        super().__init__(f"Speech recognition error: {code}")


class ExtractionServiceError(VoiceFillError):
    """Extraction call failed, timed out, or returned a malformed payload.

    Treated as "no update this cycle": capture keeps going.
    """


class ValidationServiceError(VoiceFillError):
    """Remote validation call failed. The clarification stays open."""


class SessionStateError(VoiceFillError):
    """An operation is not allowed in the session's current state."""


class SpeechErrorCategory:
    """Stable speech error categories."""

    NO_SPEECH = "speech.no_speech"
    ABORTED = "speech.aborted"
    AUDIO_CAPTURE = "speech.audio_capture"
    NETWORK = "speech.network"
    PERMISSION_DENIED = "speech.permission_denied"
    LANGUAGE_UNSUPPORTED = "speech.language_unsupported"
    UNSUPPORTED_PLATFORM = "speech.unsupported_platform"
    UNKNOWN = "speech.unknown"


# Platform code -> (category, fatal)
_SPEECH_CODES: dict[str, tuple[str, bool]] = {
    "no-speech": (SpeechErrorCategory.NO_SPEECH, False),
    "aborted": (SpeechErrorCategory.ABORTED, True),
    "audio-capture": (SpeechErrorCategory.AUDIO_CAPTURE, True),
    "network": (SpeechErrorCategory.NETWORK, True),
    "not-allowed": (SpeechErrorCategory.PERMISSION_DENIED, True),
    "service-not-allowed": (SpeechErrorCategory.PERMISSION_DENIED, True),
    "language-not-supported": (SpeechErrorCategory.LANGUAGE_UNSUPPORTED, True),
    "bad-grammar": (SpeechErrorCategory.UNKNOWN, True),
}

_USER_MESSAGES: dict[str, str] = {
    SpeechErrorCategory.NO_SPEECH: "We didn't catch that. Keep talking when you're ready.",
    SpeechErrorCategory.ABORTED: "Recording was interrupted. Press the microphone to try again.",
    SpeechErrorCategory.AUDIO_CAPTURE: "No microphone was found. Check your audio device and try again.",
    SpeechErrorCategory.NETWORK: "Speech recognition lost its connection. Please try again.",
    SpeechErrorCategory.PERMISSION_DENIED: "Microphone access was denied. Allow it in your browser settings.",
    SpeechErrorCategory.LANGUAGE_UNSUPPORTED: "This language isn't supported for voice input.",
    SpeechErrorCategory.UNSUPPORTED_PLATFORM: "Speech recognition is not supported in this browser.",
}


def classify_speech_error(code: str, detail: Optional[str] = None) -> SpeechRecognitionError:
    """
    Normalize a platform error code into a ``SpeechRecognitionError``.

    Unknown codes are treated as fatal: an unrecognized failure should
    stop recording rather than leave a half-working session.
    """
    normalized = (code or "").strip().lower()
    category, fatal = _SPEECH_CODES.get(normalized, (SpeechErrorCategory.UNKNOWN, True))
    return SpeechRecognitionError(code=normalized or "unknown", category=category, fatal=fatal, detail=detail)


def get_user_message(category: str) -> str:
    """User-facing message for a speech error category."""
    return _USER_MESSAGES.get(category, "Voice input isn't working right now. Please try again.")
