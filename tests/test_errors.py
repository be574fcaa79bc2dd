"""Tests for the error hierarchy and speech error classification."""

from __future__ import annotations

import pytest

from voicefill.errors import (
    ExtractionServiceError,
    SessionStateError,
    SpeechErrorCategory,
    SpeechRecognitionError,
    UnsupportedPlatform,
    ValidationServiceError,
    VoiceFillError,
    classify_speech_error,
    get_user_message,
)


class TestErrorHierarchy:
    @pytest.mark.parametrize(
        "error_cls",
        [UnsupportedPlatform, SpeechRecognitionError, ExtractionServiceError, ValidationServiceError, SessionStateError],
    )
    def test_is_voicefill_error(self, error_cls) -> None:
        assert issubclass(error_cls, VoiceFillError)

    def test_voicefill_error_is_exception(self) -> None:
        assert issubclass(VoiceFillError, Exception)

    def test_catch_extraction_as_base(self) -> None:
        with pytest.raises(VoiceFillError):
            raise ExtractionServiceError("service down")

    def test_speech_error_carries_code(self) -> None:
        exc = SpeechRecognitionError(code="network", category=SpeechErrorCategory.NETWORK, fatal=True)
        assert exc.code == "network"
        assert exc.fatal is True
        assert "network" in str(exc)


class TestClassifySpeechError:
    def test_no_speech_is_not_fatal(self) -> None:
        error = classify_speech_error("no-speech")
        assert error.category == SpeechErrorCategory.NO_SPEECH
        assert error.fatal is False

    @pytest.mark.parametrize(
        "code, category",
        [
            ("not-allowed", SpeechErrorCategory.PERMISSION_DENIED),
            ("service-not-allowed", SpeechErrorCategory.PERMISSION_DENIED),
            ("audio-capture", SpeechErrorCategory.AUDIO_CAPTURE),
            ("network", SpeechErrorCategory.NETWORK),
            ("aborted", SpeechErrorCategory.ABORTED),
            ("language-not-supported", SpeechErrorCategory.LANGUAGE_UNSUPPORTED),
        ],
    )
    def test_known_codes_are_fatal(self, code: str, category: str) -> None:
        error = classify_speech_error(code)
        assert error.category == category
        assert error.fatal is True

    def test_unknown_code_is_fatal(self) -> None:
        error = classify_speech_error("something-new", "detail here")
        assert error.category == SpeechErrorCategory.UNKNOWN
        assert error.fatal is True
        assert error.detail == "detail here"

    def test_code_is_normalized(self) -> None:
        assert classify_speech_error("  No-Speech ").code == "no-speech"

    def test_empty_code(self) -> None:
        assert classify_speech_error("").code == "unknown"


class TestUserMessages:
    def test_known_category(self) -> None:
        assert "denied" in get_user_message(SpeechErrorCategory.PERMISSION_DENIED)

    def test_fallback_message(self) -> None:
        assert get_user_message("nonsense") == "Voice input isn't working right now. Please try again."
