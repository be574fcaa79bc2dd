"""Tests for the clarification controller."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from voicefill.errors import SessionStateError, ValidationServiceError
from voicefill.schemas.extraction import ClarificationPrompt, ValidationOutcome
from voicefill.schemas.form import FieldSpec, index_fields
from voicefill.services.clarification import (
    ClarificationController,
    ClarificationState,
    build_clarification_prompt,
)
from voicefill.services.field_validator import LocalValidator
from voicefill.services.field_values import FieldValueStore


def _controller(fields, validator=None, reset=None):
    store = FieldValueStore(fields)
    controller = ClarificationController(
        index_fields(fields),
        store,
        validator or LocalValidator(suggestion_domain="example.com"),
        reset_transcript=reset,
    )
    return controller, store


EMAIL_PROMPT = ClarificationPrompt(field_id="email", question="Could you please provide the Email?")


class TestBuildPrompt:
    def test_free_text(self) -> None:
        prompt = build_clarification_prompt(FieldSpec(id="first_name"))
        assert prompt.question == "Could you please provide the First name?"
        assert prompt.options is None

    def test_with_options(self) -> None:
        field = FieldSpec(id="size", type="select", options=[{"value": "s", "label": "Small"}])
        prompt = build_clarification_prompt(field)
        assert prompt.options == ["Small"]


class TestExclusivity:
    def test_second_prompt_ignored(self, contact_fields) -> None:
        controller, _ = _controller(contact_fields)
        assert controller.open(EMAIL_PROMPT) is True
        other = ClarificationPrompt(field_id="name", question="Name?")
        assert controller.open(other) is False
        assert controller.prompt == EMAIL_PROMPT

    def test_unknown_field_rejected(self, contact_fields) -> None:
        controller, _ = _controller(contact_fields)
        assert controller.open(ClarificationPrompt(field_id="zip", question="Zip?")) is False
        assert controller.state == ClarificationState.IDLE

    def test_new_prompt_after_cancel(self, contact_fields) -> None:
        controller, _ = _controller(contact_fields)
        controller.open(EMAIL_PROMPT)
        assert controller.cancel() is True
        assert controller.cancel() is False
        assert controller.open(ClarificationPrompt(field_id="name", question="Name?")) is True


class TestRespond:
    def test_valid_answer_commits_and_resets(self, contact_fields) -> None:
        reset = MagicMock()
        controller, store = _controller(contact_fields, reset=reset)
        controller.open(EMAIL_PROMPT)

        outcome = asyncio.run(controller.respond("alex@example.com"))

        assert outcome.resolved is True
        assert outcome.value == "alex@example.com"
        assert store.snapshot() == {"email": "alex@example.com"}
        assert controller.state == ClarificationState.IDLE
        assert controller.prompt is None
        reset.assert_called_once()

    def test_suggestion_of_valid_outcome_is_committed(self, contact_fields) -> None:
        controller, store = _controller(contact_fields)
        controller.open(EMAIL_PROMPT)
        outcome = asyncio.run(controller.respond("alex at example dot com"))
        assert outcome.value == "alex@example.com"
        assert store.get("email") == "alex@example.com"

    def test_invalid_answer_keeps_prompt_open(self, contact_fields) -> None:
        reset = MagicMock()
        controller, store = _controller(contact_fields, reset=reset)
        controller.open(EMAIL_PROMPT)

        outcome = asyncio.run(controller.respond("alex"))

        assert outcome.resolved is False
        assert outcome.validation.suggestion == "alex@example.com"
        assert controller.active
        assert controller.last_error == "Please enter a valid email address"
        assert controller.last_suggestion == "alex@example.com"
        assert "email" not in store
        reset.assert_not_called()

    def test_respond_without_prompt(self, contact_fields) -> None:
        controller, _ = _controller(contact_fields)
        with pytest.raises(SessionStateError):
            asyncio.run(controller.respond("anything"))

    def test_validation_service_failure(self, contact_fields) -> None:
        validator = MagicMock()
        validator.validate = AsyncMock(side_effect=ValidationServiceError("down"))
        controller, store = _controller(contact_fields, validator=validator)
        controller.open(EMAIL_PROMPT)

        outcome = asyncio.run(controller.respond("a@b.com"))

        assert outcome.resolved is False
        assert outcome.error == "Failed to validate response. Please try again."
        assert controller.active
        assert len(store) == 0

    def test_concurrent_respond_rejected(self, contact_fields) -> None:
        async def run():
            gate = asyncio.Event()

            async def slow_validate(field, value):
                await gate.wait()
                return ValidationOutcome(is_valid=True)

            validator = MagicMock()
            validator.validate = slow_validate
            controller, _ = _controller(contact_fields, validator=validator)
            controller.open(EMAIL_PROMPT)

            first = asyncio.create_task(controller.respond("a@b.com"))
            await asyncio.sleep(0)
            with pytest.raises(SessionStateError):
                await controller.respond("c@d.com")
            gate.set()
            return await first

        assert asyncio.run(run()).resolved is True

    def test_cancel_during_validation(self, contact_fields) -> None:
        async def run():
            gate = asyncio.Event()

            async def slow_validate(field, value):
                await gate.wait()
                return ValidationOutcome(is_valid=True)

            validator = MagicMock()
            validator.validate = slow_validate
            controller, store = _controller(contact_fields, validator=validator)
            controller.open(EMAIL_PROMPT)

            pending = asyncio.create_task(controller.respond("a@b.com"))
            await asyncio.sleep(0)
            controller.cancel()
            gate.set()
            return await pending, store

        outcome, store = asyncio.run(run())
        assert outcome.resolved is False
        assert len(store) == 0


class TestOptionalFieldLeftBlank:
    fields = [FieldSpec(id="name", required=True), FieldSpec(id="nick")]
    prompt = ClarificationPrompt(field_id="nick", question="Any nickname?")

    def test_blank_answer_keeps_committed_value(self) -> None:
        controller, store = _controller(self.fields)
        store.merge({"name": "Alex", "nick": "Al"})
        controller.open(self.prompt)

        outcome = asyncio.run(controller.respond(""))

        assert outcome.resolved is True
        assert outcome.value == "Al"
        assert store.snapshot() == {"name": "Alex", "nick": "Al"}
        assert controller.state == ClarificationState.IDLE

    def test_blank_answer_writes_nothing(self) -> None:
        controller, store = _controller(self.fields)
        controller.open(self.prompt)

        outcome = asyncio.run(controller.respond("   "))

        assert outcome.resolved is True
        assert outcome.value is None
        assert "nick" not in store

    def test_store_refuses_empty_commit(self) -> None:
        store = FieldValueStore(self.fields)
        with pytest.raises(ValueError):
            store.commit("nick", " ")
