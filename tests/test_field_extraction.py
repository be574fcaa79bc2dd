"""Tests for heuristic field extraction."""

from __future__ import annotations

import asyncio

from voicefill.schemas.form import FieldSpec
from voicefill.services.field_extraction import (
    ANCHORED_CONFIDENCE,
    PATTERN_CONFIDENCE,
    HeuristicExtractor,
    extract_fields,
)


class TestContactScenario:
    def test_name_and_email(self, contact_fields) -> None:
        result = extract_fields("my name is Alex my email is alex at example dot com", contact_fields)
        assert result.field_values == {"name": "Alex", "email": "alex@example.com"}
        assert result.needs_clarification is False
        assert result.clarification_prompt is None
        assert result.confidence == round((ANCHORED_CONFIDENCE + PATTERN_CONFIDENCE) / 2, 3)

    def test_missing_email_asks_for_it(self, contact_fields) -> None:
        result = extract_fields("my name is Alex", contact_fields)
        assert result.field_values == {"name": "Alex"}
        assert result.needs_clarification is True
        assert result.clarification_prompt.field_id == "email"
        assert result.clarification_prompt.question == "Could you please provide the Email?"

    def test_existing_values_preserved(self, contact_fields) -> None:
        result = extract_fields("my name is Alex", contact_fields, {"email": "a@b.com"})
        assert result.field_values == {"name": "Alex", "email": "a@b.com"}
        assert result.needs_clarification is False

    def test_empty_transcript(self, contact_fields) -> None:
        result = extract_fields("", contact_fields)
        assert result.field_values == {}
        assert result.confidence == 0.0
        assert result.clarification_prompt.field_id == "name"


class TestFieldTypes:
    def test_literal_email(self) -> None:
        fields = [FieldSpec(id="email", type="email")]
        assert extract_fields("reach me at Jo.Doe@Mail.com thanks", fields).field_values == {
            "email": "jo.doe@mail.com"
        }

    def test_phone_from_digit_words(self) -> None:
        fields = [FieldSpec(id="phone", type="phone")]
        result = extract_fields("call five five five one two three four five six seven", fields)
        assert result.field_values == {"phone": "5551234567"}

    def test_short_digit_run_is_not_a_phone(self) -> None:
        fields = [FieldSpec(id="phone", type="phone")]
        assert extract_fields("I have 3 cats", fields).field_values == {}

    def test_select_matches_whole_words(self) -> None:
        fields = [
            FieldSpec(
                id="size",
                type="select",
                options=[{"value": "s", "label": "Small"}, {"value": "l", "label": "Large"}],
            )
        ]
        assert extract_fields("a large coffee please", fields).field_values == {"size": "l"}
        assert extract_fields("smallish", fields).field_values == {}

    def test_multiselect_joins_values(self) -> None:
        fields = [
            FieldSpec(
                id="days",
                type="multiselect",
                options=[
                    {"value": "mon", "label": "Monday"},
                    {"value": "tue", "label": "Tuesday"},
                    {"value": "wed", "label": "Wednesday"},
                ],
            )
        ]
        result = extract_fields("I can do Monday and Wednesday", fields)
        assert result.field_values == {"days": "mon,wed"}

    def test_number_after_label(self) -> None:
        fields = [FieldSpec(id="age", type="number")]
        assert extract_fields("my age is 31", fields).field_values == {"age": "31"}
        assert extract_fields("age twelve", fields).field_values == {"age": "12"}

    def test_longer_label_wins(self) -> None:
        fields = [
            FieldSpec(id="name", label="Name"),
            FieldSpec(id="company", label="Company Name"),
        ]
        result = extract_fields("company name is Acme and my name is Sam", fields)
        assert result.field_values == {"company": "Acme", "name": "Sam"}

    def test_textarea_keeps_connectors(self) -> None:
        fields = [FieldSpec(id="notes", type="textarea")]
        result = extract_fields("notes the door is blue and the bell is broken", fields)
        assert result.field_values == {"notes": "the door is blue and the bell is broken"}

    def test_options_prompt(self) -> None:
        fields = [
            FieldSpec(
                id="size",
                type="select",
                required=True,
                options=[{"value": "s", "label": "Small"}, {"value": "l", "label": "Large"}],
            )
        ]
        prompt = extract_fields("nothing useful", fields).clarification_prompt
        assert prompt.question == "Please choose from the following options for Size:"
        assert prompt.options == ["Small", "Large"]


class TestHeuristicExtractor:
    def test_backend_wraps_extract_fields(self, contact_fields) -> None:
        result = asyncio.run(HeuristicExtractor().extract("my name is Alex", contact_fields, {}))
        assert result.field_values == {"name": "Alex"}
