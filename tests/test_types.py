"""Tests for event parsing and validation helpers."""

import json

import pytest

from notesum.errors import EventFormatError, InvalidNoteError
from notesum.types import (
    OPERATION_UPDATED,
    SummarizationEvent,
    normalize_content,
    validate_note_id,
)


class TestEventFormat:

    def test_wire_format_uses_note_id_key(self):
        body = json.loads(SummarizationEvent("n1", "c", "created", "t").to_json())
        assert body == {"noteId": "n1", "content": "c", "operation": "created", "timestamp": "t"}

    def test_operation_case_insensitive(self):
        event = SummarizationEvent.from_json('{"noteId": "n1", "content": "c", "operation": "CREATED"}')
        assert event.operation == "created"

    def test_missing_operation_defaults_to_updated(self):
        event = SummarizationEvent.from_json('{"noteId": "n1", "content": "c"}')
        assert event.operation == OPERATION_UPDATED

    def test_missing_content_is_empty(self):
        event = SummarizationEvent.from_json('{"noteId": "n1"}')
        assert event.content == ""

    @pytest.mark.parametrize("body", [
        "{not json",
        "[1, 2]",
        '{"content": "c"}',
        '{"noteId": "", "content": "c"}',
        '{"noteId": "n1", "content": 5}',
        '{"noteId": "n1", "content": "c", "operation": "purge"}',
    ])
    def test_malformed_bodies(self, body):
        with pytest.raises(EventFormatError):
            SummarizationEvent.from_json(body)


class TestValidation:

    def test_content_trimmed(self):
        assert normalize_content("  hi \n") == "hi"

    @pytest.mark.parametrize("content", ["", "   ", "\n\t"])
    def test_blank_content_rejected(self, content):
        with pytest.raises(InvalidNoteError, match="Content is required"):
            normalize_content(content)

    @pytest.mark.parametrize("note_id", ["", "a" * 300, "a;b", "tab\there"])
    def test_bad_ids_rejected(self, note_id):
        with pytest.raises(InvalidNoteError):
            validate_note_id(note_id)

    def test_uuid_style_id_accepted(self):
        assert validate_note_id("3f2b8c1e-0000-4000-8000-000000000000")
