"""Tests for the note write path, sweep and regeneration."""

import pytest

from notesum.errors import InvalidNoteError, NoteNotFoundError
from notesum.publisher import ChangeGatedPublisher
from notesum.service import NoteService
from notesum.types import OPERATION_RESUBMITTED, SummarizationEvent


class TestWritePath:
    """Create and update through the service."""

    def test_create_assigns_id_and_publishes(self, service, channel):
        outcome = service.create_note("  Buy milk  ")

        assert outcome.created is True
        assert outcome.note.id
        assert outcome.note.content == "Buy milk"
        assert outcome.publish.published is True
        assert channel.count() == 1

    def test_create_with_explicit_id(self, service):
        outcome = service.create_note("Buy milk", id="groceries")
        assert outcome.note.id == "groceries"

    def test_create_rejects_empty_content(self, service, channel):
        with pytest.raises(InvalidNoteError):
            service.create_note("   ")
        assert channel.count() == 0

    def test_update_missing_note_raises(self, service, channel):
        """Updating an unknown id is a not-found error and publishes nothing."""
        with pytest.raises(NoteNotFoundError) as exc_info:
            service.update_note("ghost", "content")
        assert exc_info.value.note_id == "ghost"
        assert channel.count() == 0

    def test_update_after_delete_does_not_recreate(self, service, note_store, channel):
        """An update racing a delete fails instead of resurrecting the note."""
        note = service.create_note("Buy milk").note
        note_store.delete(note.id)

        with pytest.raises(NoteNotFoundError):
            service.update_note(note.id, "Buy eggs")

        assert note_store.get(note.id) is None
        assert channel.count() == 1

    def test_update_unchanged_does_not_publish(self, service, channel):
        note = service.create_note("Buy milk").note
        channel.clear()

        outcome = service.update_note(note.id, "Buy milk")

        assert outcome.content_changed is False
        assert outcome.publish.published is False
        assert channel.count() == 0

    def test_update_changed_publishes(self, service, channel):
        note = service.create_note("Buy milk").note
        channel.clear()

        outcome = service.update_note(note.id, "Buy eggs")

        assert outcome.content_changed is True
        assert outcome.publish.published is True
        assert channel.count() == 1

    def test_publish_failure_does_not_fail_write(self, note_store, broken_channel):
        """The write commits even when the channel is down."""
        service = NoteService(note_store, ChangeGatedPublisher(broken_channel))

        outcome = service.create_note("Buy milk", id="n1")

        assert outcome.publish.publish_failed is True
        assert note_store.get("n1").content == "Buy milk"
        assert outcome.to_dict()["publish_error"]

    def test_delete_and_list(self, service):
        a = service.create_note("alpha").note
        service.create_note("beta")

        assert service.delete_note(a.id) is True
        assert service.delete_note(a.id) is False
        assert [n.content for n in service.list_notes()] == ["beta"]


class TestSweep:
    """Republishing events for notes without a summary."""

    def test_sweep_recovers_missed_publish(self, note_store, channel, broken_channel, summarizer):
        """Notes written while the channel was down are queued by the sweep."""
        NoteService(note_store, ChangeGatedPublisher(broken_channel)).create_note("Buy milk", id="n1")
        assert channel.count() == 0

        result = NoteService(note_store, ChangeGatedPublisher(channel)).resubmit_unsummarized()

        assert result == {"found": 1, "published": 1, "failed": 0, "errors": []}
        event = SummarizationEvent.from_json(channel.receive()[0].body)
        assert event.note_id == "n1"
        assert event.operation == OPERATION_RESUBMITTED

    def test_sweep_skips_summarized_notes(self, service, note_store, channel):
        service.create_note("a", id="a")
        service.create_note("b", id="b")
        note_store.update_summary_if_empty("a", "done")
        channel.clear()

        result = service.resubmit_unsummarized()

        assert result["found"] == 1
        assert channel.count() == 1

    def test_sweep_reports_publish_failures(self, note_store, broken_channel):
        service = NoteService(note_store, ChangeGatedPublisher(broken_channel))
        service.create_note("a", id="a")

        result = service.resubmit_unsummarized()

        assert result["failed"] == 1
        assert result["errors"][0].startswith("a: ")


class TestRegenerate:
    """Forced summary regeneration."""

    def test_regenerate_overwrites_existing_summary(self, service, note_store, summarizer):
        note = service.create_note("Buy milk", id="n1").note
        note_store.update_summary_if_empty("n1", "old summary")

        updated = service.regenerate_summary(note.id)

        assert updated.summary == "Summary: Buy milk"
        assert summarizer.calls == ["Buy milk"]

    def test_regenerate_missing_note(self, service):
        assert service.regenerate_summary("ghost") is None

    def test_regenerate_without_provider(self, note_store, publisher):
        service = NoteService(note_store, publisher)
        service.create_note("x", id="n1")
        with pytest.raises(RuntimeError):
            service.regenerate_summary("n1")
