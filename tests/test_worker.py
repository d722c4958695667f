"""Tests for the summarization worker."""

import sqlite3
import threading

from notesum.channel import EventChannel
from notesum.note_store import NoteStore
from notesum.publisher import ChangeGatedPublisher
from notesum.types import SummarizationEvent
from notesum.worker import (
    ALREADY_SUMMARIZED,
    DEAD_LETTERED,
    FAILED,
    SKIPPED,
    SUMMARIZED,
    SummarizationWorker,
)


class FixedSummarizer:
    """Always returns the same text."""

    def __init__(self, text: str):
        self.text = text
        self.calls = 0

    def summarize(self, content: str, *, max_length: int = 500) -> str:
        self.calls += 1
        return self.text


def _write(note_store, channel, note_id, content):
    return ChangeGatedPublisher(channel).publish(note_store.upsert(note_id, content))


class TestEndToEnd:
    """Write, publish, process."""

    def test_new_note_gets_summary(self, note_store, channel):
        """Upsert, publish, process: the summary lands on the note."""
        _write(note_store, channel, "n1", "Buy milk")
        worker = SummarizationWorker(note_store, channel, FixedSummarizer("Reminder to buy milk."))

        result = worker.process_pending()

        assert result["processed"] == 1
        assert note_store.get("n1").summary == "Reminder to buy milk."
        assert channel.count() == 0

    def test_unchanged_rewrite_keeps_summary(self, note_store, channel, summarizer):
        """Identical content publishes nothing and the summary stays."""
        _write(note_store, channel, "n1", "Buy milk")
        worker = SummarizationWorker(note_store, channel, summarizer)
        worker.process_pending()
        summary = note_store.get("n1").summary

        outcome = _write(note_store, channel, "n1", "Buy milk")

        assert outcome.published is False
        assert worker.process_pending()["processed"] == 0
        assert note_store.get("n1").summary == summary
        assert len(summarizer.calls) == 1

    def test_changed_content_is_resummarized(self, note_store, channel, summarizer):
        _write(note_store, channel, "n1", "Buy milk")
        worker = SummarizationWorker(note_store, channel, summarizer)
        worker.process_pending()

        _write(note_store, channel, "n1", "Buy bread")
        worker.process_pending()

        assert note_store.get("n1").summary == "Summary: Buy bread"

    def test_worker_uses_event_snapshot_without_reading_store(self, note_store, channel, summarizer):
        """The provider sees the content carried by the event."""
        note_store.upsert("n1", "stored content")
        channel.publish(SummarizationEvent("n1", "snapshot content", "updated", "t"))

        SummarizationWorker(note_store, channel, summarizer).process_pending()

        assert summarizer.calls == ["snapshot content"]


class TestIdempotence:
    """Duplicate and concurrent deliveries."""

    def test_duplicate_delivery_first_write_wins(self, note_store, channel):
        """Two deliveries of one event: the first summary stays, the second is a no-op."""
        event = SummarizationEvent("n1", "Buy milk", "created", "t")
        note_store.upsert("n1", "Buy milk")

        first = SummarizationWorker(note_store, channel, FixedSummarizer("first"))
        second = SummarizationWorker(note_store, channel, FixedSummarizer("second"))

        assert first.handle(event) == SUMMARIZED
        assert second.handle(event) == ALREADY_SUMMARIZED
        assert note_store.get("n1").summary == "first"

    def test_two_independent_workers_same_event(self, tmp_path):
        """Separate store and channel instances racing on one event: one effective write, no errors."""
        notes_db = tmp_path / "notes.db"
        events_db = tmp_path / "events.db"
        NoteStore(notes_db).upsert("n1", "Buy milk")
        setup = EventChannel(events_db)
        event = SummarizationEvent("n1", "Buy milk", "created", "t")
        setup.publish(event)
        setup.publish(event)
        setup.close()

        barrier = threading.Barrier(2)
        outcomes = {}

        def run(name):
            store = NoteStore(notes_db)
            channel = EventChannel(events_db)
            worker = SummarizationWorker(store, channel, FixedSummarizer(f"by {name}"))
            barrier.wait()
            outcomes[name] = [worker.process_message(m) for m in channel.receive(limit=1)]
            store.close()
            channel.close()

        threads = [threading.Thread(target=run, args=(n,)) for n in ("a", "b")]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(o for per_worker in outcomes.values() for o in per_worker) == sorted(
            [SUMMARIZED, ALREADY_SUMMARIZED]
        )
        winner = next(name for name, per_worker in outcomes.items() if per_worker == [SUMMARIZED])
        assert NoteStore(notes_db).get("n1").summary == f"by {winner}"
        assert EventChannel(events_db).count() == 0

    def test_event_for_deleted_note_is_noop(self, note_store, channel, summarizer):
        """A note deleted before its event is processed: ack, no error."""
        _write(note_store, channel, "n1", "Buy milk")
        note_store.delete("n1")

        result = SummarizationWorker(note_store, channel, summarizer).process_pending()

        assert result["processed"] == 1
        assert result["failed"] == 0
        assert note_store.get("n1") is None
        assert channel.count() == 0

    def test_redelivery_after_lease_loss(self, note_store, channel, clock, summarizer):
        """A slow worker's lease expires; the redelivered copy is a harmless repeat."""
        _write(note_store, channel, "n1", "Buy milk")
        slow = channel.receive()[0]

        clock.advance(61)
        worker = SummarizationWorker(note_store, channel, summarizer)
        assert worker.process_pending()["processed"] == 1

        # The slow worker finishes late: its update is a no-op and its ack is refused
        assert worker.process_message(slow) == ALREADY_SUMMARIZED
        assert channel.count() == 0


class TestFailures:
    """Skips, retries and the failure sink."""

    def test_empty_content_is_skipped(self, note_store, channel, summarizer):
        """Blank content is acked without calling the provider."""
        note_store.upsert("n1", "real content")
        channel.publish(SummarizationEvent("n1", "   ", "updated", "t"))

        result = SummarizationWorker(note_store, channel, summarizer).process_pending()

        assert result["skipped"] == 1
        assert summarizer.calls == []
        assert note_store.get("n1").summary is None
        assert channel.count() == 0

    def test_handle_skips_empty(self, note_store, channel, summarizer):
        worker = SummarizationWorker(note_store, channel, summarizer)
        assert worker.handle(SummarizationEvent("n1", "", "created", "t")) == SKIPPED

    def test_provider_failure_is_retried(self, note_store, channel, clock, flaky_summarizer):
        """A provider error releases the message; the next delivery succeeds."""
        _write(note_store, channel, "n1", "Buy milk")
        worker = SummarizationWorker(note_store, channel, flaky_summarizer)

        first = worker.process_pending()
        assert first["failed"] == 1
        assert "TimeoutError" in first["errors"][0]
        assert note_store.get("n1").summary is None

        clock.advance(31)
        second = worker.process_pending()
        assert second["processed"] == 1
        assert note_store.get("n1").summary == "Recovered: Buy milk"

    def test_persistent_failure_dead_letters(self, note_store, channel, clock, failing_summarizer):
        """After max deliveries the event lands in the failure sink with its error."""
        _write(note_store, channel, "n1", "Buy milk")
        worker = SummarizationWorker(note_store, channel, failing_summarizer)

        outcomes = []
        for _ in range(3):
            message = channel.receive()[0]
            outcomes.append(worker.process_message(message))
            clock.advance(10_000)

        assert outcomes == [FAILED, FAILED, DEAD_LETTERED]
        letters = channel.list_dead_letters()
        assert len(letters) == 1
        assert "ConnectionError" in letters[0].last_error
        assert note_store.get("n1").content == "Buy milk"
        assert note_store.get("n1").summary is None

    def test_empty_summary_is_a_failure(self, note_store, channel, empty_summarizer):
        """A blank provider result is never written."""
        _write(note_store, channel, "n1", "Buy milk")

        result = SummarizationWorker(note_store, channel, empty_summarizer).process_pending()

        assert result["failed"] == 1
        assert "SummarizationError" in result["errors"][0]
        assert note_store.get("n1").summary is None

    def test_malformed_event_is_released(self, note_store, channel, summarizer):
        """An unparseable body is a failure and goes to the sink after max deliveries."""
        channel.publish_raw("{not json")
        worker = SummarizationWorker(note_store, channel, summarizer)

        result = worker.process_pending()

        assert result["failed"] == 1
        assert "EventFormatError" in worker.last_error
        assert summarizer.calls == []

    def test_run_stops_after_max_batches(self, note_store, channel, summarizer):
        for i in range(3):
            _write(note_store, channel, f"n{i}", f"note {i}")
        worker = SummarizationWorker(note_store, channel, summarizer)

        totals = worker.run(batch_size=2, idle_sleep=0, max_batches=3)

        assert totals["processed"] == 3
        assert channel.count() == 0

    def test_run_stops_on_event(self, note_store, channel, summarizer):
        stop = threading.Event()
        stop.set()
        totals = SummarizationWorker(note_store, channel, summarizer).run(stop_event=stop)
        assert totals["processed"] == 0


class TestChannelBusy:
    """Another connection holds the channel's write lock."""

    @staticmethod
    def _hold_write_lock(channel):
        channel._conn.execute("PRAGMA busy_timeout=50")
        blocker = sqlite3.connect(str(channel._queue_path), isolation_level=None)
        blocker.execute("BEGIN IMMEDIATE")
        return blocker

    def test_run_survives_locked_channel(self, note_store, channel, summarizer):
        """A busy channel ends the poll, not the loop."""
        _write(note_store, channel, "n1", "Buy milk")
        worker = SummarizationWorker(note_store, channel, summarizer)
        blocker = self._hold_write_lock(channel)
        try:
            totals = worker.run(batch_size=1, idle_sleep=0, max_batches=2)
        finally:
            blocker.execute("ROLLBACK")
            blocker.close()

        assert totals["processed"] == 0
        assert "Event channel unavailable" in worker.last_error

        totals = worker.run(batch_size=1, idle_sleep=0, max_batches=1)
        assert totals["processed"] == 1
        assert note_store.get("n1").summary == "Summary: Buy milk"

    def test_ack_failure_keeps_outcome(self, note_store, channel, summarizer, clock):
        """Summary applied but ack blocked: outcome stands, message is redelivered harmlessly."""
        _write(note_store, channel, "n1", "Buy milk")
        worker = SummarizationWorker(note_store, channel, summarizer)
        [message] = channel.receive(limit=1)
        blocker = self._hold_write_lock(channel)
        try:
            outcome = worker.process_message(message)
        finally:
            blocker.execute("ROLLBACK")
            blocker.close()

        assert outcome == SUMMARIZED
        assert note_store.get("n1").summary == "Summary: Buy milk"
        assert channel.count() == 1

        clock.advance(channel.visibility_timeout + 1)
        [redelivered] = channel.receive(limit=1)
        assert worker.process_message(redelivered) == ALREADY_SUMMARIZED
        assert channel.count() == 0

    def test_release_failure_reports_failed(self, note_store, channel, failing_summarizer):
        _write(note_store, channel, "n1", "Buy milk")
        worker = SummarizationWorker(note_store, channel, failing_summarizer)
        [message] = channel.receive(limit=1)
        blocker = self._hold_write_lock(channel)
        try:
            assert worker.process_message(message) == FAILED
        finally:
            blocker.execute("ROLLBACK")
            blocker.close()

        assert channel.stats()["inflight"] == 1
