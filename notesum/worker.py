"""
Summarization worker.

Consumes summarization events from the channel, generates a summary from
the event's content snapshot and applies it with the store's conditional
update. The worker never reads the note before summarizing: the publisher
only emits an event when content changed, and a duplicate delivery that
regenerates a summary is harmless because the conditional update applies
at most once.

Any number of workers may run at once, in threads or processes, without
coordinating. Each needs its own store and channel instance.
"""

import logging
import threading
import time
from typing import Optional

from .channel import STATUS_DEAD
from .errors import ChannelUnavailableError, EventFormatError
from .processors import DEFAULT_MAX_INPUT_CHARS, process_summarize
from .protocol import EventChannelProtocol, NoteStoreProtocol
from .types import SummarizationEvent

logger = logging.getLogger(__name__)

# Outcomes of handling one event or message
SUMMARIZED = "summarized"
ALREADY_SUMMARIZED = "already_summarized"
SKIPPED = "skipped"
FAILED = "failed"
DEAD_LETTERED = "dead_lettered"

DEFAULT_BATCH_SIZE = 10
DEFAULT_IDLE_SLEEP = 2.0


class SummarizationWorker:
    """Applies summaries for events delivered by an at-least-once channel."""

    def __init__(
        self,
        store: NoteStoreProtocol,
        channel: EventChannelProtocol,
        summarizer,
        *,
        max_input_chars: int = DEFAULT_MAX_INPUT_CHARS,
    ):
        self._store = store
        self._channel = channel
        self._summarizer = summarizer
        self._max_input_chars = max_input_chars
        self.last_error: Optional[str] = None

    def handle(self, event: SummarizationEvent) -> str:
        """
        Summarize one event and apply the result.

        Returns SKIPPED for blank content, otherwise SUMMARIZED or
        ALREADY_SUMMARIZED. Both of the latter are success: a no-op update
        means an earlier delivery already set the summary.

        Raises:
            SummarizationError: provider returned nothing usable
            StoreUnavailableError: the conditional update could not run
        """
        if not event.content.strip():
            logger.info("Note %s has empty content, skipping summarization", event.note_id)
            return SKIPPED

        result = process_summarize(
            event.content,
            summarization_provider=self._summarizer,
            max_input_chars=self._max_input_chars,
        )

        applied = self._store.update_summary_if_empty(event.note_id, result.summary)
        if applied:
            logger.info("Applied summary to note %s", event.note_id)
            return SUMMARIZED
        logger.info(
            "Summary for note %s not applied: already summarized or deleted",
            event.note_id,
        )
        return ALREADY_SUMMARIZED

    def process_message(self, message) -> str:
        """
        Process one delivered message and settle it with the channel.

        Success and skips are acked. Any failure (malformed body, provider
        error, storage error) releases the message for redelivery, or to the
        failure sink once deliveries are exhausted.
        If the channel cannot be reached to settle the message, its lease
        expires and it is redelivered.
        """
        try:
            event = SummarizationEvent.from_json(message.body)
            outcome = self.handle(event)
        except Exception as e:
            error_msg = f"{type(e).__name__}: {e}"
            self.last_error = error_msg
            if isinstance(e, EventFormatError):
                logger.warning("Malformed event %s: %s", message.message_id, e)
            else:
                logger.warning(
                    "Failed to summarize message %s (delivery %d): %s",
                    message.message_id, message.deliveries, error_msg,
                )
            try:
                status = self._channel.release(message, error=error_msg)
            except ChannelUnavailableError as release_error:
                # Lease runs out and the message is redelivered
                logger.warning("Could not release message %s: %s", message.message_id, release_error)
                return FAILED
            return DEAD_LETTERED if status == STATUS_DEAD else FAILED

        try:
            self._channel.ack(message)
        except ChannelUnavailableError as e:
            # Redelivery after the lease is a no-op conditional update
            logger.warning("Could not ack message %s: %s", message.message_id, e)
        return outcome

    def process_pending(self, limit: int = DEFAULT_BATCH_SIZE) -> dict:
        """
        Receive and process up to ``limit`` messages.

        Returns:
            Dict with: processed (int), skipped (int), failed (int),
            dead_lettered (int), errors (list)
        """
        messages = self._channel.receive(limit=limit)
        result = {"processed": 0, "skipped": 0, "failed": 0, "dead_lettered": 0, "errors": []}

        for message in messages:
            outcome = self.process_message(message)
            if outcome in (SUMMARIZED, ALREADY_SUMMARIZED):
                result["processed"] += 1
            elif outcome == SKIPPED:
                result["skipped"] += 1
            else:
                result["failed" if outcome == FAILED else "dead_lettered"] += 1
                result["errors"].append(f"{message.message_id}: {self.last_error}")

        return result

    def run(
        self,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        idle_sleep: float = DEFAULT_IDLE_SLEEP,
        max_batches: Optional[int] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> dict:
        """
        Poll the channel until stopped.

        Sleeps ``idle_sleep`` seconds whenever a poll returns nothing.
        A poll that fails because the channel is busy is logged and retried
        after the same sleep.
        Stops after ``max_batches`` polls or when ``stop_event`` is set.

        Returns:
            Totals across all batches, same keys as process_pending
        """
        totals = {"processed": 0, "skipped": 0, "failed": 0, "dead_lettered": 0, "errors": []}
        batches = 0
        while not (stop_event and stop_event.is_set()):
            if max_batches is not None and batches >= max_batches:
                break
            batches += 1
            try:
                result = self.process_pending(limit=batch_size)
            except ChannelUnavailableError as e:
                logger.warning("Channel poll failed, will retry: %s", e)
                self.last_error = str(e)
                self._idle(idle_sleep, stop_event)
                continue
            for key in ("processed", "skipped", "failed", "dead_lettered"):
                totals[key] += result[key]
            totals["errors"].extend(result["errors"])

            handled = result["processed"] + result["skipped"] + result["failed"] + result["dead_lettered"]
            if handled == 0:
                self._idle(idle_sleep, stop_event)
        return totals

    @staticmethod
    def _idle(seconds: float, stop_event: Optional[threading.Event]) -> None:
        if stop_event is not None:
            stop_event.wait(seconds)
        else:
            time.sleep(seconds)
