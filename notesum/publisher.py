"""
Change-gated publisher.

Turns a committed note write into at most one summarization event. The
upsert's ``content_changed`` flag is the only input to the decision:
unchanged content never re-triggers summarization.

Publish failures are logged and reported in the returned PublishOutcome,
never raised. The write has already committed, and a note that misses its
event is picked up later by the batch sweep (NoteService.resubmit_unsummarized).
"""

import logging

from .protocol import EventChannelProtocol
from .types import (
    OPERATION_CREATED,
    OPERATION_UPDATED,
    PublishOutcome,
    SummarizationEvent,
    UpsertResult,
)

logger = logging.getLogger(__name__)

SKIPPED_UNCHANGED = "content unchanged"


class ChangeGatedPublisher:
    """Publishes a summarization event iff a write changed the content."""

    def __init__(self, channel: EventChannelProtocol):
        self._channel = channel

    def publish(self, result: UpsertResult) -> PublishOutcome:
        """
        Publish an event for a committed upsert.

        Call only after the store write returned; never speculatively.

        Args:
            result: The UpsertResult returned by NoteStore.upsert

        Returns:
            PublishOutcome: published, skipped (unchanged) or failed
        """
        if not result.content_changed:
            logger.debug("Note %s unchanged, not publishing", result.note.id)
            return PublishOutcome(published=False, skipped_reason=SKIPPED_UNCHANGED)

        operation = OPERATION_CREATED if result.created else OPERATION_UPDATED
        return self.publish_event(SummarizationEvent.for_note(result.note, operation))

    def publish_event(self, event: SummarizationEvent) -> PublishOutcome:
        """Emit one event. Channel errors are captured in the outcome."""
        try:
            message_id = self._channel.publish(event)
        except Exception as e:
            error_msg = f"{type(e).__name__}: {e}"
            logger.warning(
                "Failed to publish %s event for note %s: %s",
                event.operation, event.note_id, error_msg,
            )
            return PublishOutcome(published=False, error=error_msg)

        logger.info(
            "Published %s event for note %s (message %s)",
            event.operation, event.note_id, message_id,
        )
        return PublishOutcome(published=True, message_id=message_id)
