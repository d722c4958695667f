"""
Note write path.

The caller side of the pipeline: writes notes through the store and hands
the committed result to the change-gated publisher. A failed write raises
and publishes nothing; a failed publish is reported in the WriteOutcome but
never fails the write.

Also hosts the two operational paths that sit outside the automated
pipeline: the batch sweep that republishes events for notes still missing
a summary, and deliberate summary regeneration.
"""

import logging
from typing import Optional

from .processors import DEFAULT_MAX_INPUT_CHARS, process_summarize
from .protocol import NoteStoreProtocol
from .publisher import ChangeGatedPublisher
from .types import (
    OPERATION_RESUBMITTED,
    Note,
    SummarizationEvent,
    WriteOutcome,
    new_note_id,
    validate_note_id,
)

logger = logging.getLogger(__name__)


class NoteService:
    """
    Note CRUD on top of the store, with change-gated event publishing.

    Example:
        service = NoteService(store, ChangeGatedPublisher(channel))
        outcome = service.create_note("Buy milk")
        outcome.publish.published  # True
    """

    def __init__(
        self,
        store: NoteStoreProtocol,
        publisher: ChangeGatedPublisher,
        summarizer=None,
        *,
        max_input_chars: int = DEFAULT_MAX_INPUT_CHARS,
    ):
        self._store = store
        self._publisher = publisher
        self._summarizer = summarizer
        self._max_input_chars = max_input_chars

    # -------------------------------------------------------------------------
    # Write path
    # -------------------------------------------------------------------------

    def save_note(self, id: str, content: str) -> WriteOutcome:
        """
        Upsert a note by id, then publish iff its content changed.

        Raises:
            InvalidNoteError: bad id or empty content
            StoreUnavailableError: the write did not happen
        """
        return self._save(id, content)

    def _save(self, id: str, content: str, *, must_exist: bool = False) -> WriteOutcome:
        result = self._store.upsert(id, content, must_exist=must_exist)
        logger.info(
            "Saved note %s (created=%s, content changed=%s)",
            result.note.id, result.created, result.content_changed,
        )
        publish = self._publisher.publish(result)
        return WriteOutcome(
            note=result.note,
            content_changed=result.content_changed,
            created=result.created,
            publish=publish,
        )

    def create_note(self, content: str, id: Optional[str] = None) -> WriteOutcome:
        """Create a note. A server id is assigned unless one is given."""
        note_id = validate_note_id(id) if id is not None else new_note_id()
        return self.save_note(note_id, content)

    def update_note(self, id: str, content: str) -> WriteOutcome:
        """
        Replace the content of an existing note.

        Raises:
            NoteNotFoundError: no note with this id
        """
        return self._save(id, content, must_exist=True)

    # -------------------------------------------------------------------------
    # Reads and deletes
    # -------------------------------------------------------------------------

    def get_note(self, id: str) -> Optional[Note]:
        return self._store.get(id)

    def delete_note(self, id: str) -> bool:
        deleted = self._store.delete(id)
        if deleted:
            logger.info("Deleted note %s", id)
        return deleted

    def list_notes(
        self,
        query: Optional[str] = None,
        sort_by: Optional[str] = None,
        sort_order: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[Note]:
        return self._store.list_notes(query, sort_by, sort_order, limit)

    # -------------------------------------------------------------------------
    # Recovery and regeneration
    # -------------------------------------------------------------------------

    def resubmit_unsummarized(self, limit: int = 100) -> dict:
        """
        Republish events for notes that still have no summary.

        Recovers notes whose original publish failed. Notes that already
        have an event in flight get a second one; the conditional update
        makes that harmless.

        Returns:
            Dict with: found (int), published (int), failed (int), errors (list)
        """
        notes = self._store.get_needing_summarization(limit=limit)
        result = {"found": len(notes), "published": 0, "failed": 0, "errors": []}
        for note in notes:
            outcome = self._publisher.publish_event(
                SummarizationEvent.for_note(note, OPERATION_RESUBMITTED)
            )
            if outcome.published:
                result["published"] += 1
            else:
                result["failed"] += 1
                result["errors"].append(f"{note.id}: {outcome.error}")
        if notes:
            logger.info(
                "Resubmitted %d of %d unsummarized note(s)",
                result["published"], result["found"],
            )
        return result

    def regenerate_summary(self, id: str) -> Optional[Note]:
        """
        Summarize a note's current content now and overwrite its summary.

        Deliberate regeneration only; this bypasses the conditional update.
        Returns the updated note, or None if it does not exist.
        """
        if self._summarizer is None:
            raise RuntimeError("No summarization provider configured")
        note = self._store.get(id)
        if note is None:
            return None
        result = process_summarize(
            note.content,
            summarization_provider=self._summarizer,
            max_input_chars=self._max_input_chars,
        )
        if not self._store.update_summary(id, result.summary):
            return None
        logger.info("Regenerated summary for note %s", id)
        return self._store.get(id)
