"""
Data types for the note summarization pipeline.
"""

import json
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from .errors import EventFormatError, InvalidNoteError


# Event operations. "resubmitted" is emitted by the batch sweep.
OPERATION_CREATED = "created"
OPERATION_UPDATED = "updated"
OPERATION_RESUBMITTED = "resubmitted"
OPERATIONS = frozenset({OPERATION_CREATED, OPERATION_UPDATED, OPERATION_RESUBMITTED})

MAX_ID_LENGTH = 256

_ID_BLOCKED_RE = re.compile(r'[\x00-\x1f\x7f\\`<>|;"\']')


def utc_now() -> str:
    """Current UTC timestamp, ISO 8601 with microseconds.

    Fixed width, so stored timestamps sort lexicographically.
    """
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def new_note_id() -> str:
    """Server-assigned note identifier."""
    return str(uuid.uuid4())


def validate_note_id(id: str) -> str:
    """Validate a note ID: length and allowed characters."""
    if not isinstance(id, str) or not id.strip() or len(id) > MAX_ID_LENGTH:
        raise InvalidNoteError(f"Note ID must be 1-{MAX_ID_LENGTH} characters")
    if _ID_BLOCKED_RE.search(id):
        raise InvalidNoteError(f"Note ID contains invalid characters: {id!r}")
    return id


def normalize_content(content: str) -> str:
    """Trim surrounding whitespace. Notes may not be empty."""
    if not isinstance(content, str):
        raise InvalidNoteError("Content must be text")
    text = content.strip()
    if not text:
        raise InvalidNoteError("Content is required")
    return text


@dataclass
class Note:
    """
    A stored note.

    The store owns this state; instances are read-only snapshots.

    Attributes:
        id: Stable identifier for the note's lifetime
        content: Note text (never empty)
        summary: Generated summary, None until the pipeline sets one
        created_at: Set once on first write
        updated_at: Bumped on every successful write
    """
    id: str
    content: str
    summary: Optional[str]
    created_at: str
    updated_at: str

    @property
    def has_summary(self) -> bool:
        return bool(self.summary)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "content": self.content,
            "summary": self.summary,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class UpsertResult:
    """Result of a note write.

    ``content_changed`` compares the stored content immediately before the
    write with the new content. It is the only input to the publish decision.
    """
    note: Note
    content_changed: bool
    created: bool = False


@dataclass
class SummarizationEvent:
    """
    Request to summarize a snapshot of a note's content.

    The content is captured at publish time and is never re-read by the
    worker.
    """
    note_id: str
    content: str
    operation: str
    timestamp: str

    @classmethod
    def for_note(cls, note: Note, operation: str) -> "SummarizationEvent":
        return cls(
            note_id=note.id,
            content=note.content,
            operation=operation,
            timestamp=utc_now(),
        )

    def to_json(self) -> str:
        return json.dumps({
            "noteId": self.note_id,
            "content": self.content,
            "operation": self.operation,
            "timestamp": self.timestamp,
        }, ensure_ascii=False)

    @classmethod
    def from_json(cls, body: str) -> "SummarizationEvent":
        """Parse an event body. Raises EventFormatError if malformed."""
        try:
            data = json.loads(body)
        except (json.JSONDecodeError, TypeError) as e:
            raise EventFormatError(f"Event body is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise EventFormatError("Event body must be a JSON object")

        note_id = data.get("noteId")
        if not isinstance(note_id, str) or not note_id:
            raise EventFormatError("Event is missing noteId")

        # Missing content is an empty note, which the worker skips
        content = data.get("content")
        if content is None:
            content = ""
        if not isinstance(content, str):
            raise EventFormatError("Event content must be a string")

        operation = data.get("operation", OPERATION_UPDATED)
        if isinstance(operation, str):
            operation = operation.lower()
        if operation not in OPERATIONS:
            raise EventFormatError(f"Unknown event operation: {operation!r}")

        timestamp = data.get("timestamp") or ""
        return cls(
            note_id=note_id,
            content=content,
            operation=operation,
            timestamp=str(timestamp),
        )


@dataclass
class PublishOutcome:
    """What the publisher did with an upsert result.

    Exactly one of: published (message_id set), skipped (skipped_reason
    set), or failed (error set).
    """
    published: bool
    message_id: Optional[str] = None
    skipped_reason: Optional[str] = None
    error: Optional[str] = None

    @property
    def publish_failed(self) -> bool:
        return self.error is not None


@dataclass
class WriteOutcome:
    """Result of the write path: the write succeeded, publish may not have.

    A failed write raises instead of returning an outcome.
    """
    note: Note
    content_changed: bool
    created: bool
    publish: PublishOutcome

    def to_dict(self) -> dict:
        return {
            "note": self.note.to_dict(),
            "content_changed": self.content_changed,
            "created": self.created,
            "published": self.publish.published,
            "publish_error": self.publish.error,
        }
