"""
notesum: note storage with asynchronous, idempotent summarization.
"""

__version__ = "0.1.0"

from .api import NoteSum
from .errors import (
    ChannelUnavailableError,
    EventFormatError,
    InvalidNoteError,
    NoteNotFoundError,
    NoteSumError,
    StoreUnavailableError,
    SummarizationError,
)
from .types import Note, PublishOutcome, SummarizationEvent, WriteOutcome

__all__ = [
    "NoteSum",
    "Note",
    "SummarizationEvent",
    "PublishOutcome",
    "WriteOutcome",
    "NoteSumError",
    "InvalidNoteError",
    "NoteNotFoundError",
    "StoreUnavailableError",
    "ChannelUnavailableError",
    "EventFormatError",
    "SummarizationError",
]
