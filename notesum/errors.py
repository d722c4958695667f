"""
Error types and error logging utilities for notesum.

Exceptions follow the pipeline's failure taxonomy: validation errors are
never retried, transient storage errors are safe to retry, and
summarization failures are retried through channel redelivery.

The CLI logs full stack traces for debugging while showing clean messages
to users.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path


class NoteSumError(Exception):
    """Base class for notesum errors."""


class InvalidNoteError(NoteSumError, ValueError):
    """Note id or content failed validation."""


class NoteNotFoundError(NoteSumError, KeyError):
    """Update targeted a note that does not exist."""

    def __init__(self, note_id: str):
        super().__init__(note_id)
        self.note_id = note_id

    def __str__(self) -> str:
        return f"Note not found: {self.note_id}"


class StoreUnavailableError(NoteSumError):
    """The note store could not complete a write. Nothing was written."""


class ChannelUnavailableError(NoteSumError):
    """The event channel database was busy or unreachable."""


class EventFormatError(NoteSumError, ValueError):
    """A summarization event body could not be parsed."""


class SummarizationError(NoteSumError):
    """The summarization provider produced no usable summary."""


def _error_log_path(store_path=None) -> Path:
    """Resolve error log path: explicit store, then NOTESUM_STORE_PATH, then default."""
    store = store_path or os.environ.get("NOTESUM_STORE_PATH")
    if store:
        return Path(store).expanduser() / "notesum-errors.log"
    return Path.home() / ".notesum" / "notesum-errors.log"


def log_exception(exc: Exception, context: str = "", store_path=None) -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., command name)
        store_path: Store directory the log belongs in, when known

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path(store_path)
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}]")
            if context:
                f.write(f" {context}")
            f.write(f" {type(exc).__name__}: {exc}\n")
            f.write("".join(traceback.format_exception(exc)))
    except OSError:
        pass  # Can't write error log
    return log_path
