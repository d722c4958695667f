"""
Protocol definitions for the pipeline's storage backends.

Defines interface contracts for:
- NoteStoreProtocol: durable keyed note records (SQLite locally)
- EventChannelProtocol: at-least-once event transport with a failure sink

Alternative backends (e.g. Postgres + a hosted queue) implement these and
register through the ``notesum.backends`` entry point group.
"""

from typing import Optional, Protocol, runtime_checkable

from .types import Note, SummarizationEvent, UpsertResult


@runtime_checkable
class NoteStoreProtocol(Protocol):
    """
    Abstract note store.

    Implemented by:
    - NoteStore (local SQLite)

    ``upsert`` must decide content_changed against the row as it was
    immediately before the write, and ``update_summary_if_empty`` must be a
    single atomic conditional write.
    """

    def upsert(self, id: str, content: str, *, must_exist: bool = False) -> UpsertResult: ...

    def update_summary_if_empty(self, id: str, summary: str) -> bool: ...

    def update_summary(self, id: str, summary: str) -> bool: ...

    def get(self, id: str) -> Optional[Note]: ...

    def exists(self, id: str) -> bool: ...

    def delete(self, id: str) -> bool: ...

    def list_notes(
        self,
        query: Optional[str] = None,
        sort_by: Optional[str] = None,
        sort_order: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[Note]: ...

    def get_needing_summarization(self, limit: int = 100) -> list[Note]: ...

    def count(self) -> int: ...

    def count_needing_summarization(self) -> int: ...

    def close(self) -> None: ...


@runtime_checkable
class EventChannelProtocol(Protocol):
    """
    Abstract at-least-once event channel.

    Implemented by:
    - EventChannel (local SQLite)

    Messages are leased by ``receive``; a lease that is not acked before the
    visibility timeout is redelivered. After ``max_deliveries`` the message
    goes to the failure sink instead.
    """

    max_deliveries: int

    def publish(self, event: SummarizationEvent) -> str: ...

    def receive(self, limit: int = 1) -> list: ...

    def ack(self, message) -> bool: ...

    def release(self, message, error: Optional[str] = None) -> str: ...

    def list_dead_letters(self) -> list: ...

    def redrive_dead_letters(self) -> int: ...

    def count(self) -> int: ...

    def stats(self) -> dict: ...

    def close(self) -> None: ...
