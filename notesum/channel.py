"""
Durable at-least-once event channel using SQLite.

Carries summarization events from the publisher to summarization workers.
Every publish is a distinct message; nothing is deduplicated, so a
consumer must tolerate seeing the same logical event more than once.

Receive is atomic: messages transition from 'ready' to 'inflight' with a
fresh receipt inside a single IMMEDIATE transaction, so concurrent workers
cannot claim the same delivery. A claim is a lease: if the worker does not
ack before the visibility timeout expires, the message becomes visible
again and is redelivered to whichever worker receives next.

Failed messages use exponential backoff before redelivery (30s, 60s,
120s, ... up to 1h). Messages that reach max_deliveries are moved to
'dead' status (the failure sink) rather than deleted, preserving the error
for diagnosis.
"""

import logging
import sqlite3
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, Optional

from .errors import ChannelUnavailableError
from .types import SummarizationEvent, utc_now

logger = logging.getLogger(__name__)

DEFAULT_MAX_DELIVERIES = 5
DEFAULT_VISIBILITY_TIMEOUT = 300  # 5 minutes

# Retry backoff: min(BASE * 2^(deliveries-1), MAX) seconds
RETRY_BACKOFF_BASE = 30     # 30 seconds initial delay
RETRY_BACKOFF_MAX = 3600    # 1 hour maximum delay

STATUS_READY = "ready"
STATUS_INFLIGHT = "inflight"
STATUS_DEAD = "dead"


@dataclass
class Message:
    """One delivery of a queued event."""
    message_id: str
    body: str
    receipt: str
    deliveries: int
    enqueued_at: str


@dataclass
class DeadLetter:
    """A message that exhausted its deliveries."""
    message_id: str
    body: str
    deliveries: int
    last_error: Optional[str]
    enqueued_at: str
    failed_at: Optional[str]

    def to_dict(self) -> dict:
        return {
            "message_id": self.message_id,
            "body": self.body,
            "deliveries": self.deliveries,
            "last_error": self.last_error,
            "enqueued_at": self.enqueued_at,
            "failed_at": self.failed_at,
        }


def backoff_seconds(deliveries: int) -> int:
    """Redelivery delay after the given number of failed deliveries."""
    return min(RETRY_BACKOFF_BASE * (2 ** max(deliveries - 1, 0)), RETRY_BACKOFF_MAX)


class EventChannel:
    """
    SQLite-backed at-least-once queue with leases and a dead-letter sink.
    """

    def __init__(
        self,
        queue_path: Path,
        *,
        max_deliveries: int = DEFAULT_MAX_DELIVERIES,
        visibility_timeout: float = DEFAULT_VISIBILITY_TIMEOUT,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            queue_path: Path to SQLite database file
            max_deliveries: Deliveries allowed before a message is dead-lettered
            visibility_timeout: Seconds a received message stays leased
            clock: Time source (seconds since epoch)
        """
        if max_deliveries < 1:
            raise ValueError("max_deliveries must be at least 1")
        self._queue_path = Path(queue_path)
        self.max_deliveries = max_deliveries
        self.visibility_timeout = visibility_timeout
        self._clock = clock
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the SQLite database."""
        self._queue_path.parent.mkdir(parents=True, exist_ok=True)
        # isolation_level=None gives us manual transaction control
        # so we can use BEGIN IMMEDIATE for atomic receive
        self._conn = sqlite3.connect(
            str(self._queue_path), check_same_thread=False,
            isolation_level=None,
        )

        # Enable WAL mode for better concurrent access across processes
        self._conn.execute("PRAGMA journal_mode=WAL")
        # Wait up to 5 seconds for locks instead of failing immediately
        self._conn.execute("PRAGMA busy_timeout=5000")

        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS events (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                message_id TEXT NOT NULL UNIQUE,
                body TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'ready',
                receipt TEXT,
                deliveries INTEGER NOT NULL DEFAULT 0,
                enqueued_at TEXT NOT NULL,
                visible_after REAL NOT NULL DEFAULT 0,
                last_error TEXT,
                failed_at TEXT
            )
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_events_status
            ON events(status, visible_after)
        """)

    @contextmanager
    def _locked(self) -> Iterator[sqlite3.Connection]:
        """Hold the connection lock; SQLite errors become ChannelUnavailableError."""
        with self._lock:
            try:
                yield self._conn
            except sqlite3.OperationalError as e:
                raise ChannelUnavailableError(f"Event channel unavailable: {e}") from e

    # -------------------------------------------------------------------------
    # Producer side
    # -------------------------------------------------------------------------

    def publish(self, event: SummarizationEvent) -> str:
        """Append an event. Returns the new message id."""
        return self.publish_raw(event.to_json())

    def publish_raw(self, body: str) -> str:
        """Append a raw message body. Returns the new message id."""
        message_id = uuid.uuid4().hex
        with self._locked():
            self._conn.execute("""
                INSERT INTO events
                (message_id, body, status, deliveries, enqueued_at, visible_after)
                VALUES (?, ?, 'ready', 0, ?, 0)
            """, (message_id, body, utc_now()))
        logger.debug("Published message %s", message_id)
        return message_id

    # -------------------------------------------------------------------------
    # Consumer side
    # -------------------------------------------------------------------------

    def _expire_exhausted_leases(self, now: float) -> int:
        """Dead-letter leased messages whose lease ran out on their last delivery.

        Must be called inside the receive transaction.
        """
        cursor = self._conn.execute("""
            UPDATE events
            SET status = 'dead', receipt = NULL, failed_at = ?,
                last_error = coalesce(last_error, 'visibility timeout expired')
            WHERE status = 'inflight'
              AND visible_after <= ?
              AND deliveries >= ?
        """, (utc_now(), now, self.max_deliveries))
        if cursor.rowcount:
            logger.warning(
                "Dead-lettered %d message(s) whose final lease expired",
                cursor.rowcount,
            )
        return cursor.rowcount

    def receive(self, limit: int = 1) -> list[Message]:
        """
        Atomically lease the oldest visible messages.

        Visible means ready and past any retry backoff, or inflight with an
        expired lease (redelivery). Each delivery gets a new receipt, so only
        the latest holder of a message can ack it.
        """
        now = self._clock()
        lease_until = now + self.visibility_timeout

        with self._locked():
            # BEGIN IMMEDIATE acquires a write lock immediately,
            # preventing any other consumer from interleaving
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                self._expire_exhausted_leases(now)

                rows = self._conn.execute("""
                    SELECT message_id, body, deliveries, enqueued_at
                    FROM events
                    WHERE status IN ('ready', 'inflight')
                      AND visible_after <= ?
                    ORDER BY seq ASC
                    LIMIT ?
                """, (now, limit)).fetchall()

                messages = []
                for message_id, body, deliveries, enqueued_at in rows:
                    receipt = uuid.uuid4().hex
                    self._conn.execute("""
                        UPDATE events
                        SET status = 'inflight',
                            receipt = ?,
                            deliveries = deliveries + 1,
                            visible_after = ?
                        WHERE message_id = ?
                    """, (receipt, lease_until, message_id))
                    messages.append(Message(
                        message_id=message_id,
                        body=body,
                        receipt=receipt,
                        deliveries=deliveries + 1,
                        enqueued_at=enqueued_at,
                    ))

                self._conn.execute("COMMIT")
            except Exception:
                self._conn.execute("ROLLBACK")
                raise

        return messages

    def ack(self, message: Message) -> bool:
        """Remove a message after successful processing.

        Returns False if the lease was lost (the message was redelivered
        to someone else, who now holds the only valid receipt).
        """
        with self._locked():
            cursor = self._conn.execute("""
                DELETE FROM events
                WHERE message_id = ? AND receipt = ?
            """, (message.message_id, message.receipt))
        if cursor.rowcount == 0:
            logger.info("Ack for %s ignored: lease no longer held", message.message_id)
            return False
        return True

    def release(self, message: Message, error: Optional[str] = None) -> str:
        """Return a failed delivery to the channel.

        Redelivered after exponential backoff, or moved to the failure sink
        once max_deliveries is reached. Error message is stored for
        diagnosis.

        Returns:
            The message's new status ('ready' or 'dead'), or '' if the lease
            was lost
        """
        if message.deliveries >= self.max_deliveries:
            return self._dead_letter(message, error)

        delay = backoff_seconds(message.deliveries)
        retry_at = self._clock() + delay
        with self._locked():
            cursor = self._conn.execute("""
                UPDATE events
                SET status = 'ready', receipt = NULL,
                    last_error = ?, visible_after = ?
                WHERE message_id = ? AND receipt = ?
            """, (error, retry_at, message.message_id, message.receipt))
        if cursor.rowcount == 0:
            logger.info("Release for %s ignored: lease no longer held", message.message_id)
            return ""

        logger.info(
            "Message %s failed (delivery %d), retry after %ds: %s",
            message.message_id, message.deliveries, delay, error or "unknown",
        )
        return STATUS_READY

    def _dead_letter(self, message: Message, error: Optional[str]) -> str:
        """Move a message to 'dead' status (failure sink)."""
        with self._locked():
            cursor = self._conn.execute("""
                UPDATE events
                SET status = 'dead', receipt = NULL,
                    last_error = ?, failed_at = ?
                WHERE message_id = ? AND receipt = ?
            """, (error, utc_now(), message.message_id, message.receipt))
        if cursor.rowcount == 0:
            logger.info("Dead-letter for %s ignored: lease no longer held", message.message_id)
            return ""
        logger.warning(
            "Dead-lettered %s after %d deliveries: %s",
            message.message_id, message.deliveries, error or "max deliveries",
        )
        return STATUS_DEAD

    # -------------------------------------------------------------------------
    # Failure sink
    # -------------------------------------------------------------------------

    def list_dead_letters(self) -> list[DeadLetter]:
        """Messages in the failure sink, in original publish order."""
        with self._locked():
            rows = self._conn.execute("""
                SELECT message_id, body, deliveries, last_error, enqueued_at, failed_at
                FROM events
                WHERE status = 'dead'
                ORDER BY seq ASC
            """).fetchall()
        return [DeadLetter(*row) for row in rows]

    def redrive_dead_letters(self) -> int:
        """Move all dead letters back to ready for another round.

        Resets delivery counters and clears backoff. Returns count of
        messages moved.
        """
        with self._locked():
            cursor = self._conn.execute("""
                UPDATE events
                SET status = 'ready', deliveries = 0, receipt = NULL,
                    last_error = NULL, failed_at = NULL, visible_after = 0
                WHERE status = 'dead'
            """)
        count = cursor.rowcount
        if count:
            logger.info("Redrove %d dead-lettered message(s)", count)
        return count

    def purge_dead_letters(self) -> int:
        """Delete everything in the failure sink. Returns count deleted."""
        with self._locked():
            cursor = self._conn.execute("DELETE FROM events WHERE status = 'dead'")
        return cursor.rowcount

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    def count(self) -> int:
        """Count of messages awaiting processing (ready or inflight)."""
        with self._locked():
            return self._conn.execute(
                "SELECT COUNT(*) FROM events WHERE status IN ('ready', 'inflight')"
            ).fetchone()[0]

    def stats(self) -> dict:
        """Get channel statistics including status breakdown."""
        with self._locked():
            by_status = dict(self._conn.execute("""
                SELECT status, COUNT(*) FROM events GROUP BY status
            """).fetchall())
            row = self._conn.execute("""
                SELECT COUNT(*), MAX(deliveries), MIN(enqueued_at) FROM events
            """).fetchone()
        return {
            "ready": by_status.get(STATUS_READY, 0),
            "inflight": by_status.get(STATUS_INFLIGHT, 0),
            "dead": by_status.get(STATUS_DEAD, 0),
            "total": row[0],
            "max_deliveries_seen": row[1] or 0,
            "oldest": row[2],
            "queue_path": str(self._queue_path),
        }

    def clear(self) -> int:
        """Delete all messages, including dead letters. Returns count deleted."""
        with self._locked():
            cursor = self._conn.execute("DELETE FROM events")
        return cursor.rowcount

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __del__(self):
        """Ensure connection is closed on garbage collection."""
        self.close()
