"""
Note store using SQLite.

The note store is the source of truth for:
- Note identity
- Content
- Summary text
- Timestamps

Every mutation is a single SQLite transaction. Upsert reads the previous
content and writes the new content inside one BEGIN IMMEDIATE transaction,
so the content-changed decision is taken against the row as it was
immediately before this write. The conditional summary update is a single
UPDATE with a WHERE clause, so concurrent workers cannot both apply a
summary.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from .errors import NoteNotFoundError, StoreUnavailableError
from .types import Note, UpsertResult, normalize_content, utc_now, validate_note_id

logger = logging.getLogger(__name__)

SORT_COLUMNS = ("created_at", "updated_at", "content")
DEFAULT_SORT_COLUMN = "created_at"

_NOTE_COLUMNS = "id, content, summary, created_at, updated_at"

# Schema bootstrap runs once per database file per process
_schema_lock = threading.Lock()
_schema_ready: set[str] = set()


def ensure_schema(conn: sqlite3.Connection, db_path: Path) -> None:
    """Create the notes table and indexes if needed.

    Idempotent. Guarded by a module lock with a double check so concurrent
    store instances in one process only bootstrap once.
    """
    key = str(Path(db_path).resolve())
    if key in _schema_ready:
        return
    with _schema_lock:
        if key in _schema_ready:
            return
        conn.execute("""
            CREATE TABLE IF NOT EXISTS notes (
                id TEXT PRIMARY KEY,
                content TEXT NOT NULL,
                summary TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_notes_created
            ON notes(created_at)
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_notes_updated
            ON notes(updated_at)
        """)
        _schema_ready.add(key)
        logger.debug("Initialized note schema at %s", db_path)


def _row_to_note(row: sqlite3.Row) -> Note:
    return Note(
        id=row["id"],
        content=row["content"],
        summary=row["summary"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class NoteStore:
    """
    SQLite-backed store for notes.

    Safe to share between threads (one connection, serialized by a lock).
    Separate instances, in this process or others, coordinate through
    SQLite's write lock.
    """

    def __init__(self, store_path: Path):
        """
        Args:
            store_path: Path to SQLite database file
        """
        self._db_path = Path(store_path)
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the SQLite database."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        # isolation_level=None gives us manual transaction control
        # so we can use BEGIN IMMEDIATE for read-then-write upserts
        self._conn = sqlite3.connect(
            str(self._db_path), check_same_thread=False,
            isolation_level=None,
        )
        self._conn.row_factory = sqlite3.Row

        # Enable WAL mode for better concurrent access across processes
        self._conn.execute("PRAGMA journal_mode=WAL")
        # Wait up to 5 seconds for locks instead of failing immediately
        self._conn.execute("PRAGMA busy_timeout=5000")

        ensure_schema(self._conn, self._db_path)

    @contextmanager
    def _write(self) -> Iterator[sqlite3.Connection]:
        """Run a write transaction; storage failures become StoreUnavailableError.

        The transaction is rolled back on any error, so a caller that sees
        an exception may assume nothing was written.
        """
        with self._lock:
            try:
                self._conn.execute("BEGIN IMMEDIATE")
            except sqlite3.OperationalError as e:
                raise StoreUnavailableError(f"Note store unavailable: {e}") from e
            try:
                yield self._conn
                self._conn.execute("COMMIT")
            except sqlite3.OperationalError as e:
                self._conn.execute("ROLLBACK")
                raise StoreUnavailableError(f"Note store unavailable: {e}") from e
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def upsert(self, id: str, content: str, *, must_exist: bool = False) -> UpsertResult:
        """
        Insert a new note or update the content of an existing one.

        Preserves created_at. Updates updated_at always. A content change
        clears the summary so the pipeline can set it for the new content;
        identical content leaves the summary alone.

        Args:
            id: Note identifier
            content: Note text (trimmed; must not be empty)
            must_exist: Only update; a missing note raises NoteNotFoundError
                and nothing is written

        Returns:
            UpsertResult with the stored note and whether content changed
        """
        validate_note_id(id)
        content = normalize_content(content)
        now = utc_now()

        with self._write() as conn:
            row = conn.execute(
                "SELECT content FROM notes WHERE id = ?", (id,)
            ).fetchone()
            created = row is None
            if created and must_exist:
                raise NoteNotFoundError(id)
            content_changed = created or row["content"] != content

            conn.execute("""
                INSERT INTO notes (id, content, summary, created_at, updated_at)
                VALUES (?, ?, NULL, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    summary = CASE WHEN notes.content = excluded.content
                                   THEN notes.summary ELSE NULL END,
                    content = excluded.content,
                    updated_at = excluded.updated_at
            """, (id, content, now, now))

            saved = conn.execute(
                f"SELECT {_NOTE_COLUMNS} FROM notes WHERE id = ?", (id,)
            ).fetchone()

        return UpsertResult(
            note=_row_to_note(saved),
            content_changed=content_changed,
            created=created,
        )

    def update_summary_if_empty(self, id: str, summary: str) -> bool:
        """
        Set the summary only if the note has none.

        Used by the summarization worker. Applying it any number of times
        leaves the same state as applying it once, so redelivered events
        are harmless.

        Args:
            id: Note identifier
            summary: New summary text

        Returns:
            True if the summary was applied, False if the note is missing
            or already has a summary
        """
        if not summary or not summary.strip():
            raise ValueError("Summary must not be empty")
        now = utc_now()

        with self._write() as conn:
            cursor = conn.execute("""
                UPDATE notes
                SET summary = ?, updated_at = ?
                WHERE id = ?
                  AND (summary IS NULL OR summary = '')
            """, (summary, now, id))

        return cursor.rowcount > 0

    def update_summary(self, id: str, summary: str) -> bool:
        """
        Overwrite the summary unconditionally.

        Only for deliberate regeneration; the automated pipeline never
        calls this.

        Returns:
            True if the note was found and updated, False otherwise
        """
        now = utc_now()

        with self._write() as conn:
            cursor = conn.execute("""
                UPDATE notes
                SET summary = ?, updated_at = ?
                WHERE id = ?
            """, (summary, now, id))

        return cursor.rowcount > 0

    def delete(self, id: str) -> bool:
        """
        Delete a note.

        Returns:
            True if the note existed and was deleted
        """
        with self._write() as conn:
            cursor = conn.execute("DELETE FROM notes WHERE id = ?", (id,))

        return cursor.rowcount > 0

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def get(self, id: str) -> Optional[Note]:
        """Get a note by ID, or None if it does not exist."""
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_NOTE_COLUMNS} FROM notes WHERE id = ?", (id,)
            ).fetchone()
        if row is None:
            return None
        return _row_to_note(row)

    def exists(self, id: str) -> bool:
        """Check if a note exists."""
        with self._lock:
            row = self._conn.execute(
                "SELECT 1 FROM notes WHERE id = ?", (id,)
            ).fetchone()
        return row is not None

    def list_notes(
        self,
        query: Optional[str] = None,
        sort_by: Optional[str] = None,
        sort_order: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[Note]:
        """
        List notes with optional filtering and sorting.

        Args:
            query: Case-insensitive substring matched against content or summary
            sort_by: created_at, updated_at or content (others fall back to created_at)
            sort_order: "asc" or "desc" (default desc)
            limit: Maximum number to return (None for all)

        Returns:
            List of Notes
        """
        column = (sort_by or "").lower()
        if column not in SORT_COLUMNS:
            column = DEFAULT_SORT_COLUMN
        direction = "ASC" if (sort_order or "").upper() == "ASC" else "DESC"

        sql = f"SELECT {_NOTE_COLUMNS} FROM notes"
        params: list = []
        if query and query.strip():
            pattern = "%" + query.strip().lower() + "%"
            sql += " WHERE lower(content) LIKE ? OR lower(coalesce(summary, '')) LIKE ?"
            params.extend([pattern, pattern])
        # Column and direction come from fixed whitelists
        sql += f" ORDER BY {column} {direction}, rowid {direction}"
        if limit:
            sql += " LIMIT ?"
            params.append(limit)

        with self._lock:
            rows = self._conn.execute(sql, params).fetchall()
        return [_row_to_note(row) for row in rows]

    def get_needing_summarization(self, limit: int = 100) -> list[Note]:
        """
        Notes with no summary yet, newest first.

        Recovery path for events that were never published.
        """
        with self._lock:
            rows = self._conn.execute(f"""
                SELECT {_NOTE_COLUMNS}
                FROM notes
                WHERE summary IS NULL OR summary = ''
                ORDER BY created_at DESC, rowid DESC
                LIMIT ?
            """, (limit,)).fetchall()
        return [_row_to_note(row) for row in rows]

    def count(self) -> int:
        """Count notes."""
        with self._lock:
            return self._conn.execute("SELECT COUNT(*) FROM notes").fetchone()[0]

    def count_needing_summarization(self) -> int:
        """Count notes with no summary yet."""
        with self._lock:
            return self._conn.execute(
                "SELECT COUNT(*) FROM notes WHERE summary IS NULL OR summary = ''"
            ).fetchone()[0]

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
        self.close()
