"""SQLite storage backend for persistent notes."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Any

import aiosqlite

from shared_notes.core.note import Note
from shared_notes.storage.base import NoteStore, NoteStoreError
from shared_notes.utils.timeutils import format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

SCHEMA = """
CREATE TABLE IF NOT EXISTS notes (
    title TEXT PRIMARY KEY,
    content TEXT NOT NULL DEFAULT '',
    updated_at TEXT NOT NULL
);
"""


class SQLiteNoteStore(NoteStore):
    """SQLite-based storage for notes.

    Data persists to disk and survives restarts. Timestamps are stored as
    ISO-8601 UTC strings with microsecond precision.
    """

    def __init__(self, db_path: str | Path) -> None:
        super().__init__()
        self._db_path = Path(db_path).resolve()
        self._conn: aiosqlite.Connection | None = None

    @property
    def db_path(self) -> Path:
        return self._db_path

    async def initialize(self) -> None:
        """Open the database connection and create the schema."""
        if self._conn is not None:
            return

        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = await aiosqlite.connect(self._db_path)
            self._conn.row_factory = aiosqlite.Row

            await self._conn.execute("PRAGMA journal_mode=WAL")
            await self._conn.execute("PRAGMA synchronous=NORMAL")
            await self._conn.execute(
                "CREATE TABLE IF NOT EXISTS schema_version (version INTEGER PRIMARY KEY)"
            )
            await self._conn.executescript(SCHEMA)

            async with self._conn.execute("SELECT version FROM schema_version") as cursor:
                row = await cursor.fetchone()
            if row is None:
                await self._conn.execute(
                    "INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,)
                )
            await self._conn.commit()
        except (sqlite3.Error, OSError) as e:
            raise NoteStoreError(f"Failed to open note database {self._db_path}: {e}") from e

        logger.debug("Opened note database %s", self._db_path)

    async def close(self) -> None:
        """Close live views and the database connection."""
        await super().close()
        if self._conn:
            await self._conn.close()
            self._conn = None

    def _ensure_conn(self) -> aiosqlite.Connection:
        """Ensure the connection is available."""
        if self._conn is None:
            raise NoteStoreError("Database not initialized. Call initialize() first.")
        return self._conn

    # ========== Reads ==========

    async def get(self, title: str) -> Note | None:
        conn = self._ensure_conn()
        try:
            async with conn.execute(
                "SELECT title, content, updated_at FROM notes WHERE title = ?", (title,)
            ) as cursor:
                row = await cursor.fetchone()
        except sqlite3.Error as e:
            raise NoteStoreError(f"Failed to read note {title!r}: {e}") from e
        return _row_to_note(row) if row is not None else None

    async def get_all(self) -> list[Note]:
        conn = self._ensure_conn()
        try:
            async with conn.execute(
                "SELECT title, content, updated_at FROM notes ORDER BY title ASC"
            ) as cursor:
                rows = await cursor.fetchall()
        except sqlite3.Error as e:
            raise NoteStoreError(f"Failed to list notes: {e}") from e
        return [_row_to_note(row) for row in rows]

    async def exists(self, title: str) -> bool:
        conn = self._ensure_conn()
        try:
            async with conn.execute("SELECT 1 FROM notes WHERE title = ?", (title,)) as cursor:
                row = await cursor.fetchone()
        except sqlite3.Error as e:
            raise NoteStoreError(f"Failed to check note {title!r}: {e}") from e
        return row is not None

    # ========== Writes ==========

    async def _write(self, note: Note) -> None:
        conn = self._ensure_conn()
        try:
            await conn.execute(
                """INSERT INTO notes (title, content, updated_at) VALUES (?, ?, ?)
                   ON CONFLICT(title) DO UPDATE SET
                       content = excluded.content,
                       updated_at = excluded.updated_at""",
                (note.title, note.content, format_timestamp(note.updated_at)),
            )
            await conn.commit()
        except sqlite3.Error as e:
            raise NoteStoreError(f"Failed to store note {note.title!r}: {e}") from e

    async def _remove(self, title: str) -> bool:
        conn = self._ensure_conn()
        try:
            cursor = await conn.execute("DELETE FROM notes WHERE title = ?", (title,))
            await conn.commit()
        except sqlite3.Error as e:
            raise NoteStoreError(f"Failed to delete note {title!r}: {e}") from e
        return cursor.rowcount > 0


def _row_to_note(row: Any) -> Note:
    """Convert a database row to a Note."""
    title = str(row["title"])
    try:
        updated_at = parse_timestamp(str(row["updated_at"]))
    except ValueError as e:
        raise NoteStoreError(f"Corrupt timestamp for note {title!r}: {row['updated_at']!r}") from e
    return Note(title=title, content=str(row["content"] or ""), updated_at=updated_at)
