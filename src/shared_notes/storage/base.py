"""Abstract base class for local note storage backends."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import replace

from shared_notes.core.live import LiveValue
from shared_notes.core.note import Note
from shared_notes.utils.timeutils import utcnow

logger = logging.getLogger(__name__)


class NoteStoreError(Exception):
    """A local storage operation failed."""


class NoteStore(ABC):
    """
    Abstract interface for durable, title-keyed note storage.

    Backends implement the raw reads and writes. This base class owns the
    single mutation path (``upsert``/``delete``), timestamp stamping and
    change notification, so every backend behaves the same way.

    Writes are serialized; observers of a title see changes in the order
    they were written.
    """

    def __init__(self) -> None:
        self._write_lock = asyncio.Lock()
        self._note_watchers: dict[str, list[LiveValue[Note | None]]] = defaultdict(list)
        self._list_watchers: list[LiveValue[list[Note]]] = []

    # ========== Lifecycle ==========

    async def initialize(self) -> None:  # noqa: B027
        """Open connections and create schema. No-op by default."""

    async def close(self) -> None:
        """Release resources and close every open live view."""
        self._close_watchers()

    async def __aenter__(self) -> NoteStore:
        await self.initialize()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # ========== Backend Operations ==========

    @abstractmethod
    async def get(self, title: str) -> Note | None:
        """
        Get a note by title.

        Returns:
            The note if stored, None otherwise

        Raises:
            NoteStoreError: If the backend fails
        """
        ...

    @abstractmethod
    async def get_all(self) -> list[Note]:
        """Get every stored note, ordered by title."""
        ...

    @abstractmethod
    async def exists(self, title: str) -> bool:
        """Check whether a note with this title is stored."""
        ...

    @abstractmethod
    async def _write(self, note: Note) -> None:
        """Insert or replace a note as-is."""
        ...

    @abstractmethod
    async def _remove(self, title: str) -> bool:
        """Remove a note. Returns True if a row was deleted."""
        ...

    # ========== Mutations ==========

    async def upsert(self, note: Note, *, preserve_timestamp: bool = False) -> Note:
        """
        Insert or update a note.

        The note is stamped with the current UTC time unless
        ``preserve_timestamp`` is set, which is reserved for storing a
        remote value that already carries its own timestamp.

        Args:
            note: The note to store
            preserve_timestamp: Keep ``note.updated_at`` unchanged

        Returns:
            The note exactly as stored

        Raises:
            NoteStoreError: If the backend fails
        """
        stored = note if preserve_timestamp else replace(note, updated_at=utcnow())

        async with self._write_lock:
            await self._write(stored)
            logger.debug("Stored note %r at %s", stored.title, stored.updated_at.isoformat())
            await self._publish(stored.title, stored)

        return stored

    async def upsert_if_newer(self, note: Note) -> bool:
        """
        Store a note only if it is strictly newer than the stored copy.

        The comparison and the write happen under the write lock, so a
        local edit can never be overwritten by an older value that was
        compared against a stale read. The note keeps its own timestamp.

        Returns:
            True if the note was written
        """
        async with self._write_lock:
            current = await self.get(note.title)
            if current is not None and not note.is_newer_than(current):
                return False
            await self._write(note)
            logger.debug("Replaced note %r with newer copy from %s", note.title, note.updated_at)
            await self._publish(note.title, note)

        return True

    async def delete(self, note: Note | str) -> bool:
        """
        Delete a note from local storage.

        Args:
            note: The note (or its title)

        Returns:
            True if the note existed
        """
        title = note if isinstance(note, str) else note.title

        async with self._write_lock:
            removed = await self._remove(title)
            if removed:
                logger.debug("Deleted note %r", title)
                await self._publish(title, None)

        return removed

    # ========== Change Notification ==========

    async def observe(self, title: str) -> LiveValue[Note | None]:
        """
        Get a live view of one note.

        The returned value starts with the stored note (or None) and is
        updated after every write to that title. Call ``close()`` on it to
        stop receiving updates.
        """
        live: LiveValue[Note | None] = LiveValue(f"note:{title}")

        async with self._write_lock:
            live.post(await self.get(title))
            self._note_watchers[title].append(live)

        live.add_close_hook(lambda: self._discard_note_watcher(title, live))
        return live

    async def observe_all(self) -> LiveValue[list[Note]]:
        """Get a live view of all notes, refreshed after every write."""
        live: LiveValue[list[Note]] = LiveValue("notes:*")

        async with self._write_lock:
            live.post(await self.get_all())
            self._list_watchers.append(live)

        live.add_close_hook(lambda: self._list_watchers.remove(live))
        return live

    @property
    def watcher_count(self) -> int:
        """Number of open live views."""
        return sum(len(w) for w in self._note_watchers.values()) + len(self._list_watchers)

    async def _publish(self, title: str, note: Note | None) -> None:
        """Push a change to the watchers. Caller holds the write lock."""
        for live in list(self._note_watchers.get(title, ())):
            live.post(note)

        if self._list_watchers:
            notes = await self.get_all()
            for live in list(self._list_watchers):
                live.post(notes)

    def _discard_note_watcher(self, title: str, live: LiveValue[Note | None]) -> None:
        watchers = self._note_watchers.get(title)
        if watchers is None:
            return
        if live in watchers:
            watchers.remove(live)
        if not watchers:
            del self._note_watchers[title]

    def _close_watchers(self) -> None:
        """Close every open live view (used by backends on shutdown)."""
        for watchers in list(self._note_watchers.values()):
            for live in list(watchers):
                live.close()
        for live in list(self._list_watchers):
            live.close()
