"""Sync engine: the single entry point consumers use to read and write notes."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from shared_notes.sync.remote import RemoteError
from shared_notes.sync.session import SyncSession
from shared_notes.utils.config import DEFAULT_POLL_INTERVAL

if TYPE_CHECKING:
    from shared_notes.core.live import LiveValue
    from shared_notes.core.note import Note
    from shared_notes.storage.base import NoteStore
    from shared_notes.sync.remote import NoteApiClient

logger = logging.getLogger(__name__)


class NoteSyncEngine:
    """Keeps notes in sync between the local store and the shared server.

    Consumers observe one ``LiveValue`` per title and never need to know
    whether the latest value came from a local edit or from the server.
    The newest ``updated_at`` always wins; ties keep the local copy.

    The engine syncs one title at a time. Asking for the title that is
    already being synced reuses its session (and its poller); asking for a
    different title first pushes any unacknowledged write of the old title,
    then stops its session.

    The store and the API client are injected and owned by the caller.

    Usage:
        async with NoteApiClient(url) as api, SQLiteNoteStore(path) as store:
            async with NoteSyncEngine(store, api) as engine:
                synced = await engine.get_synced("groceries")
                await engine.upsert_synced(Note.create("groceries", "milk"))
                async for note in synced.stream():
                    ...
    """

    def __init__(
        self,
        store: NoteStore,
        remote: NoteApiClient,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        if poll_interval <= 0:
            raise ValueError(f"poll_interval must be positive, got {poll_interval}")
        self._store = store
        self._remote = remote
        self._poll_interval = poll_interval
        self._sessions: dict[str, SyncSession] = {}
        # Unacknowledged writes for titles without an active session.
        self._unsynced: dict[str, Note] = {}
        self._lock = asyncio.Lock()
        self._closed = False

    @property
    def store(self) -> NoteStore:
        return self._store

    @property
    def remote(self) -> NoteApiClient:
        return self._remote

    @property
    def poll_interval(self) -> float:
        return self._poll_interval

    @property
    def active_titles(self) -> list[str]:
        """Titles with a running session."""
        return [t for t, s in self._sessions.items() if not s.cancelled]

    @property
    def unsynced_titles(self) -> list[str]:
        """Titles with a local write the server has not acknowledged."""
        titles = set(self._unsynced)
        titles.update(t for t, s in self._sessions.items() if s.dirty)
        return sorted(titles)

    def session(self, title: str) -> SyncSession | None:
        """The active session for a title, if any."""
        session = self._sessions.get(title)
        if session is None or session.cancelled:
            return None
        return session

    # ========== Synced Methods ==========

    async def get_synced(self, title: str) -> LiveValue[Note | None]:
        """
        Get a live view of a note that follows both local and remote edits.

        The view starts with the local copy (None if there is none) and is
        updated whenever the local store changes. Remote values that are
        strictly newer than the local copy are written to the local store
        and show up through the same view.

        Args:
            title: Note title

        Returns:
            The merged live value, shared by every caller of this title
        """
        session = await self._session_for(title)
        return session.merged

    async def get_remote(self, title: str) -> LiveValue[Note]:
        """Get the stream of values fetched from the server for a title."""
        session = await self._session_for(title)
        return session.remote

    async def upsert_synced(self, note: Note) -> Note:
        """
        Write a note locally, then to the server.

        The local write happens first and is durable even when offline.
        A failed remote write is logged and kept as pending; it is retried
        on the next poll of that title and when its session is superseded.

        Returns:
            The note as stored locally (with its new timestamp)

        Raises:
            NoteStoreError: If the local write fails
        """
        stored = await self.upsert_local(note)

        try:
            await self._remote.store(stored.title, stored.content, stored.updated_at)
        except RemoteError as e:
            logger.warning("Could not push %r to server, keeping it pending: %s", stored.title, e)
            self._mark_unsynced(stored)
        else:
            self._clear_unsynced(stored)

        return stored

    # ========== Local Methods ==========

    async def get_local(self, title: str) -> LiveValue[Note | None]:
        return await self._store.observe(title)

    async def get_all_local(self) -> LiveValue[list[Note]]:
        return await self._store.observe_all()

    async def upsert_local(self, note: Note) -> Note:
        return await self._store.upsert(note)

    async def delete_local(self, note: Note | str) -> bool:
        return await self._store.delete(note)

    async def exists_local(self, title: str) -> bool:
        return await self._store.exists(title)

    # ========== Sessions ==========

    async def _session_for(self, title: str) -> SyncSession:
        if self._closed:
            raise RuntimeError("Sync engine is closed")

        async with self._lock:
            session = self._sessions.get(title)
            if session is not None and not session.cancelled:
                return session

            for other in list(self._sessions.values()):
                if other.title != title:
                    logger.debug("Switching sync from %r to %r", other.title, title)
                    await self._retire(other)

            pending = self._unsynced.pop(title, None)
            session = SyncSession(
                title,
                self._store,
                self._remote,
                poll_interval=self._poll_interval,
                pending=pending,
            )
            try:
                await session.start()
            except BaseException:
                await session.cancel()
                if pending is not None:
                    self._unsynced[title] = pending
                raise

            # Only a running session is registered for reuse.
            self._sessions[title] = session
            return session

    async def _retire(self, session: SyncSession) -> None:
        """Flush a session's pending write and cancel it."""
        self._sessions.pop(session.title, None)
        if not await session.flush() and session.pending is not None:
            self._unsynced[session.title] = session.pending
        await session.cancel()

    def _mark_unsynced(self, note: Note) -> None:
        session = self.session(note.title)
        if session is not None:
            session.mark_pending(note)
            return
        current = self._unsynced.get(note.title)
        if current is None or note.updated_at >= current.updated_at:
            self._unsynced[note.title] = note

    def _clear_unsynced(self, note: Note) -> None:
        session = self.session(note.title)
        if session is not None:
            session.clear_pending(note)
        current = self._unsynced.get(note.title)
        if current is not None and note.updated_at >= current.updated_at:
            del self._unsynced[note.title]

    async def stop(self, title: str) -> None:
        """Stop syncing a title (flushing its pending write first)."""
        async with self._lock:
            session = self._sessions.get(title)
            if session is not None:
                await self._retire(session)

    async def close(self) -> None:
        """Push pending writes and stop every session. Idempotent."""
        if self._closed:
            return

        async with self._lock:
            self._closed = True
            for session in list(self._sessions.values()):
                await self._retire(session)

            for title, note in list(self._unsynced.items()):
                try:
                    await self._remote.store(note.title, note.content, note.updated_at)
                except RemoteError as e:
                    logger.warning("Giving up on pushing %r: %s", title, e)
                else:
                    del self._unsynced[title]

    async def __aenter__(self) -> NoteSyncEngine:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.close()
