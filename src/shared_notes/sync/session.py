"""Per-title sync session: one poller plus one merge actor."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from shared_notes.core.live import LiveValue
from shared_notes.core.note import Note, NoteDecodeError
from shared_notes.storage.base import NoteStoreError
from shared_notes.sync.remote import RemoteError

if TYPE_CHECKING:
    from shared_notes.storage.base import NoteStore
    from shared_notes.sync.remote import NoteApiClient

logger = logging.getLogger(__name__)


class SessionState(StrEnum):
    """Lifecycle of a sync session. CANCELLED is terminal."""

    IDLE = "idle"
    POLLING = "polling"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class LocalChange:
    """The local store's value for the title changed."""

    note: Note | None


@dataclass(frozen=True)
class RemoteUpdate:
    """The poller fetched a value from the server."""

    note: Note


Message = LocalChange | RemoteUpdate


class SyncSession:
    """
    Keeps one note title in sync between the local store and the server.

    Two sources feed the merged view: change notifications from the local
    store and values fetched by the poller. Both are delivered as messages
    to a single actor task, which is the only writer of ``merged`` and the
    only place a remote value is written to the store.

    Merge rule (last write wins):
        - local change: becomes the merged value as-is
        - remote value: written to the store if there is no local copy or
          the local copy is strictly older; otherwise discarded
    """

    def __init__(
        self,
        title: str,
        store: NoteStore,
        remote: NoteApiClient,
        *,
        poll_interval: float = 3.0,
        pending: Note | None = None,
    ) -> None:
        """
        Initialize a session. Call ``start()`` to begin syncing.

        Args:
            title: Title of the note to sync
            store: Local note store
            remote: Shared server client
            poll_interval: Seconds between fetches
            pending: A local write the server has not acknowledged yet
        """
        self._title = title
        self._store = store
        self._remote = remote
        self._poll_interval = poll_interval
        self._state = SessionState.IDLE

        self._inbox: asyncio.Queue[Message] = asyncio.Queue()
        self._poll_lock = asyncio.Lock()
        self._local: LiveValue[Note | None] | None = None
        self._unsubscribe_local: Callable[[], None] | None = None
        self._actor_task: asyncio.Task[None] | None = None
        self._poll_task: asyncio.Task[None] | None = None
        self._write_in_flight: asyncio.Future[bool] | None = None
        self._pending = pending

        self.merged: LiveValue[Note | None] = LiveValue(f"synced:{title}")
        self.remote: LiveValue[Note] = LiveValue(f"remote:{title}")

        self.fetches = 0
        self.fetch_errors = 0
        self.merges = 0
        self.last_error: Exception | None = None

    def __repr__(self) -> str:
        return f"SyncSession({self._title!r}, state={self._state})"

    @property
    def title(self) -> str:
        return self._title

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def cancelled(self) -> bool:
        return self._state == SessionState.CANCELLED

    @property
    def pending(self) -> Note | None:
        """Local write still waiting to reach the server."""
        return self._pending

    @property
    def dirty(self) -> bool:
        return self._pending is not None

    # ========== Lifecycle ==========

    async def start(self) -> None:
        """Subscribe to the local store and start polling."""
        if self._state != SessionState.IDLE:
            return

        self._local = await self._store.observe(self._title)
        # The actor is not running yet, so seeding the merged view here
        # keeps it single-writer. The observer replays the same value,
        # which the actor skips as unchanged.
        self.merged.post(self._local.value)
        self._unsubscribe_local = self._local.observe(self._on_local_change)

        self._actor_task = asyncio.create_task(
            self._run_actor(), name=f"sync-actor:{self._title}"
        )
        self._poll_task = asyncio.create_task(
            self._run_poller(), name=f"sync-poller:{self._title}"
        )
        self._state = SessionState.POLLING
        logger.info("Started syncing %r every %.1fs", self._title, self._poll_interval)

    async def cancel(self) -> None:
        """
        Stop the session. Idempotent.

        When this returns, no further writes from this session can reach
        the local store, including results of fetches that were in flight.
        """
        if self._state == SessionState.CANCELLED:
            return
        self._state = SessionState.CANCELLED

        if self._unsubscribe_local is not None:
            self._unsubscribe_local()
            self._unsubscribe_local = None
        if self._local is not None:
            self._local.close()
            self._local = None

        tasks = [t for t in (self._poll_task, self._actor_task) if t is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        # A store write the actor had already started is allowed to land
        # before cancel() returns, never after.
        if self._write_in_flight is not None:
            await asyncio.gather(self._write_in_flight, return_exceptions=True)
            self._write_in_flight = None

        while not self._inbox.empty():
            self._inbox.get_nowait()
            self._inbox.task_done()

        self.remote.close()
        self.merged.close()
        logger.info("Stopped syncing %r", self._title)

    async def idle(self) -> None:
        """Wait until every queued change has been applied."""
        if self._state != SessionState.POLLING:
            return
        await self._inbox.join()

    # ========== Pending push ==========

    def mark_pending(self, note: Note) -> None:
        """Remember a local write the server did not accept."""
        if self._pending is None or note.updated_at >= self._pending.updated_at:
            self._pending = note

    def clear_pending(self, note: Note) -> None:
        """Forget the pending write if ``note`` supersedes it."""
        if self._pending is not None and note.updated_at >= self._pending.updated_at:
            self._pending = None

    async def flush(self) -> bool:
        """
        Push the pending local write to the server.

        Waits for a poll tick in progress, so a pending write is never
        pushed by both at once.

        Returns:
            True if nothing is pending anymore
        """
        async with self._poll_lock:
            return await self._push_pending()

    async def _push_pending(self) -> bool:
        """Push the pending write. Caller holds the poll lock."""
        note = self._pending
        if note is None:
            return True

        try:
            await self._remote.store(note.title, note.content, note.updated_at)
        except RemoteError as e:
            logger.warning("Pending push of %r failed: %s", note.title, e)
            return False

        if self._pending is note:
            self._pending = None
        logger.info("Pushed pending write of %r", note.title)
        return True

    # ========== Polling ==========

    async def refresh(self) -> Note | None:
        """Run one poll cycle now and return the fetched note, if any."""
        return await self._poll_once()

    async def _run_poller(self) -> None:
        """Fetch immediately, then every poll interval until cancelled."""
        loop = asyncio.get_running_loop()
        while not self.cancelled:
            started = loop.time()
            try:
                await self._poll_once()
            except Exception as e:
                self.last_error = e
                logger.error("Poll cycle for %r failed", self._title, exc_info=True)
            elapsed = loop.time() - started
            await asyncio.sleep(max(0.0, self._poll_interval - elapsed))

    async def _poll_once(self) -> Note | None:
        # Ticks for one title are serialized; a slow fetch delays the next
        # tick instead of overlapping with it.
        async with self._poll_lock:
            if self._pending is not None:
                await self._push_pending()

            try:
                note = await self._remote.fetch(self._title)
            except (RemoteError, NoteDecodeError) as e:
                self.fetch_errors += 1
                self.last_error = e
                logger.warning("Fetching %r failed: %s", self._title, e)
                return None

            self.fetches += 1
            if note is None:
                logger.debug("Server has no note %r yet", self._title)
                return None

            if self.cancelled:
                logger.debug("Discarding fetch of %r after cancel", self._title)
                return None

            self.remote.post(note)
            self._inbox.put_nowait(RemoteUpdate(note))
            return note

    # ========== Merge actor ==========

    def _on_local_change(self, note: Note | None) -> None:
        if not self.cancelled:
            self._inbox.put_nowait(LocalChange(note))

    async def _run_actor(self) -> None:
        """Apply inbox messages one at a time."""
        while True:
            message = await self._inbox.get()
            try:
                if self.cancelled:
                    return

                if isinstance(message, LocalChange):
                    if message.note != self.merged.value:
                        self.merged.post(message.note)
                else:
                    await self._merge_remote(message.note)
            except NoteStoreError as e:
                self.last_error = e
                logger.error("Could not store remote copy of %r", self._title, exc_info=True)
            finally:
                self._inbox.task_done()

    async def _merge_remote(self, theirs: Note) -> None:
        ours = self.merged.value
        if ours is not None and not theirs.is_newer_than(ours):
            logger.debug(
                "Keeping local %r (%s >= %s)",
                self._title,
                ours.updated_at.isoformat(),
                theirs.updated_at.isoformat(),
            )
            return

        if self.cancelled:
            return

        self._write_in_flight = asyncio.ensure_future(self._store.upsert_if_newer(theirs))
        try:
            written = await asyncio.shield(self._write_in_flight)
        finally:
            if self._write_in_flight is not None and self._write_in_flight.done():
                self._write_in_flight = None

        if written:
            self.merges += 1
            logger.info("Took remote copy of %r from %s", self._title, theirs.updated_at.isoformat())
