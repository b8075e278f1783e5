"""Tests for sync/session.py: per-title poll and merge."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator, Callable
from datetime import datetime
from typing import TYPE_CHECKING

import pytest_asyncio

from shared_notes.core.note import Note
from shared_notes.storage.memory_store import InMemoryNoteStore
from shared_notes.sync.remote import RemoteError
from shared_notes.sync.session import RemoteUpdate, SessionState, SyncSession

if TYPE_CHECKING:
    from conftest import FakeNoteApi

SessionFactory = Callable[..., SyncSession]

# Long enough that only the immediate first poll happens on its own.
SLOW = 3600.0


async def _until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout)


async def _settle(session: SyncSession) -> None:
    """Run one more poll cycle and wait for the actor to apply it."""
    await session.refresh()
    await session.idle()


# ── Fixture ───────────────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def make_session(
    store: InMemoryNoteStore, api: FakeNoteApi
) -> AsyncGenerator[SessionFactory, None]:
    """Build sessions on the shared store and fake API; cancel them afterwards."""
    sessions: list[SyncSession] = []

    def factory(title: str = "x", **kwargs: object) -> SyncSession:
        kwargs.setdefault("poll_interval", SLOW)
        session = SyncSession(title, store, api, **kwargs)  # type: ignore[arg-type]
        sessions.append(session)
        return session

    yield factory

    for session in sessions:
        await session.cancel()


# ── Tests ─────────────────────────────────────────────────────────────────────


class TestLifecycle:
    """start(), cancel() and state."""

    async def test_states(self, make_session: SessionFactory) -> None:
        session = make_session()
        assert session.state == SessionState.IDLE

        await session.start()
        assert session.state == SessionState.POLLING

        await session.cancel()
        assert session.state == SessionState.CANCELLED
        assert session.cancelled

    async def test_cancel_is_idempotent(self, make_session: SessionFactory) -> None:
        session = make_session()
        await session.start()
        await session.cancel()
        await session.cancel()
        assert session.merged.closed
        assert session.remote.closed

    async def test_cancel_before_start(self, make_session: SessionFactory) -> None:
        session = make_session()
        await session.cancel()
        await session.start()
        assert session.state == SessionState.CANCELLED

    async def test_cancel_releases_store_view(
        self, make_session: SessionFactory, store: InMemoryNoteStore
    ) -> None:
        session = make_session()
        await session.start()
        assert store.watcher_count == 1

        await session.cancel()
        assert store.watcher_count == 0

    async def test_idle_after_cancel_returns(self, make_session: SessionFactory) -> None:
        session = make_session()
        await session.start()
        await session.cancel()
        await asyncio.wait_for(session.idle(), timeout=1)

    async def test_polls_immediately_then_repeatedly(
        self, make_session: SessionFactory, api: FakeNoteApi
    ) -> None:
        session = make_session(poll_interval=0.01)
        await session.start()

        await _until(lambda: len(api.fetch_calls) >= 3)
        assert set(api.fetch_calls) == {"x"}


class TestMergedView:
    """The merged view follows local writes."""

    async def test_starts_with_local_copy(
        self, make_session: SessionFactory, store: InMemoryNoteStore
    ) -> None:
        stored = await store.upsert(Note.create("x", "A"))
        session = make_session()
        await session.start()

        assert session.merged.value == stored

    async def test_starts_with_none_without_local_copy(
        self, make_session: SessionFactory
    ) -> None:
        session = make_session()
        await session.start()

        assert session.merged.has_value
        assert session.merged.value is None

    async def test_local_writes_pass_through(
        self, make_session: SessionFactory, store: InMemoryNoteStore
    ) -> None:
        session = make_session()
        await session.start()
        seen: list[str | None] = []
        session.merged.observe(lambda note: seen.append(note.content if note else None))

        await store.upsert(Note.create("x", "A"))
        await store.upsert(Note.create("x", "B"))
        await session.idle()

        assert seen == [None, "A", "B"]

    async def test_local_delete_passes_through(
        self, make_session: SessionFactory, store: InMemoryNoteStore
    ) -> None:
        await store.upsert(Note.create("x", "A"))
        session = make_session()
        await session.start()

        await store.delete("x")
        await session.idle()

        assert session.merged.value is None


class TestRemoteMerge:
    """Last-write-wins merge of fetched values."""

    async def test_newer_remote_replaces_local(
        self,
        make_session: SessionFactory,
        store: InMemoryNoteStore,
        api: FakeNoteApi,
        t0: datetime,
        t1: datetime,
    ) -> None:
        await store.upsert(Note("x", "A", t0), preserve_timestamp=True)
        api.notes["x"] = Note("x", "B", t1)
        session = make_session()
        await session.start()

        await _settle(session)

        assert await store.get("x") == Note("x", "B", t1)
        assert session.merged.value == Note("x", "B", t1)
        assert session.merges == 1

    async def test_older_remote_is_discarded(
        self,
        make_session: SessionFactory,
        store: InMemoryNoteStore,
        api: FakeNoteApi,
        t0: datetime,
        t1: datetime,
    ) -> None:
        await store.upsert(Note("x", "A", t1), preserve_timestamp=True)
        api.notes["x"] = Note("x", "B", t0)
        session = make_session()
        await session.start()

        await _settle(session)

        assert await store.get("x") == Note("x", "A", t1)
        assert session.merged.value == Note("x", "A", t1)
        assert session.merges == 0

    async def test_tie_keeps_local(
        self,
        make_session: SessionFactory,
        store: InMemoryNoteStore,
        api: FakeNoteApi,
        t0: datetime,
    ) -> None:
        await store.upsert(Note("x", "A", t0), preserve_timestamp=True)
        api.notes["x"] = Note("x", "B", t0)
        session = make_session()
        await session.start()

        await _settle(session)

        fetched = await store.get("x")
        assert fetched is not None
        assert fetched.content == "A"

    async def test_remote_fills_missing_local(
        self,
        make_session: SessionFactory,
        store: InMemoryNoteStore,
        api: FakeNoteApi,
        t0: datetime,
    ) -> None:
        api.notes["x"] = Note("x", "B", t0)
        session = make_session()
        await session.start()

        await _settle(session)

        assert await store.get("x") == Note("x", "B", t0)
        assert session.merged.value == Note("x", "B", t0)

    async def test_remote_stream_sees_every_fetch(
        self,
        make_session: SessionFactory,
        api: FakeNoteApi,
        t0: datetime,
    ) -> None:
        api.notes["x"] = Note("x", "B", t0)
        session = make_session()
        await session.start()

        await _settle(session)

        assert session.remote.value == Note("x", "B", t0)
        assert session.remote.version >= 1

    async def test_out_of_order_fetches_keep_newest(
        self,
        make_session: SessionFactory,
        store: InMemoryNoteStore,
        api: FakeNoteApi,
        t0: datetime,
        t1: datetime,
    ) -> None:
        session = make_session()
        await session.start()

        api.notes["x"] = Note("x", "B", t1)
        await _settle(session)
        api.notes["x"] = Note("x", "A", t0)
        await _settle(session)

        assert await store.get("x") == Note("x", "B", t1)

    async def test_local_edit_after_remote_merge_wins(
        self,
        make_session: SessionFactory,
        store: InMemoryNoteStore,
        api: FakeNoteApi,
        t0: datetime,
    ) -> None:
        api.notes["x"] = Note("x", "B", t0)
        session = make_session()
        await session.start()
        await _settle(session)

        edited = await store.upsert(Note.create("x", "C"))
        await _settle(session)

        assert await store.get("x") == edited
        assert session.merged.value == edited


class TestFetchFailures:
    """Fetch failures never touch the store."""

    async def test_not_found_writes_nothing(
        self, make_session: SessionFactory, store: InMemoryNoteStore, api: FakeNoteApi
    ) -> None:
        session = make_session()
        await session.start()

        await _settle(session)

        assert await store.get("x") is None
        assert session.fetches >= 1
        assert session.fetch_errors == 0
        assert session.remote.has_value is False

    async def test_transport_error_is_counted(
        self,
        make_session: SessionFactory,
        store: InMemoryNoteStore,
        api: FakeNoteApi,
        t0: datetime,
    ) -> None:
        await store.upsert(Note("x", "A", t0), preserve_timestamp=True)
        api.fail_fetch = True
        session = make_session()
        await session.start()

        await _settle(session)

        assert session.fetch_errors >= 1
        assert isinstance(session.last_error, RemoteError)
        assert await store.get("x") == Note("x", "A", t0)

    async def test_malformed_response_is_counted(
        self, make_session: SessionFactory, store: InMemoryNoteStore, api: FakeNoteApi
    ) -> None:
        api.malformed = True
        session = make_session()
        await session.start()

        assert await session.refresh() is None
        assert session.fetch_errors >= 1
        assert await store.get("x") is None

    async def test_poller_keeps_going_after_errors(
        self, make_session: SessionFactory, api: FakeNoteApi
    ) -> None:
        api.fail_fetch = True
        session = make_session(poll_interval=0.01)
        await session.start()

        await _until(lambda: session.fetch_errors >= 3)
        assert session.state == SessionState.POLLING


class TestCancellation:
    """No store write happens after cancel() returns."""

    async def test_fetch_completing_after_cancel_is_discarded(
        self,
        make_session: SessionFactory,
        store: InMemoryNoteStore,
        api: FakeNoteApi,
        t0: datetime,
    ) -> None:
        api.notes["x"] = Note("x", "B", t0)
        api.fetch_gate = asyncio.Event()
        session = make_session()
        await session.start()

        # The poller's own fetch is parked on the gate.
        await _until(lambda: len(api.fetch_calls) >= 1)
        await session.cancel()

        api.fetch_gate.set()
        await asyncio.sleep(0.05)

        assert await store.get("x") is None
        assert session.remote.value is None

    async def test_refresh_in_flight_during_cancel(
        self,
        make_session: SessionFactory,
        store: InMemoryNoteStore,
        api: FakeNoteApi,
        t0: datetime,
    ) -> None:
        api.fetch_gate = asyncio.Event()
        session = make_session()
        await session.start()
        await _until(lambda: len(api.fetch_calls) >= 1)

        api.notes["x"] = Note("x", "B", t0)
        refresh = asyncio.create_task(session.refresh())
        await asyncio.sleep(0)
        await session.cancel()

        api.fetch_gate.set()
        assert await asyncio.wait_for(refresh, timeout=1) is None
        assert await store.get("x") is None

    async def test_queued_update_is_dropped(
        self,
        make_session: SessionFactory,
        store: InMemoryNoteStore,
        api: FakeNoteApi,
        t0: datetime,
    ) -> None:
        api.fetch_gate = asyncio.Event()
        session = make_session()
        await session.start()

        session._inbox.put_nowait(RemoteUpdate(Note("x", "B", t0)))
        await session.cancel()
        await asyncio.sleep(0.01)

        assert await store.get("x") is None
        assert session._inbox.empty()

    async def test_merged_view_frozen_after_cancel(
        self, make_session: SessionFactory, store: InMemoryNoteStore
    ) -> None:
        session = make_session()
        await session.start()
        await session.cancel()

        await store.upsert(Note.create("x", "A"))

        assert session.merged.value is None


class TestPendingPush:
    """Unacknowledged local writes are retried."""

    async def test_pending_pushed_on_poll(
        self, make_session: SessionFactory, api: FakeNoteApi, t0: datetime
    ) -> None:
        pending = Note("x", "A", t0)
        session = make_session(pending=pending)
        await session.start()

        await _settle(session)

        assert ("x", "A", t0) in api.store_calls
        assert session.dirty is False

    async def test_pending_kept_while_server_down(
        self, make_session: SessionFactory, api: FakeNoteApi, t0: datetime
    ) -> None:
        api.fail_store = True
        session = make_session(pending=Note("x", "A", t0))
        await session.start()

        await _settle(session)

        assert session.dirty is True
        assert await session.flush() is False

        api.fail_store = False
        assert await session.flush() is True
        assert session.pending is None

    async def test_flush_waits_for_poll_push(
        self, make_session: SessionFactory, api: FakeNoteApi, t0: datetime
    ) -> None:
        api.store_gate = asyncio.Event()
        session = make_session(pending=Note("x", "A", t0))
        await session.start()
        await _until(lambda: len(api.store_calls) >= 1)

        # The poll tick is mid-push; flush must not push the same write again.
        flush_task = asyncio.create_task(session.flush())
        await asyncio.sleep(0.01)
        assert not flush_task.done()

        api.store_gate.set()
        assert await flush_task is True
        assert api.store_calls == [("x", "A", t0)]
        assert session.dirty is False

    async def test_mark_pending_keeps_newest(
        self, make_session: SessionFactory, t0: datetime, t1: datetime
    ) -> None:
        session = make_session()
        session.mark_pending(Note("x", "B", t1))
        session.mark_pending(Note("x", "A", t0))
        assert session.pending == Note("x", "B", t1)

    async def test_clear_pending_needs_newer_or_equal(
        self, make_session: SessionFactory, t0: datetime, t1: datetime
    ) -> None:
        session = make_session()
        session.mark_pending(Note("x", "B", t1))

        session.clear_pending(Note("x", "A", t0))
        assert session.dirty is True

        session.clear_pending(Note("x", "B", t1))
        assert session.dirty is False
