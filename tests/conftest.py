"""Pytest configuration and fixtures."""

from __future__ import annotations

import asyncio
import pathlib
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
import pytest_asyncio

from shared_notes.core.note import Note, NoteDecodeError
from shared_notes.storage.memory_store import InMemoryNoteStore
from shared_notes.storage.sqlite_store import SQLiteNoteStore
from shared_notes.sync.remote import RemoteError
from shared_notes.utils.config import reset_config
from shared_notes.utils.timeutils import utcnow


class FakeNoteApi:
    """In-memory stand-in for NoteApiClient.

    Failure modes and delays are switched on per test.
    """

    def __init__(self) -> None:
        self.notes: dict[str, Note] = {}
        self.fail_fetch = False
        self.fail_store = False
        self.malformed = False
        self.fetch_gate: asyncio.Event | None = None
        self.store_gate: asyncio.Event | None = None
        self.fetch_calls: list[str] = []
        self.store_calls: list[tuple[str, str, datetime | None]] = []

    async def fetch(self, title: str) -> Note | None:
        self.fetch_calls.append(title)
        if self.fetch_gate is not None:
            await self.fetch_gate.wait()
        if self.fail_fetch:
            raise RemoteError("connection refused")
        if self.malformed:
            raise NoteDecodeError("Field 'content' is missing or not a string")
        return self.notes.get(title)

    async def store(
        self, title: str, content: str, updated_at: datetime | None = None
    ) -> dict[str, Any]:
        self.store_calls.append((title, content, updated_at))
        if self.store_gate is not None:
            await self.store_gate.wait()
        if self.fail_store:
            raise RemoteError("connection refused")
        note = Note(title=title, content=content, updated_at=updated_at or utcnow())
        self.notes[title] = note
        return note.to_dict()

    async def echo(self, message: str) -> str:
        return message


@pytest.fixture(autouse=True)
def _reset_config() -> None:
    """Each test starts from a fresh configuration."""
    reset_config()


@pytest.fixture
def t0() -> datetime:
    """Reference timestamp for tests."""
    return datetime(2024, 2, 4, 14, 30, 0, tzinfo=UTC)


@pytest.fixture
def t1(t0: datetime) -> datetime:
    """A timestamp one minute after t0."""
    return t0 + timedelta(minutes=1)


@pytest.fixture
def api() -> FakeNoteApi:
    return FakeNoteApi()


@pytest_asyncio.fixture
async def store() -> AsyncGenerator[InMemoryNoteStore, None]:
    """Create an in-memory note store."""
    note_store = InMemoryNoteStore()
    yield note_store
    await note_store.close()


@pytest_asyncio.fixture
async def sqlite_store(tmp_path: pathlib.Path) -> AsyncGenerator[SQLiteNoteStore, None]:
    """Create an initialized SQLite note store in a temp directory."""
    note_store = SQLiteNoteStore(tmp_path / "notes.db")
    await note_store.initialize()
    yield note_store
    await note_store.close()
