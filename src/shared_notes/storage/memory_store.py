"""In-memory note storage backend."""

from __future__ import annotations

from shared_notes.core.note import Note
from shared_notes.storage.base import NoteStore


class InMemoryNoteStore(NoteStore):
    """Dict-based storage for development and testing.

    Data is lost when the process exits.
    """

    def __init__(self) -> None:
        super().__init__()
        self._notes: dict[str, Note] = {}

    async def get(self, title: str) -> Note | None:
        return self._notes.get(title)

    async def get_all(self) -> list[Note]:
        return [self._notes[title] for title in sorted(self._notes)]

    async def exists(self, title: str) -> bool:
        return title in self._notes

    async def _write(self, note: Note) -> None:
        self._notes[note.title] = note

    async def _remove(self, title: str) -> bool:
        return self._notes.pop(title, None) is not None
