"""Local storage backends for SharedNotes."""

from shared_notes.storage.base import NoteStore, NoteStoreError
from shared_notes.storage.factory import create_store
from shared_notes.storage.memory_store import InMemoryNoteStore
from shared_notes.storage.sqlite_store import SQLiteNoteStore

__all__ = [
    "NoteStore",
    "NoteStoreError",
    "InMemoryNoteStore",
    "SQLiteNoteStore",
    "create_store",
]
