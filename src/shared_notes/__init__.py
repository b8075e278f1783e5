"""SharedNotes - titled notes kept in sync between a local store and a shared server."""

from shared_notes.core.live import LiveValue
from shared_notes.core.note import Note, NoteDecodeError
from shared_notes.storage import (
    InMemoryNoteStore,
    NoteStore,
    NoteStoreError,
    SQLiteNoteStore,
    create_store,
)
from shared_notes.sync import (
    NoteApiClient,
    NoteSyncEngine,
    RemoteError,
    SessionState,
    SyncSession,
)

__version__ = "0.1.0"

__all__ = [
    # Core models
    "LiveValue",
    "Note",
    "NoteDecodeError",
    # Local storage
    "NoteStore",
    "NoteStoreError",
    "InMemoryNoteStore",
    "SQLiteNoteStore",
    "create_store",
    # Sync
    "NoteApiClient",
    "NoteSyncEngine",
    "RemoteError",
    "SessionState",
    "SyncSession",
    "__version__",
]
