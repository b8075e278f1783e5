"""Synchronization between the local note store and the shared server."""

from shared_notes.sync.engine import NoteSyncEngine
from shared_notes.sync.remote import NoteApiClient, RemoteError
from shared_notes.sync.session import SessionState, SyncSession

__all__ = [
    "NoteApiClient",
    "NoteSyncEngine",
    "RemoteError",
    "SessionState",
    "SyncSession",
]
