"""Core data structures for SharedNotes."""

from shared_notes.core.live import LiveValue
from shared_notes.core.note import Note, NoteDecodeError

__all__ = ["LiveValue", "Note", "NoteDecodeError"]
