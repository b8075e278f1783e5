"""Note data structure and its wire format."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from shared_notes.utils.timeutils import format_timestamp, parse_timestamp, to_utc, utcnow


class NoteDecodeError(ValueError):
    """A remote payload could not be turned into a Note."""


@dataclass(frozen=True)
class Note:
    """
    A titled text note.

    Notes are immutable; edits produce a new Note with the same title.

    Attributes:
        title: Unique key of the note, never changes
        content: The note body
        updated_at: When the content was last written, always aware UTC
    """

    title: str
    content: str = ""
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        # Naive or non-UTC timestamps are normalized once, at construction.
        object.__setattr__(self, "updated_at", to_utc(self.updated_at))

    @classmethod
    def create(cls, title: str, content: str = "") -> Note:
        """Create a note stamped with the current time."""
        return cls(title=title, content=content, updated_at=utcnow())

    def with_content(self, content: str) -> Note:
        """Return a copy with new content and a fresh timestamp."""
        return replace(self, content=content, updated_at=utcnow())

    def touched(self, at: datetime | None = None) -> Note:
        """Return a copy stamped with ``at`` (default: now)."""
        return replace(self, updated_at=at if at is not None else utcnow())

    def is_newer_than(self, other: Note | None) -> bool:
        """True if this note was updated strictly after ``other``."""
        if other is None:
            return True
        return self.updated_at > other.updated_at

    # ── Wire format ──────────────────────────────────────────────────

    def to_wire(self) -> dict[str, str]:
        """Serialize to the body the notes server accepts."""
        return {
            "content": self.content,
            "updated_at": format_timestamp(self.updated_at),
        }

    def to_dict(self) -> dict[str, str]:
        """Serialize including the title."""
        return {"title": self.title, **self.to_wire()}

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_wire(cls, payload: Mapping[str, Any] | str | bytes, title: str | None = None) -> Note:
        """Build a Note from a server payload.

        Args:
            payload: JSON object (already parsed or raw text)
            title: Title supplied out-of-band; used when the payload has none

        Raises:
            NoteDecodeError: If the payload is malformed
        """
        if isinstance(payload, (str, bytes)):
            try:
                payload = json.loads(payload)
            except json.JSONDecodeError as e:
                raise NoteDecodeError(f"Invalid JSON: {e}") from e

        if not isinstance(payload, Mapping):
            raise NoteDecodeError(f"Expected a JSON object, got {type(payload).__name__}")

        note_title = payload.get("title") or title
        if not isinstance(note_title, str) or not note_title:
            raise NoteDecodeError("Note payload has no title")

        content = payload.get("content")
        if not isinstance(content, str):
            raise NoteDecodeError("Field 'content' is missing or not a string")

        raw_updated = payload.get("updated_at")
        if not isinstance(raw_updated, str):
            raise NoteDecodeError("Field 'updated_at' is missing or not a string")
        try:
            updated_at = parse_timestamp(raw_updated)
        except ValueError as e:
            raise NoteDecodeError(f"Invalid updated_at {raw_updated!r}") from e

        return cls(title=note_title, content=content, updated_at=updated_at)
