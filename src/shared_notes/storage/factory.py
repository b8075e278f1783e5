"""Storage factory for creating a note store based on configuration."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from shared_notes.storage.memory_store import InMemoryNoteStore
from shared_notes.storage.sqlite_store import SQLiteNoteStore

if TYPE_CHECKING:
    from shared_notes.storage.base import NoteStore
    from shared_notes.utils.config import Config

logger = logging.getLogger(__name__)


async def create_store(config: Config) -> NoteStore:
    """
    Create and initialize a note store.

    Args:
        config: Application configuration

    Returns:
        An initialized store; the caller is responsible for closing it

    Examples:
        config = Config(storage_backend="sqlite", db_path=Path("./notes.db"))
        store = await create_store(config)
    """
    store: NoteStore
    if config.storage_backend == "memory":
        store = InMemoryNoteStore()
    else:
        store = SQLiteNoteStore(config.resolved_db_path)

    await store.initialize()
    logger.debug("Using %s note storage", config.storage_backend)
    return store
