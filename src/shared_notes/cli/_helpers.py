"""Shared CLI helpers for configuration, wiring and output formatting."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from collections.abc import AsyncIterator, Coroutine
from contextlib import asynccontextmanager
from typing import Any, TypeVar

import typer

from shared_notes.core.note import Note
from shared_notes.storage.factory import create_store
from shared_notes.sync.engine import NoteSyncEngine
from shared_notes.sync.remote import NoteApiClient
from shared_notes.utils.config import Config, get_config

logger = logging.getLogger(__name__)

T = TypeVar("T")


def setup_logging(verbose: bool, config: Config | None = None) -> None:
    """Send log records to stderr at the configured level."""
    if verbose:
        level = logging.DEBUG
    else:
        level_name = (config or get_config()).log_level
        level = logging.getLevelNamesMapping().get(level_name, logging.WARNING)
    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Run an async CLI command, turning Ctrl-C into a clean exit."""
    try:
        return asyncio.run(coro)
    except KeyboardInterrupt:
        raise typer.Exit(130) from None


@asynccontextmanager
async def open_engine(config: Config) -> AsyncIterator[NoteSyncEngine]:
    """Wire store, API client and engine from configuration.

    Everything is closed on exit; the engine pushes pending writes first.
    """
    store = await create_store(config)
    try:
        async with NoteApiClient(config.server_url, timeout=config.request_timeout) as api:
            async with NoteSyncEngine(store, api, poll_interval=config.poll_interval) as engine:
                yield engine
    finally:
        await store.close()


def output_note(note: Note | None, as_json: bool = False) -> None:
    """Print a note in the requested format."""
    if note is None:
        if as_json:
            typer.echo("null")
        else:
            typer.secho("(no such note)", fg=typer.colors.YELLOW)
        return

    if as_json:
        typer.echo(json.dumps(note.to_dict(), indent=2))
        return

    typer.secho(note.title, bold=True)
    typer.secho(f"updated {note.updated_at.isoformat()}", fg=typer.colors.BRIGHT_BLACK)
    typer.echo(note.content)
