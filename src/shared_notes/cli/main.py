"""SharedNotes CLI main entry point."""

from __future__ import annotations

import asyncio
import json
from typing import Annotated, Optional

import typer

from shared_notes.cli._helpers import open_engine, output_note, run_async, setup_logging
from shared_notes.core.note import Note
from shared_notes.sync.remote import NoteApiClient, RemoteError
from shared_notes.utils.config import get_config

# Main app
app = typer.Typer(
    name="snotes",
    help="SharedNotes - notes kept in sync with a shared server",
    no_args_is_help=True,
)


@app.callback()
def _main(
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Log debug output to stderr")
    ] = False,
) -> None:
    setup_logging(verbose)


@app.command()
def get(
    title: Annotated[str, typer.Argument(help="Note title")],
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
    timeout: Annotated[
        float, typer.Option("--timeout", help="Seconds to wait for the merge")
    ] = 5.0,
) -> None:
    """Sync a note once and print the merged result.

    Examples:
        snotes get groceries
        snotes get "meeting notes" --json
    """

    async def _get() -> Note | None:
        async with open_engine(get_config()) as engine:
            synced = await engine.get_synced(title)
            session = engine.session(title)
            if session is None:
                typer.secho(f"Could not start syncing {title!r}", fg=typer.colors.RED, err=True)
                raise typer.Exit(1)
            fetched = await session.refresh()
            if fetched is None:
                return synced.value

            # Wait until the merge actor has applied (or discarded) the fetch.
            try:
                return await synced.wait_for(
                    lambda n: n is not None and not fetched.is_newer_than(n),
                    timeout=timeout,
                )
            except TimeoutError:
                typer.secho("Timed out waiting for sync", fg=typer.colors.YELLOW, err=True)
                return synced.value

    output_note(run_async(_get()), as_json=json_output)


@app.command()
def put(
    title: Annotated[str, typer.Argument(help="Note title")],
    content: Annotated[str, typer.Argument(help="New note content")],
) -> None:
    """Write a note locally and push it to the server.

    Examples:
        snotes put groceries "milk, eggs"
    """

    async def _put() -> tuple[Note, bool]:
        async with open_engine(get_config()) as engine:
            stored = await engine.upsert_synced(Note.create(title, content))
            return stored, title in engine.unsynced_titles

    stored, pending = run_async(_put())
    typer.secho(f"Saved {stored.title!r} at {stored.updated_at.isoformat()}", fg=typer.colors.GREEN)
    if pending:
        typer.secho("Server unreachable; the change is saved locally only.", fg=typer.colors.YELLOW)


@app.command("list")
def list_notes(
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
) -> None:
    """List local notes."""

    async def _list() -> list[Note]:
        async with open_engine(get_config()) as engine:
            return await engine.store.get_all()

    notes = run_async(_list())
    if json_output:
        typer.echo(json.dumps([n.to_dict() for n in notes], indent=2))
        return
    if not notes:
        typer.echo("No notes.")
        return
    for note in notes:
        preview = note.content.replace("\n", " ")
        if len(preview) > 60:
            preview = preview[:57] + "..."
        typer.echo(f"{note.title:<24} {note.updated_at:%Y-%m-%d %H:%M:%S}  {preview}")


@app.command()
def delete(title: Annotated[str, typer.Argument(help="Note title")]) -> None:
    """Delete a note from local storage (the server keeps its copy)."""

    async def _delete() -> bool:
        async with open_engine(get_config()) as engine:
            return await engine.delete_local(title)

    if not run_async(_delete()):
        typer.secho(f"No local note {title!r}", fg=typer.colors.RED)
        raise typer.Exit(1)
    typer.secho(f"Deleted {title!r}", fg=typer.colors.GREEN)


@app.command()
def watch(
    title: Annotated[str, typer.Argument(help="Note title")],
    duration: Annotated[
        Optional[float], typer.Option("--duration", "-d", help="Stop after N seconds")
    ] = None,
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
) -> None:
    """Print the note every time it changes locally or on the server.

    Examples:
        snotes watch groceries
        snotes watch groceries --duration 30
    """

    async def _watch() -> None:
        async with open_engine(get_config()) as engine:
            synced = await engine.get_synced(title)

            async def _print_changes() -> None:
                async for note in synced.stream():
                    output_note(note, as_json=json_output)
                    if not json_output:
                        typer.echo("")

            try:
                await asyncio.wait_for(_print_changes(), timeout=duration)
            except TimeoutError:
                pass

    run_async(_watch())


@app.command()
def ping(
    message: Annotated[str, typer.Argument(help="Message to echo")] = "hello",
) -> None:
    """Check that the server is reachable."""
    config = get_config()

    async def _ping() -> str:
        async with NoteApiClient(config.server_url, timeout=config.request_timeout) as api:
            return await api.echo(message)

    try:
        reply = run_async(_ping())
    except RemoteError as e:
        typer.secho(f"Server unreachable: {e}", fg=typer.colors.RED)
        raise typer.Exit(1) from None
    typer.echo(reply)


@app.command("config")
def show_config() -> None:
    """Show the effective configuration."""
    typer.echo(json.dumps(get_config().to_dict(), indent=2))


@app.command()
def version() -> None:
    """Show version information."""
    from shared_notes import __version__

    typer.echo(f"shared-notes v{__version__}")


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
