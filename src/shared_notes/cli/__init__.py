"""SharedNotes CLI.

Usage:
    snotes get <title>            Sync a note once and print it
    snotes put <title> <content>  Write a note locally and to the server
    snotes watch <title>          Follow a note as it changes
    snotes list                   List local notes
    snotes delete <title>         Delete a local note
"""

from shared_notes.cli.main import app, main

__all__ = ["app", "main"]
