"""HTTP client for the shared notes server."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any
from urllib.parse import quote

import aiohttp

from shared_notes.core.note import Note
from shared_notes.utils.timeutils import format_timestamp, utcnow

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json; charset=utf-8"

# Body the server returns for a title it has never stored.
NOT_FOUND_DETAIL = "Note not found."


class RemoteError(Exception):
    """Transport or server error talking to the notes server."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def quote_title(title: str) -> str:
    """Percent-encode a title for use as a single path segment."""
    return quote(title, safe="")


class NoteApiClient:
    """
    Client for the notes server REST API.

    One instance owns one ``aiohttp.ClientSession`` (and its connection
    pool) and is meant to be shared by every sync session in the process.
    Calls never retry; callers decide what to do with a ``RemoteError``.

    Usage:
        async with NoteApiClient("https://sharednotes.goto.ucsd.edu") as api:
            note = await api.fetch("groceries")
            await api.store("groceries", "milk, eggs")
    """

    def __init__(self, server_url: str, *, timeout: float = 10.0) -> None:
        """
        Initialize the client.

        Args:
            server_url: Base URL of the notes server
            timeout: Total timeout per request in seconds
        """
        self._server_url = server_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: aiohttp.ClientSession | None = None

    @property
    def server_url(self) -> str:
        return self._server_url

    @property
    def is_connected(self) -> bool:
        return self._session is not None

    async def connect(self) -> None:
        """Create the HTTP session. No-op if already connected."""
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> NoteApiClient:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.close()

    # ========== Requests ==========

    async def _request(
        self,
        method: str,
        path: str,
        *,
        body: dict[str, Any] | None = None,
    ) -> tuple[int, str]:
        """Send a request and return (status, body text)."""
        if not self._session:
            await self.connect()

        assert self._session is not None

        url = f"{self._server_url}{path}"
        data: bytes | None = None
        headers: dict[str, str] = {}
        if body is not None:
            data = json.dumps(body).encode("utf-8")
            headers["Content-Type"] = JSON_CONTENT_TYPE

        try:
            async with self._session.request(method, url, data=data, headers=headers) as response:
                text = await response.text()
                return response.status, text
        except (aiohttp.ClientError, TimeoutError) as e:
            raise RemoteError(f"{method} {path} failed: {e!r}") from e

    async def fetch(self, title: str) -> Note | None:
        """
        Fetch the server's copy of a note.

        Args:
            title: Note title

        Returns:
            The remote note, or None if the server has no note with this title

        Raises:
            RemoteError: On network failure or an unexpected HTTP status
            NoteDecodeError: If the server answered with a malformed note
        """
        path = f"/notes/{quote_title(title)}"
        status, text = await self._request("GET", path)
        logger.debug("GET %s -> %d %s", path, status, text[:200])

        if _is_not_found(text):
            return None
        if status >= 400:
            raise RemoteError(f"Server error: {text}", status_code=status)

        return Note.from_wire(text, title=title)

    async def store(
        self,
        title: str,
        content: str,
        updated_at: datetime | None = None,
    ) -> dict[str, Any]:
        """
        Store a note on the server.

        Args:
            title: Note title
            content: Note body
            updated_at: Timestamp to record (default: now)

        Returns:
            The server's JSON acknowledgement, or an empty dict

        Raises:
            RemoteError: On network failure or an HTTP error status
        """
        path = f"/notes/{quote_title(title)}"
        body = {
            "content": content,
            "updated_at": format_timestamp(updated_at if updated_at is not None else utcnow()),
        }
        status, text = await self._request("PUT", path, body=body)
        logger.debug("PUT %s -> %d", path, status)

        if status >= 400:
            raise RemoteError(f"Server error: {text}", status_code=status)

        try:
            ack = json.loads(text) if text else {}
        except json.JSONDecodeError:
            return {}
        return ack if isinstance(ack, dict) else {}

    async def echo(self, message: str) -> str:
        """Round-trip a message through ``/echo/{message}``."""
        path = f"/echo/{quote_title(message)}"
        status, text = await self._request("GET", path)
        if status >= 400:
            raise RemoteError(f"Server error: {text}", status_code=status)

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise RemoteError(f"Invalid echo response: {text[:200]}") from e
        if not isinstance(data, dict):
            raise RemoteError(f"Invalid echo response: {text[:200]}")
        return str(data.get("message", ""))


def _is_not_found(text: str) -> bool:
    """True if the body is the server's not-found sentinel."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return False
    return data == {"detail": NOT_FOUND_DETAIL}
