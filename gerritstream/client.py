"""High-level Gerrit SSH client."""

from __future__ import annotations

from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

from gerritstream.config import resolve_endpoint
from gerritstream.endpoint import Endpoint
from gerritstream.events import Event
from gerritstream.executor import CommandExecutor
from gerritstream.listener import StreamListener
from gerritstream.protocols import SessionFactory
from gerritstream.session import RemoteSession


class GerritClient:
    """Service class bound to one Gerrit endpoint.

    One-off commands and stream listeners created from the same client use
    independent sessions.

    Example:
        >>> client = GerritClient(Endpoint.parse("review.example.com", username="bot"))
        >>> await client.version()
        '3.9.1'
        >>> async for event in client.stream_events():
        ...     if event.type == "change-merged":
        ...         break
    """

    def __init__(self, endpoint: Endpoint, session_factory: SessionFactory = RemoteSession.open) -> None:
        self._endpoint = endpoint
        self._session_factory = session_factory
        self._executor = CommandExecutor(endpoint, session_factory=session_factory)

    @classmethod
    def from_config(cls, name: str, *, project_dir: Path | None = None) -> GerritClient:
        return cls(resolve_endpoint(name, project_dir=project_dir))

    @property
    def endpoint(self) -> Endpoint:
        return self._endpoint

    async def send(self, *args: str) -> str:
        """Run a one-off command, e.g. ``send("ls-projects")``."""
        return await self._executor.run_text(*args)

    async def query(self, *terms: str) -> list[dict[str, Any]]:
        """Run ``gerrit query --format=JSON`` and return the change records.

        The trailing statistics row is dropped.
        """
        rows = await self._executor.run_json_lines("query", "--format=JSON", *terms)
        return [row for row in rows if row.get("type") != "stats"]

    async def version(self) -> str:
        return await self._executor.version()

    def listener(self, **kwargs: Any) -> StreamListener:
        """Create an unstarted ``stream-events`` listener."""
        kwargs.setdefault("session_factory", self._session_factory)
        return StreamListener(self._endpoint, **kwargs)

    async def stream_events(self, **kwargs: Any) -> AsyncIterator[Event]:
        """Yield events until the stream ends; closes the listener on exit."""
        async with self.listener(**kwargs) as listener:
            async for event in listener:
                yield event
