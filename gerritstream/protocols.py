"""Protocol definitions for the session seam.

StreamListener and CommandExecutor only talk to a session through these
methods, so any object implementing them (an in-memory fake, a different
transport) can be injected through ``session_factory``.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Protocol, runtime_checkable

from gerritstream.endpoint import Endpoint


@runtime_checkable
class Session(Protocol):
    """Protocol for one running remote command."""

    async def read(self, n: int = ..., /) -> bytes:
        """Read up to ``n`` bytes of stdout; ``b""`` at end of stream."""
        ...

    async def wait(self) -> tuple[int | None, bytes]:
        """Wait for exit and return (exit_status, stderr)."""
        ...

    def close(self) -> None:
        """Terminate command and connection. Must be idempotent and must
        unblock a pending ``read``."""
        ...

    async def wait_closed(self) -> None:
        ...


type SessionFactory = Callable[[Endpoint, str], Awaitable[Session]]
