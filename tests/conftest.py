from __future__ import annotations

import asyncio
from collections.abc import Iterable

import pytest

from gerritstream import Endpoint
from gerritstream.errors import StreamIOError

_EOF = b""


class FakeSession:
    """In-memory session: chunks are fed through a queue, ``b""`` is EOF."""

    def __init__(
        self,
        chunks: Iterable[bytes] = (),
        *,
        eof: bool = True,
        exit_status: int | None = 0,
        stderr: bytes = b"",
        read_error: Exception | None = None,
    ) -> None:
        self._chunks: asyncio.Queue[bytes] = asyncio.Queue()
        for chunk in chunks:
            self._chunks.put_nowait(chunk)
        if eof:
            self._chunks.put_nowait(_EOF)
        self.exit_status = exit_status
        self.stderr = stderr
        self.read_error = read_error
        self.closed = False
        self.releases = 0
        self.reads = 0

    def push(self, chunk: bytes) -> None:
        self._chunks.put_nowait(chunk)

    def end(self) -> None:
        self._chunks.put_nowait(_EOF)

    async def read(self, n: int = 4096) -> bytes:
        if self.closed:
            return b""
        if self.read_error is not None and self._chunks.empty():
            raise self.read_error
        self.reads += 1
        return await self._chunks.get()

    async def wait(self) -> tuple[int | None, bytes]:
        return self.exit_status, self.stderr

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.releases += 1
        # unblock a pending read
        self._chunks.put_nowait(_EOF)

    async def wait_closed(self) -> None:
        return None


class FakeFactory:
    """session_factory returning prepared sessions in order."""

    def __init__(self, *sessions: FakeSession, error: Exception | None = None) -> None:
        self.sessions = list(sessions)
        self.opened: list[FakeSession] = []
        self.commands: list[str] = []
        self.error = error

    async def __call__(self, endpoint: Endpoint, command: str) -> FakeSession:
        self.commands.append(command)
        if self.error is not None:
            raise self.error
        session = self.sessions.pop(0)
        self.opened.append(session)
        return session


def lines(*records: str) -> bytes:
    return "".join(f"{r}\n" for r in records).encode()


@pytest.fixture
def endpoint() -> Endpoint:
    return Endpoint(host="review.example.com", username="bot")


@pytest.fixture
def read_failure() -> StreamIOError:
    return StreamIOError("connection reset")
