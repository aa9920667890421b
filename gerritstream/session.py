"""AsyncSSH-backed remote session running exactly one command.

A RemoteSession owns one authenticated connection and the single command
channel opened on it. Closing the session tears down both.
"""

from __future__ import annotations

import asyncio
import contextlib

import asyncssh
from loguru import logger
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from gerritstream.endpoint import Endpoint
from gerritstream.errors import ConnectError, StateError, StreamIOError

DEFAULT_CHUNK_SIZE = 4096
CLOSE_TIMEOUT = 5.0


class RemoteSession:
    """One live SSH connection plus one remote command invocation.

    Example:
        >>> async with await RemoteSession.open(endpoint, "gerrit version") as session:
        ...     data = await session.read()
    """

    __slots__ = ("_endpoint", "_command", "_conn", "_process", "_closed")

    def __init__(
        self,
        endpoint: Endpoint,
        command: str,
        conn: asyncssh.SSHClientConnection,
        process: asyncssh.SSHClientProcess[bytes],
    ) -> None:
        self._endpoint = endpoint
        self._command = command
        self._conn = conn
        self._process = process
        self._closed = False

    @classmethod
    async def open(cls, endpoint: Endpoint, command: str) -> RemoteSession:
        """Connect to ``endpoint`` and start ``command``.

        Raises:
            ConnectError: If the key cannot be loaded, the dial or handshake
                fails, authentication is refused, or the channel is rejected.
        """
        log = logger.bind(endpoint=endpoint.address)
        log.debug("SSH: connecting as {user}", user=endpoint.username)
        try:
            conn = await asyncssh.connect(**endpoint.connect_options())
        except (OSError, asyncssh.Error, ValueError) as e:
            raise ConnectError(f"Cannot connect to {endpoint.address}: {e}") from e

        try:
            process = await conn.create_process(command, encoding=None)
        except (OSError, asyncssh.Error) as e:
            conn.close()
            raise ConnectError(f"Cannot start {command!r} on {endpoint.address}: {e}") from e
        except BaseException:
            # Cancelled while the channel was opening.
            conn.close()
            raise

        log.debug("SSH: started {command!r}", command=command)
        return cls(endpoint, command, conn, process)

    @property
    def command(self) -> str:
        return self._command

    @property
    def closed(self) -> bool:
        return self._closed

    def output_stream(self) -> asyncssh.SSHReader[bytes]:
        """Raw stdout reader of the remote command."""
        if self._closed:
            raise StateError("Session is closed")
        return self._process.stdout

    async def read(self, n: int = DEFAULT_CHUNK_SIZE) -> bytes:
        """Read up to ``n`` bytes of stdout.

        Returns:
            The bytes read, or ``b""`` at end of stream or once closed.

        Raises:
            StreamIOError: If the connection fails while the session is open.
        """
        if self._closed:
            return b""
        try:
            return await self._process.stdout.read(n)
        except (OSError, asyncssh.Error) as e:
            if self._closed:
                return b""
            raise StreamIOError(f"Read failed on {self._endpoint.address}: {e}") from e

    async def wait(self) -> tuple[int | None, bytes]:
        """Wait for the command to exit.

        Returns:
            Tuple of (exit_status, stderr). exit_status is None when the
            command was killed by a signal or never reported a status.
        """
        try:
            result = await self._process.wait(check=False)
        except (OSError, asyncssh.Error) as e:
            raise StreamIOError(f"Lost {self._command!r} on {self._endpoint.address}: {e}") from e

        status = None if result.exit_signal else result.exit_status
        stderr = result.stderr or b""
        return status, bytes(stderr)

    def close(self) -> None:
        """Terminate the command and the connection. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._process.close()
        self._conn.close()
        logger.bind(endpoint=self._endpoint.address).debug("SSH: closed {command!r}", command=self._command)

    async def wait_closed(self) -> None:
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._conn.wait_closed(), timeout=CLOSE_TIMEOUT)

    async def __aenter__(self) -> RemoteSession:
        return self

    async def __aexit__(self, *_: object) -> None:
        self.close()
        await self.wait_closed()


def _log_retry(state: RetryCallState) -> None:
    exc = state.outcome.exception() if state.outcome else None
    delay = state.next_action.sleep if state.next_action else 0.0
    logger.warning(f"Open retry {state.attempt_number} after {exc}. Waiting {delay:.1f}s...")


async def open_with_retry(
    endpoint: Endpoint,
    command: str,
    max_attempts: int = 5,
    max_delay: float = 30.0,
) -> RemoteSession:
    """Open a session, retrying ConnectError with exponential backoff.

    The retry policy lives here, on the caller side; ``RemoteSession.open``
    itself makes a single attempt.
    """

    @retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, min=1, max=max_delay),
        retry=retry_if_exception_type(ConnectError),
        before_sleep=_log_retry,
        reraise=True,
    )
    async def do_open() -> RemoteSession:
        return await RemoteSession.open(endpoint, command)

    return await do_open()
