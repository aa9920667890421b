"""One-off remote commands.

Each call opens its own session, drains stdout to end of stream, checks the
exit status and closes the session on every path. Calls share no state, so
any number may run concurrently with each other and with a listener.
"""

from __future__ import annotations

from typing import Any

from loguru import logger

from gerritstream.decoder import DEFAULT_CHUNK_SIZE, decode_lines
from gerritstream.endpoint import Endpoint
from gerritstream.errors import CommandFailedError
from gerritstream.protocols import SessionFactory
from gerritstream.session import RemoteSession


class CommandExecutor:
    """Runs short-lived commands against one endpoint.

    Example:
        >>> executor = CommandExecutor(endpoint)
        >>> await executor.run_text("version")
        'gerrit version 3.9.1\\n'
    """

    def __init__(
        self,
        endpoint: Endpoint,
        session_factory: SessionFactory = RemoteSession.open,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self._endpoint = endpoint
        self._open = session_factory
        self._chunk_size = chunk_size

    @property
    def endpoint(self) -> Endpoint:
        return self._endpoint

    async def run(self, *args: str) -> bytes:
        """Run a command to completion and return its stdout.

        Args:
            *args: Command arguments; the endpoint's prefix is prepended.

        Raises:
            ConnectError: If the session cannot be opened.
            StreamIOError: If reading the output fails.
            CommandFailedError: On a non-zero exit status or a kill signal.
        """
        command = self._endpoint.command(*args)
        cmd_preview = command[:80] + "..." if len(command) > 80 else command
        log = logger.bind(endpoint=self._endpoint.address)
        log.debug(f"CommandExecutor.run: {cmd_preview}")

        session = await self._open(self._endpoint, command)
        try:
            chunks: list[bytes] = []
            while chunk := await session.read(self._chunk_size):
                chunks.append(chunk)
            status, stderr = await session.wait()
        finally:
            session.close()
            await session.wait_closed()

        log.debug(f"CommandExecutor.run: exit_status={status}")
        if status != 0:
            raise CommandFailedError(command, status, stderr)
        return b"".join(chunks)

    async def run_text(self, *args: str) -> str:
        return (await self.run(*args)).decode("utf-8", errors="replace")

    async def run_json_lines(self, *args: str) -> list[dict[str, Any]]:
        """Run a command whose stdout is newline-delimited JSON.

        Raises:
            DecodeError: If any line is not a JSON object.
        """
        return decode_lines(await self.run(*args))

    async def version(self) -> str:
        """Server version string, e.g. ``"3.9.1"``."""
        text = (await self.run_text("version")).strip()
        return text.removeprefix("gerrit version").strip()
