"""Long-lived ``stream-events`` listener.

One background task per running listener owns the remote session and the
decoder. It talks to the outside world only through the stop signal
(written by ``stop``) and the bounded delivery queue (read by ``events``).

Lifecycle:
    IDLE --start--> RUNNING --stop--> STOPPING --task exit--> STOPPED
    RUNNING --end of stream / failure--> STOPPED
    STOPPED --start--> RUNNING
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from enum import StrEnum
from typing import Any, Literal

from loguru import logger

from gerritstream.decoder import DEFAULT_CHUNK_SIZE, Parser, StreamDecoder
from gerritstream.endpoint import Endpoint
from gerritstream.errors import CommandFailedError, DecodeError, GerritStreamError, StateError
from gerritstream.events import Event, parse_event
from gerritstream.protocols import Session, SessionFactory
from gerritstream.session import RemoteSession

type DecodePolicy = Literal["report", "fatal"]

DEFAULT_MAX_PENDING = 1024

# Returned by _until_stopped when the stop signal wins the race.
_STOPPED = object()


class ListenerState(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


class StreamListener:
    """Streams decoded events from a persistent remote command.

    ``start`` and ``stop`` never suspend: ``start`` spawns the background
    task and ``stop`` only signals it. Observe ``state`` or await
    ``wait_stopped`` for confirmation.

    Calling ``start`` while RUNNING or STOPPING raises StateError. Calling
    ``stop`` in any state other than RUNNING is a no-op.

    Args:
        endpoint: Gerrit SSH endpoint.
        command: Remote command arguments (prefix added by the endpoint).
        max_pending: Capacity of the delivery queue. A full queue blocks
            the background task until the consumer catches up.
        decode_errors: ``"report"`` logs and skips malformed records;
            ``"fatal"`` stops the listener with the DecodeError.
        on_decode_error: Optional callback for each skipped record.
        session_factory: Opens the session; defaults to RemoteSession.open.
        chunk_size: Maximum bytes per read.
        parse: Schema step for decoded records.

    Example:
        >>> async with StreamListener(endpoint) as listener:
        ...     async for event in listener:
        ...         print(event.type)
    """

    def __init__(
        self,
        endpoint: Endpoint,
        command: Sequence[str] = ("stream-events",),
        *,
        max_pending: int = DEFAULT_MAX_PENDING,
        decode_errors: DecodePolicy = "report",
        on_decode_error: Callable[[DecodeError], Any] | None = None,
        session_factory: SessionFactory = RemoteSession.open,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        parse: Parser[Event] = parse_event,
    ) -> None:
        if max_pending < 1:
            raise ValueError("max_pending must be at least 1")
        if decode_errors not in ("report", "fatal"):
            raise ValueError(f"Unknown decode error policy: {decode_errors!r}")

        self._endpoint = endpoint
        self._command = endpoint.command(*command)
        self._decode_errors = decode_errors
        self._on_decode_error = on_decode_error
        self._open = session_factory
        self._chunk_size = chunk_size
        self._parse = parse
        self._log = logger.bind(endpoint=endpoint.address)

        self._state = ListenerState.IDLE
        self._queue: asyncio.Queue[Event] = asyncio.Queue(max_pending)
        self._stop = asyncio.Event()
        self._finished = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._error: BaseException | None = None
        self._decode_error_count = 0
        # Taken off the queue by a consumer that was cancelled before returning it.
        self._held: Event | None = None

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    @property
    def state(self) -> ListenerState:
        return self._state

    @property
    def command(self) -> str:
        return self._command

    @property
    def error(self) -> BaseException | None:
        """Terminal error of the last run, or None after a clean stop."""
        return self._error

    @property
    def decode_error_count(self) -> int:
        return self._decode_error_count

    @property
    def pending(self) -> int:
        """Events published but not yet consumed."""
        return self._queue.qsize() + (self._held is not None)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Spawn the background task and return immediately.

        Must be called from a running event loop.

        Raises:
            StateError: If the listener is RUNNING or STOPPING.
        """
        if self._state in (ListenerState.RUNNING, ListenerState.STOPPING):
            raise StateError(f"Cannot start listener: already {self._state}")

        loop = asyncio.get_running_loop()
        self._stop.clear()
        self._finished.clear()
        self._error = None
        self._decode_error_count = 0
        self._state = ListenerState.RUNNING
        self._task = loop.create_task(self._run(), name=f"gerritstream-listener-{self._endpoint.address}")
        self._log.info("Listener started {command!r}", command=self._command)

    def stop(self) -> None:
        """Ask the background task to close the session and exit."""
        if self._state is not ListenerState.RUNNING:
            return
        self._state = ListenerState.STOPPING
        self._stop.set()
        self._log.info("Listener stop requested")

    async def wait_stopped(self) -> None:
        """Wait until the background task has exited."""
        if self._task is None:
            return
        await self._finished.wait()

    async def aclose(self) -> None:
        self.stop()
        await self.wait_stopped()

    async def __aenter__(self) -> StreamListener:
        self.start()
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()

    # -------------------------------------------------------------------------
    # Consumer side
    # -------------------------------------------------------------------------

    async def events(self) -> AsyncIterator[Event]:
        """Yield events in stream order until the listener has stopped.

        Events already queued are drained first. If the run ended with an
        error it is raised after the last event.
        """
        while True:
            if self._held is None and self._queue.empty() and self._finished.is_set():
                break
            event = await self._next_event()
            if event is not None:
                yield event

        if self._error is not None:
            raise self._error

    def __aiter__(self) -> AsyncIterator[Event]:
        return self.events()

    async def _next_event(self) -> Event | None:
        if self._held is not None:
            event, self._held = self._held, None
            return event
        if not self._queue.empty():
            return self._queue.get_nowait()

        getter = asyncio.ensure_future(self._queue.get())
        finished = asyncio.ensure_future(self._finished.wait())
        try:
            await asyncio.wait({getter, finished}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            finished.cancel()
            if not getter.done():
                getter.cancel()
            elif not getter.cancelled():
                self._held = getter.result()

        event, self._held = self._held, None
        return event

    # -------------------------------------------------------------------------
    # Background task
    # -------------------------------------------------------------------------

    async def _until_stopped(self, aw: Awaitable[Any]) -> Any:
        """Await ``aw`` unless the stop signal arrives first.

        Returns the result of ``aw``, or ``_STOPPED`` after cancelling it.
        """
        task = asyncio.ensure_future(aw)
        stopper = asyncio.ensure_future(self._stop.wait())
        try:
            await asyncio.wait({task, stopper}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            stopper.cancel()

        if task.done():
            return task.result()

        task.cancel()
        with contextlib.suppress(asyncio.CancelledError, GerritStreamError):
            await task
        return _STOPPED

    async def _run(self) -> None:
        session: Session | None = None
        decoder = StreamDecoder(self._parse)

        try:
            result = await self._until_stopped(self._open(self._endpoint, self._command))
            if result is _STOPPED:
                return
            session = result
            self._log.debug("Listener session open")

            while not self._stop.is_set():
                chunk = await self._until_stopped(session.read(self._chunk_size))
                if chunk is _STOPPED or self._stop.is_set():
                    return

                if not chunk:
                    tail = decoder.finish()
                    if tail is not None and not await self._deliver(tail):
                        return
                    await self._check_exit(session)
                    self._log.info("Listener reached end of stream")
                    return

                decoder.feed(chunk)
                for item in decoder.extract_ready():
                    if not await self._deliver(item):
                        return

        except GerritStreamError as e:
            self._error = e
            self._log.error("Listener failed: {error}", error=e)
        except Exception as e:
            self._error = e
            self._log.opt(exception=e).error("Listener background task crashed")
        finally:
            if session is not None:
                session.close()
                await session.wait_closed()
            self._state = ListenerState.STOPPED
            self._finished.set()
            self._log.info("Listener stopped")

    async def _deliver(self, item: Event | DecodeError) -> bool:
        """Publish one decoded item. Returns False when the task must exit."""
        if self._stop.is_set():
            return False

        if isinstance(item, DecodeError):
            self._decode_error_count += 1
            if self._decode_errors == "fatal":
                self._error = item
                self._log.error("Listener failed: {error}", error=item)
                return False
            self._log.warning("Listener skipped {error}", error=item)
            if self._on_decode_error is not None:
                self._on_decode_error(item)
            return True

        if not self._queue.full():
            self._queue.put_nowait(item)
            return True

        self._log.debug("Listener consumer is behind, waiting")
        return await self._until_stopped(self._queue.put(item)) is not _STOPPED

    async def _check_exit(self, session: Session) -> None:
        result = await self._until_stopped(session.wait())
        if result is _STOPPED:
            return
        status, stderr = result
        if status != 0:
            raise CommandFailedError(self._command, status, stderr)
