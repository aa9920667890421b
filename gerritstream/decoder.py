"""Incremental newline-delimited JSON decoding.

The wire format is one JSON object per line. Reads from the network do not
line up with record boundaries, so bytes are accumulated in a frame buffer
and only complete lines are decoded. A malformed line is reported in place
and never blocks the lines after it.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Callable, Mapping
from typing import Any, Protocol

from gerritstream.errors import DecodeError
from gerritstream.events import Event, parse_event

type Parser[T] = Callable[[Mapping[str, Any]], T]

DEFAULT_CHUNK_SIZE = 4096


class ByteStream(Protocol):
    async def read(self, n: int = -1, /) -> bytes: ...


class StreamDecoder[T]:
    """Frames a byte stream into records and decodes each one.

    Args:
        parse: Schema step mapping a decoded JSON object to a record.
            Raising ValueError, TypeError or KeyError marks the line as
            malformed.

    Example:
        >>> decoder = StreamDecoder()
        >>> decoder.feed(b'{"type":"x"}\\n{"typ')
        >>> decoder.extract_ready()
        [Event(type='x', ...)]
        >>> decoder.feed(b'e":"y"}\\n')
        >>> decoder.extract_ready()
        [Event(type='y', ...)]
    """

    __slots__ = ("_parse", "_buffer", "_scanned")

    def __init__(self, parse: Parser[T] = parse_event) -> None:  # type: ignore[assignment]
        self._parse = parse
        self._buffer = bytearray()
        self._scanned = 0

    @property
    def pending(self) -> int:
        """Number of buffered bytes not yet forming a complete line."""
        return len(self._buffer)

    def feed(self, chunk: bytes) -> None:
        self._buffer += chunk

    def extract_ready(self) -> list[T | DecodeError]:
        """Decode every complete line currently buffered.

        Returns:
            Records and decode errors, in stream order. The buffer keeps
            only the bytes after the last newline.
        """
        end = self._buffer.rfind(b"\n", self._scanned)
        if end < 0:
            self._scanned = len(self._buffer)
            return []

        ready = bytes(self._buffer[: end + 1])
        del self._buffer[: end + 1]
        self._scanned = len(self._buffer)

        results: list[T | DecodeError] = []
        for line in ready.split(b"\n")[:-1]:
            item = self._decode(line)
            if item is not None:
                results.append(item)
        return results

    def finish(self) -> T | DecodeError | None:
        """Flush the buffer at end of stream.

        A trailing record without its newline is still decoded; anything
        that fails to decode is reported as a truncated record.
        """
        rest = bytes(self._buffer)
        self._buffer.clear()
        self._scanned = 0

        item = self._decode(rest)
        if isinstance(item, DecodeError):
            return DecodeError(item.line, f"truncated record: {item.reason}")
        return item

    def _decode(self, line: bytes) -> T | DecodeError | None:
        line = line.rstrip(b"\r")
        if not line.strip():
            return None

        try:
            text = line.decode("utf-8")
        except UnicodeDecodeError as e:
            return DecodeError(line, f"invalid UTF-8: {e.reason}")

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            return DecodeError(line, f"invalid JSON: {e.msg}")

        if not isinstance(data, dict):
            return DecodeError(line, f"expected object, got {type(data).__name__}")

        try:
            return self._parse(data)
        except (ValueError, TypeError, KeyError) as e:
            return DecodeError(line, str(e))


async def iter_events[T](
    stream: ByteStream,
    decoder: StreamDecoder[T] | None = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> AsyncIterator[T | DecodeError]:
    """Lazily decode ``stream`` until it returns ``b""``.

    The sequence is finite for one stream and cannot be replayed.
    """
    if decoder is None:
        decoder = StreamDecoder()

    while chunk := await stream.read(chunk_size):
        decoder.feed(chunk)
        for item in decoder.extract_ready():
            yield item

    if (tail := decoder.finish()) is not None:
        yield tail


def decode_lines(data: bytes) -> list[dict[str, Any]]:
    """Decode a complete newline-delimited JSON blob into objects.

    Raises:
        DecodeError: On the first malformed line.
    """
    decoder: StreamDecoder[dict[str, Any]] = StreamDecoder(parse=dict)
    decoder.feed(data)
    items = decoder.extract_ready()
    if (tail := decoder.finish()) is not None:
        items.append(tail)

    records: list[dict[str, Any]] = []
    for item in items:
        if isinstance(item, DecodeError):
            raise item
        records.append(item)
    return records
