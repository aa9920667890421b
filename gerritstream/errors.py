"""Exception hierarchy for gerritstream.

Every failure is raised (or delivered) to the caller; nothing in the
library terminates the process.
"""

from __future__ import annotations


class GerritStreamError(Exception):
    """Base class for all gerritstream errors."""


class ConnectError(GerritStreamError, ConnectionError):
    """Dial, authentication, key loading or channel open failed."""


class StreamIOError(GerritStreamError, OSError):
    """Read failure on an open session."""


class DecodeError(GerritStreamError, ValueError):
    """A single record could not be decoded.

    Attributes:
        line: Raw bytes of the offending record, without terminator.
        reason: Human readable cause.
    """

    def __init__(self, line: bytes, reason: str) -> None:
        self.line = line
        self.reason = reason
        preview = line[:80].decode("utf-8", errors="replace")
        super().__init__(f"Cannot decode record ({reason}): {preview!r}")

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DecodeError):
            return NotImplemented
        return self.line == other.line and self.reason == other.reason

    def __hash__(self) -> int:
        return hash((self.line, self.reason))


class StateError(GerritStreamError, RuntimeError):
    """Invalid listener lifecycle transition."""


class CommandFailedError(GerritStreamError):
    """Remote command exited with a non-zero status or was killed."""

    def __init__(self, command: str, exit_status: int | None, stderr: bytes = b"") -> None:
        self.command = command
        self.exit_status = exit_status
        self.stderr = stderr
        detail = stderr.decode("utf-8", errors="replace").strip()
        status = "killed" if exit_status is None else f"exit {exit_status}"
        super().__init__(f"Command failed ({status}): {command}" + (f": {detail}" if detail else ""))
