"""Opt-in log output for gerritstream.

The library is silent until ``setup_logging`` is called. Records about a
connection carry the Gerrit endpoint (``host:port``) in ``extra["endpoint"]``,
so several listeners writing to one sink stay distinguishable, and a sink can
be narrowed to selected servers.

Example:
    handlers = setup_logging(LogConfig(level="DEBUG", endpoints={"review.example.com:29418"}))
    try:
        ...
    finally:
        teardown_logging(handlers)
"""

from __future__ import annotations

import sys
from collections.abc import Callable, Collection
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

from loguru import logger

if TYPE_CHECKING:
    from loguru import Record

logger.disable("gerritstream")

type LogLevel = Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR"]

PACKAGE = "gerritstream"
NO_ENDPOINT = "-"


@dataclass(frozen=True, slots=True)
class LogConfig:
    """Where gerritstream logs go.

    Attributes:
        level: Minimum level for every sink.
        console: Write to stderr.
        file: Also append plain-text records to this path.
        endpoints: Only keep records for these ``host:port`` addresses.
            Records not tied to a connection are always kept.
    """

    level: LogLevel = "INFO"
    console: bool = True
    file: str | None = None
    endpoints: Collection[str] | None = None


def _format(record: Record) -> str:
    endpoint = "{extra[endpoint]}" if "endpoint" in record["extra"] else NO_ENDPOINT
    return (
        "<green>{time:HH:mm:ss.SSS}</green> <level>{level: <7}</level> "
        f"<cyan>{endpoint}</cyan> <level>{{message}}</level>\n{{exception}}"
    )


def _filter(endpoints: Collection[str] | None) -> Callable[[Record], bool]:
    wanted = frozenset(endpoints) if endpoints is not None else None

    def accept(record: Record) -> bool:
        name = record["name"] or ""
        if name != PACKAGE and not name.startswith(f"{PACKAGE}."):
            return False
        if wanted is None:
            return True
        endpoint = record["extra"].get("endpoint")
        return endpoint is None or endpoint in wanted

    return accept


def setup_logging(config: LogConfig | None = None) -> list[int]:
    """Enable gerritstream logging and return the added handler IDs."""
    config = config or LogConfig()
    accept = _filter(config.endpoints)
    handler_ids: list[int] = []

    if config.console:
        handler_ids.append(
            logger.add(sys.stderr, level=config.level, format=_format, filter=accept, colorize=True)
        )
    if config.file:
        handler_ids.append(
            logger.add(
                config.file,
                level=config.level,
                format=_format,
                filter=accept,
                colorize=False,
                diagnose=False,
            )
        )

    logger.enable(PACKAGE)
    return handler_ids


def teardown_logging(handler_ids: list[int]) -> None:
    """Remove handlers added by ``setup_logging`` and silence the library."""
    for hid in handler_ids:
        logger.remove(hid)
    logger.disable(PACKAGE)
