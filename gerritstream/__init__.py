"""Asyncio client for Gerrit's SSH stream-events API."""

from gerritstream.client import GerritClient
from gerritstream.config import load_config, resolve_endpoint
from gerritstream.decoder import StreamDecoder, decode_lines, iter_events
from gerritstream.endpoint import DEFAULT_PORT, Endpoint
from gerritstream.errors import (
    CommandFailedError,
    ConnectError,
    DecodeError,
    GerritStreamError,
    StateError,
    StreamIOError,
)
from gerritstream.events import Account, Approval, Change, Event, EventType, PatchSet, RefUpdate, parse_event
from gerritstream.executor import CommandExecutor
from gerritstream.listener import ListenerState, StreamListener
from gerritstream.logging import LogConfig, setup_logging, teardown_logging
from gerritstream.protocols import Session, SessionFactory
from gerritstream.session import RemoteSession, open_with_retry

__all__ = [
    "GerritClient",
    "load_config",
    "resolve_endpoint",
    "StreamDecoder",
    "decode_lines",
    "iter_events",
    "DEFAULT_PORT",
    "Endpoint",
    "CommandFailedError",
    "ConnectError",
    "DecodeError",
    "GerritStreamError",
    "StateError",
    "StreamIOError",
    "Account",
    "Approval",
    "Change",
    "Event",
    "EventType",
    "PatchSet",
    "RefUpdate",
    "parse_event",
    "CommandExecutor",
    "ListenerState",
    "StreamListener",
    "LogConfig",
    "setup_logging",
    "teardown_logging",
    "Session",
    "SessionFactory",
    "RemoteSession",
    "open_with_retry",
]
