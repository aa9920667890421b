"""Connection parameters for a Gerrit SSH endpoint."""

from __future__ import annotations

import os
import shlex
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlsplit

DEFAULT_PORT = 29418


@dataclass(frozen=True, slots=True)
class Endpoint:
    """Immutable SSH endpoint configuration.

    Attributes:
        host: Gerrit hostname or IP address.
        username: Account used to authenticate.
        port: SSH port. Gerrit listens on 29418 by default.
        key_path: Path to the private key. None uses agent/default keys.
        passphrase: Passphrase for an encrypted private key.
        known_hosts: known_hosts file path. None disables host key checks.
        connect_timeout: Seconds allowed for dial and handshake.
        keepalive_interval: Seconds between keepalive probes (0 disables).
        command_prefix: Prepended to every remote command.
    """

    host: str
    username: str
    port: int = DEFAULT_PORT
    key_path: str | None = None
    passphrase: str | None = None
    known_hosts: str | None = None
    connect_timeout: float = 30.0
    keepalive_interval: float = 30.0
    command_prefix: str = "gerrit"

    @classmethod
    def parse(cls, url: str, username: str | None = None, **kwargs: Any) -> Endpoint:
        """Build an endpoint from ``host[:port]`` or ``ssh://[user@]host[:port]``.

        Example:
            >>> Endpoint.parse("review.example.com:29418", username="bot")
            Endpoint(host='review.example.com', username='bot', port=29418, ...)
        """
        parts = urlsplit(url if "://" in url else f"ssh://{url}")
        if parts.scheme != "ssh":
            raise ValueError(f"Unsupported scheme '{parts.scheme}' in {url!r}")
        if not parts.hostname:
            raise ValueError(f"No host in {url!r}")

        user = username or parts.username
        if not user:
            raise ValueError(f"No username given for {url!r}")

        return cls(host=parts.hostname, username=user, port=parts.port or DEFAULT_PORT, **kwargs)

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    def command(self, *args: str) -> str:
        """Remote command line for ``args``, with the configured prefix."""
        quoted = " ".join(shlex.quote(a) for a in args)
        if not self.command_prefix:
            return quoted
        return f"{self.command_prefix} {quoted}" if quoted else self.command_prefix

    def connect_options(self) -> dict[str, Any]:
        """Keyword arguments for ``asyncssh.connect``."""
        options: dict[str, Any] = {
            "host": self.host,
            "port": self.port,
            "username": self.username,
            "known_hosts": self.known_hosts,
            "connect_timeout": self.connect_timeout,
        }
        if self.keepalive_interval > 0:
            options["keepalive_interval"] = self.keepalive_interval
        if self.key_path:
            options["client_keys"] = [os.path.expanduser(self.key_path)]
            if self.passphrase:
                options["passphrase"] = self.passphrase
        return options
