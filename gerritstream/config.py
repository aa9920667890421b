"""TOML-based server configuration.

Loads ~/.gerritstream/config.toml (global) and gerritstream.toml (project),
merges them, and resolves named servers into Endpoint instances.

Example gerritstream.toml:

    [servers.review]
    url = "review.example.com:29418"
    username = "ci-bot"
    key_path = "~/.ssh/ci_bot"
"""

from __future__ import annotations

import dataclasses
import os
import tomllib
from pathlib import Path
from typing import Any

from gerritstream.endpoint import Endpoint

type RawConfig = dict[str, Any]

GLOBAL_CONFIG_PATH = Path.home() / ".gerritstream" / "config.toml"
PROJECT_CONFIG_NAME = "gerritstream.toml"

USER_ENV = "GERRIT_SSH_USER"
KEY_ENV = "GERRIT_SSH_KEY"

_ENDPOINT_FIELDS = frozenset(f.name for f in dataclasses.fields(Endpoint))


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    with path.open("rb") as f:
        return tomllib.load(f)


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> RawConfig:
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_path = (project_dir or Path.cwd()) / PROJECT_CONFIG_NAME
    project_cfg = _read_toml(project_path)

    merged = _deep_merge(global_cfg, project_cfg)
    merged.setdefault("servers", {})
    return merged


def _build_endpoint(name: str, raw: RawConfig) -> Endpoint:
    raw = dict(raw)
    url = raw.pop("url", None)

    unknown = set(raw) - _ENDPOINT_FIELDS
    if unknown:
        raise ValueError(f"Server '{name}' has unknown keys: {', '.join(sorted(unknown))}")

    raw.setdefault("username", os.environ.get(USER_ENV))
    raw.setdefault("key_path", os.environ.get(KEY_ENV))
    if raw["key_path"]:
        raw["key_path"] = os.path.expanduser(raw["key_path"])

    if url is not None:
        username = raw.pop("username")
        raw.pop("host", None)
        raw.pop("port", None)
        return Endpoint.parse(url, username=username, **raw)

    if "host" not in raw:
        raise ValueError(f"Server '{name}' missing 'url' or 'host' field")
    if not raw["username"]:
        raise ValueError(f"Server '{name}' missing 'username' (or set {USER_ENV})")
    return Endpoint(**raw)


def resolve_endpoint(
    name: str,
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> Endpoint:
    config = load_config(project_dir=project_dir, global_path=global_path)

    servers = config["servers"]
    if name not in servers:
        raise KeyError(f"Server '{name}' not found. Available: {', '.join(servers) or 'none'}")

    return _build_endpoint(name, servers[name])
