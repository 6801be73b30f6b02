"""Session configuration and loading.

Configuration is plain data. The token is never stored in the config itself,
only a provider that yields it on demand, so a long-lived config can follow
token rotation.
"""

from __future__ import annotations

import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError

DEFAULT_TOKEN_ENV = "RPPG_AUTH_TOKEN"

TokenProvider = Callable[[], str | Awaitable[str]]


@dataclass(frozen=True)
class IceServerSpec:
    """STUN/TURN server entry, passed through verbatim to the transport.

    Attributes:
        urls: One URI or several (e.g., "stun:stun.l.google.com:19302").
        username: Relay username, if any.
        credential: Relay credential, if any.
    """

    urls: str | tuple[str, ...]
    username: str | None = None
    credential: str | None = None


@dataclass(frozen=True)
class SessionConfig:
    """Immutable configuration for a single session.

    Attributes:
        signaling_endpoint: Base URL of the inference server.
        ice_servers: Ordered STUN/TURN servers.
        auth_token_provider: Callable returning a bearer token (sync or async).
        audio: Whether to acquire and send a microphone track.
        video_transform: Transform requested from the server.
        request_timeout: Signaling request timeout (seconds).
    """

    signaling_endpoint: str
    ice_servers: tuple[IceServerSpec, ...] = ()
    auth_token_provider: TokenProvider = field(default_factory=lambda: env_token_provider())
    audio: bool = False
    video_transform: str = "mask"
    request_timeout: float = 20.0


def static_token_provider(token: str) -> TokenProvider:
    """Provider that always yields the same token."""

    def provide() -> str:
        return token

    return provide


def env_token_provider(name: str = DEFAULT_TOKEN_ENV) -> TokenProvider:
    """Provider that reads the token from the environment on each call."""

    def provide() -> str:
        return os.environ.get(name, "")

    return provide


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML file."""
    if not path.exists():
        raise ConfigError(f"File not found: {path}")
    with path.open() as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a mapping in {path}")
    return data


def _parse_ice_server(entry: Any) -> IceServerSpec:
    if not isinstance(entry, dict) or "urls" not in entry:
        raise ConfigError(f"Invalid ICE server entry: {entry!r}")
    urls = entry["urls"]
    if isinstance(urls, list):
        urls = tuple(str(url) for url in urls)
    elif not isinstance(urls, str):
        raise ConfigError(f"Invalid ICE server urls: {urls!r}")
    return IceServerSpec(
        urls=urls,
        username=entry.get("username"),
        credential=entry.get("credential"),
    )


def load_session_config(path: Path) -> SessionConfig:
    """Load session configuration from a YAML file.

    Expected layout:
        signaling_endpoint: https://rppg.example.com
        ice_servers:
          - urls: ["stun:stun.l.google.com:19302"]
          - urls: turn:relay.example.com:3478?transport=tcp
            username: user
            credential: secret
        audio: false
        auth_token_env: RPPG_AUTH_TOKEN

    Raises:
        ConfigError: If the file is missing or malformed.
    """
    data = _load_yaml(path)

    endpoint = data.get("signaling_endpoint")
    if not endpoint or not isinstance(endpoint, str):
        raise ConfigError(f"Missing signaling_endpoint in {path}")

    ice_servers = tuple(_parse_ice_server(entry) for entry in data.get("ice_servers", []))

    # A literal token wins over the environment
    if token := data.get("auth_token"):
        provider = static_token_provider(str(token))
    else:
        provider = env_token_provider(data.get("auth_token_env", DEFAULT_TOKEN_ENV))

    try:
        request_timeout = float(data.get("request_timeout", 20.0))
    except (TypeError, ValueError) as err:
        raise ConfigError(f"Invalid request_timeout in {path}") from err

    return SessionConfig(
        signaling_endpoint=endpoint,
        ice_servers=ice_servers,
        auth_token_provider=provider,
        audio=bool(data.get("audio", False)),
        video_transform=str(data.get("video_transform", "mask")),
        request_timeout=request_timeout,
    )
