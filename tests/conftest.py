"""Pytest configuration and fixtures for rPPG session tests."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from rppg_session import IceServerSpec, SessionConfig, static_token_provider

from .fakes import FakeMediaSource, FakePeerConnection


@pytest.fixture
def mock_session() -> MagicMock:
    """Create a mock aiohttp ClientSession."""
    import aiohttp

    return MagicMock(spec=aiohttp.ClientSession)


@pytest.fixture
def call_log() -> list[str]:
    """Shared, ordered record of teardown-relevant calls."""
    return []


@pytest.fixture
def fake_pc(call_log: list[str]) -> FakePeerConnection:
    """Peer connection that completes ICE gathering on setLocalDescription."""
    return FakePeerConnection(call_log=call_log)


@pytest.fixture
def media_source(call_log: list[str]) -> FakeMediaSource:
    """Media source yielding a single fake video track."""
    return FakeMediaSource(call_log=call_log)


@pytest.fixture
def session_config() -> SessionConfig:
    """Minimal valid session configuration."""
    return SessionConfig(
        signaling_endpoint="http://rppg.test:8080",
        ice_servers=(IceServerSpec(urls=("stun:stun.l.google.com:19302",)),),
        auth_token_provider=static_token_provider("test-token"),
    )


def create_mock_response(
    status: int = 200,
    json_data: dict[str, Any] | None = None,
    text_data: str | None = None,
    read_data: bytes | None = None,
) -> AsyncMock:
    """Create a configured mock response.

    Args:
        status: HTTP status code
        json_data: Data to return from json() call
        text_data: Data to return from text() call (and, encoded, from read())
        read_data: Raw bytes to return from read() call

    Returns:
        Configured AsyncMock response
    """
    response = AsyncMock()
    response.status = status

    if json_data is not None:
        response.json.return_value = json_data
    if text_data is not None:
        response.text.return_value = text_data
        response.read.return_value = text_data.encode()
    if read_data is not None:
        response.read.return_value = read_data

    response.__aenter__.return_value = response
    response.__aexit__.return_value = None

    return response
