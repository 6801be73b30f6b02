"""Client error types for rPPG server interactions."""

from __future__ import annotations


class RppgClientError(Exception):
    """Base error for rPPG client failures."""


class RppgTimeout(RppgClientError):
    """Timeout while communicating with the server."""


class RppgConnectionError(RppgClientError):
    """Network connection to the server failed."""


class RppgResponseError(RppgClientError):
    """HTTP response error from the server."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(message)
        self.status = status


class RppgMalformedResponse(RppgClientError):
    """Server response body could not be decoded."""


class RppgTransportClosed(RppgClientError):
    """Peer connection was closed while an operation was pending."""
