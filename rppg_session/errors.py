"""Session error types for rPPG biometric sessions."""

from __future__ import annotations

from dataclasses import dataclass

from rppg_transport.errors import RppgClientError


class RppgSessionError(RppgClientError):
    """Base error for session-level failures."""


class ConfigError(RppgSessionError):
    """Session configuration is missing or invalid."""


class MediaAcquisitionError(RppgSessionError):
    """Local camera or microphone is unavailable or access was denied."""


class NegotiationError(RppgSessionError):
    """Offer/answer exchange with the server failed."""


class NoLocalDescription(NegotiationError):
    """No local description was available after ICE gathering."""


class AuthFailure(NegotiationError):
    """Bearer token could not be obtained."""


class SignalingHttpError(NegotiationError):
    """Signaling request failed or returned a non-2xx status."""

    def __init__(self, status: int | None, message: str) -> None:
        super().__init__(message)
        self.status = status


class MalformedAnswer(NegotiationError):
    """Server answer could not be decoded or applied."""


class NegotiationAborted(NegotiationError):
    """Session was stopped before the answer could be applied."""


class ChannelDecodeError(RppgSessionError):
    """Inbound channel message could not be decoded (non-fatal)."""

    def __init__(self, raw: str, message: str) -> None:
        super().__init__(message)
        self.raw = raw


@dataclass(frozen=True)
class TransportFailure:
    """Transport loss observed on an established or pending connection."""

    reason: str
    connection_state: str
    ice_connection_state: str
    was_connected: bool
