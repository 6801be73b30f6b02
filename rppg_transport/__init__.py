"""rPPG transport package: signaling HTTP, wire protocol and peer handle."""

from .errors import (
    RppgClientError,
    RppgConnectionError,
    RppgMalformedResponse,
    RppgResponseError,
    RppgTimeout,
    RppgTransportClosed,
)
from .http import RppgSignalingClient
from .peer import ConnectionSnapshot, PeerHandle, build_rtc_configuration
from .protocol import (
    MessageKind,
    build_offer_body,
    build_ping,
    classify_message,
    parse_answer,
)

__all__ = [
    "ConnectionSnapshot",
    "MessageKind",
    "PeerHandle",
    "RppgClientError",
    "RppgConnectionError",
    "RppgMalformedResponse",
    "RppgResponseError",
    "RppgSignalingClient",
    "RppgTimeout",
    "RppgTransportClosed",
    "build_offer_body",
    "build_ping",
    "build_rtc_configuration",
    "classify_message",
    "parse_answer",
]
