"""Protocol helpers for rPPG signaling bodies and control-channel frames."""

from __future__ import annotations

from enum import Enum
from typing import Any

from aiortc import RTCSessionDescription

from .errors import RppgMalformedResponse

PING_PREFIX = "ping"
RESULT_MARKER = "bpm"
METRICS_MARKER = "fps"


class MessageKind(Enum):
    """Classification of inbound control-channel frames."""

    RESULT = "result"
    METRICS = "metrics"
    UNKNOWN = "unknown"


def build_offer_body(
    *,
    sdp: str,
    sdp_type: str,
    video_transform: str = "mask",
) -> dict[str, Any]:
    """Build the JSON body posted to /offer.

    The server applies ``video_transform`` to the frames it echoes back.
    """
    return {
        "sdp": sdp,
        "type": sdp_type,
        "video_transform": video_transform,
    }


def parse_answer(data: dict[str, Any]) -> RTCSessionDescription:
    """Parse the /offer response into a remote session description."""
    sdp = data.get("sdp")
    sdp_type = data.get("type")
    if not isinstance(sdp, str) or not isinstance(sdp_type, str):
        raise RppgMalformedResponse("Answer is missing 'sdp' or 'type'")
    try:
        return RTCSessionDescription(sdp=sdp, type=sdp_type)
    except ValueError as err:
        raise RppgMalformedResponse(f"Invalid answer type: {sdp_type}") from err


def build_ping(elapsed_ms: int) -> str:
    """Build a heartbeat frame."""
    return f"{PING_PREFIX} {elapsed_ms}"


def classify_message(message: Any) -> MessageKind:
    """Classify an inbound frame by its marker substring.

    Binary frames are never classified. A frame carrying both markers is a
    result.
    """
    if not isinstance(message, str):
        return MessageKind.UNKNOWN
    if RESULT_MARKER in message:
        return MessageKind.RESULT
    if METRICS_MARKER in message:
        return MessageKind.METRICS
    return MessageKind.UNKNOWN
