"""Embeddable rPPG biometric session client."""

__version__ = "0.1.0"

from .config import (
    IceServerSpec,
    SessionConfig,
    env_token_provider,
    load_session_config,
    static_token_provider,
)
from .dispatcher import BiometricResult, ResultDispatcher
from .errors import (
    AuthFailure,
    ChannelDecodeError,
    ConfigError,
    MalformedAnswer,
    MediaAcquisitionError,
    NegotiationAborted,
    NegotiationError,
    NoLocalDescription,
    RppgSessionError,
    SignalingHttpError,
    TransportFailure,
)
from .heartbeat import HeartbeatChannel, HeartbeatClock
from .media import DeviceMediaSource, LocalMedia, MediaSource
from .negotiator import Negotiator
from .session import RppgSession, SessionState, StateChange

__all__ = [
    "AuthFailure",
    "BiometricResult",
    "ChannelDecodeError",
    "ConfigError",
    "DeviceMediaSource",
    "HeartbeatChannel",
    "HeartbeatClock",
    "IceServerSpec",
    "LocalMedia",
    "MalformedAnswer",
    "MediaAcquisitionError",
    "MediaSource",
    "NegotiationAborted",
    "NegotiationError",
    "Negotiator",
    "NoLocalDescription",
    "ResultDispatcher",
    "RppgSession",
    "RppgSessionError",
    "SessionConfig",
    "SessionState",
    "SignalingHttpError",
    "StateChange",
    "TransportFailure",
    "__version__",
    "env_token_provider",
    "load_session_config",
    "static_token_provider",
]
