"""Session lifecycle manager for rPPG biometric sessions.

This module provides the embeddable API for streaming local video to a remote
rPPG inference server and receiving biometric results. It handles:
- Local media acquisition
- Offer/answer negotiation
- Control channel heartbeat
- Result decoding and delivery
- Ordered, idempotent teardown

All work runs on one asyncio event loop; callbacks are invoked from it.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from uuid import uuid4

import aiohttp
from aiortc import MediaStreamTrack

from rppg_transport.http import RppgSignalingClient
from rppg_transport.peer import ConnectionSnapshot, PeerHandle

from .config import IceServerSpec, SessionConfig
from .dispatcher import BiometricResult, ResultDispatcher
from .errors import (
    ChannelDecodeError,
    MediaAcquisitionError,
    NegotiationError,
    RppgSessionError,
    TransportFailure,
)
from .heartbeat import HEARTBEAT_INTERVAL, HeartbeatChannel
from .media import DeviceMediaSource, MediaSource
from .negotiator import Negotiator

_LOGGER = logging.getLogger(__name__)

TEARDOWN_GRACE_DELAY = 0.5

# Transport connection states that end an established session
_LOST_CONNECTION_STATES = frozenset(("failed", "closed"))


class SessionState(Enum):
    """Authoritative session state."""

    IDLE = "idle"
    NEGOTIATING = "negotiating"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    CLOSED = "closed"


class ResourceState(Enum):
    """Lifecycle of the owned resource set."""

    PENDING = "pending"
    ACTIVE = "active"
    RELEASED = "released"


@dataclass(frozen=True)
class StateChange:
    """Session state transition delivered to observers."""

    previous: SessionState
    current: SessionState
    failure: TransportFailure | None = None


@dataclass(slots=True)
class _SessionResources:
    """Everything the session owns and must release."""

    handle: PeerHandle | None = None
    heartbeat: HeartbeatChannel | None = None
    tracks: list[MediaStreamTrack] = field(default_factory=list)
    lifecycle: ResourceState = ResourceState.PENDING


HandleFactory = Callable[[Iterable[IceServerSpec]], PeerHandle]


class RppgSession:
    """One peer-to-peer session with an rPPG inference server.

    Usage:
        session = RppgSession()
        session.configure(config)
        session.on_result(my_result_handler)
        session.on_state_change(my_state_handler)
        error = await session.start()
        ...
        await session.stop()

    A session instance is single-use: once CLOSED it cannot be restarted.
    """

    def __init__(
        self,
        config: SessionConfig | None = None,
        *,
        media_source: MediaSource | None = None,
        http_session: aiohttp.ClientSession | None = None,
        handle_factory: HandleFactory = PeerHandle,
        heartbeat_interval: float = HEARTBEAT_INTERVAL,
        teardown_grace: float = TEARDOWN_GRACE_DELAY,
        session_id: str | None = None,
    ) -> None:
        """Initialize session.

        Args:
            config: Session configuration (may also be set via configure())
            media_source: Local media capability (default: capture devices)
            http_session: Shared aiohttp session; one is created if omitted
            handle_factory: Builds the transport handle from ICE servers
            heartbeat_interval: Ping period (seconds)
            teardown_grace: Delay before closing the transport (seconds)
            session_id: Identifier used in log lines
        """
        self._config = config
        self._media_source = media_source or DeviceMediaSource()
        self._http_session = http_session
        self._owns_http_session = False
        self._handle_factory = handle_factory
        self._heartbeat_interval = heartbeat_interval
        self._teardown_grace = teardown_grace
        self.session_id = session_id or uuid4().hex[:8]

        self._state = SessionState.IDLE
        self._resources = _SessionResources()
        self._stop_requested = False
        self._teardown_task: asyncio.Task[None] | None = None

        self._dispatcher = ResultDispatcher(session_id=self.session_id)

        # Callbacks
        self._state_callback: Callable[[StateChange], None] | None = None
        self._connection_callback: Callable[[ConnectionSnapshot], None] | None = None
        self._error_callback: Callable[[RppgSessionError], None] | None = None
        self._metrics_callback: Callable[[str], None] | None = None
        self._remote_track_callback: Callable[[MediaStreamTrack], None] | None = None

    # -------------------------------------------------------------------------
    # Public API: Configuration and callbacks
    # -------------------------------------------------------------------------

    def configure(self, config: SessionConfig) -> None:
        """Set the session configuration. Only allowed before start()."""
        if self._state is not SessionState.IDLE:
            raise RppgSessionError("Cannot configure a session after start")
        self._config = config

    @property
    def config(self) -> SessionConfig | None:
        """Current configuration."""
        return self._config

    @property
    def state(self) -> SessionState:
        """Current session state."""
        return self._state

    def on_result(self, callback: Callable[[BiometricResult], None]) -> None:
        """Register callback for decoded biometric results."""
        self._dispatcher.set_result_callback(callback)

    def on_state_change(self, callback: Callable[[StateChange], None]) -> None:
        """Register callback for session state transitions.

        Transport loss on a live session arrives here as a StateChange whose
        failure field is set.
        """
        self._state_callback = callback

    def on_connection_change(
        self, callback: Callable[[ConnectionSnapshot], None]
    ) -> None:
        """Register callback for every transport state change (informational)."""
        self._connection_callback = callback

    def on_error(self, callback: Callable[[RppgSessionError], None]) -> None:
        """Register callback for terminal session errors."""
        self._error_callback = callback

    def on_metrics(self, callback: Callable[[str], None]) -> None:
        """Register callback for server metrics frames (e.g., fps)."""
        self._metrics_callback = callback

    def on_decode_error(self, callback: Callable[[ChannelDecodeError], None]) -> None:
        """Register callback for undecodable result frames."""
        self._dispatcher.set_decode_error_callback(callback)

    def on_remote_track(self, callback: Callable[[MediaStreamTrack], None]) -> None:
        """Register callback for the processed video track sent by the server."""
        self._remote_track_callback = callback

    # -------------------------------------------------------------------------
    # Public API: Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> RppgSessionError | None:
        """Acquire media, build the transport and negotiate.

        Returns:
            None on success or when stopped mid-way, otherwise the terminal
            error (also reported through on_error)

        Raises:
            RppgSessionError: If the session is unconfigured or already started
        """
        if self._config is None:
            raise RppgSessionError("Session is not configured")
        if self._state is not SessionState.IDLE:
            raise RppgSessionError(f"Session already {self._state.value}")

        config = self._config
        self._set_state(SessionState.NEGOTIATING)
        _LOGGER.info(
            "[%s] Starting session (audio=%s)", self.session_id, config.audio
        )

        try:
            media = await self._media_source.acquire(audio=config.audio)
        except MediaAcquisitionError as err:
            if self._stop_requested:
                _LOGGER.debug(
                    "[%s] Media acquisition ended after stop: %s", self.session_id, err
                )
                return None
            return await self._fail(err)

        if self._stop_requested:
            _LOGGER.debug("[%s] Stopped during media acquisition", self.session_id)
            for track in media.tracks:
                track.stop()
            return None

        handle = self._handle_factory(config.ice_servers)
        heartbeat = HeartbeatChannel(
            on_result_message=self._handle_result_message,
            on_metrics=self._handle_metrics,
            on_remote_close=self._handle_channel_lost,
            interval=self._heartbeat_interval,
            session_id=self.session_id,
        )
        resources = self._resources
        resources.handle = handle
        resources.heartbeat = heartbeat
        resources.tracks = list(media.tracks)
        resources.lifecycle = ResourceState.ACTIVE

        handle.subscribe(self._handle_transport_change)
        handle.on_track(self._handle_remote_track)
        handle.on_datachannel(heartbeat.watch)
        heartbeat.open(handle)
        for track in media.tracks:
            handle.add_track(track)

        negotiator = Negotiator(
            RppgSignalingClient(
                self._get_http_session(),
                config.signaling_endpoint,
                timeout=config.request_timeout,
            ),
            config.auth_token_provider,
            video_transform=config.video_transform,
            session_id=self.session_id,
        )

        try:
            await negotiator.negotiate(handle, is_alive=lambda: self._is_live(handle))
        except NegotiationError as err:
            if self._stop_requested:
                _LOGGER.debug(
                    "[%s] Negotiation ended after stop: %s", self.session_id, err
                )
                return None
            return await self._fail(err)

        if not self._is_live(handle):
            return None

        self._set_state(SessionState.CONNECTED)
        _LOGGER.info("[%s] Session connected", self.session_id)
        return None

    async def stop(self) -> None:
        """Tear the session down. Idempotent and safe at any point."""
        if self._state is SessionState.IDLE:
            self._stop_requested = True
            self._set_state(SessionState.CLOSED)
            return
        if self._state is SessionState.CLOSED and self._teardown_task is None:
            return

        _LOGGER.info("[%s] Stopping session", self.session_id)
        await self._shutdown()

    # -------------------------------------------------------------------------
    # Internal: State machine
    # -------------------------------------------------------------------------

    def _set_state(
        self, state: SessionState, failure: TransportFailure | None = None
    ) -> None:
        """Update session state and notify callback."""
        if self._state is state:
            return
        previous = self._state
        _LOGGER.debug(
            "[%s] State: %s → %s", self.session_id, previous.value, state.value
        )
        self._state = state
        if self._state_callback:
            try:
                self._state_callback(StateChange(previous, state, failure))
            except Exception as err:
                _LOGGER.exception(
                    "[%s] State callback error: %s", self.session_id, err
                )

    def _is_live(self, handle: PeerHandle) -> bool:
        return (
            not self._stop_requested
            and self._resources.handle is handle
            and not handle.closed
        )

    async def _fail(self, error: RppgSessionError) -> RppgSessionError:
        """Report a terminal error and close without passing DISCONNECTED."""
        _LOGGER.error("[%s] Session failed: %s", self.session_id, error)
        if self._error_callback:
            try:
                self._error_callback(error)
            except Exception as err:
                _LOGGER.exception(
                    "[%s] Error callback error: %s", self.session_id, err
                )
        await self._shutdown(disconnect=False)
        return error

    def _begin_shutdown(
        self,
        *,
        failure: TransportFailure | None = None,
        disconnect: bool = True,
    ) -> asyncio.Task[None]:
        """Start teardown once; later calls return the same task."""
        if self._teardown_task is None:
            self._stop_requested = True
            if disconnect and self._state in (
                SessionState.NEGOTIATING,
                SessionState.CONNECTED,
            ):
                self._set_state(SessionState.DISCONNECTED, failure)
            self._teardown_task = asyncio.ensure_future(self._teardown())
        return self._teardown_task

    async def _shutdown(self, *, disconnect: bool = True) -> None:
        await asyncio.shield(self._begin_shutdown(disconnect=disconnect))

    # -------------------------------------------------------------------------
    # Internal: Teardown
    # -------------------------------------------------------------------------

    async def _teardown(self) -> None:
        """Release owned resources in order, each step best-effort."""
        resources = self._resources
        handle = resources.handle
        heartbeat = resources.heartbeat

        if heartbeat is not None:
            await self._release("cancel heartbeat", heartbeat.cancel)

        if handle is not None:
            for transceiver in handle.transceivers():
                await self._release("stop transceiver", transceiver.stop)

            for sender in handle.senders():
                if sender.track is not None:
                    await self._release("stop sender track", sender.track.stop)

        # Tracks acquired but never attached to a sender
        for track in resources.tracks:
            await self._release("stop local track", track.stop)
        resources.tracks = []

        if heartbeat is not None:
            await self._release("close control channel", heartbeat.close)

        if handle is not None:
            # Let close frames for channels and tracks flush first
            await asyncio.sleep(self._teardown_grace)
            await self._release("close transport", handle.close)
            resources.handle = None

        resources.heartbeat = None
        resources.lifecycle = ResourceState.RELEASED

        if self._owns_http_session and self._http_session is not None:
            await self._release("close HTTP session", self._http_session.close)
            self._http_session = None

        self._set_state(SessionState.CLOSED)
        _LOGGER.info("[%s] Session closed", self.session_id)

    async def _release(self, what: str, action: Callable[[], Any]) -> None:
        try:
            result = action()
            if inspect.isawaitable(result):
                await result
        except Exception as err:
            _LOGGER.warning("[%s] Failed to %s: %s", self.session_id, what, err)

    def _get_http_session(self) -> aiohttp.ClientSession:
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()
            self._owns_http_session = True
        return self._http_session

    # -------------------------------------------------------------------------
    # Internal: Transport and channel events
    # -------------------------------------------------------------------------

    def _handle_transport_change(self, snapshot: ConnectionSnapshot) -> None:
        """Forward transport state and detect loss of an established session."""
        _LOGGER.debug(
            "[%s] Transport: connection=%s ice=%s gathering=%s signaling=%s",
            self.session_id,
            snapshot.connection_state,
            snapshot.ice_connection_state,
            snapshot.ice_gathering_state,
            snapshot.signaling_state,
        )
        if self._connection_callback:
            try:
                self._connection_callback(snapshot)
            except Exception as err:
                _LOGGER.exception(
                    "[%s] Connection callback error: %s", self.session_id, err
                )

        if (
            self._state is SessionState.CONNECTED
            and not self._stop_requested
            and snapshot.connection_state in _LOST_CONNECTION_STATES
        ):
            self._handle_transport_lost(
                TransportFailure(
                    reason=f"connection {snapshot.connection_state}",
                    connection_state=snapshot.connection_state,
                    ice_connection_state=snapshot.ice_connection_state,
                    was_connected=True,
                )
            )

    def _handle_channel_lost(self) -> None:
        if self._state is not SessionState.CONNECTED or self._stop_requested:
            return
        handle = self._resources.handle
        snapshot = handle.snapshot() if handle is not None else None
        self._handle_transport_lost(
            TransportFailure(
                reason="control channel closed by remote",
                connection_state=snapshot.connection_state if snapshot else "closed",
                ice_connection_state=(
                    snapshot.ice_connection_state if snapshot else "closed"
                ),
                was_connected=True,
            )
        )

    def _handle_transport_lost(self, failure: TransportFailure) -> None:
        _LOGGER.warning("[%s] Transport lost: %s", self.session_id, failure.reason)
        self._begin_shutdown(failure=failure)

    def _handle_result_message(self, message: str) -> None:
        if self._stop_requested:
            return
        self._dispatcher.dispatch(message)

    def _handle_metrics(self, message: str) -> None:
        if self._stop_requested:
            return
        _LOGGER.debug("[%s] Metrics: %s", self.session_id, message)
        if self._metrics_callback:
            self._metrics_callback(message)

    def _handle_remote_track(self, track: MediaStreamTrack) -> None:
        _LOGGER.info("[%s] Remote %s track received", self.session_id, track.kind)
        if track.kind != "video" or self._remote_track_callback is None:
            return
        try:
            self._remote_track_callback(track)
        except Exception as err:
            _LOGGER.exception(
                "[%s] Remote track callback error: %s", self.session_id, err
            )
