"""Peer connection handle wrapping aiortc's RTCPeerConnection."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Protocol

from aiortc import (
    MediaStreamTrack,
    RTCConfiguration,
    RTCDataChannel,
    RTCIceServer,
    RTCPeerConnection,
    RTCRtpSender,
    RTCRtpTransceiver,
    RTCSessionDescription,
)

from .errors import RppgTransportClosed

_LOGGER = logging.getLogger(__name__)

# Events re-published to subscribers as ConnectionSnapshot notifications
_STATE_EVENTS: tuple[str, ...] = (
    "icegatheringstatechange",
    "iceconnectionstatechange",
    "signalingstatechange",
    "connectionstatechange",
)


class IceServerLike(Protocol):
    """Anything shaped like an ICE server entry."""

    urls: str | Sequence[str]
    username: str | None
    credential: str | None


@dataclass(frozen=True)
class ConnectionSnapshot:
    """Transport state at the moment a state-change event fired."""

    connection_state: str
    ice_connection_state: str
    ice_gathering_state: str
    signaling_state: str


SnapshotListener = Callable[[ConnectionSnapshot], None]


def build_rtc_configuration(ice_servers: Iterable[IceServerLike]) -> RTCConfiguration:
    """Translate ICE server entries into an aiortc configuration."""
    servers = [
        RTCIceServer(
            urls=server.urls if isinstance(server.urls, str) else list(server.urls),
            username=server.username,
            credential=server.credential,
        )
        for server in ice_servers
    ]
    return RTCConfiguration(iceServers=servers)


class PeerHandle:
    """Owned wrapper around a single RTCPeerConnection.

    Usage:
        handle = PeerHandle(ice_servers)
        unsubscribe = handle.subscribe(my_listener)
        handle.add_track(video_track)
        offer = await handle.create_offer()
        await handle.set_local_description(offer)
        await handle.wait_for_ice_gathering_complete()
        await handle.close()
    """

    def __init__(
        self,
        ice_servers: Iterable[IceServerLike] = (),
        *,
        pc: RTCPeerConnection | None = None,
    ) -> None:
        if pc is None:
            pc = RTCPeerConnection(configuration=build_rtc_configuration(ice_servers))
        self._pc = pc
        self._listeners: list[SnapshotListener] = []
        self._closed = False
        self._closed_event = asyncio.Event()

        for event in _STATE_EVENTS:
            self._pc.on(event, self._notify)

    # -------------------------------------------------------------------------
    # State-change stream
    # -------------------------------------------------------------------------

    def snapshot(self) -> ConnectionSnapshot:
        """Return the current transport state."""
        return ConnectionSnapshot(
            connection_state=self._pc.connectionState,
            ice_connection_state=self._pc.iceConnectionState,
            ice_gathering_state=self._pc.iceGatheringState,
            signaling_state=self._pc.signalingState,
        )

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Register a state-change listener; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as err:
                _LOGGER.exception("State listener error: %s", err)

    def on_track(self, listener: Callable[[MediaStreamTrack], None]) -> None:
        """Forward remote tracks to listener."""
        self._pc.on("track", listener)

    def on_datachannel(self, listener: Callable[[RTCDataChannel], None]) -> None:
        """Forward data channels opened by the remote peer to listener."""
        self._pc.on("datachannel", listener)

    async def wait_for_ice_gathering_complete(self) -> None:
        """Suspend until ICE candidate gathering has completed.

        The current state is checked before subscribing so a transition that
        already happened is never missed.

        Raises:
            RppgTransportClosed: If the handle closes while waiting
        """
        if self._pc.iceGatheringState == "complete":
            return
        if self._closed:
            raise RppgTransportClosed("Transport closed before ICE gathering")

        gathered = asyncio.Event()

        def check(snapshot: ConnectionSnapshot) -> None:
            if snapshot.ice_gathering_state == "complete":
                gathered.set()

        unsubscribe = self.subscribe(check)
        gathered_wait = asyncio.ensure_future(gathered.wait())
        closed_wait = asyncio.ensure_future(self._closed_event.wait())
        try:
            await asyncio.wait(
                {gathered_wait, closed_wait},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            unsubscribe()
            gathered_wait.cancel()
            closed_wait.cancel()

        if not gathered.is_set():
            raise RppgTransportClosed("Transport closed during ICE gathering")

    # -------------------------------------------------------------------------
    # Session descriptions
    # -------------------------------------------------------------------------

    async def create_offer(self) -> RTCSessionDescription:
        """Create a local offer."""
        return await self._pc.createOffer()

    async def set_local_description(self, description: RTCSessionDescription) -> None:
        """Apply the local description."""
        await self._pc.setLocalDescription(description)

    async def set_remote_description(self, description: RTCSessionDescription) -> None:
        """Apply the remote description."""
        if self._closed:
            raise RppgTransportClosed("Cannot apply answer to a closed transport")
        await self._pc.setRemoteDescription(description)

    @property
    def local_description(self) -> RTCSessionDescription | None:
        """Finalized local description, if any."""
        return self._pc.localDescription

    # -------------------------------------------------------------------------
    # Media and channels
    # -------------------------------------------------------------------------

    def add_track(self, track: MediaStreamTrack) -> RTCRtpSender:
        """Attach a local track."""
        return self._pc.addTrack(track)

    def create_data_channel(self, label: str, *, ordered: bool = True) -> RTCDataChannel:
        """Create a data channel on this connection."""
        return self._pc.createDataChannel(label, ordered=ordered)

    def transceivers(self) -> list[RTCRtpTransceiver]:
        """Transceivers currently attached."""
        return list(self._pc.getTransceivers())

    def senders(self) -> list[RTCRtpSender]:
        """Senders currently attached."""
        return list(self._pc.getSenders())

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def closed(self) -> bool:
        """True once close() has been called."""
        return self._closed

    async def close(self) -> None:
        """Close the peer connection. Safe to call repeatedly."""
        if self._closed:
            return
        self._closed = True
        self._closed_event.set()
        await self._pc.close()
        for event in _STATE_EVENTS:
            self._pc.remove_listener(event, self._notify)
        self._listeners.clear()
