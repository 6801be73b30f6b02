"""Control channel with a periodic ping heartbeat.

The channel carries outbound "ping <elapsed_ms>" frames every interval and
inbound result and metrics frames from the server. Ticks are scheduled against
the event loop clock, so the period does not depend on network round trips.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from aiortc import RTCDataChannel
from aiortc.exceptions import InvalidStateError

from rppg_transport.protocol import MessageKind, build_ping, classify_message

if TYPE_CHECKING:
    from rppg_transport.peer import PeerHandle

_LOGGER = logging.getLogger(__name__)

HEARTBEAT_INTERVAL = 0.5
CHANNEL_LABEL = "chat"


class HeartbeatClock:
    """Elapsed-time source for ping frames.

    The first reading starts the clock and returns 0; later readings return
    milliseconds since that first reading.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self.session_start: float | None = None

    def elapsed_ms(self) -> int:
        now = self._clock()
        if self.session_start is None:
            self.session_start = now
            return 0
        return max(0, int((now - self.session_start) * 1000))


class HeartbeatChannel:
    """Owns the control data channel and its heartbeat timer."""

    def __init__(
        self,
        *,
        on_result_message: Callable[[str], Any] | None = None,
        on_metrics: Callable[[str], Any] | None = None,
        on_remote_close: Callable[[], None] | None = None,
        interval: float = HEARTBEAT_INTERVAL,
        clock: HeartbeatClock | None = None,
        session_id: str = "-",
    ) -> None:
        self._on_result_message = on_result_message
        self._on_metrics = on_metrics
        self._on_remote_close = on_remote_close
        self._interval = interval
        self._clock = clock or HeartbeatClock()
        self._session_id = session_id

        self._channel: RTCDataChannel | None = None
        self._timer_task: asyncio.Task[None] | None = None
        self._closing = False

    @property
    def channel(self) -> RTCDataChannel | None:
        """The control channel, once opened."""
        return self._channel

    @property
    def running(self) -> bool:
        """True while the heartbeat timer is scheduled."""
        return self._timer_task is not None and not self._timer_task.done()

    # -------------------------------------------------------------------------
    # Channel setup
    # -------------------------------------------------------------------------

    def open(self, handle: PeerHandle) -> RTCDataChannel:
        """Create the ordered control channel on handle and attach to it."""
        channel = handle.create_data_channel(CHANNEL_LABEL, ordered=True)
        self.attach(channel)
        return channel

    def attach(self, channel: RTCDataChannel) -> None:
        """Take ownership of channel: heartbeat on open, route its messages."""
        self._channel = channel
        channel.on("open", self._handle_open)
        channel.on("close", self._handle_close)
        channel.on("message", self.route_message)
        if channel.readyState == "open":
            self._handle_open()

    def watch(self, channel: RTCDataChannel) -> None:
        """Route messages from a channel the remote peer opened."""
        _LOGGER.debug("[%s] Watching remote channel %s", self._session_id, channel.label)
        channel.on("message", self.route_message)

    # -------------------------------------------------------------------------
    # Inbound routing
    # -------------------------------------------------------------------------

    def route_message(self, message: Any) -> None:
        """Route an inbound frame by its marker."""
        kind = classify_message(message)
        if kind is MessageKind.RESULT:
            target = self._on_result_message
        elif kind is MessageKind.METRICS:
            target = self._on_metrics
        else:
            _LOGGER.debug("[%s] Dropped unrecognized frame", self._session_id)
            return

        if target is None:
            return
        try:
            target(message)
        except Exception as err:
            _LOGGER.exception(
                "[%s] %s handler error: %s", self._session_id, kind.value, err
            )

    # -------------------------------------------------------------------------
    # Timer
    # -------------------------------------------------------------------------

    def _handle_open(self) -> None:
        if self.running or self._closing:
            return
        _LOGGER.info("[%s] Control channel opened", self._session_id)
        self._timer_task = asyncio.ensure_future(self._tick_loop())

    def _handle_close(self) -> None:
        _LOGGER.info("[%s] Control channel closed", self._session_id)
        self.cancel()
        if not self._closing and self._on_remote_close:
            self._on_remote_close()

    async def _tick_loop(self) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time() + self._interval
        try:
            while True:
                await asyncio.sleep(max(0.0, next_tick - loop.time()))
                self._tick()
                next_tick += self._interval
        except asyncio.CancelledError:
            _LOGGER.debug("[%s] Heartbeat cancelled", self._session_id)
            raise

    def _tick(self) -> None:
        # The clock starts on the first tick even when the send is skipped
        message = build_ping(self._clock.elapsed_ms())
        channel = self._channel
        if channel is None or channel.readyState != "open":
            return
        try:
            channel.send(message)
        except InvalidStateError:
            _LOGGER.debug("[%s] Ping skipped: channel not open", self._session_id)

    def cancel(self) -> None:
        """Stop the heartbeat timer. Safe to call repeatedly."""
        if self._timer_task is not None:
            if not self._timer_task.done():
                self._timer_task.cancel()
            self._timer_task = None

    def close(self) -> None:
        """Cancel the timer and close the channel locally."""
        self._closing = True
        self.cancel()
        channel = self._channel
        if channel is not None and channel.readyState not in ("closing", "closed"):
            channel.close()
