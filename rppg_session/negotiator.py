"""Offer/answer negotiation against the rPPG signaling endpoint."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from rppg_transport.errors import (
    RppgConnectionError,
    RppgMalformedResponse,
    RppgResponseError,
    RppgTimeout,
    RppgTransportClosed,
)
from rppg_transport.protocol import build_offer_body, parse_answer

from .errors import (
    AuthFailure,
    MalformedAnswer,
    NegotiationAborted,
    NegotiationError,
    NoLocalDescription,
    SignalingHttpError,
)

if TYPE_CHECKING:
    from rppg_transport.http import RppgSignalingClient
    from rppg_transport.peer import PeerHandle

    from .config import TokenProvider

_LOGGER = logging.getLogger(__name__)


class Negotiator:
    """Runs one offer/answer exchange over HTTP.

    No retries happen here; a failed negotiation surfaces as a single
    NegotiationError and the caller decides what to do next.
    """

    def __init__(
        self,
        signaling: RppgSignalingClient,
        token_provider: TokenProvider,
        *,
        video_transform: str = "mask",
        session_id: str = "-",
    ) -> None:
        self._signaling = signaling
        self._token_provider = token_provider
        self._video_transform = video_transform
        self._session_id = session_id

    async def negotiate(
        self,
        handle: PeerHandle,
        *,
        is_alive: Callable[[], bool] = lambda: True,
    ) -> None:
        """Negotiate the session on handle.

        Args:
            handle: Transport handle with local tracks already attached
            is_alive: Checked before the answer is applied

        Raises:
            NegotiationError: On any failure; see subclasses
        """
        try:
            offer = await handle.create_offer()
            await handle.set_local_description(offer)
        except RppgTransportClosed as err:
            raise NegotiationAborted("Transport closed before offer") from err
        except Exception as err:
            raise NegotiationError(f"Failed to create local offer: {err}") from err

        _LOGGER.debug("[%s] Waiting for ICE gathering", self._session_id)
        try:
            await handle.wait_for_ice_gathering_complete()
        except RppgTransportClosed as err:
            raise NegotiationAborted("Transport closed during ICE gathering") from err

        description = handle.local_description
        if description is None:
            raise NoLocalDescription("No local description after ICE gathering")

        token = await self._resolve_token()

        body = build_offer_body(
            sdp=description.sdp,
            sdp_type=description.type,
            video_transform=self._video_transform,
        )
        _LOGGER.info(
            "[%s] Posting offer to %s/offer", self._session_id, self._signaling.endpoint
        )
        try:
            data = await self._signaling.post_offer(body, token)
            answer = parse_answer(data)
        except RppgResponseError as err:
            raise SignalingHttpError(err.status, str(err)) from err
        except RppgTimeout as err:
            raise SignalingHttpError(None, str(err)) from err
        except RppgConnectionError as err:
            raise SignalingHttpError(None, str(err)) from err
        except RppgMalformedResponse as err:
            raise MalformedAnswer(str(err)) from err

        if not is_alive():
            raise NegotiationAborted("Session stopped before answer was applied")

        try:
            await handle.set_remote_description(answer)
        except RppgTransportClosed as err:
            raise NegotiationAborted("Transport closed before answer was applied") from err
        except ValueError as err:
            raise MalformedAnswer(f"Answer rejected: {err}") from err
        except Exception as err:
            raise NegotiationError(f"Failed to apply answer: {err}") from err

        _LOGGER.info("[%s] Remote description applied", self._session_id)

    async def _resolve_token(self) -> str:
        try:
            token = self._token_provider()
            if inspect.isawaitable(token):
                token = await token
        except Exception as err:
            raise AuthFailure(f"Token provider failed: {err}") from err
        if not token:
            raise AuthFailure("Token provider returned an empty token")
        return token
