"""HTTP signaling client for the rPPG inference server."""

from __future__ import annotations

import json
from typing import Any

import aiohttp

from .errors import (
    RppgConnectionError,
    RppgMalformedResponse,
    RppgResponseError,
    RppgTimeout,
)


class RppgSignalingClient:
    """HTTP client wrapper for the rPPG signaling endpoint."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        endpoint: str,
        *,
        timeout: float = 20.0,
    ) -> None:
        self._session = session
        if "://" not in endpoint:
            endpoint = f"http://{endpoint}"
        self._endpoint = endpoint.rstrip("/")
        self._timeout = timeout

    @property
    def endpoint(self) -> str:
        """Normalized base URL of the signaling server."""
        return self._endpoint

    def _url(self, path: str) -> str:
        return f"{self._endpoint}{path}"

    @staticmethod
    def _auth_headers(token: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    async def post_offer(self, body: dict[str, Any], token: str) -> dict[str, Any]:
        """Send a session offer to /offer and return the decoded answer.

        Raises:
            RppgResponseError: If the server returns a non-2xx status
            RppgMalformedResponse: If the body is not a JSON object
            RppgTimeout: If the request times out
            RppgConnectionError: If the network request fails
        """
        url = self._url("/offer")
        try:
            async with self._session.post(
                url,
                data=json.dumps(body),
                headers=self._auth_headers(token),
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            ) as resp:
                if not 200 <= resp.status < 300:
                    raise RppgResponseError(
                        resp.status,
                        f"Offer rejected with HTTP {resp.status}",
                    )
                raw = await resp.read()
        except TimeoutError as err:
            raise RppgTimeout("Offer request timed out") from err
        except aiohttp.ClientError as err:
            raise RppgConnectionError("Offer request failed") from err

        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as err:
            raise RppgMalformedResponse("Answer is not valid JSON") from err
        if not isinstance(data, dict):
            raise RppgMalformedResponse("Answer is not a JSON object")
        return data
