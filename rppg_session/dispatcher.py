"""Decoding and delivery of biometric results from the control channel."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from .errors import ChannelDecodeError

_LOGGER = logging.getLogger(__name__)

_NUMERIC_FIELDS = ("bpm", "shoulder_tilt", "neck_tilt")
_KNOWN_FIELDS = frozenset((*_NUMERIC_FIELDS, "emotion"))


@dataclass(frozen=True)
class BiometricResult:
    """One decoded inference result.

    Attributes:
        bpm: Estimated heart rate (beats per minute).
        emotion: Detected emotion label.
        shoulder_tilt: Shoulder tilt reported by the server.
        neck_tilt: Neck tilt reported by the server.
        extra: Any additional fields, kept verbatim.
    """

    bpm: float | None = None
    emotion: str | None = None
    shoulder_tilt: float | None = None
    neck_tilt: float | None = None
    extra: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def from_payload(cls, payload: Any) -> BiometricResult:
        """Build a result from a decoded JSON payload.

        Raises:
            ValueError: If the payload is not a result object or a known
                field has the wrong type
        """
        if not isinstance(payload, dict):
            raise ValueError("Result payload is not a JSON object")

        numbers: dict[str, float | None] = {}
        for name in _NUMERIC_FIELDS:
            value = payload.get(name)
            if value is not None and (
                isinstance(value, bool) or not isinstance(value, (int, float))
            ):
                raise ValueError(f"Field '{name}' is not a number: {value!r}")
            numbers[name] = float(value) if value is not None else None

        emotion = payload.get("emotion")
        if emotion is not None and not isinstance(emotion, str):
            raise ValueError(f"Field 'emotion' is not a string: {emotion!r}")

        extra = {k: v for k, v in payload.items() if k not in _KNOWN_FIELDS}
        return cls(
            bpm=numbers["bpm"],
            emotion=emotion,
            shoulder_tilt=numbers["shoulder_tilt"],
            neck_tilt=numbers["neck_tilt"],
            extra=MappingProxyType(extra),
        )


class ResultDispatcher:
    """Parse inbound result frames and forward them to the caller."""

    def __init__(
        self,
        on_result: Callable[[BiometricResult], None] | None = None,
        *,
        on_decode_error: Callable[[ChannelDecodeError], None] | None = None,
        session_id: str = "-",
    ) -> None:
        self._on_result = on_result
        self._on_decode_error = on_decode_error
        self._session_id = session_id

    def set_result_callback(
        self, callback: Callable[[BiometricResult], None] | None
    ) -> None:
        """Replace the result callback."""
        self._on_result = callback

    def set_decode_error_callback(
        self, callback: Callable[[ChannelDecodeError], None] | None
    ) -> None:
        """Replace the decode-error hook."""
        self._on_decode_error = callback

    def parse(self, raw: str) -> BiometricResult | None:
        """Decode a raw frame; returns None and reports if malformed."""
        try:
            return BiometricResult.from_payload(json.loads(raw))
        except (TypeError, ValueError, RecursionError) as err:
            self._report(ChannelDecodeError(raw, f"Undecodable result: {err}"))
            return None

    def dispatch(self, raw: str) -> BiometricResult | None:
        """Parse a frame and deliver it to the result callback."""
        result = self.parse(raw)
        if result is None:
            return None
        if self._on_result:
            try:
                self._on_result(result)
            except Exception as err:
                _LOGGER.exception(
                    "[%s] Result callback error: %s", self._session_id, err
                )
        return result

    def _report(self, error: ChannelDecodeError) -> None:
        _LOGGER.warning("[%s] %s: %.80r", self._session_id, error, error.raw)
        if self._on_decode_error:
            try:
                self._on_decode_error(error)
            except Exception as err:
                _LOGGER.exception(
                    "[%s] Decode error hook failed: %s", self._session_id, err
                )
