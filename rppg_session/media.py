"""Local camera and microphone acquisition."""

from __future__ import annotations

import asyncio
import logging
import platform
from dataclasses import dataclass
from typing import Protocol

from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaPlayer
from av.error import FFmpegError

from .errors import MediaAcquisitionError

_LOGGER = logging.getLogger(__name__)

_CAPTURE_OPTIONS = {"framerate": "30", "video_size": "640x480"}


@dataclass(frozen=True)
class LocalMedia:
    """Tracks acquired for one session."""

    video: MediaStreamTrack
    audio: MediaStreamTrack | None = None

    @property
    def tracks(self) -> list[MediaStreamTrack]:
        """Acquired tracks, video first."""
        return [t for t in (self.video, self.audio) if t is not None]


class MediaSource(Protocol):
    """Capability producing local media tracks on request."""

    async def acquire(self, *, audio: bool) -> LocalMedia:
        """Acquire a video track and, if requested, an audio track.

        Raises:
            MediaAcquisitionError: If a requested device is unavailable
        """
        ...


def _platform_defaults() -> tuple[tuple[str, str], tuple[str, str]]:
    """Return ((video_file, video_format), (audio_file, audio_format))."""
    system = platform.system()
    if system == "Darwin":
        return ("default:none", "avfoundation"), ("none:default", "avfoundation")
    if system == "Windows":
        return ("video=Integrated Camera", "dshow"), ("audio=Microphone", "dshow")
    return ("/dev/video0", "v4l2"), ("default", "pulse")


class DeviceMediaSource:
    """Media source backed by local capture devices through FFmpeg."""

    def __init__(
        self,
        *,
        video_device: str | None = None,
        video_format: str | None = None,
        audio_device: str | None = None,
        audio_format: str | None = None,
        options: dict[str, str] | None = None,
    ) -> None:
        (default_video, default_vfmt), (default_audio, default_afmt) = _platform_defaults()
        self._video_device = video_device or default_video
        self._video_format = video_format or default_vfmt
        self._audio_device = audio_device or default_audio
        self._audio_format = audio_format or default_afmt
        self._options = options if options is not None else dict(_CAPTURE_OPTIONS)

    async def acquire(self, *, audio: bool) -> LocalMedia:
        """Open the capture devices."""
        video_player = await self._open(
            self._video_device, self._video_format, self._options
        )
        if video_player.video is None:
            raise MediaAcquisitionError(f"No video stream on {self._video_device}")

        audio_track = None
        if audio:
            try:
                audio_player = await self._open(self._audio_device, self._audio_format, None)
            except MediaAcquisitionError:
                video_player.video.stop()
                raise
            if audio_player.audio is None:
                video_player.video.stop()
                raise MediaAcquisitionError(f"No audio stream on {self._audio_device}")
            audio_track = audio_player.audio

        _LOGGER.info(
            "Acquired media: video=%s audio=%s",
            self._video_device,
            self._audio_device if audio_track else None,
        )
        return LocalMedia(video=video_player.video, audio=audio_track)

    @staticmethod
    async def _open(
        device: str, fmt: str, options: dict[str, str] | None
    ) -> MediaPlayer:
        # Opening a device blocks inside FFmpeg
        try:
            return await asyncio.to_thread(
                MediaPlayer, device, format=fmt, options=options
            )
        except (OSError, ValueError, FFmpegError) as err:
            raise MediaAcquisitionError(f"Could not open {device} ({fmt}): {err}") from err
