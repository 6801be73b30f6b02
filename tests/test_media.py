"""Tests for local media acquisition."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from rppg_session import DeviceMediaSource, MediaAcquisitionError


def make_player(*, video=True, audio=False) -> MagicMock:
    player = MagicMock()
    player.video = MagicMock(kind="video") if video else None
    player.audio = MagicMock(kind="audio") if audio else None
    return player


class TestDeviceMediaSource:
    @pytest.mark.asyncio
    async def test_video_only(self):
        player = make_player()
        with patch("rppg_session.media.MediaPlayer", return_value=player) as mock_player:
            source = DeviceMediaSource(video_device="/dev/video2", video_format="v4l2")
            media = await source.acquire(audio=False)

        mock_player.assert_called_once_with(
            "/dev/video2",
            format="v4l2",
            options={"framerate": "30", "video_size": "640x480"},
        )
        assert media.video is player.video
        assert media.audio is None
        assert media.tracks == [player.video]

    @pytest.mark.asyncio
    async def test_video_and_audio(self):
        video_player = make_player()
        audio_player = make_player(video=False, audio=True)
        with patch(
            "rppg_session.media.MediaPlayer", side_effect=[video_player, audio_player]
        ):
            media = await DeviceMediaSource().acquire(audio=True)

        assert media.tracks == [video_player.video, audio_player.audio]

    @pytest.mark.asyncio
    async def test_device_open_failure(self):
        """Test a device error becomes MediaAcquisitionError."""
        with patch(
            "rppg_session.media.MediaPlayer", side_effect=OSError("Permission denied")
        ):
            with pytest.raises(MediaAcquisitionError, match="Permission denied"):
                await DeviceMediaSource().acquire(audio=False)

    @pytest.mark.asyncio
    async def test_no_video_stream(self):
        with patch("rppg_session.media.MediaPlayer", return_value=make_player(video=False)):
            with pytest.raises(MediaAcquisitionError, match="No video stream"):
                await DeviceMediaSource().acquire(audio=False)

    @pytest.mark.asyncio
    async def test_audio_failure_releases_video(self):
        video_player = make_player()
        with patch(
            "rppg_session.media.MediaPlayer",
            side_effect=[video_player, OSError("No microphone")],
        ):
            with pytest.raises(MediaAcquisitionError, match="No microphone"):
                await DeviceMediaSource().acquire(audio=True)

        video_player.video.stop.assert_called_once()
