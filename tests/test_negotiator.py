"""Tests for the offer/answer Negotiator."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from rppg_session import (
    AuthFailure,
    MalformedAnswer,
    NegotiationAborted,
    NegotiationError,
    Negotiator,
    NoLocalDescription,
    SignalingHttpError,
    static_token_provider,
)
from rppg_transport import PeerHandle
from rppg_transport.errors import (
    RppgConnectionError,
    RppgMalformedResponse,
    RppgResponseError,
    RppgTimeout,
)

from .fakes import ANSWER_SDP, LOCAL_SDP, FakePeerConnection


@pytest.fixture
def signaling() -> MagicMock:
    """Signaling client returning a valid answer."""
    client = MagicMock()
    client.endpoint = "http://rppg.test"
    client.post_offer = AsyncMock(return_value={"sdp": ANSWER_SDP, "type": "answer"})
    return client


def make_negotiator(signaling: MagicMock, provider=None) -> Negotiator:
    return Negotiator(
        signaling,
        provider or static_token_provider("test-token"),
        session_id="test",
    )


class TestNegotiateSuccess:
    @pytest.mark.asyncio
    async def test_full_exchange(self, signaling, fake_pc):
        """Test offer is posted and the answer is applied."""
        handle = PeerHandle(pc=fake_pc)

        await make_negotiator(signaling).negotiate(handle)

        signaling.post_offer.assert_awaited_once_with(
            {"sdp": LOCAL_SDP, "type": "offer", "video_transform": "mask"},
            "test-token",
        )
        assert fake_pc.localDescription.type == "offer"
        assert fake_pc.remoteDescription.sdp == ANSWER_SDP
        assert fake_pc.remoteDescription.type == "answer"

    @pytest.mark.asyncio
    async def test_gathering_already_complete(self, signaling):
        """Test gathering complete before the wait does not deadlock."""
        pc = FakePeerConnection(gathering_state="complete", auto_gather=False)
        handle = PeerHandle(pc=pc)

        await asyncio.wait_for(
            make_negotiator(signaling).negotiate(handle), timeout=1.0
        )

        assert pc.remoteDescription is not None

    @pytest.mark.asyncio
    async def test_waits_for_gathering(self, signaling):
        """Test the offer is only posted once gathering completes."""
        pc = FakePeerConnection(gathering_state="gathering", auto_gather=False)
        handle = PeerHandle(pc=pc)

        task = asyncio.ensure_future(make_negotiator(signaling).negotiate(handle))
        await asyncio.sleep(0.01)
        signaling.post_offer.assert_not_awaited()

        pc.set_state(gathering="complete")
        await asyncio.wait_for(task, timeout=1.0)

        signaling.post_offer.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_async_token_provider(self, signaling, fake_pc):
        async def provide() -> str:
            return "async-token"

        await make_negotiator(signaling, provide).negotiate(PeerHandle(pc=fake_pc))

        assert signaling.post_offer.call_args.args[1] == "async-token"

    @pytest.mark.asyncio
    async def test_custom_video_transform(self, signaling, fake_pc):
        negotiator = Negotiator(
            signaling, static_token_provider("t"), video_transform="none"
        )

        await negotiator.negotiate(PeerHandle(pc=fake_pc))

        assert signaling.post_offer.call_args.args[0]["video_transform"] == "none"


class TestNegotiateFailures:
    @pytest.mark.asyncio
    async def test_offer_creation_failure(self, signaling, fake_pc):
        fake_pc.createOffer = AsyncMock(side_effect=RuntimeError("no codecs"))

        with pytest.raises(NegotiationError, match="Failed to create local offer"):
            await make_negotiator(signaling).negotiate(PeerHandle(pc=fake_pc))
        signaling.post_offer.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_local_description(self, signaling):
        pc = FakePeerConnection(keep_local_description=False)

        with pytest.raises(NoLocalDescription):
            await make_negotiator(signaling).negotiate(PeerHandle(pc=pc))
        signaling.post_offer.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_token_provider_raises(self, signaling, fake_pc):
        def provide() -> str:
            raise KeyError("AUTH_TOKEN")

        with pytest.raises(AuthFailure, match="Token provider failed"):
            await make_negotiator(signaling, provide).negotiate(PeerHandle(pc=fake_pc))
        signaling.post_offer.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_token(self, signaling, fake_pc):
        with pytest.raises(AuthFailure, match="empty token"):
            await make_negotiator(signaling, static_token_provider("")).negotiate(
                PeerHandle(pc=fake_pc)
            )

    @pytest.mark.asyncio
    async def test_http_500(self, signaling, fake_pc):
        """Test a 500 answer maps to SignalingHttpError."""
        signaling.post_offer.side_effect = RppgResponseError(500, "HTTP 500")

        with pytest.raises(SignalingHttpError) as exc_info:
            await make_negotiator(signaling).negotiate(PeerHandle(pc=fake_pc))

        assert exc_info.value.status == 500
        assert fake_pc.remoteDescription is None

    @pytest.mark.parametrize(
        "error", [RppgTimeout("timed out"), RppgConnectionError("refused")]
    )
    @pytest.mark.asyncio
    async def test_network_failure(self, signaling, fake_pc, error):
        signaling.post_offer.side_effect = error

        with pytest.raises(SignalingHttpError) as exc_info:
            await make_negotiator(signaling).negotiate(PeerHandle(pc=fake_pc))

        assert exc_info.value.status is None

    @pytest.mark.asyncio
    async def test_malformed_json(self, signaling, fake_pc):
        signaling.post_offer.side_effect = RppgMalformedResponse("not JSON")

        with pytest.raises(MalformedAnswer):
            await make_negotiator(signaling).negotiate(PeerHandle(pc=fake_pc))

    @pytest.mark.asyncio
    async def test_answer_missing_sdp(self, signaling, fake_pc):
        signaling.post_offer.return_value = {"type": "answer"}

        with pytest.raises(MalformedAnswer):
            await make_negotiator(signaling).negotiate(PeerHandle(pc=fake_pc))

    @pytest.mark.asyncio
    async def test_answer_rejected_by_transport(self, signaling, fake_pc):
        fake_pc.setRemoteDescription = AsyncMock(side_effect=ValueError("bad sdp"))

        with pytest.raises(MalformedAnswer, match="Answer rejected"):
            await make_negotiator(signaling).negotiate(PeerHandle(pc=fake_pc))

    @pytest.mark.asyncio
    async def test_not_alive_skips_answer(self, signaling, fake_pc):
        """Test a stopped session never applies a late answer."""
        with pytest.raises(NegotiationAborted):
            await make_negotiator(signaling).negotiate(
                PeerHandle(pc=fake_pc), is_alive=lambda: False
            )

        signaling.post_offer.assert_awaited_once()
        assert fake_pc.remoteDescription is None

    @pytest.mark.asyncio
    async def test_handle_closed_during_gathering(self, signaling):
        pc = FakePeerConnection(gathering_state="gathering", auto_gather=False)
        handle = PeerHandle(pc=pc)

        task = asyncio.ensure_future(make_negotiator(signaling).negotiate(handle))
        await asyncio.sleep(0.01)
        await handle.close()

        with pytest.raises(NegotiationAborted):
            await asyncio.wait_for(task, timeout=1.0)
        signaling.post_offer.assert_not_awaited()
