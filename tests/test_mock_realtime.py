"""Tests for the mock realtime AI session."""

import asyncio

import numpy as np
import pytest

from voice_bridge.ai.mock_realtime import MockRealtimeSession
from voice_bridge.ai.realtime_base import AiEventType, AiRealtimeSession, SessionState
from voice_bridge.core.errors import UpstreamUnavailable


class TestMockRealtimeSession:
    """Test mock session behaviour."""

    def test_satisfies_protocol(self) -> None:
        """Test the mock is usable wherever a session is expected."""
        assert isinstance(MockRealtimeSession(), AiRealtimeSession)

    @pytest.mark.asyncio
    async def test_records_utterances(self) -> None:
        """Test appended audio is grouped per commit."""
        session = MockRealtimeSession()
        await session.connect()

        await session.append_audio(b'\x01\x00')
        await session.append_audio(b'\x02\x00')
        await session.commit()
        await session.append_audio(b'\x03\x00')
        await session.commit()

        assert session.utterances == [b'\x01\x00\x02\x00', b'\x03\x00']
        assert session.get_stats()["utterances_sent"] == 2
        await session.close()

    @pytest.mark.asyncio
    async def test_echo_reply(self) -> None:
        """Test echo replies with attenuated audio then RESPONSE_DONE."""
        session = MockRealtimeSession(echo=True)
        await session.connect()
        events = session.events()

        utterance = np.full(480, 1000, dtype="<i2").tobytes()
        await session.append_audio(utterance)
        await session.commit()

        audio = await asyncio.wait_for(anext(events), 1.0)
        done = await asyncio.wait_for(anext(events), 1.0)

        assert audio.type is AiEventType.AUDIO_DELTA
        assert np.all(np.abs(np.frombuffer(audio.audio, dtype="<i2").astype(np.int32) - 700) <= 1)
        assert done.type is AiEventType.RESPONSE_DONE
        await session.close()

    @pytest.mark.asyncio
    async def test_connect_failure(self) -> None:
        """Test a failing connect closes the session."""
        session = MockRealtimeSession(fail_connect=True)

        with pytest.raises(UpstreamUnavailable):
            await session.connect()

        assert session.state is SessionState.CLOSED
        assert [event async for event in session.events()] == []

    @pytest.mark.asyncio
    async def test_drop_before_ready(self) -> None:
        """Test audio is dropped before connect."""
        session = MockRealtimeSession()

        assert not await session.append_audio(b'\x00\x00')
        assert not await session.commit()
        assert session.utterances == []
        assert session.get_stats()["utterances_dropped"] == 1
