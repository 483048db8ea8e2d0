"""Shared test fixtures and configuration."""

from typing import AsyncGenerator

import pytest
import pytest_asyncio

from tests.fakes import FakeTransport
from voice_bridge.ai.mock_realtime import MockRealtimeSession
from voice_bridge.config import AiConfig, AudioConfig, Config, ServerConfig, SystemConfig


@pytest.fixture
def ulaw_silence_chunk() -> bytes:
    """160 bytes of μ-law silence (20ms at 8kHz)."""
    return b"\xff" * 160


@pytest.fixture
def fast_audio() -> AudioConfig:
    """Audio settings with short timers for session tests."""
    return AudioConfig(
        silence_timeout_ms=60,
        flush_poll_ms=10,
        keepalive_interval_s=0.05
    )


@pytest.fixture
def app_config(fast_audio: AudioConfig) -> Config:
    """Application configuration using the mock AI vendor."""
    return Config(
        server=ServerConfig(host="127.0.0.1", port=0),
        audio=fast_audio,
        ai=AiConfig(vendor="mock"),
        system=SystemConfig()
    )


@pytest.fixture
def transport() -> FakeTransport:
    """Fresh in-memory transport."""
    return FakeTransport()


@pytest_asyncio.fixture
async def mock_ai() -> AsyncGenerator[MockRealtimeSession, None]:
    """Mock AI session that is already READY."""
    session = MockRealtimeSession()
    await session.connect()
    yield session
    await session.close()
