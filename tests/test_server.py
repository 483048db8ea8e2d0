"""Tests for the media stream server."""

import asyncio
import base64
import json
from dataclasses import replace

import pytest
from websockets.asyncio.client import connect
from websockets.asyncio.server import serve
from websockets.exceptions import ConnectionClosed

from tests.fakes import FakeTransport, wait_until
from voice_bridge.ai.mock_realtime import MockRealtimeSession
from voice_bridge.ai.openai_realtime import OpenAIRealtimeClient
from voice_bridge.ai.realtime_base import SessionConfig
from voice_bridge.config import AiConfig, Config
from voice_bridge.core.agent_config import AgentConfig
from voice_bridge.server import (
    CLOSE_POLICY_VIOLATION,
    CLOSE_TRY_AGAIN_LATER,
    MediaStreamServer,
    create_ai_session,
)


class SessionRecorder:
    """AI factory that records session configs and hands out mock sessions."""

    def __init__(self) -> None:
        self.configs: list[SessionConfig] = []

    def __call__(self, session_config: SessionConfig) -> MockRealtimeSession:
        self.configs.append(session_config)
        return MockRealtimeSession(session_config=session_config)


class TestCreateAiSession:
    """Test vendor selection."""

    def test_mock(self, app_config: Config) -> None:
        """Test the mock vendor echoes."""
        session = create_ai_session(app_config, SessionConfig())

        assert isinstance(session, MockRealtimeSession)

    def test_openai(self, app_config: Config) -> None:
        """Test the OpenAI vendor with a key."""
        cfg = replace(app_config, ai=AiConfig(vendor="openai", openai_api_key="sk-test"))

        session = create_ai_session(cfg, SessionConfig(greeting="Hi"))

        assert isinstance(session, OpenAIRealtimeClient)
        assert session.session_config.greeting == "Hi"

    def test_openai_without_key(self, app_config: Config) -> None:
        """Test a missing key is rejected."""
        cfg = replace(app_config, ai=AiConfig(vendor="openai", openai_api_key=""))

        with pytest.raises(ValueError):
            create_ai_session(cfg, SessionConfig())

    def test_unknown_vendor(self, app_config: Config) -> None:
        """Test unsupported vendors are rejected."""
        cfg = replace(app_config, ai=AiConfig(vendor="gemini"))

        with pytest.raises(ValueError):
            create_ai_session(cfg, SessionConfig())


class TestMediaStreamServer:
    """Test connection handling."""

    @pytest.mark.asyncio
    async def test_unknown_path(self, app_config: Config) -> None:
        """Test connections on other paths are refused."""
        server = MediaStreamServer(app_config, ai_factory=SessionRecorder())
        ws = FakeTransport(path="/other")

        await server.handle_connection(ws)

        assert ws.close_code == CLOSE_POLICY_VIOLATION
        assert server.active_sessions == 0

    @pytest.mark.asyncio
    async def test_call_context_from_query(self, app_config: Config) -> None:
        """Test callSid, from and initialPrompt reach the call."""
        recorder = SessionRecorder()
        server = MediaStreamServer(
            app_config,
            agent=AgentConfig(instructions="Be brief."),
            ai_factory=recorder
        )
        ws = FakeTransport(path="/ws/media?callSid=CA42&from=%2B15550100&initialPrompt=Hello%20there")
        task = asyncio.create_task(server.handle_connection(ws))

        await wait_until(lambda: server.active_sessions == 1)
        assert "CA42" in server.registry

        session_config = recorder.configs[0]
        assert session_config.instructions == "Be brief."
        assert session_config.caller_id == "+15550100"
        assert session_config.greeting == "Hello there"
        assert session_config.voice == "alloy"

        ws.disconnect()
        await asyncio.wait_for(task, 2.0)
        assert server.active_sessions == 0
        assert "CA42" not in server.registry

    @pytest.mark.asyncio
    async def test_capacity_limit(self, app_config: Config) -> None:
        """Test connections beyond the limit are refused."""
        cfg = replace(app_config, server=replace(app_config.server, max_concurrent_calls=1))
        server = MediaStreamServer(cfg, ai_factory=SessionRecorder())

        first = FakeTransport()
        task = asyncio.create_task(server.handle_connection(first))
        await wait_until(lambda: server.active_sessions == 1)

        second = FakeTransport()
        await server.handle_connection(second)
        assert second.close_code == CLOSE_TRY_AGAIN_LATER

        first.disconnect()
        await asyncio.wait_for(task, 2.0)
        assert server.active_sessions == 0

    @pytest.mark.asyncio
    async def test_repeated_call_sid(self, app_config: Config) -> None:
        """Test the first of two calls sharing a callSid ends without unregistering the second."""
        server = MediaStreamServer(app_config, ai_factory=SessionRecorder())

        first = FakeTransport(path="/ws/media?callSid=CA1&from=A")
        first_task = asyncio.create_task(server.handle_connection(first))
        await wait_until(lambda: server.active_sessions == 1)

        second = FakeTransport(path="/ws/media?callSid=CA1&from=B")
        second_task = asyncio.create_task(server.handle_connection(second))
        await wait_until(lambda: server.active_sessions == 2)

        first.disconnect()
        await asyncio.wait_for(first_task, 2.0)

        assert server.active_sessions == 1
        assert server.registry.get("CA1").caller == "B"

        second.disconnect()
        await asyncio.wait_for(second_task, 2.0)
        assert server.active_sessions == 0
        assert "CA1" not in server.registry

    @pytest.mark.asyncio
    async def test_ai_unavailable(self, app_config: Config) -> None:
        """Test a call is refused when no AI session can be built."""
        cfg = replace(app_config, ai=AiConfig(vendor="openai", openai_api_key=""))
        server = MediaStreamServer(cfg)
        ws = FakeTransport()

        await server.handle_connection(ws)

        assert ws.close_code == CLOSE_TRY_AGAIN_LATER


class TestMediaStreamServerEndToEnd:
    """Test the server over a real WebSocket."""

    @pytest.mark.asyncio
    async def test_echo_round_trip(self, app_config: Config) -> None:
        """Caller audio comes back as framed μ-law from the echoing mock AI."""
        server = MediaStreamServer(app_config)

        async with serve(server.handle_connection, "127.0.0.1", 0, ping_interval=None) as ws_server:
            port = ws_server.sockets[0].getsockname()[1]

            async with connect(f"ws://127.0.0.1:{port}/ws/media?callSid=CA7") as client:
                await client.send(json.dumps({"event": "connected", "protocol": "Call"}))
                await client.send(json.dumps({"event": "start", "start": {"streamSid": "SS7"}}))
                await client.send(json.dumps({
                    "event": "media",
                    "media": {"payload": base64.b64encode(b'\x80' * 160).decode()},
                }))

                reply = json.loads(await asyncio.wait_for(client.recv(), 2.0))

            assert reply["event"] == "media"
            assert reply["streamSid"] == "SS7"
            assert len(base64.b64decode(reply["media"]["payload"])) == 160

            await wait_until(lambda: server.active_sessions == 0)

    @pytest.mark.asyncio
    async def test_unknown_path_closes(self, app_config: Config) -> None:
        """Test the close code seen by a client on a wrong path."""
        server = MediaStreamServer(app_config)

        async with serve(server.handle_connection, "127.0.0.1", 0, ping_interval=None) as ws_server:
            port = ws_server.sockets[0].getsockname()[1]

            async with connect(f"ws://127.0.0.1:{port}/elsewhere") as client:
                with pytest.raises(ConnectionClosed) as exc_info:
                    await asyncio.wait_for(client.recv(), 2.0)

            assert exc_info.value.rcvd.code == CLOSE_POLICY_VIOLATION
