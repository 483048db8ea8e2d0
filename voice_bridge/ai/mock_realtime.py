"""Mock realtime AI session for development and testing."""

import asyncio
from typing import Optional

import numpy as np
import structlog

from voice_bridge.ai.realtime_base import (
    AiEvent,
    AiEventType,
    AiRealtimeBase,
    SessionConfig,
    SessionState,
)
from voice_bridge.core.errors import UpstreamUnavailable


class MockRealtimeSession(AiRealtimeBase):
    """Mock AI session without external dependencies.

    Records every committed utterance. With ``echo`` enabled it answers each
    commit by replaying the utterance at reduced amplitude as one audio delta.
    """

    def __init__(
        self,
        session_config: Optional[SessionConfig] = None,
        connect_delay_s: float = 0.0,
        fail_connect: bool = False,
        echo: bool = False,
        echo_delay_s: float = 0.0
    ) -> None:
        """Initialize mock session.

        Args:
            session_config: Per-call configuration
            connect_delay_s: Simulated time to reach READY
            fail_connect: Raise UpstreamUnavailable from connect()
            echo: Reply to each commit with the utterance audio
            echo_delay_s: Delay before the echo reply
        """
        super().__init__(session_config)
        self._connect_delay_s = connect_delay_s
        self._fail_connect = fail_connect
        self._echo = echo
        self._echo_delay_s = echo_delay_s

        self._pending: list[bytes] = []
        self._echo_tasks: set[asyncio.Task[None]] = set()

        self.utterances: list[bytes] = []
        self.appended: list[bytes] = []

        self._logger = structlog.get_logger(__name__)

    async def connect(self) -> None:
        """Connect to mock service."""
        if self._state is SessionState.READY:
            return

        if self._connect_delay_s:
            await asyncio.sleep(self._connect_delay_s)

        if self._fail_connect:
            self._state = SessionState.CLOSED
            self._end_events()
            raise UpstreamUnavailable("Mock AI configured to fail")

        self._state = SessionState.READY
        self._logger.info("Mock AI session ready", greeting=self._session_config.greeting)

    async def close(self) -> None:
        """Close mock session."""
        self._state = SessionState.CLOSED

        for task in list(self._echo_tasks):
            task.cancel()
        if self._echo_tasks:
            await asyncio.gather(*self._echo_tasks, return_exceptions=True)

        self._end_events()
        self._logger.info("Mock AI session closed", stats=self.get_stats())

    async def append_audio(self, pcm16: bytes) -> bool:
        """Buffer utterance audio."""
        if not self.is_ready:
            return self._drop("audio", len(pcm16))

        self._pending.append(pcm16)
        self.appended.append(pcm16)
        return True

    async def commit(self) -> bool:
        """Record the buffered audio as one utterance."""
        if not self.is_ready:
            self._pending.clear()
            return self._drop("commit", utterance=True)

        utterance = b"".join(self._pending)
        self._pending.clear()
        self.utterances.append(utterance)
        self._utterances_sent += 1

        if self._echo and utterance:
            task = asyncio.create_task(self._reply(utterance), name="mock-echo")
            self._echo_tasks.add(task)
            task.add_done_callback(self._echo_tasks.discard)
        return True

    async def emit_audio(self, pcm16: bytes) -> None:
        """Inject a synthesized audio delta (PCM16 @ 24kHz)."""
        if not self.is_ready:
            return
        self._audio_chunks_received += 1
        self._emit(AiEvent(type=AiEventType.AUDIO_DELTA, audio=pcm16))

    def simulate_disconnect(self, reason: str = "mock upstream lost") -> None:
        """Drop the upstream connection as a real service outage would."""
        self._mark_lost(reason)

    async def _reply(self, utterance: bytes) -> None:
        if self._echo_delay_s:
            await asyncio.sleep(self._echo_delay_s)

        samples = np.frombuffer(utterance[: len(utterance) - len(utterance) % 2], dtype="<i2")
        reply = (samples.astype(np.float32) * 0.7).astype("<i2").tobytes()

        await self.emit_audio(reply)
        self._emit(AiEvent(type=AiEventType.RESPONSE_DONE))
