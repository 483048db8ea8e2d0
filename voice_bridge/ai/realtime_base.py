"""Base protocol and types for realtime speech AI sessions."""

import asyncio
import time
from abc import abstractmethod
from dataclasses import dataclass
from enum import Enum, auto
from typing import AsyncIterator, Dict, Optional, Protocol, runtime_checkable

import structlog


class SessionState(Enum):
    """Upstream session lifecycle."""

    CONNECTING = "connecting"
    READY = "ready"
    CLOSED = "closed"


class AiEventType(Enum):
    """AI event types relayed to the call session."""

    AUDIO_DELTA = auto()
    RESPONSE_DONE = auto()
    DISCONNECTED = auto()
    ERROR = auto()

    # Optional debug/logging events
    TRANSCRIPT_FINAL = auto()


@dataclass
class AiEvent:
    """AI event data."""

    type: AiEventType
    audio: bytes = b""  # PCM16 @ AI sample rate for AUDIO_DELTA
    data: Optional[Dict] = None
    timestamp: float = 0.0
    error: Optional[str] = None


@runtime_checkable
class AiRealtimeSession(Protocol):
    """Protocol for per-call speech AI session implementations."""

    @property
    @abstractmethod
    def state(self) -> SessionState:
        """Current session state."""
        ...

    @abstractmethod
    async def connect(self) -> None:
        """Open the upstream connection and wait until it is ready.

        Raises:
            UpstreamUnavailable: If the session cannot become ready
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the upstream connection."""
        ...

    @abstractmethod
    async def append_audio(self, pcm16: bytes) -> bool:
        """Append utterance audio to the upstream input buffer.

        Args:
            pcm16: PCM16 @ AI sample rate

        Returns:
            True if sent, False if dropped because the session is not ready

        Raises:
            UpstreamUnavailable: If the connection is lost while sending
        """
        ...

    @abstractmethod
    async def commit(self) -> bool:
        """Mark the appended audio as a complete utterance and request a reply.

        Returns:
            True if sent, False if dropped because the session is not ready

        Raises:
            UpstreamUnavailable: If the connection is lost while sending
        """
        ...

    @abstractmethod
    def events(self) -> AsyncIterator[AiEvent]:
        """Iterate over events from the AI until the session closes."""
        ...


@dataclass
class SessionConfig:
    """Per-call session configuration supplied by call routing."""

    instructions: str = "You are a helpful voice assistant."
    greeting: Optional[str] = None
    caller_id: Optional[str] = None

    # Audio configuration
    sample_rate: int = 24000
    audio_format: str = "pcm16"

    # Voice configuration
    voice: Optional[str] = None
    temperature: float = 0.8

    def render_instructions(self) -> str:
        """Instructions with the caller identity appended when known."""
        if not self.caller_id:
            return self.instructions
        return f"{self.instructions}\n\nThe caller's phone number is {self.caller_id}."


class AiRealtimeBase:
    """Base class for realtime AI sessions with common functionality.

    Holds the connection state machine and the event queue that feeds
    ``events()``. Audio and commits are only forwarded while READY; in any
    other state they are dropped, not queued.
    """

    def __init__(self, session_config: Optional[SessionConfig] = None) -> None:
        """Initialize base session.

        Args:
            session_config: Per-call configuration
        """
        self._session_config = session_config or SessionConfig()
        self._state = SessionState.CONNECTING
        self._event_queue: asyncio.Queue[Optional[AiEvent]] = asyncio.Queue()
        self._events_closed = False

        # Stats
        self._utterances_sent = 0
        self._utterances_dropped = 0
        self._audio_chunks_received = 0

        self._logger = structlog.get_logger(__name__)

    @property
    def state(self) -> SessionState:
        """Current session state."""
        return self._state

    @property
    def is_ready(self) -> bool:
        """Check if audio can be forwarded."""
        return self._state is SessionState.READY

    @property
    def session_config(self) -> SessionConfig:
        """Per-call configuration."""
        return self._session_config

    async def events(self) -> AsyncIterator[AiEvent]:
        """Iterate over events until the session closes.

        Yields:
            AI events in the order they were received
        """
        while True:
            event = await self._event_queue.get()
            if event is None:
                return
            yield event

    def _emit(self, event: AiEvent) -> None:
        if self._events_closed:
            return
        if not event.timestamp:
            event.timestamp = time.time()
        self._event_queue.put_nowait(event)

    def _end_events(self) -> None:
        if not self._events_closed:
            self._events_closed = True
            self._event_queue.put_nowait(None)

    def _mark_lost(self, reason: str) -> None:
        """Transition to CLOSED after an unexpected upstream loss."""
        was_ready = self._state is SessionState.READY
        self._state = SessionState.CLOSED
        if was_ready:
            self._logger.warning("AI session lost", reason=reason)
            self._emit(AiEvent(type=AiEventType.DISCONNECTED, error=reason))
        self._end_events()

    def _drop(self, what: str, size: int = 0, utterance: bool = False) -> bool:
        if utterance:
            self._utterances_dropped += 1
        self._logger.info(
            "AI session not ready, dropping",
            what=what,
            bytes=size,
            state=self._state.value
        )
        return False

    def get_stats(self) -> dict:
        """Get session statistics.

        Returns:
            Statistics dictionary
        """
        return {
            "state": self._state.value,
            "utterances_sent": self._utterances_sent,
            "utterances_dropped": self._utterances_dropped,
            "audio_chunks_received": self._audio_chunks_received,
        }
