"""Per-call bridge between a telephony media stream and a speech AI session.

Data flow:
- Uplink: media (μ-law 8kHz) → PCM16 8kHz → PCM16 24kHz → UtteranceBuffer
  → [flush] → AI append + commit
- Downlink: AI audio delta (PCM16 24kHz) → PCM16 8kHz → 20ms frames
  → μ-law → media messages

Every piece of per-call state is mutated by one coroutine only
(``_process_inbox``). Transport messages, timer ticks and AI events are
produced by helper tasks and merged into a single inbox queue, so the
order of each source is preserved without locks.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Optional, Protocol, Union

import structlog
from websockets.exceptions import ConnectionClosed

from voice_bridge.ai.realtime_base import AiEvent, AiEventType, AiRealtimeSession
from voice_bridge.bridge.media_protocol import (
    ConnectedMessage,
    MarkMessage,
    MediaMessage,
    StartMessage,
    StopMessage,
    build_media_message,
    parse_inbound,
)
from voice_bridge.bridge.outbound_framer import OutboundFramer
from voice_bridge.bridge.registry import ActiveCall, ActiveCallRegistry
from voice_bridge.bridge.utterance_buffer import UtteranceBuffer
from voice_bridge.config import AudioConfig
from voice_bridge.core.constants import AudioConstants
from voice_bridge.core.errors import (
    ProtocolParseError,
    TranscodeError,
    TransportDisconnect,
    UpstreamUnavailable,
)
from voice_bridge.core.resampler import Resampler
from voice_bridge.utils.codec import ulaw_to_pcm16


class MediaTransport(Protocol):
    """Telephony side of the bridge (a WebSocket server connection)."""

    def __aiter__(self) -> AsyncIterator[Union[str, bytes]]: ...

    async def send(self, message: str) -> None: ...

    async def ping(self) -> object: ...

    async def close(self) -> None: ...


class CallState(Enum):
    """Call bridge lifecycle."""

    CONNECTING = "connecting"
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"


# Inbox items (besides AiEvent)
@dataclass(frozen=True)
class _TransportMessage:
    raw: Union[str, bytes]


@dataclass(frozen=True)
class _TransportClosed:
    reason: str


@dataclass(frozen=True)
class _FlushTick:
    pass


@dataclass(frozen=True)
class _KeepaliveTick:
    pass


@dataclass(frozen=True)
class _AiReady:
    pass


@dataclass(frozen=True)
class _AiFailed:
    error: str


@dataclass(frozen=True)
class _HelperFailed:
    task: str
    error: str


_TRANSPORT_ERRORS = (ConnectionClosed, TransportDisconnect)


def _discard_pong(pong_waiter: asyncio.Future) -> None:
    if not pong_waiter.cancelled():
        pong_waiter.exception()


class CallBridgeSession:
    """Owns one call's transport, AI session, utterance buffer and timers."""

    def __init__(
        self,
        transport: MediaTransport,
        ai_session: AiRealtimeSession,
        call_id: Optional[str] = None,
        audio: Optional[AudioConfig] = None,
        registry: Optional[ActiveCallRegistry] = None,
        caller: Optional[str] = None
    ) -> None:
        """Initialize call bridge.

        Args:
            transport: Accepted telephony media stream connection
            ai_session: Unconnected speech AI session for this call
            call_id: Call identifier (generated when not supplied)
            audio: Audio pipeline tuning
            registry: Registry to track the call in
            caller: Caller identity supplied by call routing
        """
        self._transport = transport
        self._ai = ai_session
        self._call_id = call_id or uuid.uuid4().hex
        self._audio = audio or AudioConfig()
        self._registry = registry
        self._registry_entry: Optional[ActiveCall] = None
        self._caller = caller

        self._stream_sid: Optional[str] = None
        self._state = CallState.CONNECTING
        self._created_at = time.time()

        self._buffer = UtteranceBuffer(
            silence_timeout_ms=self._audio.silence_timeout_ms,
            speech_threshold=self._audio.speech_threshold,
            max_utterance_ms=self._audio.max_utterance_ms
        )
        self._upsampler = Resampler(
            AudioConstants.TELEPHONY_SAMPLE_RATE,
            AudioConstants.AI_SAMPLE_RATE,
            self._audio.resample_quality
        )
        self._downsampler = Resampler(
            AudioConstants.AI_SAMPLE_RATE,
            AudioConstants.TELEPHONY_SAMPLE_RATE,
            self._audio.resample_quality
        )
        self._framer = OutboundFramer(AudioConstants.TELEPHONY_SAMPLE_RATE, self._audio.frame_ms)

        self._inbox: asyncio.Queue = asyncio.Queue()
        self._tasks: list[asyncio.Task[None]] = []

        # Stats
        self._chunks_received = 0
        self._chunks_dropped = 0
        self._messages_skipped = 0
        self._utterances_flushed = 0
        self._utterances_dropped = 0
        self._frames_sent = 0

        self._logger = structlog.get_logger(__name__).bind(call_id=self._call_id)

    @property
    def call_id(self) -> str:
        """Call identifier."""
        return self._call_id

    @property
    def stream_sid(self) -> Optional[str]:
        """Transport stream identifier, known after the start event."""
        return self._stream_sid

    @property
    def state(self) -> CallState:
        """Current lifecycle state."""
        return self._state

    @property
    def created_at(self) -> float:
        """Wall-clock creation time."""
        return self._created_at

    @property
    def buffer(self) -> UtteranceBuffer:
        """Caller audio awaiting the next flush."""
        return self._buffer

    async def run(self) -> None:
        """Bridge the call until the transport closes or the AI is lost.

        Timers, helper tasks and the AI session are always released on
        return, including on cancellation.
        """
        self._logger.info("Call bridge starting", caller=self._caller)
        if self._registry is not None:
            self._registry_entry = self._registry.register(self._call_id, caller=self._caller)

        self._spawn(self._read_transport(), "transport-reader")
        self._spawn(self._run_ai(), "ai-session")
        self._spawn(self._tick(_FlushTick(), self._audio.flush_poll_ms / 1000.0), "flush-poll")
        self._spawn(self._tick(_KeepaliveTick(), self._audio.keepalive_interval_s), "keepalive")

        try:
            await self._process_inbox()
        finally:
            await self._teardown()

    # ------------------------------------------------------------------
    # Producers
    # ------------------------------------------------------------------

    def _spawn(self, coro, name: str) -> None:
        task = asyncio.create_task(coro, name=f"call-{self._call_id[:8]}-{name}")
        task.add_done_callback(self._on_helper_done)
        self._tasks.append(task)

    def _on_helper_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled() or task.exception() is None:
            return
        self._logger.error(
            "Call helper task failed",
            task=task.get_name(),
            exc_info=task.exception()
        )
        self._inbox.put_nowait(_HelperFailed(task.get_name(), str(task.exception())))

    async def _read_transport(self) -> None:
        reason = "transport closed"
        try:
            async for raw in self._transport:
                self._inbox.put_nowait(_TransportMessage(raw))
        except _TRANSPORT_ERRORS as e:
            reason = f"transport error: {e}"
        self._inbox.put_nowait(_TransportClosed(reason))

    async def _run_ai(self) -> None:
        try:
            await self._ai.connect()
        except UpstreamUnavailable as e:
            self._inbox.put_nowait(_AiFailed(str(e)))
            return

        self._inbox.put_nowait(_AiReady())
        async for event in self._ai.events():
            self._inbox.put_nowait(event)

    async def _tick(self, item: object, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self._inbox.put_nowait(item)

    # ------------------------------------------------------------------
    # Consumer
    # ------------------------------------------------------------------

    async def _process_inbox(self) -> None:
        """Apply inbox items in order until one ends the call."""
        while True:
            item = await self._inbox.get()

            if isinstance(item, _TransportMessage):
                keep_going = await self._on_transport_message(item.raw)
            elif isinstance(item, _FlushTick):
                keep_going = await self._on_flush_tick()
            elif isinstance(item, AiEvent):
                keep_going = await self._on_ai_event(item)
            elif isinstance(item, _KeepaliveTick):
                keep_going = await self._on_keepalive()
            elif isinstance(item, _AiReady):
                self._logger.info("AI session ready")
                keep_going = True
            elif isinstance(item, _AiFailed):
                self._logger.error("AI session unavailable, ending call bridge", error=item.error)
                keep_going = False
            elif isinstance(item, _TransportClosed):
                self._logger.info("Transport disconnected", reason=item.reason)
                keep_going = False
            elif isinstance(item, _HelperFailed):
                keep_going = False
            else:
                self._logger.warning("Unknown inbox item", item=repr(item))
                keep_going = True

            if not keep_going:
                return

    async def _on_transport_message(self, raw: Union[str, bytes]) -> bool:
        try:
            message = parse_inbound(raw)
        except ProtocolParseError as e:
            self._messages_skipped += 1
            self._logger.warning("Skipping malformed transport message", error=str(e))
            return True

        if isinstance(message, MediaMessage):
            self._ingest(message.payload)
            return True

        if isinstance(message, StartMessage):
            self._stream_sid = message.stream_sid
            self._state = CallState.ACTIVE
            self._logger = self._logger.bind(stream_sid=message.stream_sid)
            if self._registry is not None:
                self._registry.update_stream(self._call_id, message.stream_sid)
            self._logger.info("Media stream started", transport_call_sid=message.call_sid)
            return True

        if isinstance(message, StopMessage):
            self._logger.info("Media stream stopped, final flush")
            await self._flush("stop")
            return False

        if isinstance(message, (ConnectedMessage, MarkMessage)):
            self._logger.debug("Ignoring transport control message", kind=type(message).__name__)
        return True

    def _ingest(self, ulaw: bytes) -> None:
        """Decode, upsample and buffer one chunk of caller audio."""
        try:
            pcm16_8k = ulaw_to_pcm16(ulaw)
            pcm16_24k = self._upsampler.resample(pcm16_8k)
        except TranscodeError as e:
            self._chunks_dropped += 1
            self._logger.warning("Dropping undecodable chunk", error=str(e), bytes=len(ulaw))
            return

        self._buffer.append(pcm16_24k)
        self._chunks_received += 1
        if self._chunks_received % AudioConstants.LOG_INTERVAL_CHUNKS == 0:
            self._logger.debug(
                "Caller audio stats",
                chunks=self._chunks_received,
                buffered_bytes=self._buffer.size
            )

    async def _on_flush_tick(self) -> bool:
        if self._buffer.should_flush():
            return await self._flush("silence")
        return True

    async def _flush(self, reason: str) -> bool:
        """Forward buffered audio to the AI as one utterance.

        Returns:
            False if the AI session was lost while sending
        """
        utterance = self._buffer.flush()
        if not utterance:
            return True

        try:
            if await self._ai.append_audio(utterance) and await self._ai.commit():
                self._utterances_flushed += 1
                self._logger.info("Utterance committed", reason=reason, bytes=len(utterance))
            else:
                self._utterances_dropped += 1
        except UpstreamUnavailable as e:
            self._utterances_dropped += 1
            self._logger.error("AI session lost during flush", error=str(e))
            return False
        return True

    async def _on_ai_event(self, event: AiEvent) -> bool:
        if event.type is AiEventType.AUDIO_DELTA:
            return await self._send_audio(event.audio)

        if event.type is AiEventType.DISCONNECTED:
            self._logger.error("AI session disconnected, ending call bridge", error=event.error)
            return False

        if event.type is AiEventType.ERROR:
            self._logger.warning("AI reported an error", error=event.error)
        elif event.type is AiEventType.TRANSCRIPT_FINAL and event.data:
            self._logger.debug("Transcript", role=event.data.get("role"), text=event.data.get("text"))
        elif event.type is AiEventType.RESPONSE_DONE:
            self._logger.debug("AI response complete")
        return True

    async def _send_audio(self, pcm16_24k: bytes) -> bool:
        """Downsample, frame and send synthesized audio.

        Returns:
            False if the transport is gone
        """
        if self._stream_sid is None:
            self._logger.debug("No streamSid yet, dropping AI audio", bytes=len(pcm16_24k))
            return True

        try:
            pcm16_8k = self._downsampler.resample(pcm16_24k)
        except TranscodeError as e:
            self._logger.warning("Dropping undecodable AI audio", error=str(e))
            return True

        try:
            for frame in self._framer.frame(pcm16_8k):
                await self._transport.send(build_media_message(self._stream_sid, frame))
                self._frames_sent += 1
        except _TRANSPORT_ERRORS as e:
            self._logger.info("Transport gone while sending audio", error=str(e))
            return False

        if self._frames_sent and self._frames_sent % AudioConstants.LOG_INTERVAL_FRAMES == 0:
            self._logger.debug("Outbound audio stats", frames=self._frames_sent)
        return True

    async def _on_keepalive(self) -> bool:
        try:
            pong_waiter = await self._transport.ping()
        except _TRANSPORT_ERRORS as e:
            self._logger.info("Keep-alive ping failed", error=str(e))
            return False

        # A lost connection is reported by the transport reader
        if asyncio.isfuture(pong_waiter):
            pong_waiter.add_done_callback(_discard_pong)

        if self._registry is not None:
            self._registry.touch(self._call_id)
        return True

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def _teardown(self) -> None:
        """Cancel timers and helpers, close AI and transport, unregister."""
        if self._state is CallState.CLOSED:
            return
        self._state = CallState.CLOSING

        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        try:
            await self._ai.close()
        except Exception as e:
            self._logger.error(f"Error closing AI session: {e}")

        try:
            await self._transport.close()
        except Exception as e:
            self._logger.error(f"Error closing transport: {e}")

        if self._registry is not None:
            self._registry.remove(self._call_id, self._registry_entry)

        self._buffer.clear()
        self._state = CallState.CLOSED
        self._logger.info("Call bridge closed", stats=self.get_stats())

    def get_stats(self) -> dict:
        """Get call statistics.

        Returns:
            Statistics dictionary
        """
        return {
            "chunks_received": self._chunks_received,
            "chunks_dropped": self._chunks_dropped,
            "messages_skipped": self._messages_skipped,
            "utterances_flushed": self._utterances_flushed,
            "utterances_dropped": self._utterances_dropped,
            "frames_sent": self._frames_sent,
            "framer": self._framer.get_stats(),
            "duration_s": round(time.time() - self._created_at, 3),
        }
