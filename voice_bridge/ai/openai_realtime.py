"""OpenAI Realtime API adapter.

One WebSocket connection per call:

1. Connect and send ``session.update`` (PCM16 in/out, voice, instructions,
   server turn detection off since the bridge segments utterances itself)
2. Wait for ``session.updated`` before forwarding any audio
3. Per utterance: ``input_audio_buffer.append`` → ``input_audio_buffer.commit``
   → ``response.create``
4. Relay ``response.audio.delta`` as PCM16 @ 24kHz

Connection setup is retried a bounded number of times with exponential
backoff. A connection lost after READY is not retried; the call session
tears the call bridge down.
"""

import asyncio
import base64
import binascii
import json
from typing import Any, Dict, Optional

import structlog
import websockets
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import ConnectionClosed, WebSocketException

from voice_bridge.ai.realtime_base import (
    AiEvent,
    AiEventType,
    AiRealtimeBase,
    SessionConfig,
    SessionState,
)
from voice_bridge.core.errors import ProtocolParseError, UpstreamUnavailable


AUDIO_DELTA_TYPES = frozenset({"response.audio.delta", "response.output_audio.delta"})


def parse_server_event(message: str | bytes) -> Dict[str, Any]:
    """Parse one upstream event.

    Args:
        message: Raw WebSocket message

    Returns:
        Event dictionary with a string "type"

    Raises:
        ProtocolParseError: If the message is not a typed JSON object
    """
    try:
        data = json.loads(message)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ProtocolParseError(f"Invalid JSON from AI: {e}") from e

    if not isinstance(data, dict) or not isinstance(data.get("type"), str):
        raise ProtocolParseError("AI event missing type")
    return data


def _str_field(data: Dict[str, Any], key: str, default: Optional[str] = None) -> str:
    """Read a string field of an event.

    Raises:
        ProtocolParseError: If the field is missing (without default) or not a string
    """
    value = data.get(key, default)
    if not isinstance(value, str):
        raise ProtocolParseError(f"{data['type']}: field {key!r} is not a string")
    return value


class OpenAIRealtimeClient(AiRealtimeBase):
    """OpenAI Realtime API client for one call."""

    DEFAULT_URL = "wss://api.openai.com/v1/realtime"

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-realtime-preview",
        session_config: Optional[SessionConfig] = None,
        url: str = DEFAULT_URL,
        connect_timeout: float = 10.0,
        max_attempts: int = 3,
        backoff_s: float = 0.5
    ) -> None:
        """Initialize OpenAI Realtime client.

        Args:
            api_key: OpenAI API key
            model: Realtime model name
            session_config: Per-call instructions, greeting, voice
            url: Realtime WebSocket endpoint
            connect_timeout: Seconds allowed per connection attempt
            max_attempts: Connection attempts before giving up
            backoff_s: Initial delay between attempts (doubles each retry)

        Raises:
            ValueError: If the API key is missing or limits are invalid
        """
        super().__init__(session_config)

        if not api_key:
            raise ValueError("OpenAI API key not provided")
        if max_attempts <= 0:
            raise ValueError(f"max_attempts must be positive, got {max_attempts}")

        self._api_key = api_key
        self._model = model
        self._url = url
        self._connect_timeout = connect_timeout
        self._max_attempts = max_attempts
        self._backoff_s = backoff_s

        self._ws: Optional[ClientConnection] = None
        self._session_ready = asyncio.Event()
        self._closed_during_setup = False
        self._message_handler_task: Optional[asyncio.Task[None]] = None

        # Transcription buffer (accumulate before logging)
        self._ai_transcript_buffer = ""

    async def connect(self) -> None:
        """Connect to the Realtime API and wait for the session to be ready.

        Raises:
            UpstreamUnavailable: If every attempt fails
        """
        if self._state is SessionState.READY:
            return
        if self._state is SessionState.CLOSED:
            raise UpstreamUnavailable("AI session already closed")

        last_error: Optional[BaseException] = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                await self._connect_once()
                break
            except (OSError, TimeoutError, WebSocketException, ProtocolParseError) as e:
                last_error = e
                await self._discard_connection()
                self._logger.warning(
                    "AI connect attempt failed",
                    attempt=attempt,
                    max_attempts=self._max_attempts,
                    error=str(e)
                )
                if attempt < self._max_attempts:
                    await asyncio.sleep(self._backoff_s * (2 ** (attempt - 1)))
        else:
            self._state = SessionState.CLOSED
            self._end_events()
            raise UpstreamUnavailable(
                f"Failed to connect to OpenAI Realtime after {self._max_attempts} attempts: {last_error}"
            ) from last_error

        self._state = SessionState.READY
        self._logger.info(
            "OpenAI Realtime connected",
            model=self._model,
            voice=self._session_config.voice
        )

        if self._session_config.greeting:
            await self._send_greeting()

    async def close(self) -> None:
        """Close connection."""
        if self._state is SessionState.CLOSED and self._ws is None:
            self._end_events()
            return

        self._state = SessionState.CLOSED
        await self._discard_connection()
        self._end_events()

        self._logger.info("OpenAI Realtime disconnected", stats=self.get_stats())

    async def append_audio(self, pcm16: bytes) -> bool:
        """Append PCM16 @ 24kHz utterance audio."""
        if not self.is_ready:
            return self._drop("audio", len(pcm16))

        await self._send({
            "type": "input_audio_buffer.append",
            "audio": base64.b64encode(pcm16).decode("ascii")
        })
        return True

    async def commit(self) -> bool:
        """Commit the input buffer and request a spoken response."""
        if not self.is_ready:
            return self._drop("commit", utterance=True)

        await self._send({"type": "input_audio_buffer.commit"})
        await self._send({"type": "response.create"})
        self._utterances_sent += 1
        return True

    async def _connect_once(self) -> None:
        """Open the socket, configure the session, wait for session.updated."""
        self._session_ready.clear()
        self._closed_during_setup = False

        async with asyncio.timeout(self._connect_timeout):
            self._ws = await websockets.connect(
                f"{self._url}?model={self._model}",
                additional_headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "OpenAI-Beta": "realtime=v1",
                },
                open_timeout=self._connect_timeout,
                max_size=16 * 1024 * 1024
            )

            self._message_handler_task = asyncio.create_task(
                self._message_handler(self._ws),
                name="openai-message-handler"
            )

            await self._send_session_update()

            self._logger.info("Waiting for session.updated from OpenAI...")
            await self._session_ready.wait()

        if self._closed_during_setup:
            raise ConnectionError("OpenAI closed the connection during session setup")

    async def _discard_connection(self) -> None:
        task, self._message_handler_task = self._message_handler_task, None
        ws, self._ws = self._ws, None

        if task and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                self._logger.debug("Message handler task cancelled")

        if ws is not None:
            await ws.close()

    async def _send(self, payload: Dict[str, Any]) -> None:
        if self._ws is None:
            raise UpstreamUnavailable("Not connected")
        try:
            await self._ws.send(json.dumps(payload))
        except ConnectionClosed as e:
            self._mark_lost(f"send failed: {e}")
            raise UpstreamUnavailable(f"Connection lost while sending {payload['type']}") from e

    async def _send_session_update(self) -> None:
        """Send initial session configuration."""
        cfg = self._session_config
        session: Dict[str, Any] = {
            "modalities": ["audio", "text"],
            "instructions": cfg.render_instructions(),
            "input_audio_format": cfg.audio_format,
            "output_audio_format": cfg.audio_format,
            "input_audio_transcription": {"model": "whisper-1"},
            "turn_detection": None,
            "temperature": cfg.temperature,
        }
        if cfg.voice:
            session["voice"] = cfg.voice

        self._logger.info(
            "Sending OpenAI session.update",
            model=self._model,
            voice=cfg.voice,
            instructions_length=len(session["instructions"])
        )

        await self._send({"type": "session.update", "session": session})

    async def _send_greeting(self) -> None:
        """Send greeting message to trigger initial response."""
        greeting = self._session_config.greeting
        if not greeting:
            return

        await self._send({
            "type": "conversation.item.create",
            "item": {
                "type": "message",
                "role": "user",
                "content": [{
                    "type": "input_text",
                    "text": f"[System: Greet the caller with this message: {greeting}]"
                }]
            }
        })
        await self._send({"type": "response.create"})
        self._logger.info("Greeting request sent", greeting_preview=greeting[:50])

    async def _message_handler(self, ws: ClientConnection) -> None:
        """Handle WebSocket messages from OpenAI.

        Any exit of this loop after READY ends the session.
        """
        reason = "connection closed by upstream"
        try:
            async for message in ws:
                try:
                    await self._process_message(parse_server_event(message))
                except ProtocolParseError as e:
                    self._logger.warning("Skipping malformed AI message", error=str(e))
        except ConnectionClosed as e:
            self._logger.warning("OpenAI WebSocket connection closed", code=e.rcvd.code if e.rcvd else None)
        except Exception as e:
            self._logger.error("OpenAI message handler failed", error=str(e), exc_info=True)
            reason = f"message handler failed: {e}"
        if self._state is SessionState.CONNECTING:
            # Wake connect() so the attempt fails now instead of timing out
            self._closed_during_setup = True
            self._session_ready.set()
        elif self._state is SessionState.READY:
            self._mark_lost(reason)

    async def _process_message(self, data: Dict[str, Any]) -> None:
        """Process one event from OpenAI.

        Args:
            data: Parsed event
        """
        event_type = data["type"]

        if event_type in AUDIO_DELTA_TYPES:
            await self._handle_audio(_str_field(data, "delta"))
            return

        if event_type == "session.updated":
            self._session_ready.set()
            self._logger.info("OpenAI session configured")
            return

        if event_type == "session.created":
            session = data.get("session")
            self._logger.debug(
                "OpenAI session created",
                session_id=session.get("id") if isinstance(session, dict) else None
            )
            return

        if event_type == "response.done":
            response = data.get("response")
            self._emit(AiEvent(
                type=AiEventType.RESPONSE_DONE,
                data=response if isinstance(response, dict) else None
            ))
            return

        if event_type == "response.audio_transcript.delta":
            self._ai_transcript_buffer += _str_field(data, "delta")
            return

        if event_type == "response.audio_transcript.done":
            text = _str_field(data, "transcript", "") or self._ai_transcript_buffer
            self._ai_transcript_buffer = ""
            if text.strip():
                self._logger.info(f"AI: {text.strip()}")
                self._emit(AiEvent(
                    type=AiEventType.TRANSCRIPT_FINAL,
                    data={"text": text.strip(), "role": "assistant"}
                ))
            return

        if event_type == "conversation.item.input_audio_transcription.completed":
            text = _str_field(data, "transcript", "")
            if text.strip():
                self._logger.info(f"User: {text.strip()}")
                self._emit(AiEvent(
                    type=AiEventType.TRANSCRIPT_FINAL,
                    data={"text": text.strip(), "role": "user"}
                ))
            return

        if event_type == "error":
            error = data.get("error") or {}
            message = error.get("message") if isinstance(error, dict) else str(error)
            self._logger.error("OpenAI error event", error=message)
            self._emit(AiEvent(type=AiEventType.ERROR, data=data, error=message))
            return

        # Log unknown message types
        self._logger.debug("Unhandled OpenAI event", type=event_type)

    async def _handle_audio(self, audio_base64: str) -> None:
        """Handle a synthesized audio delta.

        Args:
            audio_base64: Base64-encoded PCM16 @ 24kHz audio
        """
        if not self.is_ready:
            self._logger.debug("Dropping audio delta, session not ready")
            return

        try:
            pcm16 = base64.b64decode(audio_base64, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ProtocolParseError(f"Audio delta is not base64: {e}") from e

        self._audio_chunks_received += 1
        if self._audio_chunks_received <= 3:
            self._logger.info(f"Chunk #{self._audio_chunks_received}", pcm16_24k=f"{len(pcm16)}B")

        self._emit(AiEvent(type=AiEventType.AUDIO_DELTA, audio=pcm16))
