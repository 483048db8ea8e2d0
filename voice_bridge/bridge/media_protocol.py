"""Telephony media stream envelopes (Twilio Media Streams format).

Inbound messages are JSON objects keyed by ``event``:

- ``connected``: transport handshake, ignored
- ``start``: stream began, carries ``streamSid``
- ``media``: base64 μ-law payload
- ``mark``: playback marker echo, ignored
- ``stop``: caller audio ended

Outbound audio is sent as ``{"event": "media", "streamSid": ..., "media": {"payload": ...}}``.
"""

import base64
import binascii
import json
from dataclasses import dataclass, field
from typing import Optional, Union

from voice_bridge.core.errors import ProtocolParseError


@dataclass(frozen=True)
class ConnectedMessage:
    """Transport handshake."""

    protocol: Optional[str] = None


@dataclass(frozen=True)
class StartMessage:
    """Audio stream started."""

    stream_sid: str
    call_sid: Optional[str] = None
    custom_parameters: dict = field(default_factory=dict)


@dataclass(frozen=True)
class MediaMessage:
    """One chunk of caller audio."""

    payload: bytes  # μ-law @ 8kHz


@dataclass(frozen=True)
class MarkMessage:
    """Playback marker echoed by the transport."""

    name: Optional[str] = None


@dataclass(frozen=True)
class StopMessage:
    """Caller audio stream ended."""


InboundMessage = Union[ConnectedMessage, StartMessage, MediaMessage, MarkMessage, StopMessage]


def parse_inbound(raw: Union[str, bytes]) -> InboundMessage:
    """Parse one inbound transport message.

    Args:
        raw: JSON text as received from the transport

    Returns:
        Typed inbound message

    Raises:
        ProtocolParseError: If the message is not a valid envelope
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ProtocolParseError(f"Invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ProtocolParseError("Envelope must be a JSON object")

    event = data.get("event")

    if event == "media":
        media = data.get("media")
        if not isinstance(media, dict) or not isinstance(media.get("payload"), str):
            raise ProtocolParseError("media event missing media.payload")
        try:
            payload = base64.b64decode(media["payload"], validate=True)
        except (binascii.Error, ValueError) as e:
            raise ProtocolParseError(f"media payload is not base64: {e}") from e
        return MediaMessage(payload=payload)

    if event == "start":
        start = data.get("start") if isinstance(data.get("start"), dict) else {}
        stream_sid = start.get("streamSid") or data.get("streamSid")
        if not isinstance(stream_sid, str) or not stream_sid:
            raise ProtocolParseError("start event missing streamSid")
        custom = start.get("customParameters")
        return StartMessage(
            stream_sid=stream_sid,
            call_sid=start.get("callSid"),
            custom_parameters=custom if isinstance(custom, dict) else {}
        )

    if event == "stop":
        return StopMessage()

    if event == "connected":
        return ConnectedMessage(protocol=data.get("protocol"))

    if event == "mark":
        mark = data.get("mark") if isinstance(data.get("mark"), dict) else {}
        return MarkMessage(name=mark.get("name"))

    raise ProtocolParseError(f"Unknown event: {event!r}")


def build_media_message(stream_sid: str, ulaw_frame: bytes) -> str:
    """Build an outbound media message for one μ-law frame.

    Args:
        stream_sid: Stream identifier from the start event
        ulaw_frame: μ-law encoded frame

    Returns:
        JSON text ready to send on the transport
    """
    return json.dumps({
        "event": "media",
        "streamSid": stream_sid,
        "media": {"payload": base64.b64encode(ulaw_frame).decode("ascii")},
    })
