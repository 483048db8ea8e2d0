"""Tests for media stream envelopes."""

import base64
import json

import pytest

from voice_bridge.bridge.media_protocol import (
    ConnectedMessage,
    MarkMessage,
    MediaMessage,
    StartMessage,
    StopMessage,
    build_media_message,
    parse_inbound,
)
from voice_bridge.core.errors import ProtocolParseError


class TestParseInbound:
    """Test inbound message parsing."""

    def test_media(self) -> None:
        """Test media payload is base64-decoded."""
        raw = json.dumps({"event": "media", "media": {"payload": base64.b64encode(b'\xff' * 160).decode()}})

        message = parse_inbound(raw)

        assert message == MediaMessage(payload=b'\xff' * 160)

    def test_start_nested_sid(self) -> None:
        """Test start with Twilio's nested layout."""
        raw = json.dumps({
            "event": "start",
            "start": {
                "streamSid": "SS1",
                "callSid": "CA1",
                "customParameters": {"from": "+15550100"},
            },
        })

        message = parse_inbound(raw)

        assert isinstance(message, StartMessage)
        assert message.stream_sid == "SS1"
        assert message.call_sid == "CA1"
        assert message.custom_parameters == {"from": "+15550100"}

    def test_start_top_level_sid(self) -> None:
        """Test start with streamSid on the envelope."""
        message = parse_inbound(json.dumps({"event": "start", "streamSid": "SS2"}))

        assert message == StartMessage(stream_sid="SS2")

    def test_ignored_events(self) -> None:
        """Test connected, mark and stop parse to their types."""
        assert parse_inbound('{"event": "connected", "protocol": "Call"}') == ConnectedMessage(protocol="Call")
        assert parse_inbound('{"event": "mark", "mark": {"name": "m1"}}') == MarkMessage(name="m1")
        assert parse_inbound('{"event": "stop"}') == StopMessage()

    def test_bytes_input(self) -> None:
        """Test UTF-8 bytes are accepted."""
        assert parse_inbound(b'{"event": "stop"}') == StopMessage()

    @pytest.mark.parametrize("raw", [
        "not json",
        "[1, 2]",
        '"media"',
        '{"event": "media"}',
        '{"event": "media", "media": {}}',
        '{"event": "media", "media": {"payload": 5}}',
        '{"event": "media", "media": {"payload": "@@@"}}',
        '{"event": "start", "start": {}}',
        '{"event": "start", "streamSid": ""}',
        '{"event": "dtmf"}',
        '{}',
        b'\xff\xfe',
    ])
    def test_invalid(self, raw) -> None:
        """Test malformed envelopes raise ProtocolParseError."""
        with pytest.raises(ProtocolParseError):
            parse_inbound(raw)


class TestBuildMediaMessage:
    """Test outbound media envelopes."""

    def test_envelope(self) -> None:
        """Test outbound layout."""
        frame = bytes(range(160))

        data = json.loads(build_media_message("SS1", frame))

        assert data["event"] == "media"
        assert data["streamSid"] == "SS1"
        assert base64.b64decode(data["media"]["payload"]) == frame

    def test_parses_back(self) -> None:
        """Test outbound media is readable as inbound media."""
        message = parse_inbound(build_media_message("SS1", b'\x01\x02'))

        assert message == MediaMessage(payload=b'\x01\x02')
