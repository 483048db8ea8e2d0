"""Error taxonomy for the media bridge.

Per-chunk errors (ProtocolParseError, TranscodeError) are recovered inside
the call session: the offending message or chunk is logged and skipped.
Per-session errors (UpstreamUnavailable) end that call's bridge only.
"""


class BridgeError(Exception):
    """Base class for all media bridge errors."""


class ProtocolParseError(BridgeError):
    """An inbound transport or AI message does not match its envelope."""


class TranscodeError(BridgeError):
    """A codec or resample operation was given input it cannot convert."""


class UnsupportedRateError(TranscodeError):
    """Resampling was requested for a rate pair the bridge does not support."""

    def __init__(self, source_rate: int, target_rate: int) -> None:
        super().__init__(f"Unsupported rate pair: {source_rate} Hz -> {target_rate} Hz")
        self.source_rate = source_rate
        self.target_rate = target_rate


class UpstreamUnavailable(BridgeError):
    """The speech AI session could not become ready or was lost mid-call."""


class TransportDisconnect(BridgeError):
    """The telephony transport closed. Ordinary termination path."""
