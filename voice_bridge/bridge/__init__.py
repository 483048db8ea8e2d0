"""Audio bridge between telephony media streams and speech AI sessions.

This module provides the per-call bridging layer:
- CallBridgeSession: per-call actor owning transport, AI session and timers
- UtteranceBuffer: silence-based segmentation of caller audio
- OutboundFramer: fixed-size μ-law framing of synthesized speech
- ActiveCallRegistry: TTL-bounded registry of live calls
"""

__all__ = [
    "ActiveCallRegistry",
    "CallBridgeSession",
    "CallState",
    "OutboundFramer",
    "UtteranceBuffer",
]

from voice_bridge.bridge.registry import ActiveCallRegistry
from voice_bridge.bridge.utterance_buffer import UtteranceBuffer
from voice_bridge.bridge.outbound_framer import OutboundFramer
from voice_bridge.bridge.call_session import CallBridgeSession, CallState
