"""Real-time audio bridge between telephony media streams and speech AI services."""

__version__ = "0.1.0"
