"""Audio processing constants."""


class AudioConstants:
    """Audio format constants for telephony and AI processing."""

    # Sample rates
    TELEPHONY_SAMPLE_RATE = 8000  # 8kHz for G.711 mulaw media streams
    AI_SAMPLE_RATE = 24000        # Realtime speech AI PCM16 rate

    # Frame timing
    FRAME_MS = 20  # 20ms frame duration

    # Sample widths
    PCM16_SAMPLE_WIDTH = 2  # 20ms @ 8kHz: (8000 * 20 * 2) / 1000 = 320 bytes

    # Utterance segmentation
    SILENCE_TIMEOUT_MS = 700
    FLUSH_POLL_MS = 120

    # Transport liveness
    KEEPALIVE_INTERVAL_S = 5.0

    # Logging intervals
    LOG_INTERVAL_CHUNKS = 50   # Log every 50 inbound chunks (1 second @ 20ms)
    LOG_INTERVAL_FRAMES = 100  # Outbound stats every 100 frames (2 seconds @ 20ms)


def frame_size_bytes(sample_rate: int, frame_ms: int, sample_width: int = 2) -> int:
    """Bytes in one fixed-duration frame.

    Args:
        sample_rate: Sample rate in Hz
        frame_ms: Frame duration in milliseconds
        sample_width: Bytes per sample (2 for PCM16, 1 for mulaw)

    Returns:
        Frame size in bytes
    """
    return (sample_rate * frame_ms * sample_width) // 1000
