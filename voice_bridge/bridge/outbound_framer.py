"""Fixed-size telephony framing for synthesized speech."""

import structlog

from voice_bridge.core.constants import AudioConstants, frame_size_bytes
from voice_bridge.utils.codec import pcm16_to_ulaw


class OutboundFramer:
    """Slices PCM16 @ 8kHz into fixed frames and encodes each to μ-law.

    Each synthesis chunk is framed on its own. A trailing partial frame is
    discarded, never padded or carried into the next chunk, so every frame
    handed to the transport has exactly the configured size.
    """

    def __init__(
        self,
        sample_rate: int = AudioConstants.TELEPHONY_SAMPLE_RATE,
        frame_ms: int = AudioConstants.FRAME_MS
    ) -> None:
        """Initialize framer.

        Args:
            sample_rate: PCM sample rate in Hz
            frame_ms: Frame duration in milliseconds

        Raises:
            ValueError: If the resulting frame size is not positive
        """
        self._frame_size = frame_size_bytes(sample_rate, frame_ms, AudioConstants.PCM16_SAMPLE_WIDTH)
        if self._frame_size <= 0:
            raise ValueError(f"Frame size must be positive, got {self._frame_size}")

        # Stats
        self._frames_emitted = 0
        self._bytes_discarded = 0

        self._logger = structlog.get_logger(__name__)

    @property
    def frame_size(self) -> int:
        """PCM16 bytes per frame."""
        return self._frame_size

    def frame(self, pcm16: bytes) -> list[bytes]:
        """Split one PCM16 chunk into μ-law frames.

        Args:
            pcm16: PCM16 audio @ frame sample rate (any size)

        Returns:
            μ-law frames in order, each encoding exactly one PCM16 frame
        """
        full_frames, remainder = divmod(len(pcm16), self._frame_size)

        frames = [
            pcm16_to_ulaw(pcm16[i * self._frame_size:(i + 1) * self._frame_size])
            for i in range(full_frames)
        ]

        self._frames_emitted += full_frames
        if remainder:
            self._bytes_discarded += remainder
            self._logger.debug(
                "Discarded partial frame",
                remainder=remainder,
                frame_size=self._frame_size
            )

        return frames

    def get_stats(self) -> dict:
        """Get framing statistics.

        Returns:
            Statistics dictionary
        """
        return {
            "frames_emitted": self._frames_emitted,
            "bytes_discarded": self._bytes_discarded,
        }
