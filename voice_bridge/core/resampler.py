"""Audio resampler for sample rate conversion."""

import numpy as np
import soxr

from voice_bridge.core.constants import AudioConstants
from voice_bridge.core.errors import UnsupportedRateError


# Rate pairs the bridge converts between (telephony <-> speech AI)
SUPPORTED_RATE_PAIRS = frozenset({
    (AudioConstants.TELEPHONY_SAMPLE_RATE, AudioConstants.AI_SAMPLE_RATE),
    (AudioConstants.AI_SAMPLE_RATE, AudioConstants.TELEPHONY_SAMPLE_RATE),
})

QUALITY_MAP = {
    "LQ": soxr.LQ,
    "MQ": soxr.MQ,
    "HQ": soxr.HQ,
    "VHQ": soxr.VHQ,
}


class Resampler:
    """PCM16 mono resampler bound to one supported rate pair.

    Two algorithms are available and applied the same way in both
    directions:

    - ``"linear"``: linear interpolation evaluated at ``i * source / target``.
      Downsampling by an integer ratio therefore picks every n-th sample, and
      an upsample followed by the matching downsample is exact.
    - soxr qualities (``"LQ"``, ``"MQ"``, ``"HQ"``, ``"VHQ"``): band-limited
      resampling, trimmed or edge-padded to the exact output length.

    Output sample count is always ``round(n * target / source)``.
    """

    def __init__(
        self,
        source_rate: int,
        target_rate: int,
        quality: str = "linear"
    ) -> None:
        """Initialize resampler.

        Args:
            source_rate: Source sample rate in Hz
            target_rate: Target sample rate in Hz
            quality: "linear" or a soxr quality name

        Raises:
            UnsupportedRateError: If the rate pair is not supported
            ValueError: If quality is unknown
        """
        if source_rate != target_rate and (source_rate, target_rate) not in SUPPORTED_RATE_PAIRS:
            raise UnsupportedRateError(source_rate, target_rate)
        if quality != "linear" and quality not in QUALITY_MAP:
            raise ValueError(f"Unknown resample quality: {quality}")

        self._source_rate = source_rate
        self._target_rate = target_rate
        self._quality = quality
        self._ratio = target_rate / source_rate

    @property
    def source_rate(self) -> int:
        """Source sample rate."""
        return self._source_rate

    @property
    def target_rate(self) -> int:
        """Target sample rate."""
        return self._target_rate

    @property
    def ratio(self) -> float:
        """Resampling ratio (target/source)."""
        return self._ratio

    @property
    def quality(self) -> str:
        """Configured algorithm."""
        return self._quality

    def resample(self, audio_data: bytes) -> bytes:
        """Resample audio data.

        Args:
            audio_data: PCM16 audio data at source rate

        Returns:
            Resampled PCM16 audio data at target rate
        """
        # Drop an incomplete trailing sample
        usable = len(audio_data) - (len(audio_data) % 2)
        if usable == 0:
            return b""
        if self._source_rate == self._target_rate:
            return audio_data[:usable]

        samples = np.frombuffer(audio_data, dtype="<i2", count=usable // 2)
        out_count = self.output_samples(len(samples))
        if out_count == 0:
            return b""

        if self._quality == "linear":
            resampled = self._linear(samples, out_count)
        else:
            resampled = self._soxr(samples, out_count)

        return np.clip(np.round(resampled), -32768, 32767).astype("<i2").tobytes()

    def output_samples(self, input_samples: int) -> int:
        """Output sample count for a given input sample count."""
        return int(round(input_samples * self._target_rate / self._source_rate))

    def calculate_output_size(self, input_size: int) -> int:
        """Calculate expected output size after resampling.

        Args:
            input_size: Input size in bytes

        Returns:
            Expected output size in bytes
        """
        return self.output_samples(input_size // 2) * 2

    def _linear(self, samples: np.ndarray, out_count: int) -> np.ndarray:
        positions = np.arange(out_count, dtype=np.float64) * (self._source_rate / self._target_rate)
        return np.interp(positions, np.arange(len(samples)), samples.astype(np.float64))

    def _soxr(self, samples: np.ndarray, out_count: int) -> np.ndarray:
        resampled = soxr.resample(
            samples.astype(np.float32),
            self._source_rate,
            self._target_rate,
            quality=QUALITY_MAP[self._quality]
        )
        if len(resampled) >= out_count:
            return resampled[:out_count]
        # soxr may come up a few samples short on small chunks
        if len(resampled) == 0:
            return np.zeros(out_count, dtype=np.float32)
        padding = np.repeat(resampled[-1:], out_count - len(resampled))
        return np.concatenate([resampled, padding])


def resample_pcm16(data: bytes, from_rate: int, to_rate: int, quality: str = "linear") -> bytes:
    """Resample PCM16 audio between supported rates.

    Args:
        data: PCM16 audio data (little-endian)
        from_rate: Source sample rate in Hz
        to_rate: Target sample rate in Hz
        quality: "linear" or a soxr quality name

    Returns:
        Resampled PCM16 audio data

    Raises:
        UnsupportedRateError: If the rate pair is not supported

    Examples:
        # Upsample caller audio for the speech AI
        pcm16_24k = resample_pcm16(pcm16_8k, 8000, 24000)

        # Downsample synthesized speech for the phone line
        pcm16_8k = resample_pcm16(pcm16_24k, 24000, 8000)
    """
    return Resampler(from_rate, to_rate, quality).resample(data)
