"""Audio codec for μ-law to PCM16 conversion."""

import numpy as np


class Codec:
    """G.711 μ-law codec with vectorized operations."""

    # μ-law constants
    ULAW_CLIP = 32635  # Maximum magnitude before bias is added
    ULAW_BIAS = 0x84  # Bias for linear code

    # Upper bounds (exclusive) of biased magnitude for exponents 0..6
    _EXPONENT_EDGES = np.array([256, 512, 1024, 2048, 4096, 8192, 16384], dtype=np.int32)

    _ulaw_table: np.ndarray | None = None

    @staticmethod
    def ulaw_to_pcm16(ulaw_data: bytes) -> bytes:
        """Convert μ-law to 16-bit PCM.

        Args:
            ulaw_data: μ-law encoded audio data

        Returns:
            PCM16 encoded audio data (little-endian)
        """
        if not ulaw_data:
            return b""

        ulaw_array = np.frombuffer(ulaw_data, dtype=np.uint8)
        pcm_array = Codec.decode_table()[ulaw_array]
        return pcm_array.astype("<i2").tobytes()

    @staticmethod
    def pcm16_to_ulaw(pcm_data: bytes) -> bytes:
        """Convert 16-bit PCM to μ-law.

        A trailing odd byte (incomplete sample) is ignored.

        Args:
            pcm_data: PCM16 encoded audio data (little-endian)

        Returns:
            μ-law encoded audio data
        """
        usable = len(pcm_data) - (len(pcm_data) % 2)
        if usable == 0:
            return b""

        pcm_array = np.frombuffer(pcm_data, dtype="<i2", count=usable // 2)
        return Codec._encode_array(pcm_array).tobytes()

    @staticmethod
    def decode_table() -> np.ndarray:
        """μ-law to PCM16 lookup table (256 entries, built once)."""
        if Codec._ulaw_table is None:
            Codec._ulaw_table = Codec._create_ulaw_table()
        return Codec._ulaw_table

    @staticmethod
    def _create_ulaw_table() -> np.ndarray:
        """Create μ-law to PCM16 lookup table."""
        table = np.zeros(256, dtype=np.int16)
        for i in range(256):
            # Complement to obtain normal u-law value
            ulaw = ~i & 0xFF

            # Extract sign, exponent, and mantissa
            sign = ulaw & 0x80
            exponent = (ulaw >> 4) & 0x07
            mantissa = ulaw & 0x0F

            # Compute sample
            sample = mantissa << (exponent + 3)
            sample += Codec.ULAW_BIAS << exponent
            sample -= Codec.ULAW_BIAS

            # Apply sign
            if sign != 0:
                sample = -sample

            table[i] = sample

        return table

    @staticmethod
    def _encode_array(samples: np.ndarray) -> np.ndarray:
        """Encode an int16 sample array to μ-law bytes."""
        wide = samples.astype(np.int32)
        sign = np.where(wide < 0, 0x80, 0x00).astype(np.int32)

        magnitude = np.minimum(np.abs(wide), Codec.ULAW_CLIP) + Codec.ULAW_BIAS
        exponent = np.searchsorted(Codec._EXPONENT_EDGES, magnitude, side="right").astype(np.int32)
        mantissa = (magnitude >> (exponent + 3)) & 0x0F

        ulaw = sign | (exponent << 4) | mantissa
        return (~ulaw & 0xFF).astype(np.uint8)

    @staticmethod
    def encode_ulaw_sample(sample: int) -> int:
        """Encode a single PCM16 sample to μ-law."""
        # Get sign
        if sample < 0:
            sign = 0x80
            sample = -sample
        else:
            sign = 0

        # Clip
        if sample > Codec.ULAW_CLIP:
            sample = Codec.ULAW_CLIP

        # Add bias
        sample += Codec.ULAW_BIAS

        # Find exponent
        exponent = 7
        mask = 0x4000
        while (sample & mask) == 0 and exponent > 0:
            exponent -= 1
            mask >>= 1

        # Extract mantissa
        mantissa = (sample >> (exponent + 3)) & 0x0F

        # Combine and complement
        ulaw = sign | (exponent << 4) | mantissa
        return ~ulaw & 0xFF


def decode_companded(value: int) -> int:
    """Expand one μ-law byte to a signed 16-bit sample."""
    return int(Codec.decode_table()[value & 0xFF])


def encode_linear(sample: int) -> int:
    """Compress one signed 16-bit sample to a μ-law byte."""
    return Codec.encode_ulaw_sample(int(sample))


def ulaw_to_pcm16(data: bytes) -> bytes:
    """Convert a μ-law buffer to PCM16 (2 bytes out per byte in)."""
    return Codec.ulaw_to_pcm16(data)


def pcm16_to_ulaw(data: bytes) -> bytes:
    """Convert a PCM16 buffer to μ-law (1 byte out per sample in)."""
    return Codec.pcm16_to_ulaw(data)
