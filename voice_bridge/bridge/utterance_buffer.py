"""Silence-based utterance segmentation for caller audio."""

import time
from enum import Enum
from typing import Callable, Optional

import numpy as np
import structlog


logger = structlog.get_logger(__name__)


class BufferState(Enum):
    """Utterance buffer states."""

    IDLE = "idle"
    ACCUMULATING = "accumulating"


class UtteranceBuffer:
    """Accumulates PCM16 chunks until the caller stops talking.

    Chunks are kept in arrival order. The owning call session polls
    ``should_flush`` on a timer and calls ``flush`` when it returns True, or
    calls ``flush`` directly when the caller's stream stops.
    """

    def __init__(
        self,
        silence_timeout_ms: int = 700,
        speech_threshold: Optional[int] = None,
        max_utterance_ms: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic
    ) -> None:
        """Initialize utterance buffer.

        Args:
            silence_timeout_ms: Idle gap after which buffered audio is complete
            speech_threshold: Peak amplitude a chunk must exceed to count as
                speech; None counts every chunk
            max_utterance_ms: Flush a buffer this old even while speech
                continues; None disables the cap
            clock: Monotonic clock in seconds

        Raises:
            ValueError: If a duration is not positive
        """
        if silence_timeout_ms <= 0:
            raise ValueError(f"Silence timeout must be positive, got {silence_timeout_ms}")
        if max_utterance_ms is not None and max_utterance_ms <= 0:
            raise ValueError(f"Max utterance must be positive, got {max_utterance_ms}")

        self._silence_timeout = silence_timeout_ms / 1000.0
        self._speech_threshold = speech_threshold
        self._max_utterance = max_utterance_ms / 1000.0 if max_utterance_ms else None
        self._clock = clock

        self._chunks: list[bytes] = []
        self._size = 0
        self._last_audio_at = 0.0
        self._started_at = 0.0

    @property
    def state(self) -> BufferState:
        """Current buffer state."""
        return BufferState.ACCUMULATING if self._chunks else BufferState.IDLE

    @property
    def size(self) -> int:
        """Buffered bytes."""
        return self._size

    @property
    def chunk_count(self) -> int:
        """Buffered chunks."""
        return len(self._chunks)

    @property
    def last_audio_at(self) -> float:
        """Clock reading of the last chunk counted as audio."""
        return self._last_audio_at

    def is_empty(self) -> bool:
        """Check if buffer is empty."""
        return not self._chunks

    def append(self, chunk: bytes) -> None:
        """Append a PCM16 chunk.

        Args:
            chunk: PCM16 audio in time order
        """
        if not chunk:
            return

        now = self._clock()
        if not self._chunks:
            self._started_at = now
            # The first chunk opens the silence window even when gated
            self._last_audio_at = now

        self._chunks.append(chunk)
        self._size += len(chunk)

        if self._is_speech(chunk):
            self._last_audio_at = now

    def should_flush(self, now: Optional[float] = None) -> bool:
        """Check whether buffered audio forms a complete utterance.

        Args:
            now: Clock reading to compare against (defaults to the clock)

        Returns:
            True if non-empty and the silence or max-duration limit passed
        """
        if not self._chunks:
            return False

        if now is None:
            now = self._clock()

        if now - self._last_audio_at > self._silence_timeout:
            return True

        return self._max_utterance is not None and now - self._started_at > self._max_utterance

    def flush(self) -> bytes:
        """Take all buffered audio as one utterance.

        Returns:
            Concatenated chunks in arrival order, or b"" when empty
        """
        if not self._chunks:
            return b""

        utterance = b"".join(self._chunks)
        logger.debug(
            "Utterance flushed",
            chunks=len(self._chunks),
            bytes=len(utterance)
        )
        self._chunks = []
        self._size = 0
        return utterance

    def clear(self) -> int:
        """Drop buffered audio.

        Returns:
            Number of chunks dropped
        """
        count = len(self._chunks)
        self._chunks = []
        self._size = 0
        return count

    def _is_speech(self, chunk: bytes) -> bool:
        if self._speech_threshold is None:
            return True
        usable = len(chunk) - (len(chunk) % 2)
        if usable == 0:
            return False
        samples = np.frombuffer(chunk, dtype="<i2", count=usable // 2)
        return int(np.max(np.abs(samples.astype(np.int32)))) > self._speech_threshold
