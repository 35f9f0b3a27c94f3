"""Pre-allocated buffer for int16 capture samples.

The whole capture window is allocated when a voice session starts, so
the audio callback never reallocates. Once full, further samples are
dropped rather than overwriting older audio.
"""

from typing import Self

import numpy as np


class CaptureBuffer:
    """Linear audio buffer with O(1) append and bounded memory."""

    __slots__ = ("_buffer", "_filled", "_dropped", "_sample_rate")

    def __init__(self, buffer: np.ndarray, sample_rate: int) -> None:
        self._buffer = buffer
        self._filled = 0
        self._dropped = 0
        self._sample_rate = sample_rate

    @classmethod
    def create(cls, max_seconds: float, sample_rate: int) -> Self:
        """Create a buffer sized for the given duration.

        Raises MemoryError if the window cannot be allocated.
        """
        size = int(max_seconds * sample_rate)
        if size <= 0:
            raise ValueError("max_seconds must be positive")
        return cls(np.zeros(size, dtype=np.int16), sample_rate)

    @property
    def filled_seconds(self) -> float:
        return self._filled / self._sample_rate

    @property
    def filled(self) -> int:
        return self._filled

    @property
    def dropped(self) -> int:
        """Samples discarded because the buffer was already full."""
        return self._dropped

    @property
    def full(self) -> bool:
        return self._filled >= len(self._buffer)

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def max_samples(self) -> int:
        return len(self._buffer)

    def append(self, frame: np.ndarray) -> int:
        """Copy as much of *frame* as fits; return the number of samples kept."""
        if frame.size == 0:
            return 0
        room = len(self._buffer) - self._filled
        n = min(room, frame.size)
        if n > 0:
            self._buffer[self._filled : self._filled + n] = frame[:n]
            self._filled += n
        self._dropped += frame.size - n
        return n

    def snapshot(self) -> np.ndarray:
        """Return the captured samples as a contiguous copy."""
        return self._buffer[: self._filled].copy()

    def reset(self) -> None:
        """Discard captured audio."""
        self._filled = 0
        self._dropped = 0
