"""Energy-based voice activity detection for hands-free capture.

Speech starts after a run of consecutive frames whose RMS energy exceeds
a threshold, and ends once enough consecutive quiet frames accumulate.
Sample offsets of the detected segment (including a short pre-roll) are
tracked so the caller can cut the utterance out of its capture buffer.
"""

import math
from dataclasses import dataclass

import numpy as np

from branchlog.constants import (
    DEFAULT_ENERGY_THRESHOLD,
    DEFAULT_SAMPLE_RATE,
    DEFAULT_VAD_END_SILENCE_MS,
    DEFAULT_VAD_FRAME_MS,
    DEFAULT_VAD_PRE_ROLL_MS,
    DEFAULT_VAD_START_FRAMES,
)


@dataclass(frozen=True, slots=True)
class VadConfig:
    """Immutable VAD configuration."""

    frame_ms: int = DEFAULT_VAD_FRAME_MS
    energy_threshold: float = DEFAULT_ENERGY_THRESHOLD
    start_frames: int = DEFAULT_VAD_START_FRAMES
    end_silence_ms: int = DEFAULT_VAD_END_SILENCE_MS
    pre_roll_ms: int = DEFAULT_VAD_PRE_ROLL_MS
    sample_rate: int = DEFAULT_SAMPLE_RATE

    def __post_init__(self) -> None:
        if self.frame_ms <= 0:
            raise ValueError("frame_ms must be positive")
        if self.start_frames < 1:
            raise ValueError("start_frames must be at least 1")
        if self.energy_threshold < 0:
            raise ValueError("energy_threshold must not be negative")


def rms_energy(frame: np.ndarray) -> float:
    """Root-mean-square amplitude of an int16 frame."""
    if frame.size == 0:
        return 0.0
    samples = frame.astype(np.float32)
    return float(np.sqrt(np.mean(samples * samples)))


def peak_energy(audio: np.ndarray, frame_samples: int) -> float:
    """Highest per-frame RMS energy across *audio*."""
    if audio.size == 0 or frame_samples <= 0:
        return 0.0
    usable = audio.size - audio.size % frame_samples
    if usable == 0:
        return rms_energy(audio)
    frames = audio[:usable].astype(np.float32).reshape(-1, frame_samples)
    return float(np.sqrt(np.mean(frames * frames, axis=1)).max())


class VoiceActivityDetector:
    """Energy VAD state machine for end-of-utterance detection."""

    __slots__ = (
        "_config",
        "_frame_samples",
        "_silence_threshold",
        "_pre_roll_samples",
        "_residual",
        "_processed",
        "_voiced_run",
        "_silence_count",
        "_speech_detected",
        "_speech_start",
        "_speech_end",
        "_state",
    )

    def __init__(self, config: VadConfig) -> None:
        self._config = config
        self._frame_samples = int(config.sample_rate * config.frame_ms / 1000)
        self._silence_threshold = int(
            math.ceil(config.end_silence_ms / config.frame_ms)
        )
        self._pre_roll_samples = int(config.sample_rate * config.pre_roll_ms / 1000)
        self.reset()

    @property
    def state(self) -> str:
        """Current VAD state: 'speech' or 'silence'."""
        return self._state

    @property
    def speech_detected(self) -> bool:
        """Whether speech has started in the current utterance."""
        return self._speech_detected

    @property
    def frame_samples(self) -> int:
        return self._frame_samples

    @property
    def processed_samples(self) -> int:
        return self._processed

    def segment(self) -> tuple[int, int] | None:
        """Sample range of the utterance, or None before speech starts.

        While speech is still running the range ends at the last processed
        sample.
        """
        if self._speech_start is None:
            return None
        end = self._speech_end if self._speech_end is not None else self._processed
        return self._speech_start, end

    def process(self, frame: np.ndarray) -> bool:
        """Feed captured samples; return True once the utterance has ended."""
        if frame.size == 0 or self._speech_end is not None:
            return self._speech_end is not None

        self._residual = (
            frame.copy()
            if self._residual.size == 0
            else np.concatenate([self._residual, frame])
        )

        while self._residual.size >= self._frame_samples:
            chunk = self._residual[: self._frame_samples]
            self._residual = self._residual[self._frame_samples :]
            frame_start = self._processed
            self._processed += self._frame_samples
            voiced = rms_energy(chunk) >= self._config.energy_threshold

            if not self._speech_detected:
                self._voiced_run = self._voiced_run + 1 if voiced else 0
                if self._voiced_run >= self._config.start_frames:
                    self._speech_detected = True
                    self._state = "speech"
                    run_start = frame_start - (self._voiced_run - 1) * self._frame_samples
                    self._speech_start = max(0, run_start - self._pre_roll_samples)
                    self._silence_count = 0
            elif voiced:
                self._state = "speech"
                self._silence_count = 0
            else:
                self._state = "silence"
                self._silence_count += 1
                if self._silence_count >= self._silence_threshold:
                    self._speech_end = self._processed
                    self._residual = np.array([], dtype=np.int16)
                    return True

        return False

    def reset(self) -> None:
        """Clear state for a new utterance."""
        self._residual = np.array([], dtype=np.int16)
        self._processed = 0
        self._voiced_run = 0
        self._silence_count = 0
        self._speech_detected = False
        self._speech_start: int | None = None
        self._speech_end: int | None = None
        self._state = "silence"
