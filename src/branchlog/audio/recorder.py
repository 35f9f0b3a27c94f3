"""Microphone capture into a pre-allocated buffer.

Samples arrive on PortAudio's callback thread; the callback only copies
them into the CaptureBuffer under a lock. sounddevice is imported when a
recording starts, so importing this module never touches the audio stack.
"""

import threading
from collections.abc import Callable
from typing import Any

import numpy as np

from branchlog.audio.buffer import CaptureBuffer
from branchlog.constants import (
    DEFAULT_BLOCK_MS,
    DEFAULT_MAX_RECORD_SECONDS,
    DEFAULT_SAMPLE_RATE,
)
from branchlog.env import LOGGER
from branchlog.errors import CaptureError

type FrameListener = Callable[[np.ndarray], None]


class MicRecorder:
    """Records mono int16 audio from an input device until stopped."""

    def __init__(
        self,
        max_seconds: float = DEFAULT_MAX_RECORD_SECONDS,
        sample_rate: int = DEFAULT_SAMPLE_RATE,
        device: int | str | None = None,
        block_ms: int = DEFAULT_BLOCK_MS,
        on_frame: FrameListener | None = None,
    ) -> None:
        self._max_seconds = max_seconds
        self._sample_rate = sample_rate
        self._device = device
        self._blocksize = int(sample_rate * block_ms / 1000)
        self._on_frame = on_frame

        self._lock = threading.Lock()
        self._buffer: CaptureBuffer | None = None
        self._stream: Any = None
        self._accepting = False

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    def start(self) -> None:
        """Allocate the capture window and open the input stream.

        MemoryError from the allocation is left to propagate; a bad window
        size and device failures are raised as CaptureError.
        """
        if self._stream is not None:
            raise CaptureError("recorder is already running")

        try:
            buffer = CaptureBuffer.create(self._max_seconds, self._sample_rate)
        except ValueError as exc:
            raise CaptureError(f"invalid capture window: {exc}") from exc

        try:
            import sounddevice as sd
        except OSError as exc:
            raise CaptureError(f"audio backend unavailable: {exc}") from exc

        stream_kwargs: dict[str, Any] = {}
        if self._device is not None:
            stream_kwargs["device"] = self._device
        try:
            stream = sd.InputStream(
                samplerate=self._sample_rate,
                blocksize=self._blocksize,
                channels=1,
                dtype="int16",
                callback=self._audio_callback,
                **stream_kwargs,
            )
        except (sd.PortAudioError, ValueError) as exc:
            raise CaptureError(f"cannot open microphone: {exc}") from exc

        with self._lock:
            self._buffer = buffer
            self._accepting = True
        self._stream = stream
        try:
            stream.start()
        except sd.PortAudioError as exc:
            self._close_stream()
            raise CaptureError(f"cannot start microphone: {exc}") from exc
        LOGGER.debug(
            "Recording at %d Hz (max %.0fs)", self._sample_rate, self._max_seconds
        )

    def _audio_callback(
        self,
        indata: np.ndarray,
        frames: int,
        time_info: Any,
        status: Any,
    ) -> None:
        """PortAudio thread callback: copy samples into the buffer."""
        if status:
            LOGGER.debug("Input stream status: %s", status)
        data = indata.reshape(-1)
        with self._lock:
            if not self._accepting or self._buffer is None:
                return
            self._buffer.append(data)
        if self._on_frame is not None:
            self._on_frame(data.copy())

    def _close_stream(self) -> None:
        with self._lock:
            self._accepting = False
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
        except Exception as exc:
            LOGGER.debug("Ignoring stream close error: %s", exc)

    def stop(self) -> np.ndarray:
        """Stop capturing and return the recorded samples."""
        self._close_stream()
        with self._lock:
            buffer, self._buffer = self._buffer, None
        if buffer is None:
            return np.array([], dtype=np.int16)
        if buffer.dropped:
            LOGGER.info(
                "Capture window full; dropped %.1fs of audio",
                buffer.dropped / self._sample_rate,
            )
        return buffer.snapshot()

    def abort(self) -> None:
        """Stop capturing and discard everything recorded so far."""
        self._close_stream()
        with self._lock:
            self._buffer = None
