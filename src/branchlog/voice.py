"""Voice capture pipeline: record, then transcribe, then report back.

A VoiceSession owns one record -> transcribe attempt. Recording runs on
the audio backend's callback thread; engine warm-up and transcription run
on background threads. None of them touch session state: every result is
posted as a VoiceOutcome on a queue that the input loop drains. Cancelling
sets a cooperative flag, so a transcription already in flight may finish,
but its outcome is never posted.
"""

import itertools
import queue
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum

import numpy as np

from branchlog.audio.recorder import MicRecorder
from branchlog.audio.vad import VadConfig, VoiceActivityDetector, peak_energy
from branchlog.config import VoiceConfig
from branchlog.constants import (
    DEFAULT_ENERGY_THRESHOLD,
    DEFAULT_MIN_RECORD_SECONDS,
    DEFAULT_SAMPLE_RATE,
    DEFAULT_VAD_FRAME_MS,
)
from branchlog.env import LOGGER
from branchlog.errors import CaptureError, ModelUnavailable, TranscriptionError
from branchlog.protocols import RecorderLike, TranscriberLike

type Spawner = Callable[[Callable[[], None], str], None]


def spawn_thread(target: Callable[[], None], name: str) -> None:
    """Run *target* on a daemon thread."""
    threading.Thread(target=target, name=name, daemon=True).start()


class VoicePhase(StrEnum):
    IDLE = "idle"
    RECORDING = "recording"
    TRANSCRIBING = "transcribing"
    CANCELLED = "cancelled"
    DONE = "done"


class OutcomeKind(StrEnum):
    TRANSCRIPT = "transcript"
    EMPTY = "empty"
    FAILED = "failed"
    MODEL_UNAVAILABLE = "model_unavailable"


@dataclass(frozen=True, slots=True)
class VoiceOutcome:
    """Message posted by a background context for the input loop."""

    session_id: int
    kind: OutcomeKind
    text: str = ""
    error: str = ""


class VoiceSession:
    """One bounded record -> transcribe attempt."""

    _ids = itertools.count(1)

    def __init__(
        self,
        recorder: RecorderLike,
        engine: TranscriberLike,
        results: "queue.Queue[VoiceOutcome]",
        *,
        min_seconds: float = DEFAULT_MIN_RECORD_SECONDS,
        energy_threshold: float = DEFAULT_ENERGY_THRESHOLD,
        spawn: Spawner = spawn_thread,
    ) -> None:
        self.id = next(VoiceSession._ids)
        self._recorder = recorder
        self._engine = engine
        self._results = results
        self._min_seconds = min_seconds
        self._energy_threshold = energy_threshold
        self._spawn = spawn
        self._cancel = threading.Event()
        self._phase = VoicePhase.IDLE
        self._started_at: float | None = None

    @property
    def phase(self) -> VoicePhase:
        return self._phase

    @property
    def active(self) -> bool:
        return self._phase in (VoicePhase.RECORDING, VoicePhase.TRANSCRIBING)

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    @property
    def elapsed(self) -> float:
        if self._started_at is None:
            return 0.0
        return time.monotonic() - self._started_at

    def start(self) -> None:
        """Open the microphone and warm the engine up in the background.

        CaptureError and MemoryError propagate; the session then stays idle.
        """
        if self._phase is not VoicePhase.IDLE:
            return
        self._recorder.start()
        self._phase = VoicePhase.RECORDING
        self._started_at = time.monotonic()
        self._spawn(self._warm_up, f"voice-{self.id}-load")
        LOGGER.debug("Voice session %d recording", self.id)

    def stop(self) -> None:
        """Stop recording and hand the captured audio to the engine."""
        if self._phase is not VoicePhase.RECORDING:
            return
        audio = self._recorder.stop()
        self._phase = VoicePhase.TRANSCRIBING
        LOGGER.debug(
            "Voice session %d captured %.1fs",
            self.id,
            audio.size / self._recorder.sample_rate,
        )
        self._spawn(lambda: self._transcribe(audio), f"voice-{self.id}-asr")

    def cancel(self) -> None:
        """Discard everything; background work stops as soon as it notices."""
        if not self.active:
            return
        self._cancel.set()
        if self._phase is VoicePhase.RECORDING:
            self._recorder.abort()
        self._phase = VoicePhase.CANCELLED
        LOGGER.debug("Voice session %d cancelled", self.id)

    def finish(self) -> None:
        """Mark the session as settled once its outcome has been applied."""
        self._phase = VoicePhase.DONE

    def _post(self, outcome: VoiceOutcome) -> None:
        if self._cancel.is_set():
            return
        self._results.put(outcome)

    def _warm_up(self) -> None:
        try:
            self._engine.ensure_loaded()
        except ModelUnavailable as exc:
            LOGGER.warning("Speech model unavailable: %s", exc)
            self._post(
                VoiceOutcome(self.id, OutcomeKind.MODEL_UNAVAILABLE, error=str(exc))
            )

    def _is_silent(self, audio: np.ndarray) -> bool:
        rate = self._recorder.sample_rate
        if audio.size < int(rate * self._min_seconds):
            return True
        frame = int(rate * DEFAULT_VAD_FRAME_MS / 1000)
        return peak_energy(audio, frame) < self._energy_threshold

    def _transcribe(self, audio: np.ndarray) -> None:
        if self._cancel.is_set():
            return
        if self._is_silent(audio):
            self._post(VoiceOutcome(self.id, OutcomeKind.EMPTY))
            return
        try:
            text = self._engine.transcribe(audio, cancel=self._cancel)
        except ModelUnavailable as exc:
            self._post(
                VoiceOutcome(self.id, OutcomeKind.MODEL_UNAVAILABLE, error=str(exc))
            )
            return
        except TranscriptionError as exc:
            self._post(VoiceOutcome(self.id, OutcomeKind.FAILED, error=str(exc)))
            return
        except Exception as exc:
            LOGGER.exception("Unexpected transcription failure")
            self._post(VoiceOutcome(self.id, OutcomeKind.FAILED, error=str(exc)))
            return

        text = text.strip()
        kind = OutcomeKind.TRANSCRIPT if text else OutcomeKind.EMPTY
        self._post(VoiceOutcome(self.id, kind, text=text))


# ---------------------------------------------------------------------------
# Non-interactive capture (CLI `voice`)
# ---------------------------------------------------------------------------


def record_fixed(recorder: MicRecorder, seconds: float) -> np.ndarray:
    """Record for exactly *seconds* and return the samples."""
    recorder.start()
    try:
        time.sleep(seconds)
    finally:
        audio = recorder.stop()
    return audio


def record_until_silence(voice: VoiceConfig, vad_config: VadConfig) -> np.ndarray:
    """Record until the VAD sees the end of an utterance.

    Gives up after `voice.max_record_seconds`; raises CaptureError if no
    speech was heard by then.
    """
    frames: "queue.Queue[np.ndarray]" = queue.Queue()
    max_seconds = voice.max_record_seconds
    recorder = MicRecorder(
        max_seconds=max_seconds,
        sample_rate=vad_config.sample_rate,
        device=voice.device,
        block_ms=vad_config.frame_ms,
        on_frame=frames.put,
    )
    vad = VoiceActivityDetector(vad_config)
    recorder.start()
    deadline = time.monotonic() + max_seconds
    try:
        while time.monotonic() < deadline:
            try:
                frame = frames.get(timeout=0.05)
            except queue.Empty:
                continue
            if vad.process(frame):
                break
    finally:
        audio = recorder.stop()

    segment = vad.segment()
    if segment is None:
        raise CaptureError("no speech detected")
    start, end = segment
    return audio[start:min(end, audio.size)]


def record_and_transcribe(
    engine: TranscriberLike,
    voice: VoiceConfig,
    seconds: float | None = None,
) -> str:
    """Capture one clip from the microphone and return its transcript.

    Raises CaptureError, ModelUnavailable or TranscriptionError; an empty
    string means nothing intelligible was said.
    """
    engine.ensure_loaded()
    if seconds is not None:
        recorder = MicRecorder(max_seconds=seconds, device=voice.device)
        LOGGER.info("Recording for %.1fs...", seconds)
        audio = record_fixed(recorder, seconds)
    else:
        vad_config = VadConfig(energy_threshold=voice.energy_threshold)
        LOGGER.info("Listening... (stops after a pause)")
        audio = record_until_silence(voice, vad_config)

    frame = int(DEFAULT_SAMPLE_RATE * DEFAULT_VAD_FRAME_MS / 1000)
    if audio.size == 0 or peak_energy(audio, frame) < voice.energy_threshold:
        return ""
    return engine.transcribe(audio).strip()
