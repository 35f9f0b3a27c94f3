"""Offline transcription with a Whisper model via faster-whisper.

TranscriptionEngine locates (and if needed downloads) the model on first
use and keeps the loaded instance for the rest of the process. The
faster-whisper import is deferred so the rest of the tool works without
the ``asr`` extra installed.
"""

import re
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any

import numpy as np

from branchlog.constants import (
    DEFAULT_ASR_MODEL,
    DEFAULT_BEAM_SIZE,
    DEFAULT_COMPUTE_TYPE,
    DEFAULT_SAMPLE_RATE,
)
from branchlog.env import LOGGER, setup_environment, suppress_output
from branchlog.errors import ModelUnavailable, TranscriptionError
from branchlog.model import prepare_model

type ModelLoader = Callable[[Path], Any]

# Whisper emits these for silence or music instead of an empty string.
_ANNOTATION_RE = re.compile(r"\[[^\]]*\]|\([^)]*\)|♪+")


def is_meaningful(text: str) -> bool:
    """Filter out noise so we do not save junk output."""
    cleaned = re.sub(r"[^\w]", "", text)
    return len(cleaned) >= 2


def clean_transcript(text: str) -> str:
    """Strip non-speech annotations and collapse whitespace.

    Returns an empty string when nothing meaningful remains.
    """
    text = _ANNOTATION_RE.sub(" ", text)
    text = " ".join(text.split())
    return text if is_meaningful(text) else ""


def to_float32(audio: np.ndarray) -> np.ndarray:
    """Convert int16 capture samples to the float32 range Whisper expects."""
    if audio.dtype == np.int16:
        return audio.astype(np.float32) / 32768.0
    return audio.astype(np.float32, copy=False)


def load_whisper(path: Path, compute_type: str = DEFAULT_COMPUTE_TYPE) -> Any:
    """Load a CTranslate2 Whisper model from a local directory."""
    setup_environment()
    try:
        from faster_whisper import WhisperModel
    except ImportError as exc:
        raise ModelUnavailable(
            "speech backend not installed (pip install 'branchlog[asr]')"
        ) from exc
    return WhisperModel(str(path), device="auto", compute_type=compute_type)


class TranscriptionEngine:
    """Lazily-loaded speech-to-text engine shared by all voice sessions."""

    def __init__(
        self,
        model: str = DEFAULT_ASR_MODEL,
        model_path: str | None = None,
        language: str | None = None,
        beam_size: int = DEFAULT_BEAM_SIZE,
        loader: ModelLoader | None = None,
    ) -> None:
        self._model_name = model
        self._model_path = model_path
        self._language = language
        self._beam_size = beam_size
        self._loader = loader or load_whisper
        self._lock = threading.Lock()
        self._decode_lock = threading.Lock()
        self._model: Any = None

    @property
    def loaded(self) -> bool:
        return self._model is not None

    def ensure_loaded(self) -> Any:
        """Locate, fetch, and load the model once; later calls are free.

        Concurrent callers block on the same lock, so the model is loaded
        by exactly one of them. A failed attempt may be retried later.
        """
        with self._lock:
            if self._model is not None:
                return self._model
            path = prepare_model(self._model_name, self._model_path)
            LOGGER.info("Loading speech model from %s", path)
            try:
                with suppress_output():
                    model = self._loader(path)
            except ModelUnavailable:
                raise
            except Exception as exc:
                raise ModelUnavailable(f"failed to load {path}: {exc}") from exc
            self._model = model
            return model

    def transcribe(
        self,
        audio: np.ndarray,
        cancel: threading.Event | None = None,
    ) -> str:
        """Transcribe 16 kHz mono audio and return cleaned text.

        Decoding is segment by segment; if *cancel* is set between
        segments the partial text is abandoned and an empty string
        returned. Only one decode runs at a time; a caller arriving while
        an abandoned decode is still winding down waits for it.
        """
        model = self.ensure_loaded()
        samples = to_float32(audio)
        if samples.size == 0:
            return ""
        parts: list[str] = []
        try:
            with self._decode_lock, suppress_output():
                segments, _info = model.transcribe(
                    samples,
                    language=self._language,
                    beam_size=self._beam_size,
                )
                for segment in segments:
                    if cancel is not None and cancel.is_set():
                        return ""
                    parts.append(segment.text)
        except Exception as exc:
            raise TranscriptionError(f"transcription failed: {exc}") from exc
        LOGGER.debug(
            "Transcribed %.1fs of audio into %d segments",
            samples.size / DEFAULT_SAMPLE_RATE,
            len(parts),
        )
        return clean_transcript("".join(parts))
