"""Shared test fixtures: no microphone, no speech model, no pty needed."""

from __future__ import annotations

import threading
from collections.abc import Callable
from pathlib import Path

import numpy as np
import pytest

from branchlog.session import KeyPress, SessionController
from branchlog.store import LogStore

SAMPLE_RATE = 16_000


def loud_audio(seconds: float = 1.0, amplitude: float = 6000.0) -> np.ndarray:
    """A 440 Hz tone well above the default energy gate."""
    t = np.arange(int(SAMPLE_RATE * seconds)) / SAMPLE_RATE
    return (amplitude * np.sin(2 * np.pi * 440 * t)).astype(np.int16)


def silent_audio(seconds: float = 1.0) -> np.ndarray:
    return np.zeros(int(SAMPLE_RATE * seconds), dtype=np.int16)


class FakeRecorder:
    """Recorder stub that hands back a canned clip."""

    def __init__(
        self,
        audio: np.ndarray | None = None,
        start_error: BaseException | None = None,
    ) -> None:
        self.audio = loud_audio() if audio is None else audio
        self.start_error = start_error
        self.started = 0
        self.stopped = 0
        self.aborted = 0

    @property
    def sample_rate(self) -> int:
        return SAMPLE_RATE

    def start(self) -> None:
        if self.start_error is not None:
            raise self.start_error
        self.started += 1

    def stop(self) -> np.ndarray:
        self.stopped += 1
        return self.audio

    def abort(self) -> None:
        self.aborted += 1


class FakeEngine:
    """Transcription engine stub."""

    def __init__(
        self,
        text: str = "Investigate the login timeout",
        load_error: BaseException | None = None,
        transcribe_error: BaseException | None = None,
    ) -> None:
        self.text = text
        self.load_error = load_error
        self.transcribe_error = transcribe_error
        self.loads = 0
        self.calls: list[np.ndarray] = []

    def ensure_loaded(self) -> object:
        self.loads += 1
        if self.load_error is not None:
            raise self.load_error
        return self

    def transcribe(
        self, audio: np.ndarray, cancel: threading.Event | None = None
    ) -> str:
        self.calls.append(audio)
        if self.transcribe_error is not None:
            raise self.transcribe_error
        return self.text


class FakeShell:
    """Shell pane stub recording everything written to it."""

    def __init__(self) -> None:
        self.written: list[bytes] = []
        self.output: list[bytes] = []
        self.exit_code: int | None = None
        self.sizes: list[tuple[int, int]] = []
        self.closed = False

    def write(self, data: bytes) -> None:
        self.written.append(data)

    def read_pending(self) -> bytes:
        data = b"".join(self.output)
        self.output.clear()
        return data

    def resize(self, rows: int, cols: int) -> None:
        self.sizes.append((rows, cols))

    def poll_exit(self) -> int | None:
        return self.exit_code

    def close(self) -> None:
        self.closed = True


class ManualSpawner:
    """Collects background jobs so tests decide when they run."""

    def __init__(self) -> None:
        self.pending: list[tuple[Callable[[], None], str]] = []

    def __call__(self, target: Callable[[], None], name: str) -> None:
        self.pending.append((target, name))

    def run_all(self) -> None:
        while self.pending:
            target, _name = self.pending.pop(0)
            target()


def press(controller: SessionController, key: str, character: str | None = None) -> None:
    if character is None and len(key) == 1:
        character = key
    controller.handle_key(KeyPress(key, character))


def type_text(controller: SessionController, text: str) -> None:
    for ch in text:
        press(controller, "space" if ch == " " else ch, ch)


@pytest.fixture
def store(tmp_path: Path) -> LogStore:
    return LogStore(tmp_path / "logs")


@pytest.fixture
def shell() -> FakeShell:
    return FakeShell()


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def recorder() -> FakeRecorder:
    return FakeRecorder()


@pytest.fixture
def spawner() -> ManualSpawner:
    return ManualSpawner()


@pytest.fixture
def make_controller(
    store: LogStore,
    shell: FakeShell,
    engine: FakeEngine,
    recorder: FakeRecorder,
    spawner: ManualSpawner,
) -> Callable[..., SessionController]:
    def factory(branch: str = "feature/x", **kwargs: object) -> SessionController:
        kwargs.setdefault("spawn", spawner)
        return SessionController(
            store,
            branch,
            shell,
            engine,
            lambda: recorder,
            **kwargs,  # type: ignore[arg-type]
        )

    return factory
