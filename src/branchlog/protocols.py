"""Structural type protocols for the session's collaborators.

The controller only talks to these shapes, so tests can swap in fakes
for the microphone, the speech model and the shell.
"""

import threading
from typing import Any, Protocol

import numpy as np


class RecorderLike(Protocol):
    """A microphone capture that fills a buffer until stopped."""

    @property
    def sample_rate(self) -> int: ...

    def start(self) -> None: ...

    def stop(self) -> np.ndarray: ...

    def abort(self) -> None: ...


class TranscriberLike(Protocol):
    """An offline speech-to-text engine, loaded once and reused."""

    def ensure_loaded(self) -> Any: ...

    def transcribe(
        self, audio: np.ndarray, cancel: threading.Event | None = None
    ) -> str: ...


class ShellLike(Protocol):
    """The shell pane as seen by the controller: a byte sink."""

    def write(self, data: bytes) -> None: ...


class ShellProcessLike(ShellLike, Protocol):
    """The full shell pane surface the app drives."""

    def read_pending(self) -> bytes: ...

    def resize(self, rows: int, cols: int) -> None: ...

    def poll_exit(self) -> int | None: ...

    def close(self) -> None: ...
