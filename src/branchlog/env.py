"""Environment setup, output suppression, and logging for branchlog.

setup_environment() should be called before the transcription backend is
imported so that download progress bars and library warnings stay out of
the terminal UI.
"""

import contextlib
import io
import logging
import os
import threading
import warnings
from collections.abc import Generator

LOGGER = logging.getLogger("branchlog")

# sys.stdout and sys.stderr are process-wide; one redirect at a time.
_REDIRECT_LOCK = threading.RLock()


def setup_environment() -> None:
    """Configure warning filters and env vars before library imports."""
    warnings.filterwarnings("ignore", category=UserWarning)
    warnings.filterwarnings("ignore", category=DeprecationWarning)
    warnings.filterwarnings("ignore", category=FutureWarning)

    os.environ.setdefault("HF_HUB_DISABLE_PROGRESS_BARS", "1")
    os.environ.setdefault("HF_HUB_DISABLE_TELEMETRY", "1")


@contextlib.contextmanager
def suppress_output() -> Generator[None, None, None]:
    """Hide noisy library prints during background inference.

    Python-level redirect only: the terminal UI owns fd 2, so the fd-level
    dup2 trick would fight with it. Callers on other threads wait until the
    current redirect is undone, so the streams are always restored in order.
    """
    with (
        _REDIRECT_LOCK,
        contextlib.redirect_stdout(io.StringIO()),
        contextlib.redirect_stderr(io.StringIO()),
    ):
        yield
