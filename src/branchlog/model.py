"""Model location: find the speech model on disk, fetching it once if absent."""

import os
import shutil
from pathlib import Path

from branchlog.constants import (
    DEFAULT_ASR_MODEL,
    DEFAULT_MODEL_DIR,
    DEFAULT_MODEL_PATH_ENV,
)
from branchlog.env import LOGGER
from branchlog.errors import ModelUnavailable

# Files a CTranslate2 Whisper conversion needs at load time.
_ALLOW_PATTERNS = [
    "config.json",
    "preprocessor_config.json",
    "model.bin",
    "tokenizer.json",
    "vocabulary.*",
]


def resolve_model_path(
    model: str = DEFAULT_ASR_MODEL,
    model_path: str | None = None,
) -> Path:
    """Determine where the model should live.

    Priority:
    1. *model_path* (``--model-path`` / config ``voice.model_path``)
    2. ``BRANCHLOG_WHISPER_MODEL`` env var
    3. ``~/.branchlog/models/<repo name>``
    """
    if model_path:
        return Path(model_path).expanduser()
    override = os.environ.get(DEFAULT_MODEL_PATH_ENV, "")
    if override:
        return Path(override).expanduser()
    return Path(DEFAULT_MODEL_DIR).expanduser() / model.split("/")[-1]


def fetch_model(model: str, path: Path) -> None:
    """Download *model* from the Hugging Face Hub into *path*.

    Files land in a sibling ``.part`` directory that is renamed into place
    only after the download completes, so an interrupted fetch never leaves
    a half-populated model directory behind.
    """
    from huggingface_hub import snapshot_download

    tmp_path = path.with_name(path.name + ".part")
    LOGGER.info("Speech model not found; downloading %s to %s", model, path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        snapshot_download(
            model,
            local_dir=str(tmp_path),
            allow_patterns=_ALLOW_PATTERNS,
        )
        tmp_path.rename(path)
    except Exception as exc:
        shutil.rmtree(tmp_path, ignore_errors=True)
        raise ModelUnavailable(f"failed to download {model}: {exc}") from exc
    LOGGER.info("Model download complete: %s", path)


def prepare_model(
    model: str = DEFAULT_ASR_MODEL,
    model_path: str | None = None,
) -> Path:
    """Return a local model directory, downloading it on first use."""
    path = resolve_model_path(model, model_path)
    if path.exists():
        if not path.is_dir():
            raise ModelUnavailable(f"model path is not a directory: {path}")
        return path
    fetch_model(model, path)
    return path
