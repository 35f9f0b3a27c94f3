"""User configuration loaded from ~/.config/branchlog/config.json.

The config file supports three optional subtrees::

    {
      "keys": {"focus_toggle": "ctrl+t", "voice": "v", "delete_confirm": "y"},
      "search": {"case_sensitive": false},
      "voice": {"model": "Systran/faster-whisper-base", "language": "ko"}
    }

Unknown keys are ignored and malformed values fall back to the defaults,
so a half-broken file never prevents the tool from starting.
"""

import json
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from branchlog.constants import (
    DEFAULT_ASR_MODEL,
    DEFAULT_CONFIG_DIR,
    DEFAULT_CONFIG_DIR_ENV,
    DEFAULT_CONFIG_FILE,
    DEFAULT_ENERGY_THRESHOLD,
    DEFAULT_FOCUS_TOGGLE_KEY,
    DEFAULT_MAX_RECORD_SECONDS,
    DEFAULT_MIN_RECORD_SECONDS,
)
from branchlog.env import LOGGER

# Fields that size allocations; zero or negative values are rejected.
_POSITIVE_FIELDS = frozenset({"max_record_seconds"})


@dataclass(frozen=True, slots=True)
class KeyMap:
    """Key names (Textual notation) bound to log-panel commands."""

    focus_toggle: str = DEFAULT_FOCUS_TOGGLE_KEY
    new: str = "i"
    edit: str = "e"
    delete: str = "d"
    search: str = "/"
    voice: str = "v"
    reload: str = "r"
    quit: str = "q"
    confirm: str = "enter"
    cancel: str = "escape"
    delete_confirm: str = "y"
    up: tuple[str, ...] = ("up", "k")
    down: tuple[str, ...] = ("down", "j")
    top: tuple[str, ...] = ("home", "g")
    bottom: tuple[str, ...] = ("end", "G")
    page_up: tuple[str, ...] = ("pageup",)
    page_down: tuple[str, ...] = ("pagedown",)


@dataclass(frozen=True, slots=True)
class SearchConfig:
    """Search filter policy."""

    case_sensitive: bool = False


@dataclass(frozen=True, slots=True)
class VoiceConfig:
    """Capture and transcription settings."""

    model: str = DEFAULT_ASR_MODEL
    model_path: str | None = None
    language: str | None = None
    # sounddevice accepts either an index or a name substring
    device: int | str | None = None
    max_record_seconds: float = DEFAULT_MAX_RECORD_SECONDS
    min_record_seconds: float = DEFAULT_MIN_RECORD_SECONDS
    energy_threshold: float = DEFAULT_ENERGY_THRESHOLD


@dataclass(frozen=True, slots=True)
class BranchlogConfig:
    """Top-level configuration."""

    keys: KeyMap = field(default_factory=KeyMap)
    search: SearchConfig = field(default_factory=SearchConfig)
    voice: VoiceConfig = field(default_factory=VoiceConfig)


def config_path(path: str | None = None) -> Path:
    """Resolve the config file location.

    Priority: explicit *path*, ``$BRANCHLOG_CONFIG_DIR/config.json``,
    then ``~/.config/branchlog/config.json``.
    """
    if path is not None:
        return Path(path).expanduser()
    config_dir = Path(
        os.environ.get(DEFAULT_CONFIG_DIR_ENV, "") or DEFAULT_CONFIG_DIR
    ).expanduser()
    return config_dir / DEFAULT_CONFIG_FILE


def _coerce_section[T](cls: type[T], raw: Any, section: str) -> T:
    """Build a frozen section from a dict, keeping only well-typed fields."""
    if not isinstance(raw, dict):
        return cls()
    defaults = cls()
    values: dict[str, Any] = {}
    for f in fields(cls):
        if f.name not in raw:
            continue
        value = raw[f.name]
        current = getattr(defaults, f.name)
        if isinstance(current, tuple):
            if isinstance(value, str):
                value = (value,)
            elif isinstance(value, list) and all(isinstance(v, str) for v in value):
                value = tuple(value)
            else:
                LOGGER.debug("Ignoring %s.%s: expected key list", section, f.name)
                continue
        elif isinstance(current, bool):
            if not isinstance(value, bool):
                LOGGER.debug("Ignoring %s.%s: expected bool", section, f.name)
                continue
        elif isinstance(current, (int, float)) and not isinstance(current, bool):
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                LOGGER.debug("Ignoring %s.%s: expected number", section, f.name)
                continue
            if f.name in _POSITIVE_FIELDS and value <= 0:
                LOGGER.warning("Ignoring %s.%s: must be positive", section, f.name)
                continue
            value = type(current)(value)
        elif current is None:
            if value is not None and not isinstance(value, (str, int)):
                LOGGER.debug("Ignoring %s.%s: unexpected type", section, f.name)
                continue
        elif not isinstance(value, type(current)):
            LOGGER.debug("Ignoring %s.%s: unexpected type", section, f.name)
            continue
        values[f.name] = value
    return cls(**values)


def load_config(path: str | None = None) -> BranchlogConfig:
    """Load branchlog configuration from a JSON file.

    Returns a default config if the file does not exist or does not hold
    a JSON object. A file that is not valid JSON is logged and ignored.
    """
    resolved = config_path(path)
    if not resolved.exists():
        return BranchlogConfig()

    try:
        with open(resolved, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as exc:
        LOGGER.warning("Ignoring unreadable config %s: %s", resolved, exc)
        return BranchlogConfig()

    if not isinstance(data, dict):
        return BranchlogConfig()

    return BranchlogConfig(
        keys=_coerce_section(KeyMap, data.get("keys"), "keys"),
        search=_coerce_section(SearchConfig, data.get("search"), "search"),
        voice=_coerce_section(VoiceConfig, data.get("voice"), "voice"),
    )
