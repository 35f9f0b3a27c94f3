"""Default configuration values for branchlog."""

from typing import Final

# Storage
DEFAULT_STORE_DIRNAME: Final = ".branchlog"
DEFAULT_LOGS_SUBDIR: Final = "logs"
DEFAULT_STORE_DIR_ENV: Final = "BRANCHLOG_HOME"
BRANCH_KEY_SEPARATOR: Final = "__"
DEFAULT_LOG_FILENAME: Final = "branchlog.log"

# Config
DEFAULT_CONFIG_DIR: Final = "~/.config/branchlog"
DEFAULT_CONFIG_DIR_ENV: Final = "BRANCHLOG_CONFIG_DIR"
DEFAULT_CONFIG_FILE: Final = "config.json"

# Transcription model
DEFAULT_ASR_MODEL: Final = "Systran/faster-whisper-base"
DEFAULT_MODEL_DIR: Final = "~/.branchlog/models"
DEFAULT_MODEL_PATH_ENV: Final = "BRANCHLOG_WHISPER_MODEL"
DEFAULT_COMPUTE_TYPE: Final = "int8"
DEFAULT_BEAM_SIZE: Final = 1

# Audio capture
DEFAULT_SAMPLE_RATE: Final = 16_000
DEFAULT_BLOCK_MS: Final = 20
DEFAULT_MAX_RECORD_SECONDS: Final = 120.0
DEFAULT_MIN_RECORD_SECONDS: Final = 0.3
DEFAULT_ENERGY_THRESHOLD: Final = 300.0

# Hands-free capture (CLI `voice` without --seconds)
DEFAULT_VAD_FRAME_MS: Final = 20
DEFAULT_VAD_START_FRAMES: Final = 3
DEFAULT_VAD_END_SILENCE_MS: Final = 800
DEFAULT_VAD_PRE_ROLL_MS: Final = 200

# Interactive session
DEFAULT_FOCUS_TOGGLE_KEY: Final = "ctrl+t"
DEFAULT_POLL_INTERVAL: Final = 0.05
DEFAULT_BRANCH_POLL_INTERVAL: Final = 2.0
DEFAULT_SHELL_SCROLLBACK: Final = 1000
DEFAULT_SHELL: Final = "/bin/bash"
DEFAULT_SHELL_ROWS: Final = 24
DEFAULT_SHELL_COLS: Final = 80

# Exit statuses
EXIT_OK: Final = 0
EXIT_FAILURE: Final = 1
EXIT_USAGE: Final = 2
EXIT_OUT_OF_MEMORY: Final = 70
