"""CLI entry point for branchlog.

Parses arguments, configures logging, and dispatches to a subcommand.
setup_environment() runs first so that Hugging Face and CTranslate2 pick
up their environment variables before either is imported.

Subcommands:
    (none)   interactive TUI: shell pane plus the branch log panel
    add      append a typed entry to the current branch's log
    list     print the current branch's log
    voice    record one voice note and append its transcript
    devices  list audio input devices
"""

import argparse
import logging
import os
from dataclasses import replace
from pathlib import Path

from branchlog.config import BranchlogConfig, VoiceConfig, load_config
from branchlog.constants import (
    DEFAULT_LOG_FILENAME,
    EXIT_FAILURE,
    EXIT_OK,
    EXIT_OUT_OF_MEMORY,
    EXIT_USAGE,
)
from branchlog.env import LOGGER, setup_environment
from branchlog.errors import BranchlogError
from branchlog.git import current_branch, repo_root
from branchlog.store import LogStore, default_store_root

_QUIET_LOGGERS = ("huggingface_hub", "httpx", "faster_whisper")


def _device_arg(value: str) -> int | str:
    """sounddevice takes a device index or a name substring."""
    return int(value) if value.isdigit() else value


def _add_voice_args(parser: argparse.ArgumentParser, default: object = None) -> None:
    """Add speech arguments shared by the TUI and `voice`."""
    parser.add_argument(
        "--model", default=default, help="Whisper model repo (default: from config)"
    )
    parser.add_argument(
        "--model-path",
        default=default,
        help="Local model directory (skips the download)",
    )
    parser.add_argument(
        "--language", default=default, help="Spoken language (default: auto-detect)"
    )
    parser.add_argument(
        "--device",
        type=_device_arg,
        default=default,
        help="Audio input device index or name",
    )


def build_arg_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser with subcommand support."""
    parser = argparse.ArgumentParser(
        prog="branchlog",
        description="Per-branch work log with a built-in shell and voice notes",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Config file (default: ~/.config/branchlog/config.json)",
    )
    parser.add_argument(
        "--store-dir",
        default=None,
        help="Log storage directory (default: <repo>/.branchlog/logs)",
    )
    _add_voice_args(parser)

    subparsers = parser.add_subparsers(dest="subcommand")

    add_parser = subparsers.add_parser("add", help="Add an entry to this branch's log")
    add_parser.add_argument("text", nargs="+", help="Entry text")

    subparsers.add_parser("list", help="Show this branch's log")

    voice_parser = subparsers.add_parser(
        "voice", help="Record a voice note and add its transcript"
    )
    _add_voice_args(voice_parser, default=argparse.SUPPRESS)
    voice_parser.add_argument(
        "--seconds",
        type=float,
        default=None,
        help="Record for a fixed duration (default: stop after a pause)",
    )

    subparsers.add_parser("devices", help="List audio input devices")

    return parser


def list_audio_devices() -> None:
    """Display available audio input devices."""
    import sounddevice as sd
    from rich.console import Console
    from rich.table import Table

    console = Console()
    table = Table(title="Audio Input Devices")
    table.add_column("ID", style="cyan")
    table.add_column("Device", style="white")
    table.add_column("Default", style="green")
    for i, d in enumerate(sd.query_devices()):
        if d["max_input_channels"] > 0:
            is_default = "Yes" if i == sd.default.device[0] else ""
            table.add_row(str(i), d["name"], is_default)
    console.print(table)


def _setup_logging() -> None:
    from rich.console import Console
    from rich.logging import RichHandler

    log_level = os.environ.get("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        handlers=[
            RichHandler(
                console=Console(stderr=True),
                show_time=False,
                show_path=False,
                rich_tracebacks=False,
            )
        ],
    )
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _log_to_file(path: Path) -> None:
    """Move logging off the terminal while the TUI owns it."""
    from rich.logging import RichHandler

    root = logging.getLogger()
    for handler in list(root.handlers):
        if isinstance(handler, RichHandler):
            root.removeHandler(handler)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler: logging.Handler = logging.FileHandler(path, encoding="utf-8")
    except OSError:
        file_handler = logging.NullHandler()
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    )
    root.addHandler(file_handler)


def format_timestamp(value: str) -> str:
    """Render a stored ISO timestamp for listings."""
    from datetime import datetime

    try:
        return datetime.fromisoformat(value).strftime("%Y-%m-%d %H:%M:%S")
    except ValueError:
        return value


def _voice_config(config: BranchlogConfig, args: argparse.Namespace) -> VoiceConfig:
    """Config-file voice settings with command-line overrides applied."""
    overrides = {
        name: getattr(args, name)
        for name in ("model", "model_path", "language", "device")
        if getattr(args, name, None) is not None
    }
    return replace(config.voice, **overrides)


def _open_store(args: argparse.Namespace) -> tuple[Path, str, LogStore]:
    root = repo_root()
    branch = current_branch(root)
    store_root = Path(args.store_dir).expanduser() if args.store_dir else default_store_root(root)
    return root, branch, LogStore(store_root)


def _run_add(args: argparse.Namespace) -> int:
    from rich.console import Console

    text = " ".join(args.text).strip()
    if not text:
        LOGGER.error("Entry text is empty")
        return EXIT_USAGE
    _root, branch, store = _open_store(args)
    entry = store.append(branch, text, source="typed")
    Console().print(f"Added [cyan]{entry.id[:8]}[/cyan] to [bold]{branch}[/bold]")
    return EXIT_OK


def _run_list(args: argparse.Namespace) -> int:
    from rich.console import Console
    from rich.text import Text

    _root, branch, store = _open_store(args)
    entries = store.entries(branch)
    console = Console()
    if not entries:
        console.print(Text(f"No entries on {branch}", style="dim"))
        return EXIT_OK
    for entry in entries:
        line = Text()
        line.append(format_timestamp(entry.created_at), style="cyan")
        line.append("  ")
        if entry.source == "voice":
            line.append("(voice) ", style="magenta")
        line.append(entry.text)
        console.print(line)
    return EXIT_OK


def _run_voice(args: argparse.Namespace, config: BranchlogConfig) -> int:
    from rich.console import Console

    from branchlog.transcribe import TranscriptionEngine
    from branchlog.voice import record_and_transcribe

    _root, branch, store = _open_store(args)
    voice = _voice_config(config, args)
    engine = TranscriptionEngine(
        model=voice.model,
        model_path=voice.model_path,
        language=voice.language,
    )
    seconds = args.seconds
    if seconds is not None and seconds <= 0:
        LOGGER.error("--seconds must be positive")
        return EXIT_USAGE
    text = record_and_transcribe(engine, voice, seconds)
    if not text:
        LOGGER.warning("No speech detected; nothing saved")
        return EXIT_FAILURE
    entry = store.append(branch, text, source="voice")
    Console().print(f"Added [cyan]{entry.id[:8]}[/cyan] to [bold]{branch}[/bold]: {text}")
    return EXIT_OK


def _run_tui(args: argparse.Namespace, config: BranchlogConfig) -> int:
    """Run the interactive session (Textual TUI)."""
    from branchlog.app import BranchlogApp
    from branchlog.audio.recorder import MicRecorder
    from branchlog.session import SessionController
    from branchlog.shell import ShellPane
    from branchlog.transcribe import TranscriptionEngine

    root, branch, store = _open_store(args)
    _log_to_file(store.root.parent / DEFAULT_LOG_FILENAME)

    voice = _voice_config(config, args)
    engine = TranscriptionEngine(
        model=voice.model,
        model_path=voice.model_path,
        language=voice.language,
    )

    def recorder_factory() -> MicRecorder:
        return MicRecorder(max_seconds=voice.max_record_seconds, device=voice.device)

    try:
        shell = ShellPane.spawn(root)
    except OSError as exc:
        LOGGER.error("Failed to start shell: %s", exc)
        return EXIT_FAILURE

    controller = SessionController(
        store,
        branch,
        shell,
        engine,
        recorder_factory,
        keys=config.keys,
        search=config.search,
        voice=voice,
    )
    app = BranchlogApp(controller, shell, resolve_branch=lambda: current_branch(root))
    try:
        app.run()
    finally:
        shell.close()
    return app.return_code or EXIT_OK


def main(argv: list[str] | None = None) -> int:
    """CLI entry point. Returns exit code."""
    # Must run before huggingface_hub / faster_whisper imports.
    setup_environment()
    _setup_logging()

    parser = build_arg_parser()
    args = parser.parse_args(argv)
    config = load_config(args.config)

    try:
        if args.subcommand == "devices":
            list_audio_devices()
            return EXIT_OK
        if args.subcommand == "add":
            return _run_add(args)
        if args.subcommand == "list":
            return _run_list(args)
        if args.subcommand == "voice":
            return _run_voice(args, config)
        return _run_tui(args, config)
    except BranchlogError as exc:
        LOGGER.error("%s", exc)
        return EXIT_FAILURE
    except MemoryError:
        LOGGER.critical("Out of memory")
        return EXIT_OUT_OF_MEMORY
