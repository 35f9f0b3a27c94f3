"""The shell pane: an interactive shell on a pseudo-terminal.

ShellPane forks the user's shell onto a pty and pumps its output through
a reader thread into a queue, so the UI thread only ever does
non-blocking reads. ShellScreen is a small line-oriented terminal model
(carriage return, backspace, cursor left/right, erase-line and SGR
colors) that the app renders with rich. Full-screen programs are not
emulated; pagers are disabled in the child environment instead.
"""

import codecs
import fcntl
import os
import pty
import queue
import re
import signal
import struct
import termios
import threading
from collections import deque
from pathlib import Path
from typing import Self

from rich.text import Text

from branchlog.constants import (
    DEFAULT_SHELL,
    DEFAULT_SHELL_COLS,
    DEFAULT_SHELL_ROWS,
    DEFAULT_SHELL_SCROLLBACK,
)
from branchlog.env import LOGGER

# ---------------------------------------------------------------------------
# Key encoding
# ---------------------------------------------------------------------------

_SPECIAL_KEYS: dict[str, bytes] = {
    "enter": b"\r",
    "tab": b"\t",
    "shift+tab": b"\x1b[Z",
    "backspace": b"\x7f",
    "escape": b"\x1b",
    "left": b"\x1b[D",
    "right": b"\x1b[C",
    "up": b"\x1b[A",
    "down": b"\x1b[B",
    "home": b"\x1b[H",
    "end": b"\x1b[F",
    "pageup": b"\x1b[5~",
    "pagedown": b"\x1b[6~",
    "delete": b"\x1b[3~",
    "insert": b"\x1b[2~",
    "f1": b"\x1bOP",
    "f2": b"\x1bOQ",
    "f3": b"\x1bOR",
    "f4": b"\x1bOS",
    "f5": b"\x1b[15~",
    "f6": b"\x1b[17~",
    "f7": b"\x1b[18~",
    "f8": b"\x1b[19~",
    "f9": b"\x1b[20~",
    "f10": b"\x1b[21~",
    "f11": b"\x1b[23~",
    "f12": b"\x1b[24~",
}

_CTRL_NAMED: dict[str, int] = {
    "@": 0x00,
    "space": 0x00,
    "left_square_bracket": 0x1B,
    "backslash": 0x1C,
    "right_square_bracket": 0x1D,
    "circumflex_accent": 0x1E,
    "underscore": 0x1F,
}


def encode_key(key: str, character: str | None = None) -> bytes | None:
    """Translate a key event into the bytes a terminal would send.

    Returns None for keys with no terminal encoding.
    """
    if key in _SPECIAL_KEYS:
        return _SPECIAL_KEYS[key]
    if key.startswith("alt+"):
        inner = encode_key(key[4:], character if character else None)
        return b"\x1b" + inner if inner is not None else None
    if key.startswith("ctrl+"):
        name = key[5:]
        if len(name) == 1 and name.isalpha():
            return bytes([ord(name.upper()) - ord("A") + 1])
        code = _CTRL_NAMED.get(name)
        return bytes([code]) if code is not None else None
    if character and character.isprintable():
        return character.encode("utf-8")
    if len(key) == 1 and key.isprintable():
        return key.encode("utf-8")
    return None


# ---------------------------------------------------------------------------
# Pseudo-terminal process
# ---------------------------------------------------------------------------


def _set_winsize(fd: int, rows: int, cols: int) -> None:
    fcntl.ioctl(fd, termios.TIOCSWINSZ, struct.pack("HHHH", rows, cols, 0, 0))


class ShellPane:
    """A long-lived shell process attached to a pty master."""

    def __init__(self, pid: int, fd: int) -> None:
        self._pid = pid
        self._fd = fd
        self._output: "queue.Queue[bytes]" = queue.Queue()
        self._closed = False
        self._exit_code: int | None = None
        self._reader = threading.Thread(
            target=self._read_loop, name="shell-reader", daemon=True
        )
        self._reader.start()

    @classmethod
    def spawn(
        cls,
        cwd: Path,
        rows: int = DEFAULT_SHELL_ROWS,
        cols: int = DEFAULT_SHELL_COLS,
        shell: str | None = None,
    ) -> Self:
        """Fork the user's shell in *cwd* on a fresh pty."""
        program = shell or os.environ.get("SHELL") or DEFAULT_SHELL
        env = dict(os.environ)
        env.update(
            {
                "TERM": "xterm-256color",
                "PAGER": "cat",
                "GIT_PAGER": "cat",
                "BRANCHLOG_SHELL": "1",
            }
        )
        pid, fd = pty.fork()
        if pid == 0:  # child
            try:
                os.chdir(cwd)
                os.execvpe(program, [program], env)
            finally:
                os._exit(127)
        _set_winsize(fd, rows, cols)
        LOGGER.debug("Spawned %s (pid %d) in %s", program, pid, cwd)
        return cls(pid, fd)

    @property
    def pid(self) -> int:
        return self._pid

    @property
    def alive(self) -> bool:
        return not self._closed and self._exit_code is None

    def _read_loop(self) -> None:
        while True:
            try:
                data = os.read(self._fd, 4096)
            except OSError:
                # EIO once the child side of the pty is gone
                break
            if not data:
                break
            self._output.put(data)

    def read_pending(self) -> bytes:
        """Drain everything the shell has written so far, without blocking."""
        chunks: list[bytes] = []
        while True:
            try:
                chunks.append(self._output.get_nowait())
            except queue.Empty:
                break
        return b"".join(chunks)

    def write(self, data: bytes) -> None:
        """Send raw keystroke bytes; dropped once the shell has exited."""
        if not self.alive or not data:
            return
        view = memoryview(data)
        while view:
            try:
                written = os.write(self._fd, view)
            except OSError as exc:
                LOGGER.warning("Shell input closed: %s", exc)
                self._closed = True
                return
            view = view[written:]

    def resize(self, rows: int, cols: int) -> None:
        if self._closed or rows <= 0 or cols <= 0:
            return
        try:
            _set_winsize(self._fd, rows, cols)
        except OSError as exc:
            LOGGER.debug("Resize failed: %s", exc)

    def poll_exit(self) -> int | None:
        """Return the exit code once the shell has terminated, else None."""
        if self._exit_code is not None:
            return self._exit_code
        try:
            pid, status = os.waitpid(self._pid, os.WNOHANG)
        except ChildProcessError:
            self._exit_code = -1
            return self._exit_code
        if pid == 0:
            return None
        self._exit_code = os.waitstatus_to_exitcode(status)
        return self._exit_code

    def close(self) -> None:
        """Hang up the shell and release the pty."""
        if self._closed:
            return
        self._closed = True
        if self.poll_exit() is None:
            try:
                os.kill(self._pid, signal.SIGHUP)
            except ProcessLookupError:
                pass
        try:
            os.close(self._fd)
        except OSError:
            pass


# ---------------------------------------------------------------------------
# Output model
# ---------------------------------------------------------------------------

_ESCAPE_RE = re.compile(
    r"\x1b\[(?P<params>[0-?]*)[ -/]*(?P<final>[@-~])"  # CSI
    r"|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)"  # OSC
    r"|\x1b[()][0-9A-Za-z]"  # charset selection
    r"|\x1b[=>78cDEHM]"
)

type Cell = tuple[str, str]


def _count(params: str) -> int:
    """First numeric CSI parameter, defaulting to 1."""
    head = params.split(";", 1)[0]
    return int(head) if head.isdigit() and int(head) > 0 else 1


class ShellScreen:
    """Bounded scrollback of shell output lines with SGR styling."""

    def __init__(self, max_lines: int = DEFAULT_SHELL_SCROLLBACK) -> None:
        self._lines: deque[list[Cell]] = deque([[]], maxlen=max_lines)
        self._col = 0
        self._sgr = ""
        self._pending = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    @property
    def line_count(self) -> int:
        return len(self._lines)

    def feed(self, data: bytes) -> None:
        """Apply a chunk of raw output."""
        text = self._pending + self._decoder.decode(data)
        self._pending = ""
        # Hold back an escape sequence split across reads.
        tail = text.rfind("\x1b")
        if tail != -1 and not _ESCAPE_RE.match(text, tail) and len(text) - tail < 32:
            text, self._pending = text[:tail], text[tail:]

        pos = 0
        for match in _ESCAPE_RE.finditer(text):
            self._feed_plain(text[pos : match.start()])
            if match.group("final") is not None:
                self._apply_csi(match.group("params"), match.group("final"))
            pos = match.end()
        self._feed_plain(text[pos:])

    def _feed_plain(self, text: str) -> None:
        for ch in text:
            if ch == "\n":
                self._lines.append([])
                self._col = 0
            elif ch == "\r":
                self._col = 0
            elif ch == "\b":
                self._col = max(0, self._col - 1)
            elif ch == "\t":
                for _ in range(8 - self._col % 8):
                    self._put(" ")
            elif ch >= " " and ch != "\x7f":
                self._put(ch)

    def _put(self, ch: str) -> None:
        line = self._lines[-1]
        cell = (ch, self._sgr)
        if self._col < len(line):
            line[self._col] = cell
        else:
            line.extend([(" ", "")] * (self._col - len(line)))
            line.append(cell)
        self._col += 1

    def _apply_csi(self, params: str, final: str) -> None:
        line = self._lines[-1]
        if final == "m":
            if params in ("", "0"):
                self._sgr = ""
                return
            if params.startswith("0;"):
                self._sgr, params = "", params[2:]
            self._sgr = f"{self._sgr};{params}" if self._sgr else params
        elif final == "K":
            if params in ("", "0"):
                del line[self._col :]
            elif params == "2":
                line.clear()
        elif final == "D":
            self._col = max(0, self._col - _count(params))
        elif final == "C":
            self._col += _count(params)
        elif final == "G":
            self._col = max(0, _count(params) - 1)
        elif final == "J" and params == "2":
            self._lines.clear()
            self._lines.append([])
            self._col = 0
        elif final == "P":
            del line[self._col : self._col + _count(params)]

    def lines(self, height: int) -> list[Text]:
        """Render the last *height* lines as rich Text."""
        if height <= 0:
            return []
        tail = list(self._lines)[-height:]
        return [self._render_line(cells) for cells in tail]

    @staticmethod
    def _render_line(cells: list[Cell]) -> Text:
        parts: list[str] = []
        current = ""
        for ch, sgr in cells:
            if sgr != current:
                parts.append("\x1b[0m")
                if sgr:
                    parts.append(f"\x1b[{sgr}m")
                current = sgr
            parts.append(ch)
        if current:
            parts.append("\x1b[0m")
        return Text.from_ansi("".join(parts), end="")
