"""Textual TUI: a live shell beside the current branch's work log.

Every key press goes to SessionController, which decides whether it is
shell input or a log-panel command; the focus toggle (ctrl+t by default)
switches between the two. No Textual bindings are active, so ctrl+c and
friends reach the shell. A 50 ms timer pumps shell output and voice
results, and a background worker follows branch checkouts.
"""

from collections.abc import Callable

from rich.text import Text
from textual import work
from textual.app import App, ComposeResult
from textual.containers import Horizontal, Vertical
from textual.events import Key, Resize
from textual.screen import Screen
from textual.widgets import Header, Static

from branchlog.constants import (
    DEFAULT_BRANCH_POLL_INTERVAL,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_SHELL_SCROLLBACK,
    EXIT_OUT_OF_MEMORY,
)
from branchlog.env import LOGGER
from branchlog.errors import GitError
from branchlog.protocols import ShellProcessLike
from branchlog.session import Focus, KeyPress, Mode, SessionController
from branchlog.shell import ShellScreen
from branchlog.store import LogEntry
from branchlog.voice import VoicePhase

type BranchResolver = Callable[[], str]


class ShellView(Static):
    """Tail of the shell's output."""

    def on_resize(self, event: Resize) -> None:
        app = self.app
        if isinstance(app, BranchlogApp):
            app.resize_shell(event.size.height, event.size.width)


class SessionScreen(Screen):
    """The single screen; it swallows every key and hands it to the app."""

    inherit_bindings = False
    BINDINGS = []

    def compose(self) -> ComposeResult:
        yield Header()
        with Horizontal(id="middle"):
            yield ShellView("", id="shell-view", classes="pane")
            with Vertical(id="log-column"):
                yield Static("", id="log-panel", classes="pane")
                yield Static("", id="mode-line")
        yield Static("", id="status-bar")

    def on_mount(self) -> None:
        app = self.app
        if isinstance(app, BranchlogApp):
            app.screen_ready()

    def on_key(self, event: Key) -> None:
        event.stop()
        event.prevent_default()
        app = self.app
        if isinstance(app, BranchlogApp):
            app.route_key(event.key, event.character)


class BranchlogApp(App[int]):
    """Shell pane plus per-branch log panel with voice capture."""

    TITLE = "branchlog"
    ENABLE_COMMAND_PALETTE = False

    inherit_bindings = False
    BINDINGS = []

    CSS = """
    #middle {
        height: 1fr;
    }
    .pane {
        border: solid $panel;
        height: 1fr;
    }
    .pane.-active {
        border: solid $accent;
    }
    #shell-view {
        width: 60%;
        padding: 0 1;
    }
    #log-column {
        width: 40%;
    }
    #log-panel {
        padding: 0 1;
    }
    #mode-line {
        height: 1;
        padding: 0 1;
        background: $boost;
    }
    #status-bar {
        height: 1;
        dock: bottom;
        background: $surface;
        color: $text-muted;
        padding: 0 2;
    }
    """

    def __init__(
        self,
        controller: SessionController,
        shell: ShellProcessLike,
        resolve_branch: BranchResolver | None = None,
        scrollback: int = DEFAULT_SHELL_SCROLLBACK,
    ) -> None:
        super().__init__()
        self._controller = controller
        self._shell = shell
        self._resolve_branch = resolve_branch
        self._terminal = ShellScreen(scrollback)
        self._session_closed = False
        self._screen_is_ready = False

    @property
    def controller(self) -> SessionController:
        return self._controller

    @property
    def terminal(self) -> ShellScreen:
        return self._terminal

    def on_mount(self) -> None:
        self.push_screen(SessionScreen())
        self.set_interval(DEFAULT_POLL_INTERVAL, self._tick)
        if self._resolve_branch is not None:
            self.set_interval(DEFAULT_BRANCH_POLL_INTERVAL, self._check_branch)

    def screen_ready(self) -> None:
        self._screen_is_ready = True
        self._render_all()

    # -- input ----------------------------------------------------------------

    def route_key(self, key: str, character: str | None) -> None:
        try:
            self._controller.handle_key(KeyPress(key, character))
        except MemoryError:
            LOGGER.critical("Out of memory allocating the capture buffer")
            self._close_session()
            self.exit(
                return_code=EXIT_OUT_OF_MEMORY,
                message="branchlog: out of memory while starting voice capture",
            )
            return
        if self._controller.state.quit_requested:
            self._close_session()
            self.exit(0)
            return
        self._flush_notices()
        self._render_all()

    def resize_shell(self, rows: int, cols: int) -> None:
        # content area excludes the border and horizontal padding
        self._shell.resize(max(1, rows - 2), max(1, cols - 4))

    # -- periodic work --------------------------------------------------------

    def _tick(self) -> None:
        dirty = False
        data = self._shell.read_pending()
        if data:
            self._terminal.feed(data)
            dirty = True
        if self._controller.state.shell_alive:
            code = self._shell.poll_exit()
            if code is not None:
                self._controller.report_shell_exit(code)
                dirty = True
        if self._controller.voice_phase is not None:
            self._controller.poll()
            dirty = True
        if self._flush_notices() or dirty:
            self._render_all()

    def _check_branch(self) -> None:
        self._resolve_branch_worker()

    @work(exclusive=True, thread=True, group="branch")
    def _resolve_branch_worker(self) -> None:
        assert self._resolve_branch is not None
        try:
            branch = self._resolve_branch()
        except GitError as exc:
            LOGGER.debug("Branch check skipped: %s", exc)
            return
        self.call_from_thread(self._on_branch, branch)

    def _on_branch(self, branch: str) -> None:
        if branch == self._controller.branch:
            return
        self._controller.set_branch(branch)
        self._flush_notices()
        self._render_all()

    def _flush_notices(self) -> bool:
        notices = self._controller.drain_notices()
        for notice in notices:
            self.notify(notice.message, severity=notice.severity)
        return bool(notices)

    # -- rendering ------------------------------------------------------------

    def _render_all(self) -> None:
        screen = self.screen
        if not self._screen_is_ready or not isinstance(screen, SessionScreen):
            return
        controller = self._controller
        state = controller.state
        self.sub_title = controller.branch

        shell_view = screen.query_one("#shell-view", ShellView)
        log_panel = screen.query_one("#log-panel", Static)
        shell_view.set_class(state.focus is Focus.TERMINAL, "-active")
        log_panel.set_class(state.focus is Focus.LOG_PANEL, "-active")

        height = shell_view.content_size.height or 1
        shell_view.update(Text("\n").join(self._terminal.lines(height)))

        rows = log_panel.content_size.height
        if rows > 0 and rows != controller.viewport_rows:
            controller.viewport_rows = rows
        log_panel.update(self._render_log())

        screen.query_one("#mode-line", Static).update(self._render_mode_line())
        screen.query_one("#status-bar", Static).update(self._render_status())

    def _render_log(self) -> Text:
        controller = self._controller
        state = controller.state
        visible = controller.visible_entries()
        if not visible:
            if state.filter_ids is not None:
                return Text("No matching entries", style="dim")
            return Text("No entries yet. Press i to write one.", style="dim")

        start = state.scroll_offset
        window = visible[start : start + controller.viewport_rows]
        lines: list[Text] = []
        for offset, entry in enumerate(window):
            line = _entry_line(entry)
            if (
                state.focus is Focus.LOG_PANEL
                and state.selection_index == start + offset
            ):
                line.stylize("reverse")
            lines.append(line)
        return Text("\n").join(lines)

    def _render_mode_line(self) -> Text:
        controller = self._controller
        state = controller.state
        keys = controller.keys
        if state.focus is Focus.TERMINAL:
            return Text(f"shell  ({keys.focus_toggle} to switch to the log)", style="dim")

        mode = state.mode
        if mode is Mode.INSERT:
            return Text(f"new> {state.pending_buffer}▏")
        if mode is Mode.EDIT:
            return Text(f"edit> {state.pending_buffer}▏")
        if mode is Mode.SEARCH:
            return Text(f"/{state.pending_buffer}▏")
        if mode is Mode.DELETE_CONFIRM:
            return Text(
                f"Delete selected entry? ({keys.delete_confirm}/n)", style="bold red"
            )
        if mode is Mode.VOICE_RECORDING:
            session = state.voice_session
            if session is not None and session.phase is VoicePhase.TRANSCRIBING:
                return Text(
                    f"Transcribing... ({keys.cancel} to cancel)", style="bold yellow"
                )
            elapsed = session.elapsed if session is not None else 0.0
            return Text(
                f"● Recording {elapsed:.1f}s "
                f"({keys.voice} to stop, any other key cancels)",
                style="bold green",
            )
        return Text(
            f"{keys.new} new  {keys.edit} edit  {keys.delete} delete  "
            f"{keys.search} search  {keys.voice} voice  {keys.quit} quit",
            style="dim",
        )

    def _render_status(self) -> str:
        controller = self._controller
        state = controller.state
        parts = [f"Focus: {state.focus.value.replace('_', ' ')}"]
        total = len(controller.entries)
        if state.filter_ids is not None:
            shown = len(controller.visible_entries())
            parts.append(f"Filter: {state.filter_query!r} ({shown}/{total})")
        else:
            parts.append(f"Entries: {total}")
        if not state.shell_alive:
            parts.append("Shell exited")
        return "  |  ".join(parts)

    # -- shutdown -------------------------------------------------------------

    def _close_session(self) -> None:
        if self._session_closed:
            return
        self._session_closed = True
        self._controller.shutdown()
        self._shell.close()

    def on_unmount(self) -> None:
        self._close_session()


def _entry_line(entry: LogEntry) -> Text:
    """One log-panel row: timestamp, source marker, first line of text."""
    try:
        stamp = entry.created.strftime("%m-%d %H:%M")
    except ValueError:
        stamp = entry.created_at[:16]
    marker = "♪" if entry.source == "voice" else " "
    body = entry.text.splitlines()[0] if entry.text else ""
    line = Text()
    line.append(stamp, style="cyan")
    line.append(f" {marker} ")
    line.append(body)
    return line

