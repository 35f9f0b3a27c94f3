"""Interactive session controller: focus, modes, and the log panel.

SessionController owns all mutable session state and is driven from one
context only (the UI event loop): key presses go through handle_key(),
and background results are applied by poll(). Nothing here renders;
the app reads ``state``, ``visible_entries()`` and the drained notices.
"""

import queue
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Literal

from branchlog.config import KeyMap, SearchConfig, VoiceConfig
from branchlog.env import LOGGER
from branchlog.errors import CaptureError, PersistenceError
from branchlog.protocols import RecorderLike, ShellLike, TranscriberLike
from branchlog.shell import encode_key
from branchlog.store import BranchLog, LogEntry, LogStore
from branchlog.voice import (
    OutcomeKind,
    Spawner,
    VoiceOutcome,
    VoicePhase,
    VoiceSession,
    spawn_thread,
)

type Severity = Literal["information", "warning", "error"]
type RecorderFactory = Callable[[], RecorderLike]


class Focus(StrEnum):
    TERMINAL = "terminal"
    LOG_PANEL = "log_panel"


class Mode(StrEnum):
    NORMAL = "normal"
    INSERT = "insert"
    EDIT = "edit"
    DELETE_CONFIRM = "delete_confirm"
    SEARCH = "search"
    VOICE_RECORDING = "voice_recording"


@dataclass(frozen=True, slots=True)
class KeyPress:
    """A key event in Textual notation, plus its printable character."""

    key: str
    character: str | None = None

    @property
    def printable(self) -> str | None:
        if self.character and len(self.character) == 1 and self.character.isprintable():
            return self.character
        return None


@dataclass(frozen=True, slots=True)
class Notice:
    """A user-facing message for the app to show as a toast."""

    message: str
    severity: Severity = "information"


@dataclass(slots=True)
class SessionState:
    focus: Focus = Focus.TERMINAL
    mode: Mode = Mode.NORMAL
    selection_index: int | None = None
    scroll_offset: int = 0
    pending_buffer: str = ""
    voice_session: VoiceSession | None = None
    filter_ids: frozenset[str] | None = None
    filter_query: str = ""
    edit_target: str | None = None
    quit_requested: bool = False
    shell_alive: bool = True


class SessionController:
    """Routes keys to the shell or the log panel and runs voice sessions."""

    def __init__(
        self,
        store: LogStore,
        branch: str,
        shell: ShellLike,
        engine: TranscriberLike,
        recorder_factory: RecorderFactory,
        *,
        keys: KeyMap | None = None,
        search: SearchConfig | None = None,
        voice: VoiceConfig | None = None,
        spawn: Spawner = spawn_thread,
        viewport_rows: int = 10,
    ) -> None:
        self.state = SessionState()
        self._store = store
        self._branch = branch
        self._shell = shell
        self._engine = engine
        self._recorder_factory = recorder_factory
        self._keys = keys or KeyMap()
        self._search = search or SearchConfig()
        self._voice = voice or VoiceConfig()
        self._spawn = spawn
        self._viewport_rows = max(1, viewport_rows)
        self._results: "queue.Queue[VoiceOutcome]" = queue.Queue()
        self._notices: list[Notice] = []
        self._log = BranchLog(branch=branch)
        self.reload()

    # -- read-only views ----------------------------------------------------

    @property
    def branch(self) -> str:
        return self._branch

    @property
    def keys(self) -> KeyMap:
        return self._keys

    @property
    def entries(self) -> list[LogEntry]:
        return list(self._log.items)

    @property
    def viewport_rows(self) -> int:
        return self._viewport_rows

    @viewport_rows.setter
    def viewport_rows(self, rows: int) -> None:
        self._viewport_rows = max(1, rows)
        self._clamp_scroll()

    def visible_entries(self) -> list[LogEntry]:
        """Entries in display order, narrowed by the active search filter."""
        ids = self.state.filter_ids
        if ids is None:
            return list(self._log.items)
        return [item for item in self._log.items if item.id in ids]

    def selected_entry(self) -> LogEntry | None:
        index = self.state.selection_index
        visible = self.visible_entries()
        if index is None or not 0 <= index < len(visible):
            return None
        return visible[index]

    @property
    def voice_phase(self) -> VoicePhase | None:
        session = self.state.voice_session
        return session.phase if session is not None else None

    def drain_notices(self) -> list[Notice]:
        notices, self._notices = self._notices, []
        return notices

    def notify(self, message: str, severity: Severity = "information") -> None:
        self._notices.append(Notice(message, severity))

    # -- input ----------------------------------------------------------------

    def handle_key(self, press: KeyPress) -> None:
        """Apply one key press.

        MemoryError from allocating a capture buffer is the only exception
        that escapes; every recoverable failure becomes a notice.
        """
        if self._is(press, self._keys.focus_toggle):
            self._toggle_focus()
            return
        if self.state.focus is Focus.TERMINAL:
            self._forward_to_shell(press)
            return

        handler = {
            Mode.NORMAL: self._normal_key,
            Mode.INSERT: self._buffer_key,
            Mode.EDIT: self._buffer_key,
            Mode.SEARCH: self._buffer_key,
            Mode.DELETE_CONFIRM: self._delete_confirm_key,
            Mode.VOICE_RECORDING: self._voice_key,
        }[self.state.mode]
        handler(press)

    @staticmethod
    def _is(press: KeyPress, names: str | tuple[str, ...]) -> bool:
        if isinstance(names, str):
            names = (names,)
        if press.key in names:
            return True
        # Textual may report shifted letters as "shift+g"; match the character.
        return press.printable is not None and press.printable in names

    def _toggle_focus(self) -> None:
        state = self.state
        if state.focus is Focus.TERMINAL:
            state.focus = Focus.LOG_PANEL
            state.mode = Mode.NORMAL
            return
        self._cancel_voice(notify=False)
        self._discard_pending()
        state.focus = Focus.TERMINAL

    def _forward_to_shell(self, press: KeyPress) -> None:
        if not self.state.shell_alive:
            return
        data = encode_key(press.key, press.character)
        if data is not None:
            self._shell.write(data)

    def _normal_key(self, press: KeyPress) -> None:
        keys = self._keys
        state = self.state
        if self._is(press, keys.new):
            state.mode = Mode.INSERT
            state.pending_buffer = ""
        elif self._is(press, keys.edit):
            entry = self.selected_entry()
            if entry is None:
                self.notify("No entry selected", "warning")
                return
            state.mode = Mode.EDIT
            state.edit_target = entry.id
            state.pending_buffer = entry.text
        elif self._is(press, keys.delete):
            entry = self.selected_entry()
            if entry is None:
                return
            state.mode = Mode.DELETE_CONFIRM
            state.edit_target = entry.id
        elif self._is(press, keys.search):
            state.mode = Mode.SEARCH
            state.pending_buffer = ""
        elif self._is(press, keys.voice):
            self._start_voice()
        elif self._is(press, keys.quit):
            self.shutdown()
            state.quit_requested = True
        elif self._is(press, keys.reload):
            self.reload()
        elif self._is(press, keys.down):
            self._move_selection(1)
        elif self._is(press, keys.up):
            self._move_selection(-1)
        elif self._is(press, keys.top):
            self._select(0)
        elif self._is(press, keys.bottom):
            self._select(len(self.visible_entries()) - 1)
        elif self._is(press, keys.page_down):
            self._scroll(self._viewport_rows)
        elif self._is(press, keys.page_up):
            self._scroll(-self._viewport_rows)
        elif self._is(press, keys.cancel):
            if state.filter_ids is not None:
                self._clear_filter()

    def _buffer_key(self, press: KeyPress) -> None:
        state = self.state
        if self._is(press, self._keys.confirm):
            self._commit()
        elif self._is(press, self._keys.cancel):
            self._discard_pending()
        elif press.key == "backspace":
            state.pending_buffer = state.pending_buffer[:-1]
        elif press.printable is not None:
            state.pending_buffer += press.printable

    def _delete_confirm_key(self, press: KeyPress) -> None:
        target = self.state.edit_target
        confirmed = self._is(press, self._keys.delete_confirm)
        self._to_normal()
        if not confirmed or target is None:
            return
        try:
            self._store.delete(self._branch, target)
        except PersistenceError as exc:
            self._store_failed(exc)
            return
        self.reload()

    def _voice_key(self, press: KeyPress) -> None:
        session = self.state.voice_session
        if session is None:
            self._to_normal()
            return
        if session.phase is VoicePhase.RECORDING:
            if self._is(press, self._keys.voice):
                session.stop()
            else:
                self._cancel_voice()
        elif self._is(press, self._keys.cancel):
            self._cancel_voice()

    # -- commits ------------------------------------------------------------

    def _commit(self) -> None:
        mode = self.state.mode
        text = self.state.pending_buffer
        if mode is Mode.SEARCH:
            self._apply_search(text)
            self._to_normal()
            return

        target = self.state.edit_target
        self._to_normal()
        if not text.strip():
            if mode is Mode.INSERT:
                self.notify("Empty note not saved", "warning")
            else:
                self.notify("Entry text cannot be empty; use delete instead", "warning")
            return
        try:
            if mode is Mode.INSERT:
                entry = self._store.append(self._branch, text, source="typed")
            elif target is not None:
                entry = self._store.update(self._branch, target, text)
            else:
                return
        except PersistenceError as exc:
            self._store_failed(exc)
            return
        self.reload()
        self._select_entry(entry.id)

    def _apply_search(self, query: str) -> None:
        if not query:
            self._clear_filter()
            return
        if self._search.case_sensitive:
            matched = {item.id for item in self._log.items if query in item.text}
        else:
            needle = query.casefold()
            matched = {
                item.id for item in self._log.items if needle in item.text.casefold()
            }
        self.state.filter_ids = frozenset(matched)
        self.state.filter_query = query
        self.state.scroll_offset = 0
        self.state.selection_index = 0 if matched else None
        if not matched:
            self.notify(f"No entries match {query!r}", "warning")

    def _clear_filter(self) -> None:
        selected = self.selected_entry()
        self.state.filter_ids = None
        self.state.filter_query = ""
        if selected is not None:
            self._select_entry(selected.id)
        else:
            self._clamp_selection()

    # -- voice ----------------------------------------------------------------

    def _start_voice(self) -> None:
        current = self.state.voice_session
        if current is not None and current.active:
            return
        recorder = self._recorder_factory()
        session = VoiceSession(
            recorder,
            self._engine,
            self._results,
            min_seconds=self._voice.min_record_seconds,
            energy_threshold=self._voice.energy_threshold,
            spawn=self._spawn,
        )
        try:
            session.start()
        except CaptureError as exc:
            LOGGER.warning("Voice capture failed to start: %s", exc)
            self.notify(f"Microphone unavailable: {exc}", "error")
            return
        self.state.voice_session = session
        self.state.mode = Mode.VOICE_RECORDING

    def _cancel_voice(self, notify: bool = True) -> None:
        session = self.state.voice_session
        if session is None:
            return
        was_active = session.active
        session.cancel()
        self.state.voice_session = None
        if self.state.mode is Mode.VOICE_RECORDING:
            self.state.mode = Mode.NORMAL
        if notify and was_active:
            self.notify("Voice note cancelled")

    def poll(self) -> None:
        """Apply voice results posted by background threads."""
        while True:
            try:
                outcome = self._results.get_nowait()
            except queue.Empty:
                break
            self._apply_outcome(outcome)

    def _apply_outcome(self, outcome: VoiceOutcome) -> None:
        session = self.state.voice_session
        if session is None or session.id != outcome.session_id or session.cancelled:
            LOGGER.debug("Dropping stale voice result %s", outcome.session_id)
            return

        if outcome.kind is OutcomeKind.MODEL_UNAVAILABLE:
            self._cancel_voice(notify=False)
            self.notify(f"Speech model unavailable: {outcome.error}", "error")
            return

        session.finish()
        self.state.voice_session = None
        self._to_normal()
        if outcome.kind is OutcomeKind.EMPTY:
            self.notify("No speech detected", "warning")
        elif outcome.kind is OutcomeKind.FAILED:
            self.notify(f"Transcription failed: {outcome.error}", "error")
        else:
            try:
                entry = self._store.append(self._branch, outcome.text, source="voice")
            except PersistenceError as exc:
                self._store_failed(exc)
                return
            self.reload()
            self._select_entry(entry.id)
            self.notify("Voice note saved")

    # -- lifecycle ------------------------------------------------------------

    def reload(self) -> None:
        """Re-read the current branch log from disk."""
        try:
            self._log = self._store.load(self._branch)
        except PersistenceError as exc:
            LOGGER.error("%s", exc)
            self.notify(str(exc), "error")
            return
        self._clamp_selection(default_last=True)

    def set_branch(self, branch: str) -> None:
        """Follow a checkout: drop in-progress work and show the new log."""
        if branch == self._branch:
            return
        LOGGER.info("Branch changed: %s -> %s", self._branch, branch)
        self._cancel_voice(notify=False)
        self._discard_pending()
        self._branch = branch
        self.state.filter_ids = None
        self.state.filter_query = ""
        self.state.selection_index = None
        self.state.scroll_offset = 0
        self._log = BranchLog(branch=branch)
        self.reload()
        self.notify(f"Switched to branch {branch}")

    def report_shell_exit(self, code: int) -> None:
        if not self.state.shell_alive:
            return
        self.state.shell_alive = False
        LOGGER.info("Shell exited with status %d", code)
        self.notify(f"Shell exited with status {code}", "warning")

    def shutdown(self) -> None:
        """Cancel background work; uncommitted buffers are discarded."""
        self._cancel_voice(notify=False)
        self._discard_pending()

    # -- helpers --------------------------------------------------------------

    def _to_normal(self) -> None:
        self.state.mode = Mode.NORMAL
        self.state.pending_buffer = ""
        self.state.edit_target = None

    def _discard_pending(self) -> None:
        if self.state.mode in (
            Mode.INSERT,
            Mode.EDIT,
            Mode.SEARCH,
            Mode.DELETE_CONFIRM,
        ):
            self._to_normal()

    def _store_failed(self, exc: PersistenceError) -> None:
        LOGGER.error("Store operation failed: %s", exc)
        self.notify(str(exc), "error")
        self._to_normal()
        self.reload()

    def _select(self, index: int) -> None:
        count = len(self.visible_entries())
        if count == 0:
            self.state.selection_index = None
            return
        self.state.selection_index = min(max(index, 0), count - 1)
        self._follow_selection()

    def _select_entry(self, entry_id: str) -> None:
        visible = self.visible_entries()
        for i, item in enumerate(visible):
            if item.id == entry_id:
                self._select(i)
                return
        if self.state.filter_ids is not None:
            # not matched by the current search; show everything instead
            self.state.filter_ids = None
            self.state.filter_query = ""
            self._select_entry(entry_id)

    def _move_selection(self, delta: int) -> None:
        index = self.state.selection_index
        if index is None:
            self._select(0 if delta > 0 else len(self.visible_entries()) - 1)
        else:
            self._select(index + delta)

    def _clamp_selection(self, default_last: bool = False) -> None:
        count = len(self.visible_entries())
        index = self.state.selection_index
        if count == 0:
            self.state.selection_index = None
        elif index is None:
            self.state.selection_index = count - 1 if default_last else 0
        else:
            self.state.selection_index = min(index, count - 1)
        self._clamp_scroll()
        self._follow_selection()

    def _max_scroll(self) -> int:
        return max(0, len(self.visible_entries()) - self._viewport_rows)

    def _clamp_scroll(self) -> None:
        self.state.scroll_offset = min(max(self.state.scroll_offset, 0), self._max_scroll())

    def _scroll(self, delta: int) -> None:
        self.state.scroll_offset += delta
        self._clamp_scroll()
        index = self.state.selection_index
        if index is None:
            return
        top = self.state.scroll_offset
        bottom = top + self._viewport_rows - 1
        last = len(self.visible_entries()) - 1
        self.state.selection_index = min(max(index, top), bottom, last)

    def _follow_selection(self) -> None:
        index = self.state.selection_index
        if index is None:
            return
        if index < self.state.scroll_offset:
            self.state.scroll_offset = index
        elif index >= self.state.scroll_offset + self._viewport_rows:
            self.state.scroll_offset = index - self._viewport_rows + 1
        self._clamp_scroll()
