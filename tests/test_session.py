"""Tests for branchlog.session — focus, modes, and voice handling."""

from __future__ import annotations

import pytest

from branchlog import store as store_mod
from branchlog.audio.recorder import MicRecorder
from branchlog.config import SearchConfig
from branchlog.errors import CaptureError, ModelUnavailable, TranscriptionError
from branchlog.session import Focus, Mode, SessionController
from branchlog.voice import VoicePhase

from .conftest import press, silent_audio, type_text

BRANCH = "feature/x"


def open_panel(controller) -> None:
    press(controller, "ctrl+t")
    assert controller.state.focus is Focus.LOG_PANEL


class TestFocus:
    def test_starts_on_terminal_in_normal_mode(self, make_controller) -> None:
        controller = make_controller()
        assert controller.state.focus is Focus.TERMINAL
        assert controller.state.mode is Mode.NORMAL

    def test_toggle_alternates(self, make_controller) -> None:
        controller = make_controller()
        for expected in (Focus.LOG_PANEL, Focus.TERMINAL, Focus.LOG_PANEL):
            press(controller, "ctrl+t")
            assert controller.state.focus is expected
            assert controller.state.mode is Mode.NORMAL

    def test_terminal_keys_are_forwarded(self, make_controller, shell) -> None:
        controller = make_controller()
        press(controller, "a")
        press(controller, "ctrl+c")
        press(controller, "enter")
        press(controller, "up")
        assert shell.written == [b"a", b"\x03", b"\r", b"\x1b[A"]

    def test_toggle_key_is_not_forwarded(self, make_controller, shell) -> None:
        controller = make_controller()
        press(controller, "ctrl+t")
        press(controller, "ctrl+t")
        assert shell.written == []

    def test_unencodable_keys_are_dropped(self, make_controller, shell) -> None:
        controller = make_controller()
        press(controller, "f13")
        assert shell.written == []

    def test_leaving_panel_discards_buffer(self, make_controller, store) -> None:
        controller = make_controller()
        open_panel(controller)
        press(controller, "i")
        type_text(controller, "draft")
        press(controller, "ctrl+t")
        assert controller.state.focus is Focus.TERMINAL
        assert controller.state.mode is Mode.NORMAL
        assert controller.state.pending_buffer == ""
        assert store.entries(BRANCH) == []

    def test_panel_keys_do_not_reach_shell(self, make_controller, shell) -> None:
        controller = make_controller()
        open_panel(controller)
        press(controller, "j")
        press(controller, "i")
        type_text(controller, "note")
        assert shell.written == []

    def test_custom_toggle_key(self, make_controller) -> None:
        from branchlog.config import KeyMap

        controller = make_controller(keys=KeyMap(focus_toggle="f2"))
        press(controller, "ctrl+t")
        assert controller.state.focus is Focus.TERMINAL
        press(controller, "f2")
        assert controller.state.focus is Focus.LOG_PANEL


class TestInsert:
    def test_insert_adds_one_typed_entry(self, make_controller, store) -> None:
        controller = make_controller()
        open_panel(controller)
        press(controller, "i")
        assert controller.state.mode is Mode.INSERT
        type_text(controller, "Fix flaky tests")
        press(controller, "enter")

        entries = store.entries(BRANCH)
        assert len(entries) == 1
        assert entries[0].text == "Fix flaky tests"
        assert entries[0].source == "typed"
        assert controller.state.mode is Mode.NORMAL
        assert controller.selected_entry() == entries[0]

    def test_insert_assigns_fresh_ids(self, make_controller, store) -> None:
        store.append(BRANCH, "existing")
        controller = make_controller()
        open_panel(controller)
        press(controller, "i")
        type_text(controller, "another")
        press(controller, "enter")
        ids = [e.id for e in store.entries(BRANCH)]
        assert len(ids) == 2
        assert len(set(ids)) == 2

    def test_backspace_edits_buffer(self, make_controller, store) -> None:
        controller = make_controller()
        open_panel(controller)
        press(controller, "i")
        type_text(controller, "typo!")
        press(controller, "backspace")
        assert controller.state.pending_buffer == "typo"
        press(controller, "enter")
        assert store.entries(BRANCH)[0].text == "typo"

    def test_blank_text_is_not_saved(self, make_controller, store) -> None:
        controller = make_controller()
        open_panel(controller)
        press(controller, "i")
        type_text(controller, "   ")
        press(controller, "enter")
        assert store.entries(BRANCH) == []
        assert controller.state.mode is Mode.NORMAL
        notices = controller.drain_notices()
        assert [n.severity for n in notices] == ["warning"]

    def test_escape_cancels(self, make_controller, store) -> None:
        controller = make_controller()
        open_panel(controller)
        press(controller, "i")
        type_text(controller, "never mind")
        press(controller, "escape")
        assert store.entries(BRANCH) == []
        assert controller.state.mode is Mode.NORMAL


class TestEdit:
    def test_edit_changes_only_target(self, make_controller, store) -> None:
        first = store.append(BRANCH, "first")
        second = store.append(BRANCH, "second")
        controller = make_controller()
        open_panel(controller)
        assert controller.selected_entry() == second

        press(controller, "e")
        assert controller.state.mode is Mode.EDIT
        assert controller.state.pending_buffer == "second"
        type_text(controller, " pass")
        press(controller, "enter")

        entries = store.entries(BRANCH)
        assert [e.id for e in entries] == [first.id, second.id]
        assert entries[0] == first
        assert entries[1].text == "second pass"
        assert entries[1].created_at == second.created_at
        assert controller.state.mode is Mode.NORMAL

    def test_edit_commit_bumps_updated_at(
        self, make_controller, store, monkeypatch
    ) -> None:
        monkeypatch.setattr(store_mod, "now_iso", lambda: "2024-05-01T09:00:00+00:00")
        original = store.append(BRANCH, "note")
        monkeypatch.setattr(store_mod, "now_iso", lambda: "2024-05-02T10:30:00+00:00")
        controller = make_controller()
        open_panel(controller)
        press(controller, "e")
        type_text(controller, "!")
        press(controller, "enter")
        edited = store.entries(BRANCH)[0]
        assert edited.text == "note!"
        assert edited.created_at == original.created_at
        assert edited.updated_at == "2024-05-02T10:30:00+00:00"

    def test_edit_without_selection_warns(self, make_controller) -> None:
        controller = make_controller()
        open_panel(controller)
        press(controller, "e")
        assert controller.state.mode is Mode.NORMAL
        notices = controller.drain_notices()
        assert len(notices) == 1
        assert notices[0].severity == "warning"

    def test_clearing_text_keeps_entry(self, make_controller, store) -> None:
        store.append(BRANCH, "abc")
        controller = make_controller()
        open_panel(controller)
        press(controller, "e")
        for _ in range(3):
            press(controller, "backspace")
        press(controller, "enter")
        assert store.entries(BRANCH)[0].text == "abc"
        assert controller.drain_notices()[0].severity == "warning"


class TestDelete:
    def test_confirm_removes_exactly_target(self, make_controller, store) -> None:
        keep = store.append(BRANCH, "keep me")
        store.append(BRANCH, "drop me")
        controller = make_controller()
        open_panel(controller)
        press(controller, "d")
        assert controller.state.mode is Mode.DELETE_CONFIRM
        press(controller, "y")
        assert store.entries(BRANCH) == [keep]
        assert controller.state.mode is Mode.NORMAL
        assert controller.state.selection_index == 0

    def test_cancel_leaves_file_unchanged(self, make_controller, store) -> None:
        store.append(BRANCH, "a")
        store.append(BRANCH, "b")
        path = store.path_for(BRANCH)
        before = path.read_bytes()
        controller = make_controller()
        open_panel(controller)
        press(controller, "d")
        press(controller, "n")
        assert path.read_bytes() == before
        assert controller.state.mode is Mode.NORMAL

    def test_delete_without_selection_is_noop(self, make_controller) -> None:
        controller = make_controller()
        open_panel(controller)
        press(controller, "d")
        assert controller.state.mode is Mode.NORMAL
        assert controller.drain_notices() == []


class TestNavigation:
    def test_selection_moves_and_clamps(self, make_controller, store) -> None:
        for text in ("a", "b", "c"):
            store.append(BRANCH, text)
        controller = make_controller()
        open_panel(controller)
        assert controller.state.selection_index == 2
        press(controller, "k")
        assert controller.state.selection_index == 1
        press(controller, "g")
        assert controller.state.selection_index == 0
        press(controller, "up")
        assert controller.state.selection_index == 0
        press(controller, "G")
        assert controller.state.selection_index == 2
        press(controller, "j")
        assert controller.state.selection_index == 2

    def test_empty_log_has_no_selection(self, make_controller) -> None:
        controller = make_controller()
        open_panel(controller)
        press(controller, "j")
        assert controller.state.selection_index is None

    def test_page_scroll_is_clamped(self, make_controller, store) -> None:
        for i in range(5):
            store.append(BRANCH, f"entry {i}")
        controller = make_controller(viewport_rows=2)
        open_panel(controller)
        assert controller.state.scroll_offset == 3

        press(controller, "pageup")
        assert controller.state.scroll_offset == 1
        press(controller, "pageup")
        press(controller, "pageup")
        assert controller.state.scroll_offset == 0

        press(controller, "pagedown")
        assert controller.state.scroll_offset == 2
        press(controller, "pagedown")
        press(controller, "pagedown")
        assert controller.state.scroll_offset == 3

    def test_reload_picks_up_external_changes(self, make_controller, store) -> None:
        controller = make_controller()
        store.append(BRANCH, "written elsewhere")
        open_panel(controller)
        press(controller, "r")
        assert [e.text for e in controller.visible_entries()] == ["written elsewhere"]

    def test_quit_sets_flag(self, make_controller) -> None:
        controller = make_controller()
        open_panel(controller)
        press(controller, "q")
        assert controller.state.quit_requested


class TestSearch:
    @pytest.fixture
    def seeded(self, store):
        for text in ("Fix flaky tests", "Update README", "fix CI"):
            store.append(BRANCH, text)

    def test_case_insensitive_by_default(self, seeded, make_controller) -> None:
        controller = make_controller()
        open_panel(controller)
        press(controller, "slash", "/")
        assert controller.state.mode is Mode.SEARCH
        type_text(controller, "FIX")
        press(controller, "enter")
        texts = [e.text for e in controller.visible_entries()]
        assert texts == ["Fix flaky tests", "fix CI"]
        assert controller.state.selection_index == 0
        assert controller.state.mode is Mode.NORMAL

    def test_case_sensitive_policy(self, seeded, make_controller) -> None:
        controller = make_controller(search=SearchConfig(case_sensitive=True))
        open_panel(controller)
        press(controller, "slash", "/")
        type_text(controller, "fix")
        press(controller, "enter")
        assert [e.text for e in controller.visible_entries()] == ["fix CI"]

    def test_empty_query_clears_filter(self, seeded, make_controller) -> None:
        controller = make_controller()
        open_panel(controller)
        press(controller, "slash", "/")
        type_text(controller, "README")
        press(controller, "enter")
        assert len(controller.visible_entries()) == 1
        press(controller, "slash", "/")
        press(controller, "enter")
        assert controller.state.filter_ids is None
        assert len(controller.visible_entries()) == 3

    def test_escape_clears_filter(self, seeded, make_controller) -> None:
        controller = make_controller()
        open_panel(controller)
        press(controller, "slash", "/")
        type_text(controller, "README")
        press(controller, "enter")
        press(controller, "escape")
        assert controller.state.filter_ids is None
        assert controller.selected_entry().text == "Update README"

    def test_no_match_warns(self, seeded, make_controller) -> None:
        controller = make_controller()
        open_panel(controller)
        press(controller, "slash", "/")
        type_text(controller, "zzz")
        press(controller, "enter")
        assert controller.visible_entries() == []
        assert controller.state.selection_index is None
        assert controller.drain_notices()[0].severity == "warning"


class TestVoice:
    def test_record_then_transcribe_saves_voice_entry(
        self, make_controller, store, spawner, recorder, engine
    ) -> None:
        controller = make_controller()
        open_panel(controller)
        press(controller, "v")
        assert controller.state.mode is Mode.VOICE_RECORDING
        assert controller.voice_phase is VoicePhase.RECORDING
        assert recorder.started == 1

        press(controller, "v")
        assert controller.voice_phase is VoicePhase.TRANSCRIBING
        assert recorder.stopped == 1

        spawner.run_all()
        controller.poll()

        entries = store.entries(BRANCH)
        assert len(entries) == 1
        assert entries[0].source == "voice"
        assert entries[0].text == engine.text
        assert controller.state.mode is Mode.NORMAL
        assert controller.state.voice_session is None
        assert controller.selected_entry() == entries[0]

    def test_silence_saves_nothing(
        self, make_controller, store, spawner, recorder, engine
    ) -> None:
        recorder.audio = silent_audio()
        controller = make_controller()
        open_panel(controller)
        press(controller, "v")
        press(controller, "v")
        spawner.run_all()
        controller.poll()
        assert store.entries(BRANCH) == []
        assert engine.calls == []
        assert controller.state.mode is Mode.NORMAL
        notices = controller.drain_notices()
        assert [n.message for n in notices] == ["No speech detected"]

    def test_transcription_failure_notifies(
        self, make_controller, store, spawner, engine
    ) -> None:
        engine.transcribe_error = TranscriptionError("decoder blew up")
        controller = make_controller()
        open_panel(controller)
        press(controller, "v")
        press(controller, "v")
        spawner.run_all()
        controller.poll()
        assert store.entries(BRANCH) == []
        assert controller.drain_notices()[0].severity == "error"

    def test_any_other_key_cancels_recording(
        self, make_controller, store, spawner, recorder
    ) -> None:
        controller = make_controller()
        open_panel(controller)
        press(controller, "v")
        press(controller, "x")
        assert controller.state.mode is Mode.NORMAL
        assert controller.state.voice_session is None
        assert recorder.aborted == 1
        spawner.run_all()
        controller.poll()
        assert store.entries(BRANCH) == []

    def test_cancel_while_transcribing_creates_no_entry(
        self, make_controller, store, spawner
    ) -> None:
        controller = make_controller()
        open_panel(controller)
        press(controller, "v")
        press(controller, "v")
        press(controller, "x")
        assert controller.voice_phase is VoicePhase.TRANSCRIBING
        press(controller, "escape")
        assert controller.state.mode is Mode.NORMAL

        spawner.run_all()
        controller.poll()
        assert store.entries(BRANCH) == []

    def test_late_result_from_cancelled_session_is_dropped(
        self, make_controller, store, spawner
    ) -> None:
        controller = make_controller()
        open_panel(controller)
        press(controller, "v")
        press(controller, "v")
        press(controller, "escape")
        press(controller, "v")
        current = controller.state.voice_session

        spawner.run_all()
        controller.poll()
        assert store.entries(BRANCH) == []
        assert controller.state.voice_session is current
        assert controller.voice_phase is VoicePhase.RECORDING

    def test_model_unavailable_cancels_session(
        self, make_controller, spawner, recorder, engine
    ) -> None:
        engine.load_error = ModelUnavailable("no model on disk")
        controller = make_controller()
        open_panel(controller)
        press(controller, "v")
        spawner.run_all()
        controller.poll()
        assert controller.state.mode is Mode.NORMAL
        assert controller.state.voice_session is None
        assert recorder.aborted == 1
        notices = controller.drain_notices()
        assert notices[0].severity == "error"
        assert "no model on disk" in notices[0].message

    def test_capture_error_notifies(self, make_controller, recorder) -> None:
        recorder.start_error = CaptureError("no input device")
        controller = make_controller()
        open_panel(controller)
        press(controller, "v")
        assert controller.state.mode is Mode.NORMAL
        assert controller.state.voice_session is None
        assert controller.drain_notices()[0].severity == "error"

    def test_memory_error_propagates(self, make_controller, recorder) -> None:
        recorder.start_error = MemoryError()
        controller = make_controller()
        open_panel(controller)
        with pytest.raises(MemoryError):
            press(controller, "v")

    def test_unusable_capture_window_notifies(
        self, store, shell, engine, spawner
    ) -> None:
        controller = SessionController(
            store,
            BRANCH,
            shell,
            engine,
            lambda: MicRecorder(max_seconds=0.00001),
            spawn=spawner,
        )
        open_panel(controller)
        press(controller, "v")
        assert controller.state.mode is Mode.NORMAL
        assert controller.state.voice_session is None
        notice = controller.drain_notices()[0]
        assert notice.severity == "error"
        assert "capture window" in notice.message

    def test_toggle_focus_cancels_voice(self, make_controller, recorder) -> None:
        controller = make_controller()
        open_panel(controller)
        press(controller, "v")
        press(controller, "ctrl+t")
        assert controller.state.focus is Focus.TERMINAL
        assert controller.state.voice_session is None
        assert recorder.aborted == 1


class TestFailures:
    def test_corrupt_log_is_reported_not_raised(self, make_controller, store) -> None:
        path = store.path_for(BRANCH)
        path.parent.mkdir(parents=True)
        path.write_text("{broken", encoding="utf-8")

        controller = make_controller()
        assert controller.drain_notices()[0].severity == "error"

        open_panel(controller)
        press(controller, "i")
        type_text(controller, "x")
        press(controller, "enter")
        assert controller.state.mode is Mode.NORMAL
        assert any(n.severity == "error" for n in controller.drain_notices())
        assert path.read_text(encoding="utf-8") == "{broken"

    def test_shell_exit_is_reported_once(self, make_controller, shell) -> None:
        controller = make_controller()
        controller.report_shell_exit(1)
        controller.report_shell_exit(1)
        notices = controller.drain_notices()
        assert len(notices) == 1
        assert notices[0].severity == "warning"
        press(controller, "a")
        assert shell.written == []


class TestBranchChange:
    def test_switch_discards_work_and_loads_new_log(
        self, make_controller, store
    ) -> None:
        store.append("main", "on main")
        store.append(BRANCH, "on feature")
        controller = make_controller()
        open_panel(controller)
        press(controller, "i")
        type_text(controller, "draft")

        controller.set_branch("main")
        assert controller.branch == "main"
        assert controller.state.mode is Mode.NORMAL
        assert controller.state.pending_buffer == ""
        assert [e.text for e in controller.visible_entries()] == ["on main"]
        assert [e.text for e in store.entries(BRANCH)] == ["on feature"]

    def test_same_branch_is_noop(self, make_controller) -> None:
        controller = make_controller()
        controller.set_branch(BRANCH)
        assert controller.drain_notices() == []
