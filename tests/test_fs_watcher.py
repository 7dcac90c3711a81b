"""Tests for filesystem notification wake hints."""

import threading

from watchdog.events import FileCreatedEvent, FileOpenedEvent

from src.snapwatch.fs_watcher import PassTrigger, WakeEventHandler
from src.snapwatch.patterns import FilePatternMatcher


class TestWakeEventHandler:
    """Tests for WakeEventHandler class."""

    def test_wakes_on_event(self):
        calls = []
        handler = WakeEventHandler(lambda: calls.append(1), FilePatternMatcher())
        handler.dispatch(FileCreatedEvent("/r/a.txt"))
        assert calls == [1]

    def test_ignores_excluded_paths(self):
        calls = []
        handler = WakeEventHandler(lambda: calls.append(1), FilePatternMatcher(exclude_patterns=["*.tmp"]))
        handler.dispatch(FileCreatedEvent("/r/a.tmp"))
        assert calls == []

    def test_ignores_reads(self):
        calls = []
        handler = WakeEventHandler(lambda: calls.append(1), FilePatternMatcher())
        handler.dispatch(FileOpenedEvent("/r/a.txt"))
        assert calls == []


class TestPassTrigger:
    """Tests for PassTrigger class."""

    def test_create_trigger(self):
        trigger = PassTrigger()
        assert len(trigger) == 0

    def test_start_watching(self, tmp_path):
        trigger = PassTrigger()

        result = trigger.start_watching(tmp_path.as_posix(), lambda: None)

        assert result is True
        assert len(trigger) == 1
        assert trigger.is_watching(tmp_path.as_posix())

        trigger.stop_all()

    def test_start_watching_duplicate(self, tmp_path):
        trigger = PassTrigger()

        trigger.start_watching(tmp_path.as_posix(), lambda: None)
        result = trigger.start_watching(tmp_path.as_posix(), lambda: None)

        assert result is False
        assert len(trigger) == 1

        trigger.stop_all()

    def test_not_watchable(self, tmp_path):
        trigger = PassTrigger()
        assert trigger.start_watching((tmp_path / "missing").as_posix(), lambda: None) is False
        assert trigger.start_watching("smb://server/share/", lambda: None) is False
        assert len(trigger) == 0

    def test_stop_all(self, tmp_path):
        trigger = PassTrigger()
        (tmp_path / "a").mkdir()
        (tmp_path / "b").mkdir()
        trigger.start_watching((tmp_path / "a").as_posix(), lambda: None)
        trigger.start_watching((tmp_path / "b").as_posix(), lambda: None)

        assert trigger.stop_all() == 2
        assert len(trigger) == 0

    def test_wake_on_file_creation(self, tmp_path):
        woken = threading.Event()
        trigger = PassTrigger()
        trigger.start_watching(tmp_path.as_posix(), woken.set)
        try:
            (tmp_path / "new.txt").write_text("hello")
            assert woken.wait(timeout=5.0)
        finally:
            trigger.stop_all()
