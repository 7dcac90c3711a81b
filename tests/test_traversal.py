"""Tests for the consumer traversal session."""

import sqlite3
import time

import pytest

from src.snapwatch.config import MonitorConfig
from src.snapwatch.exceptions import InvalidCheckpointError, QueueError
from src.snapwatch.manager import MonitorManager
from src.snapwatch.models import MonitorCheckpoint
from src.snapwatch.traversal import ChangeTraversal


class FakeManager:
    def __init__(self):
        self.config = MonitorConfig(max_retries=3)
        self.checkpoint_queue = None
        self.is_running = False
        self.calls = []
        self.guarantees = []

    def start(self, checkpoint):
        self.calls.append(("start", checkpoint))
        self.is_running = True

    def stop(self):
        self.calls.append(("stop",))
        self.is_running = False

    def accept_guarantees(self, guarantees):
        self.guarantees.append(guarantees)


class FlakyQueue:
    def __init__(self, failures=0, error=QueueError("database is locked")):
        self.failures = failures
        self.error = error
        self.resumed = []
        self.points = {"m1": MonitorCheckpoint("m1", 1, 2, 3)}

    def resume(self, checkpoint, wait=0.0):
        self.resumed.append(checkpoint)
        if self.failures > 0:
            self.failures -= 1
            raise self.error
        return ["batch"]

    def get_monitor_restart_points(self, global_checkpoint=None):
        return dict(self.points)


class TestChangeTraversal:
    """Tests for ChangeTraversal class."""

    def test_start_traversal_restarts_from_scratch(self):
        manager = FakeManager()
        manager.is_running = True
        traversal = ChangeTraversal(manager, FlakyQueue(), sleep=lambda s: None)

        assert traversal.start_traversal() == ["batch"]
        assert manager.calls == [("stop",), ("start", None)]

    def test_resume_starts_manager_once(self):
        manager = FakeManager()
        queue = FlakyQueue()
        traversal = ChangeTraversal(manager, queue, sleep=lambda s: None)

        traversal.resume_traversal("7")
        traversal.resume_traversal("9")

        assert manager.calls == [("start", "7")]
        assert queue.resumed == ["7", "9"]

    def test_resume_hands_out_guarantees(self):
        manager = FakeManager()
        traversal = ChangeTraversal(manager, FlakyQueue(), sleep=lambda s: None)

        traversal.resume_traversal("1")

        assert manager.guarantees == [{"m1": MonitorCheckpoint("m1", 1, 2, 3)}]

    def test_retries_with_backoff(self):
        manager = FakeManager()
        sleeps = []
        queue = FlakyQueue(failures=2, error=sqlite3.OperationalError("disk I/O error"))
        traversal = ChangeTraversal(manager, queue, sleep=sleeps.append)

        assert traversal.resume_traversal("1") == ["batch"]
        assert sleeps == [1, 2]
        assert len(queue.resumed) == 3

    def test_gives_up_after_max_retries(self):
        manager = FakeManager()
        sleeps = []
        traversal = ChangeTraversal(manager, FlakyQueue(failures=10), sleep=sleeps.append)

        with pytest.raises(QueueError):
            traversal.resume_traversal("1")
        assert sleeps == [1, 2]
        assert manager.guarantees == []

    def test_invalid_checkpoint_not_retried(self):
        manager = FakeManager()
        sleeps = []
        queue = FlakyQueue(failures=1, error=InvalidCheckpointError("Invalid checkpoint: 'x'"))
        traversal = ChangeTraversal(manager, queue, sleep=sleeps.append)

        with pytest.raises(InvalidCheckpointError):
            traversal.resume_traversal("x")
        assert sleeps == []


class TestTraversalEndToEnd:
    """Tests for a traversal over a real directory tree."""

    def test_full_traversal_then_resume(self, tmp_path):
        root = tmp_path / "root"
        root.mkdir()
        (root / "a.txt").write_text("alpha")
        config = MonitorConfig(state_dir=tmp_path / "state", idle_interval_seconds=0.05)

        with MonitorManager([str(root)], config=config) as manager:
            traversal = ChangeTraversal(manager)
            batch = traversal.start_traversal(wait=5.0)
            assert [item.change.path for item in batch] == [f"{root.as_posix()}/a.txt"]

            (root / "b.txt").write_text("beta")
            checkpoint = batch[-1].checkpoint
            deadline = time.time() + 10.0
            batch = []
            while not batch and time.time() < deadline:
                batch = traversal.resume_traversal(checkpoint, wait=0.1)

            assert [item.change.path for item in batch] == [f"{root.as_posix()}/b.txt"]
            monitor = next(iter(manager.monitors.values()))
            assert monitor.guarantee is not None
