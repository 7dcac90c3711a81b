"""Tests for the durable checkpointed change queue."""

import threading
import time

import pytest

from src.snapwatch.change_queue import ChangeQueue
from src.snapwatch.exceptions import InvalidCheckpointError, QueueError
from src.snapwatch.models import Change, ChangeKind, MonitorCheckpoint
from src.snapwatch.queue import CheckpointAndChangeQueue


def make_change(path, monitor="m1", write=1):
    return Change(
        kind=ChangeKind.NEW_FILE,
        path=path,
        file_system_type="local",
        checkpoint=MonitorCheckpoint(monitor, 0, 0, write),
    )


class TestCheckpointAndChangeQueue:
    """Tests for CheckpointAndChangeQueue class."""

    def test_create_queue(self, tmp_path):
        db_path = tmp_path / "state" / "queue.db"
        queue = CheckpointAndChangeQueue(ChangeQueue(), db_path)
        assert db_path.exists()
        queue.close()

    def test_resume_returns_changes_in_order(self, tmp_path):
        source = ChangeQueue()
        for i in range(3):
            source.put(make_change(f"/r/{i}", write=i + 1))

        with CheckpointAndChangeQueue(source, tmp_path / "queue.db") as queue:
            queue.start(None)
            batch = queue.resume(None)

        assert [item.change.path for item in batch] == ["/r/0", "/r/1", "/r/2"]
        assert [int(item.checkpoint) for item in batch] == sorted(int(item.checkpoint) for item in batch)
        assert source.qsize() == 0

    def test_replay_returns_same_batch(self, tmp_path):
        source = ChangeQueue()
        for i in range(3):
            source.put(make_change(f"/r/{i}"))

        with CheckpointAndChangeQueue(source, tmp_path / "queue.db") as queue:
            queue.start(None)
            first = queue.resume(None)
            checkpoint = first[0].checkpoint

            again = queue.resume(checkpoint)
            replay = queue.resume(checkpoint)

        assert again == replay
        assert [item.change.path for item in again] == ["/r/1", "/r/2"]

    def test_resume_acknowledges(self, tmp_path):
        source = ChangeQueue()
        for i in range(3):
            source.put(make_change(f"/r/{i}"))

        with CheckpointAndChangeQueue(source, tmp_path / "queue.db") as queue:
            queue.start(None)
            batch = queue.resume(None)
            assert queue.pending_count() == 3

            assert queue.resume(batch[-1].checkpoint) == []
            assert queue.pending_count() == 0

    def test_batch_size_limited(self, tmp_path):
        source = ChangeQueue()
        for i in range(5):
            source.put(make_change(f"/r/{i}"))

        with CheckpointAndChangeQueue(source, tmp_path / "queue.db", max_queue_size=2) as queue:
            queue.start(None)
            batch = queue.resume(None)

            assert len(batch) == 2
            assert queue.pending_count() == 2
            assert source.qsize() == 3

            batch = queue.resume(batch[-1].checkpoint)
            assert [item.change.path for item in batch] == ["/r/2", "/r/3"]

    def test_restart_points_track_last_persisted_change(self, tmp_path):
        source = ChangeQueue()
        source.put(make_change("/r/a", "m1", write=1))
        source.put(make_change("/r/b", "m2", write=1))
        source.put(make_change("/r/c", "m1", write=2))

        with CheckpointAndChangeQueue(source, tmp_path / "queue.db") as queue:
            queue.start(None)
            assert queue.get_monitor_restart_points() == {}

            queue.resume(None)
            points = queue.get_monitor_restart_points()

        assert points == {
            "m1": MonitorCheckpoint("m1", 0, 0, 2),
            "m2": MonitorCheckpoint("m2", 0, 0, 1),
        }

    def test_start_none_wipes_state(self, tmp_path):
        source = ChangeQueue()
        source.put(make_change("/r/a"))

        with CheckpointAndChangeQueue(source, tmp_path / "queue.db") as queue:
            queue.start(None)
            queue.resume(None)

            queue.start(None)

            assert queue.pending_count() == 0
            assert queue.get_monitor_restart_points() == {}

    def test_start_with_checkpoint_acknowledges(self, tmp_path):
        source = ChangeQueue()
        source.put(make_change("/r/a"))
        source.put(make_change("/r/b"))

        with CheckpointAndChangeQueue(source, tmp_path / "queue.db") as queue:
            queue.start(None)
            batch = queue.resume(None)

            queue.start(batch[0].checkpoint)

            assert queue.pending_count() == 1
            assert "m1" in queue.get_monitor_restart_points()

    def test_survives_reopen(self, tmp_path):
        db_path = tmp_path / "queue.db"
        source = ChangeQueue()
        source.put(make_change("/r/a"))
        source.put(make_change("/r/b"))

        with CheckpointAndChangeQueue(source, db_path) as queue:
            queue.start(None)
            batch = queue.resume(None)

        with CheckpointAndChangeQueue(ChangeQueue(), db_path) as queue:
            queue.start(batch[0].checkpoint)
            replayed = queue.resume(batch[0].checkpoint)

        assert replayed == batch[1:]

    def test_resume_waits_for_first_change(self, tmp_path):
        source = ChangeQueue()

        def produce():
            time.sleep(0.1)
            source.put(make_change("/r/late"))

        with CheckpointAndChangeQueue(source, tmp_path / "queue.db") as queue:
            queue.start(None)
            thread = threading.Thread(target=produce)
            thread.start()
            batch = queue.resume(None, wait=5.0)
            thread.join()

        assert [item.change.path for item in batch] == ["/r/late"]

    def test_invalid_checkpoint(self, tmp_path):
        with CheckpointAndChangeQueue(ChangeQueue(), tmp_path / "queue.db") as queue:
            with pytest.raises(InvalidCheckpointError):
                queue.resume("not-a-number")
            with pytest.raises(InvalidCheckpointError):
                queue.start("-1")

    def test_closed_queue(self, tmp_path):
        queue = CheckpointAndChangeQueue(ChangeQueue(), tmp_path / "queue.db")
        queue.close()
        with pytest.raises(QueueError):
            queue.resume(None)

    def test_clean(self, tmp_path):
        source = ChangeQueue()
        source.put(make_change("/r/a"))
        with CheckpointAndChangeQueue(source, tmp_path / "queue.db") as queue:
            queue.start(None)
            queue.resume(None)
            queue.clean()
            assert queue.pending_count() == 0
            assert queue.get_monitor_restart_points() == {}
