"""Tests for the snapshot store and stitching."""

import pytest

from src.snapwatch.acl import Acl
from src.snapwatch.exceptions import SnapshotStoreError
from src.snapwatch.models import FileKind, MonitorCheckpoint
from src.snapwatch.snapshot import SnapshotReader, SnapshotRecord, SnapshotWriter
from src.snapwatch.snapshot_store import SnapshotStore


def record(path, checksum="x"):
    return SnapshotRecord(
        file_system_type="local",
        path=path,
        kind=FileKind.DIR if path.endswith("/") else FileKind.FILE,
        last_modified=1,
        acl=Acl.indeterminate(),
        checksum=checksum,
        scan_time=1,
    )


def write_snapshot(directory, number, records):
    with SnapshotWriter(SnapshotStore.snapshot_path(directory, number), number) as writer:
        for r in records:
            writer.write(r)


def read_snapshot(directory, number):
    with SnapshotReader.open(SnapshotStore.snapshot_path(directory, number), number) as reader:
        return [(r.path, r.checksum) for r in reader]


class TestSnapshotStore:
    """Tests for SnapshotStore numbering and cleanup."""

    def test_creates_directory(self, tmp_path):
        store = SnapshotStore(tmp_path / "snaps" / "m1")
        assert store.directory.is_dir()
        assert store.list_snapshot_numbers() == []

    def test_empty_store_reads_empty_snapshot(self, tmp_path):
        store = SnapshotStore(tmp_path)
        reader = store.open_most_recent_snapshot()
        assert reader.snapshot_number == 0
        assert reader.read() is None

    def test_numbering(self, tmp_path):
        store = SnapshotStore(tmp_path)
        with store.open_new_snapshot_writer() as writer:
            assert writer.snapshot_number == 1
        write_snapshot(tmp_path, 7, [record("/r/a")])
        (tmp_path / "snap.7.tmp").write_text("")
        (tmp_path / "notes").write_text("")

        assert store.list_snapshot_numbers() == [1, 7]
        with store.open_most_recent_snapshot() as reader:
            assert reader.snapshot_number == 7
        with store.open_new_snapshot_writer() as writer:
            assert writer.snapshot_number == 8

    def test_delete_old_snapshots_needs_guarantee(self, tmp_path):
        store = SnapshotStore(tmp_path)
        for n in (1, 2, 3):
            write_snapshot(tmp_path, n, [])

        assert store.delete_old_snapshots() == 0

        store.accept_guarantee(MonitorCheckpoint("m1", 2, 0, 0))
        assert store.delete_old_snapshots() == 1
        assert store.list_snapshot_numbers() == [2, 3]

    def test_delete_snapshot(self, tmp_path):
        store = SnapshotStore(tmp_path)
        writer = store.open_new_snapshot_writer()
        store.delete_snapshot(writer)
        assert store.list_snapshot_numbers() == []

    def test_delete_directory(self, tmp_path):
        directory = tmp_path / "m1"
        SnapshotStore(directory)
        SnapshotStore.delete_directory(directory)
        assert not directory.exists()
        # Missing directory is fine
        SnapshotStore.delete_directory(directory)


class TestStitch:
    """Tests for rebuilding a snapshot from a checkpoint."""

    def test_stitch_mid_pass(self, tmp_path):
        write_snapshot(tmp_path, 1, [record("/r/a"), record("/r/b"), record("/r/c")])
        # Pass 2 crashed after changing a and consuming a and b
        write_snapshot(tmp_path, 2, [record("/r/a", "new"), record("/r/b"), record("/r/bb")])
        write_snapshot(tmp_path, 3, [record("/r/zzz")])

        number = SnapshotStore.stitch(tmp_path, MonitorCheckpoint("m1", 1, 2, 2))

        assert number == 3
        assert read_snapshot(tmp_path, 3) == [("/r/a", "new"), ("/r/b", "x"), ("/r/c", "x")]
        assert not list(tmp_path.glob("*.tmp"))

    def test_stitch_from_empty_snapshot(self, tmp_path):
        write_snapshot(tmp_path, 1, [record("/r/a"), record("/r/d/"), record("/r/d/e")])

        number = SnapshotStore.stitch(tmp_path, MonitorCheckpoint("m1", 0, 0, 2))

        assert number == 2
        assert read_snapshot(tmp_path, 2) == [("/r/a", "x"), ("/r/d/", "x")]

    def test_stitch_before_anything_written(self, tmp_path):
        directory = tmp_path / "new"
        number = SnapshotStore.stitch(directory, MonitorCheckpoint("m1", 0, 0, 0))
        assert number == 2
        assert read_snapshot(directory, 2) == []

    def test_stitch_missing_old_snapshot(self, tmp_path):
        write_snapshot(tmp_path, 2, [record("/r/a")])
        with pytest.raises(SnapshotStoreError):
            SnapshotStore.stitch(tmp_path, MonitorCheckpoint("m1", 1, 0, 1))

    def test_stitch_short_new_snapshot(self, tmp_path):
        write_snapshot(tmp_path, 1, [record("/r/a")])
        write_snapshot(tmp_path, 2, [record("/r/a")])
        with pytest.raises(SnapshotStoreError):
            SnapshotStore.stitch(tmp_path, MonitorCheckpoint("m1", 1, 1, 5))
        assert not list(tmp_path.glob("*.tmp"))
