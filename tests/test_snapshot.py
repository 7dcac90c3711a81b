"""Tests for snapshot records, reader and writer."""

import pytest

from src.snapwatch.acl import Acl
from src.snapwatch.exceptions import SnapshotReaderError, SnapshotWriterError
from src.snapwatch.models import FileKind
from src.snapwatch.snapshot import (
    SnapshotReader,
    SnapshotRecord,
    SnapshotWriter,
    ordering_key,
    path_compare,
)


def make_record(path, kind=FileKind.FILE, **overrides):
    values = dict(
        file_system_type="local",
        path=path,
        kind=kind,
        last_modified=1000,
        acl=Acl.new_acl(["alice"], ["staff"]),
        checksum="abc" if kind == FileKind.FILE else "",
        scan_time=2000,
        stable=False,
    )
    values.update(overrides)
    return SnapshotRecord(**values)


class TestOrdering:
    """Tests for snapshot path ordering."""

    def test_directory_before_dotted_sibling(self):
        paths = ["/r/foo.bar", "/r/foo/x", "/r/foo/"]
        assert sorted(paths, key=ordering_key) == ["/r/foo/", "/r/foo/x", "/r/foo.bar"]

    def test_file_and_directory_compare_equal(self):
        assert path_compare("/r/foo", "/r/foo/") == 0

    def test_compare(self):
        assert path_compare("/r/a", "/r/b") == -1
        assert path_compare("/r/b/c", "/r/b") == 1


class TestSnapshotRecord:
    """Tests for SnapshotRecord."""

    def test_dict_round_trip(self):
        record = make_record("/r/a.txt", stable=True)
        assert SnapshotRecord.from_dict(record.to_dict()) == record

    def test_is_directory(self):
        assert make_record("/r/d/", FileKind.DIR).is_directory
        assert not make_record("/r/f").is_directory

    def test_with_stable(self):
        record = make_record("/r/a.txt")
        stable = record.with_stable(True)
        assert stable.stable
        assert not record.stable
        assert record.with_stable(False) is record

    def test_missing_field(self):
        data = make_record("/r/a.txt").to_dict()
        del data["checksum"]
        with pytest.raises(SnapshotReaderError):
            SnapshotRecord.from_dict(data)

    def test_bad_kind(self):
        data = make_record("/r/a.txt").to_dict()
        data["kind"] = "socket"
        with pytest.raises(SnapshotReaderError):
            SnapshotRecord.from_dict(data)


class TestSnapshotReaderWriter:
    """Tests for reading and writing snapshot files."""

    def test_write_then_read(self, tmp_path):
        path = tmp_path / "snap.1"
        records = [make_record("/r/a"), make_record("/r/d/", FileKind.DIR), make_record("/r/d/b")]
        with SnapshotWriter(path, 1) as writer:
            for record in records:
                writer.write(record)
            assert writer.record_count == 3

        with SnapshotReader.open(path, 1) as reader:
            assert list(reader) == records
            # The read that hits the end is counted
            assert reader.record_number == 4

    def test_empty_reader(self):
        reader = SnapshotReader.empty()
        assert reader.snapshot_number == 0
        assert reader.read() is None
        assert reader.record_number == 1

    def test_read_past_end(self):
        reader = SnapshotReader.empty()
        reader.read()
        with pytest.raises(SnapshotReaderError):
            reader.read()

    def test_incomplete_line(self, tmp_path):
        path = tmp_path / "snap.1"
        with SnapshotWriter(path, 1) as writer:
            writer.write(make_record("/r/a"))
        with open(path, "a", encoding="utf-8") as f:
            f.write('{"path": "/r/b"')

        with SnapshotReader.open(path, 1) as reader:
            assert reader.read() is not None
            with pytest.raises(SnapshotReaderError):
                reader.read()

    def test_corrupt_line(self, tmp_path):
        path = tmp_path / "snap.1"
        path.write_text("garbage\n")
        with SnapshotReader.open(path, 1) as reader:
            with pytest.raises(SnapshotReaderError):
                reader.read()

    def test_open_missing(self, tmp_path):
        with pytest.raises(SnapshotReaderError):
            SnapshotReader.open(tmp_path / "snap.9", 9)

    def test_skip_records(self, tmp_path):
        path = tmp_path / "snap.1"
        with SnapshotWriter(path, 1) as writer:
            writer.write(make_record("/r/a"))
            writer.write(make_record("/r/b"))

        with SnapshotReader.open(path, 1) as reader:
            reader.skip_records(1)
            assert reader.read().path == "/r/b"

        with SnapshotReader.open(path, 1) as reader:
            with pytest.raises(SnapshotReaderError):
                reader.skip_records(3)

    def test_write_after_close(self, tmp_path):
        writer = SnapshotWriter(tmp_path / "snap.1", 1)
        writer.close()
        with pytest.raises(SnapshotWriterError):
            writer.write(make_record("/r/a"))

    def test_writer_in_missing_directory(self, tmp_path):
        with pytest.raises(SnapshotWriterError):
            SnapshotWriter(tmp_path / "missing" / "snap.1", 1)
