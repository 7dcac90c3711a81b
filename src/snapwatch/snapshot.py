"""Snapshot records and the JSON-lines snapshot reader and writer."""

import json
import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import IO, Iterator, Optional, Tuple

from .acl import Acl
from .exceptions import SnapshotReaderError, SnapshotWriterError
from .models import FileKind

logger = logging.getLogger(__name__)

SEPARATOR = "/"


def ordering_key(path: str) -> Tuple[str, ...]:
    """
    Sort key for snapshot paths.

    Paths compare component by component, so a directory sorts directly
    before its own children and before a sibling such as "foo.bar".
    A file "foo" and a directory "foo/" have the same key.

    Args:
        path: Snapshot path, directories ending with the separator

    Returns:
        Tuple of path components
    """
    return tuple(path.rstrip(SEPARATOR).split(SEPARATOR))


def path_compare(a: str, b: str) -> int:
    """Compare two snapshot paths, returning -1, 0 or 1."""
    key_a = ordering_key(a)
    key_b = ordering_key(b)
    if key_a < key_b:
        return -1
    if key_a > key_b:
        return 1
    return 0


@dataclass(frozen=True)
class SnapshotRecord:
    """
    One persisted fact about one path as of one scan pass.

    Attributes:
        file_system_type: Transport the path belongs to (e.g. "local")
        path: Full path; directory paths end with the separator
        kind: FILE or DIR
        last_modified: Modification time in milliseconds
        acl: Access list observed for the path
        checksum: Content checksum (empty for directories)
        scan_time: Time the record was created, in milliseconds
        stable: Whether the content has been unchanged for the stability interval
    """
    file_system_type: str
    path: str
    kind: FileKind
    last_modified: int
    acl: Acl
    checksum: str
    scan_time: int
    stable: bool = False

    @property
    def is_directory(self) -> bool:
        return self.kind == FileKind.DIR

    def with_stable(self, stable: bool) -> "SnapshotRecord":
        """Return a copy with the stable flag replaced."""
        if stable == self.stable:
            return self
        return replace(self, stable=stable)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "file_system_type": self.file_system_type,
            "path": self.path,
            "kind": self.kind.value,
            "last_modified": self.last_modified,
            "acl": self.acl.to_dict(),
            "checksum": self.checksum,
            "scan_time": self.scan_time,
            "stable": self.stable,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SnapshotRecord":
        """
        Create from dictionary.

        Raises:
            SnapshotReaderError: If a field is missing or malformed
        """
        try:
            return cls(
                file_system_type=data["file_system_type"],
                path=data["path"],
                kind=FileKind(data["kind"]),
                last_modified=int(data["last_modified"]),
                acl=Acl.from_dict(data["acl"]),
                checksum=data["checksum"],
                scan_time=int(data["scan_time"]),
                stable=bool(data["stable"]),
            )
        except KeyError as e:
            raise SnapshotReaderError(f"Snapshot record is missing field {e}")
        except (TypeError, ValueError) as e:
            raise SnapshotReaderError(f"Malformed snapshot record: {e}")


class SnapshotReader:
    """
    Reads the records of one snapshot in order.

    record_number counts calls to read(), including the call that reaches
    the end of the snapshot.
    """

    def __init__(
        self,
        stream: Optional[IO[str]],
        path: Optional[Path],
        snapshot_number: int,
    ):
        self._stream = stream
        self.path = path
        self.snapshot_number = snapshot_number
        self.record_number = 0
        self._done = False

    @classmethod
    def empty(cls) -> "SnapshotReader":
        """Reader over the empty snapshot number 0."""
        return cls(None, None, 0)

    @classmethod
    def open(cls, path: Path, snapshot_number: int) -> "SnapshotReader":
        try:
            stream = open(path, "r", encoding="utf-8")
        except OSError as e:
            raise SnapshotReaderError(f"Cannot open snapshot {path}: {e}") from e
        return cls(stream, path, snapshot_number)

    def read(self) -> Optional[SnapshotRecord]:
        """
        Read the next record.

        Returns:
            The next record, or None at the end of the snapshot

        Raises:
            SnapshotReaderError: On I/O failure, a corrupt line, or a read
                after the end of the snapshot
        """
        if self._done:
            raise SnapshotReaderError(f"Read past end of snapshot {self.path}")

        self.record_number += 1
        if self._stream is None:
            self._done = True
            return None

        try:
            line = self._stream.readline()
        except OSError as e:
            raise SnapshotReaderError(f"Failed reading {self.path}: {e}") from e

        if not line:
            self._done = True
            return None
        if not line.endswith("\n"):
            raise SnapshotReaderError(
                f"Incomplete record at line {self.record_number} of {self.path}"
            )
        try:
            data = json.loads(line)
        except json.JSONDecodeError as e:
            raise SnapshotReaderError(
                f"Corrupt record at line {self.record_number} of {self.path}: {e}"
            ) from e
        return SnapshotRecord.from_dict(data)

    def skip_records(self, count: int) -> None:
        """
        Skip records.

        Raises:
            SnapshotReaderError: If the snapshot has fewer records
        """
        for _ in range(count):
            if self.read() is None:
                raise SnapshotReaderError(
                    f"Snapshot {self.path} ended before record {count}"
                )

    def __iter__(self) -> Iterator[SnapshotRecord]:
        while not self._done:
            record = self.read()
            if record is None:
                break
            yield record

    def close(self) -> None:
        if self._stream is not None:
            try:
                self._stream.close()
            except OSError as e:
                logger.warning(f"Failed to close snapshot reader {self.path}: {e}")
            self._stream = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class SnapshotWriter:
    """
    Appends records to a new snapshot file.

    Every record is flushed and fsynced before write() returns, so a record
    counted in record_count survives a crash.
    """

    def __init__(self, path: Path, snapshot_number: int):
        self.path = path
        self.snapshot_number = snapshot_number
        self.record_count = 0
        try:
            self._stream = open(path, "w", encoding="utf-8")
        except OSError as e:
            raise SnapshotWriterError(f"Cannot create snapshot {path}: {e}") from e

    def write(self, record: SnapshotRecord) -> None:
        if self._stream is None:
            raise SnapshotWriterError(f"Snapshot writer {self.path} is closed")

        line = json.dumps(record.to_dict(), sort_keys=True) + "\n"
        try:
            self._stream.write(line)
            self._stream.flush()
            os.fsync(self._stream.fileno())
        except OSError as e:
            raise SnapshotWriterError(f"Failed writing {self.path}: {e}") from e
        self.record_count += 1

    def close(self) -> None:
        if self._stream is not None:
            try:
                self._stream.close()
            except OSError as e:
                raise SnapshotWriterError(f"Failed closing {self.path}: {e}") from e
            finally:
                self._stream = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
