"""Data models for the snapwatch package."""

import json
from dataclasses import dataclass
from enum import Enum

from .exceptions import InvalidCheckpointError


class FileKind(Enum):
    """Kind of entry recorded in a snapshot."""
    FILE = "file"
    DIR = "dir"


class ChangeKind(Enum):
    """Types of change a monitor pass can emit."""
    NEW_FILE = "new_file"
    NEW_DIR = "new_dir"
    DELETED_FILE = "deleted_file"
    DELETED_DIR = "deleted_dir"
    CHANGED_CONTENT = "changed_content"
    CHANGED_DIR_METADATA = "changed_dir_metadata"


class FilterReason(Enum):
    """Reason codes recorded when an entry is skipped."""
    PATTERN_MISMATCH = "pattern_mismatch"
    NOT_REGULAR_FILE = "not_regular_file"
    UNREADABLE = "unreadable"
    TOO_BIG = "too_big"
    UNSUPPORTED_MIME_TYPE = "unsupported_mime_type"
    IO_EXCEPTION = "io_exception"
    ACCESS_DENIED = "access_denied"


@dataclass(frozen=True, order=True)
class MonitorCheckpoint:
    """
    Resumable position in one monitor's snapshot read/write stream.

    Checkpoints of one monitor are ordered by
    (snapshot_number, read_record_number, write_record_number).

    Attributes:
        monitor_name: Hash of the monitored start path
        snapshot_number: Number of the snapshot being read
        read_record_number: Records consumed from the snapshot being read
        write_record_number: Records written to the new snapshot
    """
    monitor_name: str
    snapshot_number: int
    read_record_number: int
    write_record_number: int

    def __post_init__(self):
        if self.snapshot_number < 0:
            raise ValueError(f"snapshot_number must not be negative: {self.snapshot_number}")
        if self.read_record_number < 0:
            raise ValueError(f"read_record_number must not be negative: {self.read_record_number}")
        if self.write_record_number < 0:
            raise ValueError(f"write_record_number must not be negative: {self.write_record_number}")

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "monitor_name": self.monitor_name,
            "snapshot_number": self.snapshot_number,
            "read_record_number": self.read_record_number,
            "write_record_number": self.write_record_number,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MonitorCheckpoint":
        """Create from dictionary."""
        return cls(
            monitor_name=data["monitor_name"],
            snapshot_number=int(data["snapshot_number"]),
            read_record_number=int(data["read_record_number"]),
            write_record_number=int(data["write_record_number"]),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)

    @classmethod
    def from_json(cls, text: str) -> "MonitorCheckpoint":
        return cls.from_dict(json.loads(text))


@dataclass(frozen=True)
class Change:
    """
    A change detected by a monitor pass.

    Attributes:
        kind: What happened to the entry
        path: Snapshot path of the entry (directories end with "/")
        file_system_type: Transport the entry belongs to
        checkpoint: Position of the monitor when the change was emitted
    """
    kind: ChangeKind
    path: str
    file_system_type: str
    checkpoint: MonitorCheckpoint

    @property
    def monitor_name(self) -> str:
        return self.checkpoint.monitor_name

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "kind": self.kind.value,
            "path": self.path,
            "file_system_type": self.file_system_type,
            "checkpoint": self.checkpoint.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Change":
        """Create from dictionary."""
        return cls(
            kind=ChangeKind(data["kind"]),
            path=data["path"],
            file_system_type=data["file_system_type"],
            checkpoint=MonitorCheckpoint.from_dict(data["checkpoint"]),
        )


def parse_global_checkpoint(checkpoint: str) -> int:
    """
    Parse a consumer-facing checkpoint string.

    Args:
        checkpoint: String form of a queue sequence number

    Returns:
        The sequence number

    Raises:
        InvalidCheckpointError: If the string is not a non-negative integer
    """
    try:
        sequence = int(checkpoint)
    except (TypeError, ValueError):
        raise InvalidCheckpointError(f"Invalid checkpoint: {checkpoint!r}")
    if sequence < 0:
        raise InvalidCheckpointError(f"Invalid checkpoint: {checkpoint!r}")
    return sequence


@dataclass(frozen=True)
class CheckpointAndChange:
    """A change paired with the global checkpoint that acknowledges it."""
    checkpoint: str
    change: Change

    def to_dict(self) -> dict:
        return {"checkpoint": self.checkpoint, "change": self.change.to_dict()}

    @classmethod
    def from_dict(cls, data: dict) -> "CheckpointAndChange":
        return cls(
            checkpoint=data["checkpoint"],
            change=Change.from_dict(data["change"]),
        )
