"""
Snapwatch Package

A poll-based file tree monitor that finds changes by diffing each scan
against the previous snapshot and delivers them through a checkpointed,
durable queue.

Features:
- One monitor thread per start path
- Change events: new/deleted file, new/deleted directory, changed content,
  changed directory metadata
- Content checksums with a stability interval
- File and share ACE aggregation into a single ACL
- Crash recovery by stitching snapshots to the last durable checkpoint
- At-least-once delivery through a SQLite-backed queue
- Optional filesystem notifications to start the next pass early
"""

from .models import (
    FileKind,
    ChangeKind,
    FilterReason,
    MonitorCheckpoint,
    Change,
    CheckpointAndChange,
    parse_global_checkpoint,
)

from .config import MonitorConfig

from .exceptions import (
    SnapwatchError,
    SnapshotError,
    SnapshotReaderError,
    SnapshotWriterError,
    SnapshotStoreError,
    FatalMonitorError,
    MonitorInterrupted,
    FileAccessError,
    ResourceNotFoundError,
    InsufficientAccessError,
    RepositoryUnavailableError,
    QueueError,
    InvalidCheckpointError,
    MonitorManagerError,
)

from .acl import Acl, Ace, Sid, SidType, AceSecurityLevel, AclFormat, AclAggregator
from .snapshot import SnapshotRecord, SnapshotReader, SnapshotWriter, ordering_key
from .snapshot_store import SnapshotStore
from .file_access import (
    ReadonlyFile,
    LocalReadonlyFile,
    AccessTimePreservingFile,
    ListingResult,
    open_start_path,
)
from .patterns import FilePatternMatcher
from .checksum import ChecksumGenerator
from .filters import RejectionSink, LoggingRejectionSink, MemoryRejectionSink, MimeTypeOracle
from .monitor import Monitor, MonitorCallback, FilteringCallback
from .change_queue import ChangeQueue, ChangeQueueCallback
from .queue import CheckpointAndChangeQueue
from .fs_watcher import PassTrigger
from .manager import MonitorManager, monitor_name
from .traversal import ChangeTraversal


__all__ = [
    # Models
    "FileKind",
    "ChangeKind",
    "FilterReason",
    "MonitorCheckpoint",
    "Change",
    "CheckpointAndChange",
    "parse_global_checkpoint",
    # Config
    "MonitorConfig",
    # Exceptions
    "SnapwatchError",
    "SnapshotError",
    "SnapshotReaderError",
    "SnapshotWriterError",
    "SnapshotStoreError",
    "FatalMonitorError",
    "MonitorInterrupted",
    "FileAccessError",
    "ResourceNotFoundError",
    "InsufficientAccessError",
    "RepositoryUnavailableError",
    "QueueError",
    "InvalidCheckpointError",
    "MonitorManagerError",
    # Security
    "Acl",
    "Ace",
    "Sid",
    "SidType",
    "AceSecurityLevel",
    "AclFormat",
    "AclAggregator",
    # Snapshots
    "SnapshotRecord",
    "SnapshotReader",
    "SnapshotWriter",
    "SnapshotStore",
    "ordering_key",
    # File access
    "ReadonlyFile",
    "LocalReadonlyFile",
    "AccessTimePreservingFile",
    "ListingResult",
    "open_start_path",
    "FilePatternMatcher",
    "ChecksumGenerator",
    "RejectionSink",
    "LoggingRejectionSink",
    "MemoryRejectionSink",
    "MimeTypeOracle",
    # Components
    "Monitor",
    "MonitorCallback",
    "FilteringCallback",
    "ChangeQueue",
    "ChangeQueueCallback",
    "CheckpointAndChangeQueue",
    "PassTrigger",
    "MonitorManager",
    "monitor_name",
    # Consumer session
    "ChangeTraversal",
]

__version__ = "0.1.0"
