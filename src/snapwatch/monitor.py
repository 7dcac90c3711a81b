"""
Per-root snapshot diff engine.

A Monitor repeatedly walks its start path in snapshot order, merges the
live entries against the previous snapshot, reports the differences to a
MonitorCallback and writes the next snapshot.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

from .acl import Acl, AclAggregator
from .checksum import ChecksumGenerator
from .config import MonitorConfig
from .exceptions import (
    FatalMonitorError,
    FileAccessError,
    InsufficientAccessError,
    MonitorInterrupted,
    RepositoryUnavailableError,
    SnapshotError,
)
from .file_access import DeletedFile, ReadonlyFile
from .filters import LoggingRejectionSink, MimeTypeOracle, RejectionSink
from .models import FileKind, FilterReason, MonitorCheckpoint
from .patterns import FilePatternMatcher
from .snapshot import SnapshotReader, SnapshotRecord, SnapshotWriter, path_compare
from .snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)


def current_millis() -> int:
    return int(time.time() * 1000)


class MonitorCallback(ABC):
    """Receives the changes found by a monitor pass."""

    @abstractmethod
    def pass_begin(self) -> None:
        pass

    @abstractmethod
    def new_file(self, file: ReadonlyFile, checkpoint: MonitorCheckpoint) -> None:
        pass

    @abstractmethod
    def new_directory(self, file: ReadonlyFile, checkpoint: MonitorCheckpoint) -> None:
        pass

    @abstractmethod
    def deleted_file(self, file: ReadonlyFile, checkpoint: MonitorCheckpoint) -> None:
        pass

    @abstractmethod
    def deleted_directory(self, file: ReadonlyFile, checkpoint: MonitorCheckpoint) -> None:
        pass

    @abstractmethod
    def changed_file_content(self, file: ReadonlyFile, checkpoint: MonitorCheckpoint) -> None:
        pass

    @abstractmethod
    def changed_directory_metadata(self, file: ReadonlyFile, checkpoint: MonitorCheckpoint) -> None:
        pass

    @abstractmethod
    def pass_complete(self, checkpoint: MonitorCheckpoint) -> None:
        pass

    @abstractmethod
    def has_enqueued_at_least_one_change_this_pass(self) -> bool:
        pass


class FilteringCallback(MonitorCallback):
    """
    Wraps a callback and drops files the MIME type oracle does not accept.

    A new file of an unsupported type is not delivered. A file whose
    content changed to an unsupported type is delivered as a deletion.
    """

    def __init__(self, delegate: MonitorCallback, mime_oracle: MimeTypeOracle, sink: RejectionSink):
        self.delegate = delegate
        self.mime_oracle = mime_oracle
        self.sink = sink

    def pass_begin(self) -> None:
        self.delegate.pass_begin()

    def _rejection(self, file: ReadonlyFile) -> Optional[FilterReason]:
        if not self.mime_oracle.is_supported(file.path):
            return FilterReason.UNSUPPORTED_MIME_TYPE
        if self.mime_oracle.max_size is not None and self.mime_oracle.is_too_big(file.length()):
            return FilterReason.TOO_BIG
        return None

    def new_file(self, file: ReadonlyFile, checkpoint: MonitorCheckpoint) -> None:
        reason = self._rejection(file)
        if reason is not None:
            self.sink.add(file.path, reason)
            return
        self.delegate.new_file(file, checkpoint)

    def new_directory(self, file: ReadonlyFile, checkpoint: MonitorCheckpoint) -> None:
        self.delegate.new_directory(file, checkpoint)

    def deleted_file(self, file: ReadonlyFile, checkpoint: MonitorCheckpoint) -> None:
        self.delegate.deleted_file(file, checkpoint)

    def deleted_directory(self, file: ReadonlyFile, checkpoint: MonitorCheckpoint) -> None:
        self.delegate.deleted_directory(file, checkpoint)

    def changed_file_content(self, file: ReadonlyFile, checkpoint: MonitorCheckpoint) -> None:
        reason = self._rejection(file)
        if reason is not None:
            self.sink.add(file.path, reason)
            self.delegate.deleted_file(file, checkpoint)
            return
        self.delegate.changed_file_content(file, checkpoint)

    def changed_directory_metadata(self, file: ReadonlyFile, checkpoint: MonitorCheckpoint) -> None:
        self.delegate.changed_directory_metadata(file, checkpoint)

    def pass_complete(self, checkpoint: MonitorCheckpoint) -> None:
        self.delegate.pass_complete(checkpoint)

    def has_enqueued_at_least_one_change_this_pass(self) -> bool:
        return self.delegate.has_enqueued_at_least_one_change_this_pass()


class _FileInfoCache:
    """Reads the Acl and checksum of one file at most once per pass."""

    def __init__(self, file: ReadonlyFile, monitor: "Monitor"):
        self.file = file
        self._monitor = monitor
        self._acl: Optional[Acl] = None
        self._checksum: Optional[str] = None

    @property
    def acl(self) -> Acl:
        if self._acl is None:
            self._acl = self._monitor.read_acl(self.file)
        return self._acl

    @property
    def checksum(self) -> str:
        if self._checksum is None:
            self._checksum = self._monitor.checksum_generator.checksum(self.file)
        return self._checksum


class Monitor:
    """
    Diff engine for one start path.

    Runs passes until stopped. Each pass reads the most recent snapshot,
    walks the live tree depth-first with an explicit stack, reports every
    difference with a checkpoint, and writes a new snapshot.
    """

    def __init__(
        self,
        name: str,
        store: SnapshotStore,
        callback: MonitorCallback,
        root: ReadonlyFile,
        config: Optional[MonitorConfig] = None,
        matcher: Optional[FilePatternMatcher] = None,
        checksum_generator: Optional[ChecksumGenerator] = None,
        sink: Optional[RejectionSink] = None,
        clock: Optional[Callable[[], int]] = None,
        acl_aggregator: Optional[AclAggregator] = None,
        stop_event: Optional[threading.Event] = None,
    ):
        """
        Initialize the monitor.

        Args:
            name: Monitor name, a hash of the start path
            store: Snapshot store owned by this monitor
            callback: Receiver of changes
            root: Start path
            config: Monitor configuration
            matcher: Include/exclude filter
            checksum_generator: Content checksum implementation
            sink: Receiver of rejected entries
            clock: Returns the current time in milliseconds
            acl_aggregator: Combines ACEs of files that expose them
            stop_event: Set to stop the monitor
        """
        self.name = name
        self.store = store
        self.callback = callback
        self.root = root
        self.config = config or MonitorConfig()
        self.matcher = matcher or FilePatternMatcher(
            self.config.include_patterns, self.config.exclude_patterns
        )
        self.checksum_generator = checksum_generator or ChecksumGenerator(self.config.checksum_algorithm)
        self.sink = sink or LoggingRejectionSink()
        self.clock = clock or current_millis
        self.acl_aggregator = acl_aggregator or self.config.build_acl_aggregator()
        self.fatal_error: Optional[FatalMonitorError] = None
        self.pass_count = 0

        self._stop_event = stop_event or threading.Event()
        self._wake_event = threading.Event()
        self._guarantee: Optional[MonitorCheckpoint] = None
        self._guarantee_lock = threading.Lock()
        self._needs_stitch = False

        self._reader: Optional[SnapshotReader] = None
        self._writer: Optional[SnapshotWriter] = None
        self._current: Optional[SnapshotRecord] = None
        self._changes = 0
        self._stabilized = 0

    @property
    def guarantee(self) -> Optional[MonitorCheckpoint]:
        with self._guarantee_lock:
            return self._guarantee

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def accept_guarantee(self, checkpoint: MonitorCheckpoint) -> None:
        """
        Record that every change up to checkpoint is durably accepted.

        Older checkpoints than the current guarantee are ignored.
        """
        if checkpoint.monitor_name != self.name:
            raise ValueError(
                f"Checkpoint for monitor {checkpoint.monitor_name} given to monitor {self.name}"
            )
        with self._guarantee_lock:
            if self._guarantee is not None and checkpoint < self._guarantee:
                logger.debug(f"Ignoring stale guarantee {checkpoint} for monitor {self.name}")
                return
            self._guarantee = checkpoint
            self.store.accept_guarantee(checkpoint)

    def stop(self) -> None:
        self._stop_event.set()
        self._wake_event.set()

    def wake(self) -> None:
        """End the idle wait between passes early."""
        self._wake_event.set()

    def run(self) -> None:
        """Thread target: run passes until stopped or a fatal fault occurs."""
        logger.info(f"Monitor {self.name} started for {self.root.path}")
        try:
            while not self._stop_event.is_set():
                try:
                    if self._needs_stitch:
                        self._stitch_to_guarantee()
                    self.perform_pass()
                    if not self.callback.has_enqueued_at_least_one_change_this_pass():
                        self._wait_for_next_pass()
                except MonitorInterrupted:
                    break
                except Exception as e:
                    if not self._recover(e):
                        break
        finally:
            self._close_pass()
            logger.info(f"Monitor {self.name} stopped after {self.pass_count} pass(es)")

    def _recover(self, error: Exception) -> bool:
        """
        Prepare to continue from the guarantee after a failed pass.

        The partially written snapshot cannot be trusted, so the next pass
        starts from a snapshot stitched to the guarantee.

        Returns:
            False if the monitor must stop
        """
        self._close_pass()
        if self.guarantee is None:
            self.fatal_error = FatalMonitorError(
                f"Monitor {self.name} failed with no accepted checkpoint: {error}"
            )
            logger.error(
                f"Monitor {self.name} for {self.root.path} cannot recover without "
                f"an accepted checkpoint; clean state before restarting: {error}",
                exc_info=True,
            )
            return False
        logger.error(
            f"Monitor {self.name} failed, recovering from {self.guarantee}: {error}",
            exc_info=True,
        )
        self._needs_stitch = True
        return not self._stop_event.wait(timeout=self.config.recovery_backoff_seconds)

    def _stitch_to_guarantee(self) -> None:
        SnapshotStore.stitch(self.store.directory, self.guarantee)
        self._needs_stitch = False

    def _wait_for_next_pass(self) -> None:
        self._wake_event.wait(timeout=self.config.idle_interval_seconds)
        self._wake_event.clear()

    def _check_interrupted(self) -> None:
        if self._stop_event.is_set():
            raise MonitorInterrupted(f"Monitor {self.name} interrupted")

    def _close_pass(self) -> None:
        reader, writer = self._reader, self._writer
        self._reader = None
        self._writer = None
        self._current = None
        try:
            SnapshotStore.close(reader, writer)
        except SnapshotError as e:
            logger.warning(f"Failed to close snapshots of monitor {self.name}: {e}")

    def perform_pass(self) -> int:
        """
        Run one complete pass.

        Returns:
            Number of changes reported to the callback
        """
        self._changes = 0
        self._stabilized = 0
        self.callback.pass_begin()
        self.store.delete_old_snapshots()

        self._reader = self.store.open_most_recent_snapshot()
        self._writer = self.store.open_new_snapshot_writer()
        logger.debug(
            f"Monitor {self.name} pass reading snapshot {self._reader.snapshot_number}, "
            f"writing {self._writer.snapshot_number}"
        )
        self._current = self._reader.read()

        self._walk()
        self._process_deletes(None)
        self.callback.pass_complete(self.get_checkpoint(-1))

        writer = self._writer
        record_count = writer.record_count
        self._close_pass()
        self.pass_count += 1

        if not self.callback.has_enqueued_at_least_one_change_this_pass() and self._stabilized == 0:
            self.store.delete_snapshot(writer)
        logger.info(
            f"Monitor {self.name} pass {self.pass_count} complete: "
            f"{self._changes} change(s), {record_count} record(s)"
        )
        return self._changes

    def get_checkpoint(self, delta: int = 0) -> MonitorCheckpoint:
        """
        Return the current position.

        Args:
            delta: Adjustment of the read position; -1 when the current
                snapshot record has been read but not yet consumed
        """
        return MonitorCheckpoint(
            monitor_name=self.name,
            snapshot_number=self._reader.snapshot_number,
            read_record_number=max(0, self._reader.record_number + delta),
            write_record_number=self._writer.record_count,
        )

    def _advance(self) -> None:
        self._current = self._reader.read()

    def _walk(self) -> None:
        # Each stack entry holds the unprocessed siblings of one directory,
        # reversed so pop() returns the next one in snapshot order.
        stack: List[List[ReadonlyFile]] = [self._list_children(self.root)]
        while stack:
            self._check_interrupted()
            siblings = stack[-1]
            if not siblings:
                stack.pop()
                continue
            children = self._process_entry(siblings.pop())
            if children is not None:
                stack.append(children)

    def _list_children(self, directory: ReadonlyFile) -> List[ReadonlyFile]:
        result = directory.list_children()
        if not result.ok:
            logger.warning(f"Failed to list {directory.path}: {result.message}")
            self.sink.add(directory.path, result.reason)
            return []
        return list(reversed(result.children))

    def _reject(self, path: str, reason: FilterReason) -> None:
        self.sink.add(path, reason)

    @staticmethod
    def _reason_for(error: FileAccessError) -> FilterReason:
        if isinstance(error, InsufficientAccessError):
            return FilterReason.ACCESS_DENIED
        return FilterReason.IO_EXCEPTION

    def _process_entry(self, file: ReadonlyFile) -> Optional[List[ReadonlyFile]]:
        try:
            is_directory = file.is_directory()
        except RepositoryUnavailableError:
            raise
        except FileAccessError as e:
            self._reject(file.path, self._reason_for(e))
            return None
        if is_directory:
            return self._process_directory(file)
        self._process_file(file)
        return None

    def _process_deletes(self, path: Optional[str]) -> None:
        """Report snapshot records sorting before path (all if None) as deleted."""
        while self._current is not None and (path is None or path_compare(self._current.path, path) < 0):
            self._check_interrupted()
            self._emit_deletion(self._current)
            self._advance()

    def _emit_deletion(self, record: SnapshotRecord) -> None:
        file = DeletedFile(record.path, record.file_system_type, record.kind)
        checkpoint = self.get_checkpoint()
        if record.is_directory:
            self.callback.deleted_directory(file, checkpoint)
        else:
            self.callback.deleted_file(file, checkpoint)
        self._changes += 1

    def _matches_current(self, path: str) -> bool:
        return self._current is not None and path_compare(self._current.path, path) == 0

    def _new_record(self, file: ReadonlyFile, kind: FileKind, last_modified: int, acl: Acl, checksum: str) -> SnapshotRecord:
        return SnapshotRecord(
            file_system_type=file.file_system_type,
            path=file.snapshot_path(),
            kind=kind,
            last_modified=last_modified,
            acl=acl,
            checksum=checksum,
            scan_time=self.clock(),
            stable=False,
        )

    def read_acl(self, file: ReadonlyFile) -> Acl:
        if self.config.mark_all_documents_public:
            return Acl.public()
        if not self.config.push_acls:
            return Acl.indeterminate()
        if file.supports_aces:
            return self.acl_aggregator.aggregate(
                file.get_file_aces(), file.get_share_aces(), subject=file.path
            )
        return file.get_acl()

    def _process_directory(self, directory: ReadonlyFile) -> Optional[List[ReadonlyFile]]:
        path = directory.snapshot_path()
        if not directory.matches_pattern(self.matcher):
            self._reject(path, FilterReason.PATTERN_MISMATCH)
            return None
        try:
            last_modified = directory.last_modified()
            acl = self.read_acl(directory)
        except RepositoryUnavailableError:
            raise
        except FileAccessError as e:
            self._reject(path, self._reason_for(e))
            return None

        self._process_deletes(path)
        if self._matches_current(path):
            current = self._current
            if not current.is_directory:
                self.callback.deleted_file(
                    DeletedFile(current.path, current.file_system_type, current.kind),
                    self.get_checkpoint(),
                )
                self._writer.write(self._new_record(directory, FileKind.DIR, last_modified, acl, ""))
                self.callback.new_directory(directory, self.get_checkpoint())
                self._changes += 2
            elif current.last_modified != last_modified or current.acl != acl:
                self._writer.write(self._new_record(directory, FileKind.DIR, last_modified, acl, ""))
                self.callback.changed_directory_metadata(directory, self.get_checkpoint())
                self._changes += 1
            else:
                self._writer.write(current)
            self._advance()
        else:
            self._writer.write(self._new_record(directory, FileKind.DIR, last_modified, acl, ""))
            self.callback.new_directory(directory, self.get_checkpoint(-1))
            self._changes += 1

        return self._list_children(directory)

    def _process_file(self, file: ReadonlyFile) -> None:
        path = file.path
        if not file.matches_pattern(self.matcher):
            self._reject(path, FilterReason.PATTERN_MISMATCH)
            return
        try:
            if not file.is_regular_file():
                self._reject(path, FilterReason.NOT_REGULAR_FILE)
                return
            if not file.can_read():
                self._reject(path, FilterReason.UNREADABLE)
                return
            if file.length() > self.config.max_file_size:
                self._reject(path, FilterReason.TOO_BIG)
                return
            last_modified = file.last_modified()
        except RepositoryUnavailableError:
            raise
        except FileAccessError as e:
            self._reject(path, self._reason_for(e))
            return

        self._process_deletes(path)
        info = _FileInfoCache(file, self)
        try:
            if self._matches_current(path):
                self._process_existing_file(file, last_modified, info)
            else:
                record = self._new_record(file, FileKind.FILE, last_modified, info.acl, info.checksum)
                self._writer.write(record)
                self.callback.new_file(file, self.get_checkpoint(-1))
                self._changes += 1
        except RepositoryUnavailableError:
            raise
        except FileAccessError as e:
            # Content became unreadable; the old record, if any, is left
            # unconsumed and is reported as deleted by the next comparison.
            self._reject(path, self._reason_for(e))

    def _process_existing_file(self, file: ReadonlyFile, last_modified: int, info: _FileInfoCache) -> None:
        current = self._current
        if current.is_directory:
            record = self._new_record(file, FileKind.FILE, last_modified, info.acl, info.checksum)
            self.callback.deleted_directory(
                DeletedFile(current.path, current.file_system_type, current.kind),
                self.get_checkpoint(),
            )
            self._writer.write(record)
            self.callback.new_file(file, self.get_checkpoint())
            self._changes += 2
        elif self._file_changed(current, last_modified, info):
            record = self._new_record(file, FileKind.FILE, last_modified, info.acl, info.checksum)
            self._writer.write(record)
            self.callback.changed_file_content(file, self.get_checkpoint())
            self._changes += 1
        else:
            stable = current.stable or (
                current.scan_time + self.config.stability_interval_ms <= self.clock()
            )
            if stable and not current.stable:
                self._stabilized += 1
            self._writer.write(current.with_stable(stable))
        self._advance()

    @staticmethod
    def _file_changed(current: SnapshotRecord, last_modified: int, info: _FileInfoCache) -> bool:
        if current.last_modified != last_modified:
            return True
        if current.acl != info.acl:
            return True
        if not current.stable:
            return current.checksum != info.checksum
        return False
