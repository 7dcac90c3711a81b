"""Bounded buffer between the monitor threads and the durable queue."""

import logging
import queue
import threading
from typing import Optional

from .exceptions import MonitorInterrupted
from .file_access import ReadonlyFile
from .models import Change, ChangeKind, MonitorCheckpoint
from .monitor import MonitorCallback

logger = logging.getLogger(__name__)

PUT_RETRY_SECONDS = 0.5


class ChangeQueue:
    """
    Thread-safe bounded FIFO of changes.

    Monitor threads block while the buffer is full, which throttles the
    scan to the speed of the consumer.
    """

    def __init__(self, max_size: int = 500):
        self.max_size = max_size
        self._queue: "queue.Queue[Change]" = queue.Queue(maxsize=max_size)

    def put(self, change: Change, stop_event: Optional[threading.Event] = None) -> None:
        """
        Add a change, waiting for space.

        Raises:
            MonitorInterrupted: If stop_event is set while waiting
        """
        while True:
            if stop_event is not None and stop_event.is_set():
                raise MonitorInterrupted("Interrupted while waiting for queue space")
            try:
                self._queue.put(change, timeout=PUT_RETRY_SECONDS)
                return
            except queue.Full:
                continue

    def get_next_change(self, timeout: Optional[float] = None) -> Optional[Change]:
        """
        Take the next change.

        Args:
            timeout: Seconds to wait; None or 0 returns immediately

        Returns:
            The change, or None if none is available
        """
        try:
            if timeout:
                return self._queue.get(timeout=timeout)
            return self._queue.get_nowait()
        except queue.Empty:
            return None

    def qsize(self) -> int:
        return self._queue.qsize()

    def clear(self) -> int:
        """
        Drop all buffered changes.

        Returns:
            Number of changes dropped
        """
        dropped = 0
        while True:
            try:
                self._queue.get_nowait()
                dropped += 1
            except queue.Empty:
                return dropped

    def new_callback(self, stop_event: Optional[threading.Event] = None) -> "ChangeQueueCallback":
        """Create a callback that feeds one monitor's changes into this queue."""
        return ChangeQueueCallback(self, stop_event)


class ChangeQueueCallback(MonitorCallback):
    """Converts monitor callbacks into queued Change objects."""

    def __init__(self, change_queue: ChangeQueue, stop_event: Optional[threading.Event] = None):
        self.change_queue = change_queue
        self.stop_event = stop_event
        self.changes_this_pass = 0

    def _add(self, kind: ChangeKind, file: ReadonlyFile, checkpoint: MonitorCheckpoint) -> None:
        change = Change(
            kind=kind,
            path=file.snapshot_path(),
            file_system_type=file.file_system_type,
            checkpoint=checkpoint,
        )
        self.change_queue.put(change, self.stop_event)
        self.changes_this_pass += 1
        logger.debug(f"Queued {kind.value}: {change.path}")

    def pass_begin(self) -> None:
        self.changes_this_pass = 0

    def new_file(self, file: ReadonlyFile, checkpoint: MonitorCheckpoint) -> None:
        self._add(ChangeKind.NEW_FILE, file, checkpoint)

    def new_directory(self, file: ReadonlyFile, checkpoint: MonitorCheckpoint) -> None:
        self._add(ChangeKind.NEW_DIR, file, checkpoint)

    def deleted_file(self, file: ReadonlyFile, checkpoint: MonitorCheckpoint) -> None:
        self._add(ChangeKind.DELETED_FILE, file, checkpoint)

    def deleted_directory(self, file: ReadonlyFile, checkpoint: MonitorCheckpoint) -> None:
        self._add(ChangeKind.DELETED_DIR, file, checkpoint)

    def changed_file_content(self, file: ReadonlyFile, checkpoint: MonitorCheckpoint) -> None:
        self._add(ChangeKind.CHANGED_CONTENT, file, checkpoint)

    def changed_directory_metadata(self, file: ReadonlyFile, checkpoint: MonitorCheckpoint) -> None:
        self._add(ChangeKind.CHANGED_DIR_METADATA, file, checkpoint)

    def pass_complete(self, checkpoint: MonitorCheckpoint) -> None:
        logger.debug(f"Pass complete at {checkpoint} with {self.changes_this_pass} change(s)")

    def has_enqueued_at_least_one_change_this_pass(self) -> bool:
        return self.changes_this_pass > 0
