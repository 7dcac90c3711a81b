"""Supervises one monitor thread per start path."""

import hashlib
import logging
import os
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .change_queue import ChangeQueue
from .checksum import ChecksumGenerator
from .config import MonitorConfig
from .exceptions import MonitorManagerError, SnapshotError
from .file_access import open_start_path
from .filters import LoggingRejectionSink, MimeTypeOracle, RejectionSink
from .fs_watcher import PassTrigger
from .models import MonitorCheckpoint
from .monitor import FilteringCallback, Monitor
from .patterns import FilePatternMatcher
from .queue import CheckpointAndChangeQueue
from .snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)


def normalize_start_path(start_path: str) -> str:
    """Return the canonical form of a start path, ending with a separator."""
    if "://" not in start_path:
        start_path = Path(os.path.abspath(start_path)).as_posix()
    if not start_path.endswith("/"):
        start_path += "/"
    return start_path


def monitor_name(start_path: str) -> str:
    """
    Derive the monitor name for a start path.

    The name is a hash of the normalized path so that it stays the same
    across restarts.
    """
    return hashlib.sha1(normalize_start_path(start_path).encode("utf-8")).hexdigest()


class MonitorManager:
    """
    Owns the monitors, their threads and the shared change queues.

    On start every monitor either begins with an empty snapshot or has its
    snapshot directory stitched to the last checkpoint the queue holds for
    it. On stop the threads are interrupted and joined with a timeout.
    """

    def __init__(
        self,
        start_paths: List[str],
        config: Optional[MonitorConfig] = None,
        change_queue: Optional[ChangeQueue] = None,
        checkpoint_queue: Optional[CheckpointAndChangeQueue] = None,
        sink: Optional[RejectionSink] = None,
        mime_oracle: Optional[MimeTypeOracle] = None,
        checksum_generator: Optional[ChecksumGenerator] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        """
        Initialize the manager.

        Args:
            start_paths: Root directories to monitor
            config: Monitor configuration
            change_queue: In-memory buffer shared by the monitors
            checkpoint_queue: Durable queue fed from change_queue
            sink: Receiver of rejected entries
            mime_oracle: MIME type filter; built from the config if omitted
            checksum_generator: Checksum implementation shared by the monitors
            clock: Millisecond clock used by the monitors
        """
        self.config = config or MonitorConfig()
        self.start_paths = [normalize_start_path(p) for p in start_paths]
        self.change_queue = change_queue or ChangeQueue(self.config.max_queue_size)
        self.checkpoint_queue = checkpoint_queue or CheckpointAndChangeQueue(
            self.change_queue,
            self.config.db_path,
            self.config.max_queue_size,
        )
        self.sink = sink or LoggingRejectionSink()
        if mime_oracle is None and self.config.supported_mime_types is not None:
            mime_oracle = MimeTypeOracle(self.config.supported_mime_types)
        self.mime_oracle = mime_oracle
        self.checksum_generator = checksum_generator
        self.clock = clock
        self.matcher = FilePatternMatcher(self.config.include_patterns, self.config.exclude_patterns)
        self.acl_aggregator = self.config.build_acl_aggregator()

        self._monitors: Dict[str, Monitor] = {}
        self._threads: Dict[str, threading.Thread] = {}
        self._pass_trigger: Optional[PassTrigger] = None
        self._running = False
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._running

    @property
    def monitors(self) -> Dict[str, Monitor]:
        with self._lock:
            return dict(self._monitors)

    def snapshot_directory(self, name: str) -> Path:
        return self.config.snapshot_root / name

    def start(self, global_checkpoint: Optional[str]) -> None:
        """
        Start one monitor thread per start path.

        Args:
            global_checkpoint: Last checkpoint the consumer committed, or
                None for a full traversal

        Raises:
            MonitorManagerError: If already running
            SnapshotError: If a snapshot directory cannot be stitched
        """
        with self._lock:
            if self._running:
                raise MonitorManagerError("Monitor manager is already running")
            self._running = True

        try:
            self.checkpoint_queue.start(global_checkpoint)
            restart_points = self.checkpoint_queue.get_monitor_restart_points()
            monitors = {}
            for start_path in self.start_paths:
                name = monitor_name(start_path)
                directory = self.snapshot_directory(name)
                checkpoint = restart_points.get(name) if global_checkpoint is not None else None
                if checkpoint is None:
                    logger.info(f"Starting {start_path} from an empty snapshot")
                    SnapshotStore.delete_directory(directory)
                else:
                    logger.info(f"Restarting {start_path} from {checkpoint}")
                    SnapshotStore.stitch(directory, checkpoint)

                monitor = self._create_monitor(name, start_path, directory)
                if checkpoint is not None:
                    monitor.accept_guarantee(checkpoint)
                monitors[name] = monitor
        except (SnapshotError, OSError) as e:
            logger.error(f"Failed to start monitors: {e}", exc_info=True)
            with self._lock:
                self._running = False
            raise

        threads = {}
        for name, monitor in monitors.items():
            thread = threading.Thread(target=monitor.run, name=monitor.root.path)
            thread.daemon = True
            threads[name] = thread

        with self._lock:
            self._monitors = monitors
            self._threads = threads

        if self.config.wake_on_change:
            self._pass_trigger = PassTrigger(self.matcher)
            for monitor in monitors.values():
                self._pass_trigger.start_watching(monitor.root.path, monitor.wake)

        for thread in threads.values():
            thread.start()
        logger.info(f"Started {len(threads)} monitor(s)")

    def _create_monitor(self, name: str, start_path: str, directory: Path) -> Monitor:
        store = SnapshotStore(directory)
        stop_event = threading.Event()
        callback = self.change_queue.new_callback(stop_event)
        if self.mime_oracle is not None:
            callback = FilteringCallback(callback, self.mime_oracle, self.sink)
        return Monitor(
            name=name,
            store=store,
            callback=callback,
            root=open_start_path(start_path, self.config.preserve_access_time),
            config=self.config,
            matcher=self.matcher,
            checksum_generator=self.checksum_generator,
            sink=self.sink,
            clock=self.clock,
            acl_aggregator=self.acl_aggregator,
            stop_event=stop_event,
        )

    def stop(self) -> None:
        """
        Stop all monitor threads.

        Threads that do not finish within the join timeout are left behind
        with a warning; the next start() stitches their snapshots.
        """
        with self._lock:
            if not self._running:
                return
            self._running = False
            monitors = list(self._monitors.values())
            threads = list(self._threads.values())
            self._monitors = {}
            self._threads = {}

        for monitor in monitors:
            monitor.stop()

        if self._pass_trigger is not None:
            self._pass_trigger.stop_all()
            self._pass_trigger = None

        timeout = self.config.join_timeout_seconds
        for thread in threads:
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning(f"Monitor thread for {thread.name} did not stop within {timeout}s")

        dropped = self.change_queue.clear()
        logger.info(f"Stopped {len(threads)} monitor(s), dropped {dropped} buffered change(s)")

    def clean(self) -> None:
        """Delete all snapshot and checkpoint state; the next start is a full traversal."""
        self.stop()
        SnapshotStore.delete_directory(self.config.snapshot_root)
        self.checkpoint_queue.clean()

    def accept_guarantees(self, guarantees: Dict[str, MonitorCheckpoint]) -> None:
        """
        Hand durably accepted checkpoints to their monitors.

        Args:
            guarantees: Mapping of monitor name to checkpoint
        """
        with self._lock:
            monitors = dict(self._monitors)
        for name, checkpoint in guarantees.items():
            monitor = monitors.get(name)
            if monitor is None:
                logger.debug(f"No running monitor named {name}")
                continue
            monitor.accept_guarantee(checkpoint)

    def get_monitor_states(self) -> List[dict]:
        """
        Describe every monitor.

        Returns:
            One dictionary per start path
        """
        with self._lock:
            monitors = dict(self._monitors)
            threads = dict(self._threads)
        states = []
        for start_path in self.start_paths:
            name = monitor_name(start_path)
            monitor = monitors.get(name)
            thread = threads.get(name)
            states.append({
                "name": name,
                "start_path": start_path,
                "alive": thread is not None and thread.is_alive(),
                "fatal": monitor is not None and monitor.fatal_error is not None,
                "guarantee": monitor.guarantee.to_dict() if monitor and monitor.guarantee else None,
                "snapshots": SnapshotStore.list_numbers_in(self.snapshot_directory(name)),
            })
        return states

    def close(self) -> None:
        self.stop()
        self.checkpoint_queue.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
