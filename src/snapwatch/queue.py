"""SQLite-backed checkpointed change queue."""

import json
import logging
import sqlite3
import threading
import time
from pathlib import Path
from typing import Dict, List, Optional

from .change_queue import ChangeQueue
from .exceptions import QueueError
from .models import (
    Change,
    CheckpointAndChange,
    MonitorCheckpoint,
    parse_global_checkpoint,
)

logger = logging.getLogger(__name__)


class CheckpointAndChangeQueue:
    """
    Durable, consumer-acknowledged queue of changes.

    Changes are moved from the in-memory ChangeQueue into SQLite and handed
    to the consumer in batches. Each change gets a global checkpoint, the
    string form of its sequence number. Resuming from a checkpoint
    acknowledges every change up to and including it; unacknowledged changes
    are delivered again, so delivery is at-least-once.

    The checkpoint of the last persisted change of each monitor is kept in
    the same transaction as the change itself. Those checkpoints are the
    restart points of the monitors.
    """

    def __init__(
        self,
        change_source: ChangeQueue,
        db_path: Path,
        max_queue_size: int = 500,
    ):
        """
        Initialize the queue.

        Args:
            change_source: In-memory queue fed by the monitors
            db_path: Path to the SQLite database file
            max_queue_size: Maximum number of changes in one batch
        """
        self.change_source = change_source
        self.db_path = Path(db_path)
        self.max_queue_size = max_queue_size
        self._lock = threading.Lock()
        self._local = threading.local()
        self._closed = False
        self._unsaved: List[Change] = []

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a thread-local database connection."""
        if not hasattr(self._local, "conn") or self._local.conn is None:
            self._local.conn = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
                isolation_level=None,  # Autocommit mode
            )
            self._local.conn.execute("PRAGMA journal_mode=WAL")
            self._local.conn.execute("PRAGMA synchronous=FULL")
        return self._local.conn

    def _init_db(self) -> None:
        """Initialize the database schema."""
        conn = self._get_connection()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS changes (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                monitor TEXT NOT NULL,
                payload TEXT NOT NULL,
                created_at REAL NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS monitor_checkpoints (
                monitor TEXT PRIMARY KEY,
                checkpoint TEXT NOT NULL,
                updated_at REAL NOT NULL
            )
        """)

    def _check_open(self) -> None:
        if self._closed:
            raise QueueError("Queue is closed")

    @staticmethod
    def _acknowledge(conn: sqlite3.Connection, sequence: int) -> int:
        cursor = conn.execute("DELETE FROM changes WHERE id <= ?", (sequence,))
        return cursor.rowcount

    def start(self, global_checkpoint: Optional[str]) -> None:
        """
        Prepare the queue for a new run.

        Args:
            global_checkpoint: Last checkpoint the consumer committed, or
                None to discard all queued changes and restart points
        """
        self._check_open()
        sequence = parse_global_checkpoint(global_checkpoint) if global_checkpoint is not None else None

        with self._lock:
            self._unsaved.clear()
            conn = self._get_connection()
            conn.execute("BEGIN")
            try:
                if sequence is None:
                    conn.execute("DELETE FROM changes")
                    conn.execute("DELETE FROM monitor_checkpoints")
                else:
                    self._acknowledge(conn, sequence)
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise
        if sequence is None:
            logger.info("Change queue started from scratch")
        else:
            logger.info(f"Change queue started from checkpoint {sequence}")

    def resume(self, global_checkpoint: Optional[str], wait: float = 0.0) -> List[CheckpointAndChange]:
        """
        Acknowledge up to a checkpoint and return the next batch.

        The batch holds every unacknowledged change in order, topped up from
        the change source to max_queue_size. Resuming twice from the same
        checkpoint returns the same changes again.

        Args:
            global_checkpoint: Last checkpoint the consumer committed, or None
            wait: Seconds to wait for a first change when nothing is pending

        Returns:
            List of changes with their checkpoints
        """
        self._check_open()
        sequence = parse_global_checkpoint(global_checkpoint) if global_checkpoint is not None else None

        with self._lock:
            conn = self._get_connection()
            if sequence is not None:
                acknowledged = self._acknowledge(conn, sequence)
                if acknowledged:
                    logger.debug(f"Acknowledged {acknowledged} change(s) up to {sequence}")
            pending = conn.execute("SELECT COUNT(*) FROM changes").fetchone()[0]
            self._fill_unsaved(self.max_queue_size - pending, wait if pending == 0 else 0.0)

            conn.execute("BEGIN")
            try:
                now = time.time()
                for change in self._unsaved:
                    conn.execute(
                        "INSERT INTO changes (monitor, payload, created_at) VALUES (?, ?, ?)",
                        (change.monitor_name, json.dumps(change.to_dict()), now),
                    )
                    conn.execute(
                        "INSERT OR REPLACE INTO monitor_checkpoints (monitor, checkpoint, updated_at) VALUES (?, ?, ?)",
                        (change.monitor_name, change.checkpoint.to_json(), now),
                    )

                cursor = conn.execute(
                    "SELECT id, payload FROM changes ORDER BY id LIMIT ?",
                    (self.max_queue_size,),
                )
                rows = cursor.fetchall()
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise
            self._unsaved.clear()

        return [
            CheckpointAndChange(checkpoint=str(row[0]), change=Change.from_dict(json.loads(row[1])))
            for row in rows
        ]

    def _fill_unsaved(self, room: int, wait: float) -> None:
        # Changes taken from the source stay in _unsaved until committed,
        # so a failed transaction does not lose them.
        while len(self._unsaved) < room:
            timeout = wait if not self._unsaved else 0.0
            change = self.change_source.get_next_change(timeout=timeout)
            if change is None:
                break
            self._unsaved.append(change)

    def get_monitor_restart_points(self, global_checkpoint: Optional[str] = None) -> Dict[str, MonitorCheckpoint]:
        """
        Return the last durably persisted checkpoint of each monitor.

        Args:
            global_checkpoint: If given, acknowledged first

        Returns:
            Mapping of monitor name to checkpoint
        """
        self._check_open()
        if global_checkpoint is not None:
            sequence = parse_global_checkpoint(global_checkpoint)
            with self._lock:
                self._acknowledge(self._get_connection(), sequence)

        with self._lock:
            conn = self._get_connection()
            cursor = conn.execute("SELECT monitor, checkpoint FROM monitor_checkpoints")
            return {row[0]: MonitorCheckpoint.from_json(row[1]) for row in cursor.fetchall()}

    def pending_count(self) -> int:
        """
        Get the number of persisted, unacknowledged changes.

        Returns:
            Number of pending changes
        """
        self._check_open()
        with self._lock:
            conn = self._get_connection()
            return conn.execute("SELECT COUNT(*) FROM changes").fetchone()[0]

    def clean(self) -> None:
        """Remove all changes and restart points."""
        self._check_open()
        with self._lock:
            self._unsaved.clear()
            conn = self._get_connection()
            conn.execute("BEGIN")
            try:
                conn.execute("DELETE FROM changes")
                conn.execute("DELETE FROM monitor_checkpoints")
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise
        logger.info("Change queue cleaned")

    def close(self) -> None:
        """Close the queue and release resources."""
        if self._closed:
            return

        self._closed = True

        if hasattr(self._local, "conn") and self._local.conn:
            self._local.conn.close()
            self._local.conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
