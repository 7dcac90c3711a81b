"""Numbered snapshot files for one monitored root."""

import logging
import os
import re
import shutil
from pathlib import Path
from typing import List, Optional

from .exceptions import SnapshotReaderError, SnapshotStoreError, SnapshotWriterError
from .models import MonitorCheckpoint
from .snapshot import SnapshotReader, SnapshotWriter

logger = logging.getLogger(__name__)

SNAPSHOT_PREFIX = "snap."
_SNAPSHOT_RE = re.compile(r"^snap\.(\d+)$")


class SnapshotStore:
    """
    Manages the sequence of snapshot files in one directory.

    Each pass reads the most recent snapshot and writes the next number.
    Snapshot files are never modified once written; older files are
    deleted only after a guarantee covers them.
    """

    def __init__(self, directory: Path):
        """
        Initialize the store, creating the directory if needed.

        Args:
            directory: Directory owned exclusively by one monitor
        """
        self.directory = Path(directory)
        self._oldest_snapshot_to_keep: Optional[int] = None
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise SnapshotStoreError(f"Cannot create snapshot directory {self.directory}: {e}") from e

    @staticmethod
    def snapshot_path(directory: Path, number: int) -> Path:
        return Path(directory) / f"{SNAPSHOT_PREFIX}{number}"

    @staticmethod
    def list_numbers_in(directory: Path) -> List[int]:
        try:
            names = os.listdir(directory)
        except FileNotFoundError:
            return []
        except OSError as e:
            raise SnapshotStoreError(f"Cannot list snapshot directory {directory}: {e}") from e
        numbers = []
        for name in names:
            match = _SNAPSHOT_RE.match(name)
            if match:
                numbers.append(int(match.group(1)))
        return sorted(numbers)

    def list_snapshot_numbers(self) -> List[int]:
        """Return the numbers of the snapshots on disk, ascending."""
        return self.list_numbers_in(self.directory)

    def open_most_recent_snapshot(self) -> SnapshotReader:
        """
        Open the highest-numbered snapshot for reading.

        Returns:
            A reader, or the empty reader when no snapshot exists
        """
        numbers = self.list_snapshot_numbers()
        if not numbers:
            return SnapshotReader.empty()
        number = numbers[-1]
        return SnapshotReader.open(self.snapshot_path(self.directory, number), number)

    def open_new_snapshot_writer(self) -> SnapshotWriter:
        """Open a writer for the snapshot after the most recent one."""
        numbers = self.list_snapshot_numbers()
        number = numbers[-1] + 1 if numbers else 1
        return SnapshotWriter(self.snapshot_path(self.directory, number), number)

    @property
    def oldest_snapshot_to_keep(self) -> Optional[int]:
        return self._oldest_snapshot_to_keep

    def accept_guarantee(self, checkpoint: MonitorCheckpoint) -> None:
        """
        Record that everything up to checkpoint is durably accepted.

        The snapshot being read at the checkpoint and the one written after
        it are needed for stitching; anything older may be deleted.
        """
        self._oldest_snapshot_to_keep = checkpoint.snapshot_number

    def delete_old_snapshots(self) -> int:
        """
        Delete snapshots older than the last accepted guarantee.

        Returns:
            Number of snapshots deleted
        """
        if self._oldest_snapshot_to_keep is None:
            return 0
        deleted = 0
        for number in self.list_snapshot_numbers():
            if number >= self._oldest_snapshot_to_keep:
                break
            path = self.snapshot_path(self.directory, number)
            try:
                path.unlink()
                deleted += 1
                logger.debug(f"Deleted old snapshot {path}")
            except FileNotFoundError:
                pass
            except OSError as e:
                raise SnapshotStoreError(f"Cannot delete snapshot {path}: {e}") from e
        return deleted

    def delete_snapshot(self, writer: SnapshotWriter) -> None:
        """Delete the file written by a pass that produced no changes."""
        writer.close()
        try:
            writer.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise SnapshotStoreError(f"Cannot delete snapshot {writer.path}: {e}") from e

    @staticmethod
    def close(reader: Optional[SnapshotReader], writer: Optional[SnapshotWriter]) -> None:
        """Close a reader and a writer; either may be None."""
        try:
            if reader is not None:
                reader.close()
        finally:
            if writer is not None:
                writer.close()

    @classmethod
    def stitch(cls, directory: Path, checkpoint: MonitorCheckpoint) -> int:
        """
        Rebuild a consistent most recent snapshot after a crash.

        With checkpoint (S, R, W), the new snapshot S+2 holds the first W
        records of snapshot S+1 followed by the records of snapshot S
        starting at record R. Snapshots numbered above S+1 are discarded
        first.

        Args:
            directory: Snapshot directory of the monitor
            checkpoint: Last checkpoint known to be durably accepted

        Returns:
            Number of the stitched snapshot

        Raises:
            SnapshotStoreError: If the snapshots the checkpoint refers to
                are missing or unreadable
        """
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        old_number = checkpoint.snapshot_number
        new_number = old_number + 1
        stitched_number = old_number + 2
        logger.info(
            f"Stitching {directory} at snapshot {old_number}, "
            f"read {checkpoint.read_record_number}, write {checkpoint.write_record_number}"
        )

        for number in cls.list_numbers_in(directory):
            if number > new_number:
                path = cls.snapshot_path(directory, number)
                try:
                    path.unlink()
                except OSError as e:
                    raise SnapshotStoreError(f"Cannot delete snapshot {path}: {e}") from e
                logger.debug(f"Discarded snapshot {path} written after the checkpoint")

        old_path = cls.snapshot_path(directory, old_number)
        new_path = cls.snapshot_path(directory, new_number)
        if old_number > 0 and not old_path.exists():
            raise SnapshotStoreError(f"Cannot stitch: missing snapshot {old_path}")
        if checkpoint.write_record_number > 0 and not new_path.exists():
            raise SnapshotStoreError(f"Cannot stitch: missing snapshot {new_path}")

        stitched_path = cls.snapshot_path(directory, stitched_number)
        temp_path = directory / f"{stitched_path.name}.tmp"
        try:
            with SnapshotWriter(temp_path, stitched_number) as writer:
                if new_path.exists():
                    with SnapshotReader.open(new_path, new_number) as reader:
                        for _ in range(checkpoint.write_record_number):
                            record = reader.read()
                            if record is None:
                                raise SnapshotStoreError(
                                    f"Cannot stitch: {new_path} has fewer than "
                                    f"{checkpoint.write_record_number} records"
                                )
                            writer.write(record)

                if old_number > 0:
                    with SnapshotReader.open(old_path, old_number) as reader:
                        reader.skip_records(checkpoint.read_record_number)
                        for record in reader:
                            writer.write(record)
            os.replace(temp_path, stitched_path)
        except (SnapshotReaderError, SnapshotWriterError, OSError) as e:
            raise SnapshotStoreError(f"Stitching {directory} failed: {e}") from e
        finally:
            if temp_path.exists():
                temp_path.unlink()

        logger.info(f"Stitched snapshot {stitched_path}")
        return stitched_number

    @staticmethod
    def delete_directory(directory: Path) -> None:
        """Remove a snapshot directory and everything in it."""
        directory = Path(directory)
        if directory.exists():
            shutil.rmtree(directory)
            logger.info(f"Deleted snapshot directory {directory}")
