"""Custom exceptions for the snapwatch package."""


class SnapwatchError(Exception):
    """Base exception for all snapwatch errors."""
    pass


class SnapshotError(SnapwatchError):
    """Error related to persisted snapshot state."""
    pass


class SnapshotReaderError(SnapshotError):
    """Snapshot file could not be read or contains a corrupt record."""
    pass


class SnapshotWriterError(SnapshotError):
    """Snapshot record could not be written durably."""
    pass


class SnapshotStoreError(SnapshotError):
    """Snapshot directory is missing, unreadable or inconsistent."""
    pass


class FatalMonitorError(SnapwatchError):
    """Monitor cannot recover without operator intervention."""
    pass


class MonitorInterrupted(SnapwatchError):
    """Monitor was asked to stop in the middle of a pass."""
    pass


class FileAccessError(SnapwatchError):
    """Error reported by the file access layer."""

    def __init__(self, message: str, path: str = None):
        super().__init__(message)
        self.path = path


class ResourceNotFoundError(FileAccessError):
    """File or directory no longer exists."""
    pass


class InsufficientAccessError(FileAccessError):
    """File or directory is not visible to the connector account."""
    pass


class RepositoryUnavailableError(FileAccessError):
    """Transport is temporarily unavailable; the operation may be retried."""
    pass


class QueueError(SnapwatchError):
    """Error related to the durable change queue."""
    pass


class InvalidCheckpointError(QueueError):
    """Global checkpoint string could not be parsed."""
    pass


class MonitorManagerError(SnapwatchError):
    """Monitor manager was used in an invalid state."""
    pass
