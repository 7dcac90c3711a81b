"""Rejection sinks and the MIME type and size oracle."""

import logging
import mimetypes
import threading
from abc import ABC, abstractmethod
from collections import Counter, deque
from typing import Deque, Iterable, List, Optional, Tuple

from .models import FilterReason

logger = logging.getLogger(__name__)


class RejectionSink(ABC):
    """Receives entries skipped by a monitor pass."""

    @abstractmethod
    def add(self, path: str, reason: FilterReason) -> None:
        pass


class LoggingRejectionSink(RejectionSink):
    """Logs every rejected entry."""

    def add(self, path: str, reason: FilterReason) -> None:
        logger.debug(f"Skipping {path}: {reason.value}")


class MemoryRejectionSink(RejectionSink):
    """
    Keeps the most recent rejected entries in memory.

    Only the last max_entries paths are kept; counts cover every rejection
    since the last clear().
    """

    DEFAULT_MAX_ENTRIES = 10000

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES):
        self.entries: Deque[Tuple[str, FilterReason]] = deque(maxlen=max_entries)
        self.counts: Counter = Counter()
        self._lock = threading.Lock()

    def add(self, path: str, reason: FilterReason) -> None:
        with self._lock:
            self.entries.append((path, reason))
            self.counts[reason] += 1

    def paths(self, reason: Optional[FilterReason] = None) -> List[str]:
        with self._lock:
            return [p for p, r in self.entries if reason is None or r == reason]

    def clear(self) -> None:
        with self._lock:
            self.entries.clear()
            self.counts.clear()


class MimeTypeOracle:
    """
    Decides whether a file's size and MIME type are acceptable.

    MIME types are guessed from the file name.
    """

    DEFAULT_MIME_TYPE = "application/octet-stream"

    def __init__(
        self,
        supported_mime_types: Optional[Iterable[str]] = None,
        max_size: Optional[int] = None,
    ):
        """
        Initialize the oracle.

        Args:
            supported_mime_types: Accepted types; None accepts every type.
                Entries ending in "/*" accept a whole family, e.g. "text/*".
            max_size: Largest accepted size in bytes; None for no limit
        """
        self.supported_mime_types = (
            frozenset(t.lower() for t in supported_mime_types)
            if supported_mime_types is not None
            else None
        )
        self.max_size = max_size

    def mime_type(self, path: str) -> str:
        mime_type, _ = mimetypes.guess_type(path)
        return mime_type or self.DEFAULT_MIME_TYPE

    def is_supported(self, path: str) -> bool:
        if self.supported_mime_types is None:
            return True
        mime_type = self.mime_type(path).lower()
        if mime_type in self.supported_mime_types:
            return True
        family = mime_type.split("/", 1)[0] + "/*"
        return family in self.supported_mime_types

    def is_too_big(self, length: int) -> bool:
        return self.max_size is not None and length > self.max_size
