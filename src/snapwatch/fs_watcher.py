"""Optional filesystem notifications that start the next pass early."""

import logging
import threading
from pathlib import Path
from typing import Callable, Dict

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .patterns import FilePatternMatcher

logger = logging.getLogger(__name__)


class WakeEventHandler(FileSystemEventHandler):
    """Calls a wake function for every event that is not excluded."""

    def __init__(self, wake: Callable[[], None], matcher: FilePatternMatcher):
        super().__init__()
        self.wake = wake
        self.matcher = matcher

    def on_any_event(self, event):
        if event.event_type in ("opened", "closed_no_write"):
            return
        src_path = Path(event.src_path).as_posix()
        if self.matcher.is_excluded(src_path):
            return
        self.wake()


class PassTrigger:
    """
    Manages one watchdog observer per local start path.

    Notifications are only a hint: they end a monitor's idle wait so the
    next diff pass runs sooner. Changes are still detected by the pass.
    """

    def __init__(self, matcher: FilePatternMatcher = None):
        self.matcher = matcher or FilePatternMatcher()
        self._observers: Dict[str, Observer] = {}
        self._lock = threading.Lock()

    def start_watching(self, start_path: str, wake: Callable[[], None]) -> bool:
        """
        Start watching a start path.

        Args:
            start_path: Local directory to observe
            wake: Called on every relevant filesystem event

        Returns:
            True if watching started, False if already watching or not local
        """
        if "://" in start_path or not Path(start_path).is_dir():
            logger.debug(f"No filesystem notifications for {start_path}")
            return False

        with self._lock:
            if start_path in self._observers:
                return False

            observer = Observer()
            observer.schedule(
                WakeEventHandler(wake, self.matcher),
                start_path,
                recursive=True,
            )
            observer.daemon = True
            observer.start()
            self._observers[start_path] = observer
            logger.info(f"Watching {start_path} for changes between passes")
            return True

    def stop_all(self) -> int:
        """
        Stop all observers.

        Returns:
            Number of observers stopped
        """
        with self._lock:
            count = len(self._observers)

            for observer in self._observers.values():
                observer.stop()

            for observer in self._observers.values():
                observer.join(timeout=5.0)

            self._observers.clear()
            return count

    def is_watching(self, start_path: str) -> bool:
        with self._lock:
            return start_path in self._observers

    def __len__(self) -> int:
        """Return the number of active observers."""
        with self._lock:
            return len(self._observers)
