"""Consumer-facing traversal session over the durable change queue."""

import logging
import sqlite3
import time
from typing import Callable, List, Optional

from .config import MonitorConfig
from .exceptions import InvalidCheckpointError, QueueError
from .manager import MonitorManager
from .models import CheckpointAndChange
from .queue import CheckpointAndChangeQueue

logger = logging.getLogger(__name__)


class ChangeTraversal:
    """
    Hands batches of changes to a consumer.

    The consumer passes back the checkpoint of the last change it
    committed; everything up to it is acknowledged and the monitors are
    told which checkpoints are now durable.
    """

    def __init__(
        self,
        manager: MonitorManager,
        checkpoint_queue: Optional[CheckpointAndChangeQueue] = None,
        config: Optional[MonitorConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.manager = manager
        self.checkpoint_queue = checkpoint_queue or manager.checkpoint_queue
        self.config = config or manager.config
        self._sleep = sleep

    def start_traversal(self, wait: float = 0.0) -> List[CheckpointAndChange]:
        """
        Start a full traversal, discarding all previous state.

        Args:
            wait: Seconds to wait for a first change

        Returns:
            The first batch of changes
        """
        logger.info("Starting full traversal")
        self.manager.stop()
        self.manager.start(None)
        return self._resume(None, wait)

    def resume_traversal(self, checkpoint: Optional[str], wait: float = 0.0) -> List[CheckpointAndChange]:
        """
        Continue after the consumer committed up to checkpoint.

        Args:
            checkpoint: Last checkpoint the consumer committed, or None
            wait: Seconds to wait for a first change when nothing is pending

        Returns:
            The next batch; it repeats unacknowledged changes

        Raises:
            InvalidCheckpointError: If checkpoint cannot be parsed
            QueueError: If the queue keeps failing after all retries
        """
        if not self.manager.is_running:
            self.manager.start(checkpoint)
        return self._resume(checkpoint, wait)

    def _resume(self, checkpoint: Optional[str], wait: float) -> List[CheckpointAndChange]:
        max_retries = max(1, self.config.max_retries)
        last_error = None

        for attempt in range(max_retries):
            try:
                batch = self.checkpoint_queue.resume(checkpoint, wait=wait)
                guarantees = self.checkpoint_queue.get_monitor_restart_points()
                self.manager.accept_guarantees(guarantees)
                return batch
            except InvalidCheckpointError:
                raise
            except (QueueError, sqlite3.Error) as e:
                logger.error(f"Change queue error (attempt {attempt + 1}/{max_retries}): {e}")
                last_error = e
                if attempt < max_retries - 1:
                    wait_time = 2 ** attempt  # Exponential backoff
                    self._sleep(wait_time)

        raise QueueError(f"Failed to resume traversal after {max_retries} attempts: {last_error}")
