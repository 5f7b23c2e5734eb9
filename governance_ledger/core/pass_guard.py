"""Single-slot guard for background passes.

A pass that is still running causes the next invocation to be skipped, not
queued. The guard is process-local: running more than one instance of the
service needs a distributed lock instead.
"""

import logging
import threading
from contextlib import contextmanager
from collections.abc import Iterator

logger = logging.getLogger(__name__)


class PassGuard:
    """Try-acquire lock for one pass type."""

    def __init__(self, name: str):
        self.name = name
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._lock.locked()

    def try_acquire(self) -> bool:
        """Take the slot; False means a previous pass is still running."""
        acquired = self._lock.acquire(blocking=False)
        if not acquired:
            logger.debug(f"Previous {self.name} pass still running, skipping")
        return acquired

    def release(self) -> None:
        self._lock.release()

    @contextmanager
    def hold(self) -> Iterator[bool]:
        """
        Context manager form of try_acquire.

        Yields whether the slot was taken; releases only what it acquired.
        """
        acquired = self.try_acquire()
        try:
            yield acquired
        finally:
            if acquired:
                self.release()
