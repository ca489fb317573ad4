"""Cross-process locking around store migration."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any

from filelock import FileLock
from filelock import Timeout as FileLockTimeout

from data_manager.core.errors import FileLockError

logger = logging.getLogger(__name__)

LOCK_SUFFIX = ".migration.lock"


def lock_path_for(store_path: Path) -> Path:
    """Lock file guarding the migration of ``store_path``."""
    return store_path.with_name(store_path.name + LOCK_SUFFIX)


class ProcessLockManager:
    """Reentrant file lock shared by every process touching one store.

    Depth is tracked per thread, so a thread already holding the lock can
    enter it again without blocking. Other processes wait on the FileLock.

    Example:
        lock = ProcessLockManager(lock_path_for(Path("Model.sqlite")))
        with lock:
            with lock:  # same thread, no wait
                ...
    """

    def __init__(
        self,
        lock_path: Path,
        timeout: float = 30.0,
        poll_interval: float = 0.1,
        enabled: bool = True,
    ) -> None:
        """Initialize the lock manager.

        Args:
            lock_path: Lock file location.
            timeout: Seconds to wait for the lock.
            poll_interval: Seconds between acquisition attempts.
            enabled: If False, acquiring and releasing do nothing.
        """
        self.lock_path = lock_path
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.enabled = enabled
        self._lock: FileLock | None = None
        if enabled:
            lock_path.parent.mkdir(parents=True, exist_ok=True)
            self._lock = FileLock(str(lock_path), timeout=timeout)
        self._local = threading.local()

    @property
    def depth(self) -> int:
        """Times the current thread has entered the lock."""
        return getattr(self._local, "depth", 0)

    def acquire(self) -> bool:
        """Acquire the lock.

        Returns:
            True if newly acquired, False if this thread already held it.

        Raises:
            FileLockError: If the lock is not acquired within the timeout.
        """
        if self._lock is None:
            return True

        depth = self.depth
        if depth > 0:
            self._local.depth = depth + 1
            return False

        try:
            self._lock.acquire(timeout=self.timeout, poll_interval=self.poll_interval)
        except FileLockTimeout as e:
            raise FileLockError(
                lock_path=str(self.lock_path),
                timeout=self.timeout,
                message=(
                    f"Timed out waiting {self.timeout}s for migration lock at "
                    f"{self.lock_path.name}. Another process may be migrating this store."
                ),
            ) from e
        self._local.depth = 1
        logger.debug(f"Acquired migration lock {self.lock_path.name}")
        return True

    def release(self) -> bool:
        """Release one level of the lock.

        Returns:
            True once the file lock itself is released.
        """
        if self._lock is None:
            return True

        depth = self.depth
        if depth <= 0:
            return True
        if depth > 1:
            self._local.depth = depth - 1
            return False

        self._lock.release()
        self._local.depth = 0
        logger.debug(f"Released migration lock {self.lock_path.name}")
        return True

    def __enter__(self) -> ProcessLockManager:
        self.acquire()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.release()
