"""Exclusive process lock shared by the normal and broadcast run modes."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from filelock import FileLock, Timeout

from core.exceptions import InstanceConflict
from core.logger import get_logger

logger = get_logger(__name__)


class InstanceLock:
    """Non-blocking file lock held for the whole lifetime of a run.

    Both run modes take the same lock file, so a broadcast cannot start while
    the bot serves live events against the same store, and vice versa.
    """

    def __init__(self, path: str, mode: str) -> None:
        self.path = Path(path)
        self.mode = mode
        self._lock: Optional[FileLock] = None

    @property
    def held(self) -> bool:
        return self._lock is not None and self._lock.is_locked

    def acquire(self) -> None:
        """Acquire the lock or raise :class:`InstanceConflict` immediately."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        lock = FileLock(str(self.path), timeout=0)
        try:
            lock.acquire()
        except Timeout as exc:
            raise InstanceConflict(
                f"Cannot start {self.mode} mode: {self.path} is held by another process"
            ) from exc
        self._lock = lock
        logger.info(f"Instance lock acquired for {self.mode} mode: {self.path}")

    def release(self) -> None:
        if self._lock is None:
            return
        self._lock.release()
        self._lock = None
        logger.info(f"Instance lock released: {self.path}")

    def __enter__(self) -> "InstanceLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
