"""One active session per branch, enforced with an advisory file lock."""

from __future__ import annotations

import logging
import re
from pathlib import Path

from filelock import FileLock, Timeout

from mergegate_core.errors import SessionBusyError

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


class BranchLock:
    def __init__(self, lock_dir: str | Path, branch: str):
        self.branch = branch
        self.path = Path(lock_dir) / f"{_UNSAFE.sub('_', branch)}.lock"
        self._lock: FileLock | None = None

    def acquire(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        lock = FileLock(self.path, timeout=0)
        try:
            lock.acquire()
        except Timeout as e:
            raise SessionBusyError(f"Another session is already running on branch {self.branch!r}") from e
        self._lock = lock
        logger.debug("Acquired session lock %s", self.path)

    def release(self) -> None:
        if self._lock is not None:
            self._lock.release()
            self._lock = None
            logger.debug("Released session lock %s", self.path)

    def __enter__(self) -> BranchLock:
        self.acquire()
        return self

    def __exit__(self, *exc) -> None:
        self.release()
