"""Process-wide run lock.

An advisory, non-blocking ``flock`` on one well-known file. A second run that
finds the lock held gives up at once; overlapping cron invocations are normal.
The lock file also carries a heartbeat (Unix time) for liveness checks.
"""

import fcntl
import logging
import os
import time
from pathlib import Path
from typing import IO, Optional

from cache_optimise.errors import LockHeld

logger = logging.getLogger(__name__)


class RunLock:
    """Hold with ``with RunLock(path):`` for the whole run; raises ``LockHeld`` if taken."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._handle: Optional[IO[str]] = None

    @property
    def held(self) -> bool:
        return self._handle is not None

    def acquire(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # "a+" so a losing contender never truncates the holder's heartbeat.
        handle = open(self.path, "a+", encoding="utf8")
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError:
            handle.close()
            raise LockHeld(f"lock already held: {self.path}") from None
        self._handle = handle
        logger.debug("Acquired run lock at %s", self.path)
        self.heartbeat()

    def heartbeat(self) -> None:
        """Overwrite the lock file with the current Unix time."""
        if self._handle is None:
            return
        self._handle.seek(0)
        self._handle.truncate()
        self._handle.write(str(int(time.time())))
        self._handle.flush()
        os.fsync(self._handle.fileno())

    def release(self) -> None:
        if self._handle is None:
            return
        try:
            fcntl.flock(self._handle.fileno(), fcntl.LOCK_UN)
        finally:
            self._handle.close()
            self._handle = None
        logger.debug("Released run lock at %s", self.path)

    def __enter__(self) -> "RunLock":
        self.acquire()
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()
