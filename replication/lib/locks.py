"""Per-database serialization of dumps and loads.

Two layers:

- DatabaseLocks: in-process locks keyed on ``dump:<db>`` / ``load:<db>``
- file_lock: advisory cross-process lock based on creating a lockfile with
  O_EXCL semantics. It is intended for local filesystem coordination and is
  not a distributed lock for cloud object stores.
"""

from __future__ import annotations

import errno
import logging
import os
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, Optional, Union

from replication.lib.errors import ConcurrentReplicationError
from replication.lib.model import normalize_name

logger = logging.getLogger(__name__)

__all__ = ["DatabaseLocks", "file_lock", "lock_key"]


def lock_key(operation: str, db_name: str) -> str:
    return f"{operation}:{normalize_name(db_name)}"


class DatabaseLocks:
    """Registry of named in-process locks.

    Example:
        >>> locks = DatabaseLocks(timeout=5)
        >>> with locks.hold("load", "sales_replica"):
        ...     ...
    """

    def __init__(self, timeout: float = 30.0) -> None:
        self.timeout = timeout
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(
        self, operation: str, db_name: str, timeout: Optional[float] = None
    ) -> Iterator[None]:
        """Hold the ``operation`` lock of a database.

        Raises:
            ConcurrentReplicationError: the lock was not acquired in time
        """
        key = lock_key(operation, db_name)
        wait = self.timeout if timeout is None else timeout
        lock = self._lock_for(key)
        if not lock.acquire(timeout=wait):
            raise ConcurrentReplicationError(
                f"Timed out after {wait}s waiting for lock {key}",
                database=normalize_name(db_name),
            )
        logger.debug("Acquired lock %s", key)
        try:
            yield
        finally:
            lock.release()
            logger.debug("Released lock %s", key)


def _lock_owner(lock_path: Path) -> Optional[int]:
    try:
        return int(lock_path.read_text(encoding="utf-8").strip())
    except (OSError, ValueError):
        return None


def _owner_is_gone(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except OSError as exc:
        # EPERM means the process exists under another user
        return exc.errno == errno.ESRCH
    return False


@contextmanager
def file_lock(
    dir_path: Union[str, Path],
    lock_name: str,
    timeout: float = 30.0,
    poll_interval: float = 0.2,
) -> Iterator[None]:
    """Context manager for a lockfile in a directory.

    Args:
        dir_path: Directory to place the lock file in.
        lock_name: File name of the lock file.
        timeout: Maximum seconds to wait for a lock before raising.
        poll_interval: Poll interval while waiting.

    Raises:
        ConcurrentReplicationError: the lock is held by a live process
            for longer than ``timeout``
    """
    dir_path = Path(dir_path)
    dir_path.mkdir(parents=True, exist_ok=True)
    lock_path = dir_path / lock_name
    start = time.monotonic()

    while True:
        try:
            fd = os.open(str(lock_path), os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            pid = _lock_owner(lock_path)
            if pid is None or _owner_is_gone(pid):
                logger.warning("Removing stale lock %s (pid %s)", lock_path, pid)
                lock_path.unlink(missing_ok=True)
                continue
            if time.monotonic() - start >= timeout:
                raise ConcurrentReplicationError(
                    f"Unable to acquire lock {lock_path} after {timeout}s",
                    details={"holder_pid": pid},
                )
            time.sleep(poll_interval)
            continue
        with os.fdopen(fd, "w") as f:
            f.write(str(os.getpid()))
        logger.debug("Acquired lock %s by pid %s", lock_path, os.getpid())
        break

    try:
        yield
    finally:
        lock_path.unlink(missing_ok=True)
        logger.debug("Released lock %s by pid %s", lock_path, os.getpid())
