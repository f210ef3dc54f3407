"""Locks guarding the shared library files.

``file_lock`` takes an advisory ``fcntl.flock`` on ``<path>.lock`` so that
separate processes serialise their read-modify-write cycles. ``FileLock``
adds a thread lock in front of it for writers inside one process, and
``KeyedLock`` serialises operations on the same document identifier.

Neither lock is reentrant: do not nest ``hold()`` on the same object.
"""

from __future__ import annotations

import errno
import fcntl
import logging
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Dict

from musicsheet.errors import IOFailure, LockTimeout

LOGGER = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT = 10.0

_POLL_INTERVAL = 0.05


@contextmanager
def file_lock(path: Path, timeout: float = DEFAULT_LOCK_TIMEOUT) -> Iterator[None]:
    """Hold an exclusive flock on ``path.lock`` for the duration of the block.

    A separate lock file keeps the atomic-rename writes of *path* itself
    untouched. The lock is released when the block exits or the process dies.

    Raises:
        LockTimeout: If the lock is not acquired within *timeout* seconds.
        IOFailure: If the lock file cannot be created, opened or locked.
    """
    lock_path = path.with_suffix(path.suffix + ".lock")
    try:
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        fd = open(lock_path, "w")  # noqa: SIM115
    except OSError as exc:
        raise IOFailure(lock_path, "lock", str(exc)) from exc
    acquired = False
    try:
        deadline = time.monotonic() + timeout
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                acquired = True
                break
            except OSError as exc:
                if exc.errno not in (errno.EWOULDBLOCK, errno.EAGAIN):
                    raise IOFailure(lock_path, "lock", str(exc)) from exc
                if time.monotonic() >= deadline:
                    LOGGER.warning("Timed out waiting for %s", lock_path)
                    raise LockTimeout(lock_path, timeout) from exc
                time.sleep(_POLL_INTERVAL)
        LOGGER.debug("Lock acquired on %s", lock_path)
        yield
    finally:
        if acquired:
            fcntl.flock(fd, fcntl.LOCK_UN)
            LOGGER.debug("Lock released on %s", lock_path)
        fd.close()


class FileLock:
    """Mutual exclusion on one file across threads and processes."""

    def __init__(self, path: Path, *, timeout: float = DEFAULT_LOCK_TIMEOUT) -> None:
        self.path = Path(path)
        self.timeout = timeout
        self._thread_lock = threading.Lock()

    @contextmanager
    def hold(self) -> Iterator[None]:
        if not self._thread_lock.acquire(timeout=self.timeout):
            raise LockTimeout(self.path, self.timeout)
        try:
            with file_lock(self.path, self.timeout):
                yield
        finally:
            self._thread_lock.release()


class KeyedLock:
    """One thread lock per key, created on demand and dropped when idle."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._waiters: Dict[str, int] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._waiters[key] = self._waiters.get(key, 0) + 1
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                self._waiters[key] -= 1
                if not self._waiters[key]:
                    del self._waiters[key]
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
