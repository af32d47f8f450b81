"""
Single-instance run lock.

Two overlapping runs (e.g. cron firing while a long upload is still going)
would race on the state files and scratch storage. The lock is an exclusive
flock on a file in the state directory; the kernel drops it when the holder
exits, so a crashed run never leaves a stale lock behind.
"""

import os
import fcntl
import logging


logger = logging.getLogger(__name__)


class RunLockedError(Exception):
    """Raised when another run already holds the lock."""
    pass


class RunLock:
    """
    Exclusive, non-blocking process lock.

    Usage:
        with RunLock(path):
            ...
    """

    def __init__(self, path: str):
        self.path = path
        self._fd = None

    def read_holder_pid(self):
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                return int(f.read().strip())
        except (OSError, ValueError):
            return None

    def acquire(self):
        fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            holder = self.read_holder_pid()
            raise RunLockedError(
                f"Another backup run is in progress (pid {holder or 'unknown'}, lock {self.path})"
            )

        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())
        self._fd = fd
        logger.debug("Acquired run lock %s", self.path)

    def release(self):
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None
        logger.debug("Released run lock %s", self.path)

    @property
    def locked(self) -> bool:
        return self._fd is not None

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False
