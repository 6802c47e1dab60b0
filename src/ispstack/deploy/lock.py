# src/ispstack/deploy/lock.py

from __future__ import annotations

import fcntl
import logging
import os
from pathlib import Path
from typing import Optional

from ..errors import ConcurrentRunError

log = logging.getLogger("ispstack")


class RunLock:
    """
    Exclusive advisory lock held for the duration of one reconciliation.

    flock is tied to the open file description, so the lock goes away with
    the process even if release() never runs.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._fd: Optional[int] = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self) -> None:
        if self._fd is not None:
            raise ConcurrentRunError(f"{self.path} is already held by this process")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError as e:
            os.close(fd)
            raise ConcurrentRunError(
                f"another ispstack run holds {self.path}; concurrent runs are not supported"
            ) from e
        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())
        self._fd = fd
        log.debug("Acquired run lock %s", self.path)

    def release(self) -> None:
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None
        log.debug("Released run lock %s", self.path)

    def __enter__(self) -> "RunLock":
        self.acquire()
        return self

    def __exit__(self, *exc) -> None:
        self.release()
