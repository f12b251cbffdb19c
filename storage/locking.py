"""
Advisory file locks (fcntl.flock).

run_lock()      non-blocking, process-wide: an overlapping scheduled run
                gives up instead of racing the one in progress.
domain_lock()   blocking, per domain: serializes zone-file and
                serving-reference mutations for one domain.
"""
from __future__ import annotations

import fcntl
import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

logger = logging.getLogger(__name__)


class LockHeld(Exception):
    """Raised by a non-blocking lock attempt when another process holds it."""

    def __init__(self, path: Path) -> None:
        self.path = path
        super().__init__(f"lock held by another process: {path}")


@contextmanager
def file_lock(path: Path, blocking: bool = True) -> Iterator[Path]:
    """Hold an exclusive flock on *path* (created if missing) for the block."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(str(path), os.O_RDWR | os.O_CREAT, 0o644)
    try:
        flags = fcntl.LOCK_EX if blocking else fcntl.LOCK_EX | fcntl.LOCK_NB
        try:
            fcntl.flock(fd, flags)
        except BlockingIOError as exc:
            raise LockHeld(path) from exc
        logger.debug("Acquired lock %s", path)
        try:
            yield path
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)


def run_lock(path: Path):
    return file_lock(path, blocking=False)


def domain_lock(lock_dir: Path, domain: str):
    return file_lock(Path(lock_dir) / f"{domain}.lock", blocking=True)
