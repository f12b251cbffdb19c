"""
Atomic file and symlink replacement.

Pattern:
  1. Write to a temporary file (or create a temporary symlink) in the same directory
  2. fsync file contents
  3. os.replace() onto the destination (atomic on POSIX filesystems)

Readers (named, the web server) never observe a partially written zone file
or a dangling serving reference; a crash mid-write leaves the old file intact.
"""
from __future__ import annotations

import os
import tempfile
from pathlib import Path


def atomic_write_text(path: Path, content: str, encoding: str = "utf-8") -> None:
    """
    Atomically replace *path* with *content*, written verbatim (no newline translation).

    When *path* already exists its permission bits are carried over, and its
    owner/group too when running as root, so the DNS server can still read
    the replaced file.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    try:
        previous = path.stat()
    except FileNotFoundError:
        previous = None

    # Same directory ensures the rename stays on one filesystem
    fd, temp_path = tempfile.mkstemp(
        prefix=f".{path.name}.",
        suffix=".tmp",
        dir=str(path.parent),
        text=False,
    )

    try:
        with os.fdopen(fd, "w", encoding=encoding, newline="") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())

        if previous is not None:
            os.chmod(temp_path, previous.st_mode & 0o7777)
            if os.geteuid() == 0:
                os.chown(temp_path, previous.st_uid, previous.st_gid)

        os.replace(temp_path, path)
    except Exception:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise


def atomic_symlink(link_path: Path, target: Path) -> bool:
    """
    Point *link_path* at *target*, replacing whatever is there atomically.

    Returns False (and touches nothing) when the link already points at *target*.
    """
    link_path = Path(link_path)
    target = Path(target)
    if link_path.is_symlink() and Path(os.readlink(link_path)) == target:
        return False

    link_path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = link_path.with_name(f".{link_path.name}.{os.getpid()}.tmp")
    try:
        temp_path.unlink()
    except FileNotFoundError:
        pass

    os.symlink(str(target), str(temp_path))
    try:
        os.replace(temp_path, link_path)
    except Exception:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise
    return True
