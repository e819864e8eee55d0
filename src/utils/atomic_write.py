"""
Atomic file operations for EzUpdate.

Whole-file writes use the write-to-temp-then-rename pattern; appends are
one locked write per call, synced to disk before returning.
"""

from __future__ import annotations

import contextlib
import fcntl
import os
import tempfile
from pathlib import Path
from typing import Union


def _fsync_directory(directory: Path) -> None:
    """Sync a directory so a rename or file creation inside it is persisted."""
    try:
        dir_fd = os.open(str(directory), os.O_RDONLY | os.O_DIRECTORY)
        try:
            os.fsync(dir_fd)
        finally:
            os.close(dir_fd)
    except (OSError, AttributeError):
        # O_DIRECTORY not available on all platforms
        pass


def _write_all(fd: int, data: bytes) -> None:
    view = memoryview(data)
    while view:
        written = os.write(fd, view)
        view = view[written:]


def atomic_write_text(path: Union[str, Path], content: str, mode: int = 0o644) -> None:
    """
    Replace a file's content in one step.

    The text is written to a hidden sibling file, synced, then renamed over
    the destination, so readers see either the old file or the new one.

    Args:
        path: Destination file (parents are created)
        content: New text content, UTF-8 encoded
        mode: Permissions of the resulting file
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    # Same directory as the target, so the rename cannot cross filesystems
    fd, temp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        try:
            _write_all(fd, content.encode("utf-8"))
            os.fsync(fd)
            os.fchmod(fd, mode)
        finally:
            os.close(fd)
        os.replace(temp_name, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(temp_name)
        raise

    _fsync_directory(path.parent)


def durable_append(path: Union[str, Path], data: bytes, mode: int = 0o644) -> None:
    """
    Append bytes to a file as a single all-or-nothing write.

    The descriptor is opened with O_APPEND and held under an exclusive
    flock for the duration of the write, so concurrent writers never
    interleave inside one call. Data is fsynced before returning.

    Args:
        path: File to append to (created if missing)
        data: Complete payload, typically one newline-terminated line
        mode: Permissions used when the file is created
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    created = not path.exists()

    fd = os.open(str(path), os.O_WRONLY | os.O_APPEND | os.O_CREAT, mode)
    try:
        fcntl.flock(fd, fcntl.LOCK_EX)
        try:
            _write_all(fd, data)
            os.fsync(fd)
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)

    if created:
        _fsync_directory(path.parent)
