"""Atomic file replacement and PID-stamped lock files for the schedule store."""

from __future__ import annotations

import contextlib
import os
import tempfile
import time
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

import psutil

if TYPE_CHECKING:
    from collections.abc import Iterator

PathLike = str | os.PathLike[str]


class LockTimeoutError(TimeoutError):
    """Raised when a lock file could not be acquired before the deadline."""


def atomic_write(path: PathLike, data: bytes | str, *, encoding: str = "utf-8") -> None:
    """Replace ``path`` with ``data`` so readers see either the old or the new content.

    The parent directory must already exist.
    """

    target = Path(path)
    directory = target.parent.resolve(strict=True)
    payload = data if isinstance(data, bytes) else data.encode(encoding)

    with tempfile.NamedTemporaryFile(
        "wb", dir=directory, prefix=f".{target.name}.", suffix=".tmp", delete=False
    ) as staged:
        staged_path = Path(staged.name)
        try:
            staged.write(payload)
            staged.flush()
            os.fsync(staged.fileno())
        except BaseException:
            staged.close()
            staged_path.unlink(missing_ok=True)
            raise

    try:
        staged_path.replace(target)
    except OSError:
        staged_path.unlink(missing_ok=True)
        raise
    _sync_dir(directory)


@contextmanager
def exclusive_lock_file(
    path: PathLike,
    *,
    timeout_seconds: float = 10.0,
    poll_interval_seconds: float = 0.05,
) -> Iterator[Path]:
    """Hold ``path`` as an exclusive lock file for the duration of the block.

    The file records the holder's PID. A lock whose holder is no longer
    running is reclaimed instead of waited on.
    """

    lock_path = Path(path)
    deadline = time.monotonic() + max(timeout_seconds, 0.0)
    while not _try_create(lock_path):
        if _holder_is_gone(lock_path):
            with contextlib.suppress(FileNotFoundError):
                lock_path.unlink()
            continue
        if time.monotonic() >= deadline:
            raise LockTimeoutError(f"lock {lock_path!s} still held after {timeout_seconds:.1f}s")
        time.sleep(poll_interval_seconds)

    try:
        yield lock_path
    finally:
        with contextlib.suppress(FileNotFoundError):
            lock_path.unlink()


def lock_holder(path: PathLike) -> int | None:
    """PID recorded in a lock file, or ``None`` when absent or unreadable."""

    try:
        text = Path(path).read_text(encoding="ascii").strip()
    except (OSError, UnicodeDecodeError):
        return None
    return int(text) if text.isdigit() else None


def _try_create(lock_path: Path) -> bool:
    try:
        fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
    except FileExistsError:
        return False
    with os.fdopen(fd, "w", encoding="ascii") as handle:
        handle.write(str(os.getpid()))
    return True


def _holder_is_gone(lock_path: Path) -> bool:
    pid = lock_holder(lock_path)
    # An unstamped lock may be mid-creation by another process.
    return pid is not None and pid != os.getpid() and not psutil.pid_exists(pid)


def _sync_dir(directory: Path) -> None:
    if os.name == "nt":
        return
    try:
        fd = os.open(directory, os.O_RDONLY | getattr(os, "O_DIRECTORY", 0))
    except OSError:
        return
    try:
        with contextlib.suppress(OSError):
            os.fsync(fd)
    finally:
        os.close(fd)


__all__ = [
    "LockTimeoutError",
    "atomic_write",
    "exclusive_lock_file",
    "lock_holder",
]
