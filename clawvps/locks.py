from __future__ import annotations

import os
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from clawvps.config import LOCK_TIMEOUT_SECONDS


class LockError(RuntimeError):
    """Raised when a lock file cannot be acquired."""


class LockHeld(LockError):
    def __init__(self, path: Path, pid: int) -> None:
        super().__init__(f"Lock {path} is held by running process (PID: {pid})")
        self.path = path
        self.pid = pid


def _pid_running(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True


def _read_pid(path: Path) -> int:
    try:
        raw = path.read_text(encoding="utf-8").strip()
    except OSError:
        return 0
    try:
        return int(raw)
    except ValueError:
        return 0


def lock_age_seconds(path: Path, *, now: float | None = None) -> float | None:
    try:
        mtime = path.stat().st_mtime
    except FileNotFoundError:
        return None
    current = time.time() if now is None else now
    return max(current - mtime, 0.0)


def live_holder(path: Path, *, timeout_seconds: int = LOCK_TIMEOUT_SECONDS) -> int | None:
    """Return the holder PID when the lock is live, else None.

    A lock is live only while it is younger than the timeout and its PID
    still runs.
    """
    age = lock_age_seconds(path)
    if age is None:
        return None
    pid = _read_pid(path)
    if age < timeout_seconds and _pid_running(pid):
        return pid
    return None


def _reclaim_stale(path: Path) -> None:
    path.unlink(missing_ok=True)


def acquire(path: Path, *, timeout_seconds: int = LOCK_TIMEOUT_SECONDS) -> int:
    holder = live_holder(path, timeout_seconds=timeout_seconds)
    if holder is not None and holder != os.getpid():
        raise LockHeld(path, holder)
    _reclaim_stale(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    pid = os.getpid()
    try:
        fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
    except FileExistsError as exc:
        # Another process created the lock between the reclaim and the open.
        raise LockHeld(path, _read_pid(path)) from exc
    except OSError as exc:
        raise LockError(f"Error: Could not write lock file {path}: {exc}") from exc
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        handle.write(f"{pid}\n")
    return pid


def release(path: Path) -> None:
    if _read_pid(path) == os.getpid():
        path.unlink(missing_ok=True)


@contextmanager
def pid_lock(path: Path, *, timeout_seconds: int = LOCK_TIMEOUT_SECONDS) -> Iterator[int]:
    pid = acquire(path, timeout_seconds=timeout_seconds)
    try:
        yield pid
    finally:
        release(path)
