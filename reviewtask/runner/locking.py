"""
Lock management for reviewtask.

Uses flock for two kinds of locks:
- run locks (one analyze run per pull request at a time)
- store locks (serialize read-modify-write on tasks.json)

They use different lock files, so a run holding its run lock can still take
the store lock for each save.
"""

import atexit
import fcntl
import os
import time
from contextlib import contextmanager
from pathlib import Path

LOCK_POLL_SECONDS = 0.1


class LockTimeout(Exception):
    """Lock acquisition timed out."""
    pass


def run_lock_path(storage_dir: Path, pr_number: int) -> Path:
    return storage_dir / "locks" / f"PR-{pr_number}.lock"


@contextmanager
def file_lock(lock_file: Path, timeout: float, lock_name: str):
    """
    Hold an exclusive flock on lock_file for the duration of the block.

    Args:
        lock_file: Path to the lock file (created if missing, never deleted)
        timeout: Seconds to wait for lock
        lock_name: Human-readable name for error messages
    """
    lock_file.parent.mkdir(parents=True, exist_ok=True)

    fd = open(lock_file, 'a+')
    start = time.monotonic()

    while True:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            break
        except BlockingIOError:
            if time.monotonic() - start > timeout:
                fd.close()
                raise LockTimeout(f"Could not acquire {lock_name} within {timeout}s")
            time.sleep(LOCK_POLL_SECONDS)

    def release():
        if fd.closed:
            return
        fcntl.flock(fd, fcntl.LOCK_UN)
        fd.close()

    atexit.register(release)
    try:
        fd.seek(0)
        fd.truncate()
        fd.write(f"{os.getpid()}\n")
        fd.flush()
        yield
    finally:
        atexit.unregister(release)
        release()


@contextmanager
def review_unit_lock(storage_dir: Path, pr_number: int, timeout: float = 60):
    """
    Acquire the per-PR run lock, yield, release on exit.

    Different pull requests can be analyzed in parallel.
    """
    with file_lock(run_lock_path(storage_dir, pr_number), timeout, f"run lock for PR #{pr_number}"):
        yield


def is_review_unit_locked(storage_dir: Path, pr_number: int) -> bool:
    """True if another process currently holds the run lock for this PR."""
    lock_file = run_lock_path(storage_dir, pr_number)
    if not lock_file.exists():
        return False

    try:
        with open(lock_file, 'r') as fd:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                return True
            fcntl.flock(fd, fcntl.LOCK_UN)
    except OSError:
        return False
    return False


def read_lock_owner(storage_dir: Path, pr_number: int) -> int | None:
    """PID written by the last holder of the run lock, if any."""
    lock_file = run_lock_path(storage_dir, pr_number)
    try:
        content = lock_file.read_text().strip()
    except OSError:
        return None
    return int(content) if content.isdigit() else None
