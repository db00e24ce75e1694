"""Lock-and-replace helpers for journal writes.

The lock only coordinates CodeJournal processes; editors that touch the
journal directly do not take it.
"""

from __future__ import annotations

import os
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

import portalocker

from .errors import JournalLockError

LOCK_SUFFIX = ".lock"
TMP_SUFFIX = ".tmp"


def lock_path_for(path: Path) -> Path:
    return path.with_name(path.name + LOCK_SUFFIX)


def tmp_path_for(path: Path) -> Path:
    return path.with_name(path.name + TMP_SUFFIX)


@contextmanager
def journal_lock(path: Path, timeout: float = 10.0) -> Generator[None, None, None]:
    """Hold an exclusive lock on ``<path>.lock`` while the block runs.

    Raises:
        JournalLockError: If the lock cannot be acquired in time
    """
    lock_file = lock_path_for(path)
    lock_file.parent.mkdir(parents=True, exist_ok=True)
    lock = portalocker.Lock(str(lock_file), timeout=timeout)
    try:
        lock.acquire()
    except portalocker.LockException as e:
        raise JournalLockError(f"Could not lock journal {path}: {e}") from e
    try:
        yield
    finally:
        lock.release()


def replace_text(path: Path, text: str, encoding: str = "utf-8") -> None:
    """Write ``text`` to a sibling temp file, then move it over ``path``."""
    tmp = tmp_path_for(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        with open(tmp, "w", encoding=encoding, newline="") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except Exception:
        if tmp.exists():
            tmp.unlink()
        raise
