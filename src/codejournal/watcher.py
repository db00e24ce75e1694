"""Workspace watcher - polls the project tree and feeds ChangeCapture.

Each poll compares ``(mtime_ns, size)`` snapshots with the previous one:

* a path whose stat changed is re-read and reported as a save;
* a path that vanished while another appeared with exactly the text the
  cache held for it is reported as a rename;
* remaining vanished paths are deletes, remaining new paths are creates.

The journal file and its lock/temp siblings are never watched, otherwise
every write of a summary would show up as a change.
"""

from __future__ import annotations

import asyncio
import fnmatch
import logging
import os
from pathlib import Path, PurePath
from typing import Iterable, Optional

from .capture import ChangeCapture, TextReader
from .locking import lock_path_for, tmp_path_for

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 1.0
DEFAULT_MAX_FILE_BYTES = 2_000_000

Snapshot = dict[str, tuple[int, int]]


class FileTooLargeError(ValueError):
    pass


def bounded_reader(max_file_bytes: int = DEFAULT_MAX_FILE_BYTES) -> TextReader:
    """Reader that refuses files above ``max_file_bytes`` and non-UTF-8 text."""

    def read(path: str) -> str:
        size = os.path.getsize(path)
        if size > max_file_bytes:
            raise FileTooLargeError(f"{path} is {size} bytes (limit {max_file_bytes})")
        with open(path, "r", encoding="utf-8", newline="") as f:
            return f.read()

    return read


def is_ignored(relative: str, patterns: Iterable[str]) -> bool:
    """True if any component of ``relative`` (or the whole path) matches a pattern."""
    parts = PurePath(relative).parts
    for pattern in patterns:
        if fnmatch.fnmatch(relative, pattern):
            return True
        if any(fnmatch.fnmatch(part, pattern) for part in parts):
            return True
    return False


class WorkspaceWatcher:
    """Polling watcher for one project root.

    Args:
        root: Directory to watch
        capture: Receives open/save/create/delete/rename notifications
        poll_interval: Seconds between polls
        ignore_patterns: Glob patterns matched against path components
        max_file_bytes: Larger files are tracked by stat but never read
        journal_path: Journal file to exclude along with its lock/tmp files
    """

    def __init__(
        self,
        root: Path,
        capture: ChangeCapture,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        ignore_patterns: Optional[list[str]] = None,
        max_file_bytes: int = DEFAULT_MAX_FILE_BYTES,
        journal_path: Optional[Path] = None,
    ):
        self.root = Path(root).resolve()
        self.capture = capture
        self.poll_interval = poll_interval
        self.ignore_patterns = list(ignore_patterns or [])
        self.reader = bounded_reader(max_file_bytes)
        self._excluded: set[str] = set()
        if journal_path is not None:
            journal_path = Path(journal_path).resolve()
            self._excluded = {
                str(journal_path),
                str(lock_path_for(journal_path)),
                str(tmp_path_for(journal_path)),
            }
        self._snapshot: Optional[Snapshot] = None
        self._stop_event = asyncio.Event()
        self._running = False

    # ========== Scanning ==========

    def scan(self) -> Snapshot:
        """Stat every watched file under the root."""
        snapshot: Snapshot = {}
        for dirpath, dirnames, filenames in os.walk(self.root):
            rel_dir = os.path.relpath(dirpath, self.root)
            dirnames[:] = [
                d for d in dirnames
                if not is_ignored(_join(rel_dir, d), self.ignore_patterns)
            ]
            for name in filenames:
                path = os.path.join(dirpath, name)
                if path in self._excluded or is_ignored(_join(rel_dir, name), self.ignore_patterns):
                    continue
                try:
                    st = os.stat(path)
                except OSError:
                    # Vanished between listing and stat
                    continue
                snapshot[path] = (st.st_mtime_ns, st.st_size)
        return snapshot

    def prime(self, snapshot: Optional[Snapshot] = None) -> int:
        """Take the first snapshot and seed the capture cache. Returns files cached."""
        self._snapshot = snapshot if snapshot is not None else self.scan()
        cached = 0
        for path in self._snapshot:
            text = self._read(path)
            if text is not None:
                self.capture.on_open(path, text)
                cached += 1
        logger.info("Watching %s: %d files cached", self.root, cached)
        return cached

    def poll(self) -> int:
        """Scan once and report differences. Returns notifications sent."""
        return self.apply(self.scan())

    def apply(self, current: Snapshot) -> int:
        """Diff ``current`` against the previous snapshot and notify capture."""
        if self._snapshot is None:
            self._snapshot = current
            return 0

        previous = self._snapshot
        self._snapshot = current
        notified = 0

        gone = [p for p in previous if p not in current]
        added = [p for p in current if p not in previous]
        modified = [p for p in current if p in previous and current[p] != previous[p]]

        added_text = {p: self._read(p) for p in added}
        for old in list(gone):
            cached = self.capture.cache.get(old)
            if cached is None:
                continue
            for new in added:
                if added_text.get(new) == cached:
                    self.capture.on_rename(old, new)
                    gone.remove(old)
                    added.remove(new)
                    notified += 1
                    break

        for path in gone:
            self.capture.on_delete(path)
            notified += 1

        for path in added:
            if added_text.get(path) is None:
                continue
            self.capture.on_create(path)
            notified += 1

        for path in modified:
            text = self._read(path)
            if text is None:
                continue
            if self.capture.on_save(path, text) is not None:
                notified += 1

        return notified

    def _read(self, path: str) -> Optional[str]:
        try:
            return self.reader(path)
        except (OSError, UnicodeDecodeError, FileTooLargeError) as e:
            logger.debug("Skipping %s: %s", path, e)
            return None

    # ========== Task ==========

    @property
    def running(self) -> bool:
        return self._running

    async def run(self) -> None:
        """Poll until ``stop()`` is called."""
        self._running = True
        try:
            if self._snapshot is None:
                self.prime(await asyncio.to_thread(self.scan))
            while not self._stop_event.is_set():
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass
                if self._stop_event.is_set():
                    break
                try:
                    snapshot = await asyncio.to_thread(self.scan)
                    self.apply(snapshot)
                except Exception:
                    # Keep watching; a bad poll must not end the task
                    logger.exception("Workspace poll failed")
        finally:
            self._running = False

    def stop(self) -> None:
        self._stop_event.set()


def _join(rel_dir: str, name: str) -> str:
    if rel_dir in ("", os.curdir):
        return name
    return PurePath(rel_dir, name).as_posix()
