"""Change capture: file mutation notifications become typed change records.

The capture keeps a content cache of the last text seen for every path so
saves can be compared and deletes/renames can report what the file held.
The cache is updated on every event whether or not a session is recording;
changes are only recorded while one is.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Iterator, Optional

from .models import (
    Change,
    CreateChange,
    DeleteChange,
    RenameChange,
    SaveChange,
    Session,
    new_id,
    utc_now,
)

logger = logging.getLogger(__name__)

SessionProvider = Callable[[], Optional[Session]]
TextReader = Callable[[str], str]


def read_text_file(path: str) -> str:
    """Default reader: full UTF-8 text of a workspace file."""
    return Path(path).read_text(encoding="utf-8")


class ContentCache:
    """Last observed full text per file path."""

    def __init__(self) -> None:
        self._entries: dict[str, str] = {}

    def get(self, path: str, default: Optional[str] = None) -> Optional[str]:
        return self._entries.get(path, default)

    def set(self, path: str, text: str) -> None:
        self._entries[path] = text

    def pop(self, path: str) -> Optional[str]:
        return self._entries.pop(path, None)

    def clear(self) -> None:
        self._entries.clear()

    def paths(self) -> list[str]:
        return list(self._entries)

    def __contains__(self, path: object) -> bool:
        return path in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._entries))


class ChangeCapture:
    """Records file mutations against the active session.

    Args:
        session_provider: Returns the recording session, or None when idle
        reader: Reads the full text of a path (may raise OSError/UnicodeDecodeError)
        retain_closed_documents: Keep cache entries when a document closes
        record_idle_changes: Keep changes seen while idle, untagged
    """

    def __init__(
        self,
        session_provider: SessionProvider,
        reader: TextReader = read_text_file,
        retain_closed_documents: bool = True,
        record_idle_changes: bool = False,
    ):
        self._session_provider = session_provider
        self._reader = reader
        self.retain_closed_documents = retain_closed_documents
        self.record_idle_changes = record_idle_changes
        self.cache = ContentCache()
        self._changes: list[Change] = []

    # ========== Document lifecycle ==========

    def on_open(self, path: str, text: str) -> None:
        """A document was opened or seen by an initial scan."""
        self.cache.set(path, text)

    def on_close(self, path: str) -> None:
        if not self.retain_closed_documents:
            self.cache.pop(path)

    # ========== Mutations ==========

    def on_save(self, path: str, new_text: str) -> Optional[SaveChange]:
        """Record a save if the text differs from the cached text."""
        session = self._active_session()
        old_text = self.cache.get(path, "")
        change = None

        if old_text != new_text:
            if session is not None or self.record_idle_changes:
                change = SaveChange(
                    id=new_id(),
                    timestamp=utc_now(),
                    file_path=path,
                    session_id=session.id if session else None,
                    old_content=old_text,
                    new_content=new_text,
                )
                self._record(change)
            else:
                logger.debug("Save not tracked for %s (no active session)", path)

        self.cache.set(path, new_text)
        return change

    def on_create(self, path: str) -> Optional[CreateChange]:
        """Record a new file, reading its content through the reader."""
        content = self._read(path)
        if content is None:
            return None

        self.cache.set(path, content)

        session = self._active_session()
        if session is None and not self.record_idle_changes:
            logger.debug("Creation not tracked for %s (no active session)", path)
            return None

        change = CreateChange(
            id=new_id(),
            timestamp=utc_now(),
            file_path=path,
            session_id=session.id if session else None,
            content=content,
        )
        self._record(change)
        return change

    def on_delete(self, path: str) -> Optional[DeleteChange]:
        """Record a deletion with the last cached content."""
        last_content = self.cache.pop(path)
        session = self._active_session()
        if session is None and not self.record_idle_changes:
            logger.debug("Deletion not tracked for %s (no active session)", path)
            return None

        change = DeleteChange(
            id=new_id(),
            timestamp=utc_now(),
            file_path=path,
            session_id=session.id if session else None,
            last_content=last_content or "",
        )
        self._record(change)
        return change

    def on_rename(self, old_path: str, new_path: str) -> Optional[RenameChange]:
        """Move the cache entry and record the rename."""
        old_content = self.cache.pop(old_path) or ""
        live = self._read(new_path)
        self.cache.set(new_path, live if live is not None else old_content)

        session = self._active_session()
        if session is None and not self.record_idle_changes:
            logger.debug("Rename not tracked: %s -> %s (no active session)", old_path, new_path)
            return None

        change = RenameChange(
            id=new_id(),
            timestamp=utc_now(),
            file_path=old_path,
            session_id=session.id if session else None,
            new_file_path=new_path,
        )
        self._record(change)
        return change

    # ========== Queries ==========

    def get_changes(self) -> list[Change]:
        return list(self._changes)

    def get_changes_by_session(self, session_id: str) -> list[Change]:
        return [c for c in self._changes if c.session_id is not None and c.session_id == session_id]

    def get_current_session_changes(self) -> list[Change]:
        session = self._active_session()
        if session is None:
            return []
        return self.get_changes_by_session(session.id)

    def clear_changes(self) -> int:
        """Drop every captured change. Returns how many were removed."""
        removed = len(self._changes)
        self._changes = []
        return removed

    def clear_session_changes(self, session_id: str) -> int:
        """Drop the changes of one session. Returns how many were removed."""
        kept = [c for c in self._changes if c.session_id != session_id]
        removed = len(self._changes) - len(kept)
        self._changes = kept
        return removed

    # ========== Internals ==========

    def _active_session(self) -> Optional[Session]:
        try:
            session = self._session_provider()
        except Exception:
            logger.exception("Session provider failed; treating capture as idle")
            return None
        if session is None or not session.is_active:
            return None
        return session

    def _read(self, path: str) -> Optional[str]:
        try:
            return self._reader(path)
        except Exception as e:
            # Unreadable content degrades to "no change" for this file
            logger.warning("Could not read %s: %s", path, e)
            return None

    def _record(self, change: Change) -> None:
        self._changes.append(change)
        logger.debug(
            "Change tracked: %s %s (id=%s, session=%s)",
            change.kind.value, change.file_path, change.id, change.session_id,
        )
