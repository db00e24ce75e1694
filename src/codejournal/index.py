"""Navigable views over the journal.

The markdown file remains the source of truth; the index holds only
projections rebuilt from a fresh parse on every ``refresh()``.

Two views are offered:

* by session: sessions newest first, their files, their changes;
* by file: every distinct file across sessions (paths normalized so the
  same file recorded absolute and relative collapses to one entry), the
  sessions that touched it, and that session's changes to it.

``locate`` maps a change back to its line in the live file so a host can
jump to it.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path, PurePath
from typing import Optional, Union

from .models import JournalChange, JournalFile, JournalSession
from .store import (
    JournalStore,
    file_path_of,
    is_file_header,
    is_session_header,
    match_change,
    session_title_of,
)

logger = logging.getLogger(__name__)


def normalize_path(path: str, project_root: Optional[Union[str, Path]]) -> str:
    """Canonical form of a journal file path.

    An absolute path inside ``project_root`` becomes relative to it (POSIX
    separators); anything else is only trimmed.
    """
    trimmed = path.strip()
    if not project_root or not os.path.isabs(trimmed):
        return trimmed
    try:
        relative = PurePath(trimmed).relative_to(PurePath(project_root))
    except ValueError:
        return trimmed
    return relative.as_posix()


class ViewMode(Enum):
    BY_SESSION = "session"
    BY_FILE = "file"


class NodeKind(Enum):
    SESSION = "session"
    FILE = "file"
    CHANGE = "change"


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}{'' if count == 1 else 's'}"


@dataclass
class TreeNode:
    """Descriptor handed to a view consumer."""
    node_id: str
    kind: NodeKind
    label: str
    description: str = ""
    tooltip: str = ""
    has_children: bool = False
    session_title: Optional[str] = None
    file_path: Optional[str] = None
    change: Optional[JournalChange] = None

    def to_dict(self) -> dict:
        return {
            "node_id": self.node_id,
            "kind": self.kind.value,
            "label": self.label,
            "description": self.description,
            "tooltip": self.tooltip,
            "has_children": self.has_children,
            "session_title": self.session_title,
            "file_path": self.file_path,
            "change": self.change.to_dict() if self.change else None,
        }


@dataclass
class FileEntry:
    """One row of the by-file view."""
    path: str
    change_count: int


@dataclass
class FileInSession:
    """A session's changes to one normalized file."""
    session_title: str
    file: JournalFile


class JournalIndex:
    """Projections and line locator for one journal file."""

    def __init__(
        self,
        store: JournalStore,
        project_root: Optional[Union[str, Path]] = None,
        mode: ViewMode = ViewMode.BY_SESSION,
    ):
        self.store = store
        self.project_root = str(project_root) if project_root else None
        self.mode = mode
        self._sessions: list[JournalSession] = []
        self.refresh()

    # ========== Loading ==========

    def refresh(self) -> None:
        """Re-parse the journal file."""
        try:
            self._sessions = self.store.read_sessions()
        except (OSError, UnicodeDecodeError) as e:
            logger.error("Could not load journal %s: %s", self.store.path, e)
            self._sessions = []
        logger.debug("Journal index refreshed: %d sessions", len(self._sessions))

    def set_view_mode(self, mode: ViewMode) -> None:
        self.mode = mode
        self.refresh()

    def normalize(self, path: str) -> str:
        return normalize_path(path, self.project_root)

    # ========== By-session view ==========

    def sessions(self) -> list[JournalSession]:
        return list(self._sessions)

    # ========== By-file view ==========

    def files(self) -> list[FileEntry]:
        """Distinct normalized files, first-seen order, with total change counts."""
        ordered: list[str] = []
        for session in self._sessions:
            for f in session.files:
                key = self.normalize(f.file_path)
                if key not in ordered:
                    ordered.append(key)
        return [FileEntry(path=p, change_count=self.count_changes(p)) for p in ordered]

    def count_changes(self, path: str) -> int:
        """Total changes to ``path`` over every session."""
        key = self.normalize(path)
        return sum(
            len(f.changes)
            for session in self._sessions
            for f in session.files
            if self.normalize(f.file_path) == key
        )

    def sessions_for_file(self, path: str) -> list[FileInSession]:
        """Sessions touching ``path``, each with only that file's changes."""
        key = self.normalize(path)
        result = []
        for session in self._sessions:
            changes: list[JournalChange] = []
            touched = False
            for f in session.files:
                if self.normalize(f.file_path) == key:
                    touched = True
                    changes.extend(f.changes)
            if touched:
                result.append(FileInSession(
                    session_title=session.title,
                    file=JournalFile(file_path=key, changes=changes),
                ))
        return result

    # ========== View consumer ==========

    def get_children(self, node_id: Optional[str] = None) -> list[TreeNode]:
        """Children of a node, or the roots of the current view mode.

        Node ids are index paths valid until the next refresh:
        ``s0``, ``s0/f1``, ``s0/f1/c2`` in the session view and ``f0``,
        ``f0/s1``, ``f0/s1/c0`` in the file view. Unknown ids have no children.
        """
        if not node_id:
            if self.mode is ViewMode.BY_SESSION:
                return [self._session_node(i, s) for i, s in enumerate(self._sessions)]
            return [self._file_entry_node(i, e) for i, e in enumerate(self.files())]

        try:
            parts = [(p[0], int(p[1:])) for p in node_id.split("/")]
        except (ValueError, IndexError):
            return []

        if parts[0][0] == "s":
            return self._session_view_children(node_id, parts)
        if parts[0][0] == "f":
            return self._file_view_children(node_id, parts)
        return []

    def _session_view_children(self, node_id: str, parts: list[tuple[str, int]]) -> list[TreeNode]:
        _, si = parts[0]
        if not 0 <= si < len(self._sessions):
            return []
        session = self._sessions[si]
        if len(parts) == 1:
            return [self._file_node(f"{node_id}/f{fi}", f, session.title) for fi, f in enumerate(session.files)]
        if len(parts) == 2 and parts[1][0] == "f":
            _, fi = parts[1]
            if not 0 <= fi < len(session.files):
                return []
            f = session.files[fi]
            return [self._change_node(f"{node_id}/c{ci}", c, session.title, f.file_path) for ci, c in enumerate(f.changes)]
        return []

    def _file_view_children(self, node_id: str, parts: list[tuple[str, int]]) -> list[TreeNode]:
        entries = self.files()
        _, fi = parts[0]
        if not 0 <= fi < len(entries):
            return []
        touching = self.sessions_for_file(entries[fi].path)
        if len(parts) == 1:
            return [
                TreeNode(
                    node_id=f"{node_id}/s{i}",
                    kind=NodeKind.FILE,
                    label=item.session_title,
                    description=_plural(len(item.file.changes), "change"),
                    tooltip=item.file.file_path,
                    has_children=bool(item.file.changes),
                    session_title=item.session_title,
                    file_path=item.file.file_path,
                )
                for i, item in enumerate(touching)
            ]
        if len(parts) == 2 and parts[1][0] == "s":
            _, si = parts[1]
            if not 0 <= si < len(touching):
                return []
            item = touching[si]
            return [
                self._change_node(f"{node_id}/c{ci}", c, item.session_title, item.file.file_path)
                for ci, c in enumerate(item.file.changes)
            ]
        return []

    def _session_node(self, i: int, session: JournalSession) -> TreeNode:
        return TreeNode(
            node_id=f"s{i}",
            kind=NodeKind.SESSION,
            label=session.title,
            description=_plural(len(session.files), "file"),
            has_children=bool(session.files),
            session_title=session.title,
        )

    def _file_node(self, node_id: str, f: JournalFile, session_title: str) -> TreeNode:
        return TreeNode(
            node_id=node_id,
            kind=NodeKind.FILE,
            label=PurePath(f.file_path).name or f.file_path,
            description=_plural(len(f.changes), "change"),
            tooltip=f.file_path,
            has_children=bool(f.changes),
            session_title=session_title,
            file_path=f.file_path,
        )

    def _file_entry_node(self, i: int, entry: FileEntry) -> TreeNode:
        return TreeNode(
            node_id=f"f{i}",
            kind=NodeKind.FILE,
            label=PurePath(entry.path).name or entry.path,
            description=_plural(entry.change_count, "change"),
            tooltip=entry.path,
            has_children=True,
            file_path=entry.path,
        )

    def _change_node(self, node_id: str, change: JournalChange, session_title: str, file_path: str) -> TreeNode:
        return TreeNode(
            node_id=node_id,
            kind=NodeKind.CHANGE,
            label=f"{change.timestamp} {change.description}",
            tooltip=change.description,
            session_title=session_title,
            file_path=file_path,
            change=change,
        )

    # ========== Locator ==========

    def locate(
        self,
        change: JournalChange,
        session_title: Optional[str] = None,
        file_path: Optional[str] = None,
    ) -> Optional[int]:
        """1-based line of ``change`` in the live journal, or None.

        With ``session_title`` only that session's block is searched; the
        search ends at the next session header. With ``file_path`` only
        that file's blocks (matched after normalization) are searched.
        """
        try:
            text = self.store.read_text()
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Could not read journal for locate: %s", e)
            return None
        if text is None:
            return None

        wanted_title = session_title.strip() if session_title is not None else None
        wanted_file = self.normalize(file_path) if file_path is not None else None
        target = (change.timestamp.strip(), change.description.strip())

        # Change lines only count inside a file block of a session, as when parsing
        in_session = False
        matched_session = False
        in_file = False

        for lineno, raw in enumerate(text.split("\n"), start=1):
            line = raw.rstrip()

            if is_session_header(line):
                if matched_session:
                    break
                if wanted_title is None:
                    in_session = True
                else:
                    in_session = session_title_of(line) == wanted_title
                    matched_session = in_session
                in_file = False
                continue

            if is_file_header(line):
                in_file = wanted_file is None or self.normalize(file_path_of(line)) == wanted_file
                continue

            if in_session and in_file and line.startswith("- **"):
                found = match_change(line)
                if found is not None and (found.timestamp, found.description) == target:
                    return lineno

        return None
