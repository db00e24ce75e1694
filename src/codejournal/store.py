"""Journal store - the markdown file that holds summarized sessions.

Grammar, one construct per line::

    # <Title>
    ## Session <timestamp label>
    ### <file path>
    - **<timestamp>** <description>

The title line appears once at the top. New session blocks are inserted
directly beneath it, so the file reads newest first. Parsing ignores any
line it does not recognize, so hand edits and notes never break a read.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Optional

from .locking import journal_lock, replace_text
from .models import JournalChange, JournalFile, JournalSession, journal_timestamp, single_line

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "CodeJournal"

SESSION_PREFIX = "## Session "
FILE_PREFIX = "### "
CHANGE_PATTERN = re.compile(r"^- \*\*([^*]+)\*\* (.+)$")


def is_session_header(line: str) -> bool:
    return line.startswith(SESSION_PREFIX)


def is_file_header(line: str) -> bool:
    return line.startswith(FILE_PREFIX)


def session_title_of(line: str) -> str:
    """Title of a session header line, without the ``## `` marker."""
    return line[3:].strip()


def file_path_of(line: str) -> str:
    return line[len(FILE_PREFIX):].strip()


def match_change(line: str) -> Optional[JournalChange]:
    """Parse a change line, or None if the line is not one."""
    m = CHANGE_PATTERN.match(line)
    if m is None:
        return None
    timestamp = m.group(1).strip()
    description = m.group(2).strip()
    if not timestamp or not description:
        return None
    return JournalChange(timestamp=timestamp, description=description)


def parse_journal(text: str) -> list[JournalSession]:
    """Parse journal text into sessions, in file order."""
    sessions: list[JournalSession] = []
    current_session: Optional[JournalSession] = None
    current_file: Optional[JournalFile] = None

    for raw in text.split("\n"):
        line = raw.rstrip()

        if is_session_header(line):
            if current_session is not None and current_file is not None:
                current_session.files.append(current_file)
            if current_session is not None:
                sessions.append(current_session)
            current_session = JournalSession(title=session_title_of(line))
            current_file = None

        elif is_file_header(line) and current_session is not None:
            if current_file is not None:
                current_session.files.append(current_file)
            current_file = JournalFile(file_path=file_path_of(line))

        elif line.startswith("- **") and current_file is not None:
            change = match_change(line)
            if change is not None:
                current_file.changes.append(change)

    if current_session is not None and current_file is not None:
        current_session.files.append(current_file)
    if current_session is not None:
        sessions.append(current_session)

    return sessions


def format_session(session: JournalSession) -> str:
    """Render one session block, ending with a blank line.

    Raises:
        ValueError: If a field cannot be represented in the grammar
    """
    title = single_line(session.title, "Session title")
    if not ("## " + title).startswith(SESSION_PREFIX):
        raise ValueError(f"Session title must start with 'Session ': {title!r}")

    lines = [f"## {title}", ""]
    for f in session.files:
        lines.append(f"{FILE_PREFIX}{single_line(f.file_path, 'File path')}")
        for change in f.changes:
            timestamp = journal_timestamp(change.timestamp)
            description = single_line(change.description, "Description")
            lines.append(f"- **{timestamp}** {description}")
        lines.append("")
    return "\n".join(lines) + "\n"


def strip_header(text: str) -> str:
    """Remove a top ``# Title`` line, a leading BOM and the blank lines after it."""
    body = text.lstrip("\ufeff\r\n")
    if body.startswith("# "):
        _, _, body = body.partition("\n")
        body = body.lstrip("\r\n")
    return body


class JournalStore:
    """Reads and writes the journal file."""

    def __init__(self, path: Path, title: str = DEFAULT_TITLE, lock_timeout: float = 10.0):
        self.path = Path(path)
        self.title = title
        self.lock_timeout = lock_timeout

    @property
    def header(self) -> str:
        return f"# {self.title}\n\n"

    def exists(self) -> bool:
        return self.path.exists()

    def read_text(self) -> Optional[str]:
        """Current journal text, or None if the file does not exist.

        A byte order mark left by an editor is dropped.
        """
        if not self.path.exists():
            return None
        return self.path.read_text(encoding="utf-8-sig")

    def read_sessions(self) -> list[JournalSession]:
        text = self.read_text()
        if text is None:
            return []
        return parse_journal(text)

    def ensure_exists(self) -> Path:
        """Create the journal with only its header if it is missing."""
        with journal_lock(self.path, timeout=self.lock_timeout):
            if not self.path.exists():
                replace_text(self.path, self.header)
                logger.info("Created journal at %s", self.path)
        return self.path

    def prepend(self, block: str) -> Path:
        """Insert a formatted session block directly under the header."""
        with journal_lock(self.path, timeout=self.lock_timeout):
            existing = self.read_text() or ""
            replace_text(self.path, self.header + block + strip_header(existing))
        logger.info("Session block written to %s", self.path)
        return self.path

    def append_session(self, session: JournalSession) -> Path:
        """Format and insert one session; it becomes the newest entry."""
        return self.prepend(format_session(session))

