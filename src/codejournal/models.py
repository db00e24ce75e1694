"""Data models for sessions, captured changes, and the journal."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, NoReturn, Optional, Union

from .errors import SessionStateError


def utc_now() -> datetime:
    """Get current UTC time with timezone info."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Generate a random unique identifier."""
    return str(uuid.uuid4())


def format_timestamp(dt: datetime) -> str:
    """Format datetime as ISO 8601 with timezone."""
    return dt.isoformat(timespec='milliseconds')


def clock_time(dt: datetime) -> str:
    """Format the UTC wall-clock part of a datetime as HH:MM:SS."""
    return dt.astimezone(timezone.utc).strftime("%H:%M:%S")


def session_label(start_time: datetime) -> str:
    """Title used for a session block, e.g. ``Session 2026-01-17 at 14:03:22 UTC``."""
    start = start_time.astimezone(timezone.utc)
    return f"Session {start.strftime('%Y-%m-%d')} at {start.strftime('%H:%M:%S')} UTC"


@dataclass
class Session:
    """A bounded recording interval."""
    id: str
    start_time: datetime
    end_time: Optional[datetime] = None

    @classmethod
    def begin(cls) -> "Session":
        return cls(id=new_id(), start_time=utc_now())

    @property
    def is_active(self) -> bool:
        return self.end_time is None

    @property
    def title(self) -> str:
        return session_label(self.start_time)

    def close(self, at: Optional[datetime] = None) -> None:
        """Stamp the end time. Only ever done once."""
        if self.end_time is not None:
            raise SessionStateError(f"Session {self.id} already ended at {format_timestamp(self.end_time)}")
        self.end_time = at or utc_now()

    def duration_minutes(self) -> int:
        if self.end_time is None:
            return 0
        return round((self.end_time - self.start_time).total_seconds() / 60)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "start_time": format_timestamp(self.start_time),
            "end_time": format_timestamp(self.end_time) if self.end_time else None,
            "title": self.title,
        }


class ChangeKind(Enum):
    """Kind of captured file mutation."""
    SAVE = "save"
    CREATE = "create"
    DELETE = "delete"
    RENAME = "rename"


@dataclass
class BaseChange:
    """Fields shared by every captured change."""
    id: str
    timestamp: datetime
    file_path: str
    session_id: Optional[str]

    kind: ClassVar[ChangeKind]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.kind.value,
            "timestamp": format_timestamp(self.timestamp),
            "file_path": self.file_path,
            "session_id": self.session_id,
        }


@dataclass
class SaveChange(BaseChange):
    old_content: str
    new_content: str

    kind: ClassVar[ChangeKind] = ChangeKind.SAVE

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["old_length"] = len(self.old_content)
        data["new_length"] = len(self.new_content)
        return data


@dataclass
class CreateChange(BaseChange):
    content: str

    kind: ClassVar[ChangeKind] = ChangeKind.CREATE

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["content_length"] = len(self.content)
        return data


@dataclass
class DeleteChange(BaseChange):
    last_content: str

    kind: ClassVar[ChangeKind] = ChangeKind.DELETE

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["last_content_length"] = len(self.last_content)
        return data


@dataclass
class RenameChange(BaseChange):
    new_file_path: str

    kind: ClassVar[ChangeKind] = ChangeKind.RENAME

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["new_file_path"] = self.new_file_path
        return data


Change = Union[SaveChange, CreateChange, DeleteChange, RenameChange]


def unhandled_change(change: Any) -> NoReturn:
    """Fail loudly when a consumer meets a change kind it does not know."""
    raise TypeError(f"Unhandled change type: {type(change).__name__}")


def summary_path(change: Change) -> str:
    """Path a change is reported under; renames are reported under the new path."""
    if isinstance(change, RenameChange):
        return change.new_file_path
    if isinstance(change, (SaveChange, CreateChange, DeleteChange)):
        return change.file_path
    unhandled_change(change)


# ========== Journal model ==========

def single_line(value: str, what: str) -> str:
    """Stripped ``value``, which must be non-empty and on one line.

    Raises:
        ValueError: If the value spans lines or is blank
    """
    if not isinstance(value, str):
        raise ValueError(f"{what} must be text, got {type(value).__name__}")
    if "\n" in value or "\r" in value:
        raise ValueError(f"{what} must be a single line: {value!r}")
    value = value.strip()
    if not value:
        raise ValueError(f"{what} must not be empty")
    return value


def journal_timestamp(value: str) -> str:
    """A change timestamp as written between ``**`` markers."""
    value = single_line(value, "Timestamp")
    if "*" in value:
        raise ValueError(f"Timestamp must not contain '*': {value!r}")
    return value


@dataclass
class JournalChange:
    """One ``- **timestamp** description`` line."""
    timestamp: str
    description: str

    def to_dict(self) -> dict:
        return {"timestamp": self.timestamp, "description": self.description}


@dataclass
class JournalFile:
    """A ``### path`` block and its change lines."""
    file_path: str
    changes: list[JournalChange] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "file_path": self.file_path,
            "changes": [c.to_dict() for c in self.changes],
        }


@dataclass
class JournalSession:
    """A ``## Session ...`` block and its file blocks."""
    title: str
    files: list[JournalFile] = field(default_factory=list)

    def change_count(self) -> int:
        return sum(len(f.changes) for f in self.files)

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "files": [f.to_dict() for f in self.files],
        }


# ========== Summarizer boundary ==========

class ErrorKind(Enum):
    """Classification of a summarization failure."""
    API_ERROR = "api_error"
    NETWORK_ERROR = "network_error"
    TOKEN_LIMIT = "token_limit"
    CONFIG_ERROR = "config_error"
    UNKNOWN_ERROR = "unknown_error"

    @property
    def default_retryable(self) -> bool:
        return self in (ErrorKind.API_ERROR, ErrorKind.NETWORK_ERROR, ErrorKind.UNKNOWN_ERROR)


@dataclass
class SummaryFailure:
    """Declared failure result from a summarizer."""
    kind: ErrorKind
    message: str
    retryable: bool

    @classmethod
    def of(cls, kind: Union[ErrorKind, str], message: str, retryable: Optional[bool] = None) -> "SummaryFailure":
        """Build a failure, falling back to the kind's default retryability.

        Unknown kind strings become ``unknown_error``. A ``config_error`` is
        never retryable whatever the caller asks for.
        """
        if not isinstance(kind, ErrorKind):
            try:
                kind = ErrorKind(kind)
            except ValueError:
                kind = ErrorKind.UNKNOWN_ERROR
        if kind is ErrorKind.CONFIG_ERROR:
            retryable = False
        elif retryable is None:
            retryable = kind.default_retryable
        return cls(kind=kind, message=message, retryable=retryable)

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "message": self.message, "retryable": self.retryable}


@dataclass
class SessionSummary:
    """Successful summarizer output: per-file change descriptions."""
    files: list[JournalFile] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> "SessionSummary":
        """Validate a ``{"files": [{"filePath", "changes": [...]}]}`` payload.

        Accepts ``filePath`` or ``file_path`` keys.

        Raises:
            ValueError: If the payload does not have the expected shape
        """
        if not isinstance(data, dict) or not isinstance(data.get("files"), list):
            raise ValueError("Summary payload must be an object with a 'files' list")

        files = []
        for i, item in enumerate(data["files"]):
            if not isinstance(item, dict):
                raise ValueError(f"files[{i}] must be an object")
            path = item.get("filePath", item.get("file_path"))
            if not isinstance(path, str) or not path.strip():
                raise ValueError(f"files[{i}] is missing filePath")
            raw_changes = item.get("changes", [])
            if not isinstance(raw_changes, list):
                raise ValueError(f"files[{i}].changes must be a list")
            changes = []
            for j, raw in enumerate(raw_changes):
                if not isinstance(raw, dict):
                    raise ValueError(f"files[{i}].changes[{j}] must be an object")
                ts = raw.get("timestamp")
                desc = raw.get("description")
                if not isinstance(ts, str) or not isinstance(desc, str):
                    raise ValueError(f"files[{i}].changes[{j}] needs string timestamp and description")
                changes.append(JournalChange(timestamp=ts.strip(), description=" ".join(desc.split())))
            files.append(JournalFile(file_path=path.strip(), changes=changes))
        summary = cls(files=files)
        summary.validate()
        return summary

    def validate(self) -> None:
        """Check that every field can be written as a journal line.

        Raises:
            ValueError: If a path, timestamp or description is unrepresentable
        """
        for f in self.files:
            single_line(f.file_path, "File path")
            for change in f.changes:
                journal_timestamp(change.timestamp)
                single_line(change.description, "Description")

    def to_journal_session(self, session: Session) -> JournalSession:
        return JournalSession(title=session.title, files=list(self.files))

    def to_dict(self) -> dict:
        return {"files": [f.to_dict() for f in self.files]}


SummaryResult = Union[SessionSummary, SummaryFailure]
