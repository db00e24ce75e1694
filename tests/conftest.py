"""Shared pytest fixtures for codejournal tests."""

import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from codejournal.config import ProjectConfig
from codejournal.engine import JournalEngine
from codejournal.models import (
    CreateChange,
    DeleteChange,
    RenameChange,
    SaveChange,
    Session,
    SessionSummary,
    SummaryFailure,
    new_id,
)


BASE_TIME = datetime(2026, 1, 17, 14, 3, 22, tzinfo=timezone.utc)


class RecordingNotifier:
    """Collects notices instead of showing them."""

    def __init__(self):
        self.infos = []
        self.errors = []

    def info(self, message):
        self.infos.append(message)

    def error(self, message):
        self.errors.append(message)


class ScriptedSummarizer:
    """Returns queued results in order; repeats the last one when the queue runs out."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    async def summarize(self, session, changes):
        self.calls.append((session, list(changes)))
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, BaseException):
            raise result
        return result


def summary_of(*files):
    """SessionSummary from ``(path, [(timestamp, description), ...])`` pairs."""
    return SessionSummary.from_dict({
        "files": [
            {
                "filePath": path,
                "changes": [{"timestamp": ts, "description": desc} for ts, desc in changes],
            }
            for path, changes in files
        ]
    })


def make_session(offset_minutes=0):
    return Session(id=new_id(), start_time=BASE_TIME + timedelta(minutes=offset_minutes))


def make_save(path="src/a.py", old="a\n", new="a\nb\n", session_id="s", offset_seconds=0):
    return SaveChange(
        id=new_id(),
        timestamp=BASE_TIME + timedelta(seconds=offset_seconds),
        file_path=path,
        session_id=session_id,
        old_content=old,
        new_content=new,
    )


def make_create(path="src/new.py", content="x\n", session_id="s", offset_seconds=0):
    return CreateChange(
        id=new_id(),
        timestamp=BASE_TIME + timedelta(seconds=offset_seconds),
        file_path=path,
        session_id=session_id,
        content=content,
    )


def make_delete(path="src/old.py", last="gone\n", session_id="s", offset_seconds=0):
    return DeleteChange(
        id=new_id(),
        timestamp=BASE_TIME + timedelta(seconds=offset_seconds),
        file_path=path,
        session_id=session_id,
        last_content=last,
    )


def make_rename(old="src/a.py", new="src/b.py", session_id="s", offset_seconds=0):
    return RenameChange(
        id=new_id(),
        timestamp=BASE_TIME + timedelta(seconds=offset_seconds),
        file_path=old,
        session_id=session_id,
        new_file_path=new,
    )


@pytest.fixture
def temp_project():
    """Create a temporary project directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir).resolve()


@pytest.fixture
def config(temp_project):
    """Create a test configuration."""
    return ProjectConfig(
        project_name="test-project",
        project_root=temp_project,
    )


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def engine(config, notifier):
    """Engine with the default local summarizer."""
    return JournalEngine(config, notifier=notifier)


@pytest.fixture
def engine_factory(config, notifier):
    """Factory for engines with a scripted summarizer.

    Usage:
        def test_example(engine_factory):
            engine = engine_factory(SummaryFailure.of("network_error", "down"))
    """

    def _create(*results):
        summarizer = ScriptedSummarizer(*results) if results else None
        return JournalEngine(config, notifier=notifier, summarizer=summarizer)

    return _create


@pytest.fixture
def network_failure():
    return SummaryFailure.of("network_error", "connection reset")
