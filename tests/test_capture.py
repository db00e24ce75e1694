"""Tests for change capture and the content cache."""

import pytest

from codejournal.capture import ChangeCapture, ContentCache
from codejournal.models import (
    ChangeKind,
    CreateChange,
    DeleteChange,
    RenameChange,
    SaveChange,
    Session,
)


class FakeFiles:
    """In-memory file contents for the capture reader."""

    def __init__(self, **files):
        self.files = dict(files)

    def read(self, path):
        if path not in self.files:
            raise FileNotFoundError(path)
        return self.files[path]


@pytest.fixture
def files():
    return FakeFiles()


@pytest.fixture
def holder():
    """Mutable slot for the session the capture sees."""
    return {"session": None}


@pytest.fixture
def capture(files, holder):
    return ChangeCapture(lambda: holder["session"], reader=files.read)


def start(holder):
    holder["session"] = Session.begin()
    return holder["session"]


class TestContentCache:
    """Tests for ContentCache."""

    def test_set_get_pop(self):
        cache = ContentCache()
        cache.set("a", "1")
        assert cache.get("a") == "1"
        assert "a" in cache
        assert cache.pop("a") == "1"
        assert cache.get("a") is None
        assert cache.pop("a") is None

    def test_iteration_and_len(self):
        cache = ContentCache()
        cache.set("a", "1")
        cache.set("b", "2")
        assert len(cache) == 2
        assert sorted(cache) == ["a", "b"]
        cache.clear()
        assert len(cache) == 0


class TestSave:
    """Tests for save handling."""

    def test_save_while_recording_records_old_and_new(self, capture, holder):
        """A save records the cached text as old content."""
        session = start(holder)
        capture.on_open("a.py", "one\n")

        change = capture.on_save("a.py", "one\ntwo\n")

        assert isinstance(change, SaveChange)
        assert change.old_content == "one\n"
        assert change.new_content == "one\ntwo\n"
        assert change.session_id == session.id
        assert capture.cache.get("a.py") == "one\ntwo\n"

    def test_identical_save_records_nothing(self, capture, holder):
        start(holder)
        capture.on_open("a.py", "same")
        assert capture.on_save("a.py", "same") is None
        assert capture.get_changes() == []

    def test_save_of_unseen_file_uses_empty_old_content(self, capture, holder):
        start(holder)
        change = capture.on_save("fresh.py", "x")
        assert change.old_content == ""

    def test_idle_save_updates_cache_only(self, capture, holder):
        """While idle the cache still follows the file, so the next diff is right."""
        capture.on_open("a.py", "v1")
        assert capture.on_save("a.py", "v2") is None
        assert capture.get_changes() == []

        start(holder)
        change = capture.on_save("a.py", "v3")
        assert change.old_content == "v2"

    def test_idle_changes_kept_when_configured(self, files, holder):
        capture = ChangeCapture(lambda: holder["session"], reader=files.read, record_idle_changes=True)
        capture.on_open("a.py", "v1")

        change = capture.on_save("a.py", "v2")

        assert change is not None
        assert change.session_id is None
        assert capture.get_changes() == [change]
        assert capture.get_changes_by_session("anything") == []


class TestCreateDeleteRename:
    """Tests for create, delete and rename handling."""

    def test_create_reads_content(self, capture, holder, files):
        start(holder)
        files.files["new.py"] = "print('hi')\n"

        change = capture.on_create("new.py")

        assert isinstance(change, CreateChange)
        assert change.content == "print('hi')\n"
        assert capture.cache.get("new.py") == "print('hi')\n"

    def test_create_unreadable_records_nothing(self, capture, holder):
        """An unreadable new file yields no change and no cache entry."""
        start(holder)
        assert capture.on_create("missing.py") is None
        assert "missing.py" not in capture.cache
        assert capture.get_changes() == []

    def test_delete_reports_last_cached_content(self, capture, holder):
        start(holder)
        capture.on_open("old.py", "last words")

        change = capture.on_delete("old.py")

        assert isinstance(change, DeleteChange)
        assert change.last_content == "last words"
        assert "old.py" not in capture.cache

    def test_delete_of_unknown_file_has_empty_content(self, capture, holder):
        start(holder)
        assert capture.on_delete("never-seen.py").last_content == ""

    def test_rename_moves_cache_entry(self, capture, holder, files):
        """Rename removes the old key and sets the new one from a live read."""
        start(holder)
        capture.on_open("a.ts", "body")
        files.files["b.ts"] = "body"

        change = capture.on_rename("a.ts", "b.ts")

        assert isinstance(change, RenameChange)
        assert change.file_path == "a.ts"
        assert change.new_file_path == "b.ts"
        assert "a.ts" not in capture.cache
        assert capture.cache.get("b.ts") == "body"

    def test_rename_falls_back_to_old_content(self, capture, holder):
        start(holder)
        capture.on_open("a.ts", "cached body")

        capture.on_rename("a.ts", "unreadable.ts")

        assert capture.cache.get("unreadable.ts") == "cached body"

    def test_idle_rename_still_moves_cache(self, capture, files):
        capture.on_open("a.ts", "body")
        files.files["b.ts"] = "body"

        assert capture.on_rename("a.ts", "b.ts") is None
        assert capture.cache.get("b.ts") == "body"
        assert "a.ts" not in capture.cache

    def test_change_kinds(self, capture, holder, files):
        start(holder)
        files.files["n.py"] = "n"
        capture.on_open("s.py", "1")
        capture.on_save("s.py", "2")
        capture.on_create("n.py")
        capture.on_delete("n.py")
        kinds = [c.kind for c in capture.get_changes()]
        assert kinds == [ChangeKind.SAVE, ChangeKind.CREATE, ChangeKind.DELETE]


class TestCloseRetention:
    """Tests for cache retention across document close."""

    def test_close_keeps_entry_by_default(self, capture):
        capture.on_open("a.py", "text")
        capture.on_close("a.py")
        assert capture.cache.get("a.py") == "text"

    def test_close_drops_entry_when_configured(self, files, holder):
        capture = ChangeCapture(lambda: holder["session"], reader=files.read, retain_closed_documents=False)
        capture.on_open("a.py", "text")
        capture.on_close("a.py")
        assert "a.py" not in capture.cache


class TestQueries:
    """Tests for change queries and purges."""

    def test_changes_by_session(self, capture, holder):
        first = start(holder)
        capture.on_save("a.py", "1")
        first.close()
        second = start(holder)
        capture.on_save("a.py", "2")
        capture.on_save("b.py", "3")

        assert len(capture.get_changes_by_session(first.id)) == 1
        assert len(capture.get_changes_by_session(second.id)) == 2
        assert len(capture.get_current_session_changes()) == 2

    def test_current_session_changes_when_idle(self, capture):
        assert capture.get_current_session_changes() == []

    def test_ended_session_stops_capture(self, capture, holder):
        """Once the session has an end time nothing more is tagged with it."""
        session = start(holder)
        session.close()
        assert capture.on_save("a.py", "x") is None

    def test_clear_session_changes(self, capture, holder):
        first = start(holder)
        capture.on_save("a.py", "1")
        first.close()
        start(holder)
        capture.on_save("a.py", "2")

        assert capture.clear_session_changes(first.id) == 1
        assert len(capture.get_changes()) == 1
        assert capture.clear_changes() == 1
        assert capture.get_changes() == []

    def test_failing_session_provider_treated_as_idle(self, files):
        def broken():
            raise RuntimeError("no lifecycle")

        capture = ChangeCapture(broken, reader=files.read)
        assert capture.on_save("a.py", "x") is None
        assert capture.cache.get("a.py") == "x"
