"""End-to-end tests for JournalEngine."""

import pytest

from codejournal.errors import RetryUnavailableError
from codejournal.models import SummaryFailure
from codejournal.session import SessionState

from conftest import summary_of


def save(engine, temp_project, name, old, new):
    """Simulate an editor: open a document, then save new text."""
    path = str(temp_project / name)
    engine.capture.on_open(path, old)
    return engine.capture.on_save(path, new)


class TestRecording:
    """Tests for the start/stop pipeline with the local summarizer."""

    @pytest.mark.asyncio
    async def test_start_edit_stop_writes_journal(self, engine, temp_project):
        started = engine.start_session()
        save(engine, temp_project, "src/a.py", "a\n", "a\nb\n")

        result = await engine.stop_session()

        assert started["started"] is True
        assert result["status"] == "written"
        text = engine.store.read_text()
        assert text.startswith("# CodeJournal\n\n## Session ")
        assert f"### {temp_project}/src/a.py" in text
        assert "Edited file (1 -> 2 lines)" in text

    @pytest.mark.asyncio
    async def test_index_refreshed_after_write(self, engine, temp_project):
        engine.start_session()
        save(engine, temp_project, "src/a.py", "a", "b")
        await engine.stop_session()

        view = engine.view(mode="file")

        assert [c["file_path"] for c in view["children"]] == ["src/a.py"]

    @pytest.mark.asyncio
    async def test_second_session_on_top(self, engine, temp_project):
        engine.start_session()
        save(engine, temp_project, "one.py", "", "1")
        first = await engine.stop_session()

        engine.start_session()
        save(engine, temp_project, "two.py", "", "2")
        second = await engine.stop_session()

        titles = [n["label"] for n in engine.view(mode="session")["children"]]
        assert len(titles) == 2
        assert titles[0] == second["session"]["title"]
        assert titles[1] == first["session"]["title"]

    def test_double_start(self, engine):
        first = engine.start_session()
        second = engine.start_session()

        assert second["started"] is False
        assert second["session"]["id"] == first["session"]["id"]

    @pytest.mark.asyncio
    async def test_empty_session(self, engine):
        engine.start_session()
        result = await engine.stop_session()

        assert result["status"] == "empty"
        assert not engine.store.exists()

    @pytest.mark.asyncio
    async def test_stop_when_idle(self, engine):
        assert (await engine.stop_session())["status"] == "not_recording"

    @pytest.mark.asyncio
    async def test_idle_edits_not_journaled(self, engine, temp_project):
        save(engine, temp_project, "a.py", "x", "y")
        engine.start_session()
        assert (await engine.stop_session())["status"] == "empty"

    @pytest.mark.asyncio
    async def test_rename_reported_under_new_path(self, engine, temp_project):
        engine.start_session()
        old = str(temp_project / "src" / "a.ts")
        new = str(temp_project / "src" / "b.ts")
        engine.capture.on_open(old, "body")
        engine.capture.on_rename(old, new)

        await engine.stop_session()

        files = [c["file_path"] for c in engine.view(mode="file")["children"]]
        assert files == ["src/b.ts"]
        assert f"Renamed from {old}" in engine.store.read_text()


class TestRetry:
    """Tests for retry through the engine."""

    @pytest.mark.asyncio
    async def test_retry_after_network_failure(self, engine_factory, temp_project, network_failure):
        engine = engine_factory(network_failure, summary_of(("a.py", [("12:00:00", "Fixed it")])))
        engine.start_session()
        save(engine, temp_project, "a.py", "1", "2")

        failed = await engine.stop_session()
        assert failed["status"] == "failed"
        assert failed["can_retry"] is True
        assert engine.session_status()["can_retry"] is True
        assert not engine.store.exists()

        retried = await engine.retry_last()

        assert retried["status"] == "written"
        assert "Fixed it" in engine.store.read_text()
        assert engine.session_status()["can_retry"] is False
        with pytest.raises(RetryUnavailableError):
            await engine.retry_last()

    @pytest.mark.asyncio
    async def test_no_retry_for_config_error(self, engine_factory, temp_project):
        engine = engine_factory(SummaryFailure.of("config_error", "missing API key"))
        engine.start_session()
        save(engine, temp_project, "a.py", "1", "2")

        result = await engine.stop_session()

        assert result["failure"]["kind"] == "config_error"
        assert result["can_retry"] is False
        with pytest.raises(RetryUnavailableError):
            await engine.retry_last()

    @pytest.mark.asyncio
    async def test_new_session_while_retry_pending(self, engine_factory, temp_project, network_failure):
        """Starting a new session does not discard the failed one's retry."""
        engine = engine_factory(network_failure, summary_of(("a.py", [("12:00:00", "Late summary")])))
        engine.start_session()
        save(engine, temp_project, "a.py", "1", "2")
        await engine.stop_session()

        engine.start_session()
        assert engine.session_status()["state"] == SessionState.RECORDING.value

        assert (await engine.retry_last())["status"] == "written"
        assert engine.lifecycle.is_recording()

    @pytest.mark.asyncio
    async def test_retry_after_newer_session_is_flagged(self, engine_factory, temp_project, network_failure):
        """A late retry still lands on top of the journal and says so."""
        engine = engine_factory(
            network_failure,
            summary_of(("b.py", [("12:00:00", "Newer work")])),
            summary_of(("a.py", [("11:00:00", "Older work")])),
        )
        older = engine.start_session()["session"]
        save(engine, temp_project, "a.py", "1", "2")
        await engine.stop_session()

        engine.start_session()
        save(engine, temp_project, "b.py", "1", "2")
        assert (await engine.stop_session())["status"] == "written"
        assert engine.session_status()["retry_session"]["id"] == older["id"]

        retried = await engine.retry_last()

        assert retried["status"] == "written"
        assert retried["out_of_order"] is True
        text = engine.store.read_text()
        assert text.index("Older work") < text.index("Newer work")
        assert engine.session_status()["retry_session"] is None

    @pytest.mark.asyncio
    async def test_retry_in_order_is_not_flagged(self, engine_factory, temp_project, network_failure):
        engine = engine_factory(network_failure, summary_of(("a.py", [("11:00:00", "Work")])))
        engine.start_session()
        save(engine, temp_project, "a.py", "1", "2")
        await engine.stop_session()

        assert "out_of_order" not in await engine.retry_last()


class TestQueries:
    """Tests for status, change listing and journal access."""

    def test_status_idle(self, engine):
        status = engine.session_status()
        assert status["state"] == "idle"
        assert status["session"] is None
        assert status["pending_changes"] == 0

    def test_list_and_clear_changes(self, engine, temp_project):
        session = engine.start_session()["session"]
        save(engine, temp_project, "a.py", "1", "2")
        save(engine, temp_project, "b.py", "1", "2")

        assert len(engine.list_changes()) == 2
        assert len(engine.list_changes(current=True)) == 2
        assert len(engine.list_changes(session_id=session["id"])) == 2
        assert engine.session_status()["pending_changes"] == 2

        assert engine.clear_changes(session_id=session["id"]) == {"removed": 2}
        assert engine.list_changes() == []

    def test_open_journal_creates_header(self, engine):
        result = engine.open_journal()

        assert result["created"] is True
        assert engine.store.read_text() == "# CodeJournal\n\n"
        assert engine.open_journal()["created"] is False

    @pytest.mark.asyncio
    async def test_open_journal_at_change(self, engine, temp_project):
        engine.start_session()
        save(engine, temp_project, "a.py", "1", "2")
        await engine.stop_session()
        change = engine.view(node_id="s0/f0")["children"][0]["change"]

        result = engine.open_journal(change["timestamp"], change["description"])

        assert result["line"] == 6

    def test_refresh_counts(self, engine):
        engine.store.path.write_text(
            "# CodeJournal\n\n## Session A\n\n### f.py\n- **1** x\n- **2** y\n", encoding="utf-8"
        )
        assert engine.refresh_journal() == {"sessions": 1, "changes": 2}

    def test_view_rejects_unknown_mode(self, engine):
        with pytest.raises(ValueError):
            engine.view(mode="calendar")

    def test_watcher_excludes_journal(self, engine, temp_project):
        engine.open_journal()
        (temp_project / "a.py").write_text("a", encoding="utf-8")

        snapshot = engine.create_watcher().scan()

        assert str(engine.store.path) not in snapshot
        assert str(temp_project / "a.py") in snapshot
