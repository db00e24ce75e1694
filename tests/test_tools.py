"""Tests for MCP tool definitions and execution."""

import pytest

from codejournal.tools import execute_tool, make_tools

from conftest import summary_of


EXPECTED_TOOLS = [
    "session_start",
    "session_stop",
    "session_retry",
    "session_status",
    "changes_list",
    "changes_clear",
    "journal_view",
    "journal_locate",
    "journal_refresh",
    "journal_open",
]


def edit(engine, temp_project, name="a.py"):
    path = str(temp_project / name)
    engine.capture.on_open(path, "old\n")
    engine.capture.on_save(path, "old\nnew\n")


class TestMakeTools:
    """Tests for make_tools function."""

    def test_make_tools_returns_all_tools(self, engine):
        tools = make_tools(engine)
        assert sorted(tools) == sorted(EXPECTED_TOOLS)

    def test_tool_definitions_have_schema(self, engine):
        for name, tool in make_tools(engine).items():
            assert tool["name"] == name
            assert tool["description"]
            assert tool["inputSchema"]["type"] == "object"

    def test_locate_requires_change_fields(self, engine):
        schema = make_tools(engine)["journal_locate"]["inputSchema"]
        assert schema["required"] == ["timestamp", "description"]


class TestExecuteTool:
    """Tests for execute_tool."""

    @pytest.mark.asyncio
    async def test_full_cycle(self, engine, temp_project):
        started = await execute_tool(engine, "session_start", {})
        edit(engine, temp_project)
        stopped = await execute_tool(engine, "session_stop", {})
        view = await execute_tool(engine, "journal_view", {"mode": "session"})

        assert started["success"] is True
        assert started["started"] is True
        assert stopped["success"] is True
        assert stopped["status"] == "written"
        assert view["count"] == 1

    @pytest.mark.asyncio
    async def test_second_start_is_not_an_error(self, engine):
        await execute_tool(engine, "session_start", {})
        result = await execute_tool(engine, "session_start", {})
        assert result["success"] is True
        assert result["started"] is False

    @pytest.mark.asyncio
    async def test_stop_failure_reports_retry(self, engine_factory, temp_project, network_failure):
        engine = engine_factory(network_failure, summary_of(("a.py", [("1", "done")])))
        await execute_tool(engine, "session_start", {})
        edit(engine, temp_project)

        stopped = await execute_tool(engine, "session_stop", {})
        retried = await execute_tool(engine, "session_retry", {})
        again = await execute_tool(engine, "session_retry", {})

        assert stopped["success"] is False
        assert stopped["failure"]["kind"] == "network_error"
        assert stopped["can_retry"] is True
        assert retried["success"] is True
        assert again["success"] is False
        assert again["error_type"] == "retry_unavailable"

    @pytest.mark.asyncio
    async def test_changes_list_hides_content_by_default(self, engine, temp_project):
        await execute_tool(engine, "session_start", {})
        edit(engine, temp_project)

        result = await execute_tool(engine, "changes_list", {"current": True})

        assert result["count"] == 1
        assert result["changes"][0]["type"] == "save"
        assert "new_length" in result["changes"][0]

    @pytest.mark.asyncio
    async def test_changes_clear(self, engine, temp_project):
        await execute_tool(engine, "session_start", {})
        edit(engine, temp_project)
        result = await execute_tool(engine, "changes_clear", {})
        assert result == {"success": True, "removed": 1}

    @pytest.mark.asyncio
    async def test_locate_and_open(self, engine, temp_project):
        await execute_tool(engine, "session_start", {})
        edit(engine, temp_project)
        await execute_tool(engine, "session_stop", {})
        view = await execute_tool(engine, "journal_view", {"node_id": "s0/f0"})
        change = view["children"][0]["change"]
        title = view["children"][0]["session_title"]

        located = await execute_tool(engine, "journal_locate", {**change, "session_title": title})
        opened = await execute_tool(engine, "journal_open", change)

        assert located["found"] is True
        assert located["line"] == 6
        assert opened["line"] == 6
        assert opened["created"] is False

    @pytest.mark.asyncio
    async def test_locate_missing_arguments(self, engine):
        result = await execute_tool(engine, "journal_locate", {"timestamp": "1"})
        assert result["success"] is False
        assert result["error_type"] == "invalid_arguments"

    @pytest.mark.asyncio
    async def test_bad_view_mode(self, engine):
        result = await execute_tool(engine, "journal_view", {"mode": "calendar"})
        assert result["success"] is False
        assert result["error_type"] == "invalid_arguments"

    @pytest.mark.asyncio
    async def test_status_and_refresh(self, engine):
        status = await execute_tool(engine, "session_status", {})
        refreshed = await execute_tool(engine, "journal_refresh", {})
        assert status["state"] == "idle"
        assert refreshed == {"success": True, "sessions": 0, "changes": 0}

    @pytest.mark.asyncio
    async def test_unknown_tool(self, engine):
        result = await execute_tool(engine, "nonexistent_tool", {})
        assert result["success"] is False
        assert "Unknown tool" in result["error"]
