"""MCP tool definitions wrapping the journal engine."""

from __future__ import annotations

import logging
from typing import Any

from .engine import JournalEngine
from .errors import JournalError, JournalLockError, RetryUnavailableError, SessionStateError

logger = logging.getLogger(__name__)

_SCOPE_PROPERTIES = {
    "session_title": {
        "type": "string",
        "description": "Only search this session's block (e.g. 'Session 2026-01-06 at 14:03:22 UTC')",
    },
    "file_path": {
        "type": "string",
        "description": "Only search this file's blocks; absolute paths under the project root match relative ones",
    },
}


def make_tools(engine: JournalEngine) -> dict[str, dict]:
    """Create MCP tool definitions for the journal engine.

    Returns:
        Dict mapping tool names to their definitions.
    """

    tools = {}

    # ========== session_start ==========
    tools["session_start"] = {
        "name": "session_start",
        "description": "Start recording file changes. Does nothing if a session is already recording.",
        "inputSchema": {"type": "object", "properties": {}},
    }

    # ========== session_stop ==========
    tools["session_stop"] = {
        "name": "session_stop",
        "description": "Stop recording, summarize the captured changes and add the summary to the top of the journal.",
        "inputSchema": {"type": "object", "properties": {}},
    }

    # ========== session_retry ==========
    tools["session_retry"] = {
        "name": "session_retry",
        "description": "Retry the last failed summary once, with the same session and changes.",
        "inputSchema": {"type": "object", "properties": {}},
    }

    # ========== session_status ==========
    tools["session_status"] = {
        "name": "session_status",
        "description": "Recording state, the active session, pending change count and whether a retry is available.",
        "inputSchema": {"type": "object", "properties": {}},
    }

    # ========== changes_list ==========
    tools["changes_list"] = {
        "name": "changes_list",
        "description": "List captured changes that have not been cleared.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "session_id": {
                    "type": "string",
                    "description": "Only changes of this session",
                },
                "current": {
                    "type": "boolean",
                    "description": "Only changes of the recording session (default: false)",
                },
                "include_content": {
                    "type": "boolean",
                    "description": "Include file contents in the result (default: false)",
                },
            },
        },
    }

    # ========== changes_clear ==========
    tools["changes_clear"] = {
        "name": "changes_clear",
        "description": "Discard captured changes, all of them or one session's.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "session_id": {
                    "type": "string",
                    "description": "Only discard this session's changes",
                },
            },
        },
    }

    # ========== journal_view ==========
    tools["journal_view"] = {
        "name": "journal_view",
        "description": "Browse the journal by session or by file. Without node_id returns the top level.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "mode": {
                    "type": "string",
                    "enum": ["session", "file"],
                    "description": "View mode (default: current mode, initially session)",
                },
                "node_id": {
                    "type": "string",
                    "description": "Node whose children to return (e.g. 's0', 's0/f1', 'f2/s0')",
                },
            },
        },
    }

    # ========== journal_locate ==========
    tools["journal_locate"] = {
        "name": "journal_locate",
        "description": "Find the line number of a change in the journal file.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "timestamp": {
                    "type": "string",
                    "description": "Change timestamp as shown in the journal (e.g. '14:05:10')",
                },
                "description": {
                    "type": "string",
                    "description": "Change description as shown in the journal",
                },
                **_SCOPE_PROPERTIES,
            },
            "required": ["timestamp", "description"],
        },
    }

    # ========== journal_refresh ==========
    tools["journal_refresh"] = {
        "name": "journal_refresh",
        "description": "Re-read the journal file, picking up manual edits.",
        "inputSchema": {"type": "object", "properties": {}},
    }

    # ========== journal_open ==========
    tools["journal_open"] = {
        "name": "journal_open",
        "description": "Return the journal path, creating the file if needed; optionally the line of a change.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "timestamp": {"type": "string", "description": "Change timestamp to position at"},
                "description": {"type": "string", "description": "Change description to position at"},
                **_SCOPE_PROPERTIES,
            },
        },
    }

    return tools


def _strip_content(change: dict[str, Any]) -> dict[str, Any]:
    return {
        k: v for k, v in change.items()
        if k not in ("old_content", "new_content", "content", "last_content")
    }


async def execute_tool(engine: JournalEngine, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
    """Execute a journal tool and return the result.

    Args:
        engine: JournalEngine instance
        name: Tool name
        arguments: Tool arguments

    Returns:
        Result dict with success status and data or error
    """
    try:
        if name == "session_start":
            result = engine.start_session()
            message = "Session started" if result["started"] else "A session is already recording"
            return {"success": True, **result, "message": message}

        elif name == "session_stop":
            result = await engine.stop_session()
            return {
                "success": result["status"] in ("not_recording", "empty", "written"),
                **result,
            }

        elif name == "session_retry":
            result = await engine.retry_last()
            return {"success": result["status"] == "written", **result}

        elif name == "session_status":
            return {"success": True, **engine.session_status()}

        elif name == "changes_list":
            changes = engine.list_changes(
                session_id=arguments.get("session_id"),
                current=arguments.get("current", False),
            )
            if not arguments.get("include_content", False):
                changes = [_strip_content(c) for c in changes]
            return {"success": True, "count": len(changes), "changes": changes}

        elif name == "changes_clear":
            result = engine.clear_changes(session_id=arguments.get("session_id"))
            return {"success": True, **result}

        elif name == "journal_view":
            result = engine.view(mode=arguments.get("mode"), node_id=arguments.get("node_id"))
            return {"success": True, "count": len(result["children"]), **result}

        elif name == "journal_locate":
            result = engine.locate(
                timestamp=arguments["timestamp"],
                description=arguments["description"],
                session_title=arguments.get("session_title"),
                file_path=arguments.get("file_path"),
            )
            return {"success": True, **result}

        elif name == "journal_refresh":
            return {"success": True, **engine.refresh_journal()}

        elif name == "journal_open":
            result = engine.open_journal(
                timestamp=arguments.get("timestamp"),
                description=arguments.get("description"),
                session_title=arguments.get("session_title"),
                file_path=arguments.get("file_path"),
            )
            return {"success": True, **result}

        else:
            return {
                "success": False,
                "error": f"Unknown tool: {name}",
            }

    except RetryUnavailableError as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "retry_unavailable",
            "suggestion": "Retries are offered once per retryable failure. Use session_status to check.",
        }

    except SessionStateError as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "session_state",
        }

    except JournalLockError as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "journal_locked",
            "suggestion": "Another CodeJournal process is writing the journal; try again.",
        }

    except JournalError as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "journal_error",
        }

    except KeyError as e:
        return {
            "success": False,
            "error": f"Missing required argument: {e.args[0]}",
            "error_type": "invalid_arguments",
        }

    except ValueError as e:
        return {
            "success": False,
            "error": str(e),
            "error_type": "invalid_arguments",
        }

    except Exception as e:
        logger.exception("Tool %s failed", name)
        return {
            "success": False,
            "error": str(e),
            "error_type": "unexpected_error",
        }
