"""CodeJournal Server - Main entry point."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional

# MCP imports are optional - only needed when running the server
try:
    from mcp.server import Server  # pragma: no cover
    from mcp.server.stdio import stdio_server  # pragma: no cover
    from mcp.types import Tool, TextContent  # pragma: no cover
    HAS_MCP = True  # pragma: no cover
except ImportError:
    HAS_MCP = False
    Server = None  # type: ignore
    Tool = None  # type: ignore
    TextContent = None  # type: ignore

from .config import ProjectConfig, load_config
from .engine import JournalEngine
from .index import NodeKind
from .logging_config import LOG_FILENAME, setup_logger
from .tools import execute_tool, make_tools

logger = logging.getLogger(__name__)


def custom_tool_defs(config: ProjectConfig) -> dict[str, dict]:
    """Tool definitions for the ``custom_tool_*`` functions of a Python config."""
    defs = {}
    for tool_name, tool_func in config.custom_tools.items():
        doc = tool_func.__doc__ or f"Custom tool: {tool_name}"
        defs[tool_name] = {
            "name": tool_name,
            "description": doc.strip().split("\n")[0],
            "inputSchema": {
                "type": "object",
                "properties": {
                    "params": {
                        "type": "object",
                        "description": "Parameters for the custom tool",
                    }
                },
            },
        }
    return defs


async def call_custom_tool(engine: JournalEngine, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
    try:
        result = engine.config.custom_tools[name](engine, arguments.get("params", arguments))
        if asyncio.iscoroutine(result):
            result = await result
        return result
    except Exception as e:
        logger.exception("Custom tool %s failed", name)
        return {
            "success": False,
            "error": str(e),
            "error_type": "custom_tool_error",
        }


def create_server(config: ProjectConfig, engine: Optional[JournalEngine] = None) -> "Server":
    """Create and configure the MCP server.

    Args:
        config: Project configuration
        engine: Engine to expose (built from ``config`` when omitted)

    Returns:
        Configured MCP Server instance

    Raises:
        ImportError: If MCP package is not installed
    """
    if not HAS_MCP:
        raise ImportError(
            "MCP package not installed. Install with: pip install codejournal[mcp]"
        )

    server = Server("codejournal")
    engine = engine or JournalEngine(config)
    tool_defs = make_tools(engine)
    tool_defs.update(custom_tool_defs(config))

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        """Return list of available tools."""
        return [
            Tool(
                name=t["name"],
                description=t["description"],
                inputSchema=t["inputSchema"],
            )
            for t in tool_defs.values()
        ]

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
        """Handle tool invocation."""
        if name in config.custom_tools:
            result = await call_custom_tool(engine, name, arguments or {})
        else:
            result = await execute_tool(engine, name, arguments or {})
        return [TextContent(type="text", text=json.dumps(result, indent=2, default=str))]

    return server


async def run_server(config: ProjectConfig) -> None:
    """Run the MCP server with stdio transport and the workspace watcher."""
    if not HAS_MCP:
        raise ImportError(
            "MCP package not installed. Install with: pip install codejournal[mcp]"
        )

    engine = JournalEngine(config)  # pragma: no cover
    server = create_server(config, engine)  # pragma: no cover
    watcher = engine.create_watcher()  # pragma: no cover
    watch_task = asyncio.create_task(watcher.run())  # pragma: no cover

    try:  # pragma: no cover
        async with stdio_server() as (read_stream, write_stream):
            await server.run(
                read_stream,
                write_stream,
                server.create_initialization_options(),
            )
    finally:  # pragma: no cover
        watcher.stop()
        await watch_task


# ========== Command line ==========


def render_tree(engine: JournalEngine, mode: str) -> list[str]:
    """Text rendering of a journal view, one node per line."""
    engine.view(mode=mode)
    lines: list[str] = []

    def walk(node_id: Optional[str], depth: int) -> None:
        for node in engine.index.get_children(node_id):
            text = node.label
            if node.kind is not NodeKind.CHANGE and node.description:
                text = f"{text} ({node.description})"
            lines.append("  " * depth + text)
            if node.has_children:
                walk(node.node_id, depth + 1)

    walk(None, 0)
    return lines


def print_outcome(result: dict[str, Any]) -> None:
    status = result["status"]
    if status == "written":
        print(f"Summary of {result['change_count']} changes written to {result['journal_path']}")
    elif status == "empty":
        print("No changes were recorded; nothing written.")
    elif status == "not_recording":
        print("No session was recording.")
    elif status == "failed":
        failure = result["failure"]
        print(f"Summary failed ({failure['kind']}): {failure['message']}", file=sys.stderr)
    else:
        print(f"Could not write the journal: {result['error']}", file=sys.stderr)


async def record(engine: JournalEngine) -> dict[str, Any]:
    """Record until interrupted, then summarize; offer retries on the terminal."""
    watcher = engine.create_watcher()
    watch_task = asyncio.create_task(watcher.run())
    engine.start_session()
    print("Recording... press Ctrl-C to stop.")
    try:
        await watch_task
    except asyncio.CancelledError:
        pass
    finally:
        watcher.stop()
        if not watch_task.done():
            await asyncio.gather(watch_task, return_exceptions=True)

    result = await engine.stop_session()
    print_outcome(result)
    while result.get("can_retry"):
        answer = await asyncio.to_thread(input, "Retry? [y/N] ")
        if answer.strip().lower() not in ("y", "yes"):
            break
        result = await engine.retry_last()
        print_outcome(result)
    return result


def _run_record(engine: JournalEngine) -> int:
    loop = asyncio.new_event_loop()
    main_task = loop.create_task(record(engine))
    try:
        try:
            loop.run_until_complete(main_task)
        except KeyboardInterrupt:
            # First Ctrl-C ends recording; the stop pipeline still runs
            for task in asyncio.all_tasks(loop):
                if task is not main_task:
                    task.cancel()
            result = loop.run_until_complete(main_task)
        else:
            result = main_task.result()
    finally:
        loop.close()
    return 0 if result["status"] in ("written", "empty") else 1


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="CodeJournal - record coding sessions and keep a summarized markdown journal"
    )
    parser.add_argument(
        "--project-root",
        "-p",
        type=Path,
        default=Path.cwd(),
        help="Project root directory (default: current directory)",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=Path,
        help="Path to config file (default: auto-detect in project root)",
    )
    parser.add_argument(
        "--init",
        action="store_true",
        help="Create the journal file with its header if missing",
    )
    parser.add_argument(
        "--show",
        choices=["session", "file"],
        help="Print the journal grouped by session or by file",
    )
    parser.add_argument(
        "--record",
        action="store_true",
        help="Record a session in the terminal until Ctrl-C, then summarize it",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Also log to stderr",
    )

    args = parser.parse_args()
    setup_logger(log_file=LOG_FILENAME, console_output=args.verbose)

    project_root = args.project_root.resolve()

    try:
        config = load_config(project_root, args.config)
    except Exception as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    if args.init:
        engine = JournalEngine(config)
        result = engine.open_journal()
        verb = "Created" if result["created"] else "Journal already exists at"
        print(f"{verb} {result['path']}")
        return

    if args.show:
        engine = JournalEngine(config)
        lines = render_tree(engine, args.show)
        if not lines:
            print(f"No sessions in {engine.store.path}")
        for line in lines:
            print(line)
        return

    if args.record:
        sys.exit(_run_record(JournalEngine(config)))

    # Check for MCP before starting server mode
    if not HAS_MCP:
        print("Error: MCP package not installed.", file=sys.stderr)
        print("Install with: pip install codejournal[mcp]", file=sys.stderr)
        sys.exit(1)

    asyncio.run(run_server(config))


if __name__ == "__main__":  # pragma: no cover
    main()
