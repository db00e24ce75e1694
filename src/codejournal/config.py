"""Configuration loading for CodeJournal.

Supports three tiers:
1. Simple config via .toml or .json - most users
2. Python config via .py - hooks such as a summarizer transport
3. Defaults - no file at all
"""

from __future__ import annotations

import importlib.util
import json
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

from .errors import ConfigError

# Python 3.11+ has tomllib in stdlib; fall back to tomli for older versions
try:
    import tomllib  # Python 3.11+
except ImportError:
    try:
        import tomli as tomllib  # Python <3.11
    except ImportError:  # pragma: no cover
        tomllib = None


DEFAULT_IGNORE_PATTERNS = [
    ".git",
    ".hg",
    ".svn",
    "__pycache__",
    "node_modules",
    ".venv",
    "venv",
    ".mypy_cache",
    ".pytest_cache",
    "*.pyc",
    "*.lock",
    "*.tmp",
]


@dataclass
class ProjectConfig:
    """Configuration for a project's CodeJournal."""

    # Project identification
    project_name: str = "unnamed"
    project_root: Path = field(default_factory=Path.cwd)

    # Journal file (relative to project_root unless absolute)
    journal_file: str = ".codejournal"
    journal_title: str = "CodeJournal"
    lock_timeout: float = 10.0

    # Capture
    retain_closed_documents: bool = True
    record_idle_changes: bool = False

    # Summarizer
    summarizer_backend: str = "local"
    max_prompt_chars: int = 400_000
    max_content_lines: int = 10_000

    # Workspace watcher
    poll_interval: float = 1.0
    ignore_patterns: list[str] = field(default_factory=lambda: list(DEFAULT_IGNORE_PATTERNS))
    max_file_bytes: int = 2_000_000

    # Hooks (populated from Python config)
    hooks: dict[str, Callable] = field(default_factory=dict)

    # Custom tools (populated from Python config)
    custom_tools: dict[str, Callable] = field(default_factory=dict)

    def get_journal_path(self) -> Path:
        path = Path(self.journal_file)
        if path.is_absolute():
            return path
        return self.project_root / path


def load_toml_config(path: Path) -> dict[str, Any]:
    """Load configuration from TOML file."""
    if tomllib is None:
        raise ImportError("tomli required for TOML config: pip install tomli")
    with open(path, "rb") as f:
        return tomllib.load(f)


def load_json_config(path: Path) -> dict[str, Any]:
    """Load configuration from JSON file."""
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def load_python_config(path: Path) -> tuple[dict[str, Any], dict[str, Callable], dict[str, Callable]]:
    """Load configuration from Python file.

    Returns:
        Tuple of (config_dict, hooks_dict, custom_tools_dict)

    Convention:
        - CONFIG dict or config dict for static configuration
        - Functions named hook_* become hooks (hook_summarize, hook_complete)
        - Functions named custom_tool_* become MCP tools
    """
    spec = importlib.util.spec_from_file_location("codejournal_config", path)
    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot load Python config from {path}")

    module = importlib.util.module_from_spec(spec)
    sys.modules["codejournal_config"] = module
    spec.loader.exec_module(module)

    config_dict = getattr(module, "CONFIG", None) or getattr(module, "config", None) or {}

    hooks = {
        name[len("hook_"):]: getattr(module, name)
        for name in dir(module)
        if name.startswith("hook_") and callable(getattr(module, name))
    }
    custom_tools = {
        name[len("custom_tool_"):]: getattr(module, name)
        for name in dir(module)
        if name.startswith("custom_tool_") and callable(getattr(module, name))
    }

    return config_dict, hooks, custom_tools


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name, {})
    if not isinstance(value, dict):
        raise ConfigError(f"[{name}] must be a table, got {type(value).__name__}")
    return value


def _number(section: dict[str, Any], key: str, current, kind=float, minimum=0):
    if key not in section:
        return current
    value = section[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{key} must be a number, got {value!r}")
    if value < minimum:
        raise ConfigError(f"{key} must be >= {minimum}, got {value!r}")
    return kind(value)


def _flag(section: dict[str, Any], key: str, current: bool) -> bool:
    if key not in section:
        return current
    value = section[key]
    if not isinstance(value, bool):
        raise ConfigError(f"{key} must be true or false, got {value!r}")
    return value


def dict_to_config(data: dict[str, Any], project_root: Path) -> ProjectConfig:
    """Convert dictionary to ProjectConfig.

    Raises:
        ConfigError: If a known key has the wrong type
    """
    config = ProjectConfig(project_root=project_root)

    proj = _section(data, "project")
    if "name" in proj:
        config.project_name = str(proj["name"])

    journal = _section(data, "journal")
    if "file" in journal:
        config.journal_file = str(journal["file"])
    if "title" in journal:
        title = str(journal["title"]).strip()
        if not title or "\n" in title:
            raise ConfigError(f"journal title must be a non-empty single line, got {title!r}")
        config.journal_title = title
    config.lock_timeout = _number(journal, "lock_timeout", config.lock_timeout)

    capture = _section(data, "capture")
    config.retain_closed_documents = _flag(capture, "retain_closed_documents", config.retain_closed_documents)
    config.record_idle_changes = _flag(capture, "record_idle_changes", config.record_idle_changes)

    summ = _section(data, "summarizer")
    if "backend" in summ:
        config.summarizer_backend = str(summ["backend"]).strip().lower()
    config.max_prompt_chars = _number(summ, "max_prompt_chars", config.max_prompt_chars, kind=int, minimum=1)
    config.max_content_lines = _number(summ, "max_content_lines", config.max_content_lines, kind=int, minimum=1)

    watch = _section(data, "watch")
    config.poll_interval = _number(watch, "poll_interval", config.poll_interval, minimum=0.05)
    config.max_file_bytes = _number(watch, "max_file_bytes", config.max_file_bytes, kind=int, minimum=1)
    if "ignore" in watch:
        ignore = watch["ignore"]
        if not isinstance(ignore, list) or not all(isinstance(p, str) for p in ignore):
            raise ConfigError("watch.ignore must be a list of glob patterns")
        config.ignore_patterns = list(DEFAULT_IGNORE_PATTERNS) + ignore

    return config


def find_config_file(project_root: Path) -> Optional[Path]:
    """Find configuration file in project root.

    Search order:
    1. codejournal_config.py (most flexible)
    2. codejournal_config.toml
    3. codejournal_config.json
    4. .codejournal.toml
    5. .codejournal.json
    """
    candidates = [
        "codejournal_config.py",
        "codejournal_config.toml",
        "codejournal_config.json",
        ".codejournal.toml",
        ".codejournal.json",
    ]

    for name in candidates:
        path = project_root / name
        if path.is_file():
            return path

    return None


def load_config(project_root: Path, config_path: Optional[Path] = None) -> ProjectConfig:
    """Load project configuration.

    Args:
        project_root: Root directory of the project
        config_path: Optional explicit path to config file

    Returns:
        ProjectConfig instance
    """
    project_root = Path(project_root).resolve()
    if config_path is None:
        config_path = find_config_file(project_root)

    if config_path is None:
        # No config file - use defaults
        return ProjectConfig(project_root=project_root)

    config_path = Path(config_path)
    suffix = config_path.suffix.lower()

    if suffix == ".py":
        config_dict, hooks, custom_tools = load_python_config(config_path)
        config = dict_to_config(config_dict, project_root)
        config.hooks = hooks
        config.custom_tools = custom_tools
        return config

    elif suffix == ".toml":
        return dict_to_config(load_toml_config(config_path), project_root)

    elif suffix == ".json":
        return dict_to_config(load_json_config(config_path), project_root)

    else:
        raise ValueError(f"Unsupported config file type: {suffix}")
