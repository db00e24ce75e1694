"""Summarizers turn a finished session's changes into per-file descriptions.

Every summarizer returns a ``SessionSummary`` on success or a
``SummaryFailure`` describing what went wrong; nothing at this boundary
raises. Transports (the code that actually talks to a language model) are
injected as callables, usually through the ``hook_complete`` or
``hook_summarize`` functions of a Python config file.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import os
from typing import Any, Awaitable, Callable, Optional, Protocol, Union

from .errors import SummarizerError
from .models import (
    Change,
    CreateChange,
    DeleteChange,
    ErrorKind,
    JournalChange,
    JournalFile,
    RenameChange,
    SaveChange,
    Session,
    SessionSummary,
    SummaryFailure,
    SummaryResult,
    clock_time,
    summary_path,
    unhandled_change,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_PROMPT_CHARS = 400_000
DEFAULT_MAX_CONTENT_LINES = 10_000
SAMPLE_LINES = 5

# Fixed text around the per-change sections
PROMPT_OVERHEAD_CHARS = 1_500

CompleteFn = Callable[[str], Union[str, Awaitable[str]]]
SummarizeFn = Callable[[Session, list], Any]


class Summarizer(Protocol):
    """Anything that can summarize a session's changes."""

    async def summarize(self, session: Session, changes: list[Change]) -> SummaryResult:
        ...


def group_changes_by_file(changes: list[Change]) -> dict[str, list[Change]]:
    """Group changes under the path they are reported as, oldest first per file."""
    grouped: dict[str, list[Change]] = {}
    for change in changes:
        grouped.setdefault(summary_path(change), []).append(change)
    for file_changes in grouped.values():
        file_changes.sort(key=lambda c: c.timestamp)
    return grouped


def _line_count(text: str) -> int:
    return len(text.splitlines())


def _sample(text: str) -> str:
    return "\n".join(text.splitlines()[:SAMPLE_LINES])


def _prompt_section(change: Change, max_content_lines: int) -> str:
    header = f"\n### Change at {clock_time(change.timestamp)} ({change.kind.value})\n"

    if isinstance(change, SaveChange):
        body = (
            f"Old content length: {len(change.old_content)} characters\n"
            f"New content length: {len(change.new_content)} characters\n"
        )
        if max(_line_count(change.old_content), _line_count(change.new_content)) <= max_content_lines:
            body += f"Old content:\n```\n{change.old_content}\n```\n"
            body += f"New content:\n```\n{change.new_content}\n```\n"
        else:
            body += "Changes too large to include in full.\n"
            body += f"Old content (first lines):\n{_sample(change.old_content)}\n...\n"
            body += f"New content (first lines):\n{_sample(change.new_content)}\n...\n"
        return header + body
    if isinstance(change, CreateChange):
        return header + f"New file created with {len(change.content)} characters\n"
    if isinstance(change, DeleteChange):
        return header + "File deleted\n"
    if isinstance(change, RenameChange):
        return header + f"File renamed from {change.file_path} to {change.new_file_path}\n"
    unhandled_change(change)


PROMPT_INTRO = """You summarize code changes recorded during one editing session.

For every file below, list its changes with the timestamp shown and a concise
description (one or two sentences) of what changed and why it matters.

Respond with JSON only, matching exactly:
{
  "files": [
    {
      "filePath": "path/to/file",
      "changes": [
        {"timestamp": "HH:MM:SS", "description": "Added retry handling to the upload call"}
      ]
    }
  ]
}

Changes by file:
"""

PROMPT_OUTRO = """
Respond with the JSON object only: no markdown, no commentary.
"""


def build_prompt(changes: list[Change], max_content_lines: int = DEFAULT_MAX_CONTENT_LINES) -> str:
    """Render the summarization prompt for a session's changes."""
    parts = [PROMPT_INTRO]
    for path, file_changes in group_changes_by_file(changes).items():
        parts.append(f"\n## {os.path.basename(path) or path} ({path})\n")
        for change in file_changes:
            parts.append(_prompt_section(change, max_content_lines))
    parts.append(PROMPT_OUTRO)
    return "".join(parts)


def estimate_prompt_size(changes: list[Change], max_content_lines: int = DEFAULT_MAX_CONTENT_LINES) -> int:
    """Approximate prompt length in characters without rendering it."""
    total = PROMPT_OVERHEAD_CHARS
    for change in changes:
        total += 80 + len(change.file_path)
        if isinstance(change, SaveChange):
            if max(_line_count(change.old_content), _line_count(change.new_content)) <= max_content_lines:
                total += len(change.old_content) + len(change.new_content)
            else:
                total += len(_sample(change.old_content)) + len(_sample(change.new_content))
        elif isinstance(change, CreateChange):
            total += 40
        elif isinstance(change, DeleteChange):
            total += 15
        elif isinstance(change, RenameChange):
            total += len(change.new_file_path)
        else:
            unhandled_change(change)
    return total


def extract_json(text: str) -> Any:
    """Decode a JSON object from a model response, tolerating markdown fences.

    Raises:
        json.JSONDecodeError: If no JSON can be decoded
    """
    if not text or not text.strip():
        raise json.JSONDecodeError("Empty response", text or "", 0)

    body = text.strip()
    if "```json" in text:
        start = text.find("```json") + 7
        end = text.find("```", start)
        if end != -1:
            body = text[start:end].strip()
    elif "```" in text:
        start = text.find("```") + 3
        end = text.find("```", start)
        if end != -1:
            body = text[start:end].strip()

    return json.loads(body, strict=False)


def parse_summary(text: str) -> SessionSummary:
    """Parse a model response into a validated ``SessionSummary``.

    Raises:
        ValueError: If the response is not valid JSON of the expected shape
    """
    return SessionSummary.from_dict(extract_json(text))


def error_for_status(status: int, message: str) -> SummarizerError:
    """Classify an HTTP status from a model API into a ``SummarizerError``."""
    if status == 413:
        return SummarizerError(message, ErrorKind.TOKEN_LIMIT.value, False)
    if status in (401, 403, 404):
        return SummarizerError(message, ErrorKind.API_ERROR.value, False)
    if status in (408, 409, 429) or status >= 500:
        return SummarizerError(message, ErrorKind.API_ERROR.value, True)
    if status == 400 and ("token" in message.lower() or "context" in message.lower()):
        return SummarizerError(message, ErrorKind.TOKEN_LIMIT.value, False)
    return SummarizerError(message, ErrorKind.API_ERROR.value, False)


def classify_exception(exc: BaseException) -> SummaryFailure:
    """Map an exception raised by a transport onto the failure taxonomy."""
    if isinstance(exc, SummarizerError):
        return SummaryFailure.of(exc.kind, str(exc), exc.retryable)
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return SummaryFailure.of(ErrorKind.NETWORK_ERROR, str(exc) or type(exc).__name__)
    if isinstance(exc, ValueError):
        return SummaryFailure.of(ErrorKind.API_ERROR, f"Malformed summary response: {exc}")
    if isinstance(exc, OSError):
        return SummaryFailure.of(ErrorKind.NETWORK_ERROR, str(exc) or type(exc).__name__)
    return SummaryFailure.of(ErrorKind.UNKNOWN_ERROR, str(exc) or type(exc).__name__)


async def _call(fn: Callable, *args: Any) -> Any:
    """Await coroutine functions; run plain callables off the event loop."""
    if inspect.iscoroutinefunction(fn):
        return await fn(*args)
    result = await asyncio.to_thread(fn, *args)
    if asyncio.iscoroutine(result):
        result = await result
    return result


class LocalSummarizer:
    """Offline summarizer that describes each change mechanically."""

    async def summarize(self, session: Session, changes: list[Change]) -> SummaryResult:
        files = []
        for path, file_changes in group_changes_by_file(changes).items():
            files.append(JournalFile(
                file_path=path,
                changes=[
                    JournalChange(timestamp=clock_time(c.timestamp), description=self.describe(c))
                    for c in file_changes
                ],
            ))
        return SessionSummary(files=files)

    @staticmethod
    def describe(change: Change) -> str:
        if isinstance(change, SaveChange):
            before = _line_count(change.old_content)
            after = _line_count(change.new_content)
            return f"Edited file ({before} -> {after} lines)"
        if isinstance(change, CreateChange):
            return f"Created file ({_line_count(change.content)} lines)"
        if isinstance(change, DeleteChange):
            return f"Deleted file ({_line_count(change.last_content)} lines)"
        if isinstance(change, RenameChange):
            return f"Renamed from {change.file_path}"
        unhandled_change(change)


class PromptSummarizer:
    """Builds the prompt, hands it to an injected ``complete`` callable, parses the reply.

    Args:
        complete: Takes the prompt text, returns the model's raw reply (sync or async)
        max_prompt_chars: Estimated prompt size above which the call is not made
        max_content_lines: Saves longer than this are sampled in the prompt
    """

    def __init__(
        self,
        complete: CompleteFn,
        max_prompt_chars: int = DEFAULT_MAX_PROMPT_CHARS,
        max_content_lines: int = DEFAULT_MAX_CONTENT_LINES,
    ):
        self.complete = complete
        self.max_prompt_chars = max_prompt_chars
        self.max_content_lines = max_content_lines

    async def summarize(self, session: Session, changes: list[Change]) -> SummaryResult:
        estimate = estimate_prompt_size(changes, self.max_content_lines)
        if estimate > self.max_prompt_chars:
            return SummaryFailure.of(
                ErrorKind.TOKEN_LIMIT,
                f"Session {session.id} is too large to summarize (~{estimate} characters, limit {self.max_prompt_chars})",
            )

        prompt = build_prompt(changes, self.max_content_lines)
        logger.debug("Summarizing session %s: %d changes, %d prompt characters", session.id, len(changes), len(prompt))
        try:
            reply = await _call(self.complete, prompt)
            if not isinstance(reply, str):
                raise ValueError(f"expected text reply, got {type(reply).__name__}")
            return parse_summary(reply)
        except Exception as e:
            logger.warning("Summarization of session %s failed: %s", session.id, e)
            return classify_exception(e)


class HookSummarizer:
    """Delegates to a ``hook_summarize(session, changes)`` function.

    The hook may return a ``SessionSummary``, a ``SummaryFailure``, a
    ``{"files": [...]}`` dict, or JSON text.
    """

    def __init__(self, hook: SummarizeFn):
        self.hook = hook

    async def summarize(self, session: Session, changes: list[Change]) -> SummaryResult:
        try:
            result = await _call(self.hook, session, list(changes))
            if isinstance(result, SummaryFailure):
                return result
            if isinstance(result, SessionSummary):
                result.validate()
                return result
            if isinstance(result, str):
                return parse_summary(result)
            return SessionSummary.from_dict(result)
        except Exception as e:
            logger.warning("Summarize hook failed for session %s: %s", session.id, e)
            return classify_exception(e)


class UnconfiguredSummarizer:
    """Stands in when the configured backend cannot be used."""

    def __init__(self, message: str):
        self.message = message

    async def summarize(self, session: Session, changes: list[Change]) -> SummaryResult:
        return SummaryFailure.of(ErrorKind.CONFIG_ERROR, self.message)


def build_summarizer(config: Any) -> Summarizer:
    """Choose a summarizer for a ``ProjectConfig``.

    ``backend = "local"`` uses ``LocalSummarizer``; ``"prompt"`` needs a
    ``hook_complete`` config hook; ``"hook"`` needs ``hook_summarize``.
    A ``hook_summarize`` hook wins whatever the backend says.
    """
    hooks = config.hooks
    if "summarize" in hooks:
        return HookSummarizer(hooks["summarize"])

    backend = config.summarizer_backend
    if backend == "local":
        return LocalSummarizer()
    if backend == "prompt":
        if "complete" not in hooks:
            return UnconfiguredSummarizer(
                "Summarizer backend 'prompt' needs a hook_complete(prompt) function in codejournal_config.py"
            )
        return PromptSummarizer(
            hooks["complete"],
            max_prompt_chars=config.max_prompt_chars,
            max_content_lines=config.max_content_lines,
        )
    if backend == "hook":
        return UnconfiguredSummarizer(
            "Summarizer backend 'hook' needs a hook_summarize(session, changes) function in codejournal_config.py"
        )
    return UnconfiguredSummarizer(f"Unknown summarizer backend: {backend!r}")
