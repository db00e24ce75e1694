"""CodeJournal Configuration - Python Example

Copy to your project root as codejournal_config.py.

Convention:
- CONFIG dict for static configuration (same structure as TOML)
- hook_complete(prompt) sends a summary prompt to a model and returns its reply
- hook_summarize(session, changes) replaces summarization entirely
- Functions named custom_tool_* become MCP tools
"""

import os

from codejournal.errors import SummarizerError
from codejournal.summarizer import error_for_status

# =============================================================================
# Static Configuration (same structure as TOML)
# =============================================================================

CONFIG = {
    "project": {
        "name": "my-service",
    },
    "journal": {
        "file": ".codejournal",
        "title": "My Service Journal",
    },
    "capture": {
        "retain_closed_documents": True,
        "record_idle_changes": False,
    },
    "summarizer": {
        "backend": "prompt",
        "max_prompt_chars": 400_000,
    },
    "watch": {
        "poll_interval": 1.0,
        "ignore": ["dist", "build", "*.log"],
    },
}


# =============================================================================
# Hooks
# =============================================================================

async def hook_complete(prompt: str) -> str:
    """Send the prompt to the Anthropic Messages API and return the reply text.

    Needs httpx and ANTHROPIC_API_KEY. Errors are raised as SummarizerError
    so the journal can tell a retryable outage from a bad API key.
    """
    import httpx

    api_key = os.environ.get("ANTHROPIC_API_KEY")
    if not api_key:
        raise SummarizerError("ANTHROPIC_API_KEY is not set", kind="config_error")

    try:
        async with httpx.AsyncClient(timeout=120.0) as client:
            response = await client.post(
                "https://api.anthropic.com/v1/messages",
                headers={
                    "x-api-key": api_key,
                    "anthropic-version": "2023-06-01",
                    "content-type": "application/json",
                },
                json={
                    "model": os.environ.get("CODEJOURNAL_MODEL", "claude-sonnet-4-5"),
                    "max_tokens": 4096,
                    "messages": [{"role": "user", "content": prompt}],
                },
            )
    except httpx.TransportError as e:
        raise SummarizerError(f"Could not reach the model API: {e}", kind="network_error") from e

    if response.status_code != 200:
        raise error_for_status(response.status_code, response.text[:500])

    blocks = response.json().get("content", [])
    return "".join(b.get("text", "") for b in blocks if b.get("type") == "text")


# =============================================================================
# Custom Tools - Exposed as additional MCP tools
# =============================================================================

def custom_tool_files_touched(engine, params) -> dict:
    """List every file in the journal with its total change count."""
    engine.refresh_journal()
    return {
        "success": True,
        "files": [
            {"path": entry.path, "changes": entry.change_count}
            for entry in engine.index.files()
        ],
    }
