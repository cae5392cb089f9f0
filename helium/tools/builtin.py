"""Built-in tools: bash, read, edit, write, web_fetch, ask_user_question.

Relative paths resolve against the workspace directory from ToolConfig.
Handlers raise on unexpected failures; the agent loop turns those into
error results.
"""

from __future__ import annotations

import asyncio
import html as html_module
import logging
import re
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

import httpx

from helium.config import Settings
from helium.tools.base import Tool, ToolConfig, ToolDefinition, ToolRegistry

logger = logging.getLogger(__name__)

Summarizer = Callable[[str], Awaitable[str]]

DEFAULT_BASH_TIMEOUT_MS = 30_000
_REDIRECT_CODES = (301, 302, 303, 307, 308)


def _resolve(path_str: str, config: ToolConfig) -> Path:
    path = Path(path_str).expanduser()
    if not path.is_absolute():
        path = Path(config.workspace_dir) / path
    return path


# ---------------------------------------------------------------------------
# Tool handlers
# ---------------------------------------------------------------------------


async def bash_tool(args: dict[str, Any], config: ToolConfig) -> str:
    """Run ``bash -c <command>`` in the workspace directory."""
    command = args["command"]
    timeout_ms = int(args.get("timeout") or DEFAULT_BASH_TIMEOUT_MS)

    proc = await asyncio.create_subprocess_exec(
        "bash", "-c", command,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=config.workspace_dir,
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout_ms / 1000)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        logger.warning("bash timed out after %dms: %s", timeout_ms, command)
        return f"Error: Command timed out after {timeout_ms}ms"

    stdout_text = stdout.decode("utf-8", errors="replace")
    stderr_text = stderr.decode("utf-8", errors="replace")

    parts = []
    if stdout_text:
        parts.append(stdout_text)
    if stderr_text:
        parts.append(f"stderr: {stderr_text}")
    if proc.returncode != 0:
        parts.append(f"Exit code: {proc.returncode}")

    return "\n".join(parts) if parts else "Command completed successfully with no output"


async def read_tool(args: dict[str, Any], config: ToolConfig) -> str:
    """Read a whole file, or a line slice when offset/limit are given."""
    target = _resolve(args["path"], config)
    offset = args.get("offset")
    limit = args.get("limit")

    content = await asyncio.to_thread(target.read_text, encoding="utf-8")
    if offset is None and limit is None:
        return content

    start = int(offset or 0)
    lines = content.split("\n")
    end = start + int(limit) if limit else None
    return "\n".join(lines[start:end])


async def edit_tool(args: dict[str, Any], config: ToolConfig) -> str:
    """Exact string replacement; old_string must be unique unless replace_all."""
    path = args["path"]
    old_string = args["old_string"]
    new_string = args["new_string"]
    replace_all = bool(args.get("replace_all", False))
    target = _resolve(path, config)

    content = await asyncio.to_thread(target.read_text, encoding="utf-8")
    occurrences = content.count(old_string) if old_string else 0
    if occurrences == 0:
        return "Error: old_string not found in file"
    if not replace_all and occurrences > 1:
        return (
            f"Error: old_string appears {occurrences} times in file. Use replace_all: true "
            "to replace all occurrences, or provide a more unique string."
        )

    new_content = content.replace(old_string, new_string, -1 if replace_all else 1)
    await asyncio.to_thread(target.write_text, new_content, encoding="utf-8")

    replaced = occurrences if replace_all else 1
    return f"Successfully replaced {replaced} occurrence{'s' if replaced > 1 else ''} in {path}"


async def write_tool(args: dict[str, Any], config: ToolConfig) -> str:
    path = args["path"]
    content = args["content"]
    target = _resolve(path, config)

    await asyncio.to_thread(target.parent.mkdir, parents=True, exist_ok=True)
    await asyncio.to_thread(target.write_text, content, encoding="utf-8")
    return f"Successfully wrote {len(content)} characters to {path}"


async def web_fetch_tool(
    args: dict[str, Any],
    config: ToolConfig,
    *,
    _http: httpx.AsyncClient,
    _max_chars: int,
    _summarize: Summarizer | None = None,
) -> str:
    """Fetch a URL and answer the prompt about its content.

    Redirects are reported rather than followed. Non-2xx responses raise.
    """
    url = args["url"]
    prompt = args.get("prompt", "")

    response = await _http.get(url, follow_redirects=False)
    if response.status_code in _REDIRECT_CODES:
        location = response.headers.get("location", "")
        return f"The URL was redirected to {httpx.URL(url).join(location)}"
    response.raise_for_status()

    content_type = response.headers.get("content-type", "")
    if "html" in content_type:
        text = extract_readable(response.text)
    else:
        text = response.text
    if len(text) > _max_chars:
        text = text[:_max_chars] + "\n\n[... truncated]"

    if _summarize is None:
        return f"Content from {url} ({len(text)} chars):\n\n{text}"
    return await _summarize(f"{prompt}\n\n{text}")


async def ask_user_question_tool(args: dict[str, Any], config: ToolConfig) -> str:
    # Only reached when no clarification handler is configured.
    return "Error: ask_user_question should be handled by the agent, not called directly."


# ---------------------------------------------------------------------------
# HTML extraction
# ---------------------------------------------------------------------------


def extract_readable(html: str) -> str:
    """Reduce HTML to readable text using stdlib only."""
    text = re.sub(
        r"<(script|style|noscript|svg|head)\b[^>]*>.*?</\1>",
        "", html, flags=re.DOTALL | re.IGNORECASE,
    )
    text = re.sub(r"<!--.*?-->", "", text, flags=re.DOTALL)
    # Keep block structure as line breaks
    text = re.sub(r"<(br|/p|/div|/li|/h[1-6]|/tr)[^>]*>", "\n", text, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]+>", " ", text)
    text = html_module.unescape(text)
    text = re.sub(r"[ \t\r\f\v]+", " ", text)
    text = re.sub(r"\s*\n\s*", "\n", text)
    return text.strip()


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------

BASH = ToolDefinition(
    name="bash",
    description=(
        "Executes a bash command and returns the output. Use this for running shell "
        "commands, scripts, and system operations."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "command": {"type": "string", "description": "The bash command to execute"},
            "timeout": {"type": "number", "description": "Timeout in milliseconds (default: 30000)"},
        },
        "required": ["command"],
    },
    requires_confirmation=True,
)

READ = ToolDefinition(
    name="read",
    description="Reads a file from the local filesystem.",
    input_schema={
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "The path to the file to read"},
            "offset": {
                "type": "number",
                "description": "The line number to start reading from. Only provide if the file is too large to read at once",
            },
            "limit": {
                "type": "number",
                "description": "The number of lines to read. Only provide if the file is too large to read at once.",
            },
        },
        "required": ["path"],
    },
)

EDIT = ToolDefinition(
    name="edit",
    description=(
        "Performs exact string replacements in a file. The old_string must be unique "
        "in the file unless replace_all is true."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "The path to the file to edit"},
            "old_string": {"type": "string", "description": "The exact text to find and replace"},
            "new_string": {"type": "string", "description": "The text to replace it with"},
            "replace_all": {"type": "boolean", "description": "Replace all occurrences (default: false)"},
        },
        "required": ["path", "old_string", "new_string"],
    },
    requires_confirmation=True,
)

WRITE = ToolDefinition(
    name="write",
    description=(
        "Writes content to a file at the specified path. Creates the file if it doesn't "
        "exist, or overwrites it if it does. Parent directories are created automatically."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "The path to the file to write"},
            "content": {"type": "string", "description": "The content to write to the file"},
        },
        "required": ["path", "content"],
    },
    requires_confirmation=True,
)

WEB_FETCH = ToolDefinition(
    name="web_fetch",
    description=(
        "Fetches content from a URL, reduces HTML to readable text and processes it "
        "with the given prompt using a small, fast model. Returns the model's answer."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "url": {"type": "string", "description": "The URL of the web page to fetch content from"},
            "prompt": {"type": "string", "description": "The prompt to process the fetched content"},
        },
        "required": ["url", "prompt"],
    },
    requires_confirmation=True,
)

_OPTION_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "label": {"type": "string", "description": "Concise display text for this option (1-5 words)."},
        "description": {"type": "string", "description": "What this option means or what happens if chosen."},
    },
    "required": ["label", "description"],
}

ASK_USER_QUESTION = ToolDefinition(
    name="ask_user_question",
    description=(
        "Ask the user questions to gather preferences, clarify ambiguous instructions "
        "or get decisions on implementation choices. Each question has 2-4 options and "
        "the user can always answer with custom text."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "questions": {
                "type": "array",
                "description": "Questions to ask the user (1-4 questions)",
                "minItems": 1,
                "maxItems": 4,
                "items": {
                    "type": "object",
                    "properties": {
                        "question": {"type": "string", "description": "The complete question, ending with a question mark."},
                        "header": {"type": "string", "description": "Very short label shown as a chip (max 12 chars)."},
                        "options": {"type": "array", "items": _OPTION_SCHEMA, "minItems": 2, "maxItems": 4},
                        "multiSelect": {"type": "boolean", "default": False},
                    },
                    "required": ["question", "header", "options"],
                },
            },
        },
        "required": ["questions"],
    },
)


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


def register_builtin_tools(
    registry: ToolRegistry,
    settings: Settings,
    http: httpx.AsyncClient,
    summarizer: Summarizer | None = None,
) -> None:
    """Register the built-in tools with the registry.

    ``http`` is used by web_fetch only and must not carry provider
    credentials. ``summarizer`` answers the web_fetch prompt; without one
    the readable text is returned as is.
    """
    max_chars = settings.web_fetch_max_chars

    async def _web_fetch(args: dict[str, Any], config: ToolConfig) -> str:
        return await web_fetch_tool(args, config, _http=http, _max_chars=max_chars, _summarize=summarizer)

    registry.register(Tool(BASH, bash_tool))
    registry.register(Tool(READ, read_tool))
    registry.register(Tool(EDIT, edit_tool))
    registry.register(Tool(WRITE, write_tool))
    registry.register(Tool(WEB_FETCH, _web_fetch))
    registry.register(Tool(ASK_USER_QUESTION, ask_user_question_tool))
