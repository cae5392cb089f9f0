"""Tool contract, registry and built-in tools."""

from __future__ import annotations

from typing import Any

from helium.tools.base import Tool, ToolConfig, ToolDefinition, ToolHandler, ToolRegistry
from helium.tools.builtin import register_builtin_tools

_FILE_TOOLS = frozenset({"read", "edit", "write"})


def tool_use_description(name: str, tool_input: dict[str, Any]) -> str:
    """Human-readable description of a tool call, used in audit messages."""
    if name == "bash":
        return str(tool_input.get("command", ""))
    if name in _FILE_TOOLS:
        return f"file at path: {tool_input.get('path', '')}"
    if name == "web_fetch":
        return f"URL: {tool_input.get('url', '')}"
    if name == "ask_user_question":
        questions = tool_input.get("questions") or []
        return "; ".join(str(q.get("question", "")) for q in questions if isinstance(q, dict))
    return name


__all__ = [
    "Tool",
    "ToolConfig",
    "ToolDefinition",
    "ToolHandler",
    "ToolRegistry",
    "register_builtin_tools",
    "tool_use_description",
]
