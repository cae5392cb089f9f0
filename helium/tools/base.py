"""Tool contract and the registry that dispatches tool calls.

A tool is a definition (what the model sees) plus an async handler that
takes the decoded input and a ToolConfig and returns plain text.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolDefinition:
    """Model-facing description of a tool, read-only to the core."""

    name: str
    description: str
    input_schema: dict[str, Any] = field(default_factory=dict)
    requires_confirmation: bool = False


@dataclass(frozen=True)
class ToolConfig:
    """Per-call context handed to tool handlers."""

    provider: str
    model: str = ""
    workspace_dir: str = "."


ToolHandler = Callable[[dict[str, Any], ToolConfig], Awaitable[str]]


@dataclass(frozen=True)
class Tool:
    definition: ToolDefinition
    handler: ToolHandler

    @property
    def name(self) -> str:
        return self.definition.name


class ToolRegistry:
    """Registers tools and dispatches tool calls by name.

    ``invoke`` propagates handler exceptions; ``dispatch`` converts them
    into ``(text, is_error)`` for the tool_result block.
    """

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        """Register a tool, replacing any tool with the same name."""
        self._tools[tool.name] = tool
        logger.debug("Registered tool '%s'", tool.name)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def definitions(self) -> list[ToolDefinition]:
        return [tool.definition for tool in self._tools.values()]

    async def invoke(self, name: str, args: dict[str, Any], config: ToolConfig) -> str:
        tool = self._tools.get(name)
        if tool is None:
            raise KeyError(name)
        return await tool.handler(args, config)

    async def dispatch(self, name: str, args: dict[str, Any], config: ToolConfig) -> tuple[str, bool]:
        """Dispatch a tool call and return (result_text, is_error)."""
        if name not in self._tools:
            return f"Unknown tool: {name}", True
        try:
            return await self.invoke(name, args, config), False
        except Exception as e:
            logger.exception("Tool dispatch error for %s", name)
            return f"Tool error: {e}", True
