"""Tool permission gate consulted before side-effecting tool calls."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

logger = logging.getLogger(__name__)

CanUseTool = Callable[[str, dict[str, Any]], Awaitable[bool]]

# Classified once per tool, independent of input. ask_user_question is
# absent on purpose: the agent loop answers it without the gate.
REQUIRES_CONFIRMATION: dict[str, bool] = {
    "bash": True,
    "edit": True,
    "write": True,
    "web_fetch": True,
    "read": False,
}


class PermissionGate:
    """Wraps the caller's async ``can_use(name, input)`` predicate.

    The predicate is awaited on every qualifying call; answers are never
    cached, so the same tool may be approved once and denied the next time.
    """

    def __init__(
        self,
        can_use: CanUseTool | None = None,
        requires_confirmation: Mapping[str, bool] | None = None,
    ) -> None:
        self._can_use = can_use
        self._table = dict(REQUIRES_CONFIRMATION if requires_confirmation is None else requires_confirmation)

    def needs_confirmation(self, name: str, default: bool = False) -> bool:
        """Static classification; ``default`` covers tools missing from the table."""
        return self._table.get(name, default)

    async def check(self, name: str, tool_input: dict[str, Any]) -> bool:
        if self._can_use is None:
            return True
        allowed = bool(await self._can_use(name, tool_input))
        logger.info("Permission for %s: %s", name, "granted" if allowed else "denied")
        return allowed
