"""Agent loop: stream a model turn, dispatch tool calls, repeat.

Flow per prompt:
1. Append the user message (seeding the system reminder on first use)
2. Stream one round trip, yielding deltas as they arrive
3. Record usage and cost, compact the context if needed
4. Append the assistant message; stop when it has no tool_use blocks
5. Run the tool calls sequentially, append one user message of results
6. Repeat until done, interrupted or max_turns
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from enum import StrEnum
from typing import Any

from helium.compaction import ContextCompactor
from helium.cost import CostTracker, get_model_pricing
from helium.errors import CompactionError
from helium.messages import (
    Message,
    MessageResponse,
    MessageStart,
    QuestionAnswer,
    StreamDelta,
    TextBlock,
    TextUpdate,
    ToolResultBlock,
    ToolUseBlock,
)
from helium.observer import AgentObserver, NullObserver
from helium.permissions import PermissionGate
from helium.providers.base import ProviderAdapter
from helium.tools import ToolConfig, ToolRegistry, tool_use_description

logger = logging.getLogger(__name__)

AskUserQuestion = Callable[[list[dict[str, Any]]], Awaitable[list[QuestionAnswer]]]

ASK_USER_QUESTION_TOOL = "ask_user_question"
READ_TOOL = "read"
FILE_MUTATING_TOOLS = frozenset({"edit", "write"})

INTERRUPTED_TEXT = "Tool use was interrupted."
DENIED_TEXT = "Tool use is not permitted."
CANCELLED_QUESTIONS_TEXT = "User cancelled the question dialog."


class AgentState(StrEnum):
    AWAITING_INPUT = "awaiting_input"
    STREAMING = "streaming"
    TOOL_DISPATCH = "tool_dispatch"
    DONE = "done"
    INTERRUPTED = "interrupted"


def format_answers(answers: Sequence[QuestionAnswer]) -> str:
    """Render clarification answers as a single tool result text."""
    if not answers:
        return CANCELLED_QUESTIONS_TEXT
    lines = ["User answered the questions:"]
    for qa in answers:
        lines.append("")
        lines.append(f"Q: {qa.question}")
        lines.append(f"A: {qa.answer}")
    return "\n".join(lines)


def _result(tool_use: ToolUseBlock, text: str, is_error: bool = False) -> ToolResultBlock:
    return ToolResultBlock(
        tool_use_id=tool_use.id,
        name=tool_use.name,
        content=[TextBlock(text=text)],
        is_error=is_error,
    )


def _is_whole_file_read(tool_input: dict[str, Any]) -> bool:
    return tool_input.get("offset") is None and tool_input.get("limit") is None


class Agent:
    """Owns the conversation context and drives the tool-use loop.

    Only one stream may run at a time; the context is mutated only by the
    loop (and atomically by compaction between round trips).
    """

    def __init__(
        self,
        adapter: ProviderAdapter,
        registry: ToolRegistry,
        *,
        model: str | None = None,
        gate: PermissionGate | None = None,
        compactor: ContextCompactor | None = None,
        observer: AgentObserver | None = None,
        cost: CostTracker | None = None,
        ask_user_question: AskUserQuestion | None = None,
        system_prompt: str | None = None,
        system_reminder_start: str | None = None,
        workspace_dir: str = ".",
        halt_on_denial: bool = True,
        max_turns: int = 50,
    ) -> None:
        self.adapter = adapter
        self.registry = registry
        self.model = model or adapter.default_model
        # Fail fast on models we cannot account for
        get_model_pricing(self.model)

        self.gate = gate or PermissionGate()
        self.compactor = compactor
        self.observer: AgentObserver = observer or NullObserver()
        self.cost = cost or CostTracker()
        self.ask_user_question = ask_user_question
        self.system_prompt = system_prompt or None
        self.system_reminder_start = system_reminder_start or None
        self.workspace_dir = workspace_dir
        self.halt_on_denial = halt_on_denial
        self.max_turns = max_turns

        self.context: list[Message] = []
        self.state = AgentState.AWAITING_INPUT
        self.total_tokens_used = 0
        self.context_tokens = 0
        self._lock = asyncio.Lock()

    def switch_model(self, adapter: ProviderAdapter, model: str | None = None) -> None:
        """Point the agent at another backend; the context is kept."""
        model = model or adapter.default_model
        get_model_pricing(model)
        self.adapter = adapter
        self.model = model

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def stream(self, user_input: str | None = None) -> AsyncIterator[StreamDelta]:
        """Run one prompt, yielding stream deltas as they arrive.

        Provider and transport errors propagate; the context keeps whatever
        was appended before the failure. The agent stays locked until the
        generator is drained or closed, so callers that stop early must
        ``aclose()`` it. Prefer run() when deltas only go to the observer.
        """
        if self._lock.locked():
            raise RuntimeError("Agent is already streaming")

        async with self._lock:
            if not self.context and self.system_reminder_start:
                self.context.append(Message.user_text(self.system_reminder_start))
            if user_input:
                self.context.append(Message.user_text(user_input))

            for _ in range(self.max_turns):
                self.state = AgentState.STREAMING
                handle = self.adapter.stream(self.context, self.system_prompt, self.model)
                try:
                    async for delta in handle.deltas():
                        yield delta
                    response = await handle.full_message()
                finally:
                    await handle.aclose()

                await self._record_usage(response)
                message = response.message
                self.context.append(message)

                tool_uses = message.tool_uses
                if not tool_uses:
                    self.state = AgentState.DONE
                    return

                self.state = AgentState.TOOL_DISPATCH
                results, interrupted = await self._run_tool_calls(tool_uses)
                self.context.append(Message(role="user", content=results))
                if interrupted:
                    self.state = AgentState.INTERRUPTED
                    return

            logger.warning("Agent loop reached max_turns=%d", self.max_turns)
            self.state = AgentState.DONE

    async def run(self, user_input: str | None = None) -> AgentState:
        """Drain stream(), relaying deltas to the observer."""
        async for delta in self.stream(user_input):
            if isinstance(delta, MessageStart):
                self.observer.on_message_start(delta.role)
            elif isinstance(delta, TextUpdate):
                self.observer.on_text_delta(delta.text)
        return self.state

    async def prompt(self, text: str) -> tuple[Message, str | None]:
        """One-shot non-streaming call over context + text; context unchanged."""
        response = await self.adapter.prompt(
            [*self.context, Message.user_text(text)],
            model=self.model,
            system_prompt=self.system_prompt,
        )
        return response.message, self.text_response(response.message)

    @staticmethod
    def text_response(message: Message) -> str | None:
        return message.first_text()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _record_usage(self, response: MessageResponse) -> None:
        usage = response.usage
        self.total_tokens_used += usage.input_tokens + usage.output_tokens
        self.context_tokens = usage.input_tokens
        self.cost.add(usage, self.model)
        self.observer.on_token_usage(usage.input_tokens, usage.output_tokens)

        # Runs before the new assistant message is appended
        if self.compactor is None or not self.compactor.should_compact(self.context, self.context_tokens):
            return
        try:
            result = await self.compactor.compact(self.context)
        except CompactionError as e:
            self.observer.on_info(f"Context compaction failed: {e}")
            return
        self.context = result.messages
        self.context_tokens = 0
        self.observer.on_info(f"Compacted {result.summarized} earlier messages into a summary")

    async def _run_tool_calls(self, tool_uses: Sequence[ToolUseBlock]) -> tuple[list[ToolResultBlock], bool]:
        """Run tool calls in order. Returns (results, interrupted)."""
        results: list[ToolResultBlock] = []
        interrupted = False
        config = ToolConfig(
            provider=self.adapter.provider.value,
            model=self.model,
            workspace_dir=self.workspace_dir,
        )

        for tool_use in tool_uses:
            name, tool_input = tool_use.name, tool_use.input

            if interrupted:
                results.append(_result(tool_use, INTERRUPTED_TEXT, is_error=True))
                continue

            tool = self.registry.get(name)
            default = tool.definition.requires_confirmation if tool else False
            if self.gate.needs_confirmation(name, default) and not await self.gate.check(name, tool_input):
                self.observer.on_info(f"Interrupted: {name} {tool_use_description(name, tool_input)}")
                results.append(_result(tool_use, DENIED_TEXT, is_error=True))
                if self.halt_on_denial:
                    interrupted = True
                continue

            if name == ASK_USER_QUESTION_TOOL and self.ask_user_question is not None:
                answers = await self.ask_user_question(list(tool_input.get("questions") or []))
                results.append(_result(tool_use, format_answers(answers)))
                continue

            if tool is None:
                logger.warning("Model requested unknown tool: %s", name)
                results.append(_result(tool_use, f"Unknown tool: {name}", is_error=True))
                continue

            self.observer.on_tool_event(name, tool_use_description(name, tool_input))
            text, is_error = await self.registry.dispatch(name, tool_input, config)
            if not is_error and "path" in tool_input:
                if name == READ_TOOL and _is_whole_file_read(tool_input):
                    self.observer.on_persist_tool_result(str(tool_input["path"]), text)
                elif name in FILE_MUTATING_TOOLS:
                    await self._persist_file(str(tool_input["path"]), config)
            results.append(_result(tool_use, text, is_error))

        return results, interrupted

    async def _persist_file(self, path: str, config: ToolConfig) -> None:
        """Re-read a file after edit/write so remembered content stays current."""
        text, is_error = await self.registry.dispatch(READ_TOOL, {"path": path}, config)
        if is_error:
            logger.debug("Could not re-read %s after mutation: %s", path, text)
            return
        self.observer.on_persist_tool_result(path, text)
