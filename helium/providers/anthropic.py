"""Anthropic Messages API adapter (direct httpx, SSE streaming)."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from typing import Any

from helium.errors import ProviderStreamError
from helium.messages import (
    IGNORED,
    Message,
    MessageResponse,
    MessageStart,
    StreamDelta,
    TextBlock,
    TextUpdate,
    ToolResultBlock,
    ToolUseBlock,
    Usage,
)
from helium.providers.base import ProviderAdapter, StreamAccumulator
from helium.providers.catalog import Provider

logger = logging.getLogger(__name__)

_API_VERSION = "2023-06-01"


def message_to_anthropic(message: Message) -> dict[str, Any]:
    """Serialize a canonical message into an Anthropic message param."""
    content: list[dict[str, Any]] = []
    for block in message.content:
        if isinstance(block, TextBlock):
            content.append({"type": "text", "text": block.text})
        elif isinstance(block, ToolUseBlock):
            content.append({
                "type": "tool_use",
                "id": block.id,
                "name": block.name,
                "input": block.input,
            })
        elif isinstance(block, ToolResultBlock):
            content.append({
                "type": "tool_result",
                "tool_use_id": block.tool_use_id,
                "content": [{"type": "text", "text": c.text} for c in block.content],
                "is_error": block.is_error,
            })
    return {"role": message.role, "content": content}


def anthropic_content_to_blocks(content: list[dict[str, Any]]) -> list[TextBlock | ToolUseBlock]:
    """Parse Anthropic response content blocks. Unknown block types are dropped."""
    blocks: list[TextBlock | ToolUseBlock] = []
    for block in content:
        if block.get("type") == "text":
            blocks.append(TextBlock(text=block.get("text", "")))
        elif block.get("type") == "tool_use":
            blocks.append(ToolUseBlock(
                id=block["id"],
                name=block["name"],
                input=block.get("input") or {},
            ))
    return blocks


class AnthropicAccumulator(StreamAccumulator):
    """Per-block-index accumulation of text and tool input JSON fragments.

    ping, message_stop and future event types map to Ignored; stop_reason
    and output usage arrive in message_delta, input usage in message_start.
    """

    def __init__(self) -> None:
        self._blocks: dict[int, dict[str, Any]] = {}
        self._order: list[int] = []
        self._usage = Usage()

    def feed(self, event: dict[str, Any]) -> list[StreamDelta]:
        event_type = event.get("type")

        if event_type == "message_start":
            message = event.get("message", {})
            usage = message.get("usage", {})
            self._usage.input_tokens = usage.get("input_tokens", 0)
            self._usage.output_tokens = usage.get("output_tokens", 0)
            return [MessageStart(role=message.get("role", "assistant"))]

        if event_type == "content_block_start":
            index = event.get("index", 0)
            block = event.get("content_block", {})
            if block.get("type") == "tool_use":
                self._blocks[index] = {
                    "type": "tool_use",
                    "id": block.get("id", ""),
                    "name": block.get("name", ""),
                    "input_parts": [],
                }
            elif block.get("type") == "text":
                self._blocks[index] = {"type": "text", "text_parts": [block.get("text", "")]}
            else:
                return [IGNORED]
            self._order.append(index)
            return [IGNORED]

        if event_type == "content_block_delta":
            index = event.get("index", 0)
            delta = event.get("delta", {})
            acc = self._blocks.get(index)
            if delta.get("type") == "text_delta":
                text = delta.get("text", "")
                if acc is not None:
                    acc["text_parts"].append(text)
                return [TextUpdate(text=text)]
            if delta.get("type") == "input_json_delta" and acc is not None:
                acc["input_parts"].append(delta.get("partial_json", ""))
            return [IGNORED]

        if event_type == "message_delta":
            usage = event.get("usage", {})
            if "output_tokens" in usage:
                self._usage.output_tokens = usage["output_tokens"]
            if usage.get("input_tokens"):
                self._usage.input_tokens = usage["input_tokens"]
            return [IGNORED]

        if event_type == "error":
            error = event.get("error", {})
            raise ProviderStreamError(
                f"{error.get('type', 'unknown')}: {error.get('message', '')}"
            )

        return [IGNORED]

    def finish(self) -> MessageResponse:
        content: list[TextBlock | ToolUseBlock] = []
        for index in self._order:
            acc = self._blocks[index]
            if acc["type"] == "text":
                text = "".join(acc["text_parts"])
                if text:
                    content.append(TextBlock(text=text))
                continue
            input_json = "".join(acc["input_parts"])
            try:
                tool_input = json.loads(input_json) if input_json else {}
            except json.JSONDecodeError:
                logger.warning("Malformed tool input JSON for %s; using {}", acc["name"])
                tool_input = {}
            content.append(ToolUseBlock(id=acc["id"], name=acc["name"], input=tool_input))
        return MessageResponse(
            message=Message(role="assistant", content=content),
            usage=self._usage.model_copy(),
        )


class AnthropicProvider(ProviderAdapter):
    provider = Provider.ANTHROPIC
    display_name = "Anthropic"

    def _endpoint(self, model: str, api_key: str, stream: bool) -> tuple[str, dict[str, str]]:
        headers = {
            "x-api-key": api_key,
            "anthropic-version": _API_VERSION,
            "content-type": "application/json",
        }
        return f"{self._settings.anthropic_base_url}/v1/messages", headers

    def _build_payload(
        self,
        messages: Sequence[Message],
        model: str,
        system_prompt: str | None,
        stream: bool,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": model,
            "max_tokens": self._settings.max_tokens,
            "messages": [message_to_anthropic(m) for m in messages],
        }
        if system_prompt:
            payload["system"] = system_prompt
        if self._tools:
            payload["tools"] = [
                {
                    "name": tool.name,
                    "description": tool.description,
                    "input_schema": tool.input_schema,
                }
                for tool in self._tools
            ]
        if stream:
            payload["stream"] = True
        return payload

    def _parse_response(self, data: dict[str, Any]) -> MessageResponse:
        usage = data.get("usage") or {}
        return MessageResponse(
            message=Message(role="assistant", content=anthropic_content_to_blocks(data.get("content", []))),
            usage=Usage(
                input_tokens=usage.get("input_tokens", 0),
                output_tokens=usage.get("output_tokens", 0),
            ),
        )

    def _new_accumulator(self) -> AnthropicAccumulator:
        return AnthropicAccumulator()
