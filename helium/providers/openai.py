"""OpenAI Responses API adapter (direct httpx, SSE streaming).

The Responses API has no message-level content blocks for tools: tool
calls and tool outputs are separate input items linked by ``call_id``.
"""

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
    ToolUseBlock,
    Usage,
)
from helium.providers.base import ProviderAdapter, StreamAccumulator
from helium.providers.catalog import Provider

logger = logging.getLogger(__name__)


def message_to_input_items(message: Message) -> list[dict[str, Any]]:
    """Serialize a canonical message into Responses API input items.

    User messages: function_call_output items first, then one text item.
    Assistant messages: one text item, then function_call items.
    """
    items: list[dict[str, Any]] = []
    texts = [block.text for block in message.content if isinstance(block, TextBlock)]

    if message.role == "user":
        for result in message.tool_results:
            items.append({
                "type": "function_call_output",
                "call_id": result.tool_use_id or "",
                "output": result.text,
            })
        if texts:
            items.append({"role": "user", "content": "\n".join(texts)})
    else:
        if texts:
            items.append({"role": "assistant", "content": "\n".join(texts)})
        for tool_use in message.tool_uses:
            items.append({
                "type": "function_call",
                "call_id": tool_use.id or "",
                "name": tool_use.name,
                "arguments": json.dumps(tool_use.input),
            })
    return items


def _parse_arguments(name: str, arguments: str) -> dict[str, Any] | None:
    try:
        parsed = json.loads(arguments) if arguments else {}
    except json.JSONDecodeError:
        logger.warning("Skipping function call %s with malformed arguments", name)
        return None
    return parsed if isinstance(parsed, dict) else {}


class OpenAIAccumulator(StreamAccumulator):
    """Accumulates output text and function calls keyed by output item id."""

    def __init__(self) -> None:
        self._started = False
        self._text_parts: list[str] = []
        self._calls: dict[str, dict[str, str]] = {}
        self._usage = Usage()

    def feed(self, event: dict[str, Any]) -> list[StreamDelta]:
        deltas: list[StreamDelta] = []
        if not self._started:
            self._started = True
            deltas.append(MessageStart(role="assistant"))
        deltas.append(self._process(event))
        return deltas

    def _process(self, event: dict[str, Any]) -> StreamDelta:
        event_type = event.get("type")

        if event_type == "response.output_text.delta":
            text = event.get("delta", "")
            self._text_parts.append(text)
            return TextUpdate(text=text)

        if event_type == "response.output_item.added":
            item = event.get("item", {})
            if item.get("type") == "function_call" and item.get("id") and item.get("call_id"):
                self._calls[item["id"]] = {
                    "call_id": item["call_id"],
                    "name": item.get("name", ""),
                    "arguments": "",
                }
            return IGNORED

        if event_type == "response.function_call_arguments.delta":
            call = self._calls.get(event.get("item_id", ""))
            if call is not None:
                call["arguments"] += event.get("delta", "")
            return IGNORED

        if event_type == "response.completed":
            usage = (event.get("response") or {}).get("usage") or {}
            if usage:
                self._usage = Usage(
                    input_tokens=usage.get("input_tokens", 0),
                    output_tokens=usage.get("output_tokens", 0),
                )
            return IGNORED

        if event_type in ("response.failed", "error"):
            error = event.get("error") or (event.get("response") or {}).get("error") or {}
            raise ProviderStreamError(
                f"{error.get('code', 'unknown')}: {error.get('message', '')}"
            )

        return IGNORED

    def finish(self) -> MessageResponse:
        content: list[TextBlock | ToolUseBlock] = []
        text = "".join(self._text_parts)
        if text:
            content.append(TextBlock(text=text))
        for call in self._calls.values():
            tool_input = _parse_arguments(call["name"], call["arguments"])
            if tool_input is None:
                continue
            content.append(ToolUseBlock(id=call["call_id"], name=call["name"], input=tool_input))
        return MessageResponse(
            message=Message(role="assistant", content=content),
            usage=self._usage.model_copy(),
        )


class OpenAIProvider(ProviderAdapter):
    provider = Provider.OPENAI
    display_name = "OpenAI"

    def _endpoint(self, model: str, api_key: str, stream: bool) -> tuple[str, dict[str, str]]:
        headers = {
            "authorization": f"Bearer {api_key}",
            "content-type": "application/json",
        }
        return f"{self._settings.openai_base_url}/v1/responses", headers

    def _build_payload(
        self,
        messages: Sequence[Message],
        model: str,
        system_prompt: str | None,
        stream: bool,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": model,
            "input": [item for m in messages for item in message_to_input_items(m)],
        }
        if system_prompt:
            payload["instructions"] = system_prompt
        if self._tools:
            payload["tools"] = [
                {
                    "type": "function",
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.input_schema,
                    "strict": False,
                }
                for tool in self._tools
            ]
        if stream:
            payload["stream"] = True
        return payload

    def _parse_response(self, data: dict[str, Any]) -> MessageResponse:
        content: list[TextBlock | ToolUseBlock] = []
        for item in data.get("output", []):
            if item.get("type") == "message" and item.get("role") == "assistant":
                for part in item.get("content", []):
                    if part.get("type") == "output_text":
                        content.append(TextBlock(text=part.get("text", "")))
            elif item.get("type") == "function_call":
                tool_input = _parse_arguments(item.get("name", ""), item.get("arguments", ""))
                if tool_input is None:
                    continue
                content.append(ToolUseBlock(
                    id=item.get("call_id", ""),
                    name=item.get("name", ""),
                    input=tool_input,
                ))
        usage = data.get("usage") or {}
        return MessageResponse(
            message=Message(role="assistant", content=content),
            usage=Usage(
                input_tokens=usage.get("input_tokens", 0),
                output_tokens=usage.get("output_tokens", 0),
            ),
        )

    def _new_accumulator(self) -> OpenAIAccumulator:
        return OpenAIAccumulator()
