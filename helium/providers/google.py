"""Google Gemini generateContent adapter (direct httpx, SSE streaming).

Gemini may omit function-call ids. Missing ids are synthesized with a
recognizable prefix so tool results can be linked, and are not sent back
to the backend.
"""

from __future__ import annotations

import logging
import uuid
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

SYNTHETIC_ID_PREFIX = "gemini_call_"


def synthesize_call_id() -> str:
    return f"{SYNTHETIC_ID_PREFIX}{uuid.uuid4().hex[:12]}"


def _wire_id(block_id: str) -> str | None:
    if not block_id or block_id.startswith(SYNTHETIC_ID_PREFIX):
        return None
    return block_id


def message_to_content(message: Message) -> dict[str, Any]:
    """Serialize a canonical message into a Gemini Content object.

    Block metadata is merged into the part unchanged, which is how
    thoughtSignature round-trips.
    """
    parts: list[dict[str, Any]] = []
    for block in message.content:
        if isinstance(block, TextBlock):
            part: dict[str, Any] = {"text": block.text}
        elif isinstance(block, ToolUseBlock):
            call: dict[str, Any] = {"name": block.name, "args": block.input}
            if wire_id := _wire_id(block.id):
                call["id"] = wire_id
            part = {"functionCall": call}
        elif isinstance(block, ToolResultBlock):
            response: dict[str, Any] = {"name": block.name, "response": {"result": block.text}}
            if wire_id := _wire_id(block.tool_use_id):
                response["id"] = wire_id
            parts.append({"functionResponse": response})
            continue
        else:
            continue
        if block.metadata:
            part.update(block.metadata)
        parts.append(part)
    return {"role": "model" if message.role == "assistant" else "user", "parts": parts}


def parts_to_blocks(parts: list[dict[str, Any]]) -> list[TextBlock | ToolUseBlock]:
    """Parse Gemini parts into canonical blocks.

    Consecutive text parts are merged; a part carrying a thoughtSignature
    starts a new text block that keeps the signature as metadata. Thought
    summaries are not part of the answer and are dropped.
    """
    blocks: list[TextBlock | ToolUseBlock] = []
    for part in parts:
        signature = part.get("thoughtSignature")
        metadata = {"thoughtSignature": signature} if signature else None

        text = part.get("text")
        if text and not part.get("thought"):
            last = blocks[-1] if blocks else None
            if metadata is None and isinstance(last, TextBlock):
                last.text += text
            else:
                blocks.append(TextBlock(text=text, metadata=metadata))

        call = part.get("functionCall")
        if call:
            name, args = call.get("name"), call.get("args")
            if not name or args is None:
                continue
            blocks.append(ToolUseBlock(
                id=call.get("id") or synthesize_call_id(),
                name=name,
                input=args,
                metadata=metadata,
            ))
    return blocks


def _usage(metadata: dict[str, Any] | None) -> Usage:
    metadata = metadata or {}
    return Usage(
        input_tokens=metadata.get("promptTokenCount", 0),
        output_tokens=metadata.get("candidatesTokenCount", 0),
    )


def _candidate_parts(chunk: dict[str, Any]) -> list[dict[str, Any]]:
    candidates = chunk.get("candidates") or [{}]
    return (candidates[0].get("content") or {}).get("parts") or []


class GoogleAccumulator(StreamAccumulator):
    def __init__(self) -> None:
        self._started = False
        self._parts: list[dict[str, Any]] = []
        self._usage_metadata: dict[str, Any] = {}

    def feed(self, event: dict[str, Any]) -> list[StreamDelta]:
        if "error" in event:
            error = event["error"]
            raise ProviderStreamError(f"{error.get('status', 'unknown')}: {error.get('message', '')}")

        deltas: list[StreamDelta] = []
        if not self._started:
            self._started = True
            deltas.append(MessageStart(role="assistant"))

        parts = _candidate_parts(event)
        self._parts.extend(parts)
        if event.get("usageMetadata"):
            self._usage_metadata = event["usageMetadata"]

        text = "".join(part.get("text", "") for part in parts if not part.get("thought"))
        deltas.append(TextUpdate(text=text) if text else IGNORED)
        return deltas

    def finish(self) -> MessageResponse:
        return MessageResponse(
            message=Message(role="assistant", content=parts_to_blocks(self._parts)),
            usage=_usage(self._usage_metadata),
        )


class GoogleProvider(ProviderAdapter):
    provider = Provider.GOOGLE
    display_name = "Google"

    def _endpoint(self, model: str, api_key: str, stream: bool) -> tuple[str, dict[str, str]]:
        method = "streamGenerateContent?alt=sse" if stream else "generateContent"
        headers = {
            "x-goog-api-key": api_key,
            "content-type": "application/json",
        }
        return f"{self._settings.google_base_url}/v1beta/models/{model}:{method}", headers

    def _build_payload(
        self,
        messages: Sequence[Message],
        model: str,
        system_prompt: str | None,
        stream: bool,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"contents": [message_to_content(m) for m in messages]}
        if system_prompt:
            payload["systemInstruction"] = {"parts": [{"text": system_prompt}]}
        if self._tools:
            payload["tools"] = [{
                "functionDeclarations": [
                    {
                        "name": tool.name,
                        "description": tool.description,
                        "parameters": tool.input_schema,
                    }
                    for tool in self._tools
                ],
            }]
        return payload

    def _parse_response(self, data: dict[str, Any]) -> MessageResponse:
        return MessageResponse(
            message=Message(role="assistant", content=parts_to_blocks(_candidate_parts(data))),
            usage=_usage(data.get("usageMetadata")),
        )

    def _new_accumulator(self) -> GoogleAccumulator:
        return GoogleAccumulator()
