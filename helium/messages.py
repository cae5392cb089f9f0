"""Canonical message model shared by every provider adapter.

These models define the backend-agnostic data contract: adapters convert
them to and from each wire format, the agent loop appends them to the
context and tools read and produce them.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field

Role = Literal["user", "assistant"]


# --- Content blocks ---


class TextBlock(BaseModel):
    type: Literal["text"] = "text"
    text: str
    # Opaque provider data echoed back verbatim (e.g. Gemini thoughtSignature)
    metadata: dict[str, Any] | None = None


class ToolUseBlock(BaseModel):
    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] | None = None


class ToolResultBlock(BaseModel):
    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    name: str
    content: list[TextBlock] = Field(default_factory=list)
    is_error: bool = False

    @property
    def text(self) -> str:
        return "\n".join(block.text for block in self.content)


ContentBlock = Annotated[
    TextBlock | ToolUseBlock | ToolResultBlock,
    Field(discriminator="type"),
]


class Message(BaseModel):
    """A single message in the conversation context."""

    role: Role
    content: list[ContentBlock] = Field(default_factory=list)

    @classmethod
    def user_text(cls, text: str) -> Message:
        return cls(role="user", content=[TextBlock(text=text)])

    @property
    def tool_uses(self) -> list[ToolUseBlock]:
        return [block for block in self.content if isinstance(block, ToolUseBlock)]

    @property
    def tool_results(self) -> list[ToolResultBlock]:
        return [block for block in self.content if isinstance(block, ToolResultBlock)]

    def first_text(self) -> str | None:
        for block in self.content:
            if isinstance(block, TextBlock):
                return block.text
        return None


class Usage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total(self) -> int:
        return self.input_tokens + self.output_tokens


class MessageResponse(BaseModel):
    """Complete result of one model round trip."""

    message: Message
    usage: Usage = Field(default_factory=Usage)


# --- Stream deltas ---


class MessageStart(BaseModel):
    type: Literal["message_start"] = "message_start"
    role: Role = "assistant"


class TextUpdate(BaseModel):
    type: Literal["text_update"] = "text_update"
    text: str


class Ignored(BaseModel):
    type: Literal["ignored"] = "ignored"


StreamDelta = Annotated[
    MessageStart | TextUpdate | Ignored,
    Field(discriminator="type"),
]

IGNORED = Ignored()


# --- Clarification ---


class QuestionAnswer(BaseModel):
    """One answer collected by the user-clarification dialog."""

    question: str
    answer: str
