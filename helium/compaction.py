"""Context compaction: replace an old transcript prefix with a summary.

Runs after every round trip, before the new assistant message is
appended. The trailing keep-window is carried over verbatim and the
replacement is all-or-nothing: on any summarization failure the caller
keeps its context untouched.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

from helium.config import Settings
from helium.errors import CompactionError
from helium.messages import Message, TextBlock, ToolResultBlock, ToolUseBlock

logger = logging.getLogger(__name__)

Summarizer = Callable[[str], Awaitable[str]]

DEFAULT_THRESHOLD = 80_000
DEFAULT_KEEP_TURNS = 10

_TOOL_INPUT_CHARS = 200
_TOOL_RESULT_CHARS = 500

SUMMARY_OPEN = "<conversation-summary>"
SUMMARY_CLOSE = "</conversation-summary>"

SUMMARY_PROMPT = """\
You are summarizing the earlier part of a conversation between a user and
a coding assistant so the assistant can continue the work without the full
transcript. Write a concise prose summary covering:

- The user's goals and any constraints or preferences they stated
- What has been done so far, including files read, created or modified
- Key decisions and their reasons
- Exact file paths, commands, function names and error messages that
  still matter
- Open questions and the next steps that were planned

Output ONLY the summary.

Conversation:

"""


@dataclass
class CompactionResult:
    messages: list[Message]
    summary: str
    summarized: int  # number of prefix messages replaced


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


class ContextCompactor:
    """Decides when to compact and performs the prefix replacement.

    ``summarize`` is the provider's small-model prompt path; it receives
    the instruction template plus the flattened transcript.
    """

    def __init__(
        self,
        summarize: Summarizer,
        threshold: int = DEFAULT_THRESHOLD,
        keep_turns: int = DEFAULT_KEEP_TURNS,
        enabled: bool = True,
    ) -> None:
        self._summarize = summarize
        self.threshold = threshold
        self.keep_turns = keep_turns
        self.enabled = enabled
        self.compaction_count = 0

    @classmethod
    def from_settings(cls, settings: Settings, summarize: Summarizer) -> ContextCompactor:
        return cls(
            summarize,
            threshold=settings.compaction_threshold,
            keep_turns=settings.compaction_keep_turns,
            enabled=settings.compaction_enabled,
        )

    @property
    def keep_window(self) -> int:
        return self.keep_turns * 2

    def should_compact(self, context: Sequence[Message], context_tokens: int) -> bool:
        if not self.enabled:
            return False
        return context_tokens >= self.threshold and len(context) > self.keep_window

    async def compact(self, context: Sequence[Message]) -> CompactionResult:
        """Summarize everything before the keep-window.

        Caller must check should_compact() first. Raises CompactionError
        when summarization fails or returns nothing.
        """
        if len(context) <= self.keep_window:
            raise ValueError("context fits in the keep window; caller should guard")

        prefix = list(context[:-self.keep_window])
        suffix = list(context[-self.keep_window:])
        start_time = time.monotonic()

        try:
            summary = await self._summarize(SUMMARY_PROMPT + self.serialize_for_summary(prefix))
        except Exception as e:
            logger.error("Compaction failed, context left unchanged: %s", e)
            raise CompactionError(str(e)) from e

        summary = summary.strip()
        if not summary:
            logger.warning("Compaction returned an empty summary, context left unchanged")
            raise CompactionError("empty summary")

        self.compaction_count += 1
        logger.info(
            "Compacted context: %d messages -> 1 summary + %d kept (%d chars, %d ms, compaction #%d)",
            len(prefix),
            len(suffix),
            len(summary),
            int((time.monotonic() - start_time) * 1000),
            self.compaction_count,
        )
        return CompactionResult(
            messages=[self.summary_message(summary), *suffix],
            summary=summary,
            summarized=len(prefix),
        )

    @staticmethod
    def summary_message(summary: str) -> Message:
        return Message.user_text(
            f"{SUMMARY_OPEN}\nSummary of the earlier conversation:\n\n{summary}\n{SUMMARY_CLOSE}"
        )

    @staticmethod
    def is_summary_message(message: Message) -> bool:
        text = message.first_text() or ""
        return message.role == "user" and text.startswith(SUMMARY_OPEN)

    @staticmethod
    def serialize_for_summary(messages: Sequence[Message]) -> str:
        """Flatten messages into a role-labelled transcript.

        Tool inputs are cut to 200 chars and tool results to 500 chars.
        """
        lines = []
        for msg in messages:
            role = "User" if msg.role == "user" else "Assistant"
            parts = []
            for block in msg.content:
                if isinstance(block, TextBlock):
                    parts.append(block.text)
                elif isinstance(block, ToolUseBlock):
                    tool_input = _truncate(json.dumps(block.input), _TOOL_INPUT_CHARS)
                    parts.append(f"[Tool call: {block.name} {tool_input}]")
                elif isinstance(block, ToolResultBlock):
                    label = f"{block.name}, error" if block.is_error else block.name
                    parts.append(f"[Tool result ({label}): {_truncate(block.text, _TOOL_RESULT_CHARS)}]")
            lines.append(f"{role}: {chr(10).join(parts)}")
        return "\n\n".join(lines)
