"""Observer interface the agent loop publishes progress to.

The UI or CLI layer implements AgentObserver; NullObserver is a no-op
base so callers only override what they need.
"""

from __future__ import annotations

from typing import Protocol


class AgentObserver(Protocol):
    def on_message_start(self, role: str) -> None: ...

    def on_text_delta(self, text: str) -> None: ...

    def on_token_usage(self, input_tokens: int, output_tokens: int) -> None: ...

    def on_tool_event(self, name: str, description: str) -> None: ...

    def on_persist_tool_result(self, key: str, value: str) -> None: ...

    def on_info(self, message: str) -> None: ...


class NullObserver:
    def on_message_start(self, role: str) -> None:
        pass

    def on_text_delta(self, text: str) -> None:
        pass

    def on_token_usage(self, input_tokens: int, output_tokens: int) -> None:
        pass

    def on_tool_event(self, name: str, description: str) -> None:
        pass

    def on_persist_tool_result(self, key: str, value: str) -> None:
        pass

    def on_info(self, message: str) -> None:
        pass
