"""Session: wires settings, credentials, adapter, tools and agent together.

A Session is the single owner of the network clients; close it with
``await session.aclose()`` or use it as an async context manager.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import httpx

from helium.agent import Agent, AgentState, AskUserQuestion
from helium.auth import CredentialProvider, default_credentials
from helium.compaction import ContextCompactor
from helium.config import Settings
from helium.cost import CostTracker, get_model_pricing
from helium.diff import edit_diff, write_diff
from helium.errors import ConfigError, OldStringNotFoundError
from helium.messages import Message
from helium.observer import AgentObserver, NullObserver
from helium.permissions import CanUseTool, PermissionGate
from helium.providers import ProviderAdapter, create_provider, provider_for_model
from helium.tools import ToolRegistry, register_builtin_tools, tool_use_description

logger = logging.getLogger(__name__)


class Session:
    """One interactive conversation with a single agent.

    The session also acts as the agent's observer: it remembers ``read``
    results (used to reconstruct the "before" side of edit/write audit
    diffs) and forwards every event to the caller's observer.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        credentials: CredentialProvider | None = None,
        observer: AgentObserver | None = None,
        can_use_tool: CanUseTool | None = None,
        ask_user_question: AskUserQuestion | None = None,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.credentials = credentials or default_credentials(self.settings)
        self.memory: dict[str, str] = {}
        self._observer: AgentObserver = observer or NullObserver()
        self._provider_http = http

        # Separate client for web_fetch: it never carries provider credentials
        self._web_http = httpx.AsyncClient(timeout=httpx.Timeout(15.0), headers={"User-Agent": "helium-agent"})

        self.registry = ToolRegistry()
        register_builtin_tools(self.registry, self.settings, self._web_http, summarizer=self._summarize)

        self.cost = CostTracker()
        self.adapter = self._create_adapter(self.settings.provider)
        self.agent = Agent(
            self.adapter,
            self.registry,
            model=self.settings.model,
            gate=PermissionGate(can_use_tool),
            compactor=ContextCompactor.from_settings(self.settings, self._summarize),
            observer=self,
            cost=self.cost,
            ask_user_question=ask_user_question,
            system_prompt=self.settings.system_prompt,
            system_reminder_start=self.settings.system_reminder_start,
            workspace_dir=self.settings.workspace_dir,
            halt_on_denial=self.settings.halt_on_denial,
            max_turns=self.settings.max_turns,
        )
        logger.info("Session started (provider=%s, model=%s)", self.settings.provider, self.agent.model)

    def _create_adapter(self, provider: str) -> ProviderAdapter:
        return create_provider(
            provider,
            self.credentials,
            self.settings,
            tools=self.registry.definitions(),
            http=self._provider_http,
        )

    async def _summarize(self, text: str) -> str:
        return await self.agent.adapter.summarize(text)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def model(self) -> str:
        return self.agent.model

    @property
    def context(self) -> list[Message]:
        return self.agent.context

    async def prompt(self, text: str) -> AgentState:
        """Run one agent turn for ``text`` and return the final state."""
        return await self.agent.run(text)

    async def set_model(self, model: str, provider: str | None = None) -> None:
        """Switch model, and the backend when the model belongs to another provider."""
        if provider is None:
            provider = provider_for_model(model)
            if provider is None:
                raise ConfigError(f"Unknown model: {model}")
        get_model_pricing(model)

        if provider != self.adapter.provider:
            adapter = self._create_adapter(provider)
            self.agent.switch_model(adapter, model)
            await self.adapter.aclose()
            self.adapter = adapter
        else:
            self.agent.switch_model(self.adapter, model)
        logger.info("Switched to %s (%s)", model, provider)

    def describe_tool_use(self, name: str, tool_input: dict[str, Any]) -> str:
        """Audit text for a tool call; edit and write get a unified diff."""
        description = tool_use_description(name, tool_input)
        path = str(tool_input.get("path", ""))

        if name == "edit":
            content = self._known_content(path)
            if content is None:
                return description
            try:
                diff = edit_diff(
                    path,
                    content,
                    tool_input.get("old_string", ""),
                    tool_input.get("new_string", ""),
                    bool(tool_input.get("replace_all", False)),
                )
            except OldStringNotFoundError as e:
                return f"{description}\n{e}"
            return f"{description}\n{diff}" if diff else description

        if name == "write":
            diff = write_diff(path, self._known_content(path), str(tool_input.get("content", "")))
            return f"{description}\n{diff}" if diff else description

        return description

    def _known_content(self, path: str) -> str | None:
        if path in self.memory:
            return self.memory[path]
        target = Path(path).expanduser()
        if not target.is_absolute():
            target = Path(self.settings.workspace_dir) / target
        try:
            return target.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning("Could not read %s for audit diff: %s", target, e)
            return None

    async def aclose(self) -> None:
        await self.adapter.aclose()
        await self._web_http.aclose()

    async def __aenter__(self) -> Session:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # AgentObserver
    # ------------------------------------------------------------------

    def on_message_start(self, role: str) -> None:
        self._observer.on_message_start(role)

    def on_text_delta(self, text: str) -> None:
        self._observer.on_text_delta(text)

    def on_token_usage(self, input_tokens: int, output_tokens: int) -> None:
        self._observer.on_token_usage(input_tokens, output_tokens)

    def on_tool_event(self, name: str, description: str) -> None:
        self._observer.on_tool_event(name, description)

    def on_persist_tool_result(self, key: str, value: str) -> None:
        self.memory[key] = value
        self._observer.on_persist_tool_result(key, value)

    def on_info(self, message: str) -> None:
        self._observer.on_info(message)
