"""Integration tests for Agent -- the stream / dispatch / repeat loop.

A scripted adapter replays canned assistant messages through a real
StreamHandle and records the context it was called with, so ordering,
permission handling and compaction can be checked without a backend.
"""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from helium.agent import Agent, AgentState, format_answers
from helium.compaction import ContextCompactor
from helium.config import Settings
from helium.cost import CostTracker
from helium.errors import ConfigError
from helium.messages import (
    Message,
    MessageResponse,
    MessageStart,
    QuestionAnswer,
    TextBlock,
    TextUpdate,
    ToolUseBlock,
    Usage,
)
from helium.observer import NullObserver
from helium.permissions import PermissionGate
from helium.providers import Provider
from helium.providers.base import StreamHandle
from helium.tools import Tool, ToolDefinition, ToolRegistry, register_builtin_tools

MODEL = "claude-sonnet-4-5-20250929"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _assistant(text: str = "", tools: list[tuple[str, str, dict]] | None = None,
               input_tokens: int = 100, output_tokens: int = 10) -> MessageResponse:
    """Build an assistant MessageResponse from text and (id, name, input) tuples."""
    content = []
    if text:
        content.append(TextBlock(text=text))
    for tool_id, name, tool_input in tools or []:
        content.append(ToolUseBlock(id=tool_id, name=name, input=tool_input))
    return MessageResponse(
        message=Message(role="assistant", content=content),
        usage=Usage(input_tokens=input_tokens, output_tokens=output_tokens),
    )


class ScriptedAdapter:
    """Replays responses in order; records a snapshot of each request context."""

    provider = Provider.ANTHROPIC
    default_model = MODEL

    def __init__(self, *responses: MessageResponse, error: Exception | None = None):
        self._responses = list(responses)
        self._error = error
        self.calls: list[list[Message]] = []
        self.prompt = AsyncMock(return_value=_assistant("one-shot"))

    def stream(self, messages, system_prompt=None, model=None) -> StreamHandle:
        self.calls.append([m.model_copy(deep=True) for m in messages])
        error = self._error
        response = self._responses.pop(0) if self._responses else None

        async def source():
            if error is not None:
                raise error
            yield MessageStart(role="assistant")
            for block in response.message.content:
                if isinstance(block, TextBlock):
                    yield TextUpdate(text=block.text)

        return StreamHandle(source, lambda: response)


def _tool(name: str, handler, requires_confirmation: bool = False) -> Tool:
    return Tool(
        ToolDefinition(name=name, description=f"{name} tool", requires_confirmation=requires_confirmation),
        handler,
    )


@pytest.fixture
def registry():
    """Registry with echo, bash (recording) and a failing tool."""
    reg = ToolRegistry()
    reg.executed = []

    async def echo(args, config):
        reg.executed.append(("echo", args))
        return f"Echo: {args.get('message', '')}"

    async def bash(args, config):
        reg.executed.append(("bash", args))
        return f"ran {args['command']}"

    async def explode(args, config):
        raise RuntimeError("boom")

    async def read(args, config):
        return "file body"

    reg.register(_tool("echo", echo))
    reg.register(_tool("bash", bash, requires_confirmation=True))
    reg.register(_tool("explode", explode))
    reg.register(_tool("read", read))
    return reg


@pytest.fixture
def observer():
    return MagicMock(spec=NullObserver)


def _agent(adapter, registry, observer=None, **kwargs) -> Agent:
    return Agent(adapter, registry, model=MODEL, observer=observer, **kwargs)


# ---------------------------------------------------------------------------
# Basic turns
# ---------------------------------------------------------------------------


class TestBasicTurn:
    @pytest.mark.asyncio
    async def test_text_only_reply(self, registry, observer):
        adapter = ScriptedAdapter(_assistant("Hello!"))
        agent = _agent(adapter, registry, observer)

        state = await agent.run("hi")

        assert state == AgentState.DONE
        assert [m.role for m in agent.context] == ["user", "assistant"]
        observer.on_message_start.assert_called_once_with("assistant")
        observer.on_text_delta.assert_called_once_with("Hello!")
        observer.on_token_usage.assert_called_once_with(100, 10)

    @pytest.mark.asyncio
    async def test_stream_yields_deltas(self, registry):
        agent = _agent(ScriptedAdapter(_assistant("Hey")), registry)
        deltas = [d async for d in agent.stream("hi")]
        assert deltas == [MessageStart(role="assistant"), TextUpdate(text="Hey")]

    @pytest.mark.asyncio
    async def test_usage_and_cost_recorded(self, registry):
        cost = CostTracker()
        adapter = ScriptedAdapter(
            _assistant(tools=[("t1", "echo", {})], input_tokens=1000, output_tokens=50),
            _assistant("done", input_tokens=1200, output_tokens=20),
        )
        agent = _agent(adapter, registry, cost=cost)

        await agent.run("go")

        assert agent.total_tokens_used == 1000 + 50 + 1200 + 20
        assert agent.context_tokens == 1200
        assert cost.input_tokens == 2200
        assert cost.total_cost > 0

    @pytest.mark.asyncio
    async def test_system_reminder_seeded_once(self, registry):
        adapter = ScriptedAdapter(_assistant("a"), _assistant("b"))
        agent = _agent(adapter, registry, system_reminder_start="<reminder>")

        await agent.run("first")
        await agent.run("second")

        texts = [m.first_text() for m in agent.context if m.role == "user"]
        assert texts == ["<reminder>", "first", "second"]

    @pytest.mark.asyncio
    async def test_system_prompt_and_model_passed(self, registry):
        adapter = ScriptedAdapter(_assistant("ok"))
        adapter.stream = MagicMock(wraps=adapter.stream)
        agent = _agent(adapter, registry, system_prompt="You are helpful.")

        await agent.run("hi")

        args = adapter.stream.call_args.args
        assert args[1] == "You are helpful."
        assert args[2] == MODEL

    def test_unknown_model_fails_fast(self, registry):
        with pytest.raises(ConfigError, match="Unknown model"):
            Agent(ScriptedAdapter(), registry, model="gpt-9000")


# ---------------------------------------------------------------------------
# Tool dispatch
# ---------------------------------------------------------------------------


class TestToolDispatch:
    @pytest.mark.asyncio
    async def test_results_match_tool_use_ids_in_order(self, registry):
        calls = [("t1", "echo", {"message": "a"}), ("t2", "echo", {"message": "b"}), ("t3", "read", {"path": "x"})]
        adapter = ScriptedAdapter(_assistant(tools=calls), _assistant("done"))
        agent = _agent(adapter, registry)

        state = await agent.run("go")

        assert state == AgentState.DONE
        results_msg = agent.context[2]
        assert results_msg.role == "user"
        assert [r.tool_use_id for r in results_msg.tool_results] == ["t1", "t2", "t3"]
        assert [r.text for r in results_msg.tool_results] == ["Echo: a", "Echo: b", "file body"]
        # Second round trip saw the results
        assert len(adapter.calls) == 2
        assert adapter.calls[1][-1] == results_msg

    @pytest.mark.asyncio
    async def test_tool_event_reported(self, registry, observer):
        adapter = ScriptedAdapter(_assistant(tools=[("t1", "bash", {"command": "pwd"})]), _assistant("ok"))
        agent = _agent(adapter, registry, observer)

        await agent.run("where am I")

        observer.on_tool_event.assert_called_once_with("bash", "pwd")

    @pytest.mark.asyncio
    async def test_tool_exception_becomes_error_result(self, registry):
        adapter = ScriptedAdapter(_assistant(tools=[("t1", "explode", {})]), _assistant("recovered"))
        agent = _agent(adapter, registry)

        state = await agent.run("go")

        result = agent.context[2].tool_results[0]
        assert result.is_error is True
        assert result.text == "Tool error: boom"
        assert state == AgentState.DONE

    @pytest.mark.asyncio
    async def test_unknown_tool(self, registry, observer):
        adapter = ScriptedAdapter(_assistant(tools=[("t1", "teleport", {})]), _assistant("ok"))
        agent = _agent(adapter, registry, observer)

        await agent.run("go")

        result = agent.context[2].tool_results[0]
        assert (result.text, result.is_error) == ("Unknown tool: teleport", True)
        observer.on_tool_event.assert_not_called()

    @pytest.mark.asyncio
    async def test_read_result_persisted(self, registry, observer):
        adapter = ScriptedAdapter(_assistant(tools=[("t1", "read", {"path": "src/a.py"})]), _assistant("ok"))
        agent = _agent(adapter, registry, observer)

        await agent.run("read it")

        observer.on_persist_tool_result.assert_called_once_with("src/a.py", "file body")

    @pytest.mark.asyncio
    async def test_partial_read_not_persisted(self, registry, observer):
        adapter = ScriptedAdapter(
            _assistant(tools=[("t1", "read", {"path": "src/a.py", "offset": 3, "limit": 1})]),
            _assistant("ok"),
        )
        agent = _agent(adapter, registry, observer)

        await agent.run("peek")

        observer.on_persist_tool_result.assert_not_called()

    @pytest.mark.asyncio
    async def test_edit_persists_fresh_content(self, registry, observer):
        async def edit(args, config):
            return "Successfully replaced 1 occurrence(s) in src/a.py"

        registry.register(_tool("edit", edit))
        adapter = ScriptedAdapter(
            _assistant(tools=[("t1", "edit", {"path": "src/a.py", "old_string": "a", "new_string": "b"})]),
            _assistant("ok"),
        )
        agent = _agent(adapter, registry, observer)

        await agent.run("edit it")

        observer.on_persist_tool_result.assert_called_once_with("src/a.py", "file body")

    @pytest.mark.asyncio
    async def test_failed_write_persists_nothing(self, registry, observer):
        async def write(args, config):
            raise PermissionError("read-only")

        registry.register(_tool("write", write))
        adapter = ScriptedAdapter(_assistant(tools=[("t1", "write", {"path": "x", "content": "y"})]), _assistant("ok"))
        agent = _agent(adapter, registry, observer)

        await agent.run("write it")

        observer.on_persist_tool_result.assert_not_called()

    @pytest.mark.asyncio
    async def test_max_turns_stops_loop(self, registry):
        adapter = ScriptedAdapter(*[_assistant(tools=[(f"t{i}", "echo", {})]) for i in range(5)])
        agent = _agent(adapter, registry, max_turns=2)

        state = await agent.run("loop forever")

        assert state == AgentState.DONE
        assert len(adapter.calls) == 2


# ---------------------------------------------------------------------------
# Permission gate
# ---------------------------------------------------------------------------


class TestPermissionDenial:
    THREE_CALLS = [
        ("t1", "bash", {"command": "ls"}),
        ("t2", "bash", {"command": "rm -rf build"}),
        ("t3", "bash", {"command": "make"}),
    ]

    @pytest.mark.asyncio
    async def test_denial_fails_closed(self, registry, observer):
        can_use = AsyncMock(side_effect=[True, False])
        adapter = ScriptedAdapter(_assistant(tools=self.THREE_CALLS), _assistant("never sent"))
        agent = _agent(adapter, registry, observer, gate=PermissionGate(can_use))

        state = await agent.run("clean up")

        assert state == AgentState.INTERRUPTED
        assert registry.executed == [("bash", {"command": "ls"})]
        assert can_use.await_count == 2
        assert len(adapter.calls) == 1

        results = agent.context[-1].tool_results
        assert [r.tool_use_id for r in results] == ["t1", "t2", "t3"]
        assert [(r.text, r.is_error) for r in results] == [
            ("ran ls", False),
            ("Tool use is not permitted.", True),
            ("Tool use was interrupted.", True),
        ]
        observer.on_info.assert_called_once_with("Interrupted: bash rm -rf build")

    @pytest.mark.asyncio
    async def test_skip_and_continue_policy(self, registry):
        can_use = AsyncMock(side_effect=[True, False, True])
        adapter = ScriptedAdapter(_assistant(tools=self.THREE_CALLS), _assistant("partial"))
        agent = _agent(adapter, registry, gate=PermissionGate(can_use), halt_on_denial=False)

        state = await agent.run("clean up")

        assert state == AgentState.DONE
        assert [args["command"] for _, args in registry.executed] == ["ls", "make"]
        results = agent.context[2].tool_results
        assert [r.is_error for r in results] == [False, True, False]
        assert len(adapter.calls) == 2

    @pytest.mark.asyncio
    async def test_read_skips_gate(self, registry):
        can_use = AsyncMock(return_value=False)
        adapter = ScriptedAdapter(_assistant(tools=[("t1", "read", {"path": "a"})]), _assistant("ok"))
        agent = _agent(adapter, registry, gate=PermissionGate(can_use))

        assert await agent.run("read") == AgentState.DONE
        can_use.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_end_to_end_list_files(self, tmp_path):
        (tmp_path / "README.md").write_text("hello")
        registry = ToolRegistry()
        async with httpx.AsyncClient() as http:
            register_builtin_tools(registry, Settings(), http)
        can_use = AsyncMock(return_value=True)
        adapter = ScriptedAdapter(
            _assistant("Let me look.", tools=[("toolu_1", "bash", {"command": "ls"})]),
            _assistant("There is one file: README.md"),
        )
        agent = _agent(adapter, registry, gate=PermissionGate(can_use), workspace_dir=str(tmp_path))

        state = await agent.run("list files")

        assert state == AgentState.DONE
        assert [m.role for m in agent.context] == ["user", "assistant", "user", "assistant"]
        batches = [m for m in agent.context if m.tool_results]
        assert len(batches) == 1
        assert "README.md" in batches[0].tool_results[0].text
        can_use.assert_awaited_once_with("bash", {"command": "ls"})


# ---------------------------------------------------------------------------
# Clarification
# ---------------------------------------------------------------------------


class TestAskUserQuestion:
    QUESTIONS = [{"question": "Which DB?", "header": "DB", "options": [
        {"label": "Postgres", "description": "SQL"}, {"label": "Mongo", "description": "Docs"},
    ]}]

    @pytest.mark.asyncio
    async def test_handler_answers_formatted(self, registry):
        handler = AsyncMock(return_value=[QuestionAnswer(question="Which DB?", answer="Postgres")])
        adapter = ScriptedAdapter(
            _assistant(tools=[("q1", "ask_user_question", {"questions": self.QUESTIONS})]),
            _assistant("Going with Postgres"),
        )
        agent = _agent(adapter, registry, ask_user_question=handler)

        await agent.run("set up a db")

        handler.assert_awaited_once_with(self.QUESTIONS)
        result = agent.context[2].tool_results[0]
        assert result.text == "User answered the questions:\n\nQ: Which DB?\nA: Postgres"
        assert result.is_error is False

    @pytest.mark.asyncio
    async def test_cancelled_dialog(self, registry):
        adapter = ScriptedAdapter(
            _assistant(tools=[("q1", "ask_user_question", {"questions": self.QUESTIONS})]),
            _assistant("ok"),
        )
        agent = _agent(adapter, registry, ask_user_question=AsyncMock(return_value=[]))

        await agent.run("set up a db")

        assert agent.context[2].tool_results[0].text == "User cancelled the question dialog."

    def test_format_answers_multiple(self):
        text = format_answers([QuestionAnswer(question="A?", answer="1"), QuestionAnswer(question="B?", answer="2")])
        assert text == "User answered the questions:\n\nQ: A?\nA: 1\n\nQ: B?\nA: 2"


# ---------------------------------------------------------------------------
# Compaction
# ---------------------------------------------------------------------------


class TestCompactionInLoop:
    def _history(self, n: int) -> list[Message]:
        return [
            Message(role="user" if i % 2 == 0 else "assistant", content=[TextBlock(text=f"old {i}")])
            for i in range(n)
        ]

    @pytest.mark.asyncio
    async def test_compacts_before_appending_reply(self, registry, observer):
        summarize = AsyncMock(return_value="They discussed the old stuff.")
        compactor = ContextCompactor(summarize, threshold=50_000, keep_turns=2)
        adapter = ScriptedAdapter(_assistant("fresh reply", input_tokens=60_000))
        agent = _agent(adapter, registry, observer, compactor=compactor)
        agent.context = self._history(10)

        await agent.run("continue")

        # summary + 4 kept messages + the new reply
        assert len(agent.context) == 1 + compactor.keep_window + 1
        assert ContextCompactor.is_summary_message(agent.context[0])
        assert agent.context[-2].first_text() == "continue"
        assert agent.context[-1].first_text() == "fresh reply"
        assert agent.context_tokens == 0
        assert "fresh reply" not in summarize.await_args.args[0]

    @pytest.mark.asyncio
    async def test_below_threshold_untouched(self, registry):
        summarize = AsyncMock(return_value="x")
        compactor = ContextCompactor(summarize, threshold=50_000, keep_turns=2)
        agent = _agent(ScriptedAdapter(_assistant("r", input_tokens=49_999)), registry, compactor=compactor)
        agent.context = self._history(10)

        await agent.run("continue")

        assert len(agent.context) == 12
        summarize.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failure_reported_and_context_kept(self, registry, observer):
        compactor = ContextCompactor(AsyncMock(side_effect=RuntimeError("down")), threshold=10, keep_turns=2)
        agent = _agent(ScriptedAdapter(_assistant("r")), registry, observer, compactor=compactor)
        agent.context = self._history(10)

        state = await agent.run("continue")

        assert state == AgentState.DONE
        assert len(agent.context) == 12
        assert agent.context[0].first_text() == "old 0"
        observer.on_info.assert_called_once_with("Context compaction failed: down")


# ---------------------------------------------------------------------------
# Misc API
# ---------------------------------------------------------------------------


class TestAgentApi:
    @pytest.mark.asyncio
    async def test_prompt_does_not_mutate_context(self, registry):
        adapter = ScriptedAdapter()
        agent = _agent(adapter, registry)
        agent.context = [Message.user_text("earlier")]

        message, text = await agent.prompt("quick question")

        assert text == "one-shot"
        assert len(agent.context) == 1
        sent = adapter.prompt.await_args.args[0]
        assert [m.first_text() for m in sent] == ["earlier", "quick question"]

    @pytest.mark.asyncio
    async def test_concurrent_stream_rejected(self, registry):
        agent = _agent(ScriptedAdapter(_assistant("a"), _assistant("b")), registry)

        first = agent.stream("one")
        await first.__anext__()
        second = agent.stream("two")
        with pytest.raises(RuntimeError, match="already streaming"):
            await second.__anext__()
        await first.aclose()

    @pytest.mark.asyncio
    async def test_aclose_releases_lock(self, registry):
        agent = _agent(ScriptedAdapter(_assistant("a"), _assistant("b")), registry)

        first = agent.stream("one")
        await first.__anext__()
        await first.aclose()

        assert await agent.run("two") == AgentState.DONE

    @pytest.mark.asyncio
    async def test_adapter_error_propagates(self, registry):
        agent = _agent(ScriptedAdapter(error=ConnectionError("network down")), registry)

        with pytest.raises(ConnectionError):
            await agent.run("hello")

        assert agent.state == AgentState.STREAMING
        assert [m.first_text() for m in agent.context] == ["hello"]

    def test_text_response(self):
        msg = Message(role="assistant", content=[ToolUseBlock(id="t", name="x"), TextBlock(text="hi")])
        assert Agent.text_response(msg) == "hi"
