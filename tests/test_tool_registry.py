"""Unit tests for helium/tools/base.py -- ToolRegistry registration,
invocation and (text, is_error) dispatch."""

import pytest

from helium.tools import Tool, ToolConfig, ToolDefinition, ToolRegistry

CONFIG = ToolConfig(provider="anthropic", model="claude-sonnet-4-5-20250929")


async def _upper(args, config):
    return args["text"].upper()


async def _fail(args, config):
    raise ValueError("bad input")


async def _echo_config(args, config):
    return f"{config.provider}/{config.model}/{config.workspace_dir}"


@pytest.fixture
def registry():
    reg = ToolRegistry()
    reg.register(Tool(ToolDefinition("upper", "Uppercase text", {"type": "object"}), _upper))
    reg.register(Tool(ToolDefinition("fail", "Always fails"), _fail))
    reg.register(Tool(ToolDefinition("config", "Echo config"), _echo_config))
    return reg


class TestToolRegistry:
    def test_register_and_lookup(self, registry):
        assert "upper" in registry
        assert "missing" not in registry
        assert registry.get("upper").definition.description == "Uppercase text"
        assert registry.get("missing") is None

    def test_definitions_in_registration_order(self, registry):
        assert [d.name for d in registry.definitions()] == ["upper", "fail", "config"]

    def test_register_replaces(self, registry):
        registry.register(Tool(ToolDefinition("upper", "v2"), _upper))
        assert registry.get("upper").definition.description == "v2"
        assert len(registry.definitions()) == 3

    @pytest.mark.asyncio
    async def test_invoke(self, registry):
        assert await registry.invoke("upper", {"text": "abc"}, CONFIG) == "ABC"

    @pytest.mark.asyncio
    async def test_invoke_passes_config(self, registry):
        assert await registry.invoke("config", {}, CONFIG) == "anthropic/claude-sonnet-4-5-20250929/."

    @pytest.mark.asyncio
    async def test_invoke_propagates(self, registry):
        with pytest.raises(ValueError, match="bad input"):
            await registry.invoke("fail", {}, CONFIG)
        with pytest.raises(KeyError):
            await registry.invoke("missing", {}, CONFIG)

    @pytest.mark.asyncio
    async def test_dispatch_success(self, registry):
        assert await registry.dispatch("upper", {"text": "x"}, CONFIG) == ("X", False)

    @pytest.mark.asyncio
    async def test_dispatch_error(self, registry):
        assert await registry.dispatch("fail", {}, CONFIG) == ("Tool error: bad input", True)

    @pytest.mark.asyncio
    async def test_dispatch_unknown(self, registry):
        assert await registry.dispatch("missing", {}, CONFIG) == ("Unknown tool: missing", True)
