"""
Unit tests for ToolRegistry.

Tests cover:
- Registration and listing
- Dispatch to handlers with validated input
- Unknown tools, malformed JSON and schema violations as error responses
- Bounded retries for malformed calls within a step
- Handler failures and cancellation
- Cleanup on shutdown
"""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest
from pydantic import BaseModel

from gamemaster.tools.base import Tool, ToolContext, ToolResponse
from gamemaster.tools.registry import ToolRegistry


class EchoInput(BaseModel):
    text: str
    times: int = 1


class NoInput(BaseModel):
    pass


async def _echo(ctx: ToolContext, query: EchoInput) -> ToolResponse:
    return ToolResponse(text=f"{ctx.call_id}:{query.text * query.times}")


def _registry(max_input_retries: int = 3) -> ToolRegistry:
    registry = ToolRegistry(max_input_retries=max_input_retries)
    registry.register_function("echo", "Echo text back", EchoInput, _echo)
    return registry


class TestRegistration:
    def test_register_and_list(self):
        registry = _registry()

        assert "echo" in registry
        assert len(registry) == 1
        assert registry.names == ["echo"]

        [schema] = registry.list_tools()
        assert schema["name"] == "echo"
        assert schema["description"] == "Echo text back"
        assert schema["input_schema"]["required"] == ["text"]

    def test_duplicate_name_rejected(self):
        registry = _registry()
        with pytest.raises(ValueError, match="already registered"):
            registry.register(Tool(name="echo", description="", input_model=EchoInput, handler=_echo))

    def test_register_function_returns_tool(self):
        registry = ToolRegistry()
        tool = registry.register_function("echo", "Echo", EchoInput, _echo)
        assert isinstance(tool, Tool)
        assert tool.input_model is EchoInput


class TestDispatch:
    @pytest.mark.asyncio
    async def test_json_arguments(self):
        response = await _registry().dispatch("echo", '{"text": "ab", "times": 2}', "call_7")

        assert response.text == "call_7:abab"
        assert response.is_error is False

    @pytest.mark.asyncio
    async def test_dict_arguments(self):
        response = await _registry().call("echo", {"text": "hi"}, call_id="c1")
        assert response.text == "c1:hi"

    @pytest.mark.asyncio
    async def test_unknown_tool_lists_available(self):
        response = await _registry().dispatch("fly", "{}", "c1")

        assert response.is_error is True
        assert "unknown tool 'fly'" in response.text
        assert "echo" in response.text

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", ["{not json", "[1, 2]", '"text"'])
    async def test_malformed_arguments(self, raw):
        response = await _registry().dispatch("echo", raw, "c1")

        assert response.is_error is True
        assert "invalid input for 'echo'" in response.text

    @pytest.mark.asyncio
    async def test_schema_violation_names_field(self):
        response = await _registry().dispatch("echo", json.dumps({"times": "many"}), "c1")

        assert response.is_error is True
        assert "text" in response.text
        assert "times" in response.text

    @pytest.mark.asyncio
    async def test_empty_arguments_validate_as_empty_object(self):
        registry = ToolRegistry()
        registry.register_function("noop", "No input", NoInput, AsyncMock(return_value=ToolResponse(text="ok")))

        assert (await registry.dispatch("noop", "", "c1")).text == "ok"
        assert (await registry.dispatch("noop", None, "c2")).text == "ok"

    @pytest.mark.asyncio
    async def test_handler_exception_becomes_error_response(self):
        registry = ToolRegistry()
        handler = AsyncMock(side_effect=RuntimeError("boom"))
        registry.register_function("explode", "Always fails", EchoInput, handler)

        response = await registry.dispatch("explode", '{"text": "x"}', "c1")

        assert response.is_error is True
        assert "boom" in response.text

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self):
        registry = ToolRegistry()
        handler = AsyncMock(side_effect=asyncio.CancelledError())
        registry.register_function("wait", "Waits", EchoInput, handler)

        with pytest.raises(asyncio.CancelledError):
            await registry.dispatch("wait", '{"text": "x"}', "c1")


class TestInputRetries:
    @pytest.mark.asyncio
    async def test_retry_limit_tells_model_to_stop(self):
        registry = _registry(max_input_retries=2)

        first = await registry.dispatch("echo", "{}", "c1")
        second = await registry.dispatch("echo", "{}", "c2")
        third = await registry.dispatch("echo", "{}", "c3")

        assert "call the tool again" in first.text
        assert "call the tool again" in second.text
        assert "do not call 'echo' again this step" in third.text

    @pytest.mark.asyncio
    async def test_begin_step_resets_counter(self):
        registry = _registry(max_input_retries=1)

        await registry.dispatch("echo", "{}", "c1")
        registry.begin_step()
        response = await registry.dispatch("echo", "{}", "c2")

        assert "call the tool again" in response.text

    @pytest.mark.asyncio
    async def test_successful_call_resets_counter(self):
        registry = _registry(max_input_retries=1)

        await registry.dispatch("echo", "{}", "c1")
        await registry.dispatch("echo", '{"text": "ok"}', "c2")
        response = await registry.dispatch("echo", "{}", "c3")

        assert "call the tool again" in response.text


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_cleanups_run_on_exit(self):
        registry = _registry()
        first, second = AsyncMock(), AsyncMock()
        registry.add_cleanup(first)
        registry.add_cleanup(second)

        async with registry as entered:
            assert entered is registry

        first.assert_awaited_once()
        second.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_cleanups_run_once(self):
        registry = _registry()
        cleanup = AsyncMock()
        registry.add_cleanup(cleanup)

        await registry.shutdown()
        await registry.shutdown()

        cleanup.assert_awaited_once()
