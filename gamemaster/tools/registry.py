"""
Tool registry and dispatcher.

Holds the fixed set of tools exposed for a session and turns each tool call
from the model into exactly one ToolResponse. Nothing a tool call does can
raise out of dispatch() except cancellation: an unanswered call would leave
the model waiting forever.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import Counter
from typing import Any, Awaitable, Callable

from pydantic import BaseModel, ValidationError

from gamemaster.tools.base import Tool, ToolAdapter, ToolContext, ToolResponse

logger = logging.getLogger(__name__)


def _describe_validation_error(error: ValidationError) -> str:
    problems = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "input"
        problems.append(f"{location}: {item['msg']}")
    return "; ".join(problems)


class ToolRegistry(ToolAdapter):
    """
    Name → Tool mapping with schema-validated dispatch.

    Decode failures are returned to the model as error responses so it can
    fix the call and try again. Those retries are bounded: after
    max_input_retries malformed calls to the same tool within one step, the
    response tells the model to stop calling it.

    Args:
        max_input_retries: Malformed calls per tool tolerated within a step
    """

    def __init__(self, max_input_retries: int = 3):
        self._tools: dict[str, Tool] = {}
        self._max_input_retries = max_input_retries
        self._decode_failures: Counter[str] = Counter()
        self._cleanups: list[Callable[[], Awaitable[None]]] = []

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered")
        self._tools[tool.name] = tool
        logger.debug(f"Registered tool '{tool.name}'")

    def register_function(
        self,
        name: str,
        description: str,
        input_model: type[BaseModel],
        handler: Callable[[ToolContext, Any], Awaitable[ToolResponse]],
    ) -> Tool:
        tool = Tool(name=name, description=description, input_model=input_model, handler=handler)
        self.register(tool)
        return tool

    def add_cleanup(self, callback: Callable[[], Awaitable[None]]) -> None:
        """Run callback on shutdown (e.g. closing an HTTP client a tool uses)."""
        self._cleanups.append(callback)

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def list_tools(self) -> list[dict[str, Any]]:
        return [tool.schema() for tool in self._tools.values()]

    def begin_step(self) -> None:
        self._decode_failures.clear()

    async def shutdown(self) -> None:
        while self._cleanups:
            callback = self._cleanups.pop()
            await callback()

    async def call(
        self,
        tool_name: str,
        arguments: str | dict[str, Any],
        call_id: str = "",
    ) -> ToolResponse:
        return await self.dispatch(tool_name, arguments, call_id)

    async def dispatch(
        self,
        tool_name: str,
        raw_arguments: str | dict[str, Any] | None,
        call_id: str = "",
    ) -> ToolResponse:
        """
        Decode the arguments, invoke the handler and return its response.

        Args:
            tool_name: Name the model asked for
            raw_arguments: JSON string as streamed by the model, or an already
                           decoded dict
            call_id: Correlation id of the tool call

        Returns:
            The handler's response, or an error response describing what
            went wrong. Never raises, except for cancellation.
        """
        tool = self._tools.get(tool_name)
        if tool is None:
            available = ", ".join(self._tools) or "none"
            logger.warning(f"Model called unknown tool '{tool_name}'")
            return ToolResponse.error(
                f"Error: unknown tool '{tool_name}'. Available tools: {available}."
            )

        try:
            arguments = self._decode(raw_arguments)
            tool_input = tool.input_model.model_validate(arguments)
        except (ValueError, ValidationError) as e:
            return self._decode_failure(tool_name, e)

        try:
            response = await tool.handler(ToolContext(call_id=call_id, tool_name=tool_name), tool_input)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # Pass error back to the LLM and let it decide how to handle it
            logger.warning(f"Tool '{tool_name}' failed: {e}", exc_info=True)
            return ToolResponse.error(f"Error: tool '{tool_name}' failed: {e}")

        self._decode_failures.pop(tool_name, None)
        return response

    @staticmethod
    def _decode(raw_arguments: str | dict[str, Any] | None) -> dict[str, Any]:
        if raw_arguments is None:
            return {}
        if isinstance(raw_arguments, dict):
            return raw_arguments
        text = raw_arguments.strip()
        if not text:
            return {}
        try:
            decoded = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValueError(f"arguments are not valid JSON ({e.msg})") from e
        if not isinstance(decoded, dict):
            raise ValueError("arguments must be a JSON object")
        return decoded

    def _decode_failure(self, tool_name: str, error: Exception) -> ToolResponse:
        self._decode_failures[tool_name] += 1
        attempts = self._decode_failures[tool_name]
        if isinstance(error, ValidationError):
            detail = _describe_validation_error(error)
        else:
            detail = str(error)
        logger.info(f"Invalid input for tool '{tool_name}' (attempt {attempts}): {detail}")

        if attempts > self._max_input_retries:
            return ToolResponse.error(
                f"Error: invalid input for '{tool_name}' ({detail}). Too many malformed "
                f"calls; do not call '{tool_name}' again this step and continue the "
                f"narration without it."
            )
        return ToolResponse.error(
            f"Error: invalid input for '{tool_name}': {detail}. Fix the arguments and call "
            f"the tool again."
        )
