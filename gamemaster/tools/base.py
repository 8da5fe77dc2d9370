"""
Base classes for game tools.

A Tool is a named capability the model may call mid-generation: a
description the model reads to decide when to use it, a Pydantic input
model whose JSON schema is sent to the provider, and an async handler.

ToolAdapter is the uniform interface the agent talks to. The ToolRegistry
is the only adapter today, but the agent doesn't care where tools live.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar

from pydantic import BaseModel

InputT = TypeVar("InputT", bound=BaseModel)


class ToolResponse(BaseModel):
    """
    What a tool hands back to the model.

    Errors are ordinary responses with is_error set: the model reads them
    and decides how to carry on.
    """

    text: str
    is_error: bool = False

    @classmethod
    def error(cls, text: str) -> ToolResponse:
        return cls(text=text, is_error=True)


@dataclass(frozen=True)
class ToolContext:
    """Per-call information passed to a handler."""

    call_id: str
    tool_name: str


ToolHandler = Callable[[ToolContext, Any], Awaitable[ToolResponse]]


@dataclass(frozen=True)
class Tool(Generic[InputT]):
    """A named, schema-typed capability the model may invoke."""

    name: str
    description: str
    input_model: type[InputT]
    handler: Callable[[ToolContext, InputT], Awaitable[ToolResponse]]

    def schema(self) -> dict[str, Any]:
        """Tool schema in the flat (name, description, input_schema) format."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_model.model_json_schema(),
        }


class ToolAdapter(ABC):
    """
    Abstract base class for tool adapters.

    Tool adapters provide a uniform interface for calling tools, whether
    they run in-process or wrap an external service.
    """

    async def initialize(self) -> None:
        """Acquire any resources the tools need. No-op by default."""

    async def shutdown(self) -> None:
        """Release resources acquired by initialize(). No-op by default."""

    @abstractmethod
    async def call(
        self,
        tool_name: str,
        arguments: str | dict[str, Any],
        call_id: str = "",
    ) -> ToolResponse:
        """
        Call a tool with the given arguments.

        Implementations must always return a response, even when the tool
        name is unknown or the arguments are invalid, because the model is
        waiting on a result for every call it makes.
        """

    @abstractmethod
    def list_tools(self) -> list[dict[str, Any]]:
        """
        List all available tools from this adapter.

        Returns:
            List of tool schemas, each with name, description and input_schema.

        Example:
            [
                {
                    "name": "roll_dice",
                    "description": "Roll dice. Always call this...",
                    "input_schema": {
                        "type": "object",
                        "properties": {
                            "notation": {"type": "string", "description": "e.g. 2d6+3"}
                        }
                    }
                }
            ]
        """

    def begin_step(self) -> None:
        """Hook called by the agent at the start of every generation step."""

    async def __aenter__(self):
        """Context manager entry - initialize the adapter."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - shutdown the adapter."""
        await self.shutdown()
        return False
