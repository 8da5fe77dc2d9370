"""
Conversation data models for the LLM layer.

A Message is an immutable role plus an ordered tuple of content parts. The
agent produces Messages one Step at a time; the game loop is the only
component that stores them (in History).
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Iterator, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field


class LLMError(Exception):
    """Raised when a model generation fails (transport, provider or inference error)."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message)
        self.cause = cause


class StepError(LLMError):
    """
    Raised when a Step cannot complete: an event handler failed, or the
    event stream broke its ordering contract.
    """


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class TextPart(_Frozen):
    kind: Literal["text"] = "text"
    text: str


class ReasoningPart(_Frozen):
    kind: Literal["reasoning"] = "reasoning"
    text: str


class ToolCallPart(_Frozen):
    kind: Literal["tool_call"] = "tool_call"
    call_id: str
    tool_name: str
    arguments: str = Field(default="{}", description="Raw JSON arguments as emitted by the model")


class ToolResultPart(_Frozen):
    kind: Literal["tool_result"] = "tool_result"
    call_id: str
    tool_name: str
    text: str
    is_error: bool = False


ContentPart = Annotated[
    Union[TextPart, ReasoningPart, ToolCallPart, ToolResultPart],
    Field(discriminator="kind"),
]


class Message(_Frozen):
    """One conversation message. Immutable once created."""

    role: Role
    parts: tuple[ContentPart, ...] = ()

    @classmethod
    def user(cls, text: str) -> Message:
        return cls(role=Role.USER, parts=(TextPart(text=text),))

    @classmethod
    def system(cls, text: str) -> Message:
        return cls(role=Role.SYSTEM, parts=(TextPart(text=text),))

    @property
    def text(self) -> str:
        return "".join(p.text for p in self.parts if isinstance(p, TextPart))

    @property
    def reasoning(self) -> str:
        return "".join(p.text for p in self.parts if isinstance(p, ReasoningPart))

    @property
    def tool_calls(self) -> list[ToolCallPart]:
        return [p for p in self.parts if isinstance(p, ToolCallPart)]

    @property
    def tool_results(self) -> list[ToolResultPart]:
        return [p for p in self.parts if isinstance(p, ToolResultPart)]


class History:
    """
    Append-only transcript for one session.

    Only the game loop holds a History; everything else gets a snapshot.
    """

    def __init__(self, messages: list[Message] | None = None):
        self._messages: list[Message] = list(messages or [])

    def extend(self, messages: list[Message] | tuple[Message, ...]) -> None:
        self._messages.extend(messages)

    def snapshot(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(tuple(self._messages))


class TokenUsage(BaseModel):
    """Token counts reported by the provider."""

    prompt_tokens: int = 0
    completion_tokens: int = 0

    @computed_field
    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
        )


class Step(BaseModel):
    """One generation cycle within a turn and the messages it produced."""

    index: int = Field(ge=0)
    messages: list[Message] = Field(default_factory=list)
    finish_reason: str | None = None
    usage: TokenUsage = Field(default_factory=TokenUsage)

    @property
    def tool_calls(self) -> list[ToolCallPart]:
        return [call for message in self.messages for call in message.tool_calls]


class AgentResult(BaseModel):
    """Terminal result of one streamed generation (one turn)."""

    steps: list[Step] = Field(default_factory=list)
    model: str = ""

    @property
    def messages(self) -> list[Message]:
        """Every step's messages, in emission order."""
        return [message for step in self.steps for message in step.messages]

    @property
    def text(self) -> str:
        """Narration text of the last step."""
        if not self.steps:
            return ""
        return "".join(m.text for m in self.steps[-1].messages if m.role == Role.ASSISTANT)

    @property
    def usage(self) -> TokenUsage:
        total = TokenUsage()
        for step in self.steps:
            total = total + step.usage
        return total
