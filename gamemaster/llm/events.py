"""
Streaming events and the dispatcher that routes them.

One generation produces an ordered stream of tagged events:

    ReasoningStart → ReasoningDelta* → ReasoningEnd     (optional, per step)
    TextDelta*
    ToolCallEvent → ToolResultEvent                      (one pair per tool call)

The EventDispatcher delivers each event to the handler registered for its
type, in arrival order, and checks the ordering contract as it goes.
Handlers only ever see frozen event payloads.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Union

from pydantic import BaseModel, ConfigDict

from gamemaster.llm.models import StepError

logger = logging.getLogger(__name__)


class StreamEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    step: int = 0


class ReasoningStart(StreamEvent):
    pass


class ReasoningDelta(StreamEvent):
    text: str


class ReasoningEnd(StreamEvent):
    text: str = ""


class TextDelta(StreamEvent):
    text: str


class ToolCallEvent(StreamEvent):
    call_id: str
    tool_name: str
    arguments: str


class ToolResultEvent(StreamEvent):
    call_id: str
    tool_name: str
    text: str
    is_error: bool = False


EventHandler = Callable[[Any], Union[None, Awaitable[None]]]


class EventDispatcher:
    """
    Routes stream events to handlers and enforces their ordering.

    Any handler exception, or an event that arrives out of order, raises
    StepError. The agent lets that propagate, which aborts the step.

    Args:
        handlers: Mapping of event type to handler. Handlers may be plain
                  functions or coroutine functions. Event types without a
                  handler are still validated, just not delivered.
    """

    def __init__(self, handlers: dict[type[StreamEvent], EventHandler] | None = None):
        self._handlers: dict[type[StreamEvent], EventHandler] = dict(handlers or {})
        self._in_reasoning = False
        self._pending_calls: dict[str, str] = {}

    def register(self, event_type: type[StreamEvent], handler: EventHandler) -> None:
        self._handlers[event_type] = handler

    @property
    def in_reasoning(self) -> bool:
        return self._in_reasoning

    @property
    def pending_calls(self) -> frozenset[str]:
        return frozenset(self._pending_calls)

    async def dispatch(self, event: StreamEvent) -> None:
        self._check_order(event)
        handler = self._handlers.get(type(event))
        if handler is None:
            return
        try:
            result = handler(event)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            raise StepError(f"{type(event).__name__} handler failed: {e}", cause=e) from e

    def finish_step(self) -> None:
        """Verify a step ended cleanly: no open reasoning, no unanswered tool call."""
        if self._in_reasoning:
            raise StepError("Step ended inside an unterminated reasoning block")
        if self._pending_calls:
            ids = ", ".join(sorted(self._pending_calls))
            raise StepError(f"Step ended with unanswered tool calls: {ids}")

    def _check_order(self, event: StreamEvent) -> None:
        if isinstance(event, ReasoningStart):
            if self._in_reasoning:
                raise StepError("Reasoning started twice without ending")
            self._in_reasoning = True
        elif isinstance(event, ReasoningDelta):
            if not self._in_reasoning:
                raise StepError("Reasoning delta outside a reasoning block")
        elif isinstance(event, ReasoningEnd):
            if not self._in_reasoning:
                raise StepError("Reasoning ended without starting")
            self._in_reasoning = False
        elif isinstance(event, (TextDelta, ToolCallEvent)) and self._in_reasoning:
            raise StepError("Reasoning must end before text or tool calls begin")

        if isinstance(event, ToolCallEvent):
            if event.call_id in self._pending_calls:
                raise StepError(f"Duplicate tool call id: {event.call_id}")
            self._pending_calls[event.call_id] = event.tool_name
        elif isinstance(event, ToolResultEvent):
            # Correlated by id only; results may arrive in any order
            if self._pending_calls.pop(event.call_id, None) is None:
                raise StepError(f"Tool result for unknown call id: {event.call_id}")
