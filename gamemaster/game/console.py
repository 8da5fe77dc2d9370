"""
Console rendering of the narration stream.

ConsoleRenderer provides the default event handlers: reasoning and text are
echoed as they stream in, and tool calls get a one-line trace. ask_player
renders its own prompt, so its call and result are not traced.
"""

from __future__ import annotations

import sys
from typing import TextIO

from gamemaster.llm.events import (
    EventDispatcher,
    ReasoningDelta,
    ReasoningEnd,
    ReasoningStart,
    TextDelta,
    ToolCallEvent,
    ToolResultEvent,
)

SILENT_TOOLS = frozenset({"ask_player"})


class ConsoleRenderer:
    """
    Writes stream events to a text stream (stdout by default).

    Args:
        output: Destination stream
        show_reasoning: Echo the model's reasoning; when False it is skipped
    """

    def __init__(self, output: TextIO | None = None, show_reasoning: bool = True):
        self._output = output
        self._show_reasoning = show_reasoning

    def _write(self, text: str) -> None:
        out = self._output if self._output is not None else sys.stdout
        out.write(text)
        out.flush()

    def on_reasoning_start(self, _: ReasoningStart) -> None:
        if self._show_reasoning:
            self._write("\n[THINKING...]\n")

    def on_reasoning_delta(self, event: ReasoningDelta) -> None:
        if self._show_reasoning:
            self._write(event.text)

    def on_reasoning_end(self, _: ReasoningEnd) -> None:
        if self._show_reasoning:
            self._write("\n[END THINKING]\n\n")

    def on_text_delta(self, event: TextDelta) -> None:
        self._write(event.text)

    def on_tool_call(self, event: ToolCallEvent) -> None:
        if event.tool_name not in SILENT_TOOLS:
            self._write(f"\n[{event.tool_name}] {event.arguments}\n")

    def on_tool_result(self, event: ToolResultEvent) -> None:
        if event.tool_name not in SILENT_TOOLS:
            self._write("-> failed\n" if event.is_error else "-> done\n")

    def banner(self) -> None:
        self._write("=== D&D 5e ===\nPress Ctrl+C to quit\n\n")

    def turn_break(self) -> None:
        self._write("\n")

    def farewell(self) -> None:
        self._write("\n\n--- Thanks for playing! ---\n")

    def dispatcher(self) -> EventDispatcher:
        """A fresh dispatcher wired to this renderer's handlers."""
        return EventDispatcher(
            {
                ReasoningStart: self.on_reasoning_start,
                ReasoningDelta: self.on_reasoning_delta,
                ReasoningEnd: self.on_reasoning_end,
                TextDelta: self.on_text_delta,
                ToolCallEvent: self.on_tool_call,
                ToolResultEvent: self.on_tool_result,
            }
        )
