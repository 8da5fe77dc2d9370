"""
Player interaction gate and the ask_player tool.

PlayerInput is the one handle on the player's input stream; nothing else in
the program reads stdin. Lines are read on a daemon thread and handed to the
event loop through a queue, so waiting on the player can be cancelled (on
Ctrl+C) without leaving a blocked read that keeps the process alive.
"""

from __future__ import annotations

import asyncio
import logging
import sys
import threading
from typing import TextIO

from pydantic import BaseModel, Field

from gamemaster.tools.base import Tool, ToolContext, ToolResponse

logger = logging.getLogger(__name__)

PLAYER_LEFT = "The player has left the game."


class PlayerInput:
    """
    Line reader over a text stream (stdin by default).

    readline() returns the next line, or None once the stream is closed.
    """

    def __init__(self, stream: TextIO | None = None):
        self._stream = stream
        self._queue: asyncio.Queue[str | None] | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def readline(self) -> str | None:
        if self._closed:
            return None
        if self._queue is None:
            self._start_reader()
        line = await self._queue.get()
        if line is None:
            self._closed = True
        return line

    def _start_reader(self) -> None:
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[str | None] = asyncio.Queue()
        stream = self._stream if self._stream is not None else sys.stdin
        self._queue = queue

        def pump() -> None:
            try:
                for line in iter(stream.readline, ""):
                    loop.call_soon_threadsafe(queue.put_nowait, line)
                loop.call_soon_threadsafe(queue.put_nowait, None)
            except (OSError, ValueError) as e:
                logger.warning(f"Player input stream failed: {e}")
                loop.call_soon_threadsafe(queue.put_nowait, None)
            except RuntimeError:
                # Event loop already closed; the game is over
                pass

        threading.Thread(target=pump, name="player-input", daemon=True).start()


class PlayerChoice(BaseModel):
    index: int = Field(ge=1, description="1-based option number")
    label: str


class PlayerGate:
    """
    Presents a question with numbered options and waits for a valid pick.

    Only one question can be outstanding at a time.

    Args:
        player_input: The shared input handle
        output: Where prompts are written (stdout by default)
    """

    def __init__(self, player_input: PlayerInput, output: TextIO | None = None):
        self._input = player_input
        self._output = output
        self._lock = asyncio.Lock()

    def _write(self, text: str) -> None:
        out = self._output if self._output is not None else sys.stdout
        out.write(text)
        out.flush()

    async def ask(self, question: str, options: list[str]) -> PlayerChoice | None:
        """
        Ask until the player picks a number in [1, len(options)].

        Returns:
            The choice, or None if the input stream closed first.
        """
        if not options:
            raise ValueError("ask() needs at least one option")

        async with self._lock:
            self._write(f"\n\n--- YOUR TURN ---\n{question}\n\n")
            for i, option in enumerate(options, start=1):
                self._write(f"  {i}. {option}\n")

            while True:
                self._write(f"\nChoose [1-{len(options)}]: ")
                line = await self._input.readline()
                if line is None:
                    logger.info("Player input closed")
                    return None

                text = line.strip()
                try:
                    choice = int(text)
                except ValueError:
                    choice = 0
                if not 1 <= choice <= len(options):
                    self._write(f"Pick a number between 1 and {len(options)}.\n")
                    continue

                chosen = options[choice - 1]
                self._write(f"-> {chosen}\n\n")
                return PlayerChoice(index=choice, label=chosen)


class AskPlayerInput(BaseModel):
    question: str = Field(description="The question to ask the player")
    options: list[str] = Field(
        min_length=3,
        max_length=5,
        description="List of 3-5 options the player can choose from",
    )


def ask_player_tool(gate: PlayerGate) -> Tool[AskPlayerInput]:
    async def ask_player(_: ToolContext, query: AskPlayerInput) -> ToolResponse:
        choice = await gate.ask(query.question, query.options)
        if choice is None:
            return ToolResponse(text=PLAYER_LEFT)
        return ToolResponse(text=f"The player chose: {choice.label}")

    return Tool(
        name="ask_player",
        description=(
            "Present the player with choices. You must call this whenever it is the "
            "player's turn to act. Provide a question and 3-5 options. Do not write "
            "options in your response text; this tool handles the display. The game "
            "cannot continue until the player chooses."
        ),
        input_model=AskPlayerInput,
        handler=ask_player,
    )
