"""
Turn-orchestration loop.

GameLoop drives the game one turn at a time until the operator stops it:

    AWAITING_GENERATION ──ok──→ APPENDING_HISTORY ──→ AWAITING_GENERATION ...
            │                          │
            │                          └── turn limit or player left ──→ FINISHED
            ├── shutdown signalled ──→ CANCELLED  (graceful, "ended by operator")
            └── any other failure ──→ FATAL      (GameLoopError is raised)

Turns never overlap: turn N+1 starts only after turn N's result is known.
A turn that runs past its time budget is fatal and is not retried; wrap the
loop in a retry policy if that's wanted.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Callable, Protocol, Sequence

from gamemaster.config.settings import GameSettings
from gamemaster.game.console import ConsoleRenderer
from gamemaster.llm.events import EventDispatcher
from gamemaster.llm.models import AgentResult, History, Message

logger = logging.getLogger(__name__)


class GameLoopError(Exception):
    """A turn failed for a reason other than operator shutdown."""

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message)
        self.cause = cause


class TurnTimeoutError(GameLoopError):
    """A turn ran past its time budget."""


class LoopState(str, Enum):
    AWAITING_GENERATION = "awaiting_generation"
    APPENDING_HISTORY = "appending_history"
    CANCELLED = "cancelled"
    FINISHED = "finished"
    FATAL = "fatal"


class LoopOutcome(str, Enum):
    ENDED_BY_OPERATOR = "ended by operator"
    PLAYER_LEFT = "player left"
    TURN_LIMIT_REACHED = "turn limit reached"


class StreamingAgent(Protocol):
    async def stream(
        self,
        prompt: str,
        history: Sequence[Message],
        dispatcher: EventDispatcher,
    ) -> AgentResult: ...


class _OperatorStop(Exception):
    pass


class GameLoop:
    """
    Runs turns until shutdown, a fatal error, or an optional stop condition.

    Args:
        agent: Produces one turn's messages per call
        settings: Turn budget and prompts
        shutdown: Set by the operator (Ctrl+C) to end the game
        renderer: Console output; its dispatcher receives each turn's events
        dispatcher_factory: Builds the event dispatcher for each turn.
                            Defaults to the renderer's dispatcher.
        stop_when: Checked after each turn; True ends the game (player left)
        max_turns: End after this many completed turns (None = unlimited)
    """

    def __init__(
        self,
        agent: StreamingAgent,
        settings: GameSettings,
        shutdown: asyncio.Event,
        renderer: ConsoleRenderer | None = None,
        dispatcher_factory: Callable[[], EventDispatcher] | None = None,
        stop_when: Callable[[], bool] | None = None,
        max_turns: int | None = None,
    ):
        self._agent = agent
        self._settings = settings
        self._shutdown = shutdown
        self._renderer = renderer or ConsoleRenderer(show_reasoning=settings.show_reasoning)
        self._dispatcher_factory = dispatcher_factory or self._renderer.dispatcher
        self._stop_when = stop_when
        self._max_turns = max_turns
        self._history = History()
        self._state = LoopState.AWAITING_GENERATION
        self._turns_completed = 0

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def turns_completed(self) -> int:
        return self._turns_completed

    def transcript(self) -> tuple[Message, ...]:
        """Read-only copy of the history accumulated so far."""
        return self._history.snapshot()

    async def run(self) -> LoopOutcome:
        """
        Play until the game ends.

        Returns:
            How the game ended (never a failure)

        Raises:
            GameLoopError: If a turn fails or times out without a shutdown
        """
        self._renderer.banner()
        prompt = self._settings.opening_prompt

        while True:
            self._state = LoopState.AWAITING_GENERATION
            try:
                if self._shutdown.is_set():
                    raise _OperatorStop()
                result = await self._run_turn(prompt)
            except _OperatorStop:
                self._state = LoopState.CANCELLED
                logger.info(f"Game ended by operator after {self._turns_completed} turn(s)")
                self._renderer.farewell()
                return LoopOutcome.ENDED_BY_OPERATOR
            except GameLoopError as e:
                self._state = LoopState.FATAL
                logger.error(f"Turn {self._turns_completed + 1} failed: {e}")
                raise

            self._state = LoopState.APPENDING_HISTORY
            self._history.extend([Message.user(prompt), *result.messages])
            self._turns_completed += 1
            logger.info(
                f"Turn {self._turns_completed} complete: {len(result.steps)} step(s), "
                f"{result.usage.total_tokens} tokens, history {len(self._history)} messages"
            )
            self._renderer.turn_break()

            if self._max_turns is not None and self._turns_completed >= self._max_turns:
                self._state = LoopState.FINISHED
                return LoopOutcome.TURN_LIMIT_REACHED
            if self._stop_when is not None and self._stop_when():
                self._state = LoopState.FINISHED
                logger.info("Player left; ending the game")
                self._renderer.farewell()
                return LoopOutcome.PLAYER_LEFT

            prompt = self._settings.continuation_prompt

    async def _run_turn(self, prompt: str) -> AgentResult:
        """Run one turn, racing it against shutdown and its time budget."""
        timeout = self._settings.turn_timeout_seconds
        turn = asyncio.ensure_future(
            asyncio.wait_for(
                self._agent.stream(prompt, self._history.snapshot(), self._dispatcher_factory()),
                timeout,
            )
        )
        stop = asyncio.ensure_future(self._shutdown.wait())
        try:
            await asyncio.wait({turn, stop}, return_when=asyncio.FIRST_COMPLETED)
        except BaseException:
            turn.cancel()
            stop.cancel()
            await asyncio.gather(turn, stop, return_exceptions=True)
            raise
        stop.cancel()

        if self._shutdown.is_set():
            # Let the in-flight turn unwind; whatever it produced is discarded
            turn.cancel()
            await asyncio.gather(turn, return_exceptions=True)
            raise _OperatorStop()

        try:
            return turn.result()
        except asyncio.TimeoutError as e:
            raise TurnTimeoutError(f"Turn exceeded its {timeout:g}s time budget", cause=e) from e
        except asyncio.CancelledError as e:
            raise GameLoopError("Turn was cancelled without a shutdown request", cause=e) from e
        except Exception as e:
            raise GameLoopError(f"Turn failed: {e}", cause=e) from e
