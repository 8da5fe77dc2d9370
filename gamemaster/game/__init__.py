"""
Game layer.

Owns the session: the turn loop, the conversation history it accumulates,
and the console rendering of each turn's event stream.
"""

from gamemaster.game.console import ConsoleRenderer
from gamemaster.game.loop import (
    GameLoop,
    GameLoopError,
    LoopOutcome,
    LoopState,
    TurnTimeoutError,
)

__all__ = [
    "ConsoleRenderer",
    "GameLoop",
    "GameLoopError",
    "LoopOutcome",
    "LoopState",
    "TurnTimeoutError",
]
