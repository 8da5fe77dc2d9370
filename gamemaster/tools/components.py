"""
Tool component factory.

Centralises the construction of game tools from settings so the CLI
commands and tests wire them the same way.
"""

from __future__ import annotations

import secrets
from typing import Callable, TextIO

import httpx

from gamemaster.config.settings import ToolSettings
from gamemaster.tools.dice import DiceRoller, roll_dice_tool
from gamemaster.tools.lookup import KnowledgeLookup, lookup_tools
from gamemaster.tools.player import PlayerGate, PlayerInput, ask_player_tool
from gamemaster.tools.registry import ToolRegistry


class ToolComponents:
    """
    Factory for building game tools from settings.

    Example::

        factory = ToolComponents(settings.tools)
        async with factory.create_registry(PlayerInput()) as registry:
            response = await registry.dispatch("roll_dice", '{"notation": "d20"}')
    """

    def __init__(self, settings: ToolSettings):
        self.settings = settings

    def create_dice_roller(self, randbelow: Callable[[int], int] = secrets.randbelow) -> DiceRoller:
        """Create a DiceRoller from settings."""
        return DiceRoller(randbelow=randbelow, max_dice=self.settings.max_dice)

    def create_lookup(self, client: httpx.AsyncClient | None = None) -> KnowledgeLookup:
        """Create a KnowledgeLookup from settings."""
        return KnowledgeLookup(
            base_url=self.settings.api_base_url,
            client=client,
            timeout=self.settings.http_timeout_seconds,
            max_summary_chars=self.settings.max_summary_chars,
        )

    def create_registry(
        self,
        player_input: PlayerInput,
        output: TextIO | None = None,
        dice_roller: DiceRoller | None = None,
        lookup: KnowledgeLookup | None = None,
    ) -> ToolRegistry:
        """
        Create a registry with the full game tool set.

        The registry closes the lookup's HTTP client on shutdown, so use it
        as an async context manager.
        """
        registry = ToolRegistry(max_input_retries=self.settings.max_input_retries)
        lookup = lookup or self.create_lookup()
        registry.add_cleanup(lookup.aclose)

        registry.register(ask_player_tool(PlayerGate(player_input, output=output)))
        for tool in lookup_tools(lookup):
            registry.register(tool)
        registry.register(roll_dice_tool(dice_roller or self.create_dice_roller()))
        return registry
