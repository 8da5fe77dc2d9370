"""
Tests for the gamemaster CLI.

Parser-level tests for each subcommand, plus the commands that run
without a model (roll, lookup, config) and the startup checks of play.
"""

import argparse
import re
from unittest.mock import AsyncMock, patch

import pytest

from gamemaster.__main__ import cmd_config, cmd_lookup, cmd_play, cmd_roll, create_parser
from gamemaster.config.settings import Settings


@pytest.fixture
def settings():
    return Settings(_env_file=None)


class TestParser:
    def test_play_defaults(self):
        args = create_parser().parse_args(["play"])
        assert args.command == "play"
        assert args.model is None
        assert args.max_turns is None
        assert args.hide_reasoning is False

    def test_play_overrides(self):
        args = create_parser().parse_args(
            ["play", "--model", "openai/gpt-4o", "--max-turns", "3", "--hide-reasoning"]
        )
        assert args.model == "openai/gpt-4o"
        assert args.max_turns == 3
        assert args.hide_reasoning is True

    def test_roll_requires_notation(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["roll"])

    def test_lookup_joins_name_words(self):
        args = create_parser().parse_args(["lookup", "monster", "adult", "red", "dragon"])
        assert args.kind == "monster"
        assert args.name == ["adult", "red", "dragon"]

    def test_lookup_kind_is_restricted(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["lookup", "item", "sword"])

    def test_global_options(self):
        args = create_parser().parse_args(["--log-level", "DEBUG", "config"])
        assert args.log_level == "DEBUG"
        assert args.command == "config"


class TestUtilityCommands:
    def test_roll_prints_result(self, settings, capsys):
        exit_code = cmd_roll(argparse.Namespace(notation="1d20+2"), settings)

        assert exit_code == 0
        match = re.match(r"Rolling 1d20\+2: \[(\d+)\] = (\d+)", capsys.readouterr().out.strip())
        assert match is not None
        assert int(match.group(2)) == int(match.group(1)) + 2

    def test_roll_invalid_notation(self, settings, capsys):
        exit_code = cmd_roll(argparse.Namespace(notation="banana"), settings)

        assert exit_code == 1
        assert "Invalid dice notation 'banana'" in capsys.readouterr().out

    def test_config_shows_model(self, settings, capsys):
        assert cmd_config(settings) == 0
        out = capsys.readouterr().out
        assert settings.llm.model in out
        assert "SRD API" in out

    @pytest.mark.asyncio
    async def test_lookup_prints_and_closes(self, settings, capsys):
        with patch("gamemaster.tools.lookup.KnowledgeLookup.lookup", new=AsyncMock(return_value="Goblin (...)")), \
                patch("gamemaster.tools.lookup.KnowledgeLookup.aclose", new=AsyncMock()) as aclose:
            exit_code = await cmd_lookup(argparse.Namespace(kind="monster", name=["goblin"]), settings)

        assert exit_code == 0
        assert capsys.readouterr().out.strip() == "Goblin (...)"
        aclose.assert_awaited_once()


class TestPlayStartup:
    @pytest.mark.asyncio
    async def test_hosted_model_without_key(self, settings):
        args = argparse.Namespace(model="openai/gpt-4o", hide_reasoning=False, max_turns=None)
        settings.llm.api_key = ""

        assert await cmd_play(args, settings) == 1

    @pytest.mark.asyncio
    async def test_unreadable_system_prompt(self, settings, tmp_path):
        args = argparse.Namespace(model=None, hide_reasoning=False, max_turns=None)
        settings.game.system_prompt_path = tmp_path / "missing.txt"

        assert await cmd_play(args, settings) == 1

    @pytest.mark.asyncio
    async def test_flags_override_settings(self, settings):
        args = argparse.Namespace(model="openai/gpt-4o", hide_reasoning=True, max_turns=None)
        settings.llm.api_key = ""

        await cmd_play(args, settings)

        assert settings.llm.model == "openai/gpt-4o"
        assert settings.game.show_reasoning is False
