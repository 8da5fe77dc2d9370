"""
GameMaster CLI entry point.

Provides the interactive game and a few utility commands for checking the
configuration and the tools without a model.
"""

import argparse
import asyncio
import signal
import sys
from pathlib import Path

from gamemaster import __version__
from gamemaster.config.logging import get_logger, setup_logging
from gamemaster.config.settings import Settings, load_settings
from gamemaster.tools.components import ToolComponents
from gamemaster.tools.lookup import RecordKind


def create_parser() -> argparse.ArgumentParser:
    """Create and configure argument parser."""
    parser = argparse.ArgumentParser(
        prog="gamemaster",
        description="LLM-driven Dungeon Master for D&D 5th edition",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"GameMaster {__version__}",
    )

    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Path to .env file (default: .env in current directory)",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override logging level from config",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Play command
    play_parser = subparsers.add_parser(
        "play",
        help="Start a game (Ctrl+C to quit)",
    )
    play_parser.add_argument(
        "--model",
        default=None,
        help="Override the LiteLLM model string, e.g. ollama/qwen3:8b",
    )
    play_parser.add_argument(
        "--max-turns",
        type=int,
        default=None,
        help="End the game after this many turns (default: play until Ctrl+C)",
    )
    play_parser.add_argument(
        "--hide-reasoning",
        action="store_true",
        help="Don't print the model's reasoning stream",
    )

    # Config command
    subparsers.add_parser(
        "config",
        help="Show current configuration",
    )

    # Roll command
    roll_parser = subparsers.add_parser(
        "roll",
        help="Roll dice without the model, e.g. 2d6+3",
    )
    roll_parser.add_argument(
        "notation",
        help="Dice notation: <count>d<sides>[+|-<modifier>]",
    )

    # Lookup command
    lookup_parser = subparsers.add_parser(
        "lookup",
        help="Look up a monster or spell in the D&D 5e SRD API",
    )
    lookup_parser.add_argument(
        "kind",
        choices=[kind.value for kind in RecordKind],
        help="Record type",
    )
    lookup_parser.add_argument(
        "name",
        nargs="+",
        help='Name to look up, e.g. "adult red dragon"',
    )

    return parser


def cmd_config(settings: Settings) -> int:
    """Show current configuration."""
    print("Current Configuration:")
    print("\n=== GameMaster Configuration ===\n")
    print(f"Environment: {settings.environment}")
    print(f"Log Level: {settings.log_level}")
    print(f"Log File: {settings.log_file or 'None (console only)'}")
    print(f"\nLLM Model: {settings.llm.model}")
    print(f"LLM API Key: {'Set' if settings.llm.api_key else 'Not set'}")
    print(f"LLM API Base: {settings.llm.api_base or 'provider default'}")
    print(f"LLM Temperature: {settings.llm.temperature}")
    print(f"LLM Max Tokens: {settings.llm.max_tokens}")
    print(f"\nTurn Timeout: {settings.game.turn_timeout_seconds:g}s")
    print(f"Max Steps Per Turn: {settings.game.max_steps_per_turn}")
    print(f"Show Reasoning: {settings.game.show_reasoning}")
    print(f"System Prompt: {settings.game.system_prompt_path or 'packaged default'}")
    print(f"\nSRD API: {settings.tools.api_base_url}")
    print(f"HTTP Timeout: {settings.tools.http_timeout_seconds:g}s")

    return 0


def cmd_roll(args, settings: Settings) -> int:
    """Roll dice directly."""
    roller = ToolComponents(settings.tools).create_dice_roller()
    text = roller.evaluate(notation=args.notation)
    print(text)
    return 1 if text.startswith("Invalid") else 0


async def cmd_lookup(args, settings: Settings) -> int:
    """Run a monster or spell lookup directly."""
    lookup = ToolComponents(settings.tools).create_lookup()
    try:
        print(await lookup.lookup(RecordKind(args.kind), " ".join(args.name)))
    finally:
        await lookup.aclose()
    return 0


async def cmd_play(args, settings: Settings) -> int:
    """
    Run the game loop until Ctrl+C, the player leaving, or a fatal error.

    Returns:
        Exit code (0 for a clean shutdown, 1 for a startup or fatal error)
    """
    from gamemaster.game import ConsoleRenderer, GameLoop, GameLoopError
    from gamemaster.llm import Agent, load_system_prompt
    from gamemaster.tools.player import PlayerInput

    logger = get_logger(__name__)

    if args.model:
        settings.llm.model = args.model
    if args.hide_reasoning:
        settings.game.show_reasoning = False

    # Fail before the loop starts rather than on the first turn
    if settings.llm.needs_api_key and not settings.llm.api_key:
        logger.error(
            f"API key not configured for {settings.llm.model}. "
            "Set LLM__API_KEY in your .env file, or use a local model (e.g. ollama/qwen3:8b)."
        )
        return 1

    try:
        system_prompt = load_system_prompt(settings.game.system_prompt_path)
    except (OSError, ValueError) as e:
        logger.error(f"Could not load system prompt: {e}")
        return 1

    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, shutdown.set)
    except NotImplementedError:
        logger.warning("Graceful Ctrl+C handling is not available on this platform")

    player_input = PlayerInput()
    renderer = ConsoleRenderer(show_reasoning=settings.game.show_reasoning)
    factory = ToolComponents(settings.tools)

    try:
        async with factory.create_registry(player_input) as registry:
            agent = Agent(
                settings=settings.llm,
                system_prompt=system_prompt,
                tools=registry,
                max_steps=settings.game.max_steps_per_turn,
            )
            game = GameLoop(
                agent,
                settings.game,
                shutdown,
                renderer=renderer,
                stop_when=lambda: player_input.closed,
                max_turns=args.max_turns,
            )
            logger.info(f"Starting game with {settings.llm.model}")
            outcome = await game.run()
    except GameLoopError as e:
        print(f"\nError: {e}", file=sys.stderr)
        return 1
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except NotImplementedError:
            pass

    logger.info(f"Game over: {outcome.value}")
    return 0


def main() -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args()

    # Load settings
    try:
        settings = load_settings(env_file=args.env_file)
    except Exception as e:
        print(f"Error loading settings: {e}", file=sys.stderr)
        return 1

    # Override log level if specified
    if args.log_level:
        settings.log_level = args.log_level

    # Setup logging
    setup_logging(settings)

    # Execute command
    if args.command == "config":
        return cmd_config(settings)
    elif args.command == "roll":
        return cmd_roll(args, settings)
    elif args.command == "lookup":
        return asyncio.run(cmd_lookup(args, settings))
    elif args.command == "play":
        try:
            return asyncio.run(cmd_play(args, settings))
        except KeyboardInterrupt:
            # Only reached where signal handlers can't be installed
            return 0
    else:
        # Default: show help
        parser.print_help()
        return 0


if __name__ == "__main__":
    sys.exit(main())
