"""
GameMaster - LLM-driven Dungeon Master for D&D 5th edition.

This package runs a turn-based game loop in the terminal: a language model
narrates, and grounds its narration in real game mechanics by calling tools
for monster and spell lookups, dice rolls and player choices.
"""

__version__ = "0.1.0"
