"""
Unit tests for the dice notation engine and the roll_dice tool.

Tests cover:
- Notation parsing (valid forms, count fallback, malformed input)
- Rolling with injected entropy
- Roll invariants over many random expressions
- The roll_dice tool handler
"""

import random
from unittest.mock import MagicMock

import pytest

from gamemaster.tools.base import ToolContext
from gamemaster.tools.dice import (
    DiceExpression,
    DiceRoller,
    InvalidDiceNotation,
    RollDiceInput,
    build_expression,
    parse_notation,
    roll_dice_tool,
)


def _fixed_entropy(*outcomes: int) -> MagicMock:
    """randbelow() stand-in that yields the given 1-based outcomes in order."""
    return MagicMock(side_effect=[value - 1 for value in outcomes])


CTX = ToolContext(call_id="call_1", tool_name="roll_dice")


class TestParseNotation:
    """Tests for parse_notation()."""

    def test_count_sides_and_modifier(self):
        assert parse_notation("2d6+3") == DiceExpression(count=2, sides=6, modifier=3)

    def test_negative_modifier(self):
        assert parse_notation("1d20-1") == DiceExpression(count=1, sides=20, modifier=-1)

    def test_missing_count_defaults_to_one(self):
        assert parse_notation("d20") == DiceExpression(count=1, sides=20)

    def test_zero_count_defaults_to_one(self):
        assert parse_notation("0d8").count == 1

    @pytest.mark.parametrize("notation", ["xd8", "\u00b2d8", "\u0663d8"])
    def test_non_numeric_count_defaults_to_one(self, notation):
        assert parse_notation(notation) == DiceExpression(count=1, sides=8)

    def test_whitespace_and_case_are_ignored(self):
        assert parse_notation(" 3 D 8 + 2 ") == DiceExpression(count=3, sides=8, modifier=2)

    @pytest.mark.parametrize("notation", ["20", "2x6", "", "roll"])
    def test_missing_separator(self, notation):
        with pytest.raises(InvalidDiceNotation, match="'d' separator"):
            parse_notation(notation)

    @pytest.mark.parametrize("notation", ["2d0", "2d-6", "2dabc", "d", "2d\u00b2"])
    def test_bad_sides(self, notation):
        with pytest.raises(InvalidDiceNotation, match="sides"):
            parse_notation(notation)

    @pytest.mark.parametrize("notation", ["2d6+x", "2d6+\u00b2"])
    def test_bad_modifier(self, notation):
        with pytest.raises(InvalidDiceNotation, match="modifier"):
            parse_notation(notation)

    @pytest.mark.parametrize(
        "notation, part",
        [
            ("1" * 5000 + "d6", "count"),
            ("1d" + "6" * 5000, "sides"),
            ("1d6+" + "1" * 5000, "modifier"),
            ("1d6-" + "9" * 10, "modifier"),
        ],
    )
    def test_oversized_numbers(self, notation, part):
        with pytest.raises(InvalidDiceNotation, match=f"{part} has more than 9 digits"):
            parse_notation(notation)

    def test_nine_digit_numbers_are_accepted(self):
        assert parse_notation("1d999999999+999999999").sides == 999_999_999


class TestBuildExpression:
    """Tests for build_expression() from structured parts."""

    def test_valid_parts(self):
        assert build_expression(4, 6, -2) == DiceExpression(count=4, sides=6, modifier=-2)

    @pytest.mark.parametrize("count", [None, 0, -3])
    def test_count_falls_back_to_one(self, count):
        assert build_expression(count, 6).count == 1

    @pytest.mark.parametrize("sides", [None, 0, -1])
    def test_sides_are_mandatory(self, sides):
        with pytest.raises(InvalidDiceNotation):
            build_expression(1, sides)

    def test_notation_rendering(self):
        assert build_expression(2, 6, 3).notation == "2d6+3"
        assert build_expression(1, 20, -1).notation == "1d20-1"
        assert build_expression(1, 4).notation == "1d4"


class TestDiceRoller:
    """Tests for DiceRoller.roll() and evaluate()."""

    def test_two_d_six_plus_three_with_fixed_entropy(self):
        roller = DiceRoller(randbelow=_fixed_entropy(4, 5))
        roll = roller.roll(parse_notation("2d6+3"))

        assert roll.outcomes == [4, 5]
        assert roll.total == 12

    def test_randbelow_receives_sides(self):
        randbelow = _fixed_entropy(3)
        DiceRoller(randbelow=randbelow).roll(DiceExpression(count=1, sides=8))
        randbelow.assert_called_once_with(8)

    def test_describe_lists_every_outcome(self):
        roller = DiceRoller(randbelow=_fixed_entropy(4, 5))
        assert roller.evaluate(notation="2d6+3") == "Rolling 2d6+3: [4, 5] = 12"

    def test_natural_twenty_is_flagged(self):
        roller = DiceRoller(randbelow=_fixed_entropy(20))
        assert "(natural 20!)" in roller.evaluate(notation="d20")

    def test_natural_one_is_flagged(self):
        roller = DiceRoller(randbelow=_fixed_entropy(1))
        assert "(natural 1!)" in roller.evaluate(notation="1d20+5")

    def test_structured_parts(self):
        roller = DiceRoller(randbelow=_fixed_entropy(2, 2, 2))
        assert roller.evaluate(count=3, sides=4, modifier=1) == "Rolling 3d4+1: [2, 2, 2] = 7"

    def test_notation_wins_over_parts(self):
        roller = DiceRoller(randbelow=_fixed_entropy(6))
        assert roller.evaluate(notation="1d6", count=4, sides=20).startswith("Rolling 1d6:")

    @pytest.mark.parametrize(
        "notation",
        ["2x6", "2d0", "2dabc", "d-4", "1d\u00b2", "1" * 5000 + "d6", "1d" + "6" * 5000, "1d6+" + "1" * 5000],
    )
    def test_invalid_notation_returns_text(self, notation):
        text = DiceRoller().evaluate(notation=notation)
        assert text.startswith(f"Invalid dice notation '{notation}'")

    def test_unicode_digit_count_rolls_one_die(self):
        roller = DiceRoller(randbelow=_fixed_entropy(5))
        assert roller.evaluate(notation="\u00b2d6") == "Rolling 1d6: [5] = 5"

    def test_missing_sides_returns_text(self):
        text = DiceRoller().evaluate(count=2)
        assert text.startswith("Invalid dice notation '2d?'")

    def test_too_many_dice_is_invalid(self):
        text = DiceRoller(max_dice=10).evaluate(notation="11d6")
        assert text.startswith("Invalid dice notation")
        assert "10" in text

    def test_default_entropy_is_in_range(self):
        roll = DiceRoller().roll(DiceExpression(count=50, sides=6))
        assert all(1 <= outcome <= 6 for outcome in roll.outcomes)


class TestRollInvariants:
    """Outcome count, range and total hold for arbitrary valid expressions."""

    def test_random_expressions(self):
        rng = random.Random(1234)
        roller = DiceRoller()
        for _ in range(200):
            expression = DiceExpression(
                count=rng.randint(1, 30),
                sides=rng.randint(1, 100),
                modifier=rng.randint(-20, 20),
            )
            roll = roller.roll(expression)

            assert len(roll.outcomes) == expression.count
            assert all(1 <= value <= expression.sides for value in roll.outcomes)
            assert roll.total == sum(roll.outcomes) + expression.modifier

    def test_one_sided_die_always_rolls_one(self):
        roll = DiceRoller().roll(DiceExpression(count=5, sides=1, modifier=2))
        assert roll.outcomes == [1, 1, 1, 1, 1]
        assert roll.total == 7


class TestRollDiceTool:
    """Tests for the roll_dice tool handler."""

    def test_tool_metadata(self):
        tool = roll_dice_tool(DiceRoller())
        assert tool.name == "roll_dice"
        assert "never generate random numbers" in tool.description
        schema = tool.schema()["input_schema"]
        assert {"notation", "count", "sides", "modifier"} <= set(schema["properties"])

    @pytest.mark.asyncio
    async def test_handler_rolls(self):
        tool = roll_dice_tool(DiceRoller(randbelow=_fixed_entropy(4, 5)))
        response = await tool.handler(CTX, RollDiceInput(count=2, sides=6, modifier=3))

        assert response.text == "Rolling 2d6+3: [4, 5] = 12"
        assert response.is_error is False

    @pytest.mark.asyncio
    async def test_handler_reports_invalid_notation(self):
        tool = roll_dice_tool(DiceRoller())
        response = await tool.handler(CTX, RollDiceInput(notation="banana"))

        assert response.is_error is True
        assert "Invalid dice notation 'banana'" in response.text
