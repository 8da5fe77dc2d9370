"""
Dice notation engine and the roll_dice tool.

Rolls use the `secrets` module so outcomes can't be predicted or replayed by
the model or anyone watching: the model has to treat them as ground truth.
"""

from __future__ import annotations

import re
import secrets
from typing import Callable

from pydantic import BaseModel, Field

from gamemaster.tools.base import Tool, ToolContext, ToolResponse

_SIDES_AND_MODIFIER = re.compile(r"(?P<sides>[+-]?[0-9]+)(?P<modifier>[+-][0-9]+)?")
_LEADING_NUMBER = re.compile(r"[+-]?[0-9]+")
_ASCII_DIGITS = re.compile(r"[0-9]+")

# Numbers in notation are capped at this many digits
MAX_NUMBER_DIGITS = 9


class InvalidDiceNotation(ValueError):
    """Raised when a dice expression can't be evaluated."""


class DiceExpression(BaseModel):
    """count d sides + modifier."""

    count: int = Field(default=1, ge=1)
    sides: int = Field(ge=1)
    modifier: int = 0

    @property
    def notation(self) -> str:
        text = f"{self.count}d{self.sides}"
        if self.modifier:
            text += f"{self.modifier:+d}"
        return text


class DiceRoll(BaseModel):
    expression: DiceExpression
    outcomes: list[int]
    total: int

    def describe(self) -> str:
        text = f"Rolling {self.expression.notation}: {self.outcomes} = {self.total}"
        if self.expression.count == 1 and self.expression.sides == 20:
            if self.outcomes[0] == 20:
                text += " (natural 20!)"
            elif self.outcomes[0] == 1:
                text += " (natural 1!)"
        return text


def build_expression(count: int | None, sides: int | None, modifier: int | None = 0) -> DiceExpression:
    """
    Build an expression from structured parts.

    A missing or non-positive count falls back to 1. Sides are mandatory.

    Raises:
        InvalidDiceNotation: If sides is missing or not a positive integer
    """
    if sides is None:
        raise InvalidDiceNotation("number of sides is required")
    if sides < 1:
        raise InvalidDiceNotation("sides must be a positive integer")
    if count is None or count < 1:
        count = 1
    return DiceExpression(count=count, sides=sides, modifier=modifier or 0)


def parse_notation(notation: str) -> DiceExpression:
    """
    Parse informal notation like '2d6+3', 'd20', '1d8 - 1'.

    Raises:
        InvalidDiceNotation: If the 'd' separator is missing, or the sides
                             or modifier aren't integers
    """
    text = re.sub(r"\s+", "", notation).lower()
    if "d" not in text:
        raise InvalidDiceNotation("missing 'd' separator")

    count_text, _, rest = text.partition("d")
    if not rest:
        raise InvalidDiceNotation("missing number of sides")

    match = _SIDES_AND_MODIFIER.fullmatch(rest)
    if match is None:
        if _LEADING_NUMBER.match(rest) is None:
            raise InvalidDiceNotation("sides must be a positive integer")
        raise InvalidDiceNotation("modifier must be an integer like +3 or -2")

    count = _to_int(count_text, "count") if _ASCII_DIGITS.fullmatch(count_text) else None
    modifier = _to_int(match["modifier"], "modifier") if match["modifier"] else 0
    return build_expression(count, _to_int(match["sides"], "sides"), modifier)


def _to_int(text: str, part: str) -> int:
    if len(text.lstrip("+-")) > MAX_NUMBER_DIGITS:
        raise InvalidDiceNotation(f"{part} has more than {MAX_NUMBER_DIGITS} digits")
    try:
        return int(text)
    except ValueError as e:
        raise InvalidDiceNotation(f"{part} must be an integer") from e


class DiceRoller:
    """
    Evaluates dice expressions.

    Args:
        randbelow: Uniform integer source over [0, n). Defaults to
                   secrets.randbelow; tests inject a deterministic one.
        max_dice: Largest count a single roll may use
    """

    def __init__(
        self,
        randbelow: Callable[[int], int] = secrets.randbelow,
        max_dice: int = 1000,
    ):
        self._randbelow = randbelow
        self._max_dice = max_dice

    def roll(self, expression: DiceExpression) -> DiceRoll:
        if expression.count > self._max_dice:
            raise InvalidDiceNotation(f"at most {self._max_dice} dice can be rolled at once")
        outcomes = [self._randbelow(expression.sides) + 1 for _ in range(expression.count)]
        return DiceRoll(
            expression=expression,
            outcomes=outcomes,
            total=sum(outcomes) + expression.modifier,
        )

    def evaluate(
        self,
        notation: str | None = None,
        count: int | None = None,
        sides: int | None = None,
        modifier: int | None = 0,
    ) -> str:
        """
        Roll from notation or structured parts and describe the result.

        Notation wins when both are given. Never raises for bad input: the
        problem comes back as text the model can narrate around.
        """
        source = notation if notation else f"{count or 1}d{'?' if sides is None else sides}"
        try:
            if notation:
                expression = parse_notation(notation)
            else:
                expression = build_expression(count, sides, modifier)
            return self.roll(expression).describe()
        except InvalidDiceNotation as e:
            return f"Invalid dice notation '{source}': {e}"


class RollDiceInput(BaseModel):
    notation: str | None = Field(
        default=None,
        description="Dice notation such as '2d6+3' or 'd20'. Use this or count/sides/modifier.",
    )
    count: int | None = Field(default=None, description="Number of dice to roll (e.g. 2 for 2d6)")
    sides: int | None = Field(default=None, description="Sides per die (e.g. 20 for d20)")
    modifier: int = Field(
        default=0, description="Added to total (e.g. 5 for +5, -2 for penalty). Default 0."
    )


def roll_dice_tool(roller: DiceRoller) -> Tool[RollDiceInput]:
    async def roll_dice(_: ToolContext, query: RollDiceInput) -> ToolResponse:
        text = roller.evaluate(
            notation=query.notation,
            count=query.count,
            sides=query.sides,
            modifier=query.modifier,
        )
        return ToolResponse(text=text, is_error=text.startswith("Invalid"))

    return Tool(
        name="roll_dice",
        description=(
            "Roll dice. Specify the number of dice, sides per die, and an optional "
            "modifier, or pass notation like '2d6+3'. Always call this; never generate "
            "random numbers yourself."
        ),
        input_model=RollDiceInput,
        handler=roll_dice,
    )
