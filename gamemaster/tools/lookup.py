"""
Knowledge lookup against the D&D 5e SRD API.

The API returns sparse, loosely-typed JSON: fields go missing, and the same
field can be a list in one record and a number in another. Every read goes
through RecordView, which renders anything absent or oddly shaped as
"unknown" instead of failing the lookup. Partial stats are more useful to
the model than none.

Failures (API unreachable, record not found) come back as plain text for the
model to narrate around; nothing here raises into the game loop.
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from typing import Any, Callable
from urllib.parse import quote

import httpx
from pydantic import BaseModel, Field

from gamemaster.tools.base import Tool, ToolContext, ToolResponse

logger = logging.getLogger(__name__)

UNKNOWN = "unknown"
_LEVEL = re.compile(r"[0-9]{1,4}")

ABILITIES = (
    ("STR", "strength"),
    ("DEX", "dexterity"),
    ("CON", "constitution"),
    ("INT", "intelligence"),
    ("WIS", "wisdom"),
    ("CHA", "charisma"),
)


def slugify(name: str) -> str:
    """Canonical API key for a free-text name: lowercase, spaces to hyphens."""
    return name.strip().lower().replace(" ", "-")


def _scalar(value: Any) -> str | None:
    if isinstance(value, bool):
        return "yes" if value else "no"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (str, int, float)):
        text = str(value).strip()
        return text or None
    return None


class RecordView:
    """Read-only accessor over a raw record that never raises on bad shapes."""

    def __init__(self, data: Any):
        self._data = data if isinstance(data, dict) else {}

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def raw(self, key: str) -> Any:
        return self._data.get(key)

    def text(self, key: str) -> str:
        """Scalar field as text, or the placeholder."""
        value = _scalar(self._data.get(key))
        return UNKNOWN if value is None else value

    def optional_text(self, key: str) -> str | None:
        return _scalar(self._data.get(key))

    def flag(self, key: str) -> bool:
        return self._data.get(key) is True

    def nested(self, key: str) -> RecordView:
        return RecordView(self._data.get(key))

    def records(self, key: str) -> list[RecordView]:
        """List field of objects; non-object entries still appear, as empty views."""
        value = self._data.get(key)
        if not isinstance(value, list):
            return []
        return [RecordView(item) for item in value]

    def strings(self, key: str) -> list[str]:
        value = self._data.get(key)
        if not isinstance(value, list):
            return []
        return [text for text in (_scalar(item) for item in value) if text is not None]

    def mapping(self, key: str) -> dict[str, str]:
        """Object field of scalars, as text; mistyped entries are dropped."""
        value = self._data.get(key)
        if not isinstance(value, dict):
            return {}
        result = {}
        for k, v in value.items():
            text = _scalar(v)
            if text is not None:
                result[str(k)] = text
        return result


def _sort_levels(levels: dict[str, str]) -> list[tuple[str, str]]:
    def key(item: tuple[str, str]) -> tuple[int, str]:
        level = item[0]
        if _LEVEL.fullmatch(level):
            return (int(level), level)
        return (10_000, level)

    return sorted(levels.items(), key=key)


def format_armor_class(record: RecordView) -> str:
    """
    Armor class is a list of {type, value} objects in the current API and a
    bare number in older dumps. Anything else is unknown.
    """
    raw = record.raw("armor_class")
    if isinstance(raw, list):
        entries = record.records("armor_class")
        if entries:
            return entries[0].text("value")
        return UNKNOWN
    return record.text("armor_class")


def format_speed(record: RecordView) -> str:
    speeds = record.mapping("speed")
    if not speeds:
        return UNKNOWN
    return ", ".join(f"{mode} {value}" for mode, value in speeds.items())


def _format_entries(title: str, entries: list[RecordView]) -> str:
    lines = [f"\n{title}:"]
    for entry in entries:
        lines.append(f"- {entry.text('name')}: {entry.text('desc')}")
    return "\n".join(lines)


def format_monster(record: RecordView) -> str:
    abilities = " ".join(f"{label} {record.text(key)}" for label, key in ABILITIES)
    summary = (
        f"{record.text('name')} ({record.text('size')} {record.text('type')}, "
        f"CR {record.text('challenge_rating')}) | AC {format_armor_class(record)} | "
        f"HP {record.text('hit_points')} ({record.text('hit_dice')})\n"
        f"{abilities} | Speed: {format_speed(record)}"
    )

    for title, key in (
        ("Actions", "actions"),
        ("Special Abilities", "special_abilities"),
        ("Legendary Actions", "legendary_actions"),
    ):
        entries = record.records(key)
        if entries:
            summary += _format_entries(title, entries)

    return summary


def format_spell(record: RecordView) -> str:
    level = record.optional_text("level")
    level_text = "Cantrip" if level == "0" else f"Level {level or UNKNOWN}"
    school = record.nested("school").text("name")

    header = (
        f"{record.text('name')} ({level_text} {school}) | {record.text('casting_time')} | "
        f"Range: {record.text('range')} | Duration: {record.text('duration')}"
    )
    if record.flag("concentration"):
        header += " | Concentration"
    if record.flag("ritual"):
        header += " | Ritual"

    components = record.strings("components")
    lines = [header, f"Components: {', '.join(components) if components else UNKNOWN}"]
    if "material" in record:
        lines[-1] += f" ({record.text('material')})"

    desc = record.strings("desc")
    lines.append(desc[0] if desc else UNKNOWN)

    higher = record.strings("higher_level")
    if higher:
        lines.append(f"At higher levels: {higher[0]}")

    damage = record.nested("damage")
    damage_type = damage.nested("damage_type").optional_text("name")
    for title, key in (("slot", "damage_at_slot_level"), ("character level", "damage_at_character_level")):
        levels = damage.mapping(key)
        if levels:
            label = f"Damage ({damage_type}) by {title}:" if damage_type else f"Damage by {title}:"
            lines.append(label + "".join(f" L{lvl}={dice}" for lvl, dice in _sort_levels(levels)))

    return "\n".join(lines)


class RecordKind(str, Enum):
    MONSTER = "monster"
    SPELL = "spell"

    @property
    def endpoint(self) -> str:
        return f"{self.value}s"

    @property
    def label(self) -> str:
        return self.value.capitalize()

    @property
    def formatter(self) -> Callable[[RecordView], str]:
        return format_monster if self is RecordKind.MONSTER else format_spell


class KnowledgeLookup:
    """
    Fetches and summarizes SRD records.

    Args:
        base_url: API root, e.g. https://www.dnd5eapi.co/api
        client: Shared httpx client. If None, one is created and owned here.
        timeout: Request timeout in seconds (only used for an owned client)
        max_summary_chars: Summaries longer than this are truncated
    """

    def __init__(
        self,
        base_url: str = "https://www.dnd5eapi.co/api",
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
        max_summary_chars: int = 2000,
    ):
        self._base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._max_summary_chars = max_summary_chars

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def fetch(self, kind: RecordKind, slug: str) -> httpx.Response:
        url = f"{self._base_url}/{kind.endpoint}/{quote(slug, safe='')}"
        logger.debug(f"GET {url}")
        return await self._client.get(url, headers={"Accept": "application/json"})

    async def lookup(self, kind: RecordKind, name: str) -> str:
        """
        Resolve a name to a record and render its summary.

        Returns:
            The summary, or a not-found / unreachable message. Never raises
            for network or data problems.
        """
        slug = slugify(name)
        if not slug:
            return f"{kind.label} '{name}' not found"

        try:
            response = await self.fetch(kind, slug)
        except httpx.HTTPError as e:
            logger.warning(f"{kind.label} lookup for '{slug}' failed: {e}")
            return "Failed to reach the D&D 5e API"

        if response.status_code == 404:
            return f"{kind.label} '{name}' not found"
        if not response.is_success:
            logger.warning(f"{kind.label} lookup for '{slug}' returned HTTP {response.status_code}")
            return f"The D&D 5e API returned HTTP {response.status_code} for {kind.value} '{name}'"

        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            logger.warning(f"{kind.label} lookup for '{slug}' returned a non-object body")
            return f"The D&D 5e API returned an unreadable record for {kind.value} '{name}'"

        return self._truncate(kind.formatter(RecordView(data)))

    def _truncate(self, summary: str) -> str:
        if len(summary) <= self._max_summary_chars:
            return summary
        return summary[: self._max_summary_chars - 1].rstrip() + "…"


class MonsterQuery(BaseModel):
    name: str = Field(description="Monster name, e.g. owlbear, adult red dragon, goblin")


class SpellQuery(BaseModel):
    name: str = Field(description="Spell name, e.g. fireball, magic missile, shield")


def lookup_tools(lookup: KnowledgeLookup) -> list[Tool]:
    async def lookup_monster(_: ToolContext, query: MonsterQuery) -> ToolResponse:
        return ToolResponse(text=await lookup.lookup(RecordKind.MONSTER, query.name))

    async def lookup_spell(_: ToolContext, query: SpellQuery) -> ToolResponse:
        return ToolResponse(text=await lookup.lookup(RecordKind.SPELL, query.name))

    return [
        Tool(
            name="lookup_monster",
            description=(
                "Look up a D&D 5e monster by name to get its real stats. Always call "
                "this before using any monster in the game."
            ),
            input_model=MonsterQuery,
            handler=lookup_monster,
        ),
        Tool(
            name="lookup_spell",
            description=(
                "Look up a D&D 5e spell by name to get its real details. Always call "
                "this before resolving a spell."
            ),
            input_model=SpellQuery,
            handler=lookup_spell,
        ),
    ]
