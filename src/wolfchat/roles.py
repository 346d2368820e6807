"""Role definitions for the fixed four-player setup."""

from __future__ import annotations

import random
from enum import IntEnum
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from wolfchat.config.schema import RoleSlot


class Team:
    """Team constants."""

    VILLAGE = "village"
    WEREWOLF = "werewolf"


class Role(IntEnum):
    """Role codes as stored on player records."""

    UNASSIGNED = 0
    WOLF = 1
    VILLAGER = 2
    SEER = 3

    @property
    def label(self) -> str:
        return _LABELS[self]

    @property
    def team(self) -> str:
        return Team.WEREWOLF if self is Role.WOLF else Team.VILLAGE

    @property
    def night_tip(self) -> str:
        """Command hint shown to this role during the night."""
        return _NIGHT_TIPS[self]


_LABELS = {
    Role.UNASSIGNED: "Unassigned",
    Role.WOLF: "Werewolf",
    Role.VILLAGER: "Villager",
    Role.SEER: "Seer",
}

_NIGHT_TIPS = {
    Role.UNASSIGNED: "Roles have not been dealt yet.",
    Role.WOLF: "Use /kill [number|nickname] to choose tonight's victim.",
    Role.VILLAGER: "You are a plain villager and cannot act at night.",
    Role.SEER: "Use /inspect [number|nickname] to learn a player's side.",
}

# Names accepted in configuration files.
_CONFIG_NAMES = {
    "werewolf": Role.WOLF,
    "wolf": Role.WOLF,
    "villager": Role.VILLAGER,
    "seer": Role.SEER,
}


def role_from_name(name: str) -> Role:
    """Resolve a configuration role name to a :class:`Role`."""
    try:
        return _CONFIG_NAMES[name.lower()]
    except KeyError:
        raise KeyError(f"Unknown role: {name!r}") from None


def role_label(code: int) -> str:
    """Display label for a stored role code, tolerating unknown codes."""
    try:
        return Role(code).label
    except ValueError:
        return Role.UNASSIGNED.label


def is_wolf(code: int) -> bool:
    return code == Role.WOLF


def build_deck(slots: Iterable[RoleSlot]) -> list[Role]:
    """Expand role slots into a flat deck, one entry per player."""
    deck: list[Role] = []
    for slot in slots:
        deck.extend([role_from_name(slot.role)] * slot.count)
    return deck


def deal_roles(slots: Iterable[RoleSlot], rng: random.Random) -> list[Role]:
    """Return the deck in a uniformly random order."""
    deck = build_deck(slots)
    rng.shuffle(deck)
    return deck
