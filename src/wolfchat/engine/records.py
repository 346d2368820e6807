"""Persistent game and player records plus their integer encodings."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum


class GameStatus(IntEnum):
    """Lifecycle status stored on a game record."""

    ENDED = 0
    PREPARING = 1
    IN_PROGRESS = 2


class Winner(IntEnum):
    """Winner indicator stored on a game record."""

    NONE = 0
    WOLVES = 1
    VILLAGERS = 2


@dataclass
class GameRecord:
    """One row of the game table."""

    id: int
    group_id: str
    status: int = GameStatus.PREPARING
    player_count: int = 0
    creator_id: str = ""
    winner_id: int = Winner.NONE


@dataclass
class PlayerRecord:
    """One row of the player table.

    ``alive`` and ``has_acted`` are stored as ``0``/``1`` integers.
    """

    id: int
    user_id: str
    game_id: int
    sequence_number: int
    nickname: str
    role: int = 0
    alive: int = 1
    execution_votes: int = 0
    elimination_votes: int = 0
    has_acted: int = 0

    @property
    def is_alive(self) -> bool:
        return self.alive == 1

    @property
    def acted(self) -> bool:
        return self.has_acted == 1
