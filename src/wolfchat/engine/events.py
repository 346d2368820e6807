"""Game event hierarchy for pub/sub observation."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from wolfchat.engine.phase import Phase


@dataclass(frozen=True)
class GameEvent:
    """Base game event."""

    game_id: int = 0
    day: int = 0
    phase: Phase = Phase.PREPARE
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PhaseChangeEvent(GameEvent):
    """The game phase changed."""

    old_phase: Phase = Phase.PREPARE
    new_phase: Phase = Phase.PREPARE


@dataclass(frozen=True)
class EliminationEvent(GameEvent):
    """A player was removed from play."""

    player_id: int = 0
    sequence_number: int = 0
    nickname: str = ""
    role: int = 0
    cause: str = ""  # "wolf_kill" or "vote"


@dataclass(frozen=True)
class VoteResultEvent(GameEvent):
    """Result of a day vote tally, keyed by sequence number."""

    tally: dict[int, int] = field(default_factory=dict)
    eliminated_id: int | None = None
    tie: bool = False
    revote: bool = False


@dataclass(frozen=True)
class GameEndEvent(GameEvent):
    """The game ended.  ``winning_team`` is empty when nobody won."""

    winning_team: str = ""
    reason: str = ""
    roles: dict[str, str] = field(default_factory=dict)
