"""Victory condition checks."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from wolfchat.engine.records import PlayerRecord, Winner
from wolfchat.roles import Team, is_wolf, role_label


@dataclass(frozen=True)
class VictoryResult:
    """Outcome of a finished game."""

    winner: Winner
    winning_team: str
    reason: str


def check_victory(players: Iterable[PlayerRecord]) -> VictoryResult | None:
    """Return a :class:`VictoryResult` if the game is over, otherwise ``None``.

    Victory conditions:
    * **Village wins** -- no werewolf is alive.
    * **Werewolf wins** -- alive werewolves >= alive non-wolves.
    """
    alive_wolves = 0
    alive_others = 0
    for player in players:
        if not player.is_alive:
            continue
        if is_wolf(player.role):
            alive_wolves += 1
        else:
            alive_others += 1

    if alive_wolves == 0:
        return VictoryResult(
            winner=Winner.VILLAGERS,
            winning_team=Team.VILLAGE,
            reason="All werewolves have been eliminated.",
        )
    if alive_wolves >= alive_others:
        return VictoryResult(
            winner=Winner.WOLVES,
            winning_team=Team.WEREWOLF,
            reason="Werewolves equal or outnumber the villagers.",
        )
    return None


def role_reveal(players: Iterable[PlayerRecord]) -> dict[str, str]:
    """Map each nickname to its role label, in sequence order."""
    ordered = sorted(players, key=lambda p: p.sequence_number)
    return {p.nickname: role_label(p.role) for p in ordered}
