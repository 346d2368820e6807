"""Vote tallying for night eliminations and day executions."""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Iterable

from wolfchat.engine.records import PlayerRecord


@dataclass(frozen=True)
class TallyResult:
    """Highest vote count and every player holding it."""

    max_votes: int = 0
    candidates: tuple[PlayerRecord, ...] = ()

    @property
    def tie(self) -> bool:
        return len(self.candidates) > 1


@dataclass(frozen=True)
class ExecutionOutcome:
    """What a day vote decided."""

    tally: TallyResult
    executed: PlayerRecord | None = None

    @property
    def tie(self) -> bool:
        return self.tally.tie


def tally_votes(players: Iterable[PlayerRecord], counter: str) -> TallyResult:
    """Find the players sharing the strict maximum of *counter*.

    A count of zero never wins: with no votes cast the candidate set is
    empty.
    """
    max_votes = 0
    candidates: list[PlayerRecord] = []
    for player in players:
        count = getattr(player, counter)
        if count > max_votes:
            max_votes = count
            candidates = [player]
        elif count == max_votes and max_votes > 0:
            candidates.append(player)
    return TallyResult(max_votes=max_votes, candidates=tuple(candidates))


def pick_night_victim(
    players: Iterable[PlayerRecord],
    rng: random.Random,
) -> PlayerRecord | None:
    """Return the wolves' victim, breaking ties uniformly at random."""
    result = tally_votes(players, "elimination_votes")
    if not result.candidates:
        return None
    return rng.choice(result.candidates)


def resolve_execution(players: Iterable[PlayerRecord]) -> ExecutionOutcome:
    """Execute only a unique top-voted player; a tie executes nobody."""
    result = tally_votes(players, "execution_votes")
    if len(result.candidates) == 1:
        return ExecutionOutcome(tally=result, executed=result.candidates[0])
    return ExecutionOutcome(tally=result)
