"""Narration texts sent to the group and to private channels."""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable, Mapping

if TYPE_CHECKING:
    from wolfchat.config.schema import TimingConfig
    from wolfchat.engine.records import PlayerRecord
    from wolfchat.engine.victory import VictoryResult

GAME_OVER = "Game over."
DAWN_PEACEFUL = "Dawn breaks. It was a peaceful night, nobody died."
NIGHT_PRIVATE_NUDGE = "Night has fallen! Send /role to see the commands available to you."
NO_EXECUTION = "Voting is over. Nobody was executed."
SECOND_TIE = "The re-vote is tied as well. Nobody was executed."

_TEAM_NAMES = {"village": "The villagers", "werewolf": "The werewolves"}


def _secs(value: float) -> str:
    return f"{value:g}s"


def rules_text(timings: TimingConfig) -> str:
    return (
        f"The game begins! Message me privately within {_secs(timings.role_check)} "
        "to check your role.\n"
        "How to play:\n"
        "1. Every player sends /role to me in a private chat\n"
        f"2. Night falls after {_secs(timings.role_check)}\n"
        "3. Werewolves use /kill in private\n"
        "4. The seer uses /inspect in private\n"
        "5. During the day, discuss in the group\n"
        "6. During the vote, use /vote in the group"
    )


def night_notice(timings: TimingConfig) -> str:
    return (
        "Night falls! Werewolves and the seer, make your moves "
        f"({_secs(timings.night)})."
    )


def dawn_death(player: PlayerRecord) -> str:
    return (
        f"Dawn breaks. {player.nickname} (#{player.sequence_number}) "
        "died during the night."
    )


def day_notice(day: int, timings: TimingConfig) -> str:
    return (
        f"Day {day}: discussion time. Voting starts in {_secs(timings.day)}.\n"
        "Talk it over in the group, and be careful not to give yourself away!"
    )


def vote_notice(timings: TimingConfig) -> str:
    return (
        "Voting begins! Use /vote [number|nickname] to vote, or /abstain to "
        f"pass ({_secs(timings.vote)}).\n"
        "Notes:\n"
        "1. Living players must vote or abstain\n"
        "2. Dead players cannot vote\n"
        "3. Send /role privately to see the player list\n"
        "4. Not voting before time runs out counts as abstaining"
    )


def tie_notice(timings: TimingConfig) -> str:
    return f"The vote is tied! Starting a second round of voting ({_secs(timings.vote)})."


def executed(player: PlayerRecord) -> str:
    return (
        f"Voting is over. {player.nickname} (#{player.sequence_number}) "
        "was executed."
    )


def format_reveal(reveal: Mapping[str, str]) -> str:
    return "\n".join(f"{nickname}: {label}" for nickname, label in reveal.items())


def game_over(result: VictoryResult, reveal: Mapping[str, str]) -> str:
    team = _TEAM_NAMES.get(result.winning_team, result.winning_team)
    return f"Game over! {team} win!\nRoles:\n{format_reveal(reveal)}"


def max_days_notice(max_days: int) -> str:
    return f"The game has lasted {max_days} days and is forced to end."


def final_reveal(reveal: Mapping[str, str]) -> str:
    return f"Final roles:\n{format_reveal(reveal)}"


def forced_end(reveal: Mapping[str, str]) -> str:
    return f"The game was ended by its creator.\nRoles:\n{format_reveal(reveal)}"


def prepare_timeout_notice(timeout: float) -> str:
    return f"The game was not started within {_secs(timeout)} and has been closed."


def player_list(players: Iterable[PlayerRecord]) -> str:
    lines = []
    for p in sorted(players, key=lambda p: p.sequence_number):
        marker = "" if p.is_alive else " (dead)"
        lines.append(f"{p.sequence_number}. {p.nickname}{marker}")
    return "\n".join(lines)
