"""Local game simulation with random players and console sessions."""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from wolfchat.commands import GameCommands
from wolfchat.config.schema import GameConfig
from wolfchat.engine.events import (
    GameEndEvent,
    GameEvent,
    PhaseChangeEvent,
    VoteResultEvent,
)
from wolfchat.engine.manager import GameManager
from wolfchat.engine.phase import Phase
from wolfchat.engine.records import PlayerRecord
from wolfchat.roles import Role, is_wolf
from wolfchat.storage.base import Stores

logger = logging.getLogger(__name__)

GROUP_ID = "sim-group"

_NICKNAMES = ["Ash", "Birch", "Cedar", "Dove", "Elm", "Fern", "Gale", "Hazel"]

# Canned lines for the discussion phase.
_CANNED_RESPONSES = [
    "I think we should discuss more before voting.",
    "I'm not sure who to trust right now.",
    "Let's hear from everyone before jumping to conclusions.",
    "Something feels off, but I can't put my finger on it.",
    "I'm a villager. Let's work together.",
]

_SUSPICION_TEMPLATES = [
    "I'm suspicious of {target}.",
    "I think {target} might be a werewolf.",
    "{target} has been awfully quiet. That's suspicious.",
]


@dataclass(frozen=True)
class ConsoleSession:
    """Session that writes every message to the console.

    Sessions compare equal by channel name only.
    """

    channel: str
    echo: Callable[[str], Any] = field(default=print, compare=False)

    async def send(self, text: str) -> None:
        self.echo(f"[{self.channel}] {text}")


@dataclass
class SimulationResult:
    """Outcome of one simulated game."""

    game_id: int
    winning_team: str
    reason: str
    days: int
    roles: dict[str, str]
    duration: float
    events: list[GameEvent] = field(default_factory=list)


class Simulation:
    """Plays one full game with random players on in-memory stores.

    Parameters
    ----------
    config:
        Game configuration; use short timings for quick runs.
    seed:
        Seed for player decisions (roles use ``config.seed``).
    echo:
        Output function for narration and chatter.
    """

    def __init__(
        self,
        config: GameConfig,
        seed: int | None = None,
        echo: Callable[[str], Any] = print,
    ) -> None:
        self.config = config
        self.rng = random.Random(seed)
        self.echo = echo
        self.events: list[GameEvent] = []
        self._end_event: GameEndEvent | None = None
        self._done = asyncio.Event()
        self._tasks: set[asyncio.Task[None]] = set()
        self._users: dict[str, str] = {}

    async def run(self) -> SimulationResult:
        """Create, fill and start a game, then wait until it ends."""
        start = time.monotonic()
        self.stores = Stores.in_memory()
        self.manager = GameManager(
            self.stores, self.config, event_listeners=[self._on_event]
        )
        self.commands = GameCommands(self.stores, self.manager, self.config)
        group = ConsoleSession("group", self.echo)

        nicknames = _NICKNAMES[: self.config.num_players]
        self._users = {f"user{i}": nick for i, nick in enumerate(nicknames, start=1)}
        users = list(self._users)

        self.echo(await self.commands.create_game(GROUP_ID, users[0], nicknames[0], group))
        for user_id in users[1:]:
            self.echo(
                await self.commands.join_game(GROUP_ID, user_id, self._users[user_id], group)
            )

        error = await self.commands.start_game(GROUP_ID, users[0], group)
        if error:
            raise RuntimeError(f"Simulation could not start: {error}")

        game_id = self.manager.running_game_ids[0]
        engine = self.manager.get_game_state(game_id)
        for user_id, nick in self._users.items():
            await self.commands.show_role(user_id, ConsoleSession(f"dm:{nick}", self.echo))

        await self._done.wait()
        # Teardown finishes inside the step that ended the game.
        if engine is not None:
            async with engine.lock:
                pass
        for task in list(self._tasks):
            task.cancel()

        end = self._end_event
        return SimulationResult(
            game_id=game_id,
            winning_team=end.winning_team if end else "",
            reason=end.reason if end else "",
            days=engine.day if engine else 0,
            roles=dict(end.roles) if end else {},
            duration=time.monotonic() - start,
            events=list(self.events),
        )

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    def _on_event(self, event: GameEvent) -> None:
        self.events.append(event)
        if isinstance(event, GameEndEvent):
            self._end_event = event
        elif isinstance(event, PhaseChangeEvent):
            if event.new_phase is Phase.ENDED:
                self._done.set()
            elif event.new_phase is Phase.NIGHT:
                self._spawn(self._night_actions())
            elif event.new_phase is Phase.DAY:
                self._spawn(self._discussion())
            elif event.new_phase is Phase.VOTE:
                self._spawn(self._votes())
        elif isinstance(event, VoteResultEvent) and event.revote:
            self._spawn(self._votes())

    def _spawn(self, coro: Any) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # ------------------------------------------------------------------
    # Random players
    # ------------------------------------------------------------------

    async def _players(self) -> list[PlayerRecord]:
        return await self.stores.players.get({"user_id": list(self._users)})

    async def _night_actions(self) -> None:
        players = await self._players()
        alive = [p for p in players if p.is_alive]
        for player in alive:
            if is_wolf(player.role):
                targets = [p for p in alive if not is_wolf(p.role)]
                if targets:
                    victim = self.rng.choice(targets)
                    reply = await self.commands.kill(
                        player.user_id, str(victim.sequence_number), self._dm(player)
                    )
                    logger.debug("%s kills %s: %s", player.nickname, victim.nickname, reply)
            elif player.role == Role.SEER:
                targets = [p for p in alive if p.id != player.id]
                if targets:
                    suspect = self.rng.choice(targets)
                    await self._dm(player).send(
                        await self.commands.inspect(
                            player.user_id, suspect.nickname, self._dm(player)
                        )
                    )

    async def _discussion(self) -> None:
        alive = [p for p in await self._players() if p.is_alive]
        for player in alive:
            others = [p for p in alive if p.id != player.id]
            if others and self.rng.random() < 0.5:
                line = self.rng.choice(_SUSPICION_TEMPLATES).format(
                    target=self.rng.choice(others).nickname
                )
            else:
                line = self.rng.choice(_CANNED_RESPONSES)
            self.echo(f"<{player.nickname}> {line}")

    async def _votes(self) -> None:
        alive = [p for p in await self._players() if p.is_alive]
        group = ConsoleSession("group", self.echo)
        for player in alive:
            others = [p for p in alive if p.id != player.id]
            if others and self.rng.random() < 0.8:
                suspect = self.rng.choice(others)
                reply = await self.commands.vote(
                    GROUP_ID, player.user_id, str(suspect.sequence_number), group
                )
                self.echo(f"<{player.nickname}> /vote {suspect.sequence_number} -> {reply}")
            else:
                reply = await self.commands.abstain(GROUP_ID, player.user_id, group)
                self.echo(f"<{player.nickname}> /abstain -> {reply}")

    def _dm(self, player: PlayerRecord) -> ConsoleSession:
        return ConsoleSession(f"dm:{player.nickname}", self.echo)
