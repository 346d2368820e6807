"""Phase engine that drives one running game through its timers."""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import replace
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from wolfchat import narration
from wolfchat.comms.broadcast import Broadcaster
from wolfchat.comms.session import Clock, Session, SessionRegistry
from wolfchat.config.schema import GameConfig
from wolfchat.engine.events import (
    EliminationEvent,
    GameEndEvent,
    GameEvent,
    PhaseChangeEvent,
    VoteResultEvent,
)
from wolfchat.engine.phase import Phase
from wolfchat.engine.records import GameRecord, GameStatus, PlayerRecord
from wolfchat.engine.tally import pick_night_victim, resolve_execution
from wolfchat.engine.timers import AsyncioScheduler, Scheduler, TimerHandle
from wolfchat.engine.victory import check_victory, role_reveal

if TYPE_CHECKING:
    from wolfchat.engine.manager import GameManager
    from wolfchat.storage.base import Stores

logger = logging.getLogger(__name__)

Step = Callable[[], Awaitable[None]]


class PhaseEngine:
    """State machine for a single game.

    ``prepare -> night -> day -> vote -> night -> ... -> ended``

    Every timer step and every public mutating call runs under
    :attr:`lock`, so transitions of one game never interleave.  Player
    actions that touch vote counters are expected to hold the same lock.

    Parameters
    ----------
    game:
        Snapshot of the game record this engine drives.
    session:
        Initial group session used for narration.
    stores:
        Game and player tables.
    manager:
        Registry the engine removes itself from when the game ends.
    config:
        Timings, session expiry and the day cap.
    scheduler:
        Timer source; defaults to the running asyncio loop.
    clock:
        Monotonic clock used to age group sessions.
    rng:
        Random source for night tie-breaks.
    event_listeners:
        Callables invoked for every :class:`GameEvent`.
    """

    def __init__(
        self,
        game: GameRecord,
        session: Session | None,
        *,
        stores: Stores,
        manager: GameManager | None = None,
        config: GameConfig | None = None,
        scheduler: Scheduler | None = None,
        clock: Clock = time.monotonic,
        rng: random.Random | None = None,
        event_listeners: list[Any] | None = None,
    ) -> None:
        self.stores = stores
        self.manager = manager
        self.config = config or GameConfig()
        self.scheduler = scheduler or AsyncioScheduler()
        self.rng = rng or random.Random()
        self.event_listeners: list[Any] = event_listeners or []
        self.registry = SessionRegistry(
            expiry_seconds=self.config.sessions.expiry_seconds, clock=clock
        )
        self.broadcaster = Broadcaster(self.registry)
        self.lock = asyncio.Lock()

        self._game = game
        self._phase = Phase.PREPARE
        self._day = 0
        self._timer: TimerHandle | None = None
        self._prepare_timer: TimerHandle | None = None
        self._epoch = 0
        self._started = False
        self._revoting = False
        self._torn_down = False

        self.registry.register_group(session)
        self._start_prepare_timeout()

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    @property
    def game_id(self) -> int:
        return self._game.id

    @property
    def day(self) -> int:
        return self._day

    def get_phase(self) -> Phase:
        return self._phase

    def get_game(self) -> GameRecord:
        return replace(self._game)

    def update_guild_session(self, session: Session | None) -> None:
        self.registry.refresh_group(session)

    def update_player_session(self, user_id: str, session: Session) -> None:
        self.registry.register_private(user_id, session)

    async def broadcast(
        self,
        message: str,
        private: bool = False,
        target_id: str | None = None,
    ) -> bool:
        return await self.broadcaster.broadcast(message, private, target_id)

    async def start(self) -> str:
        """Leave the lobby: announce the rules and open the role check."""
        async with self.lock:
            if self._phase is Phase.ENDED:
                return narration.GAME_OVER
            if self._started:
                return "The game has already started."
            self._started = True
            self._cancel_timers()
            await self._reload_game()

            message = narration.rules_text(self.config.timings)
            await self.broadcast(message)
            self._arm(self.config.timings.role_check, self._enter_night)
            logger.info("Game %d started", self.game_id)
            return message

    async def end_game(self) -> str:
        """Force the game to its terminal state.  Safe to call repeatedly."""
        async with self.lock:
            return await self._teardown()

    def add_listener(self, listener: Any) -> None:
        self.event_listeners.append(listener)

    # ------------------------------------------------------------------
    # Timer plumbing
    # ------------------------------------------------------------------

    def _start_prepare_timeout(self) -> None:
        if self._game.status != GameStatus.PREPARING:
            return
        self._arm(
            self.config.timings.prepare_timeout,
            self._prepare_timed_out,
            prepare=True,
        )

    def _arm(self, delay: float, step: Step, *, prepare: bool = False) -> None:
        """Replace any pending timer with one that runs *step* after *delay*."""
        self._cancel_timers()
        epoch = self._epoch

        async def fire() -> None:
            await self._run_step(epoch, step)

        handle = self.scheduler.schedule(delay, fire)
        if prepare:
            self._prepare_timer = handle
        else:
            self._timer = handle

    def _cancel_timers(self) -> None:
        for handle in (self._timer, self._prepare_timer):
            if handle is not None:
                handle.cancel()
        self._timer = None
        self._prepare_timer = None
        self._epoch += 1

    async def _run_step(self, epoch: int, step: Step) -> None:
        async with self.lock:
            if epoch != self._epoch or self._phase is Phase.ENDED:
                logger.debug("Game %d: stale timer ignored", self.game_id)
                return
            self._timer = None
            self._prepare_timer = None
            try:
                await step()
            except Exception:
                logger.exception(
                    "Game %d: phase step %s failed, ending game",
                    self.game_id,
                    getattr(step, "__name__", step),
                )
                await self._teardown()

    # ------------------------------------------------------------------
    # Phase steps
    # ------------------------------------------------------------------

    async def _prepare_timed_out(self) -> None:
        games = await self.stores.games.get({"id": self.game_id})
        if not games or games[0].status != GameStatus.PREPARING:
            return
        timeout = self.config.timings.prepare_timeout
        logger.info("Game %d: not started within %gs", self.game_id, timeout)
        await self.broadcast(narration.prepare_timeout_notice(timeout))
        self._emit(
            GameEndEvent(
                game_id=self.game_id,
                day=self._day,
                phase=self._phase,
                reason="Preparation timed out.",
            )
        )
        await self._teardown()

    async def _enter_night(self) -> None:
        self._set_phase(Phase.NIGHT)
        self._day += 1

        if self._day >= self.config.max_days:
            await self._force_end_max_days()
            return

        timings = self.config.timings
        await self.broadcast(narration.night_notice(timings))
        await self.broadcaster.broadcast_private_all(narration.NIGHT_PRIVATE_NUDGE)
        await self._reset_players(
            execution_votes=0, elimination_votes=0, has_acted=0
        )
        self._arm(timings.night, self._settle_night)

    async def _force_end_max_days(self) -> None:
        max_days = self.config.max_days
        logger.info("Game %d: reached %d days, forcing end", self.game_id, max_days)
        await self.broadcast(narration.max_days_notice(max_days))
        reveal = role_reveal(await self._load_players())
        await self.broadcast(narration.final_reveal(reveal))
        self._emit(
            GameEndEvent(
                game_id=self.game_id,
                day=self._day,
                phase=self._phase,
                reason=f"Game exceeded the maximum of {max_days} days.",
                roles=reveal,
            )
        )
        await self._teardown()

    async def _settle_night(self) -> None:
        players = await self._load_players()
        victim = pick_night_victim(players, self.rng)

        if victim is not None:
            await self.stores.players.set(victim.id, {"alive": 0})
            self._emit(self._elimination(victim, "wolf_kill"))
            await self.broadcast(narration.dawn_death(victim))
        else:
            await self.broadcast(narration.DAWN_PEACEFUL)

        if await self._check_game_end():
            return
        await self._enter_day()

    async def _enter_day(self) -> None:
        self._set_phase(Phase.DAY)
        timings = self.config.timings
        await self.broadcast(narration.day_notice(self._day, timings))
        self._arm(timings.day, self._enter_vote)

    async def _enter_vote(self) -> None:
        self._set_phase(Phase.VOTE)
        self._revoting = False
        await self._reset_players(execution_votes=0, has_acted=0)
        timings = self.config.timings
        await self.broadcast(narration.vote_notice(timings))
        self._arm(timings.vote, self._settle_vote)

    async def _settle_vote(self) -> None:
        players = await self._load_players()

        # Silence counts as abstaining.
        for player in players:
            if player.is_alive and not player.acted:
                await self.stores.players.set(player.id, {"has_acted": 1})

        outcome = resolve_execution(players)
        revote = outcome.tie and not self._revoting
        self._emit(
            VoteResultEvent(
                game_id=self.game_id,
                day=self._day,
                phase=self._phase,
                tally={
                    p.sequence_number: p.execution_votes
                    for p in players
                    if p.execution_votes
                },
                eliminated_id=outcome.executed.id if outcome.executed else None,
                tie=outcome.tie,
                revote=revote,
            )
        )

        if revote:
            self._revoting = True
            timings = self.config.timings
            await self.broadcast(narration.tie_notice(timings))
            await self._reset_players(execution_votes=0, has_acted=0)
            self._arm(timings.vote, self._settle_vote)
            return

        if outcome.executed is not None:
            victim = outcome.executed
            await self.stores.players.set(victim.id, {"alive": 0})
            self._emit(self._elimination(victim, "vote"))
            await self.broadcast(narration.executed(victim))
        elif outcome.tie:
            await self.broadcast(narration.SECOND_TIE)
        else:
            await self.broadcast(narration.NO_EXECUTION)

        if await self._check_game_end():
            return
        await self._enter_night()

    async def _check_game_end(self) -> bool:
        players = await self._load_players()
        result = check_victory(players)
        if result is None:
            return False

        # Teardown deletes the row right after; stores that audit updates
        # still see the outcome.
        try:
            await self.stores.games.set(self.game_id, {"winner_id": int(result.winner)})
        except Exception:
            logger.exception("Game %d: failed to record winner", self.game_id)

        reveal = role_reveal(players)
        logger.info("Game %d: %s win (%s)", self.game_id, result.winning_team, result.reason)
        await self.broadcast(narration.game_over(result, reveal))
        self._emit(
            GameEndEvent(
                game_id=self.game_id,
                day=self._day,
                phase=self._phase,
                winning_team=result.winning_team,
                reason=result.reason,
                roles=reveal,
            )
        )
        await self._teardown()
        return True

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def _teardown(self) -> str:
        """Cancel timers, delete the game's rows, say goodbye, deregister."""
        self._set_phase(Phase.ENDED)
        self._cancel_timers()
        if self._torn_down:
            return narration.GAME_OVER
        self._torn_down = True

        try:
            await self.stores.players.remove({"game_id": self.game_id})
            await self.stores.games.remove({"id": self.game_id})
            logger.info("Game %d: records removed", self.game_id)
        except Exception:
            logger.exception("Game %d: failed to remove records", self.game_id)

        await self.broadcast(narration.GAME_OVER)
        self.registry.clear()

        if self.manager is not None:
            self.manager.remove_game(self.game_id, self)
        return narration.GAME_OVER

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _set_phase(self, new_phase: Phase) -> None:
        old_phase = self._phase
        if old_phase is new_phase:
            return
        self._phase = new_phase
        logger.debug("Game %d: %s -> %s", self.game_id, old_phase.value, new_phase.value)
        self._emit(
            PhaseChangeEvent(
                game_id=self.game_id,
                day=self._day,
                phase=new_phase,
                old_phase=old_phase,
                new_phase=new_phase,
            )
        )

    def _emit(self, event: GameEvent) -> None:
        """Dispatch *event* to all registered listeners."""
        for listener in self.event_listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Event listener raised an exception")

    def _elimination(self, player: PlayerRecord, cause: str) -> EliminationEvent:
        return EliminationEvent(
            game_id=self.game_id,
            day=self._day,
            phase=self._phase,
            player_id=player.id,
            sequence_number=player.sequence_number,
            nickname=player.nickname,
            role=player.role,
            cause=cause,
        )

    async def _load_players(self) -> list[PlayerRecord]:
        return await self.stores.players.get({"game_id": self.game_id})

    async def _reset_players(self, **fields: int) -> None:
        for player in await self._load_players():
            await self.stores.players.set(player.id, fields)

    async def _reload_game(self) -> None:
        games = await self.stores.games.get({"id": self.game_id})
        if games:
            self._game = games[0]
