"""Registry of running phase engines, keyed by game id."""

from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Any

from wolfchat.comms.session import Clock, Session
from wolfchat.config.schema import GameConfig
from wolfchat.engine.game import PhaseEngine
from wolfchat.engine.records import GameRecord
from wolfchat.engine.timers import AsyncioScheduler, Scheduler
from wolfchat.storage.base import Stores

logger = logging.getLogger(__name__)

GAME_NOT_FOUND = "Game not found."


class GameManager:
    """Owns every running :class:`PhaseEngine`.

    The hosting application creates one manager at start-up and calls
    :meth:`shutdown` on exit.  Engines hold a back-reference only so
    they can deregister themselves when their game ends.
    """

    def __init__(
        self,
        stores: Stores,
        config: GameConfig | None = None,
        scheduler: Scheduler | None = None,
        clock: Clock = time.monotonic,
        rng: random.Random | None = None,
        event_listeners: list[Any] | None = None,
    ) -> None:
        self.stores = stores
        self.config = config or GameConfig()
        self.scheduler = scheduler or AsyncioScheduler()
        self.clock = clock
        self.rng = rng or random.Random(self.config.seed)
        self.event_listeners: list[Any] = event_listeners or []
        self._games: dict[int, PhaseEngine] = {}
        self._lock = asyncio.Lock()

    async def open_game(self, game_id: int, session: Session | None) -> str | None:
        """Register an engine for *game_id* without starting it.

        While the game record is still preparing, the engine arms the
        lobby timeout.  Returns an error message, or ``None`` on success.
        """
        async with self._lock:
            engine = self._games.get(game_id)
            if engine is not None:
                engine.update_guild_session(session)
                return None

            games = await self.stores.games.get({"id": game_id})
            if not games:
                return GAME_NOT_FOUND
            self._games[game_id] = self._create_engine(games[0], session)
        logger.debug("Registered engine for game %d", game_id)
        return None

    def _create_engine(self, game: GameRecord, session: Session | None) -> PhaseEngine:
        return PhaseEngine(
            game,
            session,
            stores=self.stores,
            manager=self,
            config=self.config,
            scheduler=self.scheduler,
            clock=self.clock,
            rng=random.Random(self.rng.getrandbits(64)),
            event_listeners=list(self.event_listeners),
        )

    async def start_game(self, game_id: int, session: Session | None) -> str | None:
        """Start the engine for *game_id*, creating it if needed.

        Returns an error message, or ``None`` on success.
        """
        error = await self.open_game(game_id, session)
        if error is not None:
            return error
        engine = self._games.get(game_id)
        if engine is None:
            return GAME_NOT_FOUND
        await engine.start()
        return None

    def get_game_state(self, game_id: int) -> PhaseEngine | None:
        return self._games.get(game_id)

    def remove_game(self, game_id: int, engine: PhaseEngine | None = None) -> None:
        """Forget the engine for *game_id*.

        When *engine* is given, only that exact instance is removed.
        """
        current = self._games.get(game_id)
        if current is None or (engine is not None and current is not engine):
            return
        del self._games[game_id]
        logger.debug("Removed engine for game %d", game_id)

    @property
    def running_game_ids(self) -> list[int]:
        return list(self._games)

    async def shutdown(self) -> None:
        """End every running game."""
        for engine in list(self._games.values()):
            await engine.end_game()
        self._games.clear()
