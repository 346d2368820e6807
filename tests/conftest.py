"""Shared fakes and fixtures: sessions, clock, scheduler and stores."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

import pytest

from wolfchat.config.schema import GameConfig
from wolfchat.engine.manager import GameManager
from wolfchat.engine.records import GameRecord, GameStatus, PlayerRecord
from wolfchat.engine.timers import TimerCallback
from wolfchat.roles import Role
from wolfchat.storage.base import Stores
from wolfchat.storage.memory import InMemoryStore


# ======================================================================
# Fakes
# ======================================================================


@dataclass(frozen=True)
class RecordingSession:
    """Session that records what it was asked to send.

    Equality (and therefore channel identity) is by ``channel`` only.
    """

    channel: str
    sent: list[str] = field(default_factory=list, compare=False)
    fail: bool = field(default=False, compare=False)

    async def send(self, text: str) -> None:
        if self.fail:
            raise ConnectionError(f"channel {self.channel} is gone")
        self.sent.append(text)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ManualTimer:
    def __init__(self, delay: float, callback: TimerCallback) -> None:
        self.delay = delay
        self.callback = callback
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    def cancelled(self) -> bool:
        return self._cancelled


class ManualScheduler:
    """Scheduler whose timers only fire when the test says so."""

    def __init__(self) -> None:
        self.timers: list[ManualTimer] = []

    def schedule(self, delay: float, callback: TimerCallback) -> ManualTimer:
        timer = ManualTimer(delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def active(self) -> list[ManualTimer]:
        return [t for t in self.timers if not t.cancelled()]

    async def fire_next(self) -> ManualTimer:
        """Fire the oldest armed timer and wait for its step to finish."""
        active = self.active
        assert active, "no timer is armed"
        timer = active[0]
        self.timers.remove(timer)
        await timer.callback()
        return timer


class SpyStore(InMemoryStore):
    """In-memory store that records every update."""

    def __init__(self, record_type: type) -> None:
        super().__init__(record_type)
        self.updates: list[tuple[int, dict[str, Any]]] = []

    async def set(self, record_id: int, fields: Mapping[str, Any]) -> None:
        self.updates.append((record_id, dict(fields)))
        await super().set(record_id, fields)


# ======================================================================
# Fixtures
# ======================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def stores() -> Stores:
    return Stores(games=SpyStore(GameRecord), players=SpyStore(PlayerRecord))


@pytest.fixture
def config() -> GameConfig:
    return GameConfig(seed=7)


@pytest.fixture
def group() -> RecordingSession:
    return RecordingSession("group-1")


@pytest.fixture
def manager(
    stores: Stores,
    config: GameConfig,
    scheduler: ManualScheduler,
    clock: FakeClock,
) -> GameManager:
    return GameManager(stores, config, scheduler=scheduler, clock=clock)


@pytest.fixture
def make_game(stores: Stores):
    """Factory that seeds a game with players holding fixed roles.

    Players get sequence numbers 1..N in the order of *roles* and user
    ids ``u1``..``uN``.
    """

    async def _make(
        roles: tuple[Role, ...] = (Role.WOLF, Role.VILLAGER, Role.VILLAGER, Role.SEER),
        status: GameStatus = GameStatus.IN_PROGRESS,
        group_id: str = "g1",
    ) -> tuple[GameRecord, list[PlayerRecord]]:
        game = await stores.games.create(
            {
                "group_id": group_id,
                "status": status,
                "player_count": len(roles),
                "creator_id": "u1",
            }
        )
        players = []
        for idx, role in enumerate(roles, start=1):
            players.append(
                await stores.players.create(
                    {
                        "user_id": f"u{idx}",
                        "game_id": game.id,
                        "sequence_number": idx,
                        "nickname": f"P{idx}",
                        "role": int(role),
                    }
                )
            )
        return game, players

    return _make
