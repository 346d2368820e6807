"""Tests for wolfchat.engine.game -- the phase engine state machine."""

from __future__ import annotations

import logging

import pytest

from wolfchat import narration
from wolfchat.config.schema import GameConfig
from wolfchat.engine.events import (
    EliminationEvent,
    GameEndEvent,
    PhaseChangeEvent,
    VoteResultEvent,
)
from wolfchat.engine.game import PhaseEngine
from wolfchat.engine.manager import GameManager
from wolfchat.engine.phase import Phase
from wolfchat.engine.records import GameRecord, GameStatus, PlayerRecord, Winner
from wolfchat.roles import Role
from wolfchat.storage.base import Stores

from conftest import FakeClock, ManualScheduler, RecordingSession, SpyStore


# ======================================================================
# Helpers
# ======================================================================


async def _open(manager: GameManager, make_game, group, **kwargs) -> PhaseEngine:
    game, _ = await make_game(**kwargs)
    assert await manager.open_game(game.id, group) is None
    engine = manager.get_game_state(game.id)
    assert engine is not None
    return engine


async def _players(stores: Stores, engine: PhaseEngine) -> dict[int, PlayerRecord]:
    rows = await stores.players.get({"game_id": engine.game_id})
    return {p.sequence_number: p for p in rows}


async def _set(stores: Stores, engine: PhaseEngine, seq: int, **fields) -> None:
    players = await _players(stores, engine)
    await stores.players.set(players[seq].id, fields)


async def _to_night(engine: PhaseEngine, scheduler: ManualScheduler) -> None:
    await engine.start()
    await scheduler.fire_next()
    assert engine.get_phase() is Phase.NIGHT


async def _to_vote(engine: PhaseEngine, scheduler: ManualScheduler) -> None:
    await _to_night(engine, scheduler)
    await scheduler.fire_next()  # peaceful night -> day
    assert engine.get_phase() is Phase.DAY
    await scheduler.fire_next()  # day -> vote
    assert engine.get_phase() is Phase.VOTE


# ======================================================================
# Prepare phase
# ======================================================================


class TestPrepare:
    @pytest.mark.asyncio
    async def test_preparing_game_arms_timeout(
        self, manager, make_game, group, scheduler: ManualScheduler
    ) -> None:
        engine = await _open(manager, make_game, group, status=GameStatus.PREPARING)
        assert engine.get_phase() is Phase.PREPARE
        assert [t.delay for t in scheduler.active] == [300]

    @pytest.mark.asyncio
    async def test_in_progress_game_arms_nothing(
        self, manager, make_game, group, scheduler: ManualScheduler
    ) -> None:
        await _open(manager, make_game, group)
        assert scheduler.active == []

    @pytest.mark.asyncio
    async def test_timeout_ends_game(
        self, manager, make_game, group, stores: Stores, scheduler: ManualScheduler
    ) -> None:
        engine = await _open(manager, make_game, group, status=GameStatus.PREPARING)
        await scheduler.fire_next()

        assert engine.get_phase() is Phase.ENDED
        assert manager.get_game_state(engine.game_id) is None
        assert await stores.games.get() == []
        assert await stores.players.get() == []
        assert narration.prepare_timeout_notice(300) in group.sent
        assert group.sent[-1] == narration.GAME_OVER

    @pytest.mark.asyncio
    async def test_timeout_ignored_once_game_left_preparing(
        self, manager, make_game, group, stores: Stores, scheduler: ManualScheduler
    ) -> None:
        engine = await _open(manager, make_game, group, status=GameStatus.PREPARING)
        await stores.games.set(engine.game_id, {"status": GameStatus.IN_PROGRESS})
        await scheduler.fire_next()

        assert engine.get_phase() is Phase.PREPARE
        assert manager.get_game_state(engine.game_id) is engine

    @pytest.mark.asyncio
    async def test_start_replaces_timeout_with_role_check(
        self, manager, make_game, group, scheduler: ManualScheduler
    ) -> None:
        engine = await _open(manager, make_game, group, status=GameStatus.PREPARING)
        message = await engine.start()

        assert message == narration.rules_text(manager.config.timings)
        assert group.sent == [message]
        assert [t.delay for t in scheduler.active] == [30]
        assert engine.get_phase() is Phase.PREPARE

    @pytest.mark.asyncio
    async def test_start_twice_rejected(
        self, manager, make_game, group, scheduler: ManualScheduler
    ) -> None:
        engine = await _open(manager, make_game, group)
        await engine.start()
        assert await engine.start() == "The game has already started."
        assert len(scheduler.active) == 1


# ======================================================================
# Night
# ======================================================================


class TestNight:
    @pytest.mark.asyncio
    async def test_role_check_leads_to_first_night(
        self, manager, make_game, group, scheduler: ManualScheduler
    ) -> None:
        engine = await _open(manager, make_game, group)
        await _to_night(engine, scheduler)

        assert engine.day == 1
        assert narration.night_notice(manager.config.timings) in group.sent
        assert [t.delay for t in scheduler.active] == [120]

    @pytest.mark.asyncio
    async def test_night_resets_counters(
        self, manager, make_game, group, stores: Stores, scheduler: ManualScheduler
    ) -> None:
        engine = await _open(manager, make_game, group)
        await _set(stores, engine, 2, execution_votes=3, elimination_votes=2, has_acted=1)
        await _to_night(engine, scheduler)

        for player in (await _players(stores, engine)).values():
            assert player.execution_votes == 0
            assert player.elimination_votes == 0
            assert player.has_acted == 0

    @pytest.mark.asyncio
    async def test_private_sessions_get_nudged(
        self, manager, make_game, group, scheduler: ManualScheduler
    ) -> None:
        engine = await _open(manager, make_game, group)
        dm = RecordingSession("dm-u1")
        engine.update_player_session("u1", dm)
        await _to_night(engine, scheduler)
        assert dm.sent == [narration.NIGHT_PRIVATE_NUDGE]

    @pytest.mark.asyncio
    async def test_wolf_target_dies_and_is_named(
        self, manager, make_game, group, stores: Stores, scheduler: ManualScheduler
    ) -> None:
        engine = await _open(manager, make_game, group)
        await _to_night(engine, scheduler)
        await _set(stores, engine, 2, elimination_votes=1)
        await scheduler.fire_next()

        players = await _players(stores, engine)
        assert players[2].alive == 0
        assert all(players[n].alive == 1 for n in (1, 3, 4))
        assert narration.dawn_death(players[2]) in group.sent
        assert "P2 (#2)" in narration.dawn_death(players[2])
        assert engine.get_phase() is Phase.DAY

    @pytest.mark.asyncio
    async def test_peaceful_night(
        self, manager, make_game, group, stores: Stores, scheduler: ManualScheduler
    ) -> None:
        engine = await _open(manager, make_game, group)
        await _to_night(engine, scheduler)
        await scheduler.fire_next()

        assert narration.DAWN_PEACEFUL in group.sent
        assert all(p.alive == 1 for p in (await _players(stores, engine)).values())
        assert engine.get_phase() is Phase.DAY
        assert narration.day_notice(1, manager.config.timings) in group.sent

    @pytest.mark.asyncio
    async def test_max_days_forces_end_without_settlement(
        self, stores: Stores, make_game, group, clock: FakeClock
    ) -> None:
        scheduler = ManualScheduler()
        manager = GameManager(
            stores, GameConfig(max_days=1), scheduler=scheduler, clock=clock
        )
        engine = await _open(manager, make_game, group)
        await engine.start()
        await scheduler.fire_next()

        assert engine.get_phase() is Phase.ENDED
        assert narration.max_days_notice(1) in group.sent
        assert any(m.startswith("Final roles:\nP1: Werewolf") for m in group.sent)
        assert not any(m.startswith("Dawn breaks") for m in group.sent)
        assert scheduler.active == []
        assert manager.get_game_state(engine.game_id) is None
        assert await stores.players.get() == []

    @pytest.mark.asyncio
    async def test_max_days_counts_full_rounds(
        self, stores: Stores, make_game, group, clock: FakeClock
    ) -> None:
        scheduler = ManualScheduler()
        manager = GameManager(
            stores, GameConfig(max_days=2), scheduler=scheduler, clock=clock
        )
        engine = await _open(manager, make_game, group)
        await _to_vote(engine, scheduler)
        await scheduler.fire_next()  # nobody voted -> night 2 -> cap

        assert engine.day == 2
        assert engine.get_phase() is Phase.ENDED
        assert narration.NO_EXECUTION in group.sent
        assert narration.max_days_notice(2) in group.sent


# ======================================================================
# Day and vote
# ======================================================================


class TestVote:
    @pytest.mark.asyncio
    async def test_vote_entry_resets_execution_votes(
        self, manager, make_game, group, stores: Stores, scheduler: ManualScheduler
    ) -> None:
        engine = await _open(manager, make_game, group)
        await _to_night(engine, scheduler)
        await scheduler.fire_next()
        await _set(stores, engine, 3, execution_votes=2, has_acted=1)
        await scheduler.fire_next()

        assert engine.get_phase() is Phase.VOTE
        players = await _players(stores, engine)
        assert players[3].execution_votes == 0
        assert players[3].has_acted == 0
        assert narration.vote_notice(manager.config.timings) in group.sent
        assert [t.delay for t in scheduler.active] == [30]

    @pytest.mark.asyncio
    async def test_silent_players_marked_as_abstaining(
        self, manager, make_game, group, stores: Stores, scheduler: ManualScheduler
    ) -> None:
        engine = await _open(manager, make_game, group)
        await _to_vote(engine, scheduler)
        players = await _players(stores, engine)
        await stores.players.set(players[1].id, {"has_acted": 1})
        await stores.players.set(players[4].id, {"alive": 0})
        updates = stores.players.updates
        updates.clear()

        await scheduler.fire_next()

        marked = {rid for rid, fields in updates if fields == {"has_acted": 1}}
        assert marked == {players[2].id, players[3].id}

    @pytest.mark.asyncio
    async def test_tie_triggers_revote(
        self, manager, make_game, group, stores: Stores, scheduler: ManualScheduler
    ) -> None:
        events: list = []
        engine = await _open(manager, make_game, group)
        engine.add_listener(events.append)
        await _to_vote(engine, scheduler)
        await _set(stores, engine, 1, execution_votes=1, has_acted=1)
        await _set(stores, engine, 2, execution_votes=1, has_acted=1)

        await scheduler.fire_next()

        assert engine.get_phase() is Phase.VOTE
        players = await _players(stores, engine)
        assert all(p.execution_votes == 0 for p in players.values())
        assert all(p.has_acted == 0 for p in players.values())
        assert all(p.alive == 1 for p in players.values())
        assert narration.tie_notice(manager.config.timings) in group.sent
        assert [t.delay for t in scheduler.active] == [30]

        (result,) = [e for e in events if isinstance(e, VoteResultEvent)]
        assert result.tie is True
        assert result.revote is True
        assert result.tally == {1: 1, 2: 1}

    @pytest.mark.asyncio
    async def test_second_tie_falls_through_to_night(
        self, manager, make_game, group, stores: Stores, scheduler: ManualScheduler
    ) -> None:
        engine = await _open(manager, make_game, group)
        await _to_vote(engine, scheduler)
        for _ in range(2):
            await _set(stores, engine, 1, execution_votes=1)
            await _set(stores, engine, 2, execution_votes=1)
            await scheduler.fire_next()

        assert narration.SECOND_TIE in group.sent
        assert engine.get_phase() is Phase.NIGHT
        assert engine.day == 2
        assert all(p.alive == 1 for p in (await _players(stores, engine)).values())

    @pytest.mark.asyncio
    async def test_unique_maximum_is_executed(
        self, manager, make_game, group, stores: Stores, scheduler: ManualScheduler
    ) -> None:
        engine = await _open(manager, make_game, group)
        await _to_vote(engine, scheduler)
        await _set(stores, engine, 3, execution_votes=2)
        await _set(stores, engine, 4, execution_votes=1)
        await scheduler.fire_next()

        players = await _players(stores, engine)
        assert players[3].alive == 0
        assert narration.executed(players[3]) in group.sent
        # one wolf against two others: the game goes on
        assert engine.get_phase() is Phase.NIGHT
        assert engine.day == 2


# ======================================================================
# Game end
# ======================================================================


class TestGameEnd:
    @pytest.mark.asyncio
    async def test_executing_the_wolf_lets_villagers_win(
        self, manager, make_game, group, stores: Stores, scheduler: ManualScheduler
    ) -> None:
        events: list = []
        engine = await _open(manager, make_game, group)
        engine.add_listener(events.append)
        await _to_vote(engine, scheduler)
        await _set(stores, engine, 1, execution_votes=3)
        await scheduler.fire_next()

        assert engine.get_phase() is Phase.ENDED
        assert any(m.startswith("Game over! The villagers win!") for m in group.sent)
        assert "P1: Werewolf" in next(m for m in group.sent if m.startswith("Game over!"))
        assert (engine.game_id, {"winner_id": int(Winner.VILLAGERS)}) in stores.games.updates
        assert manager.get_game_state(engine.game_id) is None
        assert await stores.games.get() == []
        assert await stores.players.get() == []
        assert scheduler.active == []

        (end,) = [e for e in events if isinstance(e, GameEndEvent)]
        assert end.winning_team == "village"
        assert end.roles["P4"] == "Seer"

    @pytest.mark.asyncio
    async def test_wolves_win_at_parity(
        self, manager, make_game, group, stores: Stores, scheduler: ManualScheduler
    ) -> None:
        engine = await _open(manager, make_game, group)
        await _to_night(engine, scheduler)
        await _set(stores, engine, 2, elimination_votes=1)
        await scheduler.fire_next()  # P2 dies -> day
        await scheduler.fire_next()  # vote
        await _set(stores, engine, 3, execution_votes=1)
        await scheduler.fire_next()  # P3 executed -> 1 wolf vs 1

        assert engine.get_phase() is Phase.ENDED
        assert any(m.startswith("Game over! The werewolves win!") for m in group.sent)
        assert (engine.game_id, {"winner_id": int(Winner.WOLVES)}) in stores.games.updates

    @pytest.mark.asyncio
    async def test_night_kill_can_end_game(
        self, manager, make_game, group, stores: Stores, scheduler: ManualScheduler
    ) -> None:
        engine = await _open(
            manager, make_game, group, roles=(Role.WOLF, Role.VILLAGER, Role.SEER)
        )
        await _to_night(engine, scheduler)
        await _set(stores, engine, 3, elimination_votes=1)
        await scheduler.fire_next()

        assert engine.get_phase() is Phase.ENDED
        assert any("werewolves win" in m for m in group.sent)


# ======================================================================
# Teardown and timers
# ======================================================================


class TestTeardown:
    @pytest.mark.asyncio
    async def test_end_game_is_idempotent(
        self, manager, make_game, group, stores: Stores, scheduler: ManualScheduler
    ) -> None:
        engine = await _open(manager, make_game, group)
        await _to_night(engine, scheduler)

        assert await engine.end_game() == narration.GAME_OVER
        assert await engine.end_game() == narration.GAME_OVER
        assert engine.get_phase() is Phase.ENDED
        assert group.sent.count(narration.GAME_OVER) == 1
        assert scheduler.active == []
        assert manager.get_game_state(engine.game_id) is None

    @pytest.mark.asyncio
    async def test_cancelled_timer_never_runs(
        self, manager, make_game, group, scheduler: ManualScheduler
    ) -> None:
        engine = await _open(manager, make_game, group)
        await engine.start()
        (timer,) = scheduler.active
        await engine.end_game()

        assert timer.cancelled()
        await timer.callback()
        assert engine.get_phase() is Phase.ENDED
        assert engine.day == 0

    @pytest.mark.asyncio
    async def test_superseded_timer_is_ignored(
        self, manager, make_game, group, scheduler: ManualScheduler
    ) -> None:
        engine = await _open(manager, make_game, group)
        await engine.start()
        (timer,) = scheduler.active
        await timer.callback()
        await timer.callback()

        assert engine.day == 1
        assert engine.get_phase() is Phase.NIGHT

    @pytest.mark.asyncio
    async def test_store_failure_does_not_block_teardown(
        self, make_game, group, clock: FakeClock, caplog: pytest.LogCaptureFixture
    ) -> None:
        class BrokenRemove(SpyStore):
            async def remove(self, criteria):
                raise RuntimeError("database is down")

        stores = Stores(games=SpyStore(GameRecord), players=BrokenRemove(PlayerRecord))
        scheduler = ManualScheduler()
        manager = GameManager(stores, GameConfig(), scheduler=scheduler, clock=clock)
        game = await stores.games.create(
            {"group_id": "g1", "status": GameStatus.IN_PROGRESS, "creator_id": "u1"}
        )
        await manager.open_game(game.id, group)
        engine = manager.get_game_state(game.id)

        with caplog.at_level(logging.ERROR, logger="wolfchat.engine.game"):
            assert await engine.end_game() == narration.GAME_OVER
        assert "failed to remove records" in caplog.text
        assert narration.GAME_OVER in group.sent
        assert manager.get_game_state(game.id) is None

    @pytest.mark.asyncio
    async def test_failing_step_ends_game(
        self, make_game, group, clock: FakeClock
    ) -> None:
        class FlakyStore(SpyStore):
            broken = False

            async def get(self, criteria=None):
                if self.broken:
                    raise RuntimeError("read failed")
                return await super().get(criteria)

        players = FlakyStore(PlayerRecord)
        stores = Stores(games=SpyStore(GameRecord), players=players)
        scheduler = ManualScheduler()
        manager = GameManager(stores, GameConfig(), scheduler=scheduler, clock=clock)
        game = await stores.games.create(
            {"group_id": "g1", "status": GameStatus.IN_PROGRESS, "creator_id": "u1"}
        )
        await manager.open_game(game.id, group)
        engine = manager.get_game_state(game.id)
        await _to_night(engine, scheduler)

        players.broken = True
        await scheduler.fire_next()

        assert engine.get_phase() is Phase.ENDED
        assert manager.get_game_state(game.id) is None
        assert scheduler.active == []


class TestResilience:
    @pytest.mark.asyncio
    async def test_broadcast_failure_does_not_stop_transitions(
        self, manager, make_game, scheduler: ManualScheduler
    ) -> None:
        broken = RecordingSession("group", fail=True)
        engine = await _open(manager, make_game, broken)
        await _to_night(engine, scheduler)
        await scheduler.fire_next()
        assert engine.get_phase() is Phase.DAY

    @pytest.mark.asyncio
    async def test_listener_errors_are_swallowed(
        self, manager, make_game, group, scheduler: ManualScheduler
    ) -> None:
        def explode(event):
            raise ValueError("listener bug")

        engine = await _open(manager, make_game, group)
        engine.add_listener(explode)
        await _to_night(engine, scheduler)
        assert engine.day == 1

    @pytest.mark.asyncio
    async def test_phase_events_follow_the_game(
        self, manager, make_game, group, stores: Stores, scheduler: ManualScheduler
    ) -> None:
        events: list = []
        engine = await _open(manager, make_game, group)
        engine.add_listener(events.append)
        await _to_night(engine, scheduler)
        await _set(stores, engine, 4, elimination_votes=1)
        await scheduler.fire_next()
        await scheduler.fire_next()

        phases = [e.new_phase for e in events if isinstance(e, PhaseChangeEvent)]
        assert phases == [Phase.NIGHT, Phase.DAY, Phase.VOTE]
        (death,) = [e for e in events if isinstance(e, EliminationEvent)]
        assert death.sequence_number == 4
        assert death.cause == "wolf_kill"
        assert death.role == Role.SEER


class TestSessions:
    @pytest.mark.asyncio
    async def test_guild_session_refresh_deduplicates(
        self, manager, make_game, group
    ) -> None:
        engine = await _open(manager, make_game, group)
        engine.update_guild_session(RecordingSession(group.channel))
        engine.update_guild_session(RecordingSession("other"))
        channels = [e.session.channel for e in engine.registry.group_entries]
        assert channels == [group.channel, "other"]

    @pytest.mark.asyncio
    async def test_get_game_returns_snapshot(self, manager, make_game, group) -> None:
        engine = await _open(manager, make_game, group)
        snapshot = engine.get_game()
        snapshot.creator_id = "someone-else"
        assert engine.get_game().creator_id == "u1"
