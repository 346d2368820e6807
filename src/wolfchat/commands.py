"""Command layer: player-facing operations over the stores and the manager.

Every command returns the reply text for the issuer (or ``None`` when
the engine already narrated the outcome).  A rejected command changes
nothing.
"""

from __future__ import annotations

import logging
import random
from contextlib import asynccontextmanager
from typing import AsyncIterator

from wolfchat import narration
from wolfchat.comms.session import Session
from wolfchat.config.schema import GameConfig
from wolfchat.engine.game import PhaseEngine
from wolfchat.engine.manager import GameManager
from wolfchat.engine.phase import Phase
from wolfchat.engine.records import GameRecord, GameStatus, PlayerRecord
from wolfchat.engine.victory import role_reveal
from wolfchat.roles import Role, deal_roles, is_wolf, role_label
from wolfchat.storage.base import Stores

logger = logging.getLogger(__name__)

ACTIVE = (GameStatus.PREPARING, GameStatus.IN_PROGRESS)

NOT_IN_GAME = "You are not in a game."
ALREADY_IN_GAME = "You are already in a game."
ALREADY_ACTED = "You have already acted this round."
NO_PREPARING_GAME = "There is no game waiting for players in this group."
NO_ACTIVE_GAME = "There is no game running in this group."
TARGET_NOT_FOUND = "Player not found."
TARGET_DEAD = "That player is already dead."
DEAD_ACTOR = "You are dead and cannot act."

_PHASE_NAMES = {
    Phase.PREPARE: "preparation",
    Phase.NIGHT: "night",
    Phase.DAY: "day discussion",
    Phase.VOTE: "voting",
    Phase.ENDED: "game over",
}

_PHASE_HINTS = {
    Phase.PREPARE: "Waiting for players. Send /join [nickname] to join.",
    Phase.NIGHT: "It is night. Waiting for the werewolves and the seer.",
    Phase.DAY: "It is day. Discuss in the group.",
    Phase.VOTE: "It is voting time. Use /vote [number|nickname].",
}


class GameCommands:
    """Reference command layer used by chat adapters and the simulator."""

    def __init__(
        self,
        stores: Stores,
        manager: GameManager,
        config: GameConfig | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.stores = stores
        self.manager = manager
        self.config = config or manager.config
        self.rng = rng or random.Random(self.config.seed)

    # ------------------------------------------------------------------
    # Lobby
    # ------------------------------------------------------------------

    async def create_game(
        self,
        group_id: str,
        user_id: str,
        nickname: str,
        session: Session | None = None,
    ) -> str:
        await self._refresh_group(group_id, session)
        if not nickname:
            return "Please enter your nickname."
        if await self._player_of(user_id) is not None:
            return ALREADY_IN_GAME
        if await self._game_in_group(group_id, ACTIVE) is not None:
            return "A game is already running in this group."

        game = await self.stores.games.create(
            {
                "group_id": group_id,
                "status": GameStatus.PREPARING,
                "player_count": 1,
                "creator_id": user_id,
            }
        )
        await self.stores.players.create(
            {
                "user_id": user_id,
                "game_id": game.id,
                "sequence_number": 1,
                "nickname": nickname,
            }
        )
        await self.manager.open_game(game.id, session)
        logger.info("Game %d created in group %s by %s", game.id, group_id, user_id)
        return (
            f"Game created! Your nickname is {nickname}.\n"
            "Waiting for other players... (send /join [nickname] to join)"
        )

    async def join_game(
        self,
        group_id: str,
        user_id: str,
        nickname: str,
        session: Session | None = None,
    ) -> str:
        await self._refresh_group(group_id, session)
        if not nickname:
            return "Please enter your nickname."
        if await self._player_of(user_id) is not None:
            return ALREADY_IN_GAME

        game = await self._game_in_group(group_id, GameStatus.PREPARING)
        if game is None:
            return NO_PREPARING_GAME
        capacity = self.config.num_players
        if game.player_count >= capacity:
            return "The game is full."
        if await self.stores.players.get({"game_id": game.id, "nickname": nickname}):
            return "That nickname is already taken."

        count = game.player_count + 1
        await self.stores.players.create(
            {
                "user_id": user_id,
                "game_id": game.id,
                "sequence_number": count,
                "nickname": nickname,
            }
        )
        await self.stores.games.set(game.id, {"player_count": count})
        return f"Joined! Your nickname is {nickname}.\nPlayers: {count}/{capacity}"

    async def start_game(
        self,
        group_id: str,
        user_id: str,
        session: Session | None = None,
    ) -> str | None:
        await self._refresh_group(group_id, session)
        game = await self._game_in_group(group_id, GameStatus.PREPARING)
        if game is None:
            return NO_PREPARING_GAME
        if game.creator_id != user_id:
            return "Only the creator can start the game."
        if game.player_count < self.config.num_players:
            return "Not enough players to start."

        players = sorted(
            await self.stores.players.get({"game_id": game.id}),
            key=lambda p: p.sequence_number,
        )
        deck = deal_roles(self.config.roles, self.rng)
        for player, role in zip(players, deck):
            await self.stores.players.set(player.id, {"role": int(role)})
        await self.stores.games.set(game.id, {"status": GameStatus.IN_PROGRESS})

        # The engine narrates the rules itself.
        return await self.manager.start_game(game.id, session)

    # ------------------------------------------------------------------
    # Private commands
    # ------------------------------------------------------------------

    async def show_role(self, user_id: str, session: Session) -> str:
        player = await self._player_of(user_id)
        if player is None:
            return NOT_IN_GAME

        engine = self.manager.get_game_state(player.game_id)
        lines = [f"Your role: {role_label(player.role)}"]
        if engine is not None:
            engine.update_player_session(user_id, session)
            phase = engine.get_phase()
            lines.append(f"Current phase: {_PHASE_NAMES[phase]}")
            if phase is Phase.NIGHT:
                lines.append(_role_of(player).night_tip)
            elif phase is Phase.VOTE:
                lines.append("Use /vote [number|nickname] in the group to vote.")

        players = await self.stores.players.get({"game_id": player.game_id})
        lines.append("")
        lines.append("Players:")
        lines.append(narration.player_list(players))
        return "\n".join(lines)

    async def kill(self, user_id: str, target: str, session: Session) -> str:
        if not target:
            return "Please name the player to kill (number or nickname)."
        player = await self._player_of(user_id)
        if player is None:
            return NOT_IN_GAME
        if not is_wolf(player.role):
            return "You are not a werewolf."

        engine = self.manager.get_game_state(player.game_id)
        if engine is None or engine.get_phase() is not Phase.NIGHT:
            return "It is not the werewolves' turn."
        engine.update_player_session(user_id, session)

        async with self._round_action(engine, user_id, Phase.NIGHT) as (actor, error):
            if error:
                return error
            victim = await self._find_target(player.game_id, target)
            if victim is None:
                return TARGET_NOT_FOUND
            if not victim.is_alive:
                return TARGET_DEAD
            await self.stores.players.set(
                victim.id, {"elimination_votes": victim.elimination_votes + 1}
            )
            await self.stores.players.set(actor.id, {"has_acted": 1})
        return "Your choice has been recorded."

    async def inspect(self, user_id: str, target: str, session: Session) -> str:
        if not target:
            return "Please name the player to inspect (number or nickname)."
        player = await self._player_of(user_id)
        if player is None:
            return NOT_IN_GAME
        if player.role != Role.SEER:
            return "You are not the seer."

        engine = self.manager.get_game_state(player.game_id)
        if engine is None or engine.get_phase() is not Phase.NIGHT:
            return "It is not the seer's turn."
        engine.update_player_session(user_id, session)

        async with self._round_action(engine, user_id, Phase.NIGHT) as (actor, error):
            if error:
                return error
            suspect = await self._find_target(player.game_id, target)
            if suspect is None:
                return TARGET_NOT_FOUND
            await self.stores.players.set(actor.id, {"has_acted": 1})
        side = "a werewolf" if is_wolf(suspect.role) else "on the good side"
        return f"{suspect.nickname} is {side}."

    # ------------------------------------------------------------------
    # Voting
    # ------------------------------------------------------------------

    async def vote(
        self,
        group_id: str,
        user_id: str,
        target: str,
        session: Session | None = None,
    ) -> str:
        await self._refresh_group(group_id, session)
        if not target:
            return "Please name the player to vote for (number or nickname)."
        engine, error = await self._voting_engine(user_id)
        if error:
            return error

        async with self._round_action(engine, user_id, Phase.VOTE) as (actor, error):
            if error:
                return error
            suspect = await self._find_target(actor.game_id, target)
            if suspect is None:
                return TARGET_NOT_FOUND
            if not suspect.is_alive:
                return TARGET_DEAD
            await self.stores.players.set(
                suspect.id, {"execution_votes": suspect.execution_votes + 1}
            )
            await self.stores.players.set(actor.id, {"has_acted": 1})
        return "Vote recorded."

    async def abstain(
        self,
        group_id: str,
        user_id: str,
        session: Session | None = None,
    ) -> str:
        await self._refresh_group(group_id, session)
        engine, error = await self._voting_engine(user_id)
        if error:
            return error

        async with self._round_action(engine, user_id, Phase.VOTE) as (actor, error):
            if error:
                return error
            await self.stores.players.set(actor.id, {"has_acted": 1})
        return "You abstained."

    # ------------------------------------------------------------------
    # Group management
    # ------------------------------------------------------------------

    async def end_game(
        self,
        group_id: str,
        user_id: str,
        session: Session | None = None,
    ) -> str:
        await self._refresh_group(group_id, session)
        game = await self._game_in_group(group_id, ACTIVE)
        if game is None:
            return NO_ACTIVE_GAME
        if game.creator_id != user_id:
            return "Only the creator can end the game."

        players = await self.stores.players.get({"game_id": game.id})
        result = narration.forced_end(role_reveal(players))

        engine = self.manager.get_game_state(game.id)
        if engine is not None:
            await engine.end_game()
        else:
            await self.stores.players.remove({"game_id": game.id})
            await self.stores.games.remove({"id": game.id})
        logger.info("Game %d ended by its creator", game.id)
        return result

    async def game_info(
        self,
        group_id: str,
        user_id: str,
        session: Session | None = None,
    ) -> str:
        await self._refresh_group(group_id, session)
        game = await self._game_in_group(group_id, ACTIVE)
        if game is None:
            return NO_ACTIVE_GAME

        players = await self.stores.players.get({"game_id": game.id})
        engine = self.manager.get_game_state(game.id)
        phase = engine.get_phase() if engine is not None else None
        creator = next((p for p in players if p.user_id == game.creator_id), None)
        status = "preparing" if game.status == GameStatus.PREPARING else "in progress"

        lines = [
            "Current game:",
            f"Status: {status}",
            f"Phase: {_PHASE_NAMES[phase] if phase else 'unknown'}",
            f"Creator: {creator.nickname if creator else 'unknown'}",
            f"Players: {game.player_count}/{self.config.num_players}",
            "",
            "Players:",
            narration.player_list(players),
        ]
        if phase in _PHASE_HINTS:
            lines += ["", _PHASE_HINTS[phase]]

        lines += ["", "Commands:", "/role - check your role (private chat)"]
        if phase is Phase.VOTE:
            lines.append("/vote [number|nickname] - vote to execute a player")
        if game.creator_id == user_id:
            if game.status == GameStatus.PREPARING:
                lines.append("/start - start the game")
            lines.append("/end - force the game to end")
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _round_action(
        self,
        engine: PhaseEngine,
        user_id: str,
        phase: Phase,
    ) -> AsyncIterator[tuple[PlayerRecord | None, str | None]]:
        """Hold the engine lock and re-validate the actor for this round.

        Yields ``(actor, None)`` when the actor may act, otherwise
        ``(None, reason)``.
        """
        async with engine.lock:
            actor = await self._player_of(user_id)
            if engine.get_phase() is not phase or actor is None:
                yield None, "That action is no longer possible in this phase."
            elif not actor.is_alive:
                yield None, DEAD_ACTOR
            elif actor.acted:
                yield None, ALREADY_ACTED
            else:
                yield actor, None

    async def _voting_engine(
        self, user_id: str
    ) -> tuple[PhaseEngine | None, str | None]:
        player = await self._player_of(user_id)
        if player is None:
            return None, NOT_IN_GAME
        if not player.is_alive:
            return None, "You are dead and cannot vote."
        engine = self.manager.get_game_state(player.game_id)
        if engine is None or engine.get_phase() is not Phase.VOTE:
            return None, "It is not voting time."
        return engine, None

    async def _player_of(self, user_id: str) -> PlayerRecord | None:
        players = await self.stores.players.get({"user_id": user_id})
        return players[0] if players else None

    async def _game_in_group(
        self, group_id: str, status: GameStatus | tuple[GameStatus, ...]
    ) -> GameRecord | None:
        games = await self.stores.games.get({"group_id": group_id, "status": status})
        return games[0] if games else None

    async def _find_target(self, game_id: int, target: str) -> PlayerRecord | None:
        target = target.strip()
        if target.isdigit():
            criteria = {"game_id": game_id, "sequence_number": int(target)}
        else:
            criteria = {"game_id": game_id, "nickname": target}
        players = await self.stores.players.get(criteria)
        return players[0] if players else None

    async def _refresh_group(self, group_id: str, session: Session | None) -> None:
        if session is None:
            return
        game = await self._game_in_group(group_id, ACTIVE)
        if game is None:
            return
        engine = self.manager.get_game_state(game.id)
        if engine is not None:
            engine.update_guild_session(session)


def _role_of(player: PlayerRecord) -> Role:
    try:
        return Role(player.role)
    except ValueError:
        return Role.UNASSIGNED
