"""Persistence port used by the engine and the command layer."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, Mapping, Protocol, TypeVar

from wolfchat.engine.records import GameRecord, PlayerRecord

R = TypeVar("R")

Criteria = Mapping[str, Any]


class RecordStore(Protocol, Generic[R]):
    """Table-like store of records keyed by an integer ``id``.

    A criteria mapping selects records whose fields equal the given
    values.  A list, tuple or set value matches any of its members.
    """

    async def get(self, criteria: Criteria | None = None) -> list[R]: ...

    async def set(self, record_id: int, fields: Mapping[str, Any]) -> None: ...

    async def create(self, fields: Mapping[str, Any]) -> R: ...

    async def remove(self, criteria: Criteria) -> int: ...


@dataclass
class Stores:
    """The two tables the game needs."""

    games: RecordStore[GameRecord]
    players: RecordStore[PlayerRecord]

    @classmethod
    def in_memory(cls) -> Stores:
        from wolfchat.storage.memory import InMemoryStore

        return cls(
            games=InMemoryStore(GameRecord),
            players=InMemoryStore(PlayerRecord),
        )
