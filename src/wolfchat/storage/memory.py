"""In-memory implementation of the record store."""

from __future__ import annotations

import logging
from dataclasses import fields as dataclass_fields
from dataclasses import replace
from typing import Any, Generic, Mapping, TypeVar

from wolfchat.storage.base import Criteria

logger = logging.getLogger(__name__)

R = TypeVar("R")

_ANY_OF = (list, tuple, set, frozenset)


class InMemoryStore(Generic[R]):
    """Dict-backed table with auto-incrementing ids.

    Records handed out are copies, so callers never mutate stored rows
    except through :meth:`set`.
    """

    def __init__(self, record_type: type[R]) -> None:
        self._record_type = record_type
        self._field_names = {f.name for f in dataclass_fields(record_type)}
        self._rows: dict[int, R] = {}
        self._next_id = 1

    def __len__(self) -> int:
        return len(self._rows)

    async def get(self, criteria: Criteria | None = None) -> list[R]:
        return [
            replace(row)
            for _, row in sorted(self._rows.items())
            if _matches(row, criteria)
        ]

    async def set(self, record_id: int, fields: Mapping[str, Any]) -> None:
        self._check_fields(fields)
        row = self._rows.get(record_id)
        if row is None:
            logger.debug(
                "%s %d not found, update skipped",
                self._record_type.__name__,
                record_id,
            )
            return
        self._rows[record_id] = replace(row, **fields)

    async def create(self, fields: Mapping[str, Any]) -> R:
        self._check_fields(fields)
        record_id = self._next_id
        self._next_id += 1
        row = self._record_type(id=record_id, **{k: v for k, v in fields.items() if k != "id"})
        self._rows[record_id] = row
        return replace(row)

    async def remove(self, criteria: Criteria) -> int:
        doomed = [rid for rid, row in self._rows.items() if _matches(row, criteria)]
        for rid in doomed:
            del self._rows[rid]
        return len(doomed)

    def _check_fields(self, fields: Mapping[str, Any]) -> None:
        unknown = set(fields) - self._field_names
        if unknown:
            raise KeyError(
                f"Unknown {self._record_type.__name__} field(s): {sorted(unknown)}"
            )


def _matches(row: Any, criteria: Criteria | None) -> bool:
    if not criteria:
        return True
    for key, expected in criteria.items():
        value = getattr(row, key)
        if isinstance(expected, _ANY_OF):
            if value not in expected:
                return False
        elif value != expected:
            return False
    return True
