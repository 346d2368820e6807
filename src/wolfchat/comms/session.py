"""Session handles and the time-windowed session registry."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Protocol

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class Session(Protocol):
    """Opaque handle to a communication channel.

    Two sessions address the same channel iff they compare equal.
    """

    async def send(self, text: str) -> Any: ...


@dataclass(frozen=True)
class GroupSessionEntry:
    """A group session plus the instant it was registered or refreshed."""

    session: Session
    last_used: float


class SessionRegistry:
    """Tracks usable group channels and per-participant private channels.

    Group entries expire *expiry_seconds* after their last refresh and
    are pruned lazily.  Private entries never expire; they are simply
    overwritten whenever the participant contacts us again.
    """

    def __init__(
        self,
        expiry_seconds: float = 300.0,
        clock: Clock = time.monotonic,
    ) -> None:
        self.expiry_seconds = expiry_seconds
        self._clock = clock
        self._group: list[GroupSessionEntry] = []
        self._private: dict[str, Session] = {}

    # ------------------------------------------------------------------
    # Group sessions
    # ------------------------------------------------------------------

    def register_group(self, session: Session | None) -> None:
        """Append *session* unconditionally, stamped with the current time."""
        if session is None:
            return
        self._group.append(GroupSessionEntry(session, self._clock()))

    def refresh_group(self, session: Session | None) -> None:
        """Prune stale entries, then re-stamp or append *session*."""
        if session is None:
            return
        now = self.prune()
        for idx, entry in enumerate(self._group):
            if entry.session == session:
                self._group[idx] = GroupSessionEntry(session, now)
                return
        self._group.append(GroupSessionEntry(session, now))

    def prune(self, now: float | None = None) -> float:
        """Drop group entries older than the expiry window; return *now*."""
        if now is None:
            now = self._clock()
        before = len(self._group)
        self._group = [
            entry for entry in self._group
            if now - entry.last_used < self.expiry_seconds
        ]
        dropped = before - len(self._group)
        if dropped:
            logger.debug("Pruned %d expired group session(s)", dropped)
        return now

    def first_live_group(self) -> Session | None:
        """Return the longest-standing live group session, if any.

        The entry's timestamp is left untouched.
        """
        self.prune()
        if not self._group:
            return None
        return self._group[0].session

    @property
    def group_entries(self) -> list[GroupSessionEntry]:
        return list(self._group)

    # ------------------------------------------------------------------
    # Private sessions
    # ------------------------------------------------------------------

    def register_private(self, user_id: str, session: Session) -> None:
        self._private[user_id] = session

    def private(self, user_id: str) -> Session | None:
        return self._private.get(user_id)

    @property
    def private_user_ids(self) -> list[str]:
        return list(self._private)

    # ------------------------------------------------------------------

    def clear(self) -> None:
        self._group.clear()
        self._private.clear()
