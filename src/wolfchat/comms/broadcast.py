"""Broadcast service -- routes narration to a live session."""

from __future__ import annotations

import logging

from wolfchat.comms.session import SessionRegistry

logger = logging.getLogger(__name__)


class Broadcaster:
    """Sends text to the group channel or one participant's private channel.

    Delivery failures never propagate: every problem is logged and the
    call returns ``False``.
    """

    def __init__(self, registry: SessionRegistry) -> None:
        self.registry = registry

    async def broadcast(
        self,
        message: str,
        private: bool = False,
        target_id: str | None = None,
    ) -> bool:
        """Send *message*; return ``True`` if a session accepted it."""
        if private:
            if target_id is None:
                return False
            session = self.registry.private(target_id)
            if session is None:
                logger.debug("No private session for %s, message dropped", target_id)
                return False
        else:
            session = self.registry.first_live_group()
            if session is None:
                logger.error("No available group session for broadcast")
                return False

        try:
            await session.send(message)
        except Exception:
            logger.exception("Failed to broadcast message")
            return False
        return True

    async def broadcast_private_all(self, message: str) -> int:
        """Send *message* to every registered private session."""
        sent = 0
        for user_id in self.registry.private_user_ids:
            if await self.broadcast(message, private=True, target_id=user_id):
                sent += 1
        return sent
