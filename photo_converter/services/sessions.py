"""Registry of live conversion sessions."""

from __future__ import annotations

from typing import Callable, Dict, List, Optional

from photo_converter.core.logging import get_logger
from photo_converter.services.conversion_session import ConversionSession

logger = get_logger(__name__)


class SessionRegistry:
    """Tracks sessions created through the HTTP surface, keyed by session id."""

    def __init__(self, factory: Callable[[], ConversionSession]) -> None:
        self._factory = factory
        self._sessions: Dict[str, ConversionSession] = {}

    def create(self) -> ConversionSession:
        session = self._factory()
        self._sessions[session.id] = session
        logger.info("session_created", session_id=session.id)
        return session

    def get(self, session_id: str) -> Optional[ConversionSession]:
        return self._sessions.get(session_id)

    def all(self) -> List[ConversionSession]:
        return list(self._sessions.values())

    async def discard(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        await session.close()
        logger.info("session_discarded", session_id=session_id)
        return True

    async def close_all(self) -> None:
        for session_id in list(self._sessions):
            await self.discard(session_id)
