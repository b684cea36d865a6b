"""
In-memory registry of open chat sessions, one per bearer token.

Sessions idle for longer than CHAT_SESSION_IDLE_TTL, and sessions whose token
the school API has rejected, are closed on the next registry access.
"""

import asyncio
import time
from collections.abc import Callable

from fastapi import Depends, HTTPException, status

from schoolchat.auth.verify import token_dependency
from schoolchat.chat.realtime import ChatWebSocket
from schoolchat.chat.session import ChatSession
from schoolchat.config import settings
from schoolchat.infrastructure.observability.logging import get_logger
from schoolchat.models.domain.user_domain import AuthSession
from schoolchat.services.user_service import UserServiceError, get_user_profile

logger = get_logger(__name__)


class SessionRegistry:
    def __init__(self, idle_ttl: float | None = None, clock: Callable[[], float] | None = None):
        self.idle_ttl = idle_ttl if idle_ttl is not None else settings.CHAT_SESSION_IDLE_TTL
        self._clock = clock or time.monotonic
        self._sessions: dict[str, ChatSession] = {}
        self._last_used: dict[str, float] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, token: str) -> ChatSession | None:
        return self._sessions.get(token)

    async def get_or_open(self, token: str) -> ChatSession:
        """
        Return the open session for a token, opening one on first use.

        Raises:
            UserServiceError: if the profile behind the token cannot be loaded
        """
        await self.evict_stale()

        async with self._lock:
            session = self._sessions.get(token)
            if session is not None:
                self._last_used[token] = self._clock()
                return session

            user = await get_user_profile(token)
            realtime = ChatWebSocket(token) if settings.REALTIME_ENABLED else None
            session = ChatSession(AuthSession(user=user, token=token), realtime=realtime)
            self._sessions[token] = session
            self._last_used[token] = self._clock()

        logger.info("Chat session opened", user_id=user.id, role=user.role)
        await session.open()
        return session

    def _is_stale(self, token: str, now: float) -> bool:
        session = self._sessions[token]
        if session.state.auth_rejected:
            return True
        return now - self._last_used.get(token, now) > self.idle_ttl

    async def evict_stale(self) -> int:
        """Close idle sessions and sessions with a rejected token."""
        now = self._clock()
        stale = [token for token in list(self._sessions) if self._is_stale(token, now)]
        for token in stale:
            await self.close(token)
        if stale:
            logger.info("Evicted chat sessions", count=len(stale))
        return len(stale)

    async def close(self, token: str) -> bool:
        session = self._sessions.pop(token, None)
        self._last_used.pop(token, None)
        if session is None:
            return False
        await session.close()
        return True

    async def close_all(self) -> None:
        tokens = list(self._sessions)
        for token in tokens:
            await self.close(token)
        if tokens:
            logger.info("Closed chat sessions", count=len(tokens))


session_registry = SessionRegistry()


async def chat_session_dependency(token: str = Depends(token_dependency)) -> ChatSession:
    try:
        return await session_registry.get_or_open(token)
    except UserServiceError as e:
        if e.status_code in (401, 403):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid authentication token",
                headers={"WWW-Authenticate": "Bearer"},
            ) from e
        logger.error("Failed to open chat session", error=str(e), status_code=e.status_code)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to load user profile"
        ) from e
