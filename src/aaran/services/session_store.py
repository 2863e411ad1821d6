"""Session store – ``ConversationContext`` keyed by session id.

Injected into the agent so each deployment (or test) chooses where session
state lives.  The in-memory implementation bounds growth with LRU eviction
and an inactivity TTL; expired sessions are dropped lazily on access.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Callable

from ..config.settings import MAX_SESSIONS, SESSION_TTL_SECONDS
from ..models.schemas import ConversationContext

logger = logging.getLogger(__name__)


class SessionStore(ABC):

    @abstractmethod
    def get(self, session_id: str) -> ConversationContext | None: ...

    @abstractmethod
    def set(self, session_id: str, context: ConversationContext) -> None: ...

    @abstractmethod
    def delete(self, session_id: str) -> None: ...


class InMemorySessionStore(SessionStore):
    """Process-local LRU map with per-session inactivity expiry."""

    def __init__(
        self,
        ttl: float = SESSION_TTL_SECONDS,
        max_sessions: int = MAX_SESSIONS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self.max_sessions = max_sessions
        self._clock = clock
        self._sessions: OrderedDict[str, ConversationContext] = OrderedDict()
        self._touched: dict[str, float] = {}

    def _is_expired(self, session_id: str) -> bool:
        touched = self._touched.get(session_id)
        return touched is None or (self._clock() - touched) > self.ttl

    def get(self, session_id):
        if session_id not in self._sessions:
            return None
        if self._is_expired(session_id):
            logger.debug("Session %s expired", session_id)
            self.delete(session_id)
            return None
        self._sessions.move_to_end(session_id)
        self._touched[session_id] = self._clock()
        return self._sessions[session_id]

    def set(self, session_id, context):
        if session_id in self._sessions:
            self._sessions.move_to_end(session_id)
        elif len(self._sessions) >= self.max_sessions:
            oldest = next(iter(self._sessions))
            logger.debug("Evicting least recently used session %s", oldest)
            self.delete(oldest)
        self._sessions[session_id] = context
        self._touched[session_id] = self._clock()

    def delete(self, session_id):
        self._sessions.pop(session_id, None)
        self._touched.pop(session_id, None)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions
