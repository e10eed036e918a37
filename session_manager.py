"""In-process session store keeping a bounded chat history per session id."""
from __future__ import annotations

import asyncio
import secrets
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Literal, Optional, Protocol, Tuple

from pydantic import BaseModel, ConfigDict

from utils import LOGGER


class Turn(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant"]
    text: str

    def label(self) -> str:
        return "User" if self.role == "user" else "Assistant"


@dataclass
class Session:
    session_id: str
    turns: List[Turn] = field(default_factory=list)
    last_active: float = field(default_factory=time.time)


class SessionBackend(Protocol):
    """Key/value map holding sessions. Swap for a persistent store in production."""

    def get(self, session_id: str) -> Optional[Session]: ...

    def put(self, session: Session) -> None: ...

    def delete(self, session_id: str) -> None: ...

    def ids(self) -> Iterator[str]: ...

    def __len__(self) -> int: ...


class InMemorySessionBackend:
    def __init__(self) -> None:
        self._sessions: Dict[str, Session] = {}

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def put(self, session: Session) -> None:
        self._sessions[session.session_id] = session

    def delete(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    def ids(self) -> Iterator[str]:
        return iter(list(self._sessions))

    def __len__(self) -> int:
        return len(self._sessions)


def new_session_id() -> str:
    return secrets.token_hex(12)


class SessionManager:
    """Session lookup/creation plus per-session locks.

    ``max_turns`` caps the history kept per session (0 keeps everything) and
    ``ttl_seconds`` evicts sessions idle for longer than that (0 disables).
    """

    def __init__(
        self,
        backend: Optional[SessionBackend] = None,
        max_turns: int = 50,
        ttl_seconds: float = 3600.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._backend: SessionBackend = backend if backend is not None else InMemorySessionBackend()
        self.max_turns = max_turns
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._locks: Dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._backend)

    def __contains__(self, session_id: object) -> bool:
        return isinstance(session_id, str) and self._backend.get(session_id) is not None

    def get_or_create(self, session_id: Optional[str] = None) -> Tuple[str, Session]:
        self.evict_idle()
        if not session_id:
            session_id = new_session_id()
            while self._backend.get(session_id) is not None:
                session_id = new_session_id()

        session = self._backend.get(session_id)
        if session is None:
            session = Session(session_id=session_id)
            LOGGER.info("Created session", extra={"session_id": session_id})
        session.last_active = self._clock()
        self._backend.put(session)
        return session_id, session

    def lock(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    def append(self, session_id: str, turn: Turn) -> None:
        session = self._backend.get(session_id) or Session(session_id=session_id)
        session.turns.append(turn)
        if self.max_turns and len(session.turns) > self.max_turns:
            del session.turns[: len(session.turns) - self.max_turns]
        session.last_active = self._clock()
        # Persistent backends need the mutated session written back.
        self._backend.put(session)

    def history(self, session_id: str) -> List[Turn]:
        session = self._backend.get(session_id)
        return list(session.turns) if session else []

    def evict_idle(self) -> int:
        if not self.ttl_seconds:
            return 0
        cutoff = self._clock() - self.ttl_seconds
        evicted = 0
        for session_id in self._backend.ids():
            session = self._backend.get(session_id)
            if session is None or session.last_active >= cutoff:
                continue
            lock = self._locks.get(session_id)
            if lock is not None and lock.locked():
                continue
            self._backend.delete(session_id)
            self._locks.pop(session_id, None)
            evicted += 1
        if evicted:
            LOGGER.info(
                "Evicted idle sessions",
                extra={"evicted": evicted, "live_sessions": len(self._backend)},
            )
        return evicted


__all__ = [
    "Turn",
    "Session",
    "SessionBackend",
    "InMemorySessionBackend",
    "SessionManager",
    "new_session_id",
]
