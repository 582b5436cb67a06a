from __future__ import annotations

import asyncio
import secrets
import time
from dataclasses import dataclass, field

from sso.constants import DEFAULT_SESSION_IDLE_SECONDS
from sso.models import Principal, SsoStatus


@dataclass
class SsoSession:
    session_id: str
    status: SsoStatus = SsoStatus.ANONYMOUS
    principal: Principal | None = None
    return_to: str | None = None
    last_seen: float = field(default_factory=time.time)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    def reset(self) -> None:
        self.status = SsoStatus.ANONYMOUS
        self.principal = None
        self.return_to = None


class SessionStore:
    def __init__(self, *, idle_seconds: int = DEFAULT_SESSION_IDLE_SECONDS) -> None:
        self.idle_seconds = idle_seconds
        self._sessions: dict[str, SsoSession] = {}

    @staticmethod
    def new_session_id() -> str:
        return secrets.token_urlsafe(32)

    def get(self, session_id: str) -> SsoSession | None:
        return self._sessions.get(session_id)

    def new_session(self) -> SsoSession:
        """An anonymous session that is not stored until ``persist`` is called."""
        return SsoSession(session_id=self.new_session_id())

    def lookup(self, session_id: str | None) -> SsoSession | None:
        if not session_id:
            return None
        session = self._sessions.get(session_id)
        if session is not None:
            session.last_seen = time.time()
        return session

    def persist(self, session: SsoSession) -> SsoSession:
        self._sessions.setdefault(session.session_id, session)
        return session

    def rotate(self, session: SsoSession) -> SsoSession:
        """Re-key a session under a fresh id; the old id stops resolving."""
        self._sessions.pop(session.session_id, None)
        session.session_id = self.new_session_id()
        session.last_seen = time.time()
        self._sessions[session.session_id] = session
        return session

    def delete(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    def expired_ids(self, now: float | None = None) -> list[str]:
        current = time.time() if now is None else now
        cutoff = current - self.idle_seconds
        return [
            session_id
            for session_id, session in self._sessions.items()
            if session.last_seen < cutoff and not session.lock.locked()
        ]

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
