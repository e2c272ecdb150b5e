"""In-memory login sessions with an injectable expiry policy, and the
bcrypt helpers used to check the admin shared secret."""

from __future__ import annotations

import secrets
import threading
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Optional

import bcrypt

ROLE_GUEST = "guest"
ROLE_EDITOR = "editor"
MAX_SESSIONS = 10_000


@dataclass
class Session:
    sid: str
    username: str
    role: str
    created: float

    @property
    def is_editor(self) -> bool:
        return self.role == ROLE_EDITOR

    def public(self) -> dict[str, Any]:
        data = asdict(self)
        data.pop("sid")
        return data


class SessionStore:
    """sid -> Session map. ``ttl_seconds=None`` means sessions never expire.

    Expired sessions are purged on every ``create``; past ``max_sessions``
    the oldest sessions are evicted.
    """

    def __init__(
        self,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.time,
        *,
        max_sessions: int = MAX_SESSIONS,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_sessions = max_sessions
        self._clock = clock
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()

    def _expired(self, session: Session) -> bool:
        return self.ttl_seconds is not None and self._clock() - session.created >= self.ttl_seconds

    def create(self, username: str, role: str) -> Session:
        session = Session(sid=secrets.token_urlsafe(32), username=username, role=role, created=self._clock())
        self.purge_expired()
        with self._lock:
            overflow = len(self._sessions) - self.max_sessions + 1
            if overflow > 0:
                # Insertion order is creation order.
                for sid in list(self._sessions)[:overflow]:
                    del self._sessions[sid]
            self._sessions[session.sid] = session
        return session

    def get(self, sid: Optional[str]) -> Optional[Session]:
        if not sid:
            return None
        with self._lock:
            session = self._sessions.get(sid)
            if session is not None and self._expired(session):
                del self._sessions[sid]
                return None
            return session

    def delete(self, sid: Optional[str]) -> None:
        if not sid:
            return
        with self._lock:
            self._sessions.pop(sid, None)

    def purge_expired(self) -> int:
        with self._lock:
            stale = [sid for sid, s in self._sessions.items() if self._expired(s)]
            for sid in stale:
                del self._sessions[sid]
        return len(stale)

    def __len__(self) -> int:
        return len(self._sessions)


def hash_secret(secret: str) -> bytes:
    return bcrypt.hashpw(secret.encode("utf-8"), bcrypt.gensalt())


def verify_secret(candidate: Optional[str], hashed: Optional[bytes]) -> bool:
    if not isinstance(candidate, str) or not candidate or not hashed:
        return False
    try:
        return bcrypt.checkpw(candidate.encode("utf-8"), hashed)
    except ValueError:
        # bcrypt rejects inputs longer than 72 bytes
        return False
