# src/canvas_auth/session_data.py

import time
import typing
import uuid
from typing import Any, Callable, Dict, MutableMapping, Optional

from pydantic import BaseModel

USER_ID_KEY = "user_id"
ACCESS_TOKEN_KEY = "access_token"
OAUTH_STATE_KEY = "oauth_state"
OAUTH_REDIRECT_KEY = "oauth_redirect"

SESSION_MAX_AGE = 60 * 60 * 4  # 4 hours, matches the session cookie


class SessionData(BaseModel):
    """
    The fields canvas_auth reads and writes in a client session.
    Anything else the host application keeps in the session is opaque here.
    """
    user_id: Optional[str] = None
    access_token: Optional[str] = None
    oauth_state: Optional[str] = None
    oauth_redirect: Optional[str] = None


def _session_field(key: str) -> property:
    def getter(self: "AuthSession") -> Optional[str]:
        return self.data.get(key)

    def setter(self: "AuthSession", value: Optional[str]) -> None:
        if value is None:
            self.data.pop(key, None)
        else:
            self.data[key] = value

    return property(getter, setter)


class AuthSession:
    """Typed view over the per-client session mapping owned by the host."""

    user_id = _session_field(USER_ID_KEY)
    access_token = _session_field(ACCESS_TOKEN_KEY)
    oauth_state = _session_field(OAUTH_STATE_KEY)
    oauth_redirect = _session_field(OAUTH_REDIRECT_KEY)

    def __init__(self, data: MutableMapping[str, Any]):
        self.data = data

    @property
    def authenticated(self) -> bool:
        return self.user_id is not None

    def clear(self) -> None:
        self.data.clear()

    def snapshot(self) -> SessionData:
        return SessionData(
            user_id=self.user_id,
            access_token=self.access_token,
            oauth_state=self.oauth_state,
            oauth_redirect=self.oauth_redirect,
        )


@typing.runtime_checkable
class SessionStore(typing.Protocol):
    def new_session_id(self) -> str: ...

    def load(self, session_id: str) -> Optional[Dict[str, Any]]: ...

    def save(self, session_id: str, data: Dict[str, Any]) -> None: ...


class InMemorySessionStore:
    """
    Process-local session storage. Fine for development and tests,
    sessions do not survive a restart and are not shared between workers.
    Sessions idle for longer than ``max_age`` seconds are forgotten.
    """

    def __init__(
        self,
        max_age: float = SESSION_MAX_AGE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_age = max_age
        self.clock = clock
        self._sessions: Dict[str, Dict[str, Any]] = {}
        self._last_seen: Dict[str, float] = {}

    def _expired(self, session_id: str, now: float) -> bool:
        return now - self._last_seen.get(session_id, now) > self.max_age

    def _drop(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        self._last_seen.pop(session_id, None)

    def prune(self) -> int:
        """Forget sessions idle for longer than ``max_age``. Returns how many went."""
        now = self.clock()
        stale = [sid for sid in self._sessions if self._expired(sid, now)]
        for session_id in stale:
            self._drop(session_id)
        return len(stale)

    def new_session_id(self) -> str:
        self.prune()
        session_id = str(uuid.uuid4())
        self._sessions[session_id] = {}
        self._last_seen[session_id] = self.clock()
        return session_id

    def load(self, session_id: str) -> Optional[Dict[str, Any]]:
        if session_id not in self._sessions:
            return None
        now = self.clock()
        if self._expired(session_id, now):
            self._drop(session_id)
            return None
        self._last_seen[session_id] = now
        return self._sessions[session_id]

    def save(self, session_id: str, data: Dict[str, Any]) -> None:
        self._sessions[session_id] = data
        self._last_seen[session_id] = self.clock()

    def __len__(self) -> int:
        return len(self._sessions)
