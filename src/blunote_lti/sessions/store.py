"""
Session Store

In-memory storage of `VerifiedSession`s produced by successful launches,
read by the bootstrap layer through the session id it receives.

Design choices
--------------
- In-memory only (no persistence across process restarts).
- Expired sessions are never returned and are purged on write.
- Thread-safe access using a re-entrant lock.
- No module-level instance: the application creates one store and injects it
  into request handlers, and tests create their own.
"""

from __future__ import annotations

from datetime import datetime, timezone
from threading import RLock
from typing import Callable, Dict, Optional

from ..auth.models import VerifiedSession


class SessionStore:
    """
    Mapping of session ids to verified sessions.

    For horizontally scaled deployments this class can be replaced with a
    database-backed implementation exposing the same interface.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._store: Dict[str, VerifiedSession] = {}
        self._lock = RLock()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    def put(self, session: VerifiedSession) -> None:
        """
        Store a session under its id.

        Raises
        ------
        KeyError
            If a session with the same id is already stored.
        """
        with self._lock:
            self._purge_locked()
            if session.session_id in self._store:
                raise KeyError("session id already stored")
            self._store[session.session_id] = session

    def get(self, session_id: str) -> Optional[VerifiedSession]:
        """
        Return the live session for `session_id`, or None if it is unknown
        or expired.
        """
        with self._lock:
            session = self._store.get(session_id)
            if session is None:
                return None
            if session.is_expired(self._clock()):
                del self._store[session_id]
                return None
            return session

    def remove(self, session_id: str) -> None:
        with self._lock:
            self._store.pop(session_id, None)

    # ------------------------------------------------------------------
    # Utility operations
    # ------------------------------------------------------------------

    def purge_expired(self) -> int:
        """Remove all expired sessions and return how many were dropped."""
        with self._lock:
            return self._purge_locked()

    def _purge_locked(self) -> int:
        now = self._clock()
        expired = [sid for sid, s in self._store.items() if s.is_expired(now)]
        for sid in expired:
            del self._store[sid]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)
