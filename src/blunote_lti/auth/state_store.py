"""
Login State Store

Short-lived mapping of opaque OIDC `state` tokens to the nonce issued with
them, used to tie a launch back to a login this tool started.

Contract
--------
- `save(state, nonce)` writes an entry exactly once.
- `consume(state)` atomically reads and deletes the entry. Two concurrent
  callers presenting the same state get the entry at most once between them.
- Entries older than the configured TTL are treated as absent, even if never
  consumed, and are purged opportunistically.

This module provides the abstract contract and an in-memory implementation.
A SQL-backed implementation lives in `blunote_lti.db.state_store`.
"""

from __future__ import annotations

import abc
import logging
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Callable, Dict, Optional

from .models import LoginState

logger = logging.getLogger("blunote.lti.state")

Clock = Callable[[], datetime]

DEFAULT_STATE_TTL_SECONDS = 600


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class StateStore(abc.ABC):
    """Abstract login state store."""

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_STATE_TTL_SECONDS,
        clock: Clock = utc_now,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive; got {ttl_seconds}")
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock

    @abc.abstractmethod
    async def save(self, state: str, nonce: str) -> LoginState:
        """Store `nonce` under `state`. Raises `KeyError` if `state` exists."""

    @abc.abstractmethod
    async def consume(self, state: str) -> Optional[LoginState]:
        """
        Atomically remove and return the entry for `state`.

        Returns None if the state is unknown, already consumed or expired.
        """

    @abc.abstractmethod
    async def purge_expired(self) -> int:
        """Delete expired entries and return how many were removed."""


class InMemoryStateStore(StateStore):
    """
    Process-local state store guarded by a lock.

    Suitable for a single worker process. Multi-worker deployments should use
    the database-backed store so every worker sees the same entries.
    """

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_STATE_TTL_SECONDS,
        clock: Clock = utc_now,
    ) -> None:
        super().__init__(ttl_seconds=ttl_seconds, clock=clock)
        self._entries: Dict[str, LoginState] = {}
        self._lock = Lock()

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    async def save(self, state: str, nonce: str) -> LoginState:
        entry = LoginState(nonce=nonce, created_at=self._clock())
        with self._lock:
            self._purge_locked(entry.created_at)
            if state in self._entries:
                raise KeyError("state already registered")
            self._entries[state] = entry
        return entry

    async def consume(self, state: str) -> Optional[LoginState]:
        now = self._clock()
        # pop() under the lock is the whole check-and-delete
        with self._lock:
            entry = self._entries.pop(state, None)

        if entry is None:
            return None
        if entry.is_expired(now, int(self.ttl.total_seconds())):
            logger.info("Discarded expired login state")
            return None
        return entry

    async def purge_expired(self) -> int:
        with self._lock:
            return self._purge_locked(self._clock())

    # ------------------------------------------------------------------
    # Utility operations
    # ------------------------------------------------------------------

    def _purge_locked(self, now: datetime) -> int:
        cutoff = now - self.ttl
        stale = [key for key, entry in self._entries.items() if entry.created_at <= cutoff]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def __contains__(self, state: object) -> bool:
        with self._lock:
            return state in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
