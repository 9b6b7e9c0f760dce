"""
Database-backed Login State Store

Implements the `StateStore` contract on top of the `lti_login_state` table so
that every worker process sees the same outstanding logins.

`consume()` is a single `DELETE ... RETURNING` statement in its own
transaction: either the row is deleted and returned to exactly one caller,
or the statement does not commit and the row stays available.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..auth.models import LoginState
from ..auth.state_store import (
    Clock,
    DEFAULT_STATE_TTL_SECONDS,
    StateStore,
    utc_now,
)
from .models import LoginStateRecord

logger = logging.getLogger("blunote.db.state")


class SqlStateStore(StateStore):
    """
    Login state store using PostgreSQL (or any backend supporting
    `DELETE ... RETURNING`).
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ttl_seconds: int = DEFAULT_STATE_TTL_SECONDS,
        clock: Clock = utc_now,
    ) -> None:
        super().__init__(ttl_seconds=ttl_seconds, clock=clock)
        self._session_factory = session_factory

    async def save(self, state: str, nonce: str) -> LoginState:
        entry = LoginState(nonce=nonce, created_at=self._clock())
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await session.execute(
                        delete(LoginStateRecord).where(
                            LoginStateRecord.created_at <= entry.created_at - self.ttl
                        )
                    )
                    session.add(
                        LoginStateRecord(
                            state=state,
                            nonce=entry.nonce,
                            created_at=entry.created_at,
                        )
                    )
        except IntegrityError as exc:
            raise KeyError("state already registered") from exc
        return entry

    async def consume(self, state: str) -> Optional[LoginState]:
        now = self._clock()
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(LoginStateRecord)
                    .where(LoginStateRecord.state == state)
                    .returning(LoginStateRecord.nonce, LoginStateRecord.created_at)
                )
                row = result.one_or_none()

        if row is None:
            return None

        entry = LoginState(nonce=row.nonce, created_at=row.created_at)
        if entry.is_expired(now, int(self.ttl.total_seconds())):
            logger.info("Discarded expired login state")
            return None
        return entry

    async def purge_expired(self) -> int:
        cutoff = self._clock() - self.ttl
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(LoginStateRecord).where(LoginStateRecord.created_at <= cutoff)
                )
        return result.rowcount or 0
