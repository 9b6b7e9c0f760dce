"""
Session materialization: verified launch claims -> VerifiedSession.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import FrozenSet, Optional

from .models import (
    LaunchClaims,
    LTIRole,
    UNKNOWN_COURSE_ID,
    UNKNOWN_COURSE_NAME,
    VerifiedSession,
)
from .roles import DEFAULT_ROLES

DEFAULT_SESSION_TTL = timedelta(hours=24)
DEFAULT_USER_NAME = "User"
DEFAULT_COURSE_NAME = "Course"


def _new_session_id() -> str:
    return uuid.uuid4().hex


def materialize_session(
    claims: LaunchClaims,
    roles: FrozenSet[LTIRole],
    *,
    now: Optional[datetime] = None,
    ttl: timedelta = DEFAULT_SESSION_TTL,
) -> VerifiedSession:
    """
    Build a `VerifiedSession` from verified claims and normalized roles.

    The session lifetime is `ttl` from creation. The assertion's own `exp`
    only gates acceptance and plays no part here.
    """
    created_at = now or datetime.now(timezone.utc)

    context = claims.context
    if context is not None and context.id and context.id.strip():
        course_id = context.id
        course_name = context.title or context.label or DEFAULT_COURSE_NAME
    else:
        course_id = UNKNOWN_COURSE_ID
        course_name = UNKNOWN_COURSE_NAME

    return VerifiedSession(
        session_id=_new_session_id(),
        user_id=claims.sub,
        user_name=claims.name or claims.given_name or DEFAULT_USER_NAME,
        user_email=claims.email or None,
        course_id=course_id,
        course_name=course_name,
        roles=roles or DEFAULT_ROLES,
        platform_issuer=claims.iss,
        deployment_id=claims.deployment_id,
        resource_link_id=claims.resource_link.id,
        created_at=created_at,
        expires_at=created_at + ttl,
    )
