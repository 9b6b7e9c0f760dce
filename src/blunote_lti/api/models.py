"""
API Models for the LTI endpoints

Response schemas for the session bootstrap and health endpoints.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from ..auth.models import LTIRole, ROLE_PRECEDENCE, VerifiedSession


class SessionSummary(BaseModel):
    """
    The part of a VerifiedSession the frontend bootstrap needs.
    """
    session_id: str
    user_id: str
    user_name: str
    user_email: Optional[str] = None
    course_id: str
    course_name: str
    has_course: bool
    role: LTIRole
    roles: List[LTIRole]
    expires_at: datetime

    model_config = ConfigDict(extra="forbid")

    @classmethod
    def from_session(cls, session: VerifiedSession) -> "SessionSummary":
        return cls(
            session_id=session.session_id,
            user_id=session.user_id,
            user_name=session.user_name,
            user_email=session.user_email,
            course_id=session.course_id,
            course_name=session.course_name,
            has_course=session.has_course,
            role=session.primary_role,
            # Stable order for clients
            roles=[r for r in ROLE_PRECEDENCE if r in session.roles],
            expires_at=session.expires_at,
        )


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
