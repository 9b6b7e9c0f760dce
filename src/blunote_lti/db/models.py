"""
SQLAlchemy Models

Defines the database schema for:
- Login states issued during OIDC login initiation
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


# ---------------------------------------------------------------------
# Login State Model
# ---------------------------------------------------------------------

class LoginStateRecord(Base):
    """
    One outstanding OIDC login: state -> (nonce, created_at).

    Rows are inserted once at login and deleted when the launch consumes
    them or when they expire.
    """
    __tablename__ = "lti_login_state"

    state: Mapped[str] = mapped_column(String(128), primary_key=True)
    nonce: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    __table_args__ = (
        Index("idx_login_state_created", "created_at"),
    )
