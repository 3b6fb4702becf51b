"""SQLAlchemy 2.x ORM models for the shared session store."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class AuthSession(Base):
    """One live session per subject.

    Read by the legacy backend to confirm that a user authenticated with
    the Identity Provider. ``name_id`` is the SHA-256 hex digest of the
    IdP-supplied subject identifier, never the raw value.
    """

    __tablename__ = "auth_sessions"

    name_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    session_index: Mapped[str] = mapped_column(String(255), nullable=False)
    auth_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<AuthSession(name_id='{self.name_id[:12]}...', session_index='{self.session_index}')>"
