"""
Server-side HTTP session storage.

The session cookie only carries a signed session id; the session data
itself lives in this table, in the same database the orchestrator owns.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from streamhooks.core.database import Base


class SessionRecord(Base):
    """
    A single browser session.

    Attributes:
        session_id: Random URL-safe identifier referenced by the cookie
        data: JSON-encoded session dictionary
        expires_at: Moment after which the session is discarded
    """

    __tablename__ = "sessions"

    session_id: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    data: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<SessionRecord(session_id={self.session_id!r}, expires_at={self.expires_at})>"
