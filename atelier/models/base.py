"""
Columns shared by every Atelier table: a uuid string key and UTC timestamps.

Timestamps are set in Python rather than by the database so that SQLite
(tests, local dev) keeps sub-second ordering for the conversation list.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimestampedBase(Base):
    __abstract__ = True

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.id}>"
