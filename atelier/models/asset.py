"""
Stored image assets. One row per image persisted to storage.
"""

from typing import Optional

from sqlalchemy import String, Integer, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from .base import TimestampedBase


class Asset(TimestampedBase):
    __tablename__ = "assets"

    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    conversation_id: Mapped[Optional[str]] = mapped_column(
        String, ForeignKey("conversations.id", ondelete="SET NULL"), nullable=True, index=True
    )
    image_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    url: Mapped[str] = mapped_column(String, nullable=False)
    mime_type: Mapped[str] = mapped_column(String, nullable=False, default="image/png")
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
