"""
Conversations and their turns.

An assistant turn is inserted as a `generating` placeholder before the agent
runs and is updated in place while it streams, ending as `sent` or `failed`.
"""

from typing import Optional

from sqlalchemy import String, Text, Integer, JSON, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import TimestampedBase


class MessageStatus:
    GENERATING = "generating"
    SENT = "sent"
    FAILED = "failed"


class Conversation(TimestampedBase):
    __tablename__ = "conversations"

    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    title: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    messages: Mapped[list["Message"]] = relationship(
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="Message.sequence_number",
    )


class Message(TimestampedBase):
    __tablename__ = "messages"

    conversation_id: Mapped[str] = mapped_column(
        String, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    role: Mapped[str] = mapped_column(String, nullable=False)  # user, assistant
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String, nullable=False, default=MessageStatus.SENT)

    image_urls: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    generated_image_urls: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    # [{"tool": ..., "args": {...}, "result": {...lean...}, "timestamp": ...}]
    tool_calls: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    thinking: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    conversation: Mapped["Conversation"] = relationship(back_populates="messages")
