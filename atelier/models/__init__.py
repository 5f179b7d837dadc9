"""
All database models. Imported here so Base.metadata sees them for create_all().
"""

from .base import TimestampedBase
from .conversation import Conversation, Message, MessageStatus
from .asset import Asset

__all__ = [
    "TimestampedBase",
    "Conversation", "Message", "MessageStatus",
    "Asset",
]
