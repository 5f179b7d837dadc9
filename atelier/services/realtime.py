"""
Chat lifecycle notifications for other clients of the same user.
"""

from typing import Optional

from ..core import redis as _redis


async def _conversation_event(user_id: str, conversation_id: str, event_type: str, data: Optional[dict]):
    payload = {"conversation_id": conversation_id, **(data or {})}
    await _redis.publish(_redis.conversation_channel(user_id, conversation_id), event_type, payload)


async def chat_started(user_id: str, conversation_id: str, data: dict = None):
    await _conversation_event(user_id, conversation_id, "chat.started", data)


async def chat_completed(user_id: str, conversation_id: str, data: dict = None):
    await _conversation_event(user_id, conversation_id, "chat.completed", data)


async def chat_error(user_id: str, conversation_id: str, data: dict = None):
    await _conversation_event(user_id, conversation_id, "chat.error", data)


async def conversation_created(user_id: str, conversation_id: str, title: str = ""):
    await _redis.publish(
        _redis.user_channel(user_id),
        "conversation.created",
        {"conversation_id": conversation_id, "title": title},
    )
