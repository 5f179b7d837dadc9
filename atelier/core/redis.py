"""
Fan-out of chat lifecycle events over Redis pub/sub.

Other tabs of the same user subscribe to these channels to refresh the
conversation list or pick up a turn finishing elsewhere. With FF_USE_REDIS
off every publish is dropped.
"""

import json
import logging
import time
from typing import Any, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from .config import get_settings
from .flags import get_flags

logger = logging.getLogger(__name__)

_client: Optional[aioredis.Redis] = None


def user_channel(user_id: str) -> str:
    return f"user:{user_id}"


def conversation_channel(user_id: str, conversation_id: str) -> str:
    return f"conversation:{user_id}:{conversation_id}"


def get_client() -> aioredis.Redis:
    global _client
    if _client is None:
        _client = aioredis.from_url(
            get_settings().redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
        )
    return _client


async def publish(channel: str, event_type: str, data: Any = None) -> bool:
    """Returns False when the event was not delivered to Redis."""
    if not get_flags().use_redis or not get_settings().redis_url:
        return False

    envelope = json.dumps({"type": event_type, "data": data, "ts": time.time()}, default=str)
    try:
        await get_client().publish(channel, envelope)
    except (RedisError, OSError) as e:
        # A dead Redis must not fail the chat turn that triggered the event
        logger.warning("Dropped %s on %s: %s", event_type, channel, e)
        return False
    return True


async def close_redis() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
        logger.info("Redis connection closed")
