"""
Conversation persistence.

Creates conversations and turns, loads history for the context builder and
writes assistant turns as they stream.
"""

import logging
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..agent.image_store import normalize_ref, to_data_uri
from ..agent.stream import TurnSnapshot
from ..agent.types import HistoryImage, HistoryTurn
from ..core.storage import StorageBackend
from ..models.base import utcnow
from ..models.conversation import Conversation, Message, MessageStatus
from .media import ImageLoadError, load_image_payload

logger = logging.getLogger(__name__)

TITLE_LENGTH = 80


async def get_or_create_conversation(
    db: AsyncSession,
    user_id: str,
    conversation_id: Optional[str] = None,
) -> tuple[Conversation, bool]:
    """Get the user's conversation or create a new one. Returns (conversation, created)."""
    if conversation_id:
        result = await db.execute(
            select(Conversation).where(
                Conversation.id == conversation_id,
                Conversation.user_id == user_id,
            )
        )
        convo = result.scalar_one_or_none()
        if convo is not None:
            return convo, False
        logger.info("Conversation %s not found for user %s, starting a new one", conversation_id, user_id)

    convo = Conversation(user_id=user_id)
    db.add(convo)
    await db.flush()
    logger.info("Created conversation: %s (user=%s)", convo.id, user_id)
    return convo, True


async def _next_sequence(db: AsyncSession, convo: Conversation) -> int:
    result = await db.execute(
        select(Message.sequence_number)
        .where(Message.conversation_id == convo.id)
        .order_by(Message.sequence_number.desc())
        .limit(1)
    )
    last = result.scalar_one_or_none()
    return (last + 1) if last else 1


async def add_user_turn(
    db: AsyncSession,
    convo: Conversation,
    text: str,
    image_urls: Optional[list[str]] = None,
) -> Message:
    seq = await _next_sequence(db, convo)
    msg = Message(
        conversation_id=convo.id,
        role="user",
        content=text or "",
        sequence_number=seq,
        status=MessageStatus.SENT,
        image_urls=list(image_urls or []),
        generated_image_urls=[],
        tool_calls=[],
    )
    db.add(msg)

    # Auto-generate title from first user message
    if not convo.title and text:
        convo.title = text[:TITLE_LENGTH].strip()
        if len(text) > TITLE_LENGTH:
            convo.title += "..."
    # Bumps the conversation to the top of the list
    convo.updated_at = utcnow()

    await db.flush()
    return msg


async def create_assistant_placeholder(db: AsyncSession, convo: Conversation) -> Message:
    """Insert the assistant turn the stream will fill in."""
    seq = await _next_sequence(db, convo)
    msg = Message(
        conversation_id=convo.id,
        role="assistant",
        content="",
        sequence_number=seq,
        status=MessageStatus.GENERATING,
        image_urls=[],
        generated_image_urls=[],
        tool_calls=[],
    )
    db.add(msg)
    await db.flush()
    return msg


async def get_recent_messages(
    db: AsyncSession,
    convo: Conversation,
    limit: int = 40,
    before_sequence: Optional[int] = None,
) -> list[Message]:
    """Get recent turns, oldest first. Failed and in-progress turns are skipped."""
    query = select(Message).where(
        Message.conversation_id == convo.id,
        Message.status == MessageStatus.SENT,
    )
    if before_sequence is not None:
        query = query.where(Message.sequence_number < before_sequence)
    result = await db.execute(query.order_by(Message.sequence_number.desc()).limit(limit))
    messages = list(result.scalars().all())
    messages.reverse()
    return messages


def _history_image(msg: Message, index: int, url: str) -> HistoryImage:
    image_id = normalize_ref(url)
    if url.startswith("data:") or image_id == url:
        image_id = f"hist_{msg.id[:8]}_{index}"
    return HistoryImage(id=image_id, payload=url, url=None if url.startswith("data:") else url)


def build_history(messages: list[Message]) -> list[HistoryTurn]:
    history = []
    for m in messages:
        images = [_history_image(m, i, url) for i, url in enumerate(m.image_urls or [], start=1)]
        offset = len(images)
        generated = [
            _history_image(m, offset + i, url)
            for i, url in enumerate(m.generated_image_urls or [], start=1)
        ]
        history.append(HistoryTurn(
            role="assistant" if m.role == "assistant" else "user",
            text=m.content or "",
            images=images,
            generated_images=generated,
        ))
    return history


async def hydrate_recent_images(
    history: list[HistoryTurn],
    storage: Optional[StorageBackend],
    window: int,
) -> None:
    """Replace stored URLs by inline data for images in the last `window` turns."""
    for turn in history[-window:] if window > 0 else []:
        for image in turn.images + turn.generated_images:
            if image.payload.startswith("data:"):
                continue
            try:
                data, mime_type = await load_image_payload(image.payload, storage)
            except ImageLoadError as e:
                logger.warning("Could not load history image %s: %s", image.id, e)
                continue
            image.payload = to_data_uri(data, mime_type)


class SqlTurnStore:
    """Writes assistant turn snapshots. Each write uses its own session."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def save_turn(self, message_id: str, snapshot: TurnSnapshot) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(Message)
                .where(Message.id == message_id)
                .values(
                    content=snapshot.text,
                    thinking=snapshot.thinking,
                    generated_image_urls=snapshot.generated_image_urls,
                    tool_calls=snapshot.tool_calls,
                    status=snapshot.status,
                )
            )
            await session.commit()
