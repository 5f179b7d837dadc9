"""
Conversation history for the chat UI.

    GET    /api/chat/conversations         list, newest activity first
    GET    /api/chat/conversations/{id}    every turn, generating and failed ones too
    DELETE /api/chat/conversations/{id}    turns go with it, stored images stay
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.auth import AuthenticatedUser
from ..core.dependencies import get_db, get_user
from ..models.conversation import Conversation, Message

logger = logging.getLogger(__name__)

conversations_router = APIRouter(prefix="/conversations", tags=["conversations"])


def _iso(value: Optional[datetime]) -> str:
    return value.isoformat() if value else ""


# ── Response models ─────────────────────────────────────────────────

class ConversationSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: Optional[str] = None
    turn_count: int = Field(default=0, alias="turnCount")
    updated_at: str = Field(alias="updatedAt")


class TurnOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    role: str
    content: str
    sequence_number: int = Field(alias="sequenceNumber")
    status: str
    image_urls: list[str] = Field(default_factory=list, alias="imageUrls")
    generated_image_urls: list[str] = Field(default_factory=list, alias="generatedImages")
    tool_calls: list[dict] = Field(default_factory=list, alias="toolCalls")
    thinking: Optional[str] = None
    created_at: str = Field(alias="createdAt")

    @classmethod
    def from_row(cls, m: Message) -> "TurnOut":
        return cls(
            id=m.id,
            role=m.role,
            content=m.content or "",
            sequence_number=m.sequence_number,
            status=m.status,
            image_urls=m.image_urls or [],
            generated_image_urls=m.generated_image_urls or [],
            tool_calls=m.tool_calls or [],
            thinking=m.thinking,
            created_at=_iso(m.created_at),
        )


class ConversationDetail(BaseModel):
    id: str
    title: Optional[str] = None
    messages: list[TurnOut] = Field(default_factory=list)


async def _owned_conversation(db: AsyncSession, user: AuthenticatedUser, conversation_id: str) -> Conversation:
    convo = await db.get(Conversation, conversation_id)
    # Someone else's conversation looks exactly like a missing one
    if convo is None or convo.user_id != user.user_id:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return convo


# ── Routes ──────────────────────────────────────────────────────────

@conversations_router.get("", response_model=list[ConversationSummary], response_model_by_alias=True)
async def list_conversations(
    user: AuthenticatedUser = Depends(get_user),
    db: AsyncSession = Depends(get_db),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
):
    turns = (
        select(Message.conversation_id, func.count(Message.id).label("n"))
        .group_by(Message.conversation_id)
        .subquery()
    )
    rows = await db.execute(
        select(Conversation, func.coalesce(turns.c.n, 0))
        .outerjoin(turns, turns.c.conversation_id == Conversation.id)
        .where(Conversation.user_id == user.user_id)
        .order_by(Conversation.updated_at.desc())
        .limit(limit)
        .offset(offset)
    )
    return [
        ConversationSummary(id=c.id, title=c.title, turn_count=n, updated_at=_iso(c.updated_at))
        for c, n in rows.all()
    ]


@conversations_router.get("/{conversation_id}", response_model=ConversationDetail, response_model_by_alias=True)
async def get_conversation(
    conversation_id: str,
    user: AuthenticatedUser = Depends(get_user),
    db: AsyncSession = Depends(get_db),
):
    convo = await _owned_conversation(db, user, conversation_id)
    turns = await db.scalars(
        select(Message).where(Message.conversation_id == convo.id).order_by(Message.sequence_number)
    )
    return ConversationDetail(id=convo.id, title=convo.title, messages=[TurnOut.from_row(m) for m in turns])


@conversations_router.delete("/{conversation_id}")
async def delete_conversation(
    conversation_id: str,
    user: AuthenticatedUser = Depends(get_user),
    db: AsyncSession = Depends(get_db),
):
    convo = await _owned_conversation(db, user, conversation_id)
    removed = await db.execute(delete(Message).where(Message.conversation_id == convo.id))
    await db.delete(convo)
    logger.info("Conversation %s deleted with %d turns (user=%s)", convo.id, removed.rowcount, user.user_id)
    return {"deleted": True, "conversationId": conversation_id}
