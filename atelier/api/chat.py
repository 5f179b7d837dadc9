"""
Chat API — streaming + regular endpoints.

POST /api/chat/stream           — Server-Sent Events (SSE) streaming
POST /api/chat                  — Standard request/response
GET  /api/chat/assets/{name}    — Serve a stored image
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Response
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from ..agent.stream import SSEChannel
from ..agent.types import EventType, UploadedImage
from ..core.auth import AuthenticatedUser
from ..core.dependencies import get_db, get_storage_dep, get_user
from ..core.storage import StorageBackend
from ..services import realtime
from ..services.chat import prepare_turn, start_turn

logger = logging.getLogger(__name__)

chat_router = APIRouter(tags=["chat"])

MAX_IMAGES = 10


class ImagePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    data: str
    mime_type: Optional[str] = Field(default=None, alias="mimeType")
    id: Optional[str] = None

    def to_upload(self) -> UploadedImage:
        data = self.data
        if not data.startswith("data:"):
            # Bare base64 from the client.
            data = f"data:{self.mime_type or 'image/png'};base64,{data}"
        return UploadedImage(data=data, id=self.id or None)


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    text: str = ""
    images: list[ImagePayload] = Field(default_factory=list, max_length=MAX_IMAGES)


class ChatResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    conversation_id: str = Field(alias="conversationId")
    message_id: str = Field(alias="messageId")
    status: str
    text: str = ""
    generated_images: list[str] = Field(default_factory=list, alias="generatedImages")
    tool_calls: list[dict] = Field(default_factory=list, alias="toolCalls")
    thinking: Optional[str] = None


def _check_request(request: ChatRequest) -> None:
    if not request.text.strip() and not request.images:
        raise HTTPException(status_code=400, detail="Message must contain text or images")


async def _prepare(request: ChatRequest, user: AuthenticatedUser, db: AsyncSession, storage: StorageBackend):
    _check_request(request)
    prepared = await prepare_turn(
        db,
        storage,
        user_id=user.user_id,
        text=request.text,
        uploads=[image.to_upload() for image in request.images],
        conversation_id=request.conversation_id,
    )
    if prepared.created:
        await realtime.conversation_created(user.user_id, prepared.conversation_id, prepared.title)
    return prepared


@chat_router.post("/stream")
async def chat_stream(
    request: ChatRequest,
    user: AuthenticatedUser = Depends(get_user),
    db: AsyncSession = Depends(get_db),
    storage: StorageBackend = Depends(get_storage_dep),
):
    """
    Stream the agent's response via Server-Sent Events (SSE).

    Events:
      event: conversation  data: {"conversationId": "...", "title": "..."}
      event: thinking      data: {"content": "..."}
      event: tool_start    data: {"tool": "...", "displayName": "...", "arguments": {...}}
      event: image         data: {"id": "gen_...", "url": "/api/chat/assets/...", "mimeType": "..."}
      event: tool_result   data: {"tool": "...", "result": {"success": true, ...}}
      event: text_delta    data: {"delta": "..."}
      event: done          data: {"conversationId": "...", "messageId": "..."}
      event: error         data: {"message": "..."}

    The agent keeps running if the client goes away; the turn is still saved.
    """
    prepared = await _prepare(request, user, db, storage)

    channel = SSEChannel()
    if prepared.created:
        channel.send(EventType.CONVERSATION_CREATED.value, {
            "conversationId": prepared.conversation_id,
            "title": prepared.title,
        })
    start_turn(prepared, storage, channel)

    return StreamingResponse(
        channel.stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )


@chat_router.post("", response_model=ChatResponse, response_model_by_alias=True)
async def chat(
    request: ChatRequest,
    user: AuthenticatedUser = Depends(get_user),
    db: AsyncSession = Depends(get_db),
    storage: StorageBackend = Depends(get_storage_dep),
):
    """Send a message and wait for the complete answer."""
    prepared = await _prepare(request, user, db, storage)

    # Shielded so a dropped request does not cancel the run.
    outcome = await asyncio.shield(start_turn(prepared, storage))
    snapshot = outcome.recorder.snapshot(outcome.status)

    return ChatResponse(
        conversationId=prepared.conversation_id,
        messageId=prepared.message_id,
        status=outcome.status,
        text=snapshot.text,
        generatedImages=snapshot.generated_image_urls,
        toolCalls=snapshot.tool_calls,
        thinking=snapshot.thinking,
    )


# ── Assets (no auth: URLs carry unguessable ids) ─────────────────────

assets_router = APIRouter(tags=["assets"])


@assets_router.get("/assets/{filename}")
async def get_asset(
    filename: str,
    storage: StorageBackend = Depends(get_storage_dep),
):
    found = await storage.read_asset(filename)
    if found is None:
        raise HTTPException(status_code=404, detail="Asset not found")
    data, content_type = found
    return Response(
        content=data,
        media_type=content_type,
        headers={"Cache-Control": "public, max-age=31536000, immutable"},
    )
