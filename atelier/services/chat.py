"""
Chat turn runner.

Glue between the HTTP layer and the agent:

  1. prepare_turn  — store uploads and the user turn, load history,
                     insert the assistant placeholder (one DB session)
  2. start_turn    — run the agent in a detached task that owns its own
                     sessions, so it outlives the request that started it
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..agent.image_store import new_image_id
from ..agent.orchestrator import AgentOrchestrator, RunInput
from ..agent.stream import SSEChannel, TurnRecorder, run_agent_turn
from ..agent.types import UploadedImage, UserTurn
from ..core.config import get_settings
from ..core.database import get_session_factory
from ..core.storage import StorageBackend
from ..models.conversation import MessageStatus
from . import realtime
from .conversations import (
    SqlTurnStore,
    add_user_turn,
    build_history,
    create_assistant_placeholder,
    get_or_create_conversation,
    get_recent_messages,
    hydrate_recent_images,
)
from .llm import ChatCompletionsModel
from .media import AssetPersister

logger = logging.getLogger(__name__)

# Detached runs. Holding a reference keeps them from being garbage-collected mid-turn.
_background_runs: set[asyncio.Task] = set()


@dataclass
class PreparedTurn:
    user_id: str
    conversation_id: str
    message_id: str
    created: bool
    title: str = ""
    run_input: Optional[RunInput] = None
    upload_urls: list[str] = field(default_factory=list)


@dataclass
class TurnOutcome:
    status: str
    recorder: TurnRecorder


async def prepare_turn(
    db: AsyncSession,
    storage: StorageBackend,
    user_id: str,
    text: str,
    uploads: list[UploadedImage],
    conversation_id: Optional[str] = None,
) -> PreparedTurn:
    settings = get_settings()
    factory = get_session_factory()

    convo, created = await get_or_create_conversation(db, user_id, conversation_id)
    # Asset rows are written from other sessions and reference the conversation.
    await db.commit()

    persist = AssetPersister(storage, user_id, convo.id, factory)
    upload_urls = []
    for upload in uploads:
        upload.id = upload.id or new_image_id()
        upload_urls.append(await persist(upload.id, upload.data))

    user_msg = await add_user_turn(db, convo, text, upload_urls)
    recent = await get_recent_messages(
        db, convo, limit=settings.history_limit, before_sequence=user_msg.sequence_number,
    )
    history = build_history(recent)
    await hydrate_recent_images(history, storage, settings.context_full_window)

    placeholder = await create_assistant_placeholder(db, convo)
    await db.commit()

    logger.info(
        "Prepared turn: conversation=%s message=%s history=%d uploads=%d",
        convo.id, placeholder.id, len(history), len(uploads),
    )
    return PreparedTurn(
        user_id=user_id,
        conversation_id=convo.id,
        message_id=placeholder.id,
        created=created,
        title=convo.title or "",
        run_input=RunInput(
            user_id=user_id,
            conversation_id=convo.id,
            turn=UserTurn(text=text, images=list(uploads)),
            history=history,
        ),
        upload_urls=upload_urls,
    )


def build_orchestrator(storage: StorageBackend) -> AgentOrchestrator:
    return AgentOrchestrator(model=ChatCompletionsModel(), storage=storage)


async def execute_turn(
    prepared: PreparedTurn,
    storage: StorageBackend,
    channel: Optional[SSEChannel] = None,
    orchestrator: Optional[AgentOrchestrator] = None,
) -> TurnOutcome:
    """Run the agent for a prepared turn and record the result."""
    settings = get_settings()
    factory = get_session_factory()

    recorder = TurnRecorder(
        store=SqlTurnStore(factory),
        message_id=prepared.message_id,
        flush_interval=settings.stream_flush_interval_seconds,
    )
    persist = AssetPersister(storage, prepared.user_id, prepared.conversation_id, factory)
    notify = {"message_id": prepared.message_id}

    await realtime.chat_started(prepared.user_id, prepared.conversation_id, notify)
    status = await run_agent_turn(
        orchestrator or build_orchestrator(storage),
        prepared.run_input,
        recorder,
        persist,
        channel=channel,
        heartbeat_interval=settings.stream_heartbeat_seconds,
    )

    if status == MessageStatus.SENT:
        await realtime.chat_completed(prepared.user_id, prepared.conversation_id, notify)
    else:
        await realtime.chat_error(prepared.user_id, prepared.conversation_id, notify)
    return TurnOutcome(status=status, recorder=recorder)


def start_turn(
    prepared: PreparedTurn,
    storage: StorageBackend,
    channel: Optional[SSEChannel] = None,
) -> asyncio.Task:
    """Run the turn in a detached task. Client disconnects do not cancel it."""
    task = asyncio.create_task(execute_turn(prepared, storage, channel))
    _background_runs.add(task)
    task.add_done_callback(_run_finished)
    return task


def _run_finished(task: asyncio.Task) -> None:
    _background_runs.discard(task)
    if task.cancelled():
        logger.warning("Agent run was cancelled")
    elif task.exception() is not None:
        logger.error("Agent run ended with an error: %s", task.exception())


async def wait_for_runs(timeout: float = 30.0) -> None:
    """Give in-flight runs a chance to finish (used on shutdown)."""
    if not _background_runs:
        return
    logger.info("Waiting for %d agent run(s) to finish", len(_background_runs))
    _, pending = await asyncio.wait(set(_background_runs), timeout=timeout)
    for task in pending:
        task.cancel()
