"""Tests for atelier/services/chat.py (prepare and run a turn end to end).

The model is scripted; the database is the SQLite fixture from conftest.
"""

from types import SimpleNamespace

import pytest
from sqlalchemy import select

from atelier.agent.dispatcher import ToolDispatcher
from atelier.agent.orchestrator import AgentOrchestrator
from atelier.agent.types import UploadedImage
from atelier.core import redis as redis_core
from atelier.models import Message, MessageStatus
from atelier.services import chat as chat_service

from tests.helpers import FakeModel, PNG_BYTES, build_registry, data_uri, text_response, tool_response


@pytest.fixture(autouse=True)
def wiring(monkeypatch, session_factory):
    monkeypatch.setattr(chat_service, "get_session_factory", lambda: session_factory)
    monkeypatch.setattr(redis_core, "get_flags", lambda: SimpleNamespace(use_redis=False))


def orchestrator(model, storage) -> AgentOrchestrator:
    return AgentOrchestrator(
        model=model,
        dispatcher=ToolDispatcher(build_registry()),
        storage=storage,
        max_iterations=5,
        expose_thinking=False,
    )


async def saved_turns(session_factory, conversation_id: str) -> list[Message]:
    async with session_factory() as session:
        rows = await session.scalars(
            select(Message).where(Message.conversation_id == conversation_id).order_by(Message.sequence_number)
        )
        return list(rows)


# ========== Prepare ==========

class TestPrepareTurn:
    @pytest.mark.asyncio
    async def test_upload_stored_and_placeholder_created(self, db, storage, session_factory):
        prepared = await chat_service.prepare_turn(
            db, storage, "u1", "Put this shirt on a model", [UploadedImage(data=data_uri(PNG_BYTES))],
        )

        assert prepared.created
        assert len(prepared.upload_urls) == 1
        upload = prepared.run_input.turn.images[0]
        assert upload.id.startswith("img_")
        assert prepared.upload_urls[0] == f"/api/chat/assets/{upload.id}.png"

        user, assistant = await saved_turns(session_factory, prepared.conversation_id)
        assert user.image_urls == prepared.upload_urls
        assert assistant.id == prepared.message_id
        assert assistant.status == MessageStatus.GENERATING

    @pytest.mark.asyncio
    async def test_second_turn_sees_first_as_history(self, db, storage):
        first = await chat_service.prepare_turn(db, storage, "u1", "hello", [])
        placeholder = await db.get(Message, first.message_id)
        placeholder.status = MessageStatus.SENT
        placeholder.content = "Hi! Send me a product photo."
        await db.commit()

        second = await chat_service.prepare_turn(db, storage, "u1", "here it is", [], first.conversation_id)

        assert not second.created
        history = second.run_input.history
        assert [(h.role, h.text) for h in history] == [
            ("user", "hello"), ("assistant", "Hi! Send me a product photo."),
        ]


# ========== Execute ==========

class TestExecuteTurn:
    @pytest.mark.asyncio
    async def test_text_turn_saved_as_sent(self, db, storage, session_factory):
        prepared = await chat_service.prepare_turn(db, storage, "u1", "hello", [])
        model = FakeModel([text_response("Hello! What are we shooting today?")])

        outcome = await chat_service.execute_turn(prepared, storage, orchestrator=orchestrator(model, storage))

        assert outcome.status == MessageStatus.SENT
        _, assistant = await saved_turns(session_factory, prepared.conversation_id)
        assert assistant.status == MessageStatus.SENT
        assert assistant.content == "Hello! What are we shooting today?"

    @pytest.mark.asyncio
    async def test_generated_image_persisted(self, db, storage, session_factory):
        prepared = await chat_service.prepare_turn(
            db, storage, "u1", "paint it", [UploadedImage(data=data_uri(PNG_BYTES), id="img_up000001")],
        )
        model = FakeModel([tool_response("paint", {"prompt": "studio shot", "image_references": ["image_1"]})])

        outcome = await chat_service.execute_turn(prepared, storage, orchestrator=orchestrator(model, storage))

        assert outcome.status == MessageStatus.SENT
        assert "gen_paint001.png" in storage.files
        _, assistant = await saved_turns(session_factory, prepared.conversation_id)
        assert assistant.generated_image_urls == ["/api/chat/assets/gen_paint001.png"]
        assert assistant.tool_calls[0]["tool"] == "paint"

    @pytest.mark.asyncio
    async def test_model_failure_marks_turn_failed(self, db, storage, session_factory):
        from atelier.agent.errors import ModelCallError

        prepared = await chat_service.prepare_turn(db, storage, "u1", "hello", [])
        model = FakeModel([ModelCallError("upstream 503")])

        outcome = await chat_service.execute_turn(prepared, storage, orchestrator=orchestrator(model, storage))

        assert outcome.status == MessageStatus.FAILED
        _, assistant = await saved_turns(session_factory, prepared.conversation_id)
        assert assistant.status == MessageStatus.FAILED
