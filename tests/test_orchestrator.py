"""Tests for atelier/agent/orchestrator.py

Drives the loop with a scripted model and the fake tool registry.
"""

import pytest

from atelier.agent.dispatcher import ToolDispatcher
from atelier.agent.errors import ModelCallError
from atelier.agent.orchestrator import AgentOrchestrator, RunInput, chunk_text
from atelier.agent.prompts import EMPTY_RESPONSE_MESSAGE, TRUNCATED_MESSAGE
from atelier.agent.types import (
    EventType,
    ModelResponse,
    ToolResultPart,
    UploadedImage,
    UserTurn,
)

from tests.helpers import FakeModel, build_registry, data_uri, text_response, tool_response


# ========== Fixtures ==========

def make_orchestrator(model, registry=None, **kwargs) -> AgentOrchestrator:
    kwargs.setdefault("max_iterations", 5)
    kwargs.setdefault("full_window", 6)
    kwargs.setdefault("expose_thinking", True)
    kwargs.setdefault("text_chunk_size", 1000)
    return AgentOrchestrator(
        model=model,
        dispatcher=ToolDispatcher(registry or build_registry()),
        **kwargs,
    )


def run_input(text: str = "hi", images=None) -> RunInput:
    return RunInput(
        user_id="u1",
        conversation_id="c1",
        turn=UserTurn(text=text, images=list(images or [])),
    )


async def collect(orchestrator, inp):
    return [event async for event in orchestrator.run(inp)]


def types_of(events) -> list[str]:
    return [e.type.value for e in events]


def tool_results(message) -> list[ToolResultPart]:
    return [p for p in message.parts if isinstance(p, ToolResultPart)]


# ========== Plain answers ==========

class TestPlainAnswer:
    @pytest.mark.asyncio
    async def test_text_only(self):
        model = FakeModel([text_response("Hello there")])
        orchestrator = make_orchestrator(model)
        events = await collect(orchestrator, run_input())

        assert types_of(events) == ["text_delta"]
        assert events[0].data == {"delta": "Hello there"}
        assert orchestrator.state.text == "Hello there"
        assert orchestrator.state.iterations == 1

    @pytest.mark.asyncio
    async def test_empty_answer_gets_fallback(self):
        model = FakeModel([text_response("")])
        events = await collect(make_orchestrator(model), run_input())
        assert events[0].data["delta"] == EMPTY_RESPONSE_MESSAGE

    @pytest.mark.asyncio
    async def test_text_is_chunked(self):
        model = FakeModel([text_response("abcdefghij")])
        events = await collect(make_orchestrator(model, text_chunk_size=4), run_input())
        assert [e.data["delta"] for e in events] == ["abcd", "efgh", "ij"]

    @pytest.mark.asyncio
    async def test_system_prompt_lists_images(self):
        model = FakeModel([text_response("ok")])
        upload = UploadedImage(data=data_uri(), id="img_up000001")
        await collect(make_orchestrator(model), run_input(images=[upload]))

        system = model.calls[0]["system"]
        assert "## Available Images" in system
        assert "img_up000001" in system and "image_1" in system


class TestThinking:
    @pytest.mark.asyncio
    async def test_thinking_exposed(self):
        model = FakeModel([ModelResponse(text="answer", thinking="pondering")])
        orchestrator = make_orchestrator(model)
        events = await collect(orchestrator, run_input())

        assert types_of(events) == ["thinking", "text_delta"]
        assert events[0].data == {"content": "pondering"}
        assert orchestrator.state.thinking == ["pondering"]

    @pytest.mark.asyncio
    async def test_thinking_hidden(self):
        model = FakeModel([ModelResponse(text="answer", thinking="pondering")])
        events = await collect(make_orchestrator(model, expose_thinking=False), run_input())
        assert types_of(events) == ["text_delta"]


# ========== Tool rounds ==========

class TestToolRounds:
    @pytest.mark.asyncio
    async def test_tool_then_answer(self):
        model = FakeModel([
            tool_response("echo", {"message": "ping"}, text="Let me check."),
            text_response("All done."),
        ])
        orchestrator = make_orchestrator(model)
        events = await collect(orchestrator, run_input())

        assert types_of(events) == ["text_delta", "tool_start", "tool_result", "text_delta"]
        start, result = events[1], events[2]
        assert start.data == {"tool": "echo", "displayName": "Echo", "arguments": {"message": "ping"}}
        assert result.data["result"] == {"success": True, "message": "echo: ping", "hasImages": False}
        assert result.invocation.tool == "echo"
        assert orchestrator.state.text == "Let me check.\n\nAll done."
        assert len(orchestrator.state.tool_calls) == 1

    @pytest.mark.asyncio
    async def test_continuation_passed_back_untouched(self):
        first = tool_response("echo", {"message": "ping"}, call_id="call_abc")
        model = FakeModel([first, text_response("done")])
        await collect(make_orchestrator(model), run_input())

        second_call = model.calls[1]["messages"]
        model_message, results_message = second_call[-2], second_call[-1]
        assert model_message.role == "model"
        assert model_message.continuation is first.continuation
        assert model_message.tool_calls[0].call_id == "call_abc"
        assert results_message.role == "user"
        assert tool_results(results_message)[0].call_id == "call_abc"

    @pytest.mark.asyncio
    async def test_validation_error_fed_back(self):
        model = FakeModel([
            tool_response("echo", {}),
            text_response("Sorry about that."),
        ])
        events = await collect(make_orchestrator(model), run_input())

        result_part = tool_results(model.calls[1]["messages"][-1])[0]
        assert result_part.is_error
        assert "Invalid arguments for echo" in result_part.result["message"]
        assert events[-1].data["delta"] == "Sorry about that."

    @pytest.mark.asyncio
    async def test_unknown_image_reference_recovers(self):
        model = FakeModel([
            tool_response("restyle", {"original_image": "img_deadbeef", "outfit_images": ["image_1"]}),
            text_response("I could not find that image."),
        ])
        upload = UploadedImage(data=data_uri(), id="img_up000001")
        orchestrator = make_orchestrator(model)
        events = await collect(orchestrator, run_input(images=[upload]))

        tool_result = next(e for e in events if e.type == EventType.TOOL_RESULT)
        assert tool_result.data["result"]["success"] is False
        fed_back = tool_results(model.calls[1]["messages"][-1])[0]
        assert fed_back.is_error
        assert "img_deadbeef" in fed_back.result["message"]
        assert orchestrator.state.iterations == 2
        assert not orchestrator.state.truncated

    @pytest.mark.asyncio
    async def test_iteration_ceiling(self):
        model = FakeModel([tool_response("echo", {"message": str(i)}) for i in range(3)])
        orchestrator = make_orchestrator(model, max_iterations=3)
        events = await collect(orchestrator, run_input())

        assert len(model.calls) == 3
        assert orchestrator.state.truncated
        assert events[-1].type == EventType.TEXT_DELTA
        assert orchestrator.state.text.endswith(TRUNCATED_MESSAGE)

    @pytest.mark.asyncio
    async def test_binary_stripped_from_arguments(self):
        uri = data_uri()
        model = FakeModel([
            tool_response("echo", {"message": uri}),
            text_response("ok"),
        ])
        events = await collect(make_orchestrator(model), run_input())

        start = events[0]
        assert start.data["arguments"]["message"] == f"[REMOVED_BINARY_DATA_{len(uri)}_CHARS]"


class TestImageTools:
    @pytest.mark.asyncio
    async def test_generating_tool_ends_turn(self):
        model = FakeModel([
            tool_response("paint", {"prompt": "coat", "image_references": ["image_1"]}),
        ])
        upload = UploadedImage(data=data_uri(), id="img_up000001")
        orchestrator = make_orchestrator(model)
        events = await collect(orchestrator, run_input(images=[upload]))

        assert types_of(events) == ["tool_start", "image", "tool_result", "text_delta"]
        assert len(model.calls) == 1
        image = events[1].data
        assert image["id"] == "gen_paint001"
        assert image["url"].startswith("data:image/png;base64,")
        assert events[2].data["result"]["hasImages"] is True
        assert events[3].data["delta"] == "Painted from 1 reference(s)."
        assert [img.id for img in orchestrator.state.images] == ["gen_paint001"]

    @pytest.mark.asyncio
    async def test_recorded_result_is_lean(self):
        model = FakeModel([tool_response("paint", {"prompt": "coat"})])
        events = await collect(make_orchestrator(model), run_input())

        invocation = events[-2].invocation
        recorded_url = invocation.result["images"][0]["url"]
        assert recorded_url.startswith("[REMOVED_BINARY_DATA_")

    @pytest.mark.asyncio
    async def test_continuing_image_tool(self):
        model = FakeModel([
            tool_response("paint", {"prompt": "coat"}),
            tool_response("restyle", {"original_image": "paint001", "outfit_images": ["gen_paint001"]}, call_id="call_2"),
            text_response("Here you go."),
        ])
        orchestrator = make_orchestrator(model, registry=build_registry(paint_ends_turn=False))
        events = await collect(orchestrator, run_input())

        assert len(model.calls) == 3
        second_result = [e for e in events if e.type == EventType.TOOL_RESULT][1]
        assert second_result.data["result"]["success"] is True
        assert "gen_paint001" in model.calls[1]["system"]


class TestModelErrors:
    @pytest.mark.asyncio
    async def test_model_call_error_propagates(self):
        model = FakeModel([ModelCallError("upstream 503")])
        with pytest.raises(ModelCallError, match="upstream 503"):
            await collect(make_orchestrator(model), run_input())

    @pytest.mark.asyncio
    async def test_other_errors_wrapped(self):
        model = FakeModel([ConnectionError("reset")])
        with pytest.raises(ModelCallError):
            await collect(make_orchestrator(model), run_input())

    @pytest.mark.asyncio
    async def test_error_after_tool_round(self):
        model = FakeModel([tool_response("echo", {"message": "x"}), ModelCallError("gone")])
        events = []
        with pytest.raises(ModelCallError):
            async for event in make_orchestrator(model).run(run_input()):
                events.append(event)
        assert types_of(events) == ["tool_start", "tool_result"]


class TestChunkText:
    def test_short(self):
        assert chunk_text("abc", 10) == ["abc"]

    def test_empty(self):
        assert chunk_text("", 10) == []

    def test_disabled(self):
        assert chunk_text("abcdef", 0) == ["abcdef"]
