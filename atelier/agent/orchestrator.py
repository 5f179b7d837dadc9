"""
Agent loop.

Build context → call model → run requested tools → feed results back →
repeat until the model answers in plain text, a generating tool ends the
turn, or the iteration ceiling is hit.

Progress is yielded as StreamEvents in the order it happens. The loop never
writes to storage or the network itself; the stream bridge does that.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, AsyncGenerator, Optional

from ..core.config import get_settings
from ..core.flags import get_flags
from ..services.llm import ModelClient
from .context import BuiltContext, build_context
from .dispatcher import ToolContext, ToolDispatcher, lean_result
from .errors import ModelCallError
from .prompts import AGENT_SYSTEM_PROMPT, EMPTY_RESPONSE_MESSAGE, TRUNCATED_MESSAGE
from .types import (
    AgentMessage,
    EventType,
    GeneratedImage,
    HistoryTurn,
    Part,
    StreamEvent,
    TextPart,
    ThoughtPart,
    ToolInvocation,
    ToolResultPart,
    UserTurn,
)

logger = logging.getLogger(__name__)


@dataclass
class RunInput:
    user_id: str
    conversation_id: str
    turn: UserTurn
    history: list[HistoryTurn] = field(default_factory=list)


@dataclass
class RunState:
    """What one run has produced so far."""

    iterations: int = 0
    text: str = ""
    thinking: list[str] = field(default_factory=list)
    images: list[GeneratedImage] = field(default_factory=list)
    tool_calls: list[ToolInvocation] = field(default_factory=list)
    truncated: bool = False


def chunk_text(text: str, size: int) -> list[str]:
    if size <= 0 or len(text) <= size:
        return [text] if text else []
    return [text[i:i + size] for i in range(0, len(text), size)]


class AgentOrchestrator:
    def __init__(
        self,
        model: ModelClient,
        dispatcher: Optional[ToolDispatcher] = None,
        storage: Any = None,
        max_iterations: Optional[int] = None,
        full_window: Optional[int] = None,
        expose_thinking: Optional[bool] = None,
        text_chunk_size: Optional[int] = None,
        system_prompt: str = AGENT_SYSTEM_PROMPT,
    ):
        settings = get_settings()
        self.model = model
        self.dispatcher = dispatcher or ToolDispatcher()
        self.storage = storage
        self.max_iterations = max_iterations or settings.agent_max_iterations
        self.full_window = full_window if full_window is not None else settings.context_full_window
        self.expose_thinking = (
            get_flags().expose_thinking if expose_thinking is None else expose_thinking
        )
        self.text_chunk_size = text_chunk_size or settings.stream_text_chunk_size
        self.system_prompt = system_prompt
        self.state = RunState()

    # ── Events ──────────────────────────────────────────────────────

    def _text(self, text: str) -> list[StreamEvent]:
        self.state.text += text
        return [
            StreamEvent(EventType.TEXT_DELTA, {"delta": chunk})
            for chunk in chunk_text(text, self.text_chunk_size)
        ]

    def _thinking(self, text: str) -> Optional[StreamEvent]:
        if not text or not self.expose_thinking:
            return None
        self.state.thinking.append(text)
        return StreamEvent(EventType.THINKING, {"content": text})

    # ── Loop ────────────────────────────────────────────────────────

    async def run(self, run_input: RunInput) -> AsyncGenerator[StreamEvent, None]:
        """
        Drive one conversation turn. Yields StreamEvents.

        Raises ModelCallError if the model cannot be reached; everything that
        goes wrong inside a tool is reported back to the model instead.
        """
        self.state = RunState()
        start = time.monotonic()

        ctx: BuiltContext = build_context(
            run_input.history, run_input.turn, full_window=self.full_window,
        )
        tool_ctx = ToolContext(
            user_id=run_input.user_id,
            conversation_id=run_input.conversation_id,
            store=ctx.store,
            storage=self.storage,
        )
        messages: list[AgentMessage] = list(ctx.messages)
        tools = self.dispatcher.tools_for_llm()

        for iteration in range(1, self.max_iterations + 1):
            self.state.iterations = iteration
            system = f"{self.system_prompt}\n\n{ctx.store.registry_prompt()}"

            logger.info(
                "Agent iteration %d/%d: %d messages, %d images known",
                iteration, self.max_iterations, len(messages), len(ctx.store),
            )
            try:
                response = await self.model.generate(messages, system=system, tools=tools)
            except ModelCallError:
                logger.exception("Model call failed on iteration %d", iteration)
                raise
            except Exception as e:
                logger.exception("Model call failed on iteration %d", iteration)
                raise ModelCallError(str(e)) from e

            thinking = self._thinking(response.thinking)
            if thinking:
                yield thinking

            # ── Final answer ────────────────────────────────────────
            if not response.tool_calls:
                for event in self._text(response.text or EMPTY_RESPONSE_MESSAGE):
                    yield event
                logger.info(
                    "Agent finished in %d iteration(s), %dms, %d tool call(s)",
                    iteration, int((time.monotonic() - start) * 1000), len(self.state.tool_calls),
                )
                return

            # ── Tool round ──────────────────────────────────────────
            if response.text:
                for event in self._text(response.text + "\n\n"):
                    yield event

            model_parts: list[Part] = []
            if response.thinking:
                model_parts.append(ThoughtPart(text=response.thinking))
            if response.text:
                model_parts.append(TextPart(text=response.text))
            model_parts.extend(response.tool_calls)
            messages.append(AgentMessage(
                role="model", parts=model_parts, continuation=response.continuation,
            ))

            result_parts: list[Part] = []
            final = None
            for call in response.tool_calls:
                display_name = self.dispatcher.display_name(call.name)
                logger.info("Tool call: %s(%s)", call.name, json.dumps(call.args, default=str)[:200])
                yield StreamEvent(EventType.TOOL_START, {
                    "tool": call.name,
                    "displayName": display_name,
                    "arguments": lean_result(call.args),
                })

                result = await self.dispatcher.execute(call.name, call.args, tool_ctx)
                lean = lean_result(result.to_payload())
                invocation = ToolInvocation(tool=call.name, arguments=lean_result(call.args), result=lean)
                self.state.tool_calls.append(invocation)

                for image in result.images:
                    self.state.images.append(image)
                    yield StreamEvent(EventType.IMAGE, {
                        "id": image.id,
                        "url": image.payload,
                        "mimeType": image.mime_type,
                    })

                yield StreamEvent(
                    EventType.TOOL_RESULT,
                    {
                        "tool": call.name,
                        "displayName": display_name,
                        "arguments": invocation.arguments,
                        "result": {
                            "success": result.success,
                            "message": result.message,
                            "hasImages": bool(result.images),
                        },
                    },
                    invocation=invocation,
                )
                result_parts.append(ToolResultPart(
                    name=call.name, result=lean, call_id=call.call_id, is_error=not result.success,
                ))

                if result.should_continue is False and result.images:
                    final = result
                    break

            messages.append(AgentMessage(role="user", parts=result_parts))

            if final is not None:
                logger.info("Agent ended early after %s produced %d image(s)", call.name, len(final.images))
                for event in self._text(final.message):
                    yield event
                return

        self.state.truncated = True
        logger.warning("Agent hit iteration ceiling (%d)", self.max_iterations)
        for event in self._text(TRUNCATED_MESSAGE):
            yield event
