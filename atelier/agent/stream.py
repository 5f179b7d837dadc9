"""
Stream bridge.

Connects one agent run to two consumers with different lifetimes:

  - the HTTP client, fed through an SSEChannel, which may go away at any time
  - the database row of the assistant turn, written through a TurnRecorder,
    which must end up complete no matter what the client does

The run itself is executed by `run_agent_turn`, normally as a detached
asyncio task, so a dropped connection never cancels generation.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Protocol

from .errors import ModelCallError
from .orchestrator import AgentOrchestrator, RunInput
from .types import EventType, StreamEvent

logger = logging.getLogger(__name__)



def format_sse(event: str, data: Any) -> str:
    return f"event: {event}\ndata: {json.dumps(data, default=str, ensure_ascii=False)}\n\n"


# ── Client side ─────────────────────────────────────────────────────


class SSEChannel:
    """
    Queue between a running agent and one HTTP response.

    Once the client is gone, sends become no-ops and report False.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Optional[str]] = asyncio.Queue()
        self._closed = False
        self.disconnected = False

    @property
    def open(self) -> bool:
        return not (self._closed or self.disconnected)

    def send(self, event: str, data: Any) -> bool:
        return self.send_raw(format_sse(event, data))

    def send_raw(self, text: str) -> bool:
        if not self.open:
            return False
        self._queue.put_nowait(text)
        return True

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(None)

    def disconnect(self) -> None:
        if not self.disconnected and not self._closed:
            logger.info("Client disconnected; agent keeps running")
        self.disconnected = True

    async def stream(self) -> AsyncIterator[str]:
        """Body iterator for StreamingResponse."""
        try:
            while True:
                item = await self._queue.get()
                if item is None:
                    break
                yield item
        finally:
            # Reached early only when the response is torn down.
            if not self._closed:
                self.disconnect()


async def heartbeat(channel: SSEChannel, interval: float) -> None:
    while channel.open:
        await asyncio.sleep(interval)
        channel.send(EventType.HEARTBEAT.value, {"timestamp": int(time.time() * 1000)})


# ── Persistence side ────────────────────────────────────────────────


@dataclass
class TurnSnapshot:
    text: str
    thinking: Optional[str]
    generated_image_urls: list[str]
    tool_calls: list[dict]
    status: str


class TurnStore(Protocol):
    async def save_turn(self, message_id: str, snapshot: TurnSnapshot) -> None:
        ...


# persist(image_id, payload, mime_type) -> url
ImagePersister = Callable[[str, str, Optional[str]], Awaitable[str]]


@dataclass
class TurnRecorder:
    """
    Accumulates an assistant turn and writes it out.

    `maybe_flush` schedules a background write at most once per interval
    while there are unsaved changes; `finalize` waits for it and writes the
    terminal status. Writes are serialized by a lock.
    """

    store: TurnStore
    message_id: str
    flush_interval: float = 2.0
    clock: Callable[[], float] = time.monotonic

    text: str = ""
    thinking: list[str] = field(default_factory=list)
    image_urls: list[str] = field(default_factory=list)
    tool_calls: list[dict] = field(default_factory=list)

    def __post_init__(self) -> None:
        self._lock = asyncio.Lock()
        self._dirty = False
        self._last_flush = self.clock()
        self._pending: Optional[asyncio.Task] = None
        self._urls_by_id: dict[str, str] = {}
        self.flush_count = 0

    def add_text(self, delta: str) -> None:
        self.text += delta
        self._dirty = True

    def add_thinking(self, text: str) -> None:
        self.thinking.append(text)
        self._dirty = True

    def add_image(self, image_id: str, url: str) -> None:
        self._urls_by_id[image_id] = url
        self.image_urls.append(url)
        self._dirty = True

    def add_tool_call(self, entry: dict) -> None:
        # Lean results carry placeholders where image data was; point them at the stored copy.
        for image in entry.get("result", {}).get("images") or []:
            url = self._urls_by_id.get(image.get("id")) if isinstance(image, dict) else None
            if url:
                image["url"] = url
        self.tool_calls.append(entry)
        self._dirty = True

    def snapshot(self, status: str) -> TurnSnapshot:
        return TurnSnapshot(
            text=self.text,
            thinking="\n\n".join(self.thinking) or None,
            generated_image_urls=list(self.image_urls),
            tool_calls=[dict(c) for c in self.tool_calls],
            status=status,
        )

    def maybe_flush(self) -> None:
        if not self._dirty:
            return
        if self._pending is not None and not self._pending.done():
            return
        if self.clock() - self._last_flush < self.flush_interval:
            return
        self._pending = asyncio.create_task(self._flush("generating"))

    async def finalize(self, status: str) -> None:
        if self._pending is not None:
            await asyncio.gather(self._pending, return_exceptions=True)
        await self._flush(status)

    async def _flush(self, status: str) -> None:
        async with self._lock:
            snapshot = self.snapshot(status)
            self._dirty = False
            self._last_flush = self.clock()
            try:
                await self.store.save_turn(self.message_id, snapshot)
                self.flush_count += 1
            except Exception as e:
                self._dirty = True
                logger.error("Failed to save turn %s (%s): %s", self.message_id, status, e)
                if status != "generating":
                    raise


# ── Run ─────────────────────────────────────────────────────────────


async def run_agent_turn(
    orchestrator: AgentOrchestrator,
    run_input: RunInput,
    recorder: TurnRecorder,
    persist_image: ImagePersister,
    channel: Optional[SSEChannel] = None,
    heartbeat_interval: float = 5.0,
) -> str:
    """
    Run the agent to completion, forwarding events and recording the turn.
    Returns the final status ("sent" or "failed").
    """
    beat = None
    if channel is not None and heartbeat_interval > 0:
        beat = asyncio.create_task(heartbeat(channel, heartbeat_interval))

    def emit(event: str, data: dict) -> None:
        if channel is not None:
            channel.send(event, data)

    unsaved: list[str] = []
    status = "sent"
    error_message = None
    try:
        async for event in orchestrator.run(run_input):
            await _forward(event, recorder, persist_image, emit, unsaved)
            recorder.maybe_flush()
    except ModelCallError as e:
        status = "failed"
        error_message = str(e)
        logger.error("Agent run failed: %s", e)
    except Exception as e:
        status = "failed"
        error_message = "Something went wrong while generating a response."
        logger.exception("Agent run crashed: %s", e)
    finally:
        if beat is not None:
            beat.cancel()

    try:
        await recorder.finalize(status)
    except Exception as e:
        # The row is stuck in "generating"; the client must not see success
        logger.exception("Final save of turn %s failed: %s", recorder.message_id, e)
        status = "failed"
        error_message = error_message or "The response could not be saved."

    if status == "failed":
        emit(EventType.ERROR.value, {"message": error_message})
    else:
        emit(EventType.DONE.value, {
            "conversationId": run_input.conversation_id,
            "messageId": recorder.message_id,
        })
    if channel is not None:
        channel.close()
    return status


async def _forward(
    event: StreamEvent,
    recorder: TurnRecorder,
    persist_image: ImagePersister,
    emit: Callable[[str, dict], None],
    unsaved: list[str],
) -> None:
    data = event.data

    if event.type == EventType.IMAGE:
        try:
            url = await persist_image(data["id"], data["url"], data.get("mimeType"))
        except Exception as e:
            # Only durable URLs reach the client and the saved turn
            logger.error("Failed to persist image %s, dropping it: %s", data["id"], e)
            unsaved.append(data["id"])
            return
        data = {**data, "url": url}
        recorder.add_image(data["id"], url)
    elif event.type == EventType.TEXT_DELTA:
        recorder.add_text(data["delta"])
    elif event.type == EventType.THINKING:
        recorder.add_thinking(data["content"])
    elif event.type == EventType.TOOL_RESULT:
        if unsaved:
            error = f"{len(unsaved)} generated image(s) could not be saved: {', '.join(unsaved)}"
            data = {**data, "result": {**data["result"], "error": error}}
            unsaved.clear()
        if event.invocation is not None:
            entry = event.invocation.to_dict()
            if "error" in data["result"]:
                entry["result"] = {**entry.get("result", {}), "error": data["result"]["error"]}
            recorder.add_tool_call(entry)

    emit(event.type.value, data)
