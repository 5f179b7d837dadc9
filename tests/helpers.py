"""Test doubles shared across the test modules."""

import base64
from typing import Optional

from atelier.agent.stream import TurnSnapshot
from atelier.agent.types import GeneratedImage, ModelResponse, ToolCallPart, ToolResult
from atelier.core.storage import StorageBackend
from atelier.tools.registry import ToolArgs, ToolRegistry

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


def data_uri(payload: bytes = PNG_BYTES, mime_type: str = "image/png") -> str:
    return f"data:{mime_type};base64,{base64.b64encode(payload).decode()}"


# ── Model ───────────────────────────────────────────────────────────

class FakeModel:
    """ModelClient that replays scripted responses and records every call."""

    def __init__(self, responses: list):
        self.responses = list(responses)
        self.calls: list[dict] = []

    async def generate(self, messages, system, tools):
        self.calls.append({"messages": list(messages), "system": system, "tools": tools})
        if not self.responses:
            raise AssertionError("FakeModel ran out of scripted responses")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def text_response(text: str) -> ModelResponse:
    return ModelResponse(text=text)


def tool_response(name: str, args: dict, call_id: str = "call_1", text: str = "") -> ModelResponse:
    return ModelResponse(
        text=text,
        tool_calls=[ToolCallPart(name=name, args=args, call_id=call_id)],
        continuation={
            "role": "assistant",
            "content": text or None,
            "tool_calls": [{
                "id": call_id,
                "type": "function",
                "function": {"name": name, "arguments": "{}"},
                "extra_content": {"google": {"thought_signature": f"sig-{call_id}"}},
            }],
        },
    )


# ── Storage ─────────────────────────────────────────────────────────

class FakeStorage(StorageBackend):
    def __init__(self, fail: bool = False):
        self.files: dict[str, tuple[bytes, str]] = {}
        self.fail = fail

    async def save_asset(self, file_bytes: bytes, filename: str) -> str:
        if self.fail:
            raise OSError("disk full")
        content_type = "image/jpeg" if filename.endswith((".jpg", ".jpeg")) else "image/png"
        self.files[filename] = (file_bytes, content_type)
        return f"/api/chat/assets/{filename}"

    async def read_asset(self, filename: str) -> Optional[tuple[bytes, str]]:
        return self.files.get(filename)


class MemoryTurnStore:
    """TurnStore that keeps every snapshot it is given."""

    def __init__(self, fail: bool = False):
        self.saved: list[TurnSnapshot] = []
        self.fail = fail

    async def save_turn(self, message_id: str, snapshot: TurnSnapshot) -> None:
        if self.fail:
            raise RuntimeError("database unavailable")
        self.saved.append(snapshot)

    @property
    def last(self) -> TurnSnapshot:
        return self.saved[-1]


# ── Tools ───────────────────────────────────────────────────────────

class EchoArgs(ToolArgs):
    message: str


class PaintArgs(ToolArgs):
    prompt: str
    image_references: list[str] = []


class RestyleArgs(ToolArgs):
    original_image: str
    outfit_images: list[str]


class BrokenArgs(ToolArgs):
    pass


def build_registry(paint_ends_turn: bool = True) -> ToolRegistry:
    registry = ToolRegistry()

    @registry.tool("echo", "Repeat a message.", EchoArgs)
    async def echo(args, images, context):
        return ToolResult(success=True, message=f"echo: {args.message}")

    @registry.tool(
        "paint", "Paint an image.", PaintArgs,
        display_name="Painter", category="generation", image_args=("image_references",),
    )
    async def paint(args, images, context):
        seen = [img.id for img in images["image_references"]]
        return ToolResult(
            success=True,
            message=f"Painted from {len(seen)} reference(s).",
            images=[GeneratedImage(id="gen_paint001", payload=data_uri(b"painted"))],
            should_continue=not paint_ends_turn,
            data={"references": seen},
        )

    @registry.tool(
        "restyle", "Change an outfit.", RestyleArgs,
        image_args=("original_image", "outfit_images"),
    )
    async def restyle(args, images, context):
        return ToolResult(
            success=True,
            message="resolved",
            data={
                "original": images["original_image"].id,
                "outfits": [img.id for img in images["outfit_images"]],
            },
        )

    @registry.tool("broken", "Always fails.", BrokenArgs)
    async def broken(args, images, context):
        raise RuntimeError("kaboom")

    return registry
