"""
Shared agent types.

Message parts form a closed set: every consumer handles each variant
explicitly and raises on anything else.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional, Union


# ── Message parts ───────────────────────────────────────────────────


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class InlineImagePart:
    mime_type: str
    data: str  # base64, no data: prefix


@dataclass(frozen=True)
class ToolCallPart:
    name: str
    args: dict
    call_id: str = ""


@dataclass(frozen=True)
class ToolResultPart:
    name: str
    result: dict
    call_id: str = ""
    is_error: bool = False


@dataclass(frozen=True)
class ThoughtPart:
    text: str


Part = Union[TextPart, InlineImagePart, ToolCallPart, ToolResultPart, ThoughtPart]


@dataclass
class AgentMessage:
    """
    One entry of the conversation sent to the model.

    `continuation` is whatever the model client attached to a response it
    produced. It is carried forward untouched and handed back to the same
    client on the next call.
    """

    role: Literal["user", "model"]
    parts: list[Part] = field(default_factory=list)
    continuation: Optional[Any] = None

    @property
    def tool_calls(self) -> list[ToolCallPart]:
        return [p for p in self.parts if isinstance(p, ToolCallPart)]


@dataclass
class ModelResponse:
    """A single model turn, already split into its parts."""

    text: str = ""
    thinking: str = ""
    tool_calls: list[ToolCallPart] = field(default_factory=list)
    continuation: Optional[Any] = None
    usage: dict = field(default_factory=dict)


# ── Tool results ────────────────────────────────────────────────────


@dataclass
class GeneratedImage:
    id: str
    payload: str  # data URI or URL
    mime_type: str = "image/png"


@dataclass
class ImageInput:
    """A resolved image argument, loaded and ready for a tool."""

    id: str
    data: bytes
    mime_type: str


@dataclass
class ToolResult:
    success: bool
    message: str
    images: list[GeneratedImage] = field(default_factory=list)
    should_continue: Optional[bool] = None
    data: dict = field(default_factory=dict)

    @classmethod
    def failure(cls, message: str, **data) -> "ToolResult":
        return cls(success=False, message=message, data=data)

    def to_payload(self) -> dict:
        payload: dict[str, Any] = {"success": self.success, "message": self.message}
        if self.images:
            payload["images"] = [
                {"id": img.id, "url": img.payload, "mimeType": img.mime_type}
                for img in self.images
            ]
        payload.update(self.data)
        return payload


@dataclass
class ToolInvocation:
    tool: str
    arguments: dict
    result: dict
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "tool": self.tool,
            "args": self.arguments,
            "result": self.result,
            "timestamp": self.timestamp.isoformat(),
        }


# ── Stream events ───────────────────────────────────────────────────


class EventType(str, Enum):
    CONVERSATION_CREATED = "conversation"
    THINKING = "thinking"
    TOOL_START = "tool_start"
    TOOL_RESULT = "tool_result"
    TEXT_DELTA = "text_delta"
    IMAGE = "image"
    DONE = "done"
    ERROR = "error"
    HEARTBEAT = "ping"


@dataclass
class StreamEvent:
    """
    Progress notification produced by the orchestrator.

    `data` is what goes on the wire. `invocation` rides along on
    tool_result events so the persistence side can log the call without
    re-reading the wire payload.
    """

    type: EventType
    data: dict
    invocation: Optional[ToolInvocation] = None


# ── Conversation input ──────────────────────────────────────────────


@dataclass
class HistoryImage:
    id: str
    payload: str  # data URI once hydrated, otherwise the stored URL
    url: Optional[str] = None


@dataclass
class HistoryTurn:
    role: Literal["user", "assistant"]
    text: str = ""
    images: list[HistoryImage] = field(default_factory=list)
    generated_images: list[HistoryImage] = field(default_factory=list)


@dataclass
class UploadedImage:
    data: str  # data URI
    id: Optional[str] = None


@dataclass
class UserTurn:
    text: str = ""
    images: list[UploadedImage] = field(default_factory=list)
