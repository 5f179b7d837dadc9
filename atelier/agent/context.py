"""
Context builder.

Turns persisted conversation history plus the incoming user turn into the
message list for the model, registering every image it sees in the run's
ImageStore along the way.

Only the most recent turns carry inline image bytes. Older images are
replaced by a short text placeholder that still names the image id, so the
model can reference them and tools can resolve them.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .image_store import ImageKind, ImageStore, split_data_uri
from .types import (
    AgentMessage,
    HistoryImage,
    HistoryTurn,
    InlineImagePart,
    Part,
    TextPart,
    UserTurn,
)

logger = logging.getLogger(__name__)

DEFAULT_FULL_WINDOW = 6
EMPTY_TURN_TEXT = "Please help me with this request."


@dataclass
class BuiltContext:
    messages: list[AgentMessage]
    store: ImageStore

    @property
    def image_context(self) -> dict[str, str]:
        return self.store.image_context()


def _image_parts(image: HistoryImage, inline: bool) -> list[Part]:
    if inline and image.payload.startswith("data:"):
        mime_type, data = split_data_uri(image.payload)
        return [
            InlineImagePart(mime_type=mime_type, data=data),
            TextPart(text=f"[Image ID: {image.id}]"),
        ]
    return [TextPart(text=f"[cached image: {image.id}]")]


def _aliases(image: HistoryImage) -> list[str]:
    aliases = [image.url] if image.url else []
    if not image.payload.startswith("data:") and image.payload not in aliases:
        aliases.append(image.payload)
    return aliases


def build_context(
    history: list[HistoryTurn],
    turn: UserTurn,
    store: Optional[ImageStore] = None,
    full_window: int = DEFAULT_FULL_WINDOW,
) -> BuiltContext:
    store = store if store is not None else ImageStore()
    messages: list[AgentMessage] = []
    total = len(history)

    for index, past in enumerate(history):
        inline = total - index <= full_window
        parts: list[Part] = []

        for image in past.images:
            store.register(
                image.payload,
                ImageKind.REFERENCE,
                id=image.id,
                description="Uploaded by the user earlier in this conversation",
                aliases=_aliases(image),
            )
            parts.extend(_image_parts(image, inline))

        for image in past.generated_images:
            store.register(
                image.payload,
                ImageKind.GENERATED,
                id=image.id,
                description="Generated earlier in this conversation",
                aliases=_aliases(image),
            )
            parts.extend(_image_parts(image, inline))

        if past.text:
            parts.append(TextPart(text=past.text))
        if not parts:
            continue

        role = "user" if past.role == "user" else "model"
        messages.append(AgentMessage(role=role, parts=parts))

    current: list[Part] = []
    for position, upload in enumerate(turn.images, start=1):
        image_id = store.register(
            upload.data,
            ImageKind.UPLOADED,
            id=upload.id,
            description=f"Uploaded by the user in this message (image {position})",
            aliases=[f"image_{position}"],
        )
        upload.id = image_id
        mime_type, data = split_data_uri(upload.data)
        current.append(InlineImagePart(mime_type=mime_type, data=data))
        current.append(TextPart(text=f"[Uploaded Image ID: {image_id}]"))

    if turn.text:
        current.append(TextPart(text=turn.text))
    if not current:
        current.append(TextPart(text=EMPTY_TURN_TEXT))
    messages.append(AgentMessage(role="user", parts=current))

    logger.debug(
        "Built context: %d messages, %d images (%d history turns, window=%d)",
        len(messages), len(store), total, full_window,
    )
    return BuiltContext(messages=messages, store=store)
