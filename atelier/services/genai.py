"""
Gemini multimodal service. Async wrapper around the sync google-genai SDK.

Used by the tools for native image generation and image understanding.
"""

import asyncio
import json
import logging
import uuid
from typing import Optional

from ..agent.image_store import to_data_uri
from ..agent.types import GeneratedImage, ImageInput
from ..core.config import get_settings

logger = logging.getLogger(__name__)


_gemini_client = None


def _get_gemini_client():
    """Lazy-load and cache the google-genai client as a singleton.

    The client must stay referenced: once it is garbage-collected its
    internal httpx connection closes.
    """
    global _gemini_client
    if _gemini_client is not None:
        return _gemini_client

    from google import genai

    settings = get_settings()
    if not settings.gemini_api_key:
        raise ValueError("GEMINI_API_KEY is required for image generation and analysis")
    _gemini_client = genai.Client(api_key=settings.gemini_api_key)
    return _gemini_client


def _image_parts(images: list[ImageInput], labels: Optional[list[str]] = None) -> list:
    from google.genai import types

    parts = []
    for i, image in enumerate(images):
        if labels and i < len(labels) and labels[i]:
            parts.append(types.Part(text=f"[{labels[i]}]"))
        parts.append(types.Part(inline_data=types.Blob(mime_type=image.mime_type, data=image.data)))
    return parts


def _new_generated_id() -> str:
    return f"gen_{uuid.uuid4().hex[:8]}"


# ── Sync functions (run in a thread for async compatibility) ─────────


def _sync_generate_images(model: str, parts: list) -> tuple[list[GeneratedImage], str]:
    from google.genai import types

    client = _get_gemini_client()
    response = client.models.generate_content(
        model=model,
        contents=[types.Content(role="user", parts=parts)],
        config=types.GenerateContentConfig(response_modalities=["TEXT", "IMAGE"]),
    )

    images: list[GeneratedImage] = []
    response_text = ""
    candidates = response.candidates or []
    content_parts = (candidates[0].content.parts or []) if candidates and candidates[0].content else []
    for part in content_parts:
        if part.text is not None:
            response_text += part.text
        elif part.inline_data is not None and part.inline_data.data:
            mime_type = part.inline_data.mime_type or "image/png"
            images.append(GeneratedImage(
                id=_new_generated_id(),
                payload=to_data_uri(part.inline_data.data, mime_type),
                mime_type=mime_type,
            ))
    return images, response_text


def _sync_generate_text(model: str, parts: list, json_output: bool) -> str:
    from google.genai import types

    client = _get_gemini_client()
    config = types.GenerateContentConfig(
        response_mime_type="application/json" if json_output else None,
    )
    response = client.models.generate_content(
        model=model,
        contents=[types.Content(role="user", parts=parts)],
        config=config,
    )
    return response.text or ""


# ── Async API ────────────────────────────────────────────────────────


async def generate_images(
    prompt: str,
    references: Optional[list[ImageInput]] = None,
    count: int = 1,
    labels: Optional[list[str]] = None,
) -> list[GeneratedImage]:
    """
    Generate `count` images from a prompt and optional reference images.

    Requests run one after another; a failed request is logged and skipped.
    Raises RuntimeError if nothing at all was produced.
    """
    from google.genai import types

    settings = get_settings()
    parts = _image_parts(references or [], labels) + [types.Part(text=prompt)]

    images: list[GeneratedImage] = []
    last_error: Optional[Exception] = None
    for i in range(max(1, count)):
        try:
            produced, text = await asyncio.to_thread(_sync_generate_images, settings.image_gen_model, parts)
        except Exception as e:
            logger.error("Image generation %d/%d failed: %s", i + 1, count, e)
            last_error = e
            continue
        logger.info("Image generation %d/%d: %d image(s)", i + 1, count, len(produced))
        if not produced and text:
            logger.info("Image model answered with text only: %.200s", text)
        images.extend(produced)

    if not images:
        raise RuntimeError(f"No images generated{f': {last_error}' if last_error else ''}")
    return images


async def analyze_images(
    instruction: str,
    images: list[ImageInput],
    labels: Optional[list[str]] = None,
    model: Optional[str] = None,
) -> str:
    """Ask a Gemini text model about one or more images. Returns the answer text."""
    from google.genai import types

    settings = get_settings()
    parts = _image_parts(images, labels) + [types.Part(text=instruction)]
    text = await asyncio.to_thread(_sync_generate_text, model or settings.analysis_model, parts, False)
    if not text:
        raise RuntimeError("No analysis generated")
    return text


async def analyze_images_json(
    instruction: str,
    images: list[ImageInput],
    labels: Optional[list[str]] = None,
    model: Optional[str] = None,
) -> dict:
    """Like analyze_images, but asks for and parses a JSON object."""
    from google.genai import types

    settings = get_settings()
    parts = _image_parts(images, labels) + [types.Part(text=instruction)]
    text = await asyncio.to_thread(_sync_generate_text, model or settings.analysis_model, parts, True)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        logger.error("Model returned invalid JSON: %.300s", text)
        raise ValueError("Model returned invalid JSON") from e
    if not isinstance(data, dict):
        raise ValueError("Model returned JSON that is not an object")
    return data
