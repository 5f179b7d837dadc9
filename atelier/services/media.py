"""
Image payload service.

Moves images between their three shapes: inline data URIs (what tools and
uploads produce), stored assets (what gets persisted and streamed), and raw
bytes (what tools consume).
"""

import base64
import binascii
import logging
from typing import Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..agent.image_store import extension_for, guess_mime_type, split_data_uri
from ..core.config import get_settings
from ..core.storage import StorageBackend
from ..models.asset import Asset

logger = logging.getLogger(__name__)


class ImageLoadError(Exception):
    """An image payload could not be turned back into bytes."""


def decode_data_uri(uri: str) -> tuple[bytes, str]:
    mime_type, body = split_data_uri(uri)
    try:
        return base64.b64decode(body, validate=False), mime_type
    except (binascii.Error, ValueError) as e:
        raise ImageLoadError(f"Malformed image data: {e}") from e


def asset_filename(url: str) -> Optional[str]:
    """File name of an asset served by this app, or None for any other URL."""
    prefix = get_settings().public_asset_prefix.rstrip("/") + "/"
    if url.startswith(prefix):
        return url[len(prefix):].split("?", 1)[0]
    return None


async def load_image_payload(payload: str, storage: Optional[StorageBackend]) -> tuple[bytes, str]:
    """Return (bytes, mime_type) for a data URI, stored asset path or http(s) URL."""
    if payload.startswith("data:"):
        try:
            return decode_data_uri(payload)
        except ValueError as e:
            raise ImageLoadError(str(e)) from e

    filename = asset_filename(payload)
    if filename is not None:
        if storage is None:
            raise ImageLoadError(f"No storage configured to read {payload}")
        found = await storage.read_asset(filename)
        if found is None:
            raise ImageLoadError(f"Stored image not found: {filename}")
        return found

    if payload.startswith(("http://", "https://")):
        try:
            async with httpx.AsyncClient(timeout=30.0, follow_redirects=True) as client:
                resp = await client.get(payload)
                resp.raise_for_status()
        except httpx.HTTPError as e:
            raise ImageLoadError(f"Could not download {payload}: {e}") from e
        content_type = resp.headers.get("content-type", "").split(";")[0].strip()
        return resp.content, content_type or guess_mime_type(payload)

    raise ImageLoadError("Unsupported image payload (expected data URI or URL)")


class AssetPersister:
    """
    Stores inline image payloads and returns the URL they are served from.

    Payloads that are already URLs are returned unchanged. When a session
    factory is given, each stored image is also recorded as an Asset row.
    """

    def __init__(
        self,
        storage: StorageBackend,
        user_id: str,
        conversation_id: Optional[str] = None,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ):
        self.storage = storage
        self.user_id = user_id
        self.conversation_id = conversation_id
        self.session_factory = session_factory

    async def __call__(self, image_id: str, payload: str, mime_type: Optional[str] = None) -> str:
        if not payload.startswith("data:"):
            return payload

        data, detected = decode_data_uri(payload)
        mime_type = detected or mime_type or "image/png"
        filename = f"{image_id}.{extension_for(mime_type)}"
        url = await self.storage.save_asset(data, filename)
        logger.info("Persisted image %s (%d bytes) → %s", image_id, len(data), url)

        if self.session_factory is not None:
            await self._record(image_id, url, mime_type, len(data))
        return url

    async def _record(self, image_id: str, url: str, mime_type: str, size: int) -> None:
        try:
            async with self.session_factory() as session:
                session.add(Asset(
                    user_id=self.user_id,
                    conversation_id=self.conversation_id,
                    image_id=image_id,
                    url=url,
                    mime_type=mime_type,
                    size_bytes=size,
                ))
                await session.commit()
        except SQLAlchemyError as e:
            # The file is already stored and served; the row is bookkeeping.
            logger.warning("Failed to record asset %s: %s", image_id, e)
