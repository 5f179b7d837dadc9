"""
Asset storage abstraction. S3 OR local filesystem. Controlled by FF_USE_S3 flag.

Assets keep the file name they were saved under (`<image id>.<ext>`), so a
stored URL always ends in the image id it was generated as.
"""

import asyncio
import logging
import mimetypes
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from .config import get_settings
from .flags import get_flags

logger = logging.getLogger(__name__)

ASSET_FOLDER = "assets"


class StorageBackend(ABC):
    @abstractmethod
    async def save_asset(self, file_bytes: bytes, filename: str) -> str:
        """Store a file under its own name. Returns the URL it is served from."""
        ...

    @abstractmethod
    async def read_asset(self, filename: str) -> Optional[tuple[bytes, str]]:
        """Read a stored file. Returns (bytes, content_type) or None if not found."""
        ...


class S3Storage(StorageBackend):
    def __init__(self):
        self._client = None

    def _get_client(self):
        if self._client is None:
            import boto3

            settings = get_settings()
            kwargs = {"region_name": settings.aws_region}
            if settings.aws_access_key_id:
                kwargs["aws_access_key_id"] = settings.aws_access_key_id
                kwargs["aws_secret_access_key"] = settings.aws_secret_access_key
            self._client = boto3.client("s3", **kwargs)
        return self._client

    async def save_asset(self, file_bytes: bytes, filename: str) -> str:
        settings = get_settings()
        key = f"{ASSET_FOLDER}/{_safe_name(filename)}"

        client = self._get_client()
        await asyncio.to_thread(
            client.put_object,
            Bucket=settings.s3_bucket_name,
            Key=key,
            Body=file_bytes,
            ContentType=_guess_content_type(filename),
        )

        url = f"https://{settings.s3_bucket_name}.s3.{settings.aws_region}.amazonaws.com/{key}"
        logger.info("Uploaded to S3: %s", key)
        return url

    async def read_asset(self, filename: str) -> Optional[tuple[bytes, str]]:
        from botocore.exceptions import ClientError

        settings = get_settings()
        key = f"{ASSET_FOLDER}/{_safe_name(filename)}"
        client = self._get_client()
        try:
            obj = await asyncio.to_thread(client.get_object, Bucket=settings.s3_bucket_name, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                return None
            raise
        body = await asyncio.to_thread(obj["Body"].read)
        return body, obj.get("ContentType") or _guess_content_type(filename)


class LocalStorage(StorageBackend):
    def __init__(self, base_path: Optional[str] = None, public_prefix: Optional[str] = None):
        settings = get_settings()
        self.base_path = Path(base_path or settings.local_storage_path)
        self.public_prefix = (public_prefix or settings.public_asset_prefix).rstrip("/")

    async def save_asset(self, file_bytes: bytes, filename: str) -> str:
        name = _safe_name(filename)
        dir_path = self.base_path / ASSET_FOLDER
        dir_path.mkdir(parents=True, exist_ok=True)

        file_path = dir_path / name
        file_path.write_bytes(file_bytes)

        logger.info("Saved locally: %s", file_path)
        return f"{self.public_prefix}/{name}"

    async def read_asset(self, filename: str) -> Optional[tuple[bytes, str]]:
        path = self.base_path / ASSET_FOLDER / _safe_name(filename)
        if not path.is_file():
            return None
        return path.read_bytes(), _guess_content_type(path.name)


def get_storage() -> StorageBackend:
    """Return the active storage backend based on feature flags."""
    flags = get_flags()
    if flags.use_s3:
        return S3Storage()
    return LocalStorage()


def _safe_name(filename: str) -> str:
    name = Path(filename).name
    if not name or name in (".", ".."):
        raise ValueError(f"Invalid asset name: {filename!r}")
    return name


def _guess_content_type(filename: str) -> str:
    ct, _ = mimetypes.guess_type(filename)
    return ct or "application/octet-stream"
