"""
Image reference store.

The model refers to images loosely: canonical ids, upload aliases
("image_2"), bare numbers, asset URLs, file names, sometimes a whole data
URI. Every image known to a run is registered here once, and any of those
forms resolves back to the same entry.

The store does no I/O. Payloads are kept as strings (data URI or URL).
"""

import base64
import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Iterable, Optional

logger = logging.getLogger(__name__)


class ImageKind(str, Enum):
    UPLOADED = "uploaded"
    GENERATED = "generated"
    REFERENCE = "reference"


@dataclass
class StoredImage:
    id: str
    payload: str
    kind: ImageKind
    description: Optional[str] = None
    aliases: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def mime_type(self) -> str:
        if self.payload.startswith("data:"):
            return split_data_uri(self.payload)[0]
        return guess_mime_type(self.payload)


# ── Data URI helpers ────────────────────────────────────────────────

_DATA_URI_RE = re.compile(r"^data:([^;,]+)?(;base64)?,", re.IGNORECASE)

_EXT_MIME = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "webp": "image/webp",
    "gif": "image/gif",
}


def split_data_uri(uri: str) -> tuple[str, str]:
    """Return (mime_type, base64 body) of a data URI."""
    match = _DATA_URI_RE.match(uri)
    if not match:
        raise ValueError("Not a data URI")
    mime_type = match.group(1) or "application/octet-stream"
    body = uri[match.end():]
    if not match.group(2):
        body = base64.b64encode(body.encode()).decode()
    return mime_type, body


def to_data_uri(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode()}"


def guess_mime_type(url: str) -> str:
    ext = url.rsplit("?", 1)[0].rsplit(".", 1)[-1].lower()
    return _EXT_MIME.get(ext, "image/png")


def extension_for(mime_type: str) -> str:
    for ext, mime in _EXT_MIME.items():
        if mime == mime_type:
            return ext
    return "png"


# ── Normalization ───────────────────────────────────────────────────

DATA_HASH_PREFIX_CHARS = 100

_ASSET_PATH_RE = re.compile(r"/api/chat/assets/([^/.?#]+)")
_FILENAME_RE = re.compile(r"(?:^|/)([^/]+)\.(png|jpg|jpeg|webp)$", re.IGNORECASE)
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def short_hash(text: str) -> str:
    """31-multiplier rolling hash folded to signed 32 bits, absolute value, base36."""
    h = 0
    for ch in text:
        h = ((h << 5) - h + ord(ch)) & 0xFFFFFFFF
    if h & 0x80000000:
        h -= 0x100000000
    h = abs(h)
    if h == 0:
        return "0"
    digits = []
    while h:
        h, rem = divmod(h, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def _asset_path(ref: str) -> Optional[str]:
    match = _ASSET_PATH_RE.search(ref)
    return match.group(1) if match else None


def _file_name(ref: str) -> Optional[str]:
    match = _FILENAME_RE.search(ref)
    return match.group(1) if match else None


def _data_uri(ref: str) -> Optional[str]:
    if ref.startswith("data:"):
        return f"data_{short_hash(ref[:DATA_HASH_PREFIX_CHARS])}"
    return None


# First rule that returns a value wins.
NORMALIZATION_RULES: list[tuple[str, Callable[[str], Optional[str]]]] = [
    ("asset_path", _asset_path),
    ("file_name", _file_name),
    ("data_uri", _data_uri),
]


def normalize_ref(ref: str) -> str:
    for _name, rule in NORMALIZATION_RULES:
        normalized = rule(ref)
        if normalized is not None:
            return normalized
    return ref


def reference_variations(ref: str) -> list[str]:
    """Alternative spellings tried when a reference has no direct hit, in order."""
    variations = []
    number = ref[len("image_"):] if ref.startswith("image_") else None
    if ref.isascii() and ref.isdigit():
        variations.append(f"image_{ref}")
    elif number and number.isascii() and number.isdigit():
        variations.append(number)
    if ref.startswith("gen_"):
        variations.append(ref[len("gen_"):])
    else:
        variations.append(f"gen_{ref}")
    if ref.startswith("img_"):
        variations.append(ref[len("img_"):])
    return variations


def new_image_id() -> str:
    return f"img_{uuid.uuid4().hex[:8]}"


# ── Store ───────────────────────────────────────────────────────────


class ImageStore:
    """Per-run registry of images and the aliases that point at them."""

    def __init__(self) -> None:
        self._images: dict[str, StoredImage] = {}
        self._alias_index: dict[str, str] = {}

    def register(
        self,
        payload: str,
        kind: ImageKind,
        id: Optional[str] = None,
        description: Optional[str] = None,
        aliases: Optional[Iterable[str]] = None,
    ) -> str:
        """
        Store an image and index its aliases.

        Registering an id that is already known merges the new aliases into
        the existing entry and leaves its payload alone.
        """
        new_aliases = [a for a in (aliases or []) if a]

        if id and id in self._images:
            existing = self._images[id]
            for alias in new_aliases:
                if alias not in existing.aliases:
                    existing.aliases.append(alias)
                self._alias_index[normalize_ref(alias)] = id
            return id

        image_id = id or new_image_id()
        all_aliases = [image_id]
        for alias in new_aliases:
            if alias not in all_aliases:
                all_aliases.append(alias)

        self._images[image_id] = StoredImage(
            id=image_id,
            payload=payload,
            kind=kind,
            description=description,
            aliases=all_aliases,
        )
        for alias in all_aliases:
            self._alias_index[normalize_ref(alias)] = image_id
        # Inline payloads answer to their own data URI; the URI is not kept as an alias
        if payload.startswith("data:"):
            self._alias_index[normalize_ref(payload)] = image_id

        logger.debug("Registered image %s (%s) aliases=%s", image_id, kind.value, all_aliases[1:])
        return image_id

    def _lookup(self, key: str) -> Optional[StoredImage]:
        if key in self._images:
            return self._images[key]
        image_id = self._alias_index.get(key)
        return self._images.get(image_id) if image_id else None

    def resolve(self, ref: Optional[str]) -> Optional[StoredImage]:
        if not ref:
            return None
        ref = ref.strip()

        if ref in self._images:
            return self._images[ref]

        normalized = normalize_ref(ref)
        image = self._lookup(normalized)
        if image:
            return image

        candidates = reference_variations(normalized)
        if normalized != ref:
            candidates += reference_variations(ref)
        for candidate in candidates:
            image = self._lookup(candidate) or self._lookup(normalize_ref(candidate))
            if image:
                return image
        return None

    def get_payload(self, ref: Optional[str]) -> Optional[str]:
        image = self.resolve(ref)
        return image.payload if image else None

    def get(self, image_id: str) -> Optional[StoredImage]:
        return self._images.get(image_id)

    def ids(self) -> list[str]:
        return list(self._images)

    def images(self) -> list[StoredImage]:
        return list(self._images.values())

    def __contains__(self, ref: str) -> bool:
        return self.resolve(ref) is not None

    def __len__(self) -> int:
        return len(self._images)

    def image_context(self) -> dict[str, str]:
        """Flat id/alias → payload map, for callers that want plain lookups."""
        context: dict[str, str] = {}
        for image in self._images.values():
            context[image.id] = image.payload
            for alias in image.aliases:
                context[alias] = image.payload
                context[normalize_ref(alias)] = image.payload
        return context

    def registry_prompt(self) -> str:
        """List of known image ids, appended to the system prompt on every model call."""
        if not self._images:
            return "## Available Images\nNo images are available yet."

        lines = [
            "## Available Images",
            "Reference images by these IDs in tool arguments.",
        ]
        for image in self._images.values():
            short_aliases = [
                a for a in image.aliases
                if a != image.id and not a.startswith(("data:", "http://", "https://", "/"))
            ]
            line = f"- {image.id} [{image.kind.value}]"
            if short_aliases:
                line += f" (also: {', '.join(short_aliases)})"
            if image.description:
                line += f": {image.description}"
            lines.append(line)
        return "\n".join(lines)
