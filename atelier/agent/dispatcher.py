"""
Tool dispatcher.

Validates a tool call, resolves its image arguments through the run's
ImageStore, runs the tool and registers whatever images it produced.
Nothing that goes wrong inside a single tool call escapes as an exception:
every failure becomes a ToolResult with success=False, which the
orchestrator feeds back to the model.
"""

import copy
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import ValidationError

from ..services.media import ImageLoadError, load_image_payload
from ..tools.registry import ToolRegistry, ToolSpec, get_registry
from .errors import ImageReferenceError, MissingReferenceError, UnknownReferenceError
from .image_store import ImageKind, ImageStore
from .types import ImageInput, ToolResult

logger = logging.getLogger(__name__)


@dataclass
class ToolContext:
    user_id: str
    conversation_id: str
    store: ImageStore
    storage: Any = None  # StorageBackend, used to load persisted assets

    @property
    def image_context(self) -> dict[str, str]:
        return self.store.image_context()


# ── Lean results ────────────────────────────────────────────────────

_BINARY_KEYS = ("data", "base64")


def _removed(value: str) -> str:
    return f"[REMOVED_BINARY_DATA_{len(value)}_CHARS]"


def lean_result(value: Any) -> Any:
    """Deep copy of a tool result with inline binary payloads replaced by markers."""
    if isinstance(value, dict):
        lean = {}
        for key, item in value.items():
            if key in _BINARY_KEYS and isinstance(item, str):
                lean[key] = _removed(item)
            else:
                lean[key] = lean_result(item)
        return lean
    if isinstance(value, list):
        return [lean_result(item) for item in value]
    if isinstance(value, str) and value.startswith("data:"):
        return _removed(value)
    return copy.deepcopy(value)


def _format_validation_error(name: str, exc: ValidationError) -> str:
    problems = []
    for err in exc.errors():
        location = ".".join(str(p) for p in err["loc"]) or "(arguments)"
        problems.append(f"{location}: {err['msg']}")
    return f"Invalid arguments for {name}: " + "; ".join(problems)


class ToolDispatcher:
    def __init__(self, registry: Optional[ToolRegistry] = None):
        self.registry = registry if registry is not None else get_registry()

    def tools_for_llm(self) -> list[dict]:
        return self.registry.for_llm()

    def display_name(self, name: str) -> str:
        return self.registry.display_name(name)

    async def execute(self, name: str, args: Optional[dict], context: ToolContext) -> ToolResult:
        spec = self.registry.get(name)
        if spec is None:
            available = ", ".join(self.registry.names()) or "none"
            logger.warning("Model called unknown tool %s", name)
            return ToolResult.failure(f"Unknown tool '{name}'. Available tools: {available}")

        try:
            parsed = spec.args_model.model_validate(args or {})
        except ValidationError as e:
            logger.info("Tool %s rejected arguments: %d error(s)", name, e.error_count())
            return ToolResult.failure(
                _format_validation_error(name, e) + ". Correct the arguments and call the tool again."
            )

        try:
            images = await self._resolve_images(spec, parsed, context)
        except ImageReferenceError as e:
            logger.info("Tool %s: %s", name, e)
            known = ", ".join(context.store.ids()) or "none"
            return ToolResult.failure(f"{e}. Known image IDs: {known}")
        except ImageLoadError as e:
            logger.warning("Tool %s: could not load image argument: %s", name, e)
            return ToolResult.failure(f"Could not load an image for {name}: {e}")

        start = time.monotonic()
        try:
            result = await spec.handler(parsed, images, context)
        except Exception as e:
            elapsed = int((time.monotonic() - start) * 1000)
            logger.error("Tool %s failed after %dms: %s", name, elapsed, e, exc_info=True)
            return ToolResult.failure(f"Tool error ({name}): {type(e).__name__}: {e}")

        elapsed = int((time.monotonic() - start) * 1000)
        logger.info(
            "Tool %s completed in %dms (success=%s, images=%d)",
            name, elapsed, result.success, len(result.images),
        )

        for image in result.images:
            image.id = context.store.register(
                image.payload,
                ImageKind.GENERATED,
                id=image.id,
                description=f"Generated by {name}",
                aliases=[image.payload],
            )
        return result

    async def _resolve_images(self, spec: ToolSpec, parsed, context: ToolContext) -> dict:
        resolved: dict[str, Any] = {}
        for field_name in spec.image_args:
            value = getattr(parsed, field_name)
            required = spec.args_model.model_fields[field_name].is_required()

            if isinstance(value, list):
                if not value and required:
                    raise MissingReferenceError(field_name)
                resolved[field_name] = [
                    await self._load(field_name, ref, context) for ref in value
                ]
            elif value is None or (isinstance(value, str) and not value.strip()):
                if required:
                    raise MissingReferenceError(field_name)
                resolved[field_name] = None
            else:
                resolved[field_name] = await self._load(field_name, value, context)
        return resolved

    async def _load(self, field_name: str, ref: str, context: ToolContext) -> ImageInput:
        if not ref or not ref.strip():
            raise MissingReferenceError(field_name)
        image = context.store.resolve(ref)
        if image is None:
            raise UnknownReferenceError(field_name, ref)
        data, mime_type = await load_image_payload(image.payload, context.storage)
        return ImageInput(id=image.id, data=data, mime_type=mime_type)
