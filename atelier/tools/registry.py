"""
Tool registry.

Collects tool functions and formats them for OpenAI-style function calling.
Each tool declares a pydantic model for its arguments; the JSON schema the
model sees is generated from that model, and the dispatcher validates calls
against it.

  - Tools have clear, distinct purposes
  - Descriptions written like docs for a new hire
  - Image arguments are declared so they can be resolved before the tool runs
"""

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from pydantic import BaseModel, ConfigDict

from ..agent.types import ToolResult
from ..core.flags import get_flags

logger = logging.getLogger(__name__)


class ToolArgs(BaseModel):
    """Base for tool argument models. Unknown arguments are rejected."""

    model_config = ConfigDict(extra="forbid")


# handler(args, images, context) -> ToolResult
ToolHandler = Callable[..., Awaitable[ToolResult]]


@dataclass
class ToolSpec:
    name: str
    description: str
    args_model: type[ToolArgs]
    handler: ToolHandler
    display_name: str
    category: str = "general"
    image_args: tuple[str, ...] = field(default_factory=tuple)

    def schema(self) -> dict:
        params = self.args_model.model_json_schema()
        params.pop("title", None)
        params.setdefault("type", "object")
        params.setdefault("additionalProperties", False)
        return params


class ToolRegistry:
    def __init__(self) -> None:
        self._tools: dict[str, ToolSpec] = {}

    def tool(
        self,
        name: str,
        description: str,
        args: type[ToolArgs],
        display_name: Optional[str] = None,
        category: str = "general",
        image_args: tuple[str, ...] = (),
    ):
        """
        Decorator to register a coroutine as an LLM-callable tool.

        Args:
            name:         Tool name as the model calls it.
            description:  What it does, when to use it, what it returns.
            args:         Pydantic model describing the arguments.
            display_name: Human label sent to the client with tool events.
            category:     Grouping category (generation, analysis, research).
            image_args:   Argument names holding image references (str or list[str]).
        """

        def decorator(func: ToolHandler):
            unknown = [a for a in image_args if a not in args.model_fields]
            if unknown:
                raise ValueError(f"Tool {name}: image args {unknown} are not fields of {args.__name__}")

            self._tools[name] = ToolSpec(
                name=name,
                description=description,
                args_model=args,
                handler=func,
                display_name=display_name or name.replace("_", " ").title(),
                category=category,
                image_args=tuple(image_args),
            )
            logger.debug("Registered tool: %s [%s]", name, category)
            return func

        return decorator

    def get(self, name: str) -> Optional[ToolSpec]:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def display_name(self, name: str) -> str:
        spec = self._tools.get(name)
        return spec.display_name if spec else name

    def by_category(self, category: str) -> list[ToolSpec]:
        return [t for t in self._tools.values() if t.category == category]

    def for_llm(self) -> list[dict]:
        """All tools formatted for OpenAI function calling."""
        return [
            {
                "type": "function",
                "function": {
                    "name": t.name,
                    "description": t.description,
                    "parameters": t.schema(),
                },
            }
            for t in self._tools.values()
        ]

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools


_registry = ToolRegistry()
tool = _registry.tool


def get_registry() -> ToolRegistry:
    return _registry


def get_tools_for_llm() -> list[dict]:
    return _registry.for_llm()


def get_tool_names() -> list[str]:
    return _registry.names()


def init_tools() -> ToolRegistry:
    """
    Import tool modules to trigger registration.
    Call this once on startup.
    """
    flags = get_flags()

    # ── Core tools (always available) ─────────────────────────────
    from . import image_generation  # noqa: F401
    from . import analysis          # noqa: F401
    from . import creative          # noqa: F401

    # ── Conditional tools ─────────────────────────────────────────
    if flags.use_web_scraper:
        from . import web_scraper  # noqa: F401

    logger.info(
        "Tools ready: %d tools [%s]",
        len(_registry),
        ", ".join(get_tool_names()),
    )
    return _registry
