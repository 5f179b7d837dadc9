"""
LLM client for the agent loop.

Talks to an OpenAI-compatible /chat/completions endpoint (Gemini by default).

Features:
  - Retry with exponential backoff + jitter (handles 429, 500, 502, 503, 504)
  - Reusable client (connection pooling)
  - Conversion between AgentMessage lists and the chat-completions wire format
  - Thinking models: the assistant message that carried tool calls is kept as
    the continuation and replayed verbatim, so per-call thought signatures
    survive the round trip
"""

import asyncio
import json
import logging
import random
import re
import time
import uuid
from typing import Any, Optional, Protocol

import httpx

from ..agent.errors import ModelCallError
from ..agent.types import (
    AgentMessage,
    InlineImagePart,
    ModelResponse,
    TextPart,
    ThoughtPart,
    ToolCallPart,
    ToolResultPart,
)
from ..core.config import get_settings
from ..core.flags import get_flags

logger = logging.getLogger(__name__)

# ── Reusable client (connection pool) ────────────────────────────────

_client: Optional[httpx.AsyncClient] = None


def _get_client() -> httpx.AsyncClient:
    global _client
    if _client is None or _client.is_closed:
        _client = httpx.AsyncClient(
            timeout=httpx.Timeout(connect=10, read=180, write=60, pool=10),
            limits=httpx.Limits(max_connections=50, max_keepalive_connections=20),
        )
    return _client


async def close_client():
    """Close the shared HTTP client. Call on app shutdown."""
    global _client
    if _client and not _client.is_closed:
        await _client.aclose()
        _client = None


# ── Provider config ──────────────────────────────────────────────────

def _get_provider_config(provider: Optional[str] = None) -> tuple[str, str, str]:
    """Returns (base_url, api_key, default_model) for a provider."""
    settings = get_settings()
    p = (provider or get_flags().llm_provider).lower()

    if p == "gemini":
        return settings.gemini_base_url, settings.gemini_api_key, settings.thinking_model
    return settings.openai_base_url, settings.openai_api_key, settings.thinking_model


# ── Retry logic ──────────────────────────────────────────────────────

RETRYABLE_STATUS = {429, 500, 502, 503, 504}
MAX_RETRIES = 3
BASE_DELAY = 1.0
MAX_DELAY = 16.0


def backoff_delay(attempt: int, retry_after: Optional[str] = None) -> float:
    """Seconds to wait before retry number `attempt + 1`. Honors Retry-After."""
    if retry_after and retry_after.strip().isdigit():
        return min(MAX_DELAY, float(retry_after))
    return min(MAX_DELAY, BASE_DELAY * (2 ** attempt) + random.uniform(0, 1))


async def _post_with_retry(client: httpx.AsyncClient, url: str, **kwargs) -> httpx.Response:
    failure: Optional[Exception] = None

    for attempt in range(MAX_RETRIES + 1):
        retry_after = None
        try:
            resp = await client.post(url, **kwargs)
        except (httpx.TimeoutException, httpx.TransportError) as e:
            logger.warning("LLM %s (attempt %d/%d)", type(e).__name__, attempt + 1, MAX_RETRIES + 1)
            failure = e
        else:
            if resp.status_code not in RETRYABLE_STATUS:
                if resp.is_error:
                    logger.error("LLM API error %d: %s", resp.status_code, resp.text[:500])
                resp.raise_for_status()
                return resp
            logger.warning("LLM %d (attempt %d/%d)", resp.status_code, attempt + 1, MAX_RETRIES + 1)
            retry_after = resp.headers.get("retry-after")
            failure = httpx.HTTPStatusError(str(resp.status_code), request=resp.request, response=resp)

        if attempt < MAX_RETRIES:
            await asyncio.sleep(backoff_delay(attempt, retry_after))

    raise failure


# ── Main chat function ───────────────────────────────────────────────

async def chat(
    messages: list[dict],
    model: Optional[str] = None,
    temperature: Optional[float] = None,
    max_tokens: Optional[int] = None,
    tools: Optional[list[dict]] = None,
    tool_choice: Optional[str] = None,
    provider: Optional[str] = None,
    extra: Optional[dict] = None,
) -> dict:
    """
    Chat completion with retry.
    Returns the full API response as dict.
    """
    settings = get_settings()
    active_provider = (provider or get_flags().llm_provider).lower()
    base_url, api_key, default_model = _get_provider_config(provider)

    if not api_key:
        raise ValueError(
            f"No API key for LLM provider '{active_provider}'. "
            "Set GEMINI_API_KEY or OPENAI_API_KEY."
        )

    payload: dict[str, Any] = {
        "model": model or default_model,
        "messages": messages,
        "temperature": temperature if temperature is not None else settings.default_llm_temperature,
        "max_tokens": max_tokens or settings.default_llm_max_tokens,
    }
    if tools:
        payload["tools"] = tools
    if tool_choice:
        payload["tool_choice"] = tool_choice
    if extra:
        payload.update(extra)

    url = f"{base_url.rstrip('/')}/chat/completions"
    headers = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }

    start = time.monotonic()
    resp = await _post_with_retry(_get_client(), url, json=payload, headers=headers)
    data = resp.json()
    elapsed = time.monotonic() - start

    usage = data.get("usage") or {}
    message = (data.get("choices") or [{}])[0].get("message") or {}
    logger.info(
        "LLM %s: %dms | in=%d out=%d tokens | model=%s",
        "tool_call" if message.get("tool_calls") else "chat",
        int(elapsed * 1000),
        usage.get("prompt_tokens", 0),
        usage.get("completion_tokens", 0),
        payload["model"],
    )
    return data


# ── Wire format conversion ───────────────────────────────────────────

_THOUGHT_RE = re.compile(r"<thought>(.*?)</thought>", re.DOTALL)


def to_wire_messages(messages: list[AgentMessage], system: str = "") -> list[dict]:
    """Convert AgentMessages into chat-completions messages."""
    wire: list[dict] = []
    if system:
        wire.append({"role": "system", "content": system})

    for msg in messages:
        if msg.role == "model":
            wire.append(_model_message(msg))
            continue

        content: list[dict] = []
        for part in msg.parts:
            if isinstance(part, TextPart):
                content.append({"type": "text", "text": part.text})
            elif isinstance(part, InlineImagePart):
                content.append({
                    "type": "image_url",
                    "image_url": {"url": f"data:{part.mime_type};base64,{part.data}"},
                })
            elif isinstance(part, ToolResultPart):
                wire.append({
                    "role": "tool",
                    "tool_call_id": part.call_id,
                    "name": part.name,
                    "content": json.dumps(part.result, default=str),
                })
            elif isinstance(part, (ToolCallPart, ThoughtPart)):
                raise ValueError(f"{type(part).__name__} cannot appear in a user message")
            else:
                raise TypeError(f"Unhandled message part: {type(part).__name__}")
        if content:
            wire.append({"role": "user", "content": content})
    return wire


def _model_message(msg: AgentMessage) -> dict:
    if isinstance(msg.continuation, dict):
        return msg.continuation

    text_chunks: list[str] = []
    tool_calls: list[dict] = []
    for part in msg.parts:
        if isinstance(part, TextPart):
            text_chunks.append(part.text)
        elif isinstance(part, ToolCallPart):
            tool_calls.append({
                "id": part.call_id,
                "type": "function",
                "function": {"name": part.name, "arguments": json.dumps(part.args)},
            })
        elif isinstance(part, ThoughtPart):
            continue
        elif isinstance(part, (InlineImagePart, ToolResultPart)):
            # Images from earlier assistant turns are referenced by id in text.
            continue
        else:
            raise TypeError(f"Unhandled message part: {type(part).__name__}")

    out: dict[str, Any] = {"role": "assistant", "content": "\n".join(text_chunks) or None}
    if tool_calls:
        out["tool_calls"] = tool_calls
    return out


def parse_response(data: dict) -> ModelResponse:
    """Split a chat-completions response into text, thinking and tool calls."""
    choices = data.get("choices") or []
    if not choices:
        raise ModelCallError("Model returned no choices")
    message = choices[0].get("message") or {}

    content = message.get("content") or ""
    if isinstance(content, list):
        content = "".join(c.get("text", "") for c in content if isinstance(c, dict))

    thoughts = [t.strip() for t in _THOUGHT_RE.findall(content)]
    text = _THOUGHT_RE.sub("", content).strip()
    if message.get("reasoning_content"):
        thoughts.insert(0, message["reasoning_content"].strip())

    tool_calls: list[ToolCallPart] = []
    for tc in message.get("tool_calls") or []:
        func = tc.get("function") or {}
        raw_args = func.get("arguments") or "{}"
        try:
            args = json.loads(raw_args) if isinstance(raw_args, str) else dict(raw_args)
        except json.JSONDecodeError:
            logger.warning("Unparseable arguments for %s: %.200s", func.get("name"), raw_args)
            args = {"_unparsed_arguments": raw_args}
        if not isinstance(args, dict):
            args = {"_unparsed_arguments": raw_args}
        tool_calls.append(ToolCallPart(
            name=func.get("name", ""),
            args=args,
            call_id=tc.get("id") or f"call_{uuid.uuid4().hex[:12]}",
        ))

    continuation = None
    if tool_calls:
        continuation = dict(message)
        continuation["role"] = "assistant"
        # Ids filled in locally must match the tool results that answer them.
        continuation["tool_calls"] = [
            {**tc, "id": call.call_id}
            for tc, call in zip(message["tool_calls"], tool_calls)
        ]

    return ModelResponse(
        text=text,
        thinking="\n\n".join(t for t in thoughts if t),
        tool_calls=tool_calls,
        continuation=continuation,
        usage=data.get("usage") or {},
    )


# ── Model client used by the orchestrator ────────────────────────────

class ModelClient(Protocol):
    async def generate(
        self,
        messages: list[AgentMessage],
        system: str,
        tools: list[dict],
    ) -> ModelResponse:
        ...


class ChatCompletionsModel:
    """ModelClient backed by `chat()`."""

    def __init__(
        self,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        include_thoughts: Optional[bool] = None,
    ):
        self.model = model
        self.temperature = temperature
        self.include_thoughts = (
            get_flags().expose_thinking if include_thoughts is None else include_thoughts
        )

    def _extra(self) -> Optional[dict]:
        if self.include_thoughts and get_flags().llm_provider.lower() == "gemini":
            return {"extra_body": {"google": {"thinking_config": {"include_thoughts": True}}}}
        return None

    async def generate(
        self,
        messages: list[AgentMessage],
        system: str,
        tools: list[dict],
    ) -> ModelResponse:
        wire = to_wire_messages(messages, system)
        try:
            data = await chat(
                wire,
                model=self.model,
                temperature=self.temperature,
                tools=tools or None,
                extra=self._extra(),
            )
        except (httpx.HTTPError, ValueError, RuntimeError) as e:
            raise ModelCallError(f"Model call failed: {e}") from e
        return parse_response(data)
