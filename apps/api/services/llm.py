"""Chat model client normalized into a small event vocabulary."""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Union

from openai import AsyncOpenAI

from config import settings
from services.errors import GenerationFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContentDelta:
    text: str


@dataclass(frozen=True)
class ToolUse:
    name: str
    input: Dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None


@dataclass(frozen=True)
class MessageEnd:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


ModelEvent = Union[ContentDelta, ToolUse, MessageEnd]


class LLMClient(Protocol):
    def stream(
        self,
        prompt: str,
        *,
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> AsyncIterator[ModelEvent]:
        ...


def _parse_arguments(raw: str, tool_name: str) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Discarding malformed arguments for tool %s: %r", tool_name, raw[:200])
        return {}
    return parsed if isinstance(parsed, dict) else {}


class OpenAIChatClient:
    """Streams chat completions and yields ContentDelta / ToolUse / MessageEnd."""

    provider = "openai"

    def __init__(
        self,
        api_key: str,
        *,
        model: str,
        max_tokens: int,
        timeout_seconds: float,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        self.model = model
        self.max_tokens = max_tokens
        # Retries belong to the pipeline's RetryPolicy, not the SDK.
        self._client = client or AsyncOpenAI(api_key=api_key, timeout=timeout_seconds, max_retries=0)

    async def stream(
        self,
        prompt: str,
        *,
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> AsyncIterator[ModelEvent]:
        request: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": [{"role": "user", "content": prompt}],
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if tools:
            request["tools"] = tools

        response = await self._client.chat.completions.create(**request)

        try:
            pending: Dict[int, Dict[str, Any]] = {}
            usage = None
            async for chunk in response:
                if getattr(chunk, "usage", None):
                    usage = chunk.usage
                for choice in chunk.choices or []:
                    delta = choice.delta
                    if delta is not None and delta.content:
                        yield ContentDelta(text=delta.content)
                    for call in (delta.tool_calls if delta is not None else None) or []:
                        slot = pending.setdefault(call.index, {"id": None, "name": "", "arguments": ""})
                        if call.id:
                            slot["id"] = call.id
                        if call.function is not None:
                            slot["name"] += call.function.name or ""
                            slot["arguments"] += call.function.arguments or ""
                    if choice.finish_reason:
                        for index in sorted(pending):
                            slot = pending.pop(index)
                            yield ToolUse(
                                name=slot["name"],
                                input=_parse_arguments(slot["arguments"], slot["name"]),
                                id=slot["id"],
                            )

            for index in sorted(pending):
                slot = pending.pop(index)
                yield ToolUse(name=slot["name"], input=_parse_arguments(slot["arguments"], slot["name"]), id=slot["id"])

            yield MessageEnd(
                input_tokens=int(getattr(usage, "prompt_tokens", 0) or 0),
                output_tokens=int(getattr(usage, "completion_tokens", 0) or 0),
            )
        finally:
            await response.close()


def build_llm_client() -> OpenAIChatClient:
    """Construct the configured chat client or fail when no usable key is set."""
    api_key = (settings.OPENAI_API_KEY or "").strip()
    if not api_key or "your_" in api_key:
        raise GenerationFailure("OpenAI API key is not configured")
    return OpenAIChatClient(
        api_key,
        model=settings.LLM_MODEL,
        max_tokens=int(settings.LLM_MAX_TOKENS),
        timeout_seconds=float(settings.LLM_TIMEOUT_SECONDS),
    )
