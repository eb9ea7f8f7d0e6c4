"""Post generation pipeline: prompt, model stream, tool dispatch and final result."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple

from services.errors import GenerationFailure, GenerationTimeout
from services.llm import ContentDelta, LLMClient, MessageEnd, ModelEvent, ToolUse
from services.retry import RetryPolicy
from services.tools import dispatch_tool, openai_tool_declarations
from services.tools.hashtags import TOOL_NAME as HASHTAGS_TOOL
from services.tools.posting_time import TOOL_NAME as BEST_TIME_TOOL
from services.tools.types import ToolResult

logger = logging.getLogger(__name__)

TONE_GUIDES = {
    "Professional": "Use formal, industry-appropriate language with relevant insights and professional terminology.",
    "Casual": "Use conversational, friendly language with personal anecdotes or relatable examples.",
    "Inspirational": "Use motivational and uplifting language that inspires action and positive thinking.",
}

LENGTH_GUIDES = {
    "Short": "50-100 words",
    "Medium": "150-250 words",
    "Long": "300-500 words",
}

PLATFORM_GUIDES = {
    "linkedin": (
        "LinkedIn best practices: Professional tone, use emojis strategically (2-3 max), add line breaks "
        "for readability, include a clear call-to-action, focus on professional insights or career growth."
    ),
    "twitter": "Twitter/X best practices: Keep it concise, engaging hook at the beginning, conversational tone.",
    "facebook": "Facebook best practices: More personal tone, storytelling approach, encourage engagement.",
}

DEFAULT_BEST_TIME: Dict[str, Any] = {"hour": 9, "confidence": 0.5, "reason": "Default time", "day_of_week": None}

_END_OF_STREAM = object()

ToolDispatcher = Callable[[str, Dict[str, Any]], ToolResult]


def build_prompt(topic: str, tone: str, length: str, platform: str = "linkedin") -> str:
    platform_guide = PLATFORM_GUIDES.get(platform, PLATFORM_GUIDES["linkedin"])
    return (
        f'Generate a {platform} post about "{topic}".\n'
        "\n"
        "Requirements:\n"
        f"1. Tone: {tone}\n"
        f"   {TONE_GUIDES.get(tone, '')}\n"
        "\n"
        f"2. Length: {LENGTH_GUIDES.get(length, '')}\n"
        "\n"
        f"3. Platform Guidelines: {platform_guide}\n"
        "\n"
        "4. General Rules:\n"
        "   - Must be engaging and ready to post immediately\n"
        "   - No hashtags in the content (they will be added separately)\n"
        '   - No introductory phrases like "Here\'s a post:"\n'
        "   - Use proper formatting with line breaks for readability\n"
        "   - Include a clear message or call-to-action\n"
        "\n"
        "Please generate ONLY the post content, nothing else."
    )


@dataclass
class PostGenerationRequest:
    topic: str
    tone: str
    length: str
    platform: str = "linkedin"
    timezone: Optional[str] = None
    target_audience: Optional[str] = None

    def prompt(self) -> str:
        return build_prompt(self.topic, self.tone, self.length, self.platform)


@dataclass
class GenerationResult:
    content: str
    hashtags: List[str]
    best_time_to_post: Dict[str, Any]
    total_tokens_used: int
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": self.content,
            "hashtags": list(self.hashtags),
            "best_time_to_post": dict(self.best_time_to_post),
            "total_tokens_used": self.total_tokens_used,
            "metadata": dict(self.metadata),
        }


def _metadata(request: PostGenerationRequest) -> Dict[str, Any]:
    return {
        "topic": request.topic,
        "tone": request.tone,
        "length": request.length,
        "platform": request.platform or "linkedin",
        "generated_at": datetime.now(timezone.utc).isoformat(),
    }


async def _close_stream(iterator: Optional[AsyncIterator[ModelEvent]]) -> None:
    aclose = getattr(iterator, "aclose", None)
    if aclose is not None:
        await aclose()


def _as_generation_failure(exc: BaseException) -> GenerationFailure:
    if isinstance(exc, GenerationFailure):
        return exc
    return GenerationFailure(f"Failed to generate post: {exc}")


class GenerationStream:
    """One interleaved run.

    Iterating yields normalized events (``content``, ``tool_call``,
    ``tool_result``, ``end`` or ``error``). Each tool is dispatched
    synchronously, so a ``tool_call`` is always followed directly by its
    ``tool_result``. After iteration ``result`` holds the final output, or
    ``error`` holds the failure that produced the ``error`` event.
    """

    def __init__(self, pipeline: "PostGenerationPipeline", request: PostGenerationRequest) -> None:
        self._pipeline = pipeline
        self.request = request
        self.content = ""
        self.hashtags: List[str] = []
        self.best_time_to_post: Dict[str, Any] = dict(DEFAULT_BEST_TIME)
        self.total_tokens = 0
        self.tool_results: List[ToolResult] = []
        self.result: Optional[GenerationResult] = None
        self.error: Optional[GenerationFailure] = None

    def __aiter__(self) -> AsyncIterator[Dict[str, Any]]:
        return self._events()

    async def _events(self) -> AsyncIterator[Dict[str, Any]]:
        pipeline = self._pipeline
        iterator = None
        try:
            iterator, event, deadline = await pipeline.retry_policy.call(
                pipeline._open_stream, self.request.prompt(), pipeline.tool_declarations
            )
            while event is not _END_OF_STREAM:
                for payload in self._apply(event):
                    yield payload
                event = await pipeline._next_event(iterator, deadline)

            content = self.content.strip()
            if not content:
                raise GenerationFailure("Generated post is empty")
        except Exception as exc:
            self.error = _as_generation_failure(exc)
            logger.error("Streaming generation failed for topic=%r: %s", self.request.topic, exc)
            yield {"type": "error", "error": str(self.error)}
            return
        finally:
            await _close_stream(iterator)

        self.result = GenerationResult(
            content=content,
            hashtags=self.hashtags,
            best_time_to_post=self.best_time_to_post,
            total_tokens_used=self.total_tokens,
            metadata=_metadata(self.request),
        )
        logger.info("Streaming generation complete: %s tokens", self.total_tokens)
        yield {"type": "end"}

    def _apply(self, event: ModelEvent) -> List[Dict[str, Any]]:
        if isinstance(event, ContentDelta):
            self.content += event.text
            return [{"type": "content", "delta": event.text}]

        if isinstance(event, ToolUse):
            logger.info("Tool call: %s", event.name)
            outcome = self._pipeline.dispatcher(event.name, event.input)
            self.tool_results.append(outcome)
            tool_payload: Dict[str, Any] = {"name": event.name, "result": outcome.output}
            if outcome.ok:
                self._absorb(outcome)
            else:
                logger.warning("Tool %s failed: %s", event.name, outcome.error)
                tool_payload["error"] = outcome.error
            return [
                {"type": "tool_call", "tool": {"name": event.name, "input": dict(event.input)}},
                {"type": "tool_result", "tool": tool_payload},
            ]

        if isinstance(event, MessageEnd):
            self.total_tokens = event.total_tokens
        return []

    def _absorb(self, outcome: ToolResult) -> None:
        output = outcome.output or {}
        if outcome.name == HASHTAGS_TOOL:
            self.hashtags = list(output.get("hashtags") or [])
        elif outcome.name == BEST_TIME_TOOL:
            self.best_time_to_post = dict(output)


class PostGenerationPipeline:
    """Drives the model for one post, in interleaved-tool or sequential mode.

    The chat client, retry policy and tool dispatcher are injected so callers
    and tests can substitute their own.
    """

    def __init__(
        self,
        client: LLMClient,
        *,
        retry_policy: Optional[RetryPolicy] = None,
        timeout_seconds: float = 60.0,
        dispatcher: ToolDispatcher = dispatch_tool,
        tool_declarations: Optional[List[Dict[str, Any]]] = None,
    ) -> None:
        self.client = client
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeout_seconds = float(timeout_seconds)
        self.dispatcher = dispatcher
        self.tool_declarations = tool_declarations if tool_declarations is not None else openai_tool_declarations()

    async def _next_event(self, iterator: AsyncIterator[ModelEvent], deadline: float) -> Any:
        remaining = deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            raise GenerationTimeout(self.timeout_seconds)
        try:
            return await asyncio.wait_for(iterator.__anext__(), timeout=remaining)
        except StopAsyncIteration:
            return _END_OF_STREAM
        except asyncio.TimeoutError as exc:
            raise GenerationTimeout(self.timeout_seconds) from exc

    async def _open_stream(
        self,
        prompt: str,
        tools: Optional[List[Dict[str, Any]]],
    ) -> Tuple[AsyncIterator[ModelEvent], Any, float]:
        """Start a model stream and wait for its first event; the unit that gets retried."""
        deadline = asyncio.get_running_loop().time() + self.timeout_seconds
        iterator = self.client.stream(prompt, tools=tools).__aiter__()
        first = await self._next_event(iterator, deadline)
        return iterator, first, deadline

    async def _collect_text(self, prompt: str) -> Tuple[str, int]:
        deadline = asyncio.get_running_loop().time() + self.timeout_seconds
        iterator = self.client.stream(prompt, tools=None).__aiter__()
        content = ""
        tokens = 0
        try:
            while True:
                event = await self._next_event(iterator, deadline)
                if event is _END_OF_STREAM:
                    break
                if isinstance(event, ContentDelta):
                    content += event.text
                elif isinstance(event, MessageEnd):
                    tokens = event.total_tokens
        finally:
            await _close_stream(iterator)
        content = content.strip()
        if not content:
            raise GenerationFailure("Generated post is empty")
        return content, tokens

    def stream(self, request: PostGenerationRequest) -> GenerationStream:
        """Interleaved mode: one model call with tools declared."""
        logger.info("Starting streaming generation with tools for topic=%r", request.topic)
        return GenerationStream(self, request)

    async def generate_interleaved(self, request: PostGenerationRequest) -> GenerationResult:
        run = self.stream(request)
        async for _event in run:
            pass
        if run.error is not None:
            raise run.error
        return run.result

    async def generate_text(self, request: PostGenerationRequest) -> Tuple[str, int]:
        """Content-only generation; returns the text and tokens used."""
        try:
            return await self.retry_policy.call(self._collect_text, request.prompt())
        except Exception as exc:
            logger.error("Generation failed for topic=%r: %s", request.topic, exc)
            raise _as_generation_failure(exc) from exc

    async def generate_sequential(self, request: PostGenerationRequest) -> GenerationResult:
        """Sequential mode: finish the content, then run both tools against it."""
        logger.info("Starting sequential generation for topic=%r", request.topic)
        content, tokens = await self.generate_text(request)
        platform = request.platform or "linkedin"

        hashtag_outcome = self.dispatcher(
            HASHTAGS_TOOL,
            {
                "topic": request.topic,
                "tone": request.tone,
                "content_length": request.length,
                "platform": platform,
                "content": content,
            },
        )
        time_input: Dict[str, Any] = {"platform": platform}
        if request.timezone:
            time_input["timezone"] = request.timezone
        if request.target_audience:
            time_input["target_audience"] = request.target_audience
        time_outcome = self.dispatcher(BEST_TIME_TOOL, time_input)

        hashtags = list((hashtag_outcome.output or {}).get("hashtags") or []) if hashtag_outcome.ok else []
        best_time = dict(time_outcome.output) if time_outcome.ok and time_outcome.output else dict(DEFAULT_BEST_TIME)

        logger.info("Sequential generation complete: %s tokens", tokens)
        return GenerationResult(
            content=content,
            hashtags=hashtags,
            best_time_to_post=best_time,
            total_tokens_used=tokens,
            metadata=_metadata(request),
        )
