"""Credit-gated post generation: check balance, generate, persist, debit."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging
import time
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from services.credits import debit_credits, get_balance
from services.errors import (
    AccountNotFound,
    GenerationFailure,
    GenerationTimeout,
    InsufficientBalance,
    PersistenceFailure,
)
from services.generation import GenerationResult, PostGenerationPipeline, PostGenerationRequest
from services.posts import create_post, delete_post, serialize_post

logger = logging.getLogger(__name__)


class GeneratePostInput(BaseModel):
    topic: str = Field(min_length=3, max_length=200)
    tone: Literal["Professional", "Casual", "Inspirational"]
    length: Literal["Short", "Medium", "Long"]
    platform: Literal["linkedin", "twitter", "facebook"] = "linkedin"
    timezone: Optional[str] = None
    target_audience: Optional[str] = None

    def to_request(self) -> PostGenerationRequest:
        return PostGenerationRequest(
            topic=self.topic,
            tone=self.tone,
            length=self.length,
            platform=self.platform,
            timezone=self.timezone,
            target_audience=self.target_audience,
        )


@dataclass
class GenerationOutcome:
    success: bool
    post: Optional[Dict[str, Any]] = None
    remaining_credits: Optional[int] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"success": self.success}
        if self.post is not None:
            payload["post"] = self.post
        if self.remaining_credits is not None:
            payload["remaining_credits"] = self.remaining_credits
        if self.error is not None:
            payload["error"] = self.error
            payload["error_code"] = self.error_code
        return payload


def generation_cost(with_tools: bool) -> int:
    if with_tools:
        return max(int(settings.CREDIT_COST_ENHANCED_GENERATION), 1)
    return max(int(settings.CREDIT_COST_STANDARD_GENERATION), 1)


def _validation_message(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        field_name = ".".join(str(item) for item in error.get("loc", ()))
        parts.append(f"{field_name}: {error.get('msg')}" if field_name else str(error.get("msg")))
    return "; ".join(parts) or "Invalid input"


async def _balance_or_none(account_id: str, db: AsyncSession) -> Optional[int]:
    try:
        return await get_balance(account_id, db)
    except AccountNotFound:
        return None


async def parse_generation_input(
    account_id: str, raw: Any, db: AsyncSession
) -> Union[GeneratePostInput, GenerationOutcome]:
    """Validated input, or the ``validation_error`` outcome describing what is wrong."""
    try:
        return GeneratePostInput.model_validate(raw)
    except ValidationError as exc:
        logger.warning("Invalid generation input for %s: %s", account_id, exc)
        return GenerationOutcome(
            success=False,
            remaining_credits=await _balance_or_none(account_id, db),
            error=_validation_message(exc),
            error_code="validation_error",
        )


def _post_metadata(
    payload: GeneratePostInput,
    result: GenerationResult,
    *,
    with_tools: bool,
    streamed: bool = False,
) -> Dict[str, Any]:
    metadata: Dict[str, Any] = {
        "topic": payload.topic,
        "tone": payload.tone,
        "length": payload.length,
        "total_tokens_used": result.total_tokens_used,
        "generated_at": result.metadata.get("generated_at"),
    }
    if with_tools:
        metadata["hashtags"] = list(result.hashtags)
        metadata["best_time_to_post"] = dict(result.best_time_to_post)
        metadata["generated_with_tools"] = True
    if streamed:
        metadata["stream_generated"] = True
    return metadata


async def persist_and_charge(
    account_id: str,
    payload: GeneratePostInput,
    result: GenerationResult,
    db: AsyncSession,
    *,
    cost: int,
    with_tools: bool,
    streamed: bool = False,
) -> GenerationOutcome:
    """Store the post, then debit; the post is deleted again if the debit fails."""
    try:
        post = await create_post(
            account_id,
            db,
            content=result.content[: max(int(settings.POST_CONTENT_MAX_CHARS), 1)],
            platform=payload.platform,
            metadata=_post_metadata(payload, result, with_tools=with_tools, streamed=streamed),
        )
        post_payload = serialize_post(post)
    except PersistenceFailure as exc:
        logger.error("Error creating post for %s: %s", account_id, exc)
        return GenerationOutcome(
            success=False,
            remaining_credits=await _balance_or_none(account_id, db),
            error=str(exc),
            error_code="persistence_failed",
        )

    # A failed debit rolls the session back, expiring `post`; only the captured payload is used below.
    post_id = post_payload["id"]
    label = "Generated enhanced post with tools" if with_tools else "Generated post"
    try:
        receipt = await debit_credits(
            account_id,
            db,
            amount=cost,
            description=f'{label}: "{payload.topic}"',
            metadata={"post_id": post_id, "total_tokens_used": result.total_tokens_used},
        )
    except Exception as exc:
        try:
            await delete_post(post_id, db)
        except Exception as cleanup_exc:
            await db.rollback()
            logger.error(
                "RECONCILIATION NEEDED: post %s for %s kept after failed debit (%s); delete failed: %s",
                post_id,
                account_id,
                exc,
                cleanup_exc,
            )
        remaining = exc.balance if isinstance(exc, InsufficientBalance) else await _balance_or_none(account_id, db)
        return GenerationOutcome(
            success=False,
            remaining_credits=remaining,
            error=str(exc) or "Failed to deduct credits",
            error_code="insufficient_credits" if isinstance(exc, InsufficientBalance) else "debit_failed",
        )

    post_payload["hashtags"] = list(result.hashtags)
    post_payload["best_time_to_post"] = dict(result.best_time_to_post) if with_tools else None
    post_payload["total_tokens_used"] = result.total_tokens_used
    post_payload["remaining_credits"] = receipt.new_balance
    return GenerationOutcome(success=True, post=post_payload, remaining_credits=receipt.new_balance)


async def generate_content(
    account_id: str,
    payload: Union[GeneratePostInput, Dict[str, Any]],
    db: AsyncSession,
    pipeline: PostGenerationPipeline,
    *,
    with_tools: bool = False,
) -> GenerationOutcome:
    """Full credit-gated generation. Failures are returned, never raised."""
    started = time.monotonic()

    if not isinstance(payload, GeneratePostInput):
        parsed = await parse_generation_input(account_id, payload, db)
        if isinstance(parsed, GenerationOutcome):
            return parsed
        payload = parsed

    cost = generation_cost(with_tools)
    try:
        balance = await get_balance(account_id, db)
    except AccountNotFound as exc:
        logger.error("Generation requested for unknown account %s", account_id)
        return GenerationOutcome(success=False, error=str(exc), error_code="account_not_found")

    if balance < cost:
        logger.warning("Insufficient credits for %s: %s available, %s required", account_id, balance, cost)
        return GenerationOutcome(
            success=False,
            remaining_credits=balance,
            error=f"Insufficient credits. This feature requires {cost} credits. Please purchase more.",
            error_code="insufficient_credits",
        )

    request = payload.to_request()
    logger.info(
        'Starting generation for %s: "%s" (%s, %s, tools=%s)',
        account_id,
        payload.topic,
        payload.tone,
        payload.length,
        with_tools,
    )
    try:
        if with_tools:
            result = await pipeline.generate_sequential(request)
        else:
            content, tokens = await pipeline.generate_text(request)
            result = GenerationResult(
                content=content,
                hashtags=[],
                best_time_to_post={},
                total_tokens_used=tokens,
                metadata={"generated_at": datetime.now(timezone.utc).isoformat()},
            )
    except GenerationFailure as exc:
        return GenerationOutcome(
            success=False,
            remaining_credits=balance,
            error=str(exc),
            error_code="generation_timeout" if isinstance(exc, GenerationTimeout) else "generation_failed",
        )

    outcome = await persist_and_charge(account_id, payload, result, db, cost=cost, with_tools=with_tools)
    if outcome.success:
        logger.info(
            "Generated post %s for %s in %dms. Tokens: %s. Remaining credits: %s",
            outcome.post["id"],
            account_id,
            int((time.monotonic() - started) * 1000),
            result.total_tokens_used,
            outcome.remaining_credits,
        )
    return outcome


async def stream_content(
    account_id: str,
    payload: GeneratePostInput,
    db: AsyncSession,
    pipeline: PostGenerationPipeline,
    *,
    is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
) -> AsyncIterator[Dict[str, Any]]:
    """Interleaved generation as a sequence of wire events.

    The pipeline's ``end`` is held back until the post is stored and charged,
    then re-emitted with the post id and remaining credits. Failures end the
    stream with one ``error`` event carrying ``error_code`` and the balance.

    The caller owns the run: when the response is torn down after a client
    disconnect, this generator is closed and the model stream with it. A
    disconnect seen before ``end`` leaves nothing stored and nothing charged.
    """
    yield {"type": "start"}

    run = pipeline.stream(payload.to_request())
    events = run.__aiter__()
    try:
        async for event in events:
            if event["type"] == "end":
                break
            if event["type"] == "error":
                timed_out = isinstance(run.error, GenerationTimeout)
                event = {
                    **event,
                    "error_code": "generation_timeout" if timed_out else "generation_failed",
                    "remaining_credits": await _balance_or_none(account_id, db),
                }
            yield event
    finally:
        await events.aclose()

    if run.result is None:
        return
    if is_disconnected is not None and await is_disconnected():
        logger.info("Client for %s disconnected before completion; post not saved or charged", account_id)
        return

    outcome = await persist_and_charge(
        account_id,
        payload,
        run.result,
        db,
        cost=generation_cost(True),
        with_tools=True,
        streamed=True,
    )
    if not outcome.success:
        yield {
            "type": "error",
            "error": outcome.error,
            "error_code": outcome.error_code,
            "remaining_credits": outcome.remaining_credits,
        }
        return

    yield {
        "type": "end",
        "post_id": outcome.post["id"],
        "remaining_credits": outcome.remaining_credits,
        "total_tokens_used": run.result.total_tokens_used,
    }
