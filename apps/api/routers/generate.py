"""AI post generation router."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Dict

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config import settings
from database import get_db, get_session_factory
from routers.auth_scope import AuthContext, get_account_context
from routers.rate_limit import rate_limit
from services.credits import get_balance
from services.errors import GenerationFailure
from services.generation import PostGenerationPipeline
from services.llm import build_llm_client
from services.post_generation import (
    GenerationOutcome,
    generate_content,
    generation_cost,
    parse_generation_input,
    stream_content,
)
from services.retry import RetryPolicy

router = APIRouter()
logger = logging.getLogger(__name__)

_OUTCOME_STATUS = {
    "validation_error": 422,
    "insufficient_credits": 402,
    "account_not_found": 404,
    "generation_failed": 502,
    "generation_timeout": 504,
    "persistence_failed": 500,
    "debit_failed": 500,
}

STREAM_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def get_generation_pipeline() -> PostGenerationPipeline:
    """Pipeline bound to the configured model client."""
    try:
        client = build_llm_client()
    except GenerationFailure as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return PostGenerationPipeline(
        client,
        retry_policy=RetryPolicy.from_settings(),
        timeout_seconds=float(settings.LLM_TIMEOUT_SECONDS),
    )


def format_sse(event: Dict[str, Any]) -> str:
    return f"data: {json.dumps(event)}\n\n"


def _outcome_response(outcome: GenerationOutcome) -> JSONResponse:
    status_code = 200 if outcome.success else _OUTCOME_STATUS.get(outcome.error_code or "", 500)
    return JSONResponse(status_code=status_code, content=outcome.to_dict())


@router.post("/generate-post")
async def generate_post(
    request: Any = Body(None),
    _rate_limit: None = Depends(rate_limit("ai_generate", limit=60, window_seconds=3600)),
    auth: AuthContext = Depends(get_account_context),
    db: AsyncSession = Depends(get_db),
    pipeline: PostGenerationPipeline = Depends(get_generation_pipeline),
):
    """Content-only generation (standard cost)."""
    outcome = await generate_content(auth.user_id, request, db, pipeline, with_tools=False)
    return _outcome_response(outcome)


@router.post("/generate-post-with-tools")
async def generate_post_with_tools(
    request: Any = Body(None),
    _rate_limit: None = Depends(rate_limit("ai_generate", limit=60, window_seconds=3600)),
    auth: AuthContext = Depends(get_account_context),
    db: AsyncSession = Depends(get_db),
    pipeline: PostGenerationPipeline = Depends(get_generation_pipeline),
):
    """Generation followed by hashtag and posting-time tools (enhanced cost)."""
    outcome = await generate_content(auth.user_id, request, db, pipeline, with_tools=True)
    return _outcome_response(outcome)


@router.post("/generate-post-stream")
async def generate_post_stream(
    http_request: Request,
    request: Any = Body(None),
    _rate_limit: None = Depends(rate_limit("ai_generate_stream", limit=60, window_seconds=3600)),
    auth: AuthContext = Depends(get_account_context),
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    pipeline: PostGenerationPipeline = Depends(get_generation_pipeline),
):
    """Interleaved generation streamed as server-sent events."""
    parsed = await parse_generation_input(auth.user_id, request, db)
    if isinstance(parsed, GenerationOutcome):
        return _outcome_response(parsed)

    cost = generation_cost(True)
    balance = await get_balance(auth.user_id, db)
    if balance < cost:
        return JSONResponse(
            status_code=402,
            content={
                "success": False,
                "error": f"Insufficient credits. This feature requires {cost} credits. Please purchase more.",
                "error_code": "insufficient_credits",
                "remaining_credits": balance,
            },
        )

    account_id = auth.user_id
    # The stream writes through its own session; release this one's connection first.
    await db.rollback()

    async def event_source() -> AsyncIterator[str]:
        async with session_factory() as session:
            async for event in stream_content(
                account_id,
                parsed,
                session,
                pipeline,
                is_disconnected=http_request.is_disconnected,
            ):
                yield format_sse(event)

    return StreamingResponse(event_source(), media_type="text/event-stream", headers=STREAM_HEADERS)
