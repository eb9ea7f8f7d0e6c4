"""
Health check endpoints.
"""

from fastapi import APIRouter
from sqlalchemy import text
import redis.asyncio as redis

from config import settings
from database import engine

router = APIRouter()


def _provider_status() -> dict:
    billing_ready = bool(settings.STRIPE_SECRET_KEY and settings.STRIPE_WEBHOOK_SECRET)
    return {
        "llm": {"model": settings.LLM_MODEL, "configured": bool(settings.OPENAI_API_KEY)},
        "billing": {"enabled": settings.BILLING_ENABLED, "configured": billing_ready},
    }


@router.get("/health")
async def health_check():
    """
    Ledger database and rate-limit store reachability, plus provider configuration.
    Only the database decides between healthy and degraded.
    """
    report = {
        "status": "healthy",
        "database": "unknown",
        "rate_limit_store": "unknown",
        "providers": _provider_status(),
    }

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        report["database"] = "up"
    except Exception as e:
        report["database"] = f"down: {e}"
        report["status"] = "degraded"

    # Rate limiting falls back to local counters.
    client = redis.from_url(settings.REDIS_URL)
    try:
        await client.ping()
        report["rate_limit_store"] = "redis"
    except Exception as e:
        report["rate_limit_store"] = f"local (redis unavailable: {e})"
    finally:
        await client.aclose()

    return report


@router.get("/health/live")
async def liveness_check():
    return {"alive": True}
