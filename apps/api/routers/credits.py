"""Credit balance, history and package catalogue."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, get_account_context
from services.credits import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, get_credit_summary, list_transactions
from services.pricing import CREDIT_PACKAGES

router = APIRouter()


@router.get("/summary")
async def credits_summary(
    auth: AuthContext = Depends(get_account_context),
    db: AsyncSession = Depends(get_db),
):
    return await get_credit_summary(auth.user_id, db)


@router.get("/transactions")
async def credit_transactions(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1),
    type: str = Query(default="all", pattern="^(all|generation|purchase|refund|bonus)$"),
    search: Optional[str] = Query(default=None, max_length=200),
    auth: AuthContext = Depends(get_account_context),
    db: AsyncSession = Depends(get_db),
):
    """Newest-first ledger history; ``limit`` is capped at the maximum page size."""
    listing = await list_transactions(
        auth.user_id,
        db,
        page=page,
        page_size=min(limit, MAX_PAGE_SIZE),
        kind=type,
        search=search,
    )
    return {
        "transactions": listing["items"],
        "pagination": listing["pagination"],
    }


@router.get("/packages")
async def credit_packages():
    return {"packages": [package.to_dict() for package in CREDIT_PACKAGES]}
