"""Credit ledger: atomic balance mutations, summaries and history."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple
import logging

from sqlalchemy import case, func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.credit_ledger import TRANSACTION_KINDS, CreditTransaction
from models.user import User
from services.errors import AccountNotFound, InsufficientBalance, InvalidCreditAmount

logger = logging.getLogger(__name__)

CREDIT_KINDS = ("purchase", "refund", "bonus")
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
WELCOME_BONUS_DESCRIPTION = "Welcome bonus - initial credits"


@dataclass
class LedgerReceipt:
    new_balance: int
    transaction_id: str


def _month_start(now: Optional[datetime] = None) -> datetime:
    current = now or datetime.now(timezone.utc)
    return current.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


async def get_balance(account_id: str, db: AsyncSession) -> int:
    result = await db.execute(select(User.credits).where(User.id == account_id))
    balance = result.scalar_one_or_none()
    if balance is None:
        raise AccountNotFound(account_id)
    return int(balance)


async def has_sufficient_balance(account_id: str, required: int, db: AsyncSession) -> bool:
    balance = await get_balance(account_id, db)
    enough = balance >= required
    logger.info(
        "Balance check for %s: %s credits (need %s): %s",
        account_id,
        balance,
        required,
        "OK" if enough else "INSUFFICIENT",
    )
    return enough


async def stage_balance_change(
    account_id: str,
    db: AsyncSession,
    *,
    amount: int,
    kind: str,
    description: str,
    metadata: Optional[Dict[str, Any]] = None,
) -> CreditTransaction:
    """Apply ``amount`` to the balance and append the matching ledger row.

    Runs inside the caller's transaction and does not commit. The balance is
    changed with a single conditional UPDATE so a concurrent spender can never
    drive it below zero, and ``balance_after`` is taken from the row the
    UPDATE returned.
    """
    if kind not in TRANSACTION_KINDS:
        raise ValueError(f"Unknown transaction kind: {kind}")

    stmt = update(User).where(User.id == account_id)
    if amount < 0:
        stmt = stmt.where(User.credits >= -amount)
    stmt = (
        stmt.values(credits=User.credits + amount)
        .returning(User.credits)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    new_balance = result.scalar_one_or_none()
    if new_balance is None:
        balance = await get_balance(account_id, db)
        raise InsufficientBalance(account_id, balance=balance, required=-amount)

    entry = CreditTransaction(
        user_id=account_id,
        amount=int(amount),
        kind=kind,
        description=description,
        balance_after=int(new_balance),
        metadata_json=metadata or None,
    )
    db.add(entry)
    await db.flush()
    return entry


async def stage_clamped_deduction(
    account_id: str,
    db: AsyncSession,
    *,
    max_amount: int,
    kind: str,
    describe: Callable[[int], str],
    metadata: Optional[Dict[str, Any]] = None,
) -> Tuple[CreditTransaction, int]:
    """Deduct up to ``max_amount`` without going below zero; returns the entry and actual deduction."""
    result = await db.execute(select(User.credits).where(User.id == account_id).with_for_update())
    balance = result.scalar_one_or_none()
    if balance is None:
        raise AccountNotFound(account_id)

    deduction = min(int(balance), max(int(max_amount), 0))
    entry = await stage_balance_change(
        account_id,
        db,
        amount=-deduction,
        kind=kind,
        description=describe(deduction),
        metadata=metadata,
    )
    return entry, deduction


async def _commit_change(
    account_id: str,
    db: AsyncSession,
    **change: Any,
) -> LedgerReceipt:
    try:
        entry = await stage_balance_change(account_id, db, **change)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return LedgerReceipt(new_balance=entry.balance_after, transaction_id=entry.id)


async def debit_credits(
    account_id: str,
    db: AsyncSession,
    *,
    amount: int,
    description: str = "Post generation",
    metadata: Optional[Dict[str, Any]] = None,
) -> LedgerReceipt:
    """Spend credits. Raises InsufficientBalance when the committed balance is too low."""
    if int(amount) < 1:
        raise InvalidCreditAmount(amount)

    try:
        receipt = await _commit_change(
            account_id,
            db,
            amount=-int(amount),
            kind="generation",
            description=description,
            metadata=metadata,
        )
    except InsufficientBalance as exc:
        logger.warning(
            "Insufficient credits for %s: %s available, %s required",
            account_id,
            exc.balance,
            exc.required,
        )
        raise

    logger.info(
        "Deducted %s credits from %s. Remaining: %s. Transaction: %s",
        amount,
        account_id,
        receipt.new_balance,
        receipt.transaction_id,
    )
    return receipt


async def add_credits(
    account_id: str,
    db: AsyncSession,
    *,
    amount: int,
    kind: str = "bonus",
    description: str = "Credit purchase",
    metadata: Optional[Dict[str, Any]] = None,
) -> LedgerReceipt:
    if int(amount) < 1:
        raise InvalidCreditAmount(amount)
    if kind not in CREDIT_KINDS:
        raise ValueError(f"kind must be one of {', '.join(CREDIT_KINDS)}")

    receipt = await _commit_change(
        account_id,
        db,
        amount=int(amount),
        kind=kind,
        description=description,
        metadata=metadata,
    )
    logger.info(
        "Added %s credits to %s (%s). Total: %s. Transaction: %s",
        amount,
        account_id,
        kind,
        receipt.new_balance,
        receipt.transaction_id,
    )
    return receipt


async def refund_credits(
    account_id: str,
    db: AsyncSession,
    *,
    amount: int,
    reason: str = "Generation failed",
) -> LedgerReceipt:
    return await add_credits(account_id, db, amount=amount, kind="refund", description=reason)


async def ensure_account(account_id: str, db: AsyncSession, *, email: Optional[str] = None) -> User:
    """Return the account, creating it with the starting grant on first use."""
    result = await db.execute(select(User).where(User.id == account_id))
    user = result.scalar_one_or_none()
    if user:
        return user

    user = User(id=account_id, email=email or f"{account_id}@local.invalid", credits=0)
    db.add(user)
    try:
        await db.flush()
        grant = max(int(settings.STARTING_CREDITS), 0)
        if grant > 0:
            await stage_balance_change(
                account_id,
                db,
                amount=grant,
                kind="bonus",
                description=WELCOME_BONUS_DESCRIPTION,
            )
        await db.commit()
    except IntegrityError:
        # Created concurrently by another request.
        await db.rollback()
        result = await db.execute(select(User).where(User.id == account_id))
        user = result.scalar_one_or_none()
        if user is None:
            raise
        return user

    await db.refresh(user)
    logger.info("Created account %s with %s credits", account_id, user.credits)
    return user


async def get_credit_summary(account_id: str, db: AsyncSession) -> Dict[str, Any]:
    balance = await get_balance(account_id, db)
    spent = case(
        (
            (CreditTransaction.amount < 0) & (CreditTransaction.kind == "generation"),
            -CreditTransaction.amount,
        ),
        else_=0,
    )
    purchased = case(
        (
            (CreditTransaction.amount > 0) & (CreditTransaction.kind == "purchase"),
            CreditTransaction.amount,
        ),
        else_=0,
    )
    spent_this_month = case(
        (CreditTransaction.created_at >= _month_start(), spent),
        else_=0,
    )
    result = await db.execute(
        select(
            func.coalesce(func.sum(spent), 0),
            func.coalesce(func.sum(purchased), 0),
            func.coalesce(func.sum(spent_this_month), 0),
        ).where(CreditTransaction.user_id == account_id)
    )
    total_spent, total_purchased, month_spent = result.one()
    return {
        "current_balance": balance,
        "total_purchased": int(total_purchased or 0),
        "total_spent": int(total_spent or 0),
        "spent_this_month": int(month_spent or 0),
    }


def serialize_transaction(entry: CreditTransaction) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "amount": entry.amount,
        "type": entry.kind,
        "description": entry.description,
        "balance_after": entry.balance_after,
        "metadata": entry.metadata_json or {},
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }


async def list_transactions(
    account_id: str,
    db: AsyncSession,
    *,
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
    kind: Optional[str] = None,
    search: Optional[str] = None,
) -> Dict[str, Any]:
    """Newest-first page of ledger rows, optionally filtered by kind and description text."""
    page = max(int(page), 1)
    page_size = min(max(int(page_size), 1), MAX_PAGE_SIZE)

    filters = [CreditTransaction.user_id == account_id]
    if kind and kind != "all":
        filters.append(CreditTransaction.kind == kind)
    needle = (search or "").strip().lower()
    if needle:
        filters.append(func.lower(CreditTransaction.description).contains(needle, autoescape=True))

    count_result = await db.execute(select(func.count(CreditTransaction.id)).where(*filters))
    total_count = int(count_result.scalar() or 0)

    result = await db.execute(
        select(CreditTransaction)
        .where(*filters)
        .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    entries = result.scalars().all()
    page_count = (total_count + page_size - 1) // page_size
    return {
        "items": [serialize_transaction(entry) for entry in entries],
        "total_count": total_count,
        "page_count": page_count,
        "pagination": {
            "page": page,
            "limit": page_size,
            "total_count": total_count,
            "total_pages": page_count,
            "has_more": page < page_count,
        },
    }
