"""Apply verified Stripe events to the credit ledger exactly once."""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any, Dict, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.payment import StripeTransaction
from services.credits import stage_balance_change, stage_clamped_deduction
from services.errors import InvalidEventPayload

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
CHECKOUT_EXPIRED = "checkout.session.expired"
CHARGE_REFUNDED = "charge.refunded"


def _account_id(metadata: Dict[str, Any]) -> Optional[str]:
    value = str(metadata.get("accountId") or metadata.get("userId") or "").strip()
    return value or None


def _parse_credits(raw: Any) -> Optional[int]:
    try:
        return int(str(raw).strip())
    except (TypeError, ValueError):
        return None


def _payment_intent_id(obj: Dict[str, Any]) -> Optional[str]:
    value = obj.get("payment_intent")
    if isinstance(value, dict):
        value = value.get("id")
    return str(value) if value else None


async def _find_by_session(session_id: str, db: AsyncSession) -> Optional[StripeTransaction]:
    result = await db.execute(
        select(StripeTransaction).where(StripeTransaction.stripe_session_id == session_id)
    )
    return result.scalar_one_or_none()


async def handle_checkout_completed(session: Dict[str, Any], db: AsyncSession) -> Dict[str, Any]:
    """Record the payment and grant its credits in one transaction.

    The session id is the idempotency key: a redelivered event finds the
    existing record, or loses the unique-index race, and changes nothing.
    """
    session_id = session.get("id")
    if not session_id:
        raise InvalidEventPayload("Checkout session has no id")

    if await _find_by_session(session_id, db):
        logger.warning("Checkout session %s already processed, skipping", session_id)
        return {"status": "duplicate", "session_id": session_id}

    metadata = session.get("metadata") or {}
    account_id = _account_id(metadata)
    credits = _parse_credits(metadata.get("credits"))
    if not account_id:
        raise InvalidEventPayload("Missing accountId in session metadata", event_id=session_id)
    if credits is None or credits <= 0:
        raise InvalidEventPayload("Invalid credits amount in session metadata", event_id=session_id)

    package_name = metadata.get("packageName") or "Unknown Package"
    amount_total = int(session.get("amount_total") or 0)
    currency = session.get("currency") or "usd"
    customer = session.get("customer_details") or {}

    record = StripeTransaction(
        user_id=account_id,
        stripe_session_id=session_id,
        stripe_payment_id=_payment_intent_id(session),
        amount=amount_total,
        currency=currency,
        credits=credits,
        status="completed",
        metadata_json={
            "packageName": package_name,
            "packageId": metadata.get("packageId"),
            "customerEmail": session.get("customer_email") or customer.get("email"),
            "customerName": customer.get("name"),
            "paymentStatus": session.get("payment_status"),
        },
    )
    try:
        db.add(record)
        await db.flush()
        entry = await stage_balance_change(
            account_id,
            db,
            amount=credits,
            kind="purchase",
            description=f"Purchased {package_name} ({credits} credits)",
            metadata={
                "stripeSessionId": session_id,
                "packageName": package_name,
                "amountPaid": amount_total / 100,
                "currency": currency,
            },
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        if await _find_by_session(session_id, db) is None:
            raise
        logger.warning("Checkout session %s recorded concurrently, skipping", session_id)
        return {"status": "duplicate", "session_id": session_id}
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "Checkout %s: added %s credits to %s. New balance: %s",
        session_id,
        credits,
        account_id,
        entry.balance_after,
    )
    return {
        "status": "credited",
        "session_id": session_id,
        "credits": credits,
        "new_balance": entry.balance_after,
    }


async def handle_checkout_expired(session: Dict[str, Any], db: AsyncSession) -> Dict[str, Any]:
    """Record an abandoned checkout. Informational, so failures are only logged."""
    session_id = session.get("id")
    try:
        if not session_id:
            raise InvalidEventPayload("Checkout session has no id")
        if await _find_by_session(session_id, db):
            return {"status": "duplicate", "session_id": session_id}

        metadata = session.get("metadata") or {}
        account_id = _account_id(metadata)
        if not account_id:
            logger.warning("Expired session %s has no accountId, nothing recorded", session_id)
            return {"status": "ignored", "session_id": session_id}

        db.add(
            StripeTransaction(
                user_id=account_id,
                stripe_session_id=session_id,
                amount=int(session.get("amount_total") or 0),
                currency=session.get("currency") or "usd",
                credits=max(_parse_credits(metadata.get("credits")) or 0, 0),
                status="failed",
                metadata_json={"reason": "session_expired", "packageName": metadata.get("packageName")},
            )
        )
        await db.commit()
    except Exception as exc:
        await db.rollback()
        logger.error("Error recording expired checkout %s: %s", session_id, exc)
        return {"status": "error", "session_id": session_id}

    logger.info("Recorded expired checkout session %s", session_id)
    return {"status": "recorded", "session_id": session_id}


async def handle_charge_refunded(charge: Dict[str, Any], db: AsyncSession) -> Dict[str, Any]:
    """Reverse a purchase, clamped so the balance never goes below zero."""
    charge_id = charge.get("id")
    payment_id = _payment_intent_id(charge)
    if not payment_id:
        logger.warning("Refunded charge %s has no payment intent, skipping", charge_id)
        return {"status": "ignored", "charge_id": charge_id}

    result = await db.execute(
        select(StripeTransaction)
        .where(StripeTransaction.stripe_payment_id == payment_id)
        .where(StripeTransaction.status.in_(("completed", "refunded")))
        .order_by(StripeTransaction.created_at.desc())
        .execution_options(populate_existing=True)
    )
    record = result.scalars().first()
    if record is None:
        logger.warning("No completed payment found for %s, skipping refund", payment_id)
        return {"status": "ignored", "charge_id": charge_id}
    if record.status == "refunded":
        logger.info("Payment %s already refunded, skipping", record.id)
        return {"status": "duplicate", "charge_id": charge_id}

    record_id = record.id
    account_id = record.user_id
    original_credits = int(record.credits or 0)
    record_metadata = dict(record.metadata_json or {})
    package_name = record_metadata.get("packageName") or "Credit purchase"
    session_id = record.stripe_session_id

    try:
        marked = await db.execute(
            update(StripeTransaction)
            .where(StripeTransaction.id == record_id)
            .where(StripeTransaction.status == "completed")
            .values(
                status="refunded",
                metadata_json={
                    **record_metadata,
                    "refundedAt": datetime.now(timezone.utc).isoformat(),
                    "refundChargeId": charge_id,
                },
            )
            .execution_options(synchronize_session=False)
        )
        if marked.rowcount == 0:
            await db.rollback()
            logger.info("Payment %s refunded concurrently, skipping", record_id)
            return {"status": "duplicate", "charge_id": charge_id}

        entry, deducted = await stage_clamped_deduction(
            account_id,
            db,
            max_amount=original_credits,
            kind="refund",
            describe=lambda amount: f"Refund: {package_name} ({amount} credits deducted)",
            metadata={
                "stripeSessionId": session_id,
                "chargeId": charge_id,
                "refundAmount": charge.get("amount_refunded"),
                "originalCredits": original_credits,
            },
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    if deducted < original_credits:
        logger.warning(
            "Account %s had insufficient credits for full refund: wanted %s, deducted %s",
            account_id,
            original_credits,
            deducted,
        )
    logger.info("Refund for charge %s processed. New balance: %s", charge_id, entry.balance_after)
    return {
        "status": "refunded",
        "charge_id": charge_id,
        "credits_deducted": deducted,
        "new_balance": entry.balance_after,
    }


async def handle_external_event(event_type: str, payload: Dict[str, Any], db: AsyncSession) -> Dict[str, Any]:
    """Route a signature-verified event to its handler.

    Checkout-completed and refund failures propagate so the processor redelivers.
    """
    if event_type == CHECKOUT_COMPLETED:
        return await handle_checkout_completed(payload, db)
    if event_type == CHECKOUT_EXPIRED:
        return await handle_checkout_expired(payload, db)
    if event_type == CHARGE_REFUNDED:
        return await handle_charge_refunded(payload, db)
    if event_type.startswith("payment_intent."):
        logger.info("Payment intent event %s for %s acknowledged", event_type, payload.get("id"))
        return {"status": "acknowledged"}
    logger.info("Unhandled event type: %s", event_type)
    return {"status": "ignored"}
