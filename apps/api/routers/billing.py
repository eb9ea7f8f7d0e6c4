"""Billing router: Stripe checkout sessions and webhook intake."""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
import stripe

from config import require_stripe_secret_key, settings
from database import get_db
from routers.auth_scope import AuthContext, get_account_context
from routers.rate_limit import rate_limit
from services.pricing import get_package
from services.reconciliation import handle_external_event

router = APIRouter()
logger = logging.getLogger(__name__)


class CheckoutRequest(BaseModel):
    package_id: str = Field(validation_alias=AliasChoices("package_id", "packageId"))


@router.post("/checkout")
async def create_checkout_session(
    request: CheckoutRequest,
    _rate_limit: None = Depends(rate_limit("billing_checkout", limit=20, window_seconds=3600)),
    auth: AuthContext = Depends(get_account_context),
):
    if not settings.BILLING_ENABLED:
        raise HTTPException(status_code=503, detail="Billing is disabled. Enable BILLING_ENABLED to use checkout.")

    package = get_package(request.package_id)
    if package is None:
        raise HTTPException(status_code=400, detail=f"Unknown credit package: {request.package_id}")

    try:
        api_key = require_stripe_secret_key()
    except ValueError as exc:
        raise HTTPException(status_code=503, detail="Stripe is not configured.") from exc

    try:
        session = await run_in_threadpool(
            stripe.checkout.Session.create,
            api_key=api_key,
            mode="payment",
            payment_method_types=["card"],
            line_items=[
                {
                    "price_data": {
                        "currency": "usd",
                        "unit_amount": package.price_in_cents,
                        "product_data": {
                            "name": package.name,
                            "description": f"{package.credits} AI generation credits",
                        },
                    },
                    "quantity": 1,
                }
            ],
            customer_email=auth.email,
            client_reference_id=auth.user_id,
            success_url=settings.STRIPE_SUCCESS_URL,
            cancel_url=settings.STRIPE_CANCEL_URL,
            metadata={
                "accountId": auth.user_id,
                "credits": str(package.credits),
                "packageName": package.name,
                "packageId": package.id,
            },
        )
    except stripe.StripeError as exc:
        logger.error("Stripe checkout session creation failed for %s: %s", auth.user_id, exc)
        raise HTTPException(status_code=502, detail="Stripe session creation failed.") from exc

    logger.info("Created checkout session %s for %s (%s)", session.id, auth.user_id, package.id)
    return {"session_id": session.id, "url": session.url}


@router.post("/webhook")
async def stripe_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    """Verify the Stripe signature, then apply the event to the ledger.

    A 500 response makes Stripe redeliver; handlers are idempotent.
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature")
    if not signature:
        logger.error("Webhook rejected: missing stripe-signature header")
        raise HTTPException(status_code=400, detail="Missing stripe-signature header")

    secret = (settings.STRIPE_WEBHOOK_SECRET or "").strip()
    if not secret:
        logger.error("Webhook rejected: STRIPE_WEBHOOK_SECRET not configured")
        raise HTTPException(status_code=500, detail="Webhook secret not configured")

    try:
        stripe.Webhook.construct_event(payload, signature, secret)
    except (ValueError, stripe.SignatureVerificationError) as exc:
        logger.error("Webhook signature verification failed: %s", exc)
        raise HTTPException(status_code=400, detail="Webhook signature verification failed") from exc

    event = json.loads(payload)
    event_id = event.get("id")
    event_type = str(event.get("type") or "")
    event_object = (event.get("data") or {}).get("object") or {}
    logger.info("Received webhook event %s (%s)", event_type, event_id)

    try:
        result = await handle_external_event(event_type, event_object, db)
    except Exception as exc:
        logger.exception("Error processing webhook event %s (%s)", event_id, event_type)
        return JSONResponse(
            status_code=500,
            content={
                "error": "Error processing webhook event",
                "event_id": event_id,
                "event_type": event_type,
                "details": str(exc),
            },
        )

    return {"received": True, "event_id": event_id, "status": result.get("status")}
