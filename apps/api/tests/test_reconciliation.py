import pytest
from sqlalchemy.future import select

from models.credit_ledger import CreditTransaction
from models.payment import StripeTransaction
from services.credits import debit_credits, get_balance
from services.errors import AccountNotFound, InvalidEventPayload
from services.reconciliation import (
    handle_charge_refunded,
    handle_checkout_completed,
    handle_checkout_expired,
    handle_external_event,
)


def _checkout_session(session_id="sess_1", account_id="acct_1", credits="150", package_name="Popular Pack"):
    return {
        "id": session_id,
        "object": "checkout.session",
        "amount_total": 2499,
        "currency": "usd",
        "payment_intent": f"pi_{session_id}",
        "payment_status": "paid",
        "customer_details": {"email": "buyer@example.com", "name": "Buyer"},
        "metadata": {
            "accountId": account_id,
            "credits": credits,
            "packageName": package_name,
            "packageId": "popular",
        },
    }


async def _payments(session_maker, session_id=None):
    async with session_maker() as session:
        query = select(StripeTransaction)
        if session_id:
            query = query.where(StripeTransaction.stripe_session_id == session_id)
        result = await session.execute(query)
        return result.scalars().all()


async def _ledger(db, account_id):
    result = await db.execute(
        select(CreditTransaction)
        .where(CreditTransaction.user_id == account_id)
        .order_by(CreditTransaction.created_at.asc())
    )
    return result.scalars().all()


@pytest.mark.asyncio
async def test_duplicate_checkout_is_credited_once(db_session, session_maker, create_account):
    account_id = await create_account(credits=0)
    session = _checkout_session()

    first = await handle_checkout_completed(session, db_session)
    second = await handle_checkout_completed(session, db_session)

    assert first["status"] == "credited"
    assert first["new_balance"] == 150
    assert second["status"] == "duplicate"
    assert await get_balance(account_id, db_session) == 150

    payments = await _payments(session_maker, "sess_1")
    assert len(payments) == 1
    assert payments[0].status == "completed"
    assert payments[0].stripe_payment_id == "pi_sess_1"
    assert payments[0].metadata_json["packageName"] == "Popular Pack"
    assert payments[0].metadata_json["customerEmail"] == "buyer@example.com"

    entries = await _ledger(db_session, account_id)
    assert [(e.kind, e.amount, e.balance_after) for e in entries] == [("purchase", 150, 150)]
    assert entries[0].description == "Purchased Popular Pack (150 credits)"


@pytest.mark.asyncio
async def test_checkout_accepts_legacy_user_id_metadata(db_session, create_account):
    account_id = await create_account(credits=5)
    session = _checkout_session(session_id="sess_legacy")
    session["metadata"] = {"userId": account_id, "credits": "50", "packageName": "Starter Pack"}

    result = await handle_checkout_completed(session, db_session)

    assert result["new_balance"] == 55


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "metadata",
    [
        {"credits": "50"},
        {"accountId": "acct_1", "credits": "0"},
        {"accountId": "acct_1", "credits": "lots"},
        {"accountId": "acct_1"},
    ],
)
async def test_malformed_checkout_metadata_is_rejected(db_session, session_maker, create_account, metadata):
    account_id = await create_account(credits=5)
    session = _checkout_session(session_id="sess_bad")
    session["metadata"] = metadata

    with pytest.raises(InvalidEventPayload) as exc_info:
        await handle_checkout_completed(session, db_session)

    assert exc_info.value.event_id == "sess_bad"
    assert await get_balance(account_id, db_session) == 5
    assert await _payments(session_maker) == []


@pytest.mark.asyncio
async def test_checkout_for_unknown_account_leaves_no_record(db_session, session_maker):
    with pytest.raises(AccountNotFound):
        await handle_checkout_completed(_checkout_session(account_id="ghost"), db_session)

    assert await _payments(session_maker) == []


@pytest.mark.asyncio
async def test_expired_checkout_is_recorded_once_without_balance_change(db_session, session_maker, create_account):
    account_id = await create_account(credits=7)
    session = _checkout_session(session_id="sess_expired")

    first = await handle_checkout_expired(session, db_session)
    second = await handle_checkout_expired(session, db_session)

    assert first["status"] == "recorded"
    assert second["status"] == "duplicate"
    payments = await _payments(session_maker, "sess_expired")
    assert len(payments) == 1
    assert payments[0].status == "failed"
    assert await get_balance(account_id, db_session) == 7
    assert await _ledger(db_session, account_id) == []


@pytest.mark.asyncio
async def test_expired_checkout_errors_are_swallowed(db_session):
    assert (await handle_checkout_expired({"metadata": {}}, db_session))["status"] == "error"
    assert (await handle_checkout_expired({"id": "sess_anon", "metadata": {}}, db_session))["status"] == "ignored"


@pytest.mark.asyncio
async def test_refund_is_clamped_to_remaining_balance(db_session, session_maker, create_account):
    account_id = await create_account(credits=0)
    await handle_checkout_completed(
        _checkout_session(session_id="sess_refund", credits="50", package_name="Starter Pack"),
        db_session,
    )
    await debit_credits(account_id, db_session, amount=45)
    charge = {"id": "ch_1", "payment_intent": "pi_sess_refund", "amount_refunded": 999}

    result = await handle_charge_refunded(charge, db_session)
    replay = await handle_charge_refunded(charge, db_session)

    assert result["status"] == "refunded"
    assert result["credits_deducted"] == 5
    assert replay["status"] == "duplicate"
    assert await get_balance(account_id, db_session) == 0

    entries = await _ledger(db_session, account_id)
    refund = entries[-1]
    assert refund.kind == "refund"
    assert refund.amount == -5
    assert refund.balance_after == 0
    assert refund.description == "Refund: Starter Pack (5 credits deducted)"
    assert refund.metadata_json["originalCredits"] == 50
    assert sum(e.amount for e in entries) == 0

    payment = (await _payments(session_maker, "sess_refund"))[0]
    assert payment.status == "refunded"
    assert payment.metadata_json["refundChargeId"] == "ch_1"
    assert payment.metadata_json["packageName"] == "Starter Pack"
    assert "refundedAt" in payment.metadata_json


@pytest.mark.asyncio
async def test_full_refund_when_credits_unspent(db_session, create_account):
    account_id = await create_account(credits=3)
    await handle_checkout_completed(_checkout_session(session_id="sess_full", credits="150"), db_session)

    result = await handle_charge_refunded({"id": "ch_2", "payment_intent": "pi_sess_full"}, db_session)

    assert result["credits_deducted"] == 150
    assert await get_balance(account_id, db_session) == 3


@pytest.mark.asyncio
async def test_refund_without_matching_payment_is_ignored(db_session):
    assert (await handle_charge_refunded({"id": "ch_x", "payment_intent": "pi_unknown"}, db_session))[
        "status"
    ] == "ignored"
    assert (await handle_charge_refunded({"id": "ch_y"}, db_session))["status"] == "ignored"


@pytest.mark.asyncio
async def test_event_router_acknowledges_other_event_types(db_session):
    assert (await handle_external_event("payment_intent.succeeded", {"id": "pi_1"}, db_session))[
        "status"
    ] == "acknowledged"
    assert (await handle_external_event("customer.created", {"id": "cus_1"}, db_session))["status"] == "ignored"
