"""Translate verified payment-provider notifications into ledger mutations.

Providers deliver at least once. Each event id is recorded in
``processed_events`` inside the same transaction as the balance change, so a
redelivered event hits the primary key and is acknowledged without crediting
again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.credit_transaction import REASON_ONE_OFF_PURCHASE, REASON_SUBSCRIPTION_MONTHLY
from models.payment_session import PaymentSession
from models.processed_event import ProcessedEvent
from models.user import PLAN_FREE, PLAN_PAY_PER_USE, PLAN_PRO, User
from services import ledger
from services.errors import NotFound

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout_completed"
SUBSCRIPTION_RENEWED = "subscription_renewed"
SUBSCRIPTION_CANCELLED = "subscription_cancelled"
EVENT_KINDS = (CHECKOUT_COMPLETED, SUBSCRIPTION_RENEWED, SUBSCRIPTION_CANCELLED)

PURCHASE_ONE_OFF = "one-off"
PURCHASE_SUBSCRIPTION = "subscription"


@dataclass
class BillingEvent:
    """Provider-neutral payment notification."""

    event_id: str
    provider: str
    kind: str
    user_id: str
    purchase_type: Optional[str] = None
    order_id: Optional[str] = None
    transaction_id: Optional[str] = None


async def _already_processed(event_id: str, db: AsyncSession) -> bool:
    result = await db.execute(select(ProcessedEvent.event_id).where(ProcessedEvent.event_id == event_id))
    return result.scalar_one_or_none() is not None


async def _claim_event(event: BillingEvent, db: AsyncSession) -> bool:
    """Insert the dedupe key; False when another delivery already owns it."""
    if await _already_processed(event.event_id, db):
        return False
    db.add(
        ProcessedEvent(
            event_id=event.event_id,
            provider=event.provider,
            event_type=event.kind,
            user_id=event.user_id,
        )
    )
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        return False
    return True


async def _grant_subscription_period(user_id: str, db: AsyncSession, reference: str) -> int:
    until = datetime.now(timezone.utc) + timedelta(days=max(int(settings.PRO_PERIOD_DAYS), 1))
    await ledger.set_plan(user_id, db, plan=PLAN_PRO, until=until)
    return await ledger.add_credits(
        user_id,
        db,
        amount=int(settings.SUBSCRIPTION_MONTHLY_CREDITS),
        reason=REASON_SUBSCRIPTION_MONTHLY,
        reference=reference,
    )


async def _mark_payment_session_completed(event: BillingEvent, db: AsyncSession) -> None:
    if not event.order_id:
        return
    result = await db.execute(select(PaymentSession).where(PaymentSession.order_id == event.order_id))
    session = result.scalar_one_or_none()
    if not session:
        return
    session.status = "completed"
    session.completed_at = datetime.now(timezone.utc)
    if event.transaction_id:
        session.transaction_id = event.transaction_id


async def _apply(event: BillingEvent, db: AsyncSession) -> Dict[str, Any]:
    result = await db.execute(select(User).where(User.id == event.user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFound("User not found", context={"user_id": event.user_id})
    current_plan = ledger.effective_plan(user)

    if event.kind == CHECKOUT_COMPLETED and event.purchase_type == PURCHASE_ONE_OFF:
        balance = await ledger.add_credits(
            event.user_id,
            db,
            amount=1,
            reason=REASON_ONE_OFF_PURCHASE,
            reference=event.event_id,
        )
        if current_plan == PLAN_FREE:
            await ledger.set_plan(event.user_id, db, plan=PLAN_PAY_PER_USE)
        await _mark_payment_session_completed(event, db)
        return {"credits": balance}

    if (event.kind == CHECKOUT_COMPLETED and event.purchase_type == PURCHASE_SUBSCRIPTION) or (
        event.kind == SUBSCRIPTION_RENEWED
    ):
        balance = await _grant_subscription_period(event.user_id, db, event.event_id)
        await _mark_payment_session_completed(event, db)
        return {"credits": balance, "plan": PLAN_PRO}

    if event.kind == SUBSCRIPTION_CANCELLED:
        await ledger.set_plan(event.user_id, db, plan=PLAN_FREE)
        return {"plan": PLAN_FREE}

    raise ValueError(f"Unsupported billing event: kind={event.kind} purchase_type={event.purchase_type}")


async def reconcile_event(event: BillingEvent, db: AsyncSession) -> Dict[str, Any]:
    """Apply ``event`` exactly once and commit. Returns a status payload."""
    if event.kind not in EVENT_KINDS:
        raise ValueError(f"Unknown billing event kind: {event.kind}")

    if not await _claim_event(event, db):
        logger.info("Skipping duplicate %s event %s", event.provider, event.event_id)
        return {"status": "duplicate", "event_id": event.event_id}

    try:
        outcome = await _apply(event, db)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "Processed %s %s event %s for user %s",
        event.provider,
        event.kind,
        event.event_id,
        event.user_id,
    )
    return {"status": "processed", "event_id": event.event_id, **outcome}
