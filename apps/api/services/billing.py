"""Checkout orchestration and inbound payment notification handling."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Optional

import httpx
from sqlalchemy import or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.payment_session import PaymentSession
from models.user import User
from services import payment_gateways as gateways
from services.errors import NotFound
from services.reconciler import CHECKOUT_COMPLETED, PURCHASE_ONE_OFF, PURCHASE_SUBSCRIPTION, BillingEvent, reconcile_event

logger = logging.getLogger(__name__)

PURCHASE_TYPES = (PURCHASE_ONE_OFF, PURCHASE_SUBSCRIPTION)


async def start_stripe_checkout(user: User, purchase_type: str, db: AsyncSession) -> Dict[str, Any]:
    """Create the Stripe session first, then record it; no DB work spans the API call."""
    if purchase_type not in PURCHASE_TYPES:
        raise ValueError(f"Invalid purchase type: {purchase_type}")

    checkout = await gateways.create_stripe_checkout(user.id, purchase_type, customer_email=user.email)
    db.add(
        PaymentSession(
            id=str(uuid.uuid4()),
            user_id=user.id,
            gateway=gateways.GATEWAY_STRIPE,
            amount_cents=checkout["amount_cents"],
            currency="USD",
            order_id=checkout["session_id"],
            provider_reference=checkout["session_id"],
            purchase_type=purchase_type,
            status="pending",
        )
    )
    await db.commit()
    return {"sessionId": checkout["session_id"], "url": checkout["url"]}


async def start_gateway_payment(
    user: User,
    db: AsyncSession,
    *,
    gateway: str,
    purchase_type: str,
    currency: str = "USD",
    phone: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> Dict[str, Any]:
    if purchase_type not in PURCHASE_TYPES:
        raise ValueError(f"Invalid purchase type: {purchase_type}")
    if gateway not in gateways.REDIRECT_GATEWAYS:
        raise ValueError(f"Unsupported payment gateway: {gateway}")

    order_id = f"FB-{uuid.uuid4().hex[:20].upper()}"
    amount_cents = gateways.price_for(purchase_type)
    session = PaymentSession(
        id=str(uuid.uuid4()),
        user_id=user.id,
        gateway=gateway,
        amount_cents=amount_cents,
        currency=currency.upper(),
        order_id=order_id,
        purchase_type=purchase_type,
        status="pending",
        metadata_json={"phone": phone} if phone else None,
    )
    db.add(session)
    await db.commit()

    try:
        initiation = await gateways.create_payment_session(
            gateway,
            amount_cents,
            currency.upper(),
            order_id,
            {"email": user.email, "phone": phone},
            client=client,
        )
    except Exception:
        session.status = "failed"
        await db.commit()
        raise

    session.provider_reference = initiation.provider_reference
    await db.commit()
    return {"paymentUrl": initiation.payment_url, "orderId": order_id, "gateway": gateway}


async def handle_stripe_webhook(payload: bytes, signature: Optional[str], db: AsyncSession) -> Dict[str, Any]:
    """Verify, translate and reconcile one Stripe delivery."""
    event = gateways.verify_stripe_webhook(payload, signature)
    billing_event = gateways.stripe_event_to_billing_event(event)
    if billing_event is None:
        return {"received": True, "status": "ignored", "type": event.get("type")}
    outcome = await reconcile_event(billing_event, db)
    return {"received": True, **outcome}


async def handle_gateway_callback(
    gateway: str,
    data: Dict[str, Any],
    db: AsyncSession,
    client: Optional[httpx.AsyncClient] = None,
) -> Dict[str, Any]:
    """Verify a regional/PayPal callback and reconcile the matching payment session."""
    result = await gateways.verify_payment_callback(gateway, data, client=client)
    if not result.order_id:
        logger.warning("%s callback without order id: %s", gateway, result.error)
        return {"received": True, "status": "failed", "error": result.error}

    lookup = await db.execute(
        select(PaymentSession).where(
            PaymentSession.order_id == result.order_id,
            PaymentSession.gateway == gateway,
        )
    )
    session = lookup.scalar_one_or_none()
    if not session:
        raise NotFound("Payment session not found", context={"order_id": result.order_id})

    if not result.success:
        if session.status == "pending":
            session.status = "failed"
            await db.commit()
        logger.info("%s payment %s reported unsuccessful", gateway, result.order_id)
        return {"received": True, "status": "failed", "order_id": result.order_id}

    outcome = await reconcile_event(
        BillingEvent(
            event_id=f"{gateway}:{session.order_id}",
            provider=gateway,
            kind=CHECKOUT_COMPLETED,
            user_id=session.user_id,
            purchase_type=session.purchase_type,
            order_id=session.order_id,
            transaction_id=result.transaction_id,
        ),
        db,
    )
    return {"received": True, **outcome}


async def is_payment_completed(session_id: str, db: AsyncSession) -> bool:
    result = await db.execute(
        select(PaymentSession).where(
            or_(PaymentSession.order_id == session_id, PaymentSession.provider_reference == session_id)
        )
    )
    session = result.scalar_one_or_none()
    if session and session.status == "completed":
        return True
    if session and session.gateway != gateways.GATEWAY_STRIPE:
        return False
    return await gateways.get_stripe_session_paid(session_id)
