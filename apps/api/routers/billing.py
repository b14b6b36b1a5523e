"""Billing router: Stripe checkout, redirect gateways and payment status."""

from __future__ import annotations

import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models.user import User
from routers.auth_scope import get_current_user
from routers.rate_limit import rate_limit
from services.billing import is_payment_completed, start_gateway_payment, start_stripe_checkout
from services.payment_gateways import get_available_gateways
from services.reconciler import PURCHASE_ONE_OFF, PURCHASE_SUBSCRIPTION

router = APIRouter()
logger = logging.getLogger(__name__)


class PaymentCreateRequest(BaseModel):
    gateway: Literal["paypal", "telebirr", "cbe"]
    type: Literal["one-off", "subscription"] = "one-off"
    currency: str = Field(default="USD", min_length=3, max_length=3)
    phone: Optional[str] = Field(default=None, max_length=32)


@router.post("/billing/checkout/one-off")
async def checkout_one_off(
    _rate_limit: None = Depends(rate_limit("billing_checkout", limit=20, window_seconds=3600)),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Stripe Checkout for a single download credit."""
    return await start_stripe_checkout(user, PURCHASE_ONE_OFF, db)


@router.post("/billing/checkout/subscription")
async def checkout_subscription(
    _rate_limit: None = Depends(rate_limit("billing_checkout", limit=20, window_seconds=3600)),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Stripe Checkout for the monthly Pro plan."""
    return await start_stripe_checkout(user, PURCHASE_SUBSCRIPTION, db)


@router.get("/payment/gateways")
async def payment_gateways():
    return {"gateways": get_available_gateways()}


@router.post("/payment/create")
async def create_payment(
    request: PaymentCreateRequest,
    _rate_limit: None = Depends(rate_limit("payment_create", limit=20, window_seconds=3600)),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if request.gateway == "telebirr" and not request.phone:
        raise HTTPException(status_code=400, detail="Phone number is required for TeleBirr")
    return await start_gateway_payment(
        user,
        db,
        gateway=request.gateway,
        purchase_type=request.type,
        currency=request.currency,
        phone=request.phone,
    )


@router.get("/verify-payment")
async def verify_payment(
    session_id: str = Query(min_length=1, max_length=255),
    db: AsyncSession = Depends(get_db),
):
    """Report whether a checkout has been reconciled (or paid, for Stripe)."""
    return {"paid": await is_payment_completed(session_id, db)}
