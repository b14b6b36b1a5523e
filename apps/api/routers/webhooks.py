"""Inbound payment notifications.

Both endpoints authenticate the sender before anything reaches the ledger;
a forged or malformed delivery is answered 400 with no state change.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from services.billing import handle_gateway_callback, handle_stripe_webhook
from services.payment_gateways import REDIRECT_GATEWAYS

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/webhook")
async def stripe_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    # Signature covers the raw bytes; do not parse before verifying.
    payload = await request.body()
    signature = request.headers.get("stripe-signature")
    return await handle_stripe_webhook(payload, signature, db)


async def _callback_data(request: Request) -> Dict[str, Any]:
    content_type = request.headers.get("content-type", "")
    if "application/json" in content_type:
        try:
            data = await request.json()
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Malformed callback body") from exc
        if not isinstance(data, dict):
            raise HTTPException(status_code=400, detail="Malformed callback body")
        return data
    if "form" in content_type:
        form = await request.form()
        return dict(form)
    return dict(request.query_params)


@router.post("/payment/{gateway}/callback")
async def gateway_callback(gateway: str, request: Request, db: AsyncSession = Depends(get_db)):
    if gateway not in REDIRECT_GATEWAYS:
        raise HTTPException(status_code=404, detail="Unknown payment gateway")
    data = await _callback_data(request)
    return await handle_gateway_callback(gateway, data, db)
