"""Credits router: balance, history and the credit-gated download."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, get_auth_context
from services.creations import serialize_creation
from services.download_gate import request_download
from services.ledger import get_balance_summary, get_credit_history

router = APIRouter()


class DownloadRequest(BaseModel):
    creationId: str = Field(min_length=1, max_length=64)


@router.get("/credits/balance")
async def credits_balance(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await get_balance_summary(auth.user_id, db)


@router.get("/credits/history")
async def credits_history(
    limit: int = Query(default=50, ge=1, le=500),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return {"transactions": await get_credit_history(auth.user_id, db, limit=limit)}


@router.post("/download")
async def download_creation(
    request: DownloadRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Release a creation's HTML. Charges one credit the first time only.

    A zero balance surfaces as 402 ``INSUFFICIENT_CREDITS`` through the app
    error handler and leaves the creation locked.
    """
    result = await request_download(auth.user_id, request.creationId, db)
    return {
        "success": True,
        "charged": result.charged,
        "creditsRemaining": result.credits_remaining,
        "creation": serialize_creation(result.creation),
    }
