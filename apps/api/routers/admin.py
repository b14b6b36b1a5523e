"""Admin router. Every route requires an admin session."""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models.user import User
from routers.auth_scope import require_admin
from services import admin as admin_service
from services.ledger import verify_ledger

router = APIRouter()


class RoleUpdateRequest(BaseModel):
    role: Literal["user", "admin"]


class PlanUpdateRequest(BaseModel):
    plan: Literal["FREE", "PAY_PER_USE", "PRO"]
    until: Optional[datetime] = None


@router.get("/analytics")
async def analytics(
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await admin_service.get_analytics(db)


@router.get("/users")
async def users(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await admin_service.list_users(db, limit=limit, offset=offset)


@router.get("/creations")
async def creations(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await admin_service.list_creations(db, limit=limit, offset=offset)


@router.patch("/users/{user_id}/role")
async def update_role(
    user_id: str,
    request: RoleUpdateRequest,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    if user_id == admin.id and request.role != "admin":
        raise HTTPException(status_code=400, detail="Admins cannot demote themselves")
    await admin_service.update_user_role(user_id, request.role, db)
    return {"success": True}


@router.patch("/users/{user_id}/plan")
async def update_plan(
    user_id: str,
    request: PlanUpdateRequest,
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Set a plan directly; PRO without ``until`` gets a standard billing period."""
    await admin_service.update_user_plan(user_id, request.plan, db, until=request.until)
    return {"success": True}


@router.get("/users/{user_id}/ledger")
async def user_ledger(
    user_id: str,
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await verify_ledger(user_id, db)


@router.delete("/users/{user_id}")
async def remove_user(
    user_id: str,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    if user_id == admin.id:
        raise HTTPException(status_code=400, detail="Admins cannot delete their own account")
    await admin_service.delete_user(user_id, db)
    return {"success": True}


@router.delete("/creations/{creation_id}")
async def remove_creation(
    creation_id: str,
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    await admin_service.delete_any_creation(creation_id, db)
    return {"success": True}
