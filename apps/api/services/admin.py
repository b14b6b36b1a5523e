"""Admin queries and account management."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.creation import Creation
from models.user import PLAN_PRO, ROLES, User
from services import ledger
from services.errors import NotFound


async def list_users(db: AsyncSession, *, limit: int = 50, offset: int = 0) -> Dict[str, Any]:
    creations_count = (
        select(func.count(Creation.id))
        .where(Creation.user_id == User.id)
        .correlate(User)
        .scalar_subquery()
    )
    result = await db.execute(
        select(User, creations_count.label("creations_count"))
        .order_by(User.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    total = (await db.execute(select(func.count(User.id)))).scalar() or 0
    users = [
        {
            "id": user.id,
            "email": user.email,
            "role": user.role,
            "plan": user.plan,
            "credits": int(user.credits or 0),
            "pro_until": user.pro_until.isoformat() if user.pro_until else None,
            "daily_usage_count": int(user.daily_usage_count or 0),
            "created_at": user.created_at.isoformat() if user.created_at else None,
            "creations_count": int(count or 0),
        }
        for user, count in result.all()
    ]
    return {"users": users, "total": int(total), "limit": limit, "offset": offset}


async def list_creations(db: AsyncSession, *, limit: int = 50, offset: int = 0) -> Dict[str, Any]:
    result = await db.execute(
        select(Creation, User.email)
        .join(User, Creation.user_id == User.id)
        .order_by(Creation.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    total = (await db.execute(select(func.count(Creation.id)))).scalar() or 0
    creations = [
        {
            "id": creation.id,
            "name": creation.name,
            "mode": creation.mode,
            "purchased": bool(creation.purchased),
            "created_at": creation.created_at.isoformat() if creation.created_at else None,
            "user_id": creation.user_id,
            "user_email": email,
        }
        for creation, email in result.all()
    ]
    return {"creations": creations, "total": int(total), "limit": limit, "offset": offset}


async def get_analytics(db: AsyncSession, now: Optional[datetime] = None) -> Dict[str, int]:
    week_ago = (now or datetime.now(timezone.utc)) - timedelta(days=7)

    async def _scalar(stmt) -> int:
        return int((await db.execute(stmt)).scalar() or 0)

    return {
        "total_users": await _scalar(select(func.count(User.id))),
        "pro_users": await _scalar(select(func.count(User.id)).where(User.plan == PLAN_PRO)),
        "total_creations": await _scalar(select(func.count(Creation.id))),
        "purchased_creations": await _scalar(
            select(func.count(Creation.id)).where(Creation.purchased.is_(True))
        ),
        "total_generations": await _scalar(select(func.coalesce(func.sum(User.daily_usage_count), 0))),
        "total_credits_outstanding": await _scalar(select(func.coalesce(func.sum(User.credits), 0))),
        "new_users_7d": await _scalar(select(func.count(User.id)).where(User.created_at > week_ago)),
        "new_creations_7d": await _scalar(
            select(func.count(Creation.id)).where(Creation.created_at > week_ago)
        ),
    }


async def _get_user(user_id: str, db: AsyncSession) -> User:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user:
        raise NotFound("User not found", context={"user_id": user_id})
    return user


async def update_user_role(user_id: str, role: str, db: AsyncSession) -> None:
    if role not in ROLES:
        raise ValueError("Invalid role")
    user = await _get_user(user_id, db)
    user.role = role
    await db.commit()


async def update_user_plan(
    user_id: str,
    plan: str,
    db: AsyncSession,
    *,
    until: Optional[datetime] = None,
) -> None:
    if plan == PLAN_PRO and until is None:
        until = datetime.now(timezone.utc) + timedelta(days=max(int(settings.PRO_PERIOD_DAYS), 1))
    await ledger.set_plan(user_id, db, plan=plan, until=until)
    await db.commit()


async def delete_user(user_id: str, db: AsyncSession) -> None:
    user = await _get_user(user_id, db)
    await db.delete(user)
    await db.commit()


async def delete_any_creation(creation_id: str, db: AsyncSession) -> None:
    result = await db.execute(select(Creation).where(Creation.id == creation_id))
    creation = result.scalar_one_or_none()
    if not creation:
        raise NotFound("Creation not found", context={"creation_id": creation_id})
    await db.delete(creation)
    await db.commit()
