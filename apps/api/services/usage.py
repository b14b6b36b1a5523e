"""Per-day generation quotas by plan."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from models.user import ROLE_ADMIN, User
from services.errors import DailyLimitReached
from services.ledger import is_pro_active


def _today() -> date:
    return datetime.now(timezone.utc).date()


def daily_limit_for(user: User, now: Optional[datetime] = None) -> int:
    if is_pro_active(user, now) or user.role == ROLE_ADMIN:
        return max(int(settings.PRO_DAILY_GENERATIONS), 0)
    return max(int(settings.FREE_DAILY_GENERATIONS), 0)


async def reset_daily_usage_if_needed(user: User, db: AsyncSession, today: Optional[date] = None) -> None:
    current = today or _today()
    if user.last_reset_date == current:
        return
    user.daily_usage_count = 0
    user.last_reset_date = current
    await db.commit()


async def ensure_generation_allowed(user: User, db: AsyncSession) -> None:
    await reset_daily_usage_if_needed(user, db)
    limit = daily_limit_for(user)
    if int(user.daily_usage_count or 0) >= limit:
        raise DailyLimitReached(limit, is_pro=is_pro_active(user))


async def record_generation(user_id: str, db: AsyncSession) -> None:
    await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(daily_usage_count=User.daily_usage_count + 1)
    )
    await db.commit()
