"""Credit ledger: the single point of mutation for account balances.

Every balance change is one atomic UPDATE on the ``users`` row paired with one
``credit_transactions`` entry. None of these helpers commit; the caller owns
the unit of work so a webhook dedupe key or an artifact unlock can land in
the same transaction as the balance change.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.credit_transaction import (
    CreditTransaction,
    REASON_DOWNLOAD,
    REASON_INITIAL_FREE,
    REASON_ONE_OFF_PURCHASE,
    REASON_SUBSCRIPTION_MONTHLY,
)
from models.user import PLAN_FREE, PLAN_PRO, PLANS, User
from services.errors import InsufficientCredits, InvalidAmount, InvalidPlan, InvalidReason, NotFound

logger = logging.getLogger(__name__)

CREDIT_REASONS = (REASON_INITIAL_FREE, REASON_ONE_OFF_PURCHASE, REASON_SUBSCRIPTION_MONTHLY)
DEBIT_REASONS = (REASON_DOWNLOAD,)


async def get_balance(user_id: str, db: AsyncSession) -> int:
    result = await db.execute(select(User.credits).where(User.id == user_id))
    balance = result.scalar_one_or_none()
    if balance is None:
        raise NotFound("User not found", context={"user_id": user_id})
    return int(balance)


async def get_ledger_total(user_id: str, db: AsyncSession) -> int:
    result = await db.execute(
        select(func.coalesce(func.sum(CreditTransaction.change), 0)).where(CreditTransaction.user_id == user_id)
    )
    return int(result.scalar() or 0)


def _append_entry(
    db: AsyncSession,
    user_id: str,
    *,
    change: int,
    reason: str,
    reference: Optional[str],
) -> CreditTransaction:
    entry = CreditTransaction(
        id=str(uuid.uuid4()),
        user_id=user_id,
        change=int(change),
        reason=reason,
        reference=reference,
    )
    db.add(entry)
    return entry


async def add_credits(
    user_id: str,
    db: AsyncSession,
    *,
    amount: int,
    reason: str,
    reference: Optional[str] = None,
) -> int:
    """Increment the balance by ``amount`` and log it. Returns the new balance."""
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmount(f"Credit amount must be a positive integer, got {amount!r}")
    if reason not in CREDIT_REASONS:
        raise InvalidReason(f"Invalid credit reason: {reason}")

    result = await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(credits=User.credits + amount)
        .returning(User.credits)
    )
    new_balance = result.scalar_one_or_none()
    if new_balance is None:
        raise NotFound("User not found", context={"user_id": user_id})

    _append_entry(db, user_id, change=amount, reason=reason, reference=reference)
    await db.flush()
    logger.info("Credited %s credits to %s (%s); balance=%s", amount, user_id, reason, new_balance)
    return int(new_balance)


async def consume_credit(
    user_id: str,
    db: AsyncSession,
    *,
    reason: str = REASON_DOWNLOAD,
    reference: Optional[str] = None,
) -> int:
    """Take exactly one credit. Raises ``InsufficientCredits`` at zero without mutating."""
    if reason not in DEBIT_REASONS:
        raise InvalidReason(f"Invalid debit reason: {reason}")

    # Check and decrement in one statement; the row lock lives until commit.
    result = await db.execute(
        update(User)
        .where(User.id == user_id, User.credits > 0)
        .values(credits=User.credits - 1)
        .returning(User.credits)
    )
    new_balance = result.scalar_one_or_none()
    if new_balance is None:
        current = await get_balance(user_id, db)
        logger.info("Credit consumption refused for %s; balance=%s", user_id, current)
        raise InsufficientCredits(current)

    _append_entry(db, user_id, change=-1, reason=reason, reference=reference)
    await db.flush()
    logger.info("Consumed 1 credit from %s (%s); balance=%s", user_id, reason, new_balance)
    return int(new_balance)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_pro_active(user: User, now: Optional[datetime] = None) -> bool:
    """PRO counts only until ``pro_until`` plus the renewal grace period."""
    if user.plan != PLAN_PRO or user.pro_until is None:
        return False
    grace = timedelta(hours=max(int(settings.PRO_GRACE_HOURS), 0))
    return _as_utc(user.pro_until) + grace > (now or datetime.now(timezone.utc))


def effective_plan(user: User, now: Optional[datetime] = None) -> str:
    """Stored plan, except a lapsed PRO window reads as FREE."""
    if user.plan == PLAN_PRO and not is_pro_active(user, now):
        return PLAN_FREE
    return user.plan or PLAN_FREE


async def set_plan(
    user_id: str,
    db: AsyncSession,
    *,
    plan: str,
    until: Optional[datetime] = None,
) -> None:
    """Move the account to ``plan``; PRO needs a validity window, others clear it."""
    if plan not in PLANS:
        raise InvalidPlan(f"Invalid plan: {plan}")
    if plan == PLAN_PRO:
        if until is None:
            raise InvalidPlan("PRO plan requires a validity window end")
        values: Dict[str, Any] = {
            "plan": plan,
            "pro_since": datetime.now(timezone.utc),
            "pro_until": until,
        }
    else:
        values = {"plan": plan, "pro_since": None, "pro_until": None}

    result = await db.execute(
        update(User).where(User.id == user_id).values(**values).returning(User.id)
    )
    if result.scalar_one_or_none() is None:
        raise NotFound("User not found", context={"user_id": user_id})
    await db.flush()
    logger.info("Plan for %s set to %s (until=%s)", user_id, plan, until)


async def grant_initial_credits(user_id: str, db: AsyncSession) -> int:
    amount = max(int(settings.INITIAL_FREE_CREDITS), 0)
    if amount == 0:
        return await get_balance(user_id, db)
    return await add_credits(user_id, db, amount=amount, reason=REASON_INITIAL_FREE)


async def get_credit_history(user_id: str, db: AsyncSession, limit: int = 50) -> List[Dict[str, Any]]:
    result = await db.execute(
        select(CreditTransaction)
        .where(CreditTransaction.user_id == user_id)
        .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
        .limit(max(1, min(int(limit), 500)))
    )
    return [
        {
            "id": entry.id,
            "change": entry.change,
            "reason": entry.reason,
            "reference": entry.reference,
            "created_at": entry.created_at.isoformat() if entry.created_at else None,
        }
        for entry in result.scalars().all()
    ]


async def get_balance_summary(user_id: str, db: AsyncSession) -> Dict[str, Any]:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user:
        raise NotFound("User not found", context={"user_id": user_id})
    return {
        "credits": int(user.credits or 0),
        "plan": effective_plan(user),
        "proUntil": user.pro_until.isoformat() if user.pro_until else None,
    }


async def verify_ledger(user_id: str, db: AsyncSession) -> Dict[str, Any]:
    """Compare the stored balance with the sum of its logged deltas."""
    balance = await get_balance(user_id, db)
    ledger_total = await get_ledger_total(user_id, db)
    return {
        "user_id": user_id,
        "balance": balance,
        "ledger_total": ledger_total,
        "consistent": balance == ledger_total,
    }
