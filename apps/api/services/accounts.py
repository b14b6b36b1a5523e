"""Account creation, credential checks and the permanent admin bootstrap."""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Dict, Optional

import bcrypt
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.user import PLAN_FREE, ROLE_ADMIN, ROLE_USER, User
from services import ledger

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


class AccountError(ValueError):
    """Signup/signin rejected for a user-facing reason."""


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(plain.encode(), hashed.encode())
    except ValueError:
        return False


def normalize_email(email: str) -> str:
    return str(email or "").strip().lower()


async def get_user_by_email(email: str, db: AsyncSession) -> Optional[User]:
    result = await db.execute(select(User).where(User.email == normalize_email(email)))
    return result.scalar_one_or_none()


async def get_user_by_id(user_id: str, db: AsyncSession) -> Optional[User]:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def create_account(email: str, password: str, db: AsyncSession, *, role: str = ROLE_USER) -> User:
    """Create a FREE account seeded with the initial credit grant, then commit."""
    email = normalize_email(email)
    if not email or not password:
        raise AccountError("Email and password required")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise AccountError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if await get_user_by_email(email, db):
        raise AccountError("User already exists")

    password_hash = await asyncio.to_thread(hash_password, password)
    user = User(
        id=str(uuid.uuid4()),
        email=email,
        password_hash=password_hash,
        role=role,
        plan=PLAN_FREE,
        credits=0,
    )
    db.add(user)
    try:
        await db.flush()
    except IntegrityError as exc:
        await db.rollback()
        raise AccountError("User already exists") from exc
    await ledger.grant_initial_credits(user.id, db)
    await db.commit()
    await db.refresh(user)
    logger.info("Created account %s (%s)", user.id, role)
    return user


async def authenticate(email: str, password: str, db: AsyncSession) -> Optional[User]:
    user = await get_user_by_email(email, db)
    if not user:
        return None
    if not await asyncio.to_thread(verify_password, password, user.password_hash):
        return None
    return user


async def ensure_permanent_admin(db: AsyncSession) -> Optional[User]:
    """Create or repair the configured admin account. No-op without a password."""
    email = normalize_email(settings.ADMIN_EMAIL)
    if not email or not settings.ADMIN_PASSWORD:
        return None

    admin = await get_user_by_email(email, db)
    if not admin:
        return await create_account(email, settings.ADMIN_PASSWORD, db, role=ROLE_ADMIN)

    if admin.role != ROLE_ADMIN:
        admin.role = ROLE_ADMIN
        await db.commit()
        await db.refresh(admin)
        logger.info("Restored admin role for %s", email)
    return admin


def serialize_user(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "email": user.email,
        "role": user.role or ROLE_USER,
        "plan": ledger.effective_plan(user),
        "credits": int(user.credits or 0),
        "subscription_status": "pro" if ledger.is_pro_active(user) else "free",
        "proUntil": user.pro_until.isoformat() if user.pro_until else None,
        "daily_usage_count": int(user.daily_usage_count or 0),
    }
