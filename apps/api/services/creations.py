"""Per-user creation storage."""

from __future__ import annotations

import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.creation import Creation
from services.errors import NotFound


def serialize_creation(creation: Creation, *, include_html: bool = True) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "id": creation.id,
        "user_id": creation.user_id,
        "name": creation.name,
        "original_image": creation.original_image,
        "mode": creation.mode,
        "purchased": bool(creation.purchased),
        "created_at": creation.created_at.isoformat() if creation.created_at else None,
    }
    if include_html:
        payload["html"] = creation.html
    return payload


async def list_user_creations(user_id: str, db: AsyncSession) -> List[Creation]:
    result = await db.execute(
        select(Creation)
        .where(Creation.user_id == user_id)
        .order_by(Creation.created_at.desc())
    )
    return list(result.scalars().all())


async def get_user_creation(user_id: str, creation_id: str, db: AsyncSession) -> Creation:
    result = await db.execute(
        select(Creation).where(Creation.id == creation_id, Creation.user_id == user_id)
    )
    creation = result.scalar_one_or_none()
    if not creation:
        raise NotFound("Creation not found", context={"creation_id": creation_id})
    return creation


async def create_creation(
    user_id: str,
    db: AsyncSession,
    *,
    name: str,
    html: str,
    mode: str,
    original_image: Optional[str] = None,
) -> Creation:
    creation = Creation(
        id=str(uuid.uuid4()),
        user_id=user_id,
        name=name,
        html=html,
        original_image=original_image,
        mode=mode,
        purchased=False,
    )
    db.add(creation)
    await db.commit()
    await db.refresh(creation)
    return creation


async def rename_creation(user_id: str, creation_id: str, name: str, db: AsyncSession) -> Creation:
    creation = await get_user_creation(user_id, creation_id, db)
    creation.name = name
    await db.commit()
    await db.refresh(creation)
    return creation


async def delete_creation(user_id: str, creation_id: str, db: AsyncSession) -> None:
    creation = await get_user_creation(user_id, creation_id, db)
    await db.delete(creation)
    await db.commit()
