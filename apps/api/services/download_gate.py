"""Release generated artifacts behind a successful credit consumption."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.creation import Creation
from services import ledger
from services.errors import NotFound

logger = logging.getLogger(__name__)


@dataclass
class DownloadResult:
    creation: Creation
    credits_remaining: int
    charged: bool


async def _load_creation(user_id: str, creation_id: str, db: AsyncSession) -> Creation:
    result = await db.execute(
        select(Creation).where(Creation.id == creation_id, Creation.user_id == user_id)
    )
    creation = result.scalar_one_or_none()
    if not creation:
        raise NotFound("Creation not found", context={"creation_id": creation_id})
    return creation


async def request_download(user_id: str, creation_id: str, db: AsyncSession) -> DownloadResult:
    """Unlock ``creation_id`` for ``user_id``, charging one credit unless already purchased.

    The ``purchased`` flip and the debit commit together: a refused or failed
    debit rolls the flip back, and a crash between them leaves neither behind.
    Flipping first with ``purchased = false`` in the WHERE clause means two
    concurrent requests for the same artifact charge at most once.
    """
    creation = await _load_creation(user_id, creation_id, db)
    if creation.purchased:
        return DownloadResult(
            creation=creation,
            credits_remaining=await ledger.get_balance(user_id, db),
            charged=False,
        )

    try:
        flipped = await db.execute(
            update(Creation)
            .where(
                Creation.id == creation_id,
                Creation.user_id == user_id,
                Creation.purchased.is_(False),
            )
            .values(purchased=True)
            .returning(Creation.id)
        )
        if flipped.scalar_one_or_none() is None:
            # Another request unlocked it first.
            await db.rollback()
            creation = await _load_creation(user_id, creation_id, db)
            return DownloadResult(
                creation=creation,
                credits_remaining=await ledger.get_balance(user_id, db),
                charged=False,
            )

        remaining = await ledger.consume_credit(user_id, db, reference=creation_id)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await db.refresh(creation)
    logger.info("Creation %s unlocked for %s; credits remaining=%s", creation_id, user_id, remaining)
    return DownloadResult(creation=creation, credits_remaining=remaining, charged=True)
