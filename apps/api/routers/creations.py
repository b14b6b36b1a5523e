"""Creations router: per-user artifact history."""

from __future__ import annotations

from typing import Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, get_auth_context
from services.creations import (
    create_creation,
    delete_creation,
    list_user_creations,
    rename_creation,
    serialize_creation,
)

router = APIRouter()


class CreateCreationRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    html: str = Field(min_length=1)
    originalImage: Optional[str] = None
    mode: Literal["web", "mobile", "social", "logo"] = "web"


class RenameCreationRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)


@router.get("")
async def list_creations(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    creations = await list_user_creations(auth.user_id, db)
    return {"creations": [serialize_creation(item) for item in creations]}


@router.post("")
async def save_creation(
    request: CreateCreationRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    creation = await create_creation(
        auth.user_id,
        db,
        name=request.name,
        html=request.html,
        mode=request.mode,
        original_image=request.originalImage,
    )
    return {"creation": serialize_creation(creation)}


@router.patch("/{creation_id}")
async def update_creation(
    creation_id: str,
    request: RenameCreationRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    creation = await rename_creation(auth.user_id, creation_id, request.name, db)
    return {"creation": serialize_creation(creation)}


@router.delete("/{creation_id}")
async def remove_creation(
    creation_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    await delete_creation(auth.user_id, creation_id, db)
    return {"success": True}
