"""Generation router: prompt/image to HTML."""

from __future__ import annotations

from typing import Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models.user import User
from routers.auth_scope import get_current_user
from routers.rate_limit import rate_limit
from services.generation import generate
from services.usage import ensure_generation_allowed, record_generation

router = APIRouter()


class GenerateRequest(BaseModel):
    prompt: str = Field(default="", max_length=20000)
    fileBase64: Optional[str] = None
    mimeType: Optional[str] = Field(default=None, max_length=100)
    mode: Literal["web", "mobile", "social", "logo"] = "web"


@router.post("/generate")
async def generate_html(
    request: GenerateRequest,
    _rate_limit: None = Depends(rate_limit("generate", limit=60, window_seconds=3600)),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Generate an HTML artifact; counts against the daily quota only on success."""
    await ensure_generation_allowed(user, db)
    html = await generate(
        request.prompt,
        image_base64=request.fileBase64,
        mime_type=request.mimeType,
        mode=request.mode,
    )
    await record_generation(user.id, db)
    return {"html": html}
