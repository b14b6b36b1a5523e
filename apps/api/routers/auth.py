"""
Authentication router: email/password signup, signin and current user profile.
"""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models.user import User
from routers.auth_scope import AuthContext, get_auth_context, get_current_user
from routers.rate_limit import rate_limit
from services.accounts import AccountError, authenticate, create_account, serialize_user
from services.session_token import create_session_token

router = APIRouter()


class CredentialsRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320)
    password: str = Field(min_length=1, max_length=256)


def _session_payload(user: User) -> dict:
    session = create_session_token(user.id, user.email, role=user.role)
    return {
        "user": serialize_user(user),
        "token": session["token"],
        "expires_at": session["expires_at"],
    }


@router.post("/signup")
async def signup(
    request: CredentialsRequest,
    _rate_limit: None = Depends(rate_limit("auth_signup", limit=10, window_seconds=3600)),
    db: AsyncSession = Depends(get_db),
):
    """Create an account with the initial free credits and return a session."""
    try:
        user = await create_account(request.email, request.password, db)
    except AccountError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _session_payload(user)


@router.post("/signin")
async def signin(
    request: CredentialsRequest,
    _rate_limit: None = Depends(rate_limit("auth_signin", limit=30, window_seconds=900)),
    db: AsyncSession = Depends(get_db),
):
    user = await authenticate(request.email, request.password, db)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return _session_payload(user)


@router.get("/me")
async def get_me(user: User = Depends(get_current_user)):
    """Get current user profile, plan and credit balance."""
    return serialize_user(user)


@router.post("/logout")
async def logout(_auth: AuthContext = Depends(get_auth_context)):
    """Frontend-managed logout acknowledgment endpoint."""
    return {"message": "Logged out successfully"}
