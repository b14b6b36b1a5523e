import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from config import settings
from database import Base, get_db
from main import app
from models.credit_transaction import CreditTransaction
from models.user import User
from services import accounts
from services.accounts import ensure_permanent_admin, hash_password, verify_password
from services.session_token import create_session_token, decode_session_token


@pytest_asyncio.fixture
async def auth_client(tmp_path):
    db_path = tmp_path / "auth.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client, session_maker

    app.dependency_overrides.pop(get_db, None)
    await engine.dispose()


@pytest.mark.asyncio
async def test_signup_grants_initial_credits_and_returns_session(auth_client):
    client, session_maker = auth_client

    response = await client.post("/api/auth/signup", json={"email": "New@Example.com ", "password": "secret123"})
    assert response.status_code == 200
    payload = response.json()
    assert payload["token"]
    assert payload["user"]["email"] == "new@example.com"
    assert payload["user"]["credits"] == 3
    assert payload["user"]["plan"] == "FREE"
    assert payload["user"]["role"] == "user"

    async with session_maker() as session:
        entries = (await session.execute(select(CreditTransaction))).scalars().all()
        assert [(entry.change, entry.reason) for entry in entries] == [(3, "INITIAL_FREE")]

    me = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {payload['token']}"})
    assert me.status_code == 200
    assert me.json()["id"] == payload["user"]["id"]
    assert me.json()["credits"] == 3


@pytest.mark.asyncio
async def test_signup_rejects_short_password_and_duplicate_email(auth_client):
    client, _ = auth_client

    short = await client.post("/api/auth/signup", json={"email": "a@example.com", "password": "123"})
    assert short.status_code == 400
    assert "6 characters" in short.json()["detail"]

    first = await client.post("/api/auth/signup", json={"email": "dup@example.com", "password": "secret123"})
    again = await client.post("/api/auth/signup", json={"email": "DUP@example.com", "password": "secret123"})
    assert first.status_code == 200
    assert again.status_code == 400
    assert again.json()["detail"] == "User already exists"


@pytest.mark.asyncio
async def test_signup_losing_the_email_race_is_rejected_cleanly(auth_client, monkeypatch):
    client, session_maker = auth_client
    first = await client.post("/api/auth/signup", json={"email": "race@example.com", "password": "secret123"})
    assert first.status_code == 200

    async def lookup_missed(email, db):
        return None

    monkeypatch.setattr(accounts, "get_user_by_email", lookup_missed)
    second = await client.post("/api/auth/signup", json={"email": "race@example.com", "password": "secret123"})
    assert second.status_code == 400
    assert second.json()["detail"] == "User already exists"

    async with session_maker() as session:
        users = (await session.execute(select(User).where(User.email == "race@example.com"))).scalars().all()
        assert len(users) == 1


@pytest.mark.asyncio
async def test_signin_checks_password(auth_client):
    client, _ = auth_client
    await client.post("/api/auth/signup", json={"email": "login@example.com", "password": "secret123"})

    good = await client.post("/api/auth/signin", json={"email": "login@example.com", "password": "secret123"})
    bad = await client.post("/api/auth/signin", json={"email": "login@example.com", "password": "wrong-pass"})
    unknown = await client.post("/api/auth/signin", json={"email": "nobody@example.com", "password": "secret123"})

    assert good.status_code == 200
    assert good.json()["user"]["email"] == "login@example.com"
    assert bad.status_code == 401
    assert unknown.status_code == 401


@pytest.mark.asyncio
async def test_me_rejects_missing_and_stale_tokens(auth_client):
    client, _ = auth_client

    assert (await client.get("/api/auth/me")).status_code == 401
    assert (await client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-token"})).status_code == 401

    deleted_user_token = create_session_token("deleted-user")["token"]
    response = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {deleted_user_token}"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_permanent_admin_is_created_and_role_restored(auth_client, monkeypatch):
    _, session_maker = auth_client
    monkeypatch.setattr(settings, "ADMIN_EMAIL", "boss@example.com")
    monkeypatch.setattr(settings, "ADMIN_PASSWORD", "boss-password")

    async with session_maker() as session:
        admin = await ensure_permanent_admin(session)
        assert admin.role == "admin"
        assert admin.credits == 3

        admin.role = "user"
        await session.commit()

    async with session_maker() as session:
        restored = await ensure_permanent_admin(session)
        assert restored.role == "admin"
        count = len((await session.execute(select(User))).scalars().all())
        assert count == 1


@pytest.mark.asyncio
async def test_permanent_admin_skipped_without_password(auth_client, monkeypatch):
    _, session_maker = auth_client
    monkeypatch.setattr(settings, "ADMIN_PASSWORD", "")
    async with session_maker() as session:
        assert await ensure_permanent_admin(session) is None


def test_password_hashing_round_trip():
    hashed = hash_password("secret123")
    assert hashed != "secret123"
    assert verify_password("secret123", hashed)
    assert not verify_password("other", hashed)
    assert not verify_password("secret123", "not-a-bcrypt-hash")


def test_session_claims_carry_email_and_role():
    session = create_session_token("user-1", "a@example.com", role="admin", expires_hours=2)
    claims = decode_session_token(session["token"])
    assert claims.user_id == "user-1"
    assert claims.email == "a@example.com"
    assert claims.role == "admin"
    assert claims.expires_at == session["expires_at"]

    bare = decode_session_token(create_session_token("user-2")["token"])
    assert bare.email is None
    assert bare.role is None


def test_expired_session_is_rejected():
    expired = jwt.encode(
        {"sub": "user-1", "type": "fanta_session", "exp": 1},
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
    )
    with pytest.raises(ValueError, match="expired"):
        decode_session_token(expired)

    wrong_type = jwt.encode(
        {"sub": "user-1", "type": "refresh", "exp": 4102444800},
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
    )
    with pytest.raises(ValueError, match="type"):
        decode_session_token(wrong_type)
