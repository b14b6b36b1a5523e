import asyncio

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from database import Base, get_db
from main import app
from models.creation import Creation
from models.user import User
from services.download_gate import request_download
from services.errors import InsufficientCredits, NotFound
from services.ledger import add_credits, get_balance, verify_ledger
from services.session_token import create_session_token


DOWNLOAD_USER_ID = "download-user"
OTHER_USER_ID = "download-other"
DOWNLOAD_AUTH_HEADER = {"Authorization": f"Bearer {create_session_token(DOWNLOAD_USER_ID, 'dl@example.com')['token']}"}
OTHER_AUTH_HEADER = {"Authorization": f"Bearer {create_session_token(OTHER_USER_ID, 'other@example.com')['token']}"}


@pytest_asyncio.fixture
async def download_client(tmp_path):
    db_path = tmp_path / "download_gate.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with session_maker() as session:
        session.add(User(id=DOWNLOAD_USER_ID, email="dl@example.com", password_hash="x", credits=0))
        session.add(User(id=OTHER_USER_ID, email="other@example.com", password_hash="x", credits=0))
        session.add(Creation(id="creation-a", user_id=DOWNLOAD_USER_ID, name="Landing", html="<html>a</html>"))
        session.add(Creation(id="creation-b", user_id=DOWNLOAD_USER_ID, name="Logo", html="<html>b</html>", mode="logo"))
        await session.flush()
        await add_credits(DOWNLOAD_USER_ID, session, amount=1, reason="INITIAL_FREE")
        await session.commit()

    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client, session_maker

    app.dependency_overrides.pop(get_db, None)
    await engine.dispose()


async def _creation(session_maker, creation_id: str) -> Creation:
    async with session_maker() as session:
        return (await session.execute(select(Creation).where(Creation.id == creation_id))).scalar_one()


@pytest.mark.asyncio
async def test_first_download_charges_one_credit_and_unlocks(download_client):
    client, session_maker = download_client

    response = await client.post("/api/download", json={"creationId": "creation-a"}, headers=DOWNLOAD_AUTH_HEADER)
    assert response.status_code == 200
    payload = response.json()
    assert payload["success"] is True
    assert payload["charged"] is True
    assert payload["creditsRemaining"] == 0
    assert payload["creation"]["purchased"] is True
    assert payload["creation"]["html"] == "<html>a</html>"

    assert (await _creation(session_maker, "creation-a")).purchased is True
    async with session_maker() as session:
        assert (await verify_ledger(DOWNLOAD_USER_ID, session))["consistent"] is True


@pytest.mark.asyncio
async def test_repeat_download_of_purchased_creation_is_free(download_client):
    client, session_maker = download_client

    first = await client.post("/api/download", json={"creationId": "creation-a"}, headers=DOWNLOAD_AUTH_HEADER)
    second = await client.post("/api/download", json={"creationId": "creation-a"}, headers=DOWNLOAD_AUTH_HEADER)

    assert first.status_code == 200
    assert second.status_code == 200
    assert second.json()["charged"] is False
    assert second.json()["creditsRemaining"] == 0
    async with session_maker() as session:
        assert await get_balance(DOWNLOAD_USER_ID, session) == 0


@pytest.mark.asyncio
async def test_download_without_credits_is_402_and_stays_locked(download_client):
    client, session_maker = download_client

    await client.post("/api/download", json={"creationId": "creation-a"}, headers=DOWNLOAD_AUTH_HEADER)
    response = await client.post("/api/download", json={"creationId": "creation-b"}, headers=DOWNLOAD_AUTH_HEADER)

    assert response.status_code == 402
    assert response.json()["error"] == "INSUFFICIENT_CREDITS"
    assert response.json()["credits"] == 0
    assert (await _creation(session_maker, "creation-b")).purchased is False


@pytest.mark.asyncio
async def test_download_of_someone_elses_creation_is_404(download_client):
    client, session_maker = download_client

    response = await client.post("/api/download", json={"creationId": "creation-a"}, headers=OTHER_AUTH_HEADER)
    assert response.status_code == 404
    assert response.json()["error"] == "NOT_FOUND"
    assert (await _creation(session_maker, "creation-a")).purchased is False


@pytest.mark.asyncio
async def test_download_requires_authentication(download_client):
    client, _ = download_client
    response = await client.post("/api/download", json={"creationId": "creation-a"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_gate_service_refusal_rolls_back_unlock(download_client):
    _, session_maker = download_client

    async with session_maker() as session:
        result = await request_download(DOWNLOAD_USER_ID, "creation-a", session)
        assert result.charged is True

    async with session_maker() as session:
        with pytest.raises(InsufficientCredits):
            await request_download(DOWNLOAD_USER_ID, "creation-b", session)
        with pytest.raises(NotFound):
            await request_download(DOWNLOAD_USER_ID, "missing", session)

    assert (await _creation(session_maker, "creation-b")).purchased is False


@pytest.mark.asyncio
async def test_concurrent_downloads_of_one_creation_charge_once(serialized_sqlite_engine):
    session_maker = async_sessionmaker(serialized_sqlite_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_maker() as session:
        session.add(User(id=DOWNLOAD_USER_ID, email="dl@example.com", password_hash="x", credits=0))
        session.add(Creation(id="creation-a", user_id=DOWNLOAD_USER_ID, name="Landing", html="<html>a</html>"))
        await session.flush()
        await add_credits(DOWNLOAD_USER_ID, session, amount=3, reason="INITIAL_FREE")
        await session.commit()

    async def download():
        async with session_maker() as session:
            return await request_download(DOWNLOAD_USER_ID, "creation-a", session)

    results = await asyncio.gather(*(download() for _ in range(5)))

    assert sum(1 for result in results if result.charged) == 1
    assert all(result.creation.purchased for result in results)
    async with session_maker() as session:
        assert await get_balance(DOWNLOAD_USER_ID, session) == 2
        assert (await verify_ledger(DOWNLOAD_USER_ID, session))["consistent"] is True


@pytest.mark.asyncio
async def test_balance_and_history_routes_follow_downloads(download_client):
    client, _ = download_client

    before = await client.get("/api/credits/balance", headers=DOWNLOAD_AUTH_HEADER)
    assert before.status_code == 200
    assert before.json() == {"credits": 1, "plan": "FREE", "proUntil": None}

    await client.post("/api/download", json={"creationId": "creation-a"}, headers=DOWNLOAD_AUTH_HEADER)

    after = await client.get("/api/credits/balance", headers=DOWNLOAD_AUTH_HEADER)
    assert after.json()["credits"] == 0

    history = (await client.get("/api/credits/history", headers=DOWNLOAD_AUTH_HEADER)).json()["transactions"]
    assert sorted((entry["reason"], entry["change"]) for entry in history) == [("DOWNLOAD", -1), ("INITIAL_FREE", 1)]
    download = next(entry for entry in history if entry["reason"] == "DOWNLOAD")
    assert download["reference"] == "creation-a"

    limited = await client.get("/api/credits/history", params={"limit": 1}, headers=DOWNLOAD_AUTH_HEADER)
    assert len(limited.json()["transactions"]) == 1
    assert (await client.get("/api/credits/history", params={"limit": 0}, headers=DOWNLOAD_AUTH_HEADER)).status_code == 422
    assert (await client.get("/api/credits/balance")).status_code == 401
