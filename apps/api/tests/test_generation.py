from datetime import date, datetime, timedelta, timezone
from types import SimpleNamespace

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from openai import APIConnectionError, RateLimitError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from database import Base, get_db
from main import app
from models.user import User
from services import generation
from services.errors import UpstreamGenerationError, UpstreamQuotaExceeded
from services.generation import build_messages, extract_html
from services.session_token import create_session_token


GEN_USER_ID = "gen-user"
GEN_PRO_ID = "gen-pro"
GEN_AUTH_HEADER = {"Authorization": f"Bearer {create_session_token(GEN_USER_ID)['token']}"}
GEN_PRO_HEADER = {"Authorization": f"Bearer {create_session_token(GEN_PRO_ID)['token']}"}


class _FakeCompletions:
    def __init__(self, content=None, error=None):
        self.content = content
        self.error = error
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=self.content))])


def _fake_client(content=None, error=None):
    completions = _FakeCompletions(content=content, error=error)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


def _rate_limit_error() -> RateLimitError:
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    return RateLimitError("quota", response=httpx.Response(429, request=request), body=None)


@pytest_asyncio.fixture
async def generation_client(tmp_path):
    db_path = tmp_path / "generation.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with session_maker() as session:
        session.add(User(id=GEN_USER_ID, email="gen@example.com", password_hash="x", credits=3))
        session.add(
            User(
                id=GEN_PRO_ID,
                email="pro@example.com",
                password_hash="x",
                plan="PRO",
                pro_until=datetime.now(timezone.utc) + timedelta(days=30),
                credits=40,
            )
        )
        await session.commit()

    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client, session_maker

    app.dependency_overrides.pop(get_db, None)
    await engine.dispose()


def test_extract_html_handles_fenced_and_bare_output():
    fenced = "Here you go:\n```html\n<!DOCTYPE html><html><body>Hi</body></html>\n```\nEnjoy"
    assert extract_html(fenced) == "<!DOCTYPE html><html><body>Hi</body></html>"

    bare = "Sure! <html><body>Bare</body></html> trailing words"
    assert extract_html(bare) == "<html><body>Bare</body></html>"

    assert extract_html("<div>fragment</div>") == "<div>fragment</div>"


def test_build_messages_attaches_image_and_mode_prompt():
    messages = build_messages("", "aGVsbG8=", "image/jpeg", "logo")
    assert "inline SVG" in messages[0]["content"]
    user_content = messages[1]["content"]
    assert user_content[0]["type"] == "text"
    assert user_content[1]["image_url"]["url"] == "data:image/jpeg;base64,aGVsbG8="

    text_only = build_messages("A todo app", None, None, "unknown-mode")
    assert len(text_only[1]["content"]) == 1
    assert "web page" in text_only[0]["content"]


@pytest.mark.asyncio
async def test_generate_maps_rate_limit_to_quota_exceeded():
    client, _ = _fake_client(error=_rate_limit_error())
    with pytest.raises(UpstreamQuotaExceeded) as exc_info:
        await generation.generate("landing page", client=client)
    assert exc_info.value.to_payload()["type"] == "quota_exceeded"


@pytest.mark.asyncio
async def test_generate_maps_other_failures_to_generation_error():
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    client, _ = _fake_client(error=APIConnectionError(request=request))
    with pytest.raises(UpstreamGenerationError):
        await generation.generate("landing page", client=client)

    empty_client, _ = _fake_client(content="")
    with pytest.raises(UpstreamGenerationError):
        await generation.generate("landing page", client=empty_client)


@pytest.mark.asyncio
async def test_generate_route_returns_html_and_counts_usage(generation_client, monkeypatch):
    client, session_maker = generation_client
    fake, completions = _fake_client(content="```html\n<html><body>ok</body></html>\n```")
    monkeypatch.setattr(generation, "get_openai_client", lambda api_key: fake)

    response = await client.post(
        "/api/generate",
        json={"prompt": "portfolio", "mode": "mobile"},
        headers=GEN_AUTH_HEADER,
    )

    assert response.status_code == 200
    assert response.json() == {"html": "<html><body>ok</body></html>"}
    assert "390px" in completions.calls[0]["messages"][0]["content"]
    async with session_maker() as session:
        user = (await session.execute(select(User).where(User.id == GEN_USER_ID))).scalar_one()
        assert user.daily_usage_count == 1
        assert user.last_reset_date is not None
        assert user.credits == 3


@pytest.mark.asyncio
async def test_free_daily_limit_returns_429_without_calling_model(generation_client, monkeypatch):
    client, session_maker = generation_client
    fake, completions = _fake_client(content="<html></html>")
    monkeypatch.setattr(generation, "get_openai_client", lambda api_key: fake)

    statuses = []
    for _ in range(4):
        response = await client.post("/api/generate", json={"prompt": "x"}, headers=GEN_AUTH_HEADER)
        statuses.append(response.status_code)

    assert statuses == [200, 200, 200, 429]
    assert response.json()["error"] == "DAILY_LIMIT"
    assert response.json()["isPro"] is False
    assert len(completions.calls) == 3


@pytest.mark.asyncio
async def test_pro_users_get_the_higher_limit_and_stale_counters_reset(generation_client, monkeypatch):
    client, session_maker = generation_client
    fake, _ = _fake_client(content="<html></html>")
    monkeypatch.setattr(generation, "get_openai_client", lambda api_key: fake)

    async with session_maker() as session:
        pro = (await session.execute(select(User).where(User.id == GEN_PRO_ID))).scalar_one()
        pro.daily_usage_count = 20
        pro.last_reset_date = date.today() - timedelta(days=2)
        await session.commit()

    response = await client.post("/api/generate", json={"prompt": "x"}, headers=GEN_PRO_HEADER)
    assert response.status_code == 200

    async with session_maker() as session:
        pro = (await session.execute(select(User).where(User.id == GEN_PRO_ID))).scalar_one()
        assert pro.daily_usage_count == 1


@pytest.mark.asyncio
async def test_generation_failure_is_not_counted(generation_client, monkeypatch):
    client, session_maker = generation_client
    fake, _ = _fake_client(error=_rate_limit_error())
    monkeypatch.setattr(generation, "get_openai_client", lambda api_key: fake)

    response = await client.post("/api/generate", json={"prompt": "x"}, headers=GEN_AUTH_HEADER)

    assert response.status_code == 503
    assert response.json()["type"] == "quota_exceeded"
    async with session_maker() as session:
        user = (await session.execute(select(User).where(User.id == GEN_USER_ID))).scalar_one()
        assert user.daily_usage_count == 0


@pytest.mark.asyncio
async def test_lapsed_pro_window_falls_back_to_free_limit(generation_client, monkeypatch):
    client, session_maker = generation_client
    fake, completions = _fake_client(content="<html></html>")
    monkeypatch.setattr(generation, "get_openai_client", lambda api_key: fake)

    async with session_maker() as session:
        pro = (await session.execute(select(User).where(User.id == GEN_PRO_ID))).scalar_one()
        pro.pro_until = datetime.now(timezone.utc) - timedelta(days=90)
        await session.commit()

    statuses = []
    for _ in range(4):
        response = await client.post("/api/generate", json={"prompt": "x"}, headers=GEN_PRO_HEADER)
        statuses.append(response.status_code)

    assert statuses == [200, 200, 200, 429]
    assert response.json()["isPro"] is False
    assert len(completions.calls) == 3

    me = await client.get("/api/auth/me", headers=GEN_PRO_HEADER)
    assert me.json()["plan"] == "FREE"
    assert me.json()["subscription_status"] == "free"
