import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine

from config import settings
from database import Base
from main import app
from routers import rate_limit


@pytest.fixture(autouse=True)
def isolate_rate_limits():
    """Disable request quotas and clear in-memory counters between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    rate_limit._local_counters.clear()
    yield
    rate_limit._local_counters.clear()
    app.state.disable_rate_limits = previous


@pytest.fixture(autouse=True)
def offline_providers(monkeypatch):
    """Never reach real generation or payment providers from a local .env."""
    monkeypatch.setattr(settings, "OPENAI_API_KEY", "")
    monkeypatch.setattr(settings, "STRIPE_SECRET_KEY", "")
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", "")
    monkeypatch.setattr(settings, "REDIS_URL", "redis://127.0.0.1:1")


@pytest_asyncio.fixture
async def serialized_sqlite_engine(tmp_path):
    """SQLite engine whose transactions take the write lock at BEGIN.

    SQLite has no row locks; BEGIN IMMEDIATE makes concurrent sessions queue
    up instead of failing on lock upgrade.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'serialized.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine
    await engine.dispose()
