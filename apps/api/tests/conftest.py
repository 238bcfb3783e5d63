import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from database import Base, get_db
from main import app
from routers import rate_limit
from routers.audit import get_audit_store
from services.fetcher import FetchedPage
from services.persistence import SqlAuditStore


@pytest.fixture(autouse=True)
def reset_local_rate_limit_counters():
    """Keep in-memory rate-limit state isolated between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    rate_limit._local_counters.clear()
    yield
    rate_limit._local_counters.clear()
    app.state.disable_rate_limits = previous


@pytest.fixture
def make_page():
    """Build a FetchedPage around inline HTML without touching the network."""

    def _make(html: str, url: str = "https://example.com/", headers=None, **overrides) -> FetchedPage:
        body = html.encode()
        values = {
            "url": url,
            "final_url": url,
            "status_code": 200,
            "headers": {key.lower(): value for key, value in (headers or {}).items()},
            "html": html,
            "elapsed_ms": 120.0,
            "content_bytes": len(body),
            "tls_verified": True if url.startswith("https://") else None,
        }
        values.update(overrides)
        return FetchedPage(**values)

    return _make


@pytest_asyncio.fixture
async def sql_store(tmp_path):
    db_path = tmp_path / "audit_store.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield SqlAuditStore(session_maker)
    await engine.dispose()


@pytest_asyncio.fixture
async def api_client(tmp_path):
    db_path = tmp_path / "api.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    store = SqlAuditStore(session_maker)

    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_audit_store] = lambda: store
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client, store

    app.dependency_overrides.pop(get_db, None)
    app.dependency_overrides.pop(get_audit_store, None)
    await engine.dispose()
