"""Shared test fixtures — one in-memory database per store, rebuilt for every test."""
from __future__ import annotations

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

# Shared in-memory DBs with StaticPool so every session sees the same data
from sqlalchemy.pool import StaticPool

import qaguard.db.job_tables  # noqa: F401
from qaguard.auth import create_access_token, get_context
from qaguard.cache import MemoryCache
from qaguard.context import ModerationContext
from qaguard.counters import MemoryCounterStore
from qaguard.db.content_tables import ContentBase
from qaguard.db.tables import Base, UserRow
from qaguard.models.moderation import OracleResult, UserRole
from qaguard.notifications import MemoryNotifier
from qaguard.queue.worker import drain

TEST_DB_URL = "sqlite+aiosqlite:///file:qaguard_test?mode=memory&cache=shared&uri=true"
TEST_CONTENT_DB_URL = "sqlite+aiosqlite:///file:qaguard_test_content?mode=memory&cache=shared&uri=true"

test_engine = create_async_engine(
    TEST_DB_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
test_content_engine = create_async_engine(
    TEST_CONTENT_DB_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSession = async_sessionmaker(test_engine, expire_on_commit=False, class_=AsyncSession)
TestContentSession = async_sessionmaker(test_content_engine, expire_on_commit=False, class_=AsyncSession)

# Import app and override BEFORE any test module imports app
from qaguard.api.main import app  # noqa: E402


class FakeOracle:
    """Classification oracle scripted by substring. Clean text by default."""

    def __init__(self):
        self.rules: list[tuple[str, OracleResult]] = []
        self.calls: list[str] = []
        self.error: Exception | None = None

    def flag(self, needle: str, **scores: float) -> None:
        self.rules.append((needle, OracleResult(flagged=True, category_scores=scores)))

    async def moderate(self, text: str) -> OracleResult:
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        for needle, result in self.rules:
            if needle in text:
                return result
        return OracleResult(flagged=False)


@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create tables before each test, drop after."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with test_content_engine.begin() as conn:
        await conn.run_sync(ContentBase.metadata.create_all)

    yield

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    async with test_content_engine.begin() as conn:
        await conn.run_sync(ContentBase.metadata.drop_all)


@pytest_asyncio.fixture
async def ctx():
    return ModerationContext(
        db=TestSession,
        content_db=TestContentSession,
        oracle=FakeOracle(),
        notifier=MemoryNotifier(),
        cache=MemoryCache(),
        counters=MemoryCounterStore(),
        oracle_timeout=1.0,
    )


async def make_user(ctx, user_id: str, role: UserRole = UserRole.USER) -> UserRow:
    async with ctx.db() as session:
        async with session.begin():
            user = UserRow(id=user_id, email=f"{user_id}@example.com", display_name=user_id, role=role)
            session.add(user)
    return user


@pytest_asyncio.fixture
async def author(ctx):
    return await make_user(ctx, "author-1")


@pytest_asyncio.fixture
async def reporter(ctx):
    return await make_user(ctx, "reporter-1")


@pytest_asyncio.fixture
async def admin(ctx):
    return await make_user(ctx, "admin-1", UserRole.ADMIN)


async def run_jobs(ctx) -> int:
    """Run every due job one at a time (a StaticPool connection cannot interleave transactions)."""
    return await drain(ctx, concurrency=1)


def auth_headers(user_id: str) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


@pytest_asyncio.fixture
async def client(ctx):
    app.dependency_overrides[get_context] = lambda: ctx
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.pop(get_context, None)
