"""
Test configuration and fixtures for the inventory backend test suite.

Provides:
- A fresh SQLite database file per test (aiosqlite, NullPool)
- Ledger / admin logger / blob store instances bound to that database
- An httpx AsyncClient over the FastAPI app with auth and storage overridden
- Factory helpers for inventory items
"""
import os

# Must be set before core.config / db.database are imported
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["BLOB_BACKEND"] = "database"
os.environ["LOW_STOCK_THRESHOLD"] = "5"
os.environ["JWT_SECRET"] = "test-secret"

import uuid  # noqa: E402
from typing import AsyncGenerator, Optional  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy import select  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from core.admin_logger import AdminActionLogger  # noqa: E402
from core.auth import Actor, current_active_user, current_actor  # noqa: E402
from core.blob_store import DatabaseBlobStore  # noqa: E402
from core.ledger import StockLedger, wait_for_pending  # noqa: E402
from db.admin_log import AdminLog  # noqa: E402
from db.database import Base, get_async_session, get_session_maker, _import_models  # noqa: E402
from db.inventory.adjustment import StockAdjustment  # noqa: E402
from db.inventory.item import InventoryItem  # noqa: E402
from db.users import User  # noqa: E402
from main import app  # noqa: E402


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    _import_models()
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'inventory.db'}", poolclass=NullPool)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield eng
    finally:
        await wait_for_pending()
        await eng.dispose()


@pytest.fixture
def session_maker(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, expire_on_commit=False)


# ---------------------------------------------------------------------------
# Engine components
# ---------------------------------------------------------------------------

@pytest.fixture
def actor() -> Actor:
    return Actor(id="admin-1", display_name="Admin One")


@pytest.fixture
def admin_logger(session_maker) -> AdminActionLogger:
    return AdminActionLogger(session_maker)


@pytest.fixture
def ledger(session_maker, admin_logger) -> StockLedger:
    return StockLedger(
        session_maker,
        admin_logger=admin_logger,
        max_attempts=5,
        backoff_seconds=0.001,
        default_threshold=5,
    )


@pytest.fixture
def blob_store(session_maker) -> DatabaseBlobStore:
    return DatabaseBlobStore(session_maker)


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def client(session_maker, actor) -> AsyncGenerator[httpx.AsyncClient, None]:
    async def _session() -> AsyncGenerator[AsyncSession, None]:
        async with session_maker() as session:
            yield session

    admin_user = User(
        id=uuid.uuid4(),
        email="admin@example.com",
        hashed_password="x",
        is_active=True,
        is_superuser=True,
        is_verified=True,
    )

    app.dependency_overrides[get_session_maker] = lambda: session_maker
    app.dependency_overrides[get_async_session] = _session
    app.dependency_overrides[current_actor] = lambda: actor
    app.dependency_overrides[current_active_user] = lambda: admin_user

    transport = httpx.ASGITransport(app=app)
    try:
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
            yield c
    finally:
        app.dependency_overrides.clear()
        await wait_for_pending()


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

async def create_item(
    session_maker: async_sessionmaker,
    title: str = "Bhagavad Gita",
    isbn: Optional[str] = None,
    quantity: int = 0,
    low_stock_threshold: Optional[int] = None,
    cover_ref: Optional[str] = None,
) -> uuid.UUID:
    """Insert an inventory item with an opening quantity and return its id."""
    async with session_maker() as session:
        item = InventoryItem(
            title=title,
            isbn=isbn,
            quantity=quantity,
            low_stock_threshold=low_stock_threshold,
            cover_ref=cover_ref,
            cover_url=f"/images/serve/{cover_ref}" if cover_ref else None,
            is_active=True,
        )
        session.add(item)
        await session.commit()
        return item.id


async def get_item(session_maker: async_sessionmaker, item_id: uuid.UUID) -> InventoryItem:
    async with session_maker() as session:
        return await session.get(InventoryItem, item_id)


async def list_entries(session_maker: async_sessionmaker, item_id: uuid.UUID) -> list:
    async with session_maker() as session:
        res = await session.execute(
            select(StockAdjustment)
            .where(StockAdjustment.item_id == item_id)
            .order_by(StockAdjustment.created_at.asc())
        )
        return list(res.scalars().all())


async def list_admin_logs(session_maker: async_sessionmaker) -> list:
    async with session_maker() as session:
        res = await session.execute(select(AdminLog).order_by(AdminLog.created_at.asc()))
        return list(res.scalars().all())
