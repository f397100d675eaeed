"""
Pytest configuration and fixtures for the catalog add-on tests.
"""
import itertools
import os
from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio

# Set test environment before importing app modules
os.environ["ENVIRONMENT"] = "development"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SECRET_KEY"] = "unit-test-key-0123456789abcdef"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["S3_BUCKET"] = "test-bucket"

from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from catalog_addon.core.database import Base, get_db
from catalog_addon.core.security import create_access_token
from catalog_addon.main import app
from catalog_addon.models import Product


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker, None]:
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app with get_db bound to the test database."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers() -> dict:
    token = create_access_token({"sub": 1, "email": "admin@example.com", "role": "admin"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def customer_headers() -> dict:
    token = create_access_token({"sub": 2, "email": "shopper@example.com", "role": "customer"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_product(db):
    """Factory that inserts a catalog product and returns it."""
    counter = itertools.count(1)

    async def _make(
        title: str = None,
        price_min="10.00",
        price_max=None,
        status: str = "published",
        is_active: bool = True,
        short_description: str = None,
        tags=None,
    ) -> Product:
        n = next(counter)
        product = Product(
            title=title or f"Product {n}",
            slug=f"product-{n}",
            short_description=short_description,
            price_min=Decimal(str(price_min)) if price_min is not None else None,
            price_max=Decimal(str(price_max if price_max is not None else price_min)) if price_min is not None else None,
            status=status,
            is_active=is_active,
            tags=list(tags or []),
        )
        db.add(product)
        await db.commit()
        await db.refresh(product)
        return product

    return _make
