"""
Shared fixtures for all tests.

Every test gets its own in-memory SQLite database, a fresh in-process
change feed, and (where asked for) a registered workspace with the demo
menu and tables 1-10.
"""

import os

# Must be set before any app module reads the settings
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["CHANGE_FEED_BACKEND"] = "memory"
os.environ["ENV_MODE"] = "development"

from decimal import Decimal
from typing import Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.config import get_settings
from app.database import init_db
from app.models import MenuItem, Order
from app.services import auth, catalog, orders
from app.services.events import get_change_feed, reset_change_feed
from app.services.storage import reset_storage_service


def memory_engine():
    return create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )


def registration(suffix: str = "") -> auth.WorkspaceRegistration:
    return auth.WorkspaceRegistration(
        restaurant_name="Bella Cucina",
        outlet_name=f"Downtown{suffix}",
        owner_email=f"owner{suffix}@bellacucina.com",
        owner_password="owner-secret",
        admin_username="admin",
        admin_password="admin-secret",
        kitchen_username="kitchen",
        kitchen_password="kitchen-secret",
    )


# ============================================================================
# AUTO-USE FIXTURES
# ============================================================================

@pytest.fixture(autouse=True)
def change_feed():
    """Fresh in-process change feed per test."""
    reset_change_feed()
    yield get_change_feed()
    reset_change_feed()


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Point uploads and exports at a temporary directory."""
    monkeypatch.setenv("MEDIA_DIRECTORY", str(tmp_path / "media"))
    monkeypatch.setenv("DATA_DIRECTORY", str(tmp_path / "data"))
    get_settings.cache_clear()
    reset_storage_service()
    yield get_settings()
    get_settings.cache_clear()
    reset_storage_service()


# ============================================================================
# DATABASE FIXTURES
# ============================================================================

@pytest.fixture
async def engine():
    engine = memory_engine()
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db(engine):
    """
    Provide an AsyncSession on the per-test database.

    Usage:
        async def test_something(db, workspace):
            order = await orders.get_order(db, workspace.id, 1)
    """
    session_maker = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    async with session_maker() as session:
        yield session


# ============================================================================
# WORKSPACE FIXTURES
# ============================================================================

@pytest.fixture
async def owner(db):
    """AuthResult for a freshly registered workspace owner."""
    return await auth.register_workspace(db, registration())


@pytest.fixture
async def workspace(owner):
    return owner.workspace


@pytest.fixture
async def other_workspace(db):
    """A second tenant, for isolation checks."""
    result = await auth.register_workspace(db, registration("-north"))
    await catalog.seed_demo_data(db, result.workspace.id)
    return result.workspace


@pytest.fixture
async def menu(db, workspace) -> dict[str, MenuItem]:
    """Seed the demo menu and tables 1-10; returns items by name."""
    await catalog.seed_demo_data(db, workspace.id)
    items = await catalog.list_menu_items(db, workspace.id)
    return {item.name: item for item in items}


@pytest.fixture
def place(db, workspace, menu):
    """
    Place an order of menu items at a table.

    Usage:
        order = await place(3, "9876543210", ("Latte", 2), ("Tiramisu", 1))
    """
    async def _place(
        table_number: int,
        phone: Optional[str],
        *lines: tuple,
        customer_name: str = "Maya",
    ) -> Order:
        items = []
        for line in lines:
            name, quantity = line[0], line[1]
            note = line[2] if len(line) > 2 else None
            item = menu[name]
            items.append(
                orders.NewOrderItem(
                    name=item.name,
                    unit_price=Decimal(str(item.price)),
                    quantity=quantity,
                    menu_item_id=item.id,
                    note=note,
                )
            )
        return await orders.create_order(
            db,
            workspace.id,
            table_number,
            items,
            customer_name=customer_name,
            customer_phone=phone,
        )

    return _place
