"""
Menu Catalog Service

Categories, menu items and tables for a workspace. Every query is
filtered by the caller's workspace_id; a row from another workspace is
reported as not found.
"""

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ConflictError, NotFoundError, ValidationFailedError
from app.models import Category, MenuItem, RestaurantTable

logger = logging.getLogger(__name__)


# Demo menu used by seed_demo_data()
DEMO_MENU: dict[str, list[tuple[str, str, str]]] = {
    "Starters": [
        ("Bruschetta", "8.99", "Toasted bread with tomatoes, garlic, and basil"),
        ("Caesar Salad", "10.99", "Romaine lettuce, croutons, parmesan"),
        ("Soup of the Day", "6.99", "Ask your server for today's selection"),
    ],
    "Main Courses": [
        ("Margherita Pizza", "14.99", "Fresh mozzarella, tomato sauce, basil"),
        ("Grilled Salmon", "22.99", "With roasted vegetables and lemon butter"),
        ("Pasta Carbonara", "16.99", "Creamy sauce with pancetta and parmesan"),
        ("Beef Burger", "15.99", "Angus beef, lettuce, tomato, cheese, fries"),
    ],
    "Drinks": [
        ("Cappuccino", "4.50", "Espresso with steamed milk and foam"),
        ("Latte", "4.50", "Espresso with steamed milk"),
        ("Fresh Orange Juice", "5.99", "Freshly squeezed"),
        ("Iced Tea", "3.50", "Refreshing lemon iced tea"),
    ],
    "Desserts": [
        ("Tiramisu", "7.99", "Classic Italian dessert with coffee and mascarpone"),
        ("Chocolate Cake", "6.99", "Rich chocolate cake with vanilla ice cream"),
        ("Panna Cotta", "6.50", "Italian cream dessert with berry sauce"),
    ],
}
DEMO_TABLE_COUNT = 10


# =============================================================================
# CATEGORIES
# =============================================================================

async def list_categories(db: AsyncSession, workspace_id: str) -> list[Category]:
    result = await db.execute(
        select(Category)
        .where(Category.workspace_id == workspace_id)
        .order_by(Category.name)
    )
    return list(result.scalars().all())


async def get_category(db: AsyncSession, workspace_id: str, category_id: int) -> Category:
    result = await db.execute(
        select(Category).where(
            Category.id == category_id,
            Category.workspace_id == workspace_id,
        )
    )
    category = result.scalar_one_or_none()
    if category is None:
        raise NotFoundError(f"Category #{category_id} not found")
    return category


async def create_category(
    db: AsyncSession,
    workspace_id: str,
    name: str,
    sort_order: int = 0,
) -> Category:
    name = (name or "").strip()
    if not name:
        raise ValidationFailedError("Category name is required")

    category = Category(workspace_id=workspace_id, name=name, sort_order=sort_order)
    db.add(category)
    await db.commit()
    await db.refresh(category)
    return category


async def update_category(
    db: AsyncSession,
    workspace_id: str,
    category_id: int,
    name: Optional[str] = None,
    sort_order: Optional[int] = None,
) -> Category:
    category = await get_category(db, workspace_id, category_id)
    if name is not None:
        if not name.strip():
            raise ValidationFailedError("Category name is required")
        category.name = name.strip()
    if sort_order is not None:
        category.sort_order = sort_order
    await db.commit()
    await db.refresh(category)
    return category


async def delete_category(db: AsyncSession, workspace_id: str, category_id: int) -> None:
    category = await get_category(db, workspace_id, category_id)
    await db.execute(
        delete(MenuItem).where(
            MenuItem.category_id == category.id,
            MenuItem.workspace_id == workspace_id,
        )
    )
    await db.delete(category)
    await db.commit()
    logger.info(f"Deleted category #{category_id} and its items")


# =============================================================================
# MENU ITEMS
# =============================================================================

async def list_menu_items(
    db: AsyncSession,
    workspace_id: str,
    available_only: bool = False,
) -> list[MenuItem]:
    query = select(MenuItem).where(MenuItem.workspace_id == workspace_id)
    if available_only:
        query = query.where(MenuItem.is_available.is_(True))
    result = await db.execute(query.order_by(MenuItem.created_at.desc(), MenuItem.id.desc()))
    return list(result.scalars().all())


async def get_menu_item(db: AsyncSession, workspace_id: str, item_id: int) -> MenuItem:
    result = await db.execute(
        select(MenuItem).where(
            MenuItem.id == item_id,
            MenuItem.workspace_id == workspace_id,
        )
    )
    item = result.scalar_one_or_none()
    if item is None:
        raise NotFoundError(f"Menu item #{item_id} not found")
    return item


def _clean_price(price) -> Decimal:
    value = Decimal(str(price))
    if value < 0:
        raise ValidationFailedError("Price cannot be negative")
    return value.quantize(Decimal("0.01"))


async def create_menu_item(
    db: AsyncSession,
    workspace_id: str,
    category_id: int,
    name: str,
    price,
    description: str = "",
    image_url: Optional[str] = None,
    is_available: bool = True,
) -> MenuItem:
    await get_category(db, workspace_id, category_id)
    name = (name or "").strip()
    if not name:
        raise ValidationFailedError("Menu item name is required")

    item = MenuItem(
        workspace_id=workspace_id,
        category_id=category_id,
        name=name,
        price=_clean_price(price),
        description=description or "",
        image_url=image_url or None,
        is_available=is_available,
    )
    db.add(item)
    await db.commit()
    await db.refresh(item)
    return item


async def update_menu_item(
    db: AsyncSession,
    workspace_id: str,
    item_id: int,
    updates: dict,
) -> MenuItem:
    """Apply a partial update; only keys present in ``updates`` change."""
    item = await get_menu_item(db, workspace_id, item_id)

    if updates.get("category_id") is not None:
        await get_category(db, workspace_id, updates["category_id"])
        item.category_id = updates["category_id"]
    if updates.get("name") is not None:
        if not updates["name"].strip():
            raise ValidationFailedError("Menu item name is required")
        item.name = updates["name"].strip()
    if updates.get("price") is not None:
        item.price = _clean_price(updates["price"])
    if "description" in updates and updates["description"] is not None:
        item.description = updates["description"]
    if "image_url" in updates:
        item.image_url = updates["image_url"] or None
    if updates.get("is_available") is not None:
        was_available = item.is_available
        item.is_available = bool(updates["is_available"])
        if was_available and not item.is_available:
            logger.info(f"Menu item #{item.id} ({item.name}) marked unavailable")

    await db.commit()
    await db.refresh(item)
    return item


async def set_availability(
    db: AsyncSession,
    workspace_id: str,
    item_id: int,
    is_available: bool,
) -> MenuItem:
    return await update_menu_item(db, workspace_id, item_id, {"is_available": is_available})


async def delete_menu_item(db: AsyncSession, workspace_id: str, item_id: int) -> None:
    item = await get_menu_item(db, workspace_id, item_id)
    await db.delete(item)
    await db.commit()


# =============================================================================
# TABLES
# =============================================================================

async def list_tables(db: AsyncSession, workspace_id: str) -> list[RestaurantTable]:
    result = await db.execute(
        select(RestaurantTable)
        .where(RestaurantTable.workspace_id == workspace_id)
        .order_by(RestaurantTable.table_number)
    )
    return list(result.scalars().all())


async def find_table(
    db: AsyncSession,
    workspace_id: str,
    table_number: int,
) -> Optional[RestaurantTable]:
    result = await db.execute(
        select(RestaurantTable).where(
            RestaurantTable.workspace_id == workspace_id,
            RestaurantTable.table_number == table_number,
        )
    )
    return result.scalar_one_or_none()


async def require_table(db: AsyncSession, workspace_id: str, table_number: int) -> RestaurantTable:
    table = await find_table(db, workspace_id, table_number)
    if table is None:
        raise NotFoundError(f"Table {table_number} does not exist")
    return table


async def create_table(db: AsyncSession, workspace_id: str, table_number: int) -> RestaurantTable:
    if table_number is None or int(table_number) < 1:
        raise ValidationFailedError("Table number must be a positive number")
    if await find_table(db, workspace_id, table_number) is not None:
        raise ConflictError(f"Table {table_number} already exists")

    table = RestaurantTable(workspace_id=workspace_id, table_number=int(table_number))
    db.add(table)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(f"Table {table_number} already exists")
    await db.refresh(table)
    return table


async def delete_table(db: AsyncSession, workspace_id: str, table_id: int) -> None:
    result = await db.execute(
        select(RestaurantTable).where(
            RestaurantTable.id == table_id,
            RestaurantTable.workspace_id == workspace_id,
        )
    )
    table = result.scalar_one_or_none()
    if table is None:
        raise NotFoundError(f"Table #{table_id} not found")
    await db.delete(table)
    await db.commit()


def table_path(workspace_id: str, table_number: int) -> str:
    """Path a table's QR code points customers to."""
    return f"/w/{workspace_id}/table/{table_number}"


# =============================================================================
# SEED DATA
# =============================================================================

async def seed_demo_data(db: AsyncSession, workspace_id: str) -> dict[str, int]:
    """Create the demo menu and tables 1-10 (existing table numbers are skipped)."""
    categories = 0
    items = 0
    for sort_order, (category_name, entries) in enumerate(DEMO_MENU.items()):
        category = Category(workspace_id=workspace_id, name=category_name, sort_order=sort_order)
        db.add(category)
        await db.flush()
        categories += 1
        for name, price, description in entries:
            db.add(
                MenuItem(
                    workspace_id=workspace_id,
                    category_id=category.id,
                    name=name,
                    price=Decimal(price),
                    description=description,
                    is_available=True,
                )
            )
            items += 1

    existing = {t.table_number for t in await list_tables(db, workspace_id)}
    tables = 0
    for number in range(1, DEMO_TABLE_COUNT + 1):
        if number not in existing:
            db.add(RestaurantTable(workspace_id=workspace_id, table_number=number))
            tables += 1

    await db.commit()
    logger.info(
        f"Seeded workspace {workspace_id}: {categories} categories, {items} items, {tables} tables"
    )
    return {"categories": categories, "items": items, "tables": tables}
