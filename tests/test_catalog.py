"""
Tests for categories, menu items, tables and the demo seed.
"""

from decimal import Decimal

import pytest

from app.core.errors import ConflictError, NotFoundError, ValidationFailedError
from app.services import catalog


class TestSeed:

    async def test_seed_counts(self, db, workspace):
        counts = await catalog.seed_demo_data(db, workspace.id)
        assert counts == {"categories": 4, "items": 14, "tables": 10}

        names = [c.name for c in await catalog.list_categories(db, workspace.id)]
        assert names == ["Desserts", "Drinks", "Main Courses", "Starters"]

    async def test_seed_skips_existing_tables(self, db, workspace):
        await catalog.create_table(db, workspace.id, 3)
        counts = await catalog.seed_demo_data(db, workspace.id)
        assert counts["tables"] == 9
        assert len(await catalog.list_tables(db, workspace.id)) == 10

    async def test_seed_prices(self, menu):
        assert menu["Latte"].price == Decimal("4.50")
        assert menu["Bruschetta"].price == Decimal("8.99")


class TestMenuItems:

    async def test_create_and_update(self, db, workspace):
        category = await catalog.create_category(db, workspace.id, " Breakfast ")
        assert category.name == "Breakfast"

        item = await catalog.create_menu_item(db, workspace.id, category.id, "Pancakes", "5.5")
        assert item.price == Decimal("5.50")
        assert item.is_available

        item = await catalog.update_menu_item(db, workspace.id, item.id, {"price": "6.25", "description": "Stack of three"})
        assert item.price == Decimal("6.25")
        assert item.description == "Stack of three"

    async def test_negative_price(self, db, workspace):
        category = await catalog.create_category(db, workspace.id, "Breakfast")
        with pytest.raises(ValidationFailedError):
            await catalog.create_menu_item(db, workspace.id, category.id, "Pancakes", "-1")

    async def test_item_needs_a_category_of_the_workspace(self, db, workspace, other_workspace):
        foreign = (await catalog.list_categories(db, other_workspace.id))[0]
        with pytest.raises(NotFoundError):
            await catalog.create_menu_item(db, workspace.id, foreign.id, "Pancakes", "5")

    async def test_availability_toggle(self, db, workspace, menu):
        item = await catalog.set_availability(db, workspace.id, menu["Latte"].id, False)
        assert not item.is_available

        available = await catalog.list_menu_items(db, workspace.id, available_only=True)
        assert "Latte" not in {i.name for i in available}
        assert len(available) == 13

    async def test_delete_category_removes_its_items(self, db, workspace, menu):
        drinks = next(c for c in await catalog.list_categories(db, workspace.id) if c.name == "Drinks")
        await catalog.delete_category(db, workspace.id, drinks.id)

        remaining = await catalog.list_menu_items(db, workspace.id)
        assert len(remaining) == 10
        with pytest.raises(NotFoundError):
            await catalog.get_category(db, workspace.id, drinks.id)


class TestTables:

    async def test_duplicate_table_conflicts(self, db, workspace):
        await catalog.create_table(db, workspace.id, 12)
        with pytest.raises(ConflictError):
            await catalog.create_table(db, workspace.id, 12)

    async def test_same_number_in_two_workspaces(self, db, workspace, other_workspace):
        table = await catalog.create_table(db, workspace.id, 1)
        assert table.table_number == 1

    async def test_table_number_must_be_positive(self, db, workspace):
        with pytest.raises(ValidationFailedError):
            await catalog.create_table(db, workspace.id, 0)

    async def test_delete_table(self, db, workspace):
        table = await catalog.create_table(db, workspace.id, 5)
        await catalog.delete_table(db, workspace.id, table.id)
        assert await catalog.find_table(db, workspace.id, 5) is None

    def test_table_path(self):
        assert catalog.table_path("ws-1", 7) == "/w/ws-1/table/7"
