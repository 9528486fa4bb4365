"""
Tests for the startup schema contract check.
"""

import pytest
from sqlalchemy import text

from app.core.errors import SchemaContractError
from app.database import Base, verify_schema_contract
from app.models import SCHEMA_VERSION

from tests.conftest import memory_engine


class TestSchemaContract:

    async def test_fresh_database_passes(self, engine):
        await verify_schema_contract(engine)

    async def test_missing_column_fails(self):
        engine = memory_engine()
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
            await conn.execute(text("DROP TABLE final_bills"))
            await conn.execute(text("CREATE TABLE final_bills (id INTEGER PRIMARY KEY)"))

        with pytest.raises(SchemaContractError) as exc_info:
            await verify_schema_contract(engine)
        assert "missing column 'final_bills.order_ids'" in exc_info.value.problems
        assert exc_info.value.status_code == 500
        await engine.dispose()

    async def test_missing_table_fails(self):
        engine = memory_engine()
        with pytest.raises(SchemaContractError) as exc_info:
            await verify_schema_contract(engine)
        assert "missing table 'orders'" in exc_info.value.problems
        await engine.dispose()

    async def test_version_mismatch_fails(self, engine):
        async with engine.begin() as conn:
            await conn.execute(text("UPDATE schema_meta SET version = :v"), {"v": SCHEMA_VERSION - 1})

        with pytest.raises(SchemaContractError) as exc_info:
            await verify_schema_contract(engine)
        assert "does not match expected" in exc_info.value.detail

    async def test_unrecorded_version_fails(self):
        engine = memory_engine()
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        with pytest.raises(SchemaContractError) as exc_info:
            await verify_schema_contract(engine)
        assert exc_info.value.problems == ["schema version not recorded"]
        await engine.dispose()
