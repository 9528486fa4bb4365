"""
Database Connection Module
Handles the async SQLAlchemy engine, session factory and the schema
contract check that runs once at startup.
"""

import logging
from typing import AsyncIterator, Optional

from sqlalchemy import inspect, select
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.core.config import get_settings
from app.core.errors import SchemaContractError

logger = logging.getLogger(__name__)


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine; pool sizing only applies to server databases."""
    if database_url.startswith("sqlite"):
        return create_async_engine(database_url, echo=echo)
    return create_async_engine(
        database_url,
        echo=echo,
        pool_size=5,  # Connection pool size
        max_overflow=10,  # Extra connections when pool is full
    )


settings = get_settings()

engine = build_engine(settings.database_url, echo=settings.database_echo)

# Session factory - creates new database sessions
async_session_maker = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,  # Objects remain accessible after commit
)


# Base class for all our models
class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncIterator[AsyncSession]:
    """
    Dependency injection for FastAPI routes.
    Yields a database session and ensures cleanup.
    """
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db(bind: Optional[AsyncEngine] = None) -> None:
    """
    Create all tables and record the schema version.
    Called once at application startup in development.
    """
    from app.models import SCHEMA_VERSION, SchemaMeta

    bind = bind or engine
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_maker = async_sessionmaker(bind=bind, class_=AsyncSession, expire_on_commit=False)
    async with session_maker() as session:
        meta = await session.get(SchemaMeta, 1)
        if meta is None:
            session.add(SchemaMeta(id=1, version=SCHEMA_VERSION))
            await session.commit()
            logger.info(f"Recorded schema version {SCHEMA_VERSION}")

    logger.info("Database tables created successfully")


def _missing_columns(sync_conn, contract: dict[str, set[str]]) -> list[str]:
    inspector = inspect(sync_conn)
    tables = set(inspector.get_table_names())
    problems = []
    for table, columns in contract.items():
        if table not in tables:
            problems.append(f"missing table '{table}'")
            continue
        present = {c["name"] for c in inspector.get_columns(table)}
        for column in sorted(columns - present):
            problems.append(f"missing column '{table}.{column}'")
    return problems


async def verify_schema_contract(bind: Optional[AsyncEngine] = None) -> None:
    """
    Compare the live database with the schema the models expect.

    Raises:
        SchemaContractError: listing every missing table/column or a
            version mismatch. The application must not serve requests
            against a database that fails this check.
    """
    from app.models import REQUIRED_COLUMNS, SCHEMA_VERSION, SchemaMeta

    bind = bind or engine
    async with bind.connect() as conn:
        problems = await conn.run_sync(_missing_columns, REQUIRED_COLUMNS)
        if not problems:
            result = await conn.execute(select(SchemaMeta.version).where(SchemaMeta.id == 1))
            version = result.scalar_one_or_none()
            if version is None:
                problems.append("schema version not recorded")
            elif version != SCHEMA_VERSION:
                problems.append(
                    f"schema version {version} does not match expected {SCHEMA_VERSION}"
                )

    if problems:
        logger.error(f"Schema contract failed: {problems}")
        raise SchemaContractError(problems)

    logger.info(f"Schema contract v{SCHEMA_VERSION} verified")
