# app/db/engine.py
"""
Async SQLModel engine and session management for FastAPI Users.
Uses AsyncSession for compatibility with fastapi-users-db-sqlalchemy.
Points at the same database as app.db.engine_sync (DATABASE_URL).
"""

from collections.abc import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.config import settings

# Import models so every table is registered on SQLModel.metadata
from app import models  # noqa: F401

_connect_args = {"check_same_thread": False} if settings.is_sqlite else {}
engine = create_async_engine(settings.async_database_url, echo=False, connect_args=_connect_args)


if settings.is_sqlite:
    @event.listens_for(engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL;")
        cursor.close()

async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for async SQLModel session injection.
    Usage: session: AsyncSession = Depends(get_session)
    """
    async with async_session_maker() as session:
        yield session


async def create_db_and_tables():
    """
    Create all tables defined in SQLModel models.
    Called at application startup.
    """
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
