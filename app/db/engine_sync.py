# app/db/engine_sync.py
"""
SYNC engine used by the complaint services and routers.
SQLite runs in WAL mode to improve concurrency.
"""
import os
from typing import Generator

from sqlalchemy import event
from sqlmodel import Session, create_engine

from app.core.config import settings

if settings.is_sqlite and settings.database_url.startswith("sqlite:///"):
    os.makedirs(os.path.dirname(settings.database_url[len("sqlite:///"):]) or ".", exist_ok=True)

_connect_args = {"check_same_thread": False} if settings.is_sqlite else {}
sync_engine = create_engine(settings.database_url, echo=False, connect_args=_connect_args)


# Activate WAL mode to avoid "database is locked"
if settings.is_sqlite:
    @event.listens_for(sync_engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL;")
        cursor.execute("PRAGMA foreign_keys=ON;")
        cursor.close()


def get_sync_session() -> Generator[Session, None, None]:
    """
    Dependency for SYNC SQLModel session injection.
    Usage: session: Session = Depends(get_sync_session)
    """
    with Session(sync_engine) as session:
        yield session
