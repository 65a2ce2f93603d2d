from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from app.core.config import settings
from app.db.engine_sync import get_sync_session

router = APIRouter()

@router.get("/health", tags=["System"])
def get_system_health(session: Session = Depends(get_sync_session)):
    """
    Returns the system health status including:
    - Database reachability
    - Whether closure notifications are delivered or only logged
    """
    try:
        session.connection().execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError:
        database = "unavailable"

    return {
        "status": "ok" if database == "ok" else "degraded",
        "database": database,
        "notifications": "webhook" if settings.notify_webhook_url else "log-only",
    }
