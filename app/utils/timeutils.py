from datetime import datetime, timezone


def utcnow() -> datetime:
    """Timezone-aware UTC timestamp, as stored by UTCDateTime columns."""
    return datetime.now(timezone.utc)
