# app/core/limiter.py
"""
Shared SlowAPI limiter. Routers decorate endpoints with @limiter.limit(...)
and app.main registers it on app.state.
"""
from slowapi import Limiter
from slowapi.util import get_remote_address

from app.core.config import settings

limiter = Limiter(key_func=get_remote_address, enabled=settings.rate_limit_enabled)
