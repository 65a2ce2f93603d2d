# app/main.py
import logging
import os
from dotenv import load_dotenv

# Load environment variables from .env BEFORE anything else
load_dotenv()

from fastapi import FastAPI, Request
from fastapi.staticfiles import StaticFiles
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware

# SlowAPI (Rate Limiting)
from slowapi.errors import RateLimitExceeded

# FastAPI Users imports
from .core.users import (
    fastapi_users,
    auth_backend_jwt,
    auth_backend_cookie,
)
from .schemas.user import UserRead, UserSelfUpdate
from .db.engine import create_db_and_tables

# Shared Core Modules
from .core.config import settings
from .core.exceptions import ComplaintError
from .core.limiter import limiter

# API Routers
from .api import health
from .api.complaints import main as complaints_main_api
from .api.users import main as users_main_api

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="ISP Complaint Desk", version="1.0.0")


# --- Database Initialization ---
@app.on_event("startup")
async def on_startup():
    """Initialize database tables on application startup"""
    await create_db_and_tables()
    logger.info("Database tables initialized")


# --- SlowAPI configuration ---
app.state.limiter = limiter


async def custom_rate_limit_handler(request: Request, exc: RateLimitExceeded):
    logger.warning("Rate limit exceeded on %s from %s", request.url.path, request.client.host if request.client else "?")
    return JSONResponse(
        content={"detail": f"Rate limit exceeded: {exc.detail}", "error_code": "RateLimitExceeded"},
        status_code=429,
    )


app.add_exception_handler(RateLimitExceeded, custom_rate_limit_handler)


# ============================================================================
# --- DOMAIN EXCEPTION HANDLER ---
# ============================================================================
@app.exception_handler(ComplaintError)
async def complaint_error_handler(request: Request, exc: ComplaintError):
    if exc.status_code >= 500:
        logger.error("%s on %s: %s", exc.error_code, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error_code": exc.error_code, "details": exc.details},
    )


# ============================================================================
# --- SECURITY: STRICT CORS ---
# ============================================================================
origins = settings.allowed_origins.split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ============================================================================
# --- SECURITY: TRUSTED HOSTS ---
# ============================================================================
allowed_hosts = settings.allowed_hosts.split(",")
app.add_middleware(TrustedHostMiddleware, allowed_hosts=allowed_hosts)


# ============================================================================
# --- SECURITY: HTTP SECURITY HEADERS ---
# ============================================================================
@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


# --- Uploaded images ---
os.makedirs(settings.upload_dir, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=settings.upload_dir), name="uploads")


# ============================================================================
# --- ROUTERS INCLUSION ---
# ============================================================================

# 1. FastAPI Users Routers. Accounts are created by administrators
# through /api/users, so there is no public registration router.
app.include_router(
    fastapi_users.get_auth_router(auth_backend_jwt),
    prefix="/auth/jwt",
    tags=["FastAPI Users - JWT Auth"],
)
app.include_router(
    fastapi_users.get_auth_router(auth_backend_cookie),
    prefix="/auth/cookie",
    tags=["FastAPI Users - Cookie Auth"],
)
app.include_router(
    fastapi_users.get_users_router(UserRead, UserSelfUpdate),
    prefix="/users",
    tags=["FastAPI Users - Users Management"],
)

# 2. Domain API Routers
app.include_router(health.router, prefix="/api")
app.include_router(complaints_main_api.router, prefix="/api", tags=["Complaints"])
app.include_router(users_main_api.router, prefix="/api", tags=["Users"])
