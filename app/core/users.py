# app/core/users.py
"""
FastAPI Users configuration and authentication setup.
Identity issuance lives here; complaint services only see the resulting User.
"""
import logging
import uuid
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi_users import BaseUserManager, FastAPIUsers, UUIDIDMixin
from fastapi_users.authentication import (
    AuthenticationBackend,
    BearerTransport,
    CookieTransport,
    JWTStrategy,
)
from fastapi_users.db import SQLAlchemyUserDatabase
from fastapi_users.password import PasswordHelper
from passlib.context import CryptContext
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.constants import ADMIN_ROLES, UserRole
from app.db.engine import get_session
from app.models.user import User

logger = logging.getLogger(__name__)

# --- Configuration ---
SECRET = settings.secret_key
if not SECRET:
    raise RuntimeError("FATAL: SECRET_KEY not configured in .env")

ACCESS_TOKEN_COOKIE_NAME = "complaintdesk_access_token"
ACCESS_TOKEN_LIFETIME_SECONDS = 28800  # 8 hours (standard work day)

# --- Authentication Transports ---
# 1. Bearer Token Transport (mobile apps and API access)
bearer_transport = BearerTransport(tokenUrl="auth/jwt/login")

# 2. Cookie Transport (admin panel)
cookie_transport = CookieTransport(
    cookie_name=ACCESS_TOKEN_COOKIE_NAME,
    cookie_max_age=ACCESS_TOKEN_LIFETIME_SECONDS,
    cookie_httponly=True,
    cookie_secure=(settings.app_env == "production"),
    cookie_samesite="lax",
)


def get_jwt_strategy() -> JWTStrategy:
    """Returns JWT strategy for token generation and validation"""
    return JWTStrategy(secret=SECRET, lifetime_seconds=ACCESS_TOKEN_LIFETIME_SECONDS)


auth_backend_jwt = AuthenticationBackend(
    name="jwt",
    transport=bearer_transport,
    get_strategy=get_jwt_strategy,
)

auth_backend_cookie = AuthenticationBackend(
    name="cookie",
    transport=cookie_transport,
    get_strategy=get_jwt_strategy,
)


# --- User Manager ---
class UserManager(UUIDIDMixin, BaseUserManager[User, uuid.UUID]):
    reset_password_token_secret = SECRET
    verification_token_secret = SECRET

    async def on_after_register(self, user: User, request: Optional[Request] = None):
        logger.info("User registered: %s (%s, role=%s)", user.username, user.email, user.role)

    async def on_after_login(
        self, user: User, request: Optional[Request] = None, response=None
    ):
        logger.info("User logged in: %s", user.username)

    async def on_after_forgot_password(
        self, user: User, token: str, request: Optional[Request] = None
    ):
        logger.info("Password reset requested for: %s", user.username)


class SQLAlchemyUserDatabaseByUsername(SQLAlchemyUserDatabase):
    """
    Looks users up by username instead of email, so the login form's
    'username' field is the username.
    """

    async def get_by_email(self, email: str) -> Optional[User]:
        from sqlalchemy import select

        statement = select(self.user_table).where(self.user_table.username == email)
        result = await self.session.execute(statement)
        return result.scalar_one_or_none()


async def get_user_db(session: AsyncSession = Depends(get_session)):
    yield SQLAlchemyUserDatabaseByUsername(session, User)


# --- Argon2 Password Helper ---
argon2_context = CryptContext(schemes=["argon2"], deprecated="auto")
password_helper = PasswordHelper(argon2_context)


async def get_user_manager(user_db=Depends(get_user_db)):
    yield UserManager(user_db, password_helper)


fastapi_users = FastAPIUsers[User, uuid.UUID](
    get_user_manager,
    [auth_backend_jwt, auth_backend_cookie],
)

current_active_user = fastapi_users.current_user(active=True)


# --- Role-Based Access Control ---
VALID_ROLES = [role.value for role in UserRole]


class RoleChecker:
    """
    Dependency class to check if the current user has one of the allowed roles.

    Usage:
        @router.get("/admin-only")
        def admin_endpoint(user: User = Depends(RoleChecker(["admin"]))):
            ...
    """

    def __init__(self, allowed_roles):
        self.allowed_roles = list(allowed_roles)

    def __call__(self, user: User = Depends(current_active_user)) -> User:
        if user.role not in self.allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required role: {', '.join(sorted(self.allowed_roles))}. Your role: {user.role}",
            )
        return user


require_admin = RoleChecker(ADMIN_ROLES)
