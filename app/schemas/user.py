# app/schemas/user.py
"""
Pydantic schemas for FastAPI Users and the user administration API.
These schemas control what data is sent/received via the API.
"""
from typing import Optional
from fastapi_users import schemas
import uuid


class UserRead(schemas.BaseUser[uuid.UUID]):
    """
    Schema for reading user data (API responses).
    Includes all safe-to-expose user fields.
    """

    username: str
    role: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone_number: Optional[str] = None
    assigned_company_id: Optional[uuid.UUID] = None
    disabled: bool


class UserCreate(schemas.BaseUserCreate):
    """
    Schema for creating users from the administration API.
    Customers default to the creating administrator's company.
    """

    username: str
    email: str
    password: str
    role: str = "user"
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone_number: Optional[str] = None
    assigned_company_id: Optional[uuid.UUID] = None


class UserUpdate(schemas.BaseUserUpdate):
    """
    Administrative update. All fields are optional.
    """

    username: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    role: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone_number: Optional[str] = None
    assigned_company_id: Optional[uuid.UUID] = None
    disabled: Optional[bool] = None


class UserSelfUpdate(schemas.BaseUserUpdate):
    """Fields a user may change on their own account (/users/me)."""

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone_number: Optional[str] = None
