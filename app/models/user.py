# app/models/user.py
"""
User model for FastAPI Users with SQLModel.
Combines FastAPI Users base fields with the complaint desk fields.
"""

import uuid as uuid_pkg
from typing import Optional

from sqlmodel import Field, SQLModel

from app.core.constants import ADMIN_ROLES, UserRole


class User(SQLModel, table=True):
    """
    Every actor of the complaint desk: customers, engineers and administrators.

    FastAPI Users provides minimal required fields, we add:
    - username: unique username for login
    - role: user, engineer, agent, admin, manager or superadmin
    - assigned_company_id: for customers, the administrator (company) that
      owns them. Company-scoped reads filter on this column.
    - first_name / last_name / phone_number: contact data shown on tickets
    """

    __tablename__ = "users"

    # FastAPI Users required fields
    id: uuid_pkg.UUID = Field(default_factory=uuid_pkg.uuid4, primary_key=True, nullable=False)
    email: str = Field(unique=True, index=True, nullable=False, max_length=320)
    hashed_password: str = Field(nullable=False, max_length=1024)
    is_active: bool = Field(default=True, nullable=False)
    is_superuser: bool = Field(default=False, nullable=False)
    is_verified: bool = Field(default=False, nullable=False)

    # Custom fields
    username: str = Field(index=True, unique=True, nullable=False, max_length=100)
    role: str = Field(default=UserRole.USER.value, max_length=50, index=True)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    phone_number: Optional[str] = Field(default=None, max_length=30)
    assigned_company_id: Optional[uuid_pkg.UUID] = Field(
        default=None, foreign_key="users.id", index=True
    )

    @property
    def disabled(self) -> bool:
        return not self.is_active

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    @property
    def is_engineer(self) -> bool:
        return self.role == UserRole.ENGINEER.value

    @property
    def display_name(self) -> str:
        full = " ".join(p for p in (self.first_name, self.last_name) if p)
        return full or self.username
