# app/schemas/__init__.py
"""Pydantic schemas package"""
from .user import UserRead, UserCreate, UserUpdate, UserSelfUpdate

__all__ = ["UserRead", "UserCreate", "UserUpdate", "UserSelfUpdate"]
