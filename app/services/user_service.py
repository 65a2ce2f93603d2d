# app/services/user_service.py
"""
User administration. Administrators manage the customers, engineers and
agents of their own company; the superadmin manages everyone.
"""
import logging
import uuid as uuid_pkg
from typing import List, Optional

from sqlmodel import Session, or_, select

from ..core.constants import UserRole
from ..core.exceptions import Conflict, Forbidden, NotFound, ValidationError
from ..core.users import VALID_ROLES, password_helper
from ..models.complaint import Complaint
from ..models.user import User
from ..schemas.user import UserCreate, UserUpdate

logger = logging.getLogger(__name__)

# Roles an ordinary administrator may hand out
COMPANY_ROLES = frozenset({UserRole.USER.value, UserRole.ENGINEER.value, UserRole.AGENT.value})


def _is_superadmin(user: User) -> bool:
    return user.role == UserRole.SUPERADMIN.value


class UserService:
    def __init__(self, session: Session):
        self.session = session

    def _check_role(self, role: str, actor: User) -> None:
        if role not in VALID_ROLES:
            raise ValidationError(f"Unknown role '{role}'", details={"allowed": VALID_ROLES})
        if not _is_superadmin(actor) and role not in COMPANY_ROLES:
            raise Forbidden(f"Only the superadmin can grant the '{role}' role")

    def _managed(self, user_id: uuid_pkg.UUID, actor: User) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFound(f"User {user_id} not found")
        if not _is_superadmin(actor) and user.assigned_company_id != actor.id:
            raise NotFound(f"User {user_id} not found")
        return user

    def _ensure_unique(self, username: Optional[str], email: Optional[str], exclude_id=None) -> None:
        conditions = []
        if username:
            conditions.append(User.username == username)
        if email:
            conditions.append(User.email == email)
        if not conditions:
            return
        statement = select(User).where(or_(*conditions))
        if exclude_id:
            statement = statement.where(User.id != exclude_id)
        if self.session.exec(statement).first():
            raise Conflict("Username or email already registered")

    def get_users(self, actor: User, role: Optional[str] = None) -> List[User]:
        statement = select(User)
        if not _is_superadmin(actor):
            statement = statement.where(User.assigned_company_id == actor.id)
        if role:
            statement = statement.where(User.role == role)
        return list(self.session.exec(statement.order_by(User.username)).all())

    def create_user(self, user_create: UserCreate, actor: User) -> User:
        self._check_role(user_create.role, actor)
        self._ensure_unique(user_create.username, user_create.email)

        company_id = user_create.assigned_company_id if _is_superadmin(actor) else actor.id
        db_user = User(
            username=user_create.username,
            email=user_create.email,
            hashed_password=password_helper.hash(user_create.password),
            role=user_create.role,
            first_name=user_create.first_name,
            last_name=user_create.last_name,
            phone_number=user_create.phone_number,
            assigned_company_id=company_id,
        )
        self.session.add(db_user)
        self.session.commit()
        self.session.refresh(db_user)
        logger.info("User %s (%s) created by %s", db_user.username, db_user.role, actor.username)
        return db_user

    def update_user(self, user_id: uuid_pkg.UUID, user_update: UserUpdate, actor: User) -> User:
        db_user = self._managed(user_id, actor)
        update_data = user_update.model_dump(exclude_unset=True)

        if update_data.get("role"):
            self._check_role(update_data["role"], actor)
        if not _is_superadmin(actor):
            update_data.pop("assigned_company_id", None)
        self._ensure_unique(update_data.get("username"), update_data.get("email"), exclude_id=db_user.id)

        if "disabled" in update_data:
            db_user.is_active = not update_data.pop("disabled")

        password = update_data.pop("password", None)
        if password:
            db_user.hashed_password = password_helper.hash(password)

        for key, value in update_data.items():
            if value is not None and hasattr(db_user, key):
                setattr(db_user, key, value)

        self.session.add(db_user)
        self.session.commit()
        self.session.refresh(db_user)
        return db_user

    def delete_user(self, user_id: uuid_pkg.UUID, actor: User) -> User:
        db_user = self._managed(user_id, actor)
        if db_user.id == actor.id:
            raise Forbidden("You cannot delete your own account")
        owned = self.session.exec(
            select(Complaint.id).where(or_(Complaint.user_id == db_user.id, Complaint.engineer_id == db_user.id))
        ).first()
        if owned:
            raise Conflict(f"User {db_user.username} still has complaints; disable the account instead")
        self.session.delete(db_user)
        self.session.commit()
        logger.info("User %s deleted by %s", db_user.username, actor.username)
        return db_user
