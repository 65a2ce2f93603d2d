# app/services/scope_service.py
"""
Company (tenant) boundary for administrative reads and writes.

An administrator only sees complaints filed by customers whose
assigned_company_id is that administrator. A company without customers
gets an explicit empty scope, never the unscoped table.
"""
import uuid as uuid_pkg
from dataclasses import dataclass
from typing import FrozenSet, Optional

from sqlmodel import Session, col, select

from app.core.constants import UserRole
from app.models.complaint import Complaint
from app.models.user import User

NO_USERS_IN_COMPANY = "No users in company"


@dataclass(frozen=True)
class CompanyScope:
    """
    customer_ids is None only for unscoped callers (superadmin).
    An empty frozenset means the company has no customers.
    """

    company_id: Optional[uuid_pkg.UUID]
    customer_ids: Optional[FrozenSet[uuid_pkg.UUID]]

    @property
    def unscoped(self) -> bool:
        return self.customer_ids is None

    @property
    def is_empty(self) -> bool:
        return self.customer_ids is not None and not self.customer_ids

    def covers(self, complaint: Complaint) -> bool:
        return self.unscoped or complaint.user_id in self.customer_ids

    def includes_user(self, user: User) -> bool:
        return self.unscoped or user.id in self.customer_ids

    def apply(self, statement):
        """Restrict a statement that selects from Complaint to this scope."""
        if self.unscoped:
            return statement
        return statement.where(col(Complaint.user_id).in_(self.customer_ids))


class ScopeService:
    def __init__(self, session: Session):
        self.session = session

    def scoped_customer_ids(self, company_id: uuid_pkg.UUID) -> FrozenSet[uuid_pkg.UUID]:
        statement = select(User.id).where(User.assigned_company_id == company_id)
        return frozenset(self.session.exec(statement).all())

    def scope_for(self, actor: User) -> CompanyScope:
        if actor.role == UserRole.SUPERADMIN.value:
            return CompanyScope(company_id=None, customer_ids=None)
        # Administrators are the company; agents work for the one they belong to
        company_id = actor.id if actor.is_admin else actor.assigned_company_id
        if company_id is None:
            return CompanyScope(company_id=None, customer_ids=frozenset())
        return CompanyScope(company_id=company_id, customer_ids=self.scoped_customer_ids(company_id))
