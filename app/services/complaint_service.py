# app/services/complaint_service.py
"""
Complaint service layer: creation, reads and the non-lifecycle edits.
Status changes are delegated to ComplaintLifecycle.
"""
import logging
import math
import secrets
import uuid as uuid_pkg
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import asc, desc
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, func, select

from app.core.config import settings
from app.core.constants import (
    DELETABLE_STATUSES,
    MAX_INTAKE_ATTACHMENTS,
    ComplaintCategory,
    ComplaintStatus,
    HistoryAction,
    Priority,
    UserRole,
)
from app.core.exceptions import (
    Conflict,
    InvalidAttachmentCount,
    NotFound,
    TicketCodeExhausted,
    ValidationError,
)
from app.core.policy import Action, authorize
from app.models.complaint import Complaint, ComplaintStatusHistory
from app.models.user import User
from app.services.lifecycle_service import ComplaintLifecycle, parse_status
from app.services.scope_service import NO_USERS_IN_COMPANY, CompanyScope, ScopeService

logger = logging.getLogger(__name__)

SORTABLE_FIELDS = {"created_at", "updated_at", "priority", "status", "resolution_date", "complaint_code"}

# A re-complaint can only be filed once the previous ticket reached an outcome
RE_COMPLAINT_PARENT_STATUSES = frozenset({ComplaintStatus.RESOLVED, ComplaintStatus.NOT_RESOLVED})


def generate_ticket_code(category: ComplaintCategory) -> str:
    return f"{category.value}-{secrets.randbelow(90000) + 10000}"


def _parse_category(value: Any) -> ComplaintCategory:
    try:
        return ComplaintCategory(str(value).upper())
    except ValueError:
        raise ValidationError(
            f"Invalid complaint type '{value}'",
            details={"allowed": [c.value for c in ComplaintCategory]},
        )


def _parse_priority(value: Any) -> Priority:
    try:
        return Priority(value)
    except ValueError:
        raise ValidationError(
            f"Invalid priority level '{value}'",
            details={"allowed": [p.value for p in Priority]},
        )


def _clean(value: Optional[str], field: str) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValidationError(f"{field} is required")
    return cleaned


def _check_intake_attachments(attachments: List[str]) -> None:
    if len(attachments) > MAX_INTAKE_ATTACHMENTS:
        raise InvalidAttachmentCount(
            f"A complaint can carry at most {MAX_INTAKE_ATTACHMENTS} images, got {len(attachments)}",
            details={"count": len(attachments)},
        )


def paginated(items: list, total: int, page: int, limit: int, message: Optional[str] = None) -> Dict[str, Any]:
    return {
        "items": items,
        "total": total,
        "page": page,
        "limit": limit,
        "pages": math.ceil(total / limit) if limit else 0,
        "message": message,
    }


class ComplaintService:
    def __init__(self, session: Session):
        self.session = session
        self.lifecycle = ComplaintLifecycle(session)

    # --- Lookups ---

    def get_complaint(self, complaint_id: uuid_pkg.UUID) -> Complaint:
        complaint = self.session.get(Complaint, complaint_id)
        if not complaint:
            raise NotFound(f"Complaint {complaint_id} not found")
        return complaint

    def get_for(self, complaint_id: uuid_pkg.UUID, actor: User, action: Action = Action.VIEW) -> Complaint:
        complaint = self.get_complaint(complaint_id)
        # Other companies' tickets do not exist for an administrator
        if actor.is_admin and not ScopeService(self.session).scope_for(actor).covers(complaint):
            raise NotFound(f"Complaint {complaint_id} not found")
        authorize(actor, action, complaint)
        return complaint

    def get_user(self, user_id: uuid_pkg.UUID) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFound(f"User {user_id} not found")
        return user

    def users_by_id(self, ids: Iterable[Optional[uuid_pkg.UUID]]) -> Dict[uuid_pkg.UUID, User]:
        wanted = {i for i in ids if i}
        if not wanted:
            return {}
        users = self.session.exec(select(User).where(col(User.id).in_(wanted))).all()
        return {u.id: u for u in users}

    # --- Creation ---

    def create_complaint(self, data: Dict[str, Any], actor: User) -> Complaint:
        """
        Create a complaint for the calling customer, or for data['user_id']
        when an administrator or agent files it on the customer's behalf.
        """
        owner_id = data.get("user_id")
        if owner_id and owner_id != actor.id:
            authorize(actor, Action.CREATE_ON_BEHALF)
            owner = self.get_user(owner_id)
            if not ScopeService(self.session).scope_for(actor).includes_user(owner):
                raise NotFound(f"User {owner_id} not found")
            if owner.role != UserRole.USER.value:
                raise ValidationError(f"User {owner.username} is not a customer")
        else:
            authorize(actor, Action.CREATE)
            owner = actor

        category = _parse_category(data.get("type"))
        priority = _parse_priority(data.get("priority") or Priority.MEDIUM.value)
        attachments = list(data.get("attachments") or [])
        _check_intake_attachments(attachments)
        title = _clean(data.get("title"), "Title")
        if len(title) > 200:
            raise ValidationError("Title must be at most 200 characters")
        fields = dict(
            user_id=owner.id,
            title=title,
            description=_clean(data.get("description"), "Description"),
            issue_type=_clean(data.get("issue_type"), "Issue type"),
            phone_number=_clean(data.get("phone_number") or owner.phone_number, "Phone number"),
            type=category.value,
            priority=priority.value,
            attachments=attachments,
            parent_complaint_id=data.get("parent_complaint_id"),
            is_re_complaint=bool(data.get("parent_complaint_id")),
        )
        return self._open_with_unique_code(category, fields, actor, data.get("remarks"))

    def _open_with_unique_code(
        self, category: ComplaintCategory, fields: Dict[str, Any], actor: User, remarks: Optional[str]
    ) -> Complaint:
        for attempt in range(1, settings.ticket_code_attempts + 1):
            code = generate_ticket_code(category)
            taken = self.session.exec(select(Complaint.id).where(Complaint.complaint_code == code)).first()
            if taken:
                logger.debug("Ticket code %s taken (attempt %d)", code, attempt)
                continue
            try:
                complaint = self.lifecycle.open(Complaint(complaint_code=code, **fields), actor, remarks)
            except IntegrityError:
                # Lost a race for the same code
                self.session.rollback()
                logger.warning("Ticket code %s collided on insert (attempt %d)", code, attempt)
                continue
            logger.info("Complaint %s created for user %s", complaint.complaint_code, complaint.user_id)
            return complaint
        raise TicketCodeExhausted(f"Could not allocate a unique {category.value} ticket code")

    def file_re_complaint(self, parent: Complaint, actor: User, description: Optional[str] = None) -> Complaint:
        """Open a new ticket linked to a previous one for a recurring issue."""
        authorize(actor, Action.RE_COMPLAIN, parent)
        if ComplaintStatus(parent.status) not in RE_COMPLAINT_PARENT_STATUSES:
            raise Conflict(
                f"Complaint {parent.complaint_code} is '{parent.status}'; "
                "a re-complaint needs a resolved or not resolved ticket"
            )
        child = self._open_with_unique_code(
            ComplaintCategory(parent.type),
            dict(
                user_id=parent.user_id,
                title=parent.title,
                description=(description or "").strip() or parent.description,
                issue_type=parent.issue_type,
                phone_number=parent.phone_number,
                type=parent.type,
                priority=parent.priority,
                attachments=[],
                parent_complaint_id=parent.id,
                is_re_complaint=True,
            ),
            actor,
            f"Re-complaint of {parent.complaint_code}",
        )
        self.lifecycle.annotate(
            parent,
            actor,
            HistoryAction.RE_COMPLAINT_FILED,
            f"Issue reported again as {child.complaint_code}",
            details={"re_complaint_id": str(child.id), "re_complaint_code": child.complaint_code},
        )
        return child

    # --- Status updates ---

    def update_status(
        self,
        complaint: Complaint,
        actor: User,
        status: Any,
        *,
        remark: Optional[str] = None,
        not_resolved_reason: Optional[str] = None,
        resolution_notes: Optional[str] = None,
        resolved: Optional[bool] = None,
        version: Optional[int] = None,
    ) -> Complaint:
        authorize(actor, Action.UPDATE_STATUS, complaint)
        target = parse_status(status)
        if target == ComplaintStatus.RESOLVED:
            raise ValidationError(
                "Resolving a complaint requires resolution images; use the close endpoint"
            )
        if resolved is not None and resolved != (target == ComplaintStatus.RESOLVED):
            raise ValidationError(f"resolved={resolved} contradicts status '{target.value}'")

        def apply(c: Complaint) -> None:
            if remark:
                c.remark = remark.strip()
            if not_resolved_reason:
                c.not_resolved_reason = not_resolved_reason.strip()
            if resolution_notes:
                c.resolution_notes = resolution_notes.strip()

        return self.lifecycle.transition(
            complaint,
            target,
            actor,
            resolution_notes or remark or not_resolved_reason,
            details={k: v for k, v in (("remark", remark), ("not_resolved_reason", not_resolved_reason)) if v},
            apply=apply,
            expected_version=version,
        )

    # --- Attachments ---

    def ensure_room_for(self, complaint: Complaint, count: int, actor: User) -> None:
        """Check the intake cap for `count` more images before they are stored."""
        authorize(actor, Action.MANAGE_ATTACHMENTS, complaint)
        total = len(complaint.attachments or []) + count
        if total > MAX_INTAKE_ATTACHMENTS:
            raise InvalidAttachmentCount(
                f"A complaint can carry at most {MAX_INTAKE_ATTACHMENTS} images, "
                f"it has {len(complaint.attachments or [])} and {count} were sent",
                details={"count": total},
            )

    def add_attachments(self, complaint: Complaint, urls: List[str], actor: User) -> Complaint:
        authorize(actor, Action.MANAGE_ATTACHMENTS, complaint)
        merged = list(complaint.attachments or []) + [u for u in urls if u not in (complaint.attachments or [])]
        _check_intake_attachments(merged)

        def apply(c: Complaint) -> None:
            c.attachments = merged

        return self.lifecycle.update_fields(complaint, apply)

    def remove_attachment(self, complaint: Complaint, url: str, actor: User) -> Complaint:
        authorize(actor, Action.MANAGE_ATTACHMENTS, complaint)
        if url not in (complaint.attachments or []):
            raise NotFound(f"Attachment not found on complaint {complaint.complaint_code}")
        remaining = [u for u in complaint.attachments if u != url]

        def apply(c: Complaint) -> None:
            c.attachments = remaining

        return self.lifecycle.update_fields(complaint, apply)

    # --- Deletion ---

    def delete_complaint(self, complaint: Complaint, actor: User) -> None:
        authorize(actor, Action.DELETE, complaint)
        if ComplaintStatus(complaint.status) not in DELETABLE_STATUSES:
            raise Conflict(
                f"Cannot delete complaint {complaint.complaint_code}: status is '{complaint.status}', "
                "only pending or cancelled complaints can be deleted"
            )
        child_code = self.session.exec(
            select(Complaint.complaint_code).where(Complaint.parent_complaint_id == complaint.id)
        ).first()
        if child_code:
            raise Conflict(
                f"Cannot delete complaint {complaint.complaint_code}: re-complaint {child_code} refers to it",
                details={"re_complaint_code": child_code},
            )
        self.session.delete(complaint)
        self.session.commit()
        logger.info("Complaint %s deleted by %s", complaint.complaint_code, actor.username)

    # --- History ---

    def status_history(self, complaint: Complaint) -> List[ComplaintStatusHistory]:
        return self.lifecycle.history(complaint)

    # --- Listings ---

    def _filtered(self, statement, filters: Dict[str, Any]):
        if filters.get("status"):
            statement = statement.where(Complaint.status == parse_status(filters["status"]).value)
        if filters.get("priority"):
            statement = statement.where(Complaint.priority == _parse_priority(filters["priority"]).value)
        if filters.get("issue_type"):
            statement = statement.where(Complaint.issue_type == filters["issue_type"])
        if filters.get("type"):
            statement = statement.where(Complaint.type == _parse_category(filters["type"]).value)
        if filters.get("start_date"):
            statement = statement.where(Complaint.created_at >= filters["start_date"])
        if filters.get("end_date"):
            statement = statement.where(Complaint.created_at <= filters["end_date"])
        return statement

    def _page(
        self,
        base_filter,
        filters: Dict[str, Any],
        page: int,
        limit: int,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> Dict[str, Any]:
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive")
        if sort_by not in SORTABLE_FIELDS:
            raise ValidationError(f"Cannot sort by '{sort_by}'", details={"allowed": sorted(SORTABLE_FIELDS)})
        order = desc if sort_order == "desc" else asc

        query = self._filtered(base_filter(select(Complaint)), filters)
        count_query = self._filtered(base_filter(select(func.count()).select_from(Complaint)), filters)
        total = self.session.exec(count_query).one()
        items = self.session.exec(
            query.order_by(order(getattr(Complaint, sort_by))).offset((page - 1) * limit).limit(limit)
        ).all()
        return paginated(list(items), total, page, limit)

    def list_scoped(
        self,
        scope: CompanyScope,
        filters: Dict[str, Any],
        page: int = 1,
        limit: int = 10,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> Dict[str, Any]:
        if scope.is_empty:
            return paginated([], 0, page, limit, NO_USERS_IN_COMPANY)
        return self._page(scope.apply, filters, page, limit, sort_by, sort_order)

    def list_for_customer(
        self, customer: User, status: Optional[str] = None, page: int = 1, limit: int = 10,
        sort_by: str = "created_at", sort_order: str = "desc",
    ) -> Dict[str, Any]:
        result = self._page(
            lambda s: s.where(Complaint.user_id == customer.id),
            {"status": status}, page, limit, sort_by, sort_order,
        )
        result["summary"] = self.customer_summary(customer)
        return result

    def list_for_engineer(
        self, engineer: User, status: Optional[str] = None, page: int = 1, limit: int = 10
    ) -> Dict[str, Any]:
        authorize(engineer, Action.LIST_ASSIGNED)
        return self._page(lambda s: s.where(Complaint.engineer_id == engineer.id), {"status": status}, page, limit)

    def customer_summary(self, customer: User) -> Dict[str, Any]:
        rows = self.session.exec(
            select(Complaint.status, func.count())
            .where(Complaint.user_id == customer.id)
            .group_by(Complaint.status)
            .order_by(desc(func.count()))
        ).all()
        spans = self.session.exec(
            select(Complaint.created_at, Complaint.resolution_date).where(
                Complaint.user_id == customer.id,
                Complaint.status == ComplaintStatus.RESOLVED.value,
                col(Complaint.resolution_date).is_not(None),
            )
        ).all()
        hours = [(resolved_at - created).total_seconds() / 3600 for created, resolved_at in spans]
        return {
            "status_counts": [{"status": s, "count": n} for s, n in rows],
            "resolution_stats": {
                "avg_resolution_time": round(sum(hours) / len(hours), 2) if hours else 0,
                "total_resolved": len(hours),
            },
        }
