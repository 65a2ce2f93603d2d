# app/services/assignment_service.py
"""
Engineer assignment bookkeeping on top of the lifecycle engine.
"""
import logging
import uuid as uuid_pkg
from typing import List, Optional

from sqlmodel import Session

from app.core.constants import REASSIGNMENT_TERMINAL, ComplaintStatus, HistoryAction, Priority
from app.core.exceptions import AlreadyAssigned, NotAnEngineer, NotFound, NotReassignable, ValidationError
from app.models.complaint import Complaint, ComplaintStatusHistory
from app.models.user import User
from app.services.lifecycle_service import ComplaintLifecycle

logger = logging.getLogger(__name__)


class AssignmentService:
    def __init__(self, session: Session):
        self.session = session
        self.lifecycle = ComplaintLifecycle(session)

    def _get_engineer(self, engineer_id: uuid_pkg.UUID) -> User:
        engineer = self.session.get(User, engineer_id)
        if not engineer:
            raise NotFound(f"Engineer {engineer_id} not found")
        if not engineer.is_engineer:
            raise NotAnEngineer(f"User {engineer.username} is not an engineer")
        if not engineer.is_active:
            raise NotAnEngineer(f"Engineer {engineer.username} is disabled")
        return engineer

    @staticmethod
    def _ensure_reassignable(complaint: Complaint) -> None:
        if ComplaintStatus(complaint.status) in REASSIGNMENT_TERMINAL:
            raise NotReassignable(
                f"Complaint {complaint.complaint_code} is '{complaint.status}' and cannot be (re)assigned",
                details={"status": complaint.status},
            )

    @staticmethod
    def _ensure_new_engineer(complaint: Complaint, engineer_id: uuid_pkg.UUID) -> None:
        if complaint.engineer_id is not None and complaint.engineer_id == engineer_id:
            raise AlreadyAssigned(
                f"Complaint {complaint.complaint_code} is already assigned to this engineer"
            )

    def assign(
        self,
        complaint: Complaint,
        engineer_id: uuid_pkg.UUID,
        admin: User,
        priority: Optional[str] = None,
    ) -> Complaint:
        """
        Bind an engineer and the assigning admin, moving the complaint to
        'assigned'. A complaint that already has an engineer is under the
        reassignment rules.
        """
        if priority is not None:
            try:
                priority = Priority(priority).value
            except ValueError:
                raise ValidationError(f"Invalid priority level '{priority}'")
        if complaint.engineer_id is not None:
            self._ensure_reassignable(complaint)
            self._ensure_new_engineer(complaint, engineer_id)
        engineer = self._get_engineer(engineer_id)

        def apply(c: Complaint) -> None:
            c.engineer_id = engineer.id
            c.assigned_by_id = admin.id
            if priority:
                c.priority = priority

        details = {"engineer_id": str(engineer.id), "assigned_by": str(admin.id)}
        if priority:
            details["priority"] = priority
        return self.lifecycle.transition(
            complaint,
            ComplaintStatus.ASSIGNED,
            admin,
            f"Engineer {engineer.display_name} assigned",
            action=HistoryAction.ENGINEER_ASSIGNED,
            details=details,
            apply=apply,
        )

    def reassign(self, complaint: Complaint, new_engineer_id: uuid_pkg.UUID, admin: User) -> Complaint:
        """
        Hand the complaint to another engineer. The status goes back to
        'assigned' and the previous engineer is kept in the history entry.
        """
        self._ensure_reassignable(complaint)
        self._ensure_new_engineer(complaint, new_engineer_id)
        engineer = self._get_engineer(new_engineer_id)
        previous_engineer_id = complaint.engineer_id
        logger.info(
            "Reassigning complaint %s from %s to %s",
            complaint.complaint_code, previous_engineer_id, engineer.username,
        )

        def apply(c: Complaint) -> None:
            c.engineer_id = engineer.id
            c.assigned_by_id = admin.id

        return self.lifecycle.transition(
            complaint,
            ComplaintStatus.ASSIGNED,
            admin,
            f"Complaint reassigned to {engineer.display_name}",
            action=HistoryAction.ENGINEER_ASSIGNED,
            details={
                "engineer_id": str(engineer.id),
                "assigned_by": str(admin.id),
                "previous_engineer_id": str(previous_engineer_id) if previous_engineer_id else None,
                "reassigned": True,
            },
            additional_info=f"Previous engineer: {previous_engineer_id}" if previous_engineer_id else None,
            apply=apply,
        )

    def has_engineer_assigned(self, complaint: Complaint) -> bool:
        # A raw engineer_id write without an audit entry does not count
        return complaint.engineer_id is not None and bool(
            self.lifecycle.entries_for(complaint, HistoryAction.ENGINEER_ASSIGNED)
        )

    def engineer_assignment_history(self, complaint: Complaint) -> List[ComplaintStatusHistory]:
        return self.lifecycle.entries_for(complaint, HistoryAction.ENGINEER_ASSIGNED)
