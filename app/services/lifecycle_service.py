# app/services/lifecycle_service.py
"""
Complaint lifecycle engine.

Every write to a complaint's status goes through ComplaintLifecycle. A write
is a fixed sequence of steps:

    validate -> apply caller changes -> derive timestamps and colour
             -> append one history entry -> compare-and-set version -> commit

Status, timestamps and the history entry are committed together or not at
all. The compare-and-set rejects the write with StaleComplaint when another
request committed a change after this one read the complaint.
"""
import logging
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from app.core.constants import ComplaintStatus, HistoryAction, status_color_for
from app.core.exceptions import ComplaintError, InvalidTransition, StaleComplaint
from app.models.complaint import Complaint, ComplaintStatusHistory
from app.models.user import User
from app.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

S = ComplaintStatus

_OPEN_TARGETS = frozenset(set(S) - {S.PENDING})

ALLOWED_TRANSITIONS = MappingProxyType(
    {
        S.PENDING: _OPEN_TARGETS,
        S.ASSIGNED: _OPEN_TARGETS,
        S.IN_PROGRESS: _OPEN_TARGETS,
        S.VISITED: _OPEN_TARGETS,
        S.REOPENED: _OPEN_TARGETS,
        S.RE_VISIT: _OPEN_TARGETS,
        S.NOT_RESOLVED: frozenset({S.RE_VISIT, S.REOPENED, S.ASSIGNED, S.CANCELLED}),
        S.RESOLVED: frozenset({S.REOPENED}),
        S.CANCELLED: frozenset({S.REOPENED}),
    }
)


def parse_status(value: Any) -> ComplaintStatus:
    try:
        return ComplaintStatus(value)
    except ValueError:
        raise InvalidTransition(
            f"Unknown status '{value}'",
            details={"allowed": [s.value for s in ComplaintStatus]},
        )


class ComplaintLifecycle:
    def __init__(self, session: Session):
        self.session = session

    # --- Creation ---

    def open(self, complaint: Complaint, actor: Optional[User], remarks: Optional[str] = None) -> Complaint:
        """
        Persist a new complaint together with its first history entry.
        The caller handles IntegrityError (ticket code collisions).
        """
        complaint.status = ComplaintStatus.PENDING.value
        complaint.status_color = status_color_for(ComplaintStatus.PENDING)
        complaint.version = 1
        self.session.add(complaint)
        self._append(
            complaint,
            actor,
            status=ComplaintStatus.PENDING.value,
            previous_status=None,
            action=HistoryAction.CREATED,
            remarks=remarks or "Complaint created",
            sequence=1,
        )
        self.session.commit()
        self.session.refresh(complaint)
        return complaint

    # --- Transitions ---

    def transition(
        self,
        complaint: Complaint,
        new_status: Any,
        actor: Optional[User],
        notes: Optional[str] = None,
        *,
        action: HistoryAction = HistoryAction.STATUS_CHANGED,
        details: Optional[Dict[str, Any]] = None,
        additional_info: Optional[str] = None,
        apply: Optional[Callable[[Complaint], None]] = None,
        expected_version: Optional[int] = None,
    ) -> Complaint:
        """
        Move the complaint to new_status and record exactly one history entry.

        apply, when given, runs against the complaint inside the same
        transaction, before the status-derived fields are computed.
        """
        target = self.ensure_allowed(complaint, new_status)
        seen_version = self._seen_version(complaint, expected_version)

        now = utcnow()
        previous_status = complaint.status
        if apply is not None:
            apply(complaint)

        complaint.status = target.value
        if target == S.VISITED and complaint.visit_date is None:
            complaint.visit_date = now
        if target == S.RESOLVED:
            if complaint.resolution_date is None:
                complaint.resolution_date = now
            complaint.resolved = True
        else:
            complaint.resolved = False
            complaint.resolution_date = None
        complaint.status_color = status_color_for(target)

        self._append(
            complaint,
            actor,
            status=target.value,
            previous_status=previous_status,
            action=action,
            remarks=notes,
            details=details,
            additional_info=additional_info,
            timestamp=now,
        )
        self._commit(complaint, seen_version, now)
        logger.info(
            "Complaint %s: %s -> %s (%s) by %s",
            complaint.complaint_code, previous_status, target.value, action.value,
            actor.username if actor else "system",
        )
        return complaint

    def ensure_allowed(self, complaint: Complaint, new_status: Any) -> ComplaintStatus:
        target = parse_status(new_status)
        current = parse_status(complaint.status)
        if target != current and target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransition(
                f"Cannot move complaint {complaint.complaint_code} from '{current.value}' to '{target.value}'",
                details={"from": current.value, "to": target.value},
            )
        return target

    def annotate(
        self,
        complaint: Complaint,
        actor: Optional[User],
        action: HistoryAction,
        remarks: Optional[str] = None,
        *,
        details: Optional[Dict[str, Any]] = None,
        apply: Optional[Callable[[Complaint], None]] = None,
        expected_version: Optional[int] = None,
    ) -> Complaint:
        """
        Record a history entry that leaves the status untouched, such as OTP
        verification. Same transaction and version rules as transition().
        """
        seen_version = self._seen_version(complaint, expected_version)
        now = utcnow()
        if apply is not None:
            apply(complaint)
        self._append(
            complaint,
            actor,
            status=complaint.status,
            previous_status=complaint.status,
            action=action,
            remarks=remarks,
            details=details,
            timestamp=now,
        )
        self._commit(complaint, seen_version, now)
        return complaint

    def update_fields(
        self,
        complaint: Complaint,
        apply: Callable[[Complaint], None],
        expected_version: Optional[int] = None,
    ) -> Complaint:
        """Write non-status fields (attachments, remarks) under the version check."""
        seen_version = self._seen_version(complaint, expected_version)
        now = utcnow()
        apply(complaint)
        self._commit(complaint, seen_version, now)
        return complaint

    # --- Reads ---

    def history(self, complaint: Complaint) -> List[ComplaintStatusHistory]:
        return sorted(complaint.history, key=lambda e: e.sequence)

    def entries_for(self, complaint: Complaint, action: HistoryAction) -> List[ComplaintStatusHistory]:
        return [e for e in self.history(complaint) if e.action == action.value]

    # --- Internals ---

    def _seen_version(self, complaint: Complaint, expected_version: Optional[int]) -> int:
        if expected_version is not None and expected_version != complaint.version:
            raise StaleComplaint(
                f"Complaint {complaint.complaint_code} was modified (version {complaint.version}, "
                f"client saw {expected_version})",
                details={"current_version": complaint.version},
            )
        return complaint.version

    def _append(
        self,
        complaint: Complaint,
        actor: Optional[User],
        *,
        status: str,
        previous_status: Optional[str],
        action: HistoryAction,
        remarks: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        additional_info: Optional[str] = None,
        timestamp=None,
        sequence: Optional[int] = None,
    ) -> ComplaintStatusHistory:
        if sequence is None:
            sequence = max((e.sequence for e in complaint.history), default=0) + 1
        entry = ComplaintStatusHistory(
            sequence=sequence,
            status=status,
            previous_status=previous_status,
            action=action.value,
            remarks=remarks,
            details=details or {},
            changed_by_id=actor.id if actor else None,
            additional_info=additional_info,
            timestamp=timestamp or utcnow(),
        )
        complaint.history.append(entry)
        return entry

    def _commit(self, complaint: Complaint, seen_version: int, now) -> None:
        try:
            # The version row is claimed before the pending history entry is
            # flushed, so a concurrent writer fails here and not on the
            # (complaint_id, sequence) constraint.
            with self.session.no_autoflush:
                result = self.session.execute(
                    update(Complaint)
                    .where(Complaint.id == complaint.id, Complaint.version == seen_version)
                    .values(version=seen_version + 1)
                    .execution_options(synchronize_session=False)
                )
            if result.rowcount != 1:
                raise StaleComplaint(
                    f"Complaint {complaint.complaint_code} was modified by another request",
                    details={"seen_version": seen_version},
                )
            complaint.version = seen_version + 1
            complaint.updated_at = now
            self.session.add(complaint)
            self.session.commit()
        except ComplaintError:
            self.session.rollback()
            raise
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("Persisting complaint %s failed", complaint.complaint_code)
            raise
        self.session.refresh(complaint)
