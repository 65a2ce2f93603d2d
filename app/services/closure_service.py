# app/services/closure_service.py
"""
Two-phase closure of a complaint.

Phase 1 (engineer or admin): close_complaint stores the resolution images,
generates a numeric one-time code and moves the complaint to 'resolved'.
Phase 2 (customer or admin): verify_otp confirms the code. The status stays
'resolved'; only the otp_verified flag changes.

Delivering the code to the customer is not done here. The router schedules
NotificationService after the closure has been committed.
"""
import hmac
import logging
import secrets
from typing import List, Optional

from sqlmodel import Session

from app.core.config import settings
from app.core.constants import (
    MAX_RESOLUTION_ATTACHMENTS,
    MIN_RESOLUTION_ATTACHMENTS,
    ComplaintStatus,
    HistoryAction,
)
from app.core.exceptions import (
    AlreadyResolved,
    AlreadyVerified,
    InvalidAttachmentCount,
    InvalidOtp,
    InvalidTransition,
)
from app.core.policy import Action, authorize
from app.models.complaint import Complaint
from app.models.user import User
from app.services.lifecycle_service import ComplaintLifecycle
from app.utils.timeutils import utcnow

logger = logging.getLogger(__name__)


def generate_otp(length: Optional[int] = None) -> str:
    """Fixed-width numeric code, zero padded (e.g. '0427')."""
    length = length or settings.otp_length
    return f"{secrets.randbelow(10 ** length):0{length}d}"


def validate_resolution_attachments(attachments: List[str]) -> None:
    count = len(attachments or [])
    if not MIN_RESOLUTION_ATTACHMENTS <= count <= MAX_RESOLUTION_ATTACHMENTS:
        raise InvalidAttachmentCount(
            f"Between {MIN_RESOLUTION_ATTACHMENTS} and {MAX_RESOLUTION_ATTACHMENTS} "
            f"resolution images are required, got {count}",
            details={"count": count},
        )


class ClosureService:
    def __init__(self, session: Session):
        self.session = session
        self.lifecycle = ComplaintLifecycle(session)

    def ensure_closable(self, complaint: Complaint, actor: User, attachments: List) -> None:
        """Every closure precondition that does not need the stored images."""
        authorize(actor, Action.CLOSE, complaint)
        if complaint.status == ComplaintStatus.RESOLVED.value:
            raise AlreadyResolved(f"Complaint {complaint.complaint_code} is already resolved")
        self.lifecycle.ensure_allowed(complaint, ComplaintStatus.RESOLVED)
        validate_resolution_attachments(attachments)

    def close_complaint(
        self,
        complaint: Complaint,
        resolution_attachments: List[str],
        notes: Optional[str],
        actor: User,
    ) -> Complaint:
        self.ensure_closable(complaint, actor, resolution_attachments)

        otp = generate_otp()
        attachments = list(resolution_attachments)

        def apply(c: Complaint) -> None:
            c.otp = otp
            c.otp_verified = False
            c.otp_verified_at = None
            c.resolution_attachments = attachments
            if notes:
                c.resolution_notes = notes

        closed = self.lifecycle.transition(
            complaint,
            ComplaintStatus.RESOLVED,
            actor,
            notes,
            action=HistoryAction.COMPLAINT_CLOSED,
            details={"otp": otp, "resolution_attachments": attachments},
            apply=apply,
        )
        logger.info("Complaint %s closed by %s with %d images", closed.complaint_code, actor.username, len(attachments))
        return closed

    def verify_otp(self, complaint: Complaint, submitted_code: str, actor: User) -> Complaint:
        authorize(actor, Action.VERIFY_OTP, complaint)
        if complaint.status != ComplaintStatus.RESOLVED.value:
            raise InvalidTransition(
                f"Complaint {complaint.complaint_code} is '{complaint.status}', only resolved complaints can be verified"
            )
        if complaint.otp_verified:
            raise AlreadyVerified(f"Complaint {complaint.complaint_code} is already verified")

        submitted = (submitted_code or "").strip()
        if not complaint.otp or not hmac.compare_digest(submitted.encode(), complaint.otp.encode()):
            logger.warning("Invalid OTP submitted for complaint %s by %s", complaint.complaint_code, actor.username)
            raise InvalidOtp("Invalid OTP")

        now = utcnow()

        def apply(c: Complaint) -> None:
            c.otp_verified = True
            c.otp_verified_at = now

        return self.lifecycle.annotate(
            complaint,
            actor,
            HistoryAction.OTP_VERIFIED,
            "Resolution confirmed with OTP",
            details={"verified_at": now.isoformat()},
            apply=apply,
        )
