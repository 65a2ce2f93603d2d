"""
Centralized constants for the complaint desk.
Removes "magic strings" and gives strong typing to common values.
"""

from enum import Enum, unique
from types import MappingProxyType


@unique
class ComplaintStatus(str, Enum):
    """Lifecycle states of a complaint."""

    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    VISITED = "visited"
    RESOLVED = "resolved"
    NOT_RESOLVED = "not_resolved"
    CANCELLED = "cancelled"
    REOPENED = "reopened"
    RE_VISIT = "re_visit"


@unique
class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


@unique
class ComplaintCategory(str, Enum):
    """Service line a complaint belongs to. Also the ticket code prefix."""

    WIFI = "WIFI"
    CCTV = "CCTV"


@unique
class UserRole(str, Enum):
    USER = "user"
    ENGINEER = "engineer"
    AGENT = "agent"
    ADMIN = "admin"
    MANAGER = "manager"
    SUPERADMIN = "superadmin"


@unique
class HistoryAction(str, Enum):
    """Tags stored on status history entries."""

    CREATED = "created"
    STATUS_CHANGED = "status_changed"
    ENGINEER_ASSIGNED = "engineer_assigned"
    COMPLAINT_CLOSED = "complaint_closed"
    OTP_VERIFIED = "otp_verified"
    RE_COMPLAINT_FILED = "re_complaint_filed"


ADMIN_ROLES = frozenset({UserRole.ADMIN.value, UserRole.MANAGER.value, UserRole.SUPERADMIN.value})

# Reassignment (and assignment) is rejected from these states
REASSIGNMENT_TERMINAL = frozenset(
    {ComplaintStatus.RESOLVED, ComplaintStatus.CANCELLED, ComplaintStatus.NOT_RESOLVED}
)

# Only these states allow physical deletion of a complaint
DELETABLE_STATUSES = frozenset({ComplaintStatus.PENDING, ComplaintStatus.CANCELLED})

# Attachment policies
MAX_INTAKE_ATTACHMENTS = 4
MIN_RESOLUTION_ATTACHMENTS = 2
MAX_RESOLUTION_ATTACHMENTS = 4

_STATUS_COLORS = MappingProxyType(
    {
        ComplaintStatus.PENDING: "#FFA500",
        ComplaintStatus.ASSIGNED: "#2196F3",
        ComplaintStatus.IN_PROGRESS: "#9C27B0",
        ComplaintStatus.VISITED: "#00BCD4",
        ComplaintStatus.RESOLVED: "#4CAF50",
        ComplaintStatus.NOT_RESOLVED: "#F44336",
        ComplaintStatus.CANCELLED: "#9E9E9E",
        ComplaintStatus.REOPENED: "#FF5722",
        ComplaintStatus.RE_VISIT: "#795548",
    }
)


def status_color_for(status: ComplaintStatus | str) -> str:
    """Display colour of a status. Raises ValueError for unknown statuses."""
    return _STATUS_COLORS[ComplaintStatus(status)]
