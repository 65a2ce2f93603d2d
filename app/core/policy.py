# app/core/policy.py
"""
Single capability check for complaint operations.

Routers and services call authorize(actor, action, complaint) instead of
repeating role lists inline.
"""
from enum import Enum, unique
from typing import Optional

from app.core.constants import UserRole
from app.core.exceptions import Forbidden
from app.models.complaint import Complaint
from app.models.user import User


@unique
class Action(str, Enum):
    CREATE = "create"
    CREATE_ON_BEHALF = "create_on_behalf"
    VIEW = "view"
    LIST_ALL = "list_all"
    LIST_ASSIGNED = "list_assigned"
    VIEW_STATS = "view_stats"
    ASSIGN = "assign"
    UPDATE_STATUS = "update_status"
    CLOSE = "close"
    VERIFY_OTP = "verify_otp"
    DELETE = "delete"
    RE_COMPLAIN = "re_complain"
    MANAGE_ATTACHMENTS = "manage_attachments"


def _is_owner(actor: User, complaint: Optional[Complaint]) -> bool:
    return complaint is not None and complaint.user_id == actor.id


def _is_assigned_engineer(actor: User, complaint: Optional[Complaint]) -> bool:
    return (
        complaint is not None
        and actor.is_engineer
        and complaint.engineer_id is not None
        and complaint.engineer_id == actor.id
    )


_RULES = {
    Action.CREATE: lambda a, c: a.role == UserRole.USER.value,
    Action.CREATE_ON_BEHALF: lambda a, c: a.is_admin or a.role == UserRole.AGENT.value,
    Action.VIEW: lambda a, c: a.is_admin or _is_owner(a, c) or _is_assigned_engineer(a, c),
    Action.LIST_ALL: lambda a, c: a.is_admin,
    Action.LIST_ASSIGNED: lambda a, c: a.is_engineer,
    Action.VIEW_STATS: lambda a, c: a.is_admin,
    Action.ASSIGN: lambda a, c: a.is_admin,
    Action.UPDATE_STATUS: lambda a, c: a.is_admin or _is_assigned_engineer(a, c),
    Action.CLOSE: lambda a, c: a.is_admin or _is_assigned_engineer(a, c),
    Action.VERIFY_OTP: lambda a, c: a.is_admin or _is_owner(a, c),
    Action.DELETE: lambda a, c: a.is_admin or _is_owner(a, c),
    Action.RE_COMPLAIN: lambda a, c: a.is_admin or _is_owner(a, c),
    Action.MANAGE_ATTACHMENTS: lambda a, c: a.is_admin or _is_owner(a, c),
}


def is_allowed(actor: User, action: Action, complaint: Optional[Complaint] = None) -> bool:
    return bool(actor.is_active and _RULES[action](actor, complaint))


def authorize(actor: User, action: Action, complaint: Optional[Complaint] = None) -> None:
    """Raise Forbidden unless the actor may perform the action."""
    if not is_allowed(actor, action, complaint):
        raise Forbidden(
            f"Access denied: '{actor.role}' cannot {action.value.replace('_', ' ')} this complaint",
            details={"action": action.value},
        )
