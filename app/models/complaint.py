# app/models/complaint.py
"""
Complaint (ticket) models.

A Complaint owns its status history: entries are written by the lifecycle
engine only and are never shared between complaints.
"""

import uuid as uuid_pkg
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

from app.core.constants import ComplaintStatus, Priority, status_color_for
from app.models.types import UTCDateTime
from app.utils.timeutils import utcnow


class Complaint(SQLModel, table=True):
    __tablename__ = "complaints"

    id: uuid_pkg.UUID = Field(default_factory=uuid_pkg.uuid4, primary_key=True)
    # Human-facing code, e.g. WIFI-04821
    complaint_code: str = Field(unique=True, index=True, nullable=False, max_length=20)

    user_id: uuid_pkg.UUID = Field(foreign_key="users.id", index=True)
    engineer_id: Optional[uuid_pkg.UUID] = Field(default=None, foreign_key="users.id", index=True)
    assigned_by_id: Optional[uuid_pkg.UUID] = Field(default=None, foreign_key="users.id")

    title: str = Field(nullable=False, max_length=200)
    description: str = Field(nullable=False)
    issue_type: str = Field(nullable=False, index=True)
    phone_number: str = Field(nullable=False)
    type: str = Field(nullable=False, index=True)  # WIFI / CCTV
    priority: str = Field(default=Priority.MEDIUM.value, index=True)
    status: str = Field(default=ComplaintStatus.PENDING.value, index=True)
    status_color: str = Field(default_factory=lambda: status_color_for(ComplaintStatus.PENDING))

    visit_date: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    resolution_date: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    resolved: bool = Field(default=False)
    not_resolved_reason: Optional[str] = Field(default=None)
    resolution_notes: Optional[str] = Field(default=None)
    remark: Optional[str] = Field(default=None)

    attachments: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    resolution_attachments: Optional[List[str]] = Field(default=None, sa_column=Column(JSON))

    otp: Optional[str] = Field(default=None, max_length=12)
    otp_verified: bool = Field(default=False)
    otp_verified_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)

    parent_complaint_id: Optional[uuid_pkg.UUID] = Field(default=None, foreign_key="complaints.id")
    is_re_complaint: bool = Field(default=False)

    # Optimistic concurrency counter, bumped by every committed write
    version: int = Field(default=1, nullable=False)

    created_at: datetime = Field(default_factory=utcnow, index=True, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)

    history: List["ComplaintStatusHistory"] = Relationship(
        back_populates="complaint",
        sa_relationship_kwargs={
            "order_by": "ComplaintStatusHistory.sequence",
            "cascade": "all, delete-orphan",
        },
    )

    @property
    def resolution_time_hours(self) -> Optional[float]:
        if self.resolution_date and self.created_at:
            return (self.resolution_date - self.created_at).total_seconds() / 3600
        return None


class ComplaintStatusHistory(SQLModel, table=True):
    """
    Append-only audit entry. Sequence numbers start at 1 for every complaint.
    """

    __tablename__ = "complaint_status_history"
    __table_args__ = (UniqueConstraint("complaint_id", "sequence", name="uq_history_sequence"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    complaint_id: uuid_pkg.UUID = Field(foreign_key="complaints.id", index=True)
    sequence: int = Field(nullable=False)

    status: str = Field(nullable=False)
    previous_status: Optional[str] = Field(default=None)
    action: str = Field(nullable=False, index=True)
    remarks: Optional[str] = Field(default=None)
    # "metadata" is reserved on declarative classes, hence the attribute name
    details: Dict[str, Any] = Field(default_factory=dict, sa_column=Column("metadata", JSON, nullable=False))
    changed_by_id: Optional[uuid_pkg.UUID] = Field(default=None, foreign_key="users.id")
    additional_info: Optional[str] = Field(default=None)
    timestamp: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)

    complaint: Complaint = Relationship(back_populates="history")
