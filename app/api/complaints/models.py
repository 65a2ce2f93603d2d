# app/api/complaints/models.py
import uuid as uuid_pkg
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ComplaintCreate(BaseModel):
    title: str = Field(max_length=200)
    description: str
    issue_type: str
    phone_number: Optional[str] = None
    type: str
    priority: Optional[str] = None
    attachments: List[str] = []
    # Set by administrators/agents filing on behalf of a customer
    user_id: Optional[uuid_pkg.UUID] = None


class AssignEngineer(BaseModel):
    engineer_id: uuid_pkg.UUID
    priority: Optional[str] = None


class ReassignEngineer(BaseModel):
    complaint_id: uuid_pkg.UUID
    engineer_id: uuid_pkg.UUID


class ComplaintUpdateStatus(BaseModel):
    status: str
    resolved: Optional[bool] = None
    remark: Optional[str] = None
    not_resolved_reason: Optional[str] = None
    resolution_notes: Optional[str] = None
    # Version the client last saw; a mismatch is rejected with 409
    version: Optional[int] = None


class VerifyOtp(BaseModel):
    otp: str = Field(min_length=1, max_length=12)


class ReComplaintCreate(BaseModel):
    description: Optional[str] = None


class ComplaintRead(BaseModel):
    id: uuid_pkg.UUID
    complaint_code: str
    title: str
    description: str
    issue_type: str
    phone_number: str
    type: str
    priority: str
    status: str
    status_color: str
    user_id: uuid_pkg.UUID
    customer_name: str
    engineer_id: Optional[uuid_pkg.UUID]
    engineer_name: Optional[str]
    assigned_by_id: Optional[uuid_pkg.UUID]
    visit_date: Optional[datetime]
    resolution_date: Optional[datetime]
    resolved: bool
    not_resolved_reason: Optional[str]
    resolution_notes: Optional[str]
    remark: Optional[str]
    attachments: List[str]
    resolution_attachments: Optional[List[str]]
    otp_verified: bool
    otp_verified_at: Optional[datetime]
    parent_complaint_id: Optional[uuid_pkg.UUID]
    is_re_complaint: bool
    resolution_time_hours: Optional[float]
    version: int
    created_at: datetime
    updated_at: datetime


class ComplaintListResponse(BaseModel):
    items: List[ComplaintRead]
    total: int
    page: int
    limit: int
    pages: int
    message: Optional[str] = None
    summary: Optional[Dict[str, Any]] = None


class StatusHistoryRead(BaseModel):
    sequence: int
    status: str
    previous_status: Optional[str]
    action: str
    remarks: Optional[str]
    metadata: Dict[str, Any]
    changed_by_id: Optional[uuid_pkg.UUID]
    changed_by_name: Optional[str]
    additional_info: Optional[str]
    timestamp: datetime


class StatusHistoryResponse(BaseModel):
    complaint_id: uuid_pkg.UUID
    complaint_code: str
    current_status: str
    status_color: str
    has_engineer_assigned: bool
    history: List[StatusHistoryRead]


class CountRow(BaseModel):
    value: Optional[str]
    count: int


class ResolutionTime(BaseModel):
    avg_resolution_time: float
    min_resolution_time: float
    max_resolution_time: float
    resolved_count: int


class ComplaintStats(BaseModel):
    total: int
    resolved: int
    pending: int
    resolution_rate: float
    by_status: List[CountRow]
    by_priority: List[CountRow]
    by_issue_type: List[CountRow]
    by_complaint_type: List[CountRow]
    resolution_time: ResolutionTime
    message: Optional[str] = None


class TrendPoint(BaseModel):
    date: str
    created: int
    resolved: int


class EngineerPerformance(BaseModel):
    engineer_id: uuid_pkg.UUID
    engineer_name: str
    assigned: int
    resolved: int
    resolution_ratio: float


class ComplaintDashboard(BaseModel):
    summary: Dict[str, Any]
    status_distribution: Dict[str, int]
    priority_distribution: Dict[str, int]
    resolution_time: ResolutionTime
    daily_trend: List[TrendPoint]
    top_engineers: List[EngineerPerformance]
    recent_complaints: List[ComplaintRead]
    message: Optional[str] = None
