# app/api/complaints/main.py
import uuid as uuid_pkg
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, Query, Request, UploadFile, status
from sqlmodel import Session

from ...core.audit import log_action
from ...core.config import settings
from ...core.exceptions import ComplaintError
from ...core.limiter import limiter
from ...core.policy import Action, authorize
from ...core.users import current_active_user
from ...db.engine_sync import get_sync_session
from ...models.complaint import Complaint, ComplaintStatusHistory
from ...models.user import User
from ...services.analytics_service import AnalyticsService
from ...services.assignment_service import AssignmentService
from ...services.closure_service import ClosureService
from ...services.complaint_service import ComplaintService
from ...services.notification_service import NotificationService
from ...services.scope_service import ScopeService
from ...services.upload_service import UploadService
from .models import (
    AssignEngineer,
    ComplaintCreate,
    ComplaintDashboard,
    ComplaintListResponse,
    ComplaintRead,
    ComplaintStats,
    ComplaintUpdateStatus,
    ReassignEngineer,
    ReComplaintCreate,
    StatusHistoryRead,
    StatusHistoryResponse,
    VerifyOtp,
)

router = APIRouter()


# --- Dependency Injection ---
def get_complaint_service(session: Session = Depends(get_sync_session)) -> ComplaintService:
    return ComplaintService(session)


def get_assignment_service(session: Session = Depends(get_sync_session)) -> AssignmentService:
    return AssignmentService(session)


def get_closure_service(session: Session = Depends(get_sync_session)) -> ClosureService:
    return ClosureService(session)


def get_analytics_service(session: Session = Depends(get_sync_session)) -> AnalyticsService:
    return AnalyticsService(session)


def get_scope_service(session: Session = Depends(get_sync_session)) -> ScopeService:
    return ScopeService(session)


def get_notification_service() -> NotificationService:
    return NotificationService()


def get_upload_service() -> UploadService:
    return UploadService()


# --- Response enrichment (customer and engineer names) ---
def _to_read(complaint: Complaint, users: Dict[uuid_pkg.UUID, User]) -> ComplaintRead:
    customer = users.get(complaint.user_id)
    engineer = users.get(complaint.engineer_id) if complaint.engineer_id else None
    return ComplaintRead(
        **complaint.model_dump(exclude={"otp", "history"}),
        customer_name=customer.display_name if customer else "Unknown",
        engineer_name=engineer.display_name if engineer else None,
        resolution_time_hours=complaint.resolution_time_hours,
    )


def _read_many(service: ComplaintService, complaints: Iterable[Complaint]) -> List[ComplaintRead]:
    complaints = list(complaints)
    users = service.users_by_id(
        [c.user_id for c in complaints] + [c.engineer_id for c in complaints]
    )
    return [_to_read(c, users) for c in complaints]


def _read_one(service: ComplaintService, complaint: Complaint) -> ComplaintRead:
    return _read_many(service, [complaint])[0]


def _history_read(
    entries: List[ComplaintStatusHistory], users: Dict[uuid_pkg.UUID, User], viewer: User
) -> List[StatusHistoryRead]:
    rows = []
    for e in entries:
        metadata = dict(e.details or {})
        # Only administrators see the closure code in the audit trail
        if not viewer.is_admin and "otp" in metadata:
            metadata["otp"] = "****"
        author = users.get(e.changed_by_id) if e.changed_by_id else None
        rows.append(
            StatusHistoryRead(
                sequence=e.sequence,
                status=e.status,
                previous_status=e.previous_status,
                action=e.action,
                remarks=e.remarks,
                metadata=metadata,
                changed_by_id=e.changed_by_id,
                changed_by_name=author.display_name if author else None,
                additional_info=e.additional_info,
                timestamp=e.timestamp,
            )
        )
    return rows


# --- Endpoints ---

@router.post("/complaints", response_model=ComplaintRead, status_code=status.HTTP_201_CREATED)
def create_complaint(
    complaint_in: ComplaintCreate,
    service: ComplaintService = Depends(get_complaint_service),
    current_user: User = Depends(current_active_user),
):
    complaint = service.create_complaint(complaint_in.model_dump(), current_user)
    return _read_one(service, complaint)


@router.get("/complaints", response_model=ComplaintListResponse)
def list_complaints(
    status_filter: Optional[str] = Query(None, alias="status"),
    priority: Optional[str] = None,
    issue_type: Optional[str] = None,
    type: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = 1,
    limit: int = 10,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    service: ComplaintService = Depends(get_complaint_service),
    scopes: ScopeService = Depends(get_scope_service),
    current_user: User = Depends(current_active_user),
):
    """Company-scoped list for administrators."""
    authorize(current_user, Action.LIST_ALL)
    result = service.list_scoped(
        scopes.scope_for(current_user),
        {
            "status": status_filter,
            "priority": priority,
            "issue_type": issue_type,
            "type": type,
            "start_date": start_date,
            "end_date": end_date,
        },
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    result["items"] = _read_many(service, result["items"])
    return result


@router.get("/complaints/my", response_model=ComplaintListResponse)
def list_my_complaints(
    status_filter: Optional[str] = Query(None, alias="status"),
    page: int = 1,
    limit: int = 10,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    service: ComplaintService = Depends(get_complaint_service),
    current_user: User = Depends(current_active_user),
):
    result = service.list_for_customer(current_user, status_filter, page, limit, sort_by, sort_order)
    result["items"] = _read_many(service, result["items"])
    return result


@router.get("/complaints/assigned", response_model=ComplaintListResponse)
def list_assigned_complaints(
    status_filter: Optional[str] = Query(None, alias="status"),
    page: int = 1,
    limit: int = 10,
    service: ComplaintService = Depends(get_complaint_service),
    current_user: User = Depends(current_active_user),
):
    result = service.list_for_engineer(current_user, status_filter, page, limit)
    result["items"] = _read_many(service, result["items"])
    return result


@router.get("/complaints/stats", response_model=ComplaintStats)
def get_complaint_stats(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    analytics: AnalyticsService = Depends(get_analytics_service),
    scopes: ScopeService = Depends(get_scope_service),
    current_user: User = Depends(current_active_user),
):
    authorize(current_user, Action.VIEW_STATS)
    return analytics.stats(scopes.scope_for(current_user), start_date, end_date)


@router.get("/complaints/complaint-dashboard", response_model=ComplaintDashboard)
def get_complaint_dashboard(
    top: Optional[int] = None,
    analytics: AnalyticsService = Depends(get_analytics_service),
    service: ComplaintService = Depends(get_complaint_service),
    scopes: ScopeService = Depends(get_scope_service),
    current_user: User = Depends(current_active_user),
):
    authorize(current_user, Action.VIEW_STATS)
    dashboard = analytics.dashboard(scopes.scope_for(current_user), top_n=top)
    dashboard["recent_complaints"] = _read_many(service, dashboard["recent_complaints"])
    return dashboard


@router.post("/complaints/reassign", response_model=ComplaintRead)
def reassign_engineer(
    body: ReassignEngineer,
    request: Request,
    service: ComplaintService = Depends(get_complaint_service),
    assignments: AssignmentService = Depends(get_assignment_service),
    current_user: User = Depends(current_active_user),
):
    complaint = service.get_for(body.complaint_id, current_user, Action.ASSIGN)
    previous_engineer_id = complaint.engineer_id
    complaint = assignments.reassign(complaint, body.engineer_id, current_user)
    log_action(
        "REASSIGN", "complaint", complaint.complaint_code, user=current_user, request=request,
        details={"engineer_id": str(body.engineer_id), "previous_engineer_id": str(previous_engineer_id)},
    )
    return _read_one(service, complaint)


@router.get("/complaints/{complaint_id}", response_model=ComplaintRead)
def get_complaint_detail(
    complaint_id: uuid_pkg.UUID,
    service: ComplaintService = Depends(get_complaint_service),
    current_user: User = Depends(current_active_user),
):
    return _read_one(service, service.get_for(complaint_id, current_user))


@router.put("/complaints/{complaint_id}/assign", response_model=ComplaintRead)
def assign_engineer(
    complaint_id: uuid_pkg.UUID,
    body: AssignEngineer,
    request: Request,
    service: ComplaintService = Depends(get_complaint_service),
    assignments: AssignmentService = Depends(get_assignment_service),
    current_user: User = Depends(current_active_user),
):
    complaint = service.get_for(complaint_id, current_user, Action.ASSIGN)
    complaint = assignments.assign(complaint, body.engineer_id, current_user, body.priority)
    log_action(
        "ASSIGN", "complaint", complaint.complaint_code, user=current_user, request=request,
        details={"engineer_id": str(body.engineer_id)},
    )
    return _read_one(service, complaint)


@router.put("/complaints/{complaint_id}/status", response_model=ComplaintRead)
def update_complaint_status(
    complaint_id: uuid_pkg.UUID,
    body: ComplaintUpdateStatus,
    service: ComplaintService = Depends(get_complaint_service),
    current_user: User = Depends(current_active_user),
):
    complaint = service.get_for(complaint_id, current_user, Action.UPDATE_STATUS)
    complaint = service.update_status(
        complaint,
        current_user,
        body.status,
        remark=body.remark,
        not_resolved_reason=body.not_resolved_reason,
        resolution_notes=body.resolution_notes,
        resolved=body.resolved,
        version=body.version,
    )
    return _read_one(service, complaint)


@router.put("/complaints/{complaint_id}/close", response_model=ComplaintRead)
async def close_complaint(
    complaint_id: uuid_pkg.UUID,
    request: Request,
    background_tasks: BackgroundTasks,
    files: Optional[List[UploadFile]] = File(None),
    notes: Optional[str] = Form(None),
    service: ComplaintService = Depends(get_complaint_service),
    closure: ClosureService = Depends(get_closure_service),
    uploads: UploadService = Depends(get_upload_service),
    notifier: NotificationService = Depends(get_notification_service),
    current_user: User = Depends(current_active_user),
):
    """
    Engineer/admin closes the complaint with 2-4 resolution images.
    The OTP goes to the customer after the response is sent.
    """
    files = files or []
    complaint = service.get_for(complaint_id, current_user, Action.CLOSE)
    # Reject bad requests before anything is written to disk
    closure.ensure_closable(complaint, current_user, files)
    urls = await uploads.save_images(files)
    try:
        complaint = closure.close_complaint(complaint, urls, notes, current_user)
    except ComplaintError:
        await uploads.discard(urls)
        raise

    customer = service.get_user(complaint.user_id)
    background_tasks.add_task(
        notifier.send_closure_otp,
        complaint.complaint_code,
        customer.email,
        complaint.otp,
        customer.phone_number or complaint.phone_number,
    )
    log_action(
        "CLOSE", "complaint", complaint.complaint_code, user=current_user, request=request,
        details={"resolution_attachments": len(urls)},
    )
    return _read_one(service, complaint)


@router.post("/complaints/{complaint_id}/verify-otp", response_model=ComplaintRead)
@limiter.limit(settings.otp_verify_rate_limit)
def verify_complaint_otp(
    complaint_id: uuid_pkg.UUID,
    body: VerifyOtp,
    request: Request,
    service: ComplaintService = Depends(get_complaint_service),
    closure: ClosureService = Depends(get_closure_service),
    current_user: User = Depends(current_active_user),
):
    complaint = service.get_for(complaint_id, current_user, Action.VERIFY_OTP)
    code = complaint.complaint_code
    try:
        complaint = closure.verify_otp(complaint, body.otp, current_user)
    except ComplaintError:
        log_action("VERIFY_OTP", "complaint", code, user=current_user, request=request, status="failure")
        raise
    log_action("VERIFY_OTP", "complaint", code, user=current_user, request=request)
    return _read_one(service, complaint)


@router.get("/complaints/{complaint_id}/status-history", response_model=StatusHistoryResponse)
def get_status_history(
    complaint_id: uuid_pkg.UUID,
    service: ComplaintService = Depends(get_complaint_service),
    assignments: AssignmentService = Depends(get_assignment_service),
    current_user: User = Depends(current_active_user),
):
    complaint = service.get_for(complaint_id, current_user)
    entries = service.status_history(complaint)
    users = service.users_by_id(e.changed_by_id for e in entries)
    return StatusHistoryResponse(
        complaint_id=complaint.id,
        complaint_code=complaint.complaint_code,
        current_status=complaint.status,
        status_color=complaint.status_color,
        has_engineer_assigned=assignments.has_engineer_assigned(complaint),
        history=_history_read(entries, users, current_user),
    )


@router.get("/complaints/{complaint_id}/assignment-history", response_model=List[StatusHistoryRead])
def get_assignment_history(
    complaint_id: uuid_pkg.UUID,
    service: ComplaintService = Depends(get_complaint_service),
    assignments: AssignmentService = Depends(get_assignment_service),
    current_user: User = Depends(current_active_user),
):
    complaint = service.get_for(complaint_id, current_user)
    entries = assignments.engineer_assignment_history(complaint)
    users = service.users_by_id(e.changed_by_id for e in entries)
    return _history_read(entries, users, current_user)


@router.post(
    "/complaints/{complaint_id}/recomplaint",
    response_model=ComplaintRead,
    status_code=status.HTTP_201_CREATED,
)
def file_re_complaint(
    complaint_id: uuid_pkg.UUID,
    body: ReComplaintCreate,
    service: ComplaintService = Depends(get_complaint_service),
    current_user: User = Depends(current_active_user),
):
    parent = service.get_for(complaint_id, current_user, Action.RE_COMPLAIN)
    return _read_one(service, service.file_re_complaint(parent, current_user, body.description))


@router.post("/complaints/{complaint_id}/attachments", response_model=ComplaintRead)
async def add_complaint_attachments(
    complaint_id: uuid_pkg.UUID,
    files: List[UploadFile] = File(...),
    service: ComplaintService = Depends(get_complaint_service),
    uploads: UploadService = Depends(get_upload_service),
    current_user: User = Depends(current_active_user),
):
    complaint = service.get_for(complaint_id, current_user, Action.MANAGE_ATTACHMENTS)
    service.ensure_room_for(complaint, len(files), current_user)
    urls = await uploads.save_images(files)
    try:
        complaint = service.add_attachments(complaint, urls, current_user)
    except ComplaintError:
        await uploads.discard(urls)
        raise
    return _read_one(service, complaint)


@router.delete("/complaints/{complaint_id}/attachments", response_model=ComplaintRead)
def remove_complaint_attachment(
    complaint_id: uuid_pkg.UUID,
    url: str,
    service: ComplaintService = Depends(get_complaint_service),
    current_user: User = Depends(current_active_user),
):
    complaint = service.get_for(complaint_id, current_user, Action.MANAGE_ATTACHMENTS)
    return _read_one(service, service.remove_attachment(complaint, url, current_user))


@router.delete("/complaints/{complaint_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_complaint(
    complaint_id: uuid_pkg.UUID,
    request: Request,
    service: ComplaintService = Depends(get_complaint_service),
    current_user: User = Depends(current_active_user),
):
    complaint = service.get_for(complaint_id, current_user, Action.DELETE)
    code = complaint.complaint_code
    service.delete_complaint(complaint, current_user)
    log_action("DELETE", "complaint", code, user=current_user, request=request)
    return
