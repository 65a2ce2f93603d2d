import re
from datetime import datetime, timedelta, timezone

import pytest
from sqlmodel import Session

from app.core.constants import ComplaintStatus, HistoryAction, status_color_for
from app.core.exceptions import (
    Conflict,
    Forbidden,
    InvalidAttachmentCount,
    InvalidTransition,
    StaleComplaint,
    TicketCodeExhausted,
    ValidationError,
)
from app.models.complaint import Complaint
from app.models.types import UTCDateTime
from app.services import complaint_service as complaint_module
from app.services.closure_service import ClosureService
from app.services.lifecycle_service import ALLOWED_TRANSITIONS, ComplaintLifecycle

IMAGES = ["/uploads/complaints/a.jpg", "/uploads/complaints/b.jpg", "/uploads/complaints/c.jpg"]


def _actions(complaint):
    return [e.action for e in complaint.history]


# --- Creation ---

def test_create_wifi_complaint_starts_pending_with_one_entry(new_complaint, customer):
    complaint = new_complaint(customer)

    assert re.fullmatch(r"WIFI-\d{5}", complaint.complaint_code)
    assert complaint.status == ComplaintStatus.PENDING.value
    assert complaint.status_color == status_color_for(ComplaintStatus.PENDING)
    assert complaint.version == 1
    assert complaint.phone_number == customer.phone_number
    assert [(e.sequence, e.action, e.status) for e in complaint.history] == [
        (1, HistoryAction.CREATED.value, ComplaintStatus.PENDING.value)
    ]


def test_category_is_case_insensitive(new_complaint, customer):
    complaint = new_complaint(customer, type="cctv")
    assert complaint.type == "CCTV"
    assert complaint.complaint_code.startswith("CCTV-")


def test_unknown_category_rejected(new_complaint, customer):
    with pytest.raises(ValidationError):
        new_complaint(customer, type="FIBER")


def test_blank_title_rejected(new_complaint, customer):
    with pytest.raises(ValidationError):
        new_complaint(customer, title="   ")


def test_intake_attachment_cap(new_complaint, customer):
    new_complaint(customer, attachments=[f"/uploads/{i}.jpg" for i in range(4)])
    with pytest.raises(InvalidAttachmentCount):
        new_complaint(customer, attachments=[f"/uploads/{i}.jpg" for i in range(5)])


def test_engineer_cannot_file_complaint(new_complaint, engineer):
    with pytest.raises(Forbidden):
        new_complaint(engineer)


def test_admin_files_on_behalf_of_customer(complaints, admin, customer, engineer):
    data = {"title": "CCTV offline", "description": "Camera 2 is black", "issue_type": "camera", "type": "CCTV"}
    complaint = complaints.create_complaint({**data, "user_id": customer.id}, admin)
    assert complaint.user_id == customer.id
    assert complaint.history[0].changed_by_id == admin.id

    with pytest.raises(ValidationError):
        complaints.create_complaint({**data, "user_id": engineer.id}, admin)


def test_customer_cannot_file_for_someone_else(complaints, customer, other_customer):
    data = {"title": "t", "description": "d", "issue_type": "x", "type": "WIFI", "user_id": other_customer.id}
    with pytest.raises(Forbidden):
        complaints.create_complaint(data, customer)


def test_ticket_code_collision_retries(monkeypatch, new_complaint, customer):
    first = new_complaint(customer)
    codes = iter([first.complaint_code, first.complaint_code, "WIFI-55555"])
    monkeypatch.setattr(complaint_module, "generate_ticket_code", lambda category: next(codes))

    second = new_complaint(customer)
    assert second.complaint_code == "WIFI-55555"


def test_ticket_code_exhaustion(monkeypatch, new_complaint, customer):
    first = new_complaint(customer)
    monkeypatch.setattr(complaint_module, "generate_ticket_code", lambda category: first.complaint_code)

    with pytest.raises(TicketCodeExhausted):
        new_complaint(customer)


# --- Transitions ---

def test_every_transition_appends_exactly_one_entry(session, new_complaint, customer, admin):
    complaint = new_complaint(customer)
    lifecycle = ComplaintLifecycle(session)

    for status in ("assigned", "in_progress", "visited", "re_visit", "in_progress"):
        before = len(complaint.history)
        complaint = lifecycle.transition(complaint, status, admin)
        assert len(complaint.history) == before + 1
        assert complaint.history[-1].status == status
        assert complaint.status_color == status_color_for(status)

    assert [e.sequence for e in complaint.history] == list(range(1, len(complaint.history) + 1))
    assert complaint.version == len(complaint.history)


def test_visit_date_set_once(session, new_complaint, customer, admin):
    lifecycle = ComplaintLifecycle(session)
    complaint = lifecycle.transition(new_complaint(customer), "visited", admin)
    first_visit = complaint.visit_date
    assert first_visit is not None

    complaint = lifecycle.transition(complaint, "re_visit", admin)
    complaint = lifecycle.transition(complaint, "visited", admin)
    assert complaint.visit_date == first_visit


def test_back_to_pending_is_rejected(session, new_complaint, customer, admin):
    lifecycle = ComplaintLifecycle(session)
    complaint = lifecycle.transition(new_complaint(customer), "assigned", admin)

    with pytest.raises(InvalidTransition):
        lifecycle.transition(complaint, "pending", admin)
    session.refresh(complaint)
    assert complaint.status == "assigned"
    assert len(complaint.history) == 2


def test_unknown_status_is_rejected(session, new_complaint, customer, admin):
    with pytest.raises(InvalidTransition):
        ComplaintLifecycle(session).transition(new_complaint(customer), "archived", admin)


def test_resolved_only_reopens(session, new_complaint, customer, admin):
    complaint = ClosureService(session).close_complaint(new_complaint(customer), IMAGES, "fixed", admin)
    lifecycle = ComplaintLifecycle(session)

    for status in ("in_progress", "assigned", "cancelled", "not_resolved"):
        with pytest.raises(InvalidTransition):
            lifecycle.transition(complaint, status, admin)

    complaint = lifecycle.transition(complaint, "reopened", admin)
    assert complaint.resolved is False
    assert complaint.resolution_date is None


def test_resolution_date_is_idempotent(session, new_complaint, customer, admin):
    complaint = ClosureService(session).close_complaint(new_complaint(customer), IMAGES, None, admin)
    resolved_at = complaint.resolution_date

    complaint = ComplaintLifecycle(session).transition(complaint, "resolved", admin, "re-confirmed")
    assert complaint.resolution_date == resolved_at
    assert complaint.resolved is True
    assert complaint.history[-1].status == complaint.status


def test_transition_table_never_targets_pending():
    for source, targets in ALLOWED_TRANSITIONS.items():
        assert ComplaintStatus.PENDING not in targets, source


def test_status_update_cannot_resolve(complaints, new_complaint, customer, admin):
    complaint = new_complaint(customer)
    with pytest.raises(ValidationError):
        complaints.update_status(complaint, admin, "resolved")
    assert complaint.status == "pending"


def test_status_update_records_extras(complaints, new_complaint, customer, admin):
    complaint = complaints.update_status(
        new_complaint(customer), admin, "not_resolved", not_resolved_reason="Fibre cut upstream"
    )
    assert complaint.not_resolved_reason == "Fibre cut upstream"
    assert complaint.history[-1].details == {"not_resolved_reason": "Fibre cut upstream"}


def test_status_update_with_contradicting_resolved_flag(complaints, new_complaint, customer, admin):
    with pytest.raises(ValidationError):
        complaints.update_status(new_complaint(customer), admin, "in_progress", resolved=True)


# --- Optimistic concurrency ---

def test_stale_expected_version_rejected(session, new_complaint, customer, admin):
    lifecycle = ComplaintLifecycle(session)
    complaint = lifecycle.transition(new_complaint(customer), "assigned", admin)

    with pytest.raises(StaleComplaint):
        lifecycle.transition(complaint, "in_progress", admin, expected_version=1)
    session.refresh(complaint)
    assert complaint.status == "assigned"
    assert len(complaint.history) == 2


def test_concurrent_writer_loses_compare_and_set(engine, new_complaint, customer, admin):
    complaint_id = new_complaint(customer).id

    with Session(engine) as first, Session(engine) as second:
        mine = first.get(Complaint, complaint_id)
        theirs = second.get(Complaint, complaint_id)
        assert len(theirs.history) == 1

        ComplaintLifecycle(first).transition(mine, "assigned", admin)

        with pytest.raises(StaleComplaint):
            ComplaintLifecycle(second).transition(theirs, "cancelled", admin)

    with Session(engine) as check:
        stored = check.get(Complaint, complaint_id)
        assert stored.status == "assigned"
        assert stored.version == 2
        assert [e.status for e in stored.history] == ["pending", "assigned"]


# --- Re-complaints and deletion ---

def test_re_complaint_links_parent_without_status_change(session, complaints, new_complaint, customer, admin):
    parent = ClosureService(session).close_complaint(new_complaint(customer), IMAGES, None, admin)

    child = complaints.file_re_complaint(parent, customer, "Dropping again every evening")

    assert child.is_re_complaint and child.parent_complaint_id == parent.id
    assert child.status == "pending"
    assert child.description == "Dropping again every evening"
    session.refresh(parent)
    assert parent.status == "resolved"
    assert _actions(parent)[-1] == HistoryAction.RE_COMPLAINT_FILED.value
    assert parent.history[-1].details["re_complaint_code"] == child.complaint_code


def test_re_complaint_needs_an_outcome(complaints, new_complaint, customer):
    with pytest.raises(Conflict):
        complaints.file_re_complaint(new_complaint(customer), customer)


def test_delete_only_pending_or_cancelled(session, complaints, new_complaint, customer, admin):
    pending = new_complaint(customer)
    complaints.delete_complaint(pending, customer)
    assert session.get(Complaint, pending.id) is None

    assigned = ComplaintLifecycle(session).transition(new_complaint(customer), "assigned", admin)
    with pytest.raises(Conflict):
        complaints.delete_complaint(assigned, admin)


def test_cancelled_parent_of_re_complaint_cannot_be_deleted(session, complaints, new_complaint, customer, admin):
    parent = ClosureService(session).close_complaint(new_complaint(customer), IMAGES, None, admin)
    child = complaints.file_re_complaint(parent, customer)
    lifecycle = ComplaintLifecycle(session)
    parent = lifecycle.transition(parent, "reopened", admin)
    parent = lifecycle.transition(parent, "cancelled", admin)

    with pytest.raises(Conflict):
        complaints.delete_complaint(parent, admin)
    assert session.get(Complaint, parent.id) is not None
    assert session.get(Complaint, child.id).parent_complaint_id == parent.id


# --- Timestamps ---

def test_timestamps_come_back_as_utc(session, new_complaint, customer, admin):
    complaint = ComplaintLifecycle(session).transition(new_complaint(customer), "visited", admin)
    session.expire_all()

    for value in (complaint.created_at, complaint.updated_at, complaint.visit_date, complaint.history[-1].timestamp):
        assert value.utcoffset() == timedelta(0)


def test_utc_column_normalises_bound_values():
    column = UTCDateTime()
    naive = datetime(2026, 3, 1, 8, 30)
    assert column.process_bind_param(naive, None) == naive.replace(tzinfo=timezone.utc)

    kolkata = datetime(2026, 3, 1, 14, 0, tzinfo=timezone(timedelta(hours=5, minutes=30)))
    assert column.process_bind_param(kolkata, None) == datetime(2026, 3, 1, 8, 30, tzinfo=timezone.utc)
    assert column.process_result_value(naive, None).tzinfo is timezone.utc
