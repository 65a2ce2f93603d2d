from datetime import timedelta

import pytest

from app.core.constants import ComplaintStatus, UserRole
from app.services.analytics_service import AnalyticsService
from app.services.assignment_service import AssignmentService
from app.services.closure_service import ClosureService
from app.services.scope_service import NO_USERS_IN_COMPANY, ScopeService
from app.utils.timeutils import utcnow

from conftest import backdate

IMAGES = ["/uploads/complaints/a.jpg", "/uploads/complaints/b.jpg"]


@pytest.fixture
def scopes(session):
    return ScopeService(session)


@pytest.fixture
def analytics(session):
    return AnalyticsService(session)


@pytest.fixture
def close(session, admin):
    def _close(complaint, hours_open=None):
        if hours_open is not None:
            backdate(session, complaint, hours_open)
        return ClosureService(session).close_complaint(complaint, IMAGES, None, admin)

    return _close


def test_scope_contains_only_company_customers(scopes, admin, customer, other_customer, engineer):
    scope = scopes.scope_for(admin)
    assert customer.id in scope.customer_ids
    assert other_customer.id not in scope.customer_ids
    assert not scope.unscoped


def test_superadmin_is_unscoped(scopes, superadmin):
    assert scopes.scope_for(superadmin).unscoped


def test_company_without_users_gets_explicit_empty_result(analytics, scopes, make_user, new_complaint, customer):
    new_complaint(customer)
    lonely_admin = make_user("admin_c", UserRole.ADMIN.value)

    stats = analytics.stats(scopes.scope_for(lonely_admin))
    assert stats["total"] == 0
    assert stats["message"] == NO_USERS_IN_COMPANY

    dashboard = analytics.dashboard(scopes.scope_for(lonely_admin))
    assert dashboard["message"] == NO_USERS_IN_COMPANY
    assert dashboard["recent_complaints"] == []
    assert len(dashboard["daily_trend"]) == 7


def test_stats_are_tenant_isolated(analytics, scopes, admin, other_admin, superadmin, new_complaint, customer, other_customer):
    new_complaint(customer)
    new_complaint(customer, type="CCTV")
    new_complaint(other_customer)

    assert analytics.stats(scopes.scope_for(admin))["total"] == 2
    assert analytics.stats(scopes.scope_for(other_admin))["total"] == 1
    assert analytics.stats(scopes.scope_for(superadmin))["total"] == 3


def test_stats_counts_and_resolution_time(analytics, scopes, admin, new_complaint, customer, close):
    close(new_complaint(customer), hours_open=5)
    close(new_complaint(customer, issue_type="billing"), hours_open=3)
    new_complaint(customer, type="CCTV")

    stats = analytics.stats(scopes.scope_for(admin))

    assert stats["total"] == 3
    assert stats["resolved"] == 2
    assert stats["pending"] == 1
    assert stats["resolution_rate"] == pytest.approx(66.67)
    assert {r["value"]: r["count"] for r in stats["by_status"]} == {"resolved": 2, "pending": 1}
    assert {r["value"]: r["count"] for r in stats["by_complaint_type"]} == {"WIFI": 2, "CCTV": 1}
    assert {r["value"]: r["count"] for r in stats["by_issue_type"]} == {"connectivity": 2, "billing": 1}

    times = stats["resolution_time"]
    assert times["resolved_count"] == 2
    assert times["avg_resolution_time"] == pytest.approx(4, abs=0.05)
    assert times["min_resolution_time"] == pytest.approx(3, abs=0.05)
    assert times["max_resolution_time"] == pytest.approx(5, abs=0.05)


def test_resolution_time_ignores_unresolved(analytics, scopes, admin, new_complaint, customer):
    backdate(analytics.session, new_complaint(customer), 10)
    assert analytics.resolution_time_stats(scopes.scope_for(admin))["resolved_count"] == 0


def test_resolution_times_stream_in_pages(session, scopes, admin, new_complaint, customer, close):
    for hours in (1, 2, 3, 4, 5):
        close(new_complaint(customer), hours_open=hours)

    paged = AnalyticsService(session, page_size=2).resolution_time_stats(scopes.scope_for(admin))
    assert paged["resolved_count"] == 5
    assert paged["avg_resolution_time"] == pytest.approx(3, abs=0.05)


def test_date_window_filters_stats(analytics, scopes, admin, new_complaint, customer):
    old = backdate(analytics.session, new_complaint(customer), 24 * 30)
    new_complaint(customer)

    stats = analytics.stats(scopes.scope_for(admin), start_date=old.created_at - timedelta(minutes=1))
    assert stats["total"] == 2
    recent_only = analytics.stats(scopes.scope_for(admin), start_date=utcnow().replace(hour=0, minute=0, second=0, microsecond=0))
    assert recent_only["total"] == 1


def test_daily_trend_has_seven_zero_filled_days(analytics, scopes, admin, new_complaint, customer, close):
    new_complaint(customer)
    close(new_complaint(customer))

    trend = analytics.daily_trend(scopes.scope_for(admin))
    assert len(trend) == 7
    assert trend[-1]["date"] == utcnow().date().isoformat()
    assert trend[-1]["created"] == 2
    assert trend[-1]["resolved"] == 1
    assert all(day["created"] == 0 for day in trend[:-1])


def test_top_engineers_ranked_by_ratio(session, analytics, scopes, admin, new_complaint, customer, engineer, second_engineer, close):
    assignments = AssignmentService(session)
    for eng, resolved in ((second_engineer, 1), (engineer, 2)):
        for i in range(2):
            complaint = assignments.assign(new_complaint(customer), eng.id, admin)
            if i < resolved:
                close(complaint)

    top = analytics.top_engineers(scopes.scope_for(admin))
    assert [row["engineer_id"] for row in top] == [engineer.id, second_engineer.id]
    assert top[0]["resolution_ratio"] == 1.0
    assert top[0]["engineer_name"] == "Ravi Kumar"
    assert top[1]["assigned"] == 2 and top[1]["resolved"] == 1

    assert len(analytics.top_engineers(scopes.scope_for(admin), limit=1)) == 1


def test_dashboard_payload(analytics, scopes, admin, new_complaint, customer, close):
    for _ in range(6):
        new_complaint(customer)
    close(new_complaint(customer))

    dashboard = analytics.dashboard(scopes.scope_for(admin))

    assert dashboard["message"] is None
    assert dashboard["summary"]["total"] == 7
    assert dashboard["summary"]["open"] == 6
    assert dashboard["summary"]["resolved"] == 1
    assert set(dashboard["status_distribution"]) == {s.value for s in ComplaintStatus}
    assert dashboard["status_distribution"]["pending"] == 6
    assert len(dashboard["recent_complaints"]) == 5
    assert len(dashboard["daily_trend"]) == 7
