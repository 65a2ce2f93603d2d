# app/services/analytics_service.py
"""
Read-only complaint analytics, always restricted to a CompanyScope.

Counts are grouped in the database. Resolution times are computed from
(created_at, resolution_date) pairs streamed page by page, so memory stays
bounded by ANALYTICS_PAGE_SIZE whatever the size of the table.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterator, List, Optional, Tuple

from sqlalchemy import case, desc
from sqlmodel import Session, col, func, select

from app.core.config import settings
from app.core.constants import ComplaintStatus, Priority
from app.models.complaint import Complaint
from app.models.user import User
from app.services.scope_service import NO_USERS_IN_COMPANY, CompanyScope
from app.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

TREND_DAYS = 7

# Statuses still waiting for an outcome
OPEN_STATUSES = frozenset(
    {
        ComplaintStatus.PENDING.value,
        ComplaintStatus.ASSIGNED.value,
        ComplaintStatus.IN_PROGRESS.value,
        ComplaintStatus.VISITED.value,
        ComplaintStatus.REOPENED.value,
        ComplaintStatus.RE_VISIT.value,
    }
)


def _empty_resolution_time() -> Dict[str, float]:
    return {"avg_resolution_time": 0, "min_resolution_time": 0, "max_resolution_time": 0, "resolved_count": 0}


class AnalyticsService:
    def __init__(self, session: Session, page_size: Optional[int] = None):
        self.session = session
        self.page_size = page_size or settings.analytics_page_size

    # --- Building blocks ---

    def _where(self, statement, scope: CompanyScope, start_date=None, end_date=None):
        statement = scope.apply(statement)
        if start_date:
            statement = statement.where(Complaint.created_at >= start_date)
        if end_date:
            statement = statement.where(Complaint.created_at <= end_date)
        return statement

    def count_by(self, field, scope: CompanyScope, start_date=None, end_date=None) -> List[Dict[str, Any]]:
        column = getattr(Complaint, field)
        statement = self._where(select(column, func.count()).select_from(Complaint), scope, start_date, end_date)
        rows = self.session.exec(statement.group_by(column).order_by(desc(func.count()), column)).all()
        return [{"value": value, "count": count} for value, count in rows]

    def _count(self, scope: CompanyScope, *conditions, start_date=None, end_date=None) -> int:
        statement = self._where(select(func.count()).select_from(Complaint), scope, start_date, end_date)
        for condition in conditions:
            statement = statement.where(condition)
        return self.session.exec(statement).one()

    def _resolution_spans(self, scope: CompanyScope, start_date=None, end_date=None) -> Iterator[Tuple[datetime, datetime]]:
        base = self._where(
            select(Complaint.id, Complaint.created_at, Complaint.resolution_date).where(
                Complaint.status == ComplaintStatus.RESOLVED.value,
                col(Complaint.resolution_date).is_not(None),
            ),
            scope,
            start_date,
            end_date,
        ).order_by(Complaint.id)
        offset = 0
        while True:
            rows = self.session.exec(base.offset(offset).limit(self.page_size)).all()
            for _, created_at, resolution_date in rows:
                yield created_at, resolution_date
            if len(rows) < self.page_size:
                return
            offset += self.page_size

    def resolution_time_stats(self, scope: CompanyScope, start_date=None, end_date=None) -> Dict[str, float]:
        """Mean/min/max hours from creation to resolution, resolved complaints only."""
        count, total = 0, 0.0
        low: Optional[float] = None
        high: Optional[float] = None
        for created_at, resolution_date in self._resolution_spans(scope, start_date, end_date):
            hours = (resolution_date - created_at).total_seconds() / 3600
            count += 1
            total += hours
            low = hours if low is None else min(low, hours)
            high = hours if high is None else max(high, hours)
        if not count:
            return _empty_resolution_time()
        return {
            "avg_resolution_time": round(total / count, 2),
            "min_resolution_time": round(low, 2),
            "max_resolution_time": round(high, 2),
            "resolved_count": count,
        }

    def daily_trend(self, scope: CompanyScope, now: Optional[datetime] = None, days: int = TREND_DAYS) -> List[Dict[str, Any]]:
        """
        One row per day for the last `days` days (today included), oldest
        first. Days without complaints are present with zero counts.
        """
        today = (now or utcnow()).date()
        first_day = today - timedelta(days=days - 1)
        since = datetime.combine(first_day, datetime.min.time())

        def per_day(column, *conditions) -> Dict[str, int]:
            day = func.date(column)
            statement = scope.apply(select(day, func.count()).select_from(Complaint)).where(column >= since)
            for condition in conditions:
                statement = statement.where(condition)
            return {str(d): n for d, n in self.session.exec(statement.group_by(day)).all()}

        created = per_day(Complaint.created_at)
        resolved = per_day(Complaint.resolution_date, Complaint.status == ComplaintStatus.RESOLVED.value)

        trend = []
        for offset in range(days):
            key = (first_day + timedelta(days=offset)).isoformat()
            trend.append({"date": key, "created": created.get(key, 0), "resolved": resolved.get(key, 0)})
        return trend

    def top_engineers(self, scope: CompanyScope, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Engineers ranked by resolved/assigned ratio, then by resolved count."""
        limit = limit or settings.top_engineers_limit
        resolved_sum = func.sum(case((Complaint.status == ComplaintStatus.RESOLVED.value, 1), else_=0))
        statement = scope.apply(
            select(Complaint.engineer_id, func.count(), resolved_sum)
            .select_from(Complaint)
            .where(col(Complaint.engineer_id).is_not(None))
        ).group_by(Complaint.engineer_id)
        rows = self.session.exec(statement).all()

        ranked = []
        for engineer_id, assigned, resolved in rows:
            resolved = int(resolved or 0)
            ranked.append(
                {
                    "engineer_id": engineer_id,
                    "assigned": assigned,
                    "resolved": resolved,
                    "resolution_ratio": round(resolved / assigned, 4) if assigned else 0,
                }
            )
        ranked.sort(key=lambda r: (r["resolution_ratio"], r["resolved"]), reverse=True)
        ranked = ranked[:limit]

        ids = [r["engineer_id"] for r in ranked]
        names = {}
        if ids:
            users = self.session.exec(select(User).where(col(User.id).in_(ids))).all()
            names = {u.id: u.display_name for u in users}
        for row in ranked:
            row["engineer_name"] = names.get(row["engineer_id"], "Unknown")
        return ranked

    # --- Endpoints payloads ---

    def stats(self, scope: CompanyScope, start_date=None, end_date=None) -> Dict[str, Any]:
        if scope.is_empty:
            return self._empty_stats()
        window = dict(start_date=start_date, end_date=end_date)
        total = self._count(scope, **window)
        resolved = self._count(scope, Complaint.status == ComplaintStatus.RESOLVED.value, **window)
        pending = self._count(scope, Complaint.status == ComplaintStatus.PENDING.value, **window)
        return {
            "total": total,
            "resolved": resolved,
            "pending": pending,
            "resolution_rate": round(resolved / total * 100, 2) if total else 0,
            "by_status": self.count_by("status", scope, **window),
            "by_priority": self.count_by("priority", scope, **window),
            "by_issue_type": self.count_by("issue_type", scope, **window),
            "by_complaint_type": self.count_by("type", scope, **window),
            "resolution_time": self.resolution_time_stats(scope, **window),
            "message": None,
        }

    def dashboard(self, scope: CompanyScope, now: Optional[datetime] = None, top_n: Optional[int] = None) -> Dict[str, Any]:
        if scope.is_empty:
            return self._empty_dashboard(now)
        by_status = {row["value"]: row["count"] for row in self.count_by("status", scope)}
        by_priority = {row["value"]: row["count"] for row in self.count_by("priority", scope)}
        total = sum(by_status.values())
        resolved = by_status.get(ComplaintStatus.RESOLVED.value, 0)
        verified = self._count(scope, col(Complaint.otp_verified).is_(True))
        recent = self.session.exec(
            scope.apply(select(Complaint)).order_by(desc(Complaint.created_at)).limit(5)
        ).all()
        return {
            "summary": {
                "total": total,
                "open": sum(n for s, n in by_status.items() if s in OPEN_STATUSES),
                "resolved": resolved,
                "verified": verified,
                "re_complaints": self._count(scope, col(Complaint.is_re_complaint).is_(True)),
                "resolution_rate": round(resolved / total * 100, 2) if total else 0,
            },
            "status_distribution": {s.value: by_status.get(s.value, 0) for s in ComplaintStatus},
            "priority_distribution": {p.value: by_priority.get(p.value, 0) for p in Priority},
            "resolution_time": self.resolution_time_stats(scope),
            "daily_trend": self.daily_trend(scope, now),
            "top_engineers": self.top_engineers(scope, top_n),
            "recent_complaints": list(recent),
            "message": None,
        }

    def _empty_stats(self) -> Dict[str, Any]:
        return {
            "total": 0,
            "resolved": 0,
            "pending": 0,
            "resolution_rate": 0,
            "by_status": [],
            "by_priority": [],
            "by_issue_type": [],
            "by_complaint_type": [],
            "resolution_time": _empty_resolution_time(),
            "message": NO_USERS_IN_COMPANY,
        }

    def _empty_dashboard(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        today = (now or utcnow()).date()
        return {
            "summary": {"total": 0, "open": 0, "resolved": 0, "verified": 0, "re_complaints": 0, "resolution_rate": 0},
            "status_distribution": {s.value: 0 for s in ComplaintStatus},
            "priority_distribution": {p.value: 0 for p in Priority},
            "resolution_time": _empty_resolution_time(),
            "daily_trend": [
                {"date": (today - timedelta(days=TREND_DAYS - 1 - i)).isoformat(), "created": 0, "resolved": 0}
                for i in range(TREND_DAYS)
            ],
            "top_engineers": [],
            "recent_complaints": [],
            "message": NO_USERS_IN_COMPANY,
        }
