import os
import tempfile

_TMP = tempfile.mkdtemp(prefix="complaint-desk-tests-")

# Settings are read at import time
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["NOTIFY_WEBHOOK_URL"] = ""
os.environ["AUDIT_LOG_DIR"] = os.path.join(_TMP, "logs")
os.environ["UPLOAD_DIR"] = os.path.join(_TMP, "uploads")

from datetime import timedelta  # noqa: E402

import pytest  # noqa: E402
from fastapi import HTTPException, Request  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import Session, SQLModel, create_engine, select  # noqa: E402

from app.core.constants import UserRole  # noqa: E402
from app.core.users import current_active_user  # noqa: E402
from app.db.engine_sync import get_sync_session  # noqa: E402
from app.main import app  # noqa: E402
from app.models.complaint import Complaint  # noqa: E402
from app.models.user import User  # noqa: E402
from app.services.complaint_service import ComplaintService  # noqa: E402

TEST_USER_HEADER = "X-Test-User"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def make_user(session):
    def _make(username, role=UserRole.USER.value, company=None, **fields):
        user = User(
            username=username,
            email=f"{username}@example.com",
            hashed_password="not-a-real-hash",
            role=role,
            assigned_company_id=company.id if company else None,
            phone_number=fields.pop("phone_number", "+10000000000"),
            **fields,
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        return user

    return _make


@pytest.fixture
def admin(make_user):
    return make_user("admin_a", UserRole.ADMIN.value)


@pytest.fixture
def other_admin(make_user):
    return make_user("admin_b", UserRole.ADMIN.value)


@pytest.fixture
def superadmin(make_user):
    return make_user("root", UserRole.SUPERADMIN.value)


@pytest.fixture
def engineer(make_user, admin):
    return make_user("eng_1", UserRole.ENGINEER.value, company=admin, first_name="Ravi", last_name="Kumar")


@pytest.fixture
def second_engineer(make_user, admin):
    return make_user("eng_2", UserRole.ENGINEER.value, company=admin)


@pytest.fixture
def customer(make_user, admin):
    return make_user("cust_1", UserRole.USER.value, company=admin, first_name="Asha")


@pytest.fixture
def other_customer(make_user, other_admin):
    return make_user("cust_2", UserRole.USER.value, company=other_admin)


@pytest.fixture
def complaints(session):
    return ComplaintService(session)


@pytest.fixture
def new_complaint(complaints):
    def _new(owner, type="WIFI", **overrides):
        data = {
            "title": "No internet",
            "description": "Router lights are off since morning",
            "issue_type": "connectivity",
            "type": type,
        }
        data.update(overrides)
        return complaints.create_complaint(data, owner)

    return _new


def backdate(session, complaint: Complaint, hours: float) -> Complaint:
    """Move created_at into the past so resolution times are measurable."""
    complaint.created_at = complaint.created_at - timedelta(hours=hours)
    session.add(complaint)
    session.commit()
    session.refresh(complaint)
    return complaint


@pytest.fixture
def client(engine):
    def override_session():
        with Session(engine) as session:
            yield session

    def override_user(request: Request) -> User:
        username = request.headers.get(TEST_USER_HEADER)
        if not username:
            raise HTTPException(status_code=401, detail="Unauthorized")
        with Session(engine) as session:
            user = session.exec(select(User).where(User.username == username)).first()
        if not user or not user.is_active:
            raise HTTPException(status_code=401, detail="Unauthorized")
        return user

    app.dependency_overrides[get_sync_session] = override_session
    app.dependency_overrides[current_active_user] = override_user
    yield TestClient(app)
    app.dependency_overrides.clear()


def as_user(user: User) -> dict:
    return {TEST_USER_HEADER: user.username}
