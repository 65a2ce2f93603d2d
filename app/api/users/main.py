# app/api/users/main.py
import uuid as uuid_pkg
from typing import List, Optional

from fastapi import APIRouter, Depends, Request, status
from sqlmodel import Session

from ...core.audit import log_action
from ...core.users import require_admin
from ...db.engine_sync import get_sync_session
from ...services.user_service import UserService
from ...schemas.user import UserRead, UserCreate, UserUpdate
from ...models.user import User

router = APIRouter()


# --- Dependency Injection ---
def get_user_service(session: Session = Depends(get_sync_session)) -> UserService:
    return UserService(session)


@router.get("/users", response_model=List[UserRead])
def api_get_users(
    role: Optional[str] = None,
    service: UserService = Depends(get_user_service),
    current_user: User = Depends(require_admin),
):
    """Users of the caller's company, optionally filtered by role (e.g. engineer)."""
    return service.get_users(current_user, role)


@router.post("/users", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def api_create_user(
    user_data: UserCreate,
    request: Request,
    service: UserService = Depends(get_user_service),
    current_user: User = Depends(require_admin),
):
    user = service.create_user(user_data, current_user)
    log_action("CREATE", "user", user.username, user=current_user, request=request, details={"role": user.role})
    return user


@router.put("/users/{user_id}", response_model=UserRead)
def api_update_user(
    user_id: uuid_pkg.UUID,
    user_data: UserUpdate,
    service: UserService = Depends(get_user_service),
    current_user: User = Depends(require_admin),
):
    return service.update_user(user_id, user_data, current_user)


@router.delete("/users/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def api_delete_user(
    user_id: uuid_pkg.UUID,
    request: Request,
    service: UserService = Depends(get_user_service),
    current_user: User = Depends(require_admin),
):
    user = service.delete_user(user_id, current_user)
    log_action("DELETE", "user", user.username, user=current_user, request=request)
