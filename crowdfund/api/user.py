from fastapi import APIRouter, Depends, Query, Response
from typing import List, Optional
import structlog

from crowdfund.api.deps import get_current_user, get_services, page_params, require_admin
from crowdfund.core.errors import ForbiddenError, UnauthorizedError
from crowdfund.factory import Services
from crowdfund.models.user import User
from crowdfund.schemas.auth import AuthResponse
from crowdfund.schemas.common import Page, PageParams
from crowdfund.schemas.user import (
    AvailabilityResponse,
    ChangePasswordRequest,
    LoginRequest,
    RegisterUserRequest,
    UpdateUserRequest,
    UserResponse,
    UserStats,
)

router = APIRouter(prefix="/api/users", tags=["users"])
logger = structlog.get_logger(__name__)


def _check_self(services: Services, user: Optional[User], user_id: str):
    if services.settings.authorization_mode != "role":
        return
    if user is None:
        raise UnauthorizedError("Authentication required")
    if user.id != user_id and not user.is_admin:
        raise ForbiddenError("You can only manage your own account")


@router.post("/register", response_model=UserResponse, status_code=201)
def register_user(user_data: RegisterUserRequest, services: Services = Depends(get_services)):
    """Register with username, email and password"""
    return services.users.register(user_data)


@router.post("/login", response_model=AuthResponse)
def login_user(credentials: LoginRequest, services: Services = Depends(get_services)):
    return services.users.authenticate(credentials.username_or_email, credentials.password)


@router.get("", response_model=Page[UserResponse])
def list_users(
    params: PageParams = Depends(page_params),
    role: Optional[str] = Query(None),
    verified: Optional[bool] = Query(None),
    search: Optional[str] = Query(None),
    services: Services = Depends(get_services),
    _admin: Optional[User] = Depends(require_admin),
):
    return services.users.list_users(params, role=role, verified=verified, search=search)


@router.get("/me", response_model=UserResponse)
def current_user(
    services: Services = Depends(get_services),
    user: Optional[User] = Depends(get_current_user),
):
    if user is None:
        raise UnauthorizedError("Authentication required")
    return services.users.get_user(user.id)


@router.get("/stats", response_model=UserStats)
def user_stats(
    recent_days: int = Query(30, ge=1, le=365, alias="recentDays"),
    services: Services = Depends(get_services),
    _admin: Optional[User] = Depends(require_admin),
):
    return services.users.stats(recent_days)


@router.get("/recent", response_model=List[UserResponse])
def recent_users(
    days: int = Query(30, ge=1, le=365),
    services: Services = Depends(get_services),
    _admin: Optional[User] = Depends(require_admin),
):
    return services.users.recent_users(days)


@router.get("/search", response_model=List[UserResponse])
def search_users(q: str = Query(..., min_length=1), services: Services = Depends(get_services)):
    return services.users.search(q)


@router.get("/check/username/{username}", response_model=AvailabilityResponse)
def check_username(username: str, services: Services = Depends(get_services)):
    return AvailabilityResponse(value=username, available=services.users.is_username_available(username))


@router.get("/check/email/{email}", response_model=AvailabilityResponse)
def check_email(email: str, services: Services = Depends(get_services)):
    return AvailabilityResponse(value=email, available=services.users.is_email_available(email))


@router.get("/username/{username}", response_model=UserResponse)
def get_by_username(username: str, services: Services = Depends(get_services)):
    return services.users.get_by_username(username)


@router.get("/role/{role}", response_model=List[UserResponse])
def users_by_role(
    role: str,
    services: Services = Depends(get_services),
    _admin: Optional[User] = Depends(require_admin),
):
    return services.users.users_by_role(role)


@router.get("/{user_id}", response_model=UserResponse)
def get_user(user_id: str, services: Services = Depends(get_services)):
    return services.users.get_user(user_id)


@router.put("/{user_id}", response_model=UserResponse)
def update_user(
    user_id: str,
    user_data: UpdateUserRequest,
    services: Services = Depends(get_services),
    user: Optional[User] = Depends(get_current_user),
):
    _check_self(services, user, user_id)
    return services.users.update_user(user_id, user_data)


@router.put("/{user_id}/password", response_model=UserResponse)
def change_password(
    user_id: str,
    password_data: ChangePasswordRequest,
    services: Services = Depends(get_services),
    user: Optional[User] = Depends(get_current_user),
):
    """Change a password; admins resetting someone else's skip the current-password check"""
    _check_self(services, user, user_id)
    admin_reset = user is not None and user.is_admin and user.id != user_id
    return services.users.change_password(user_id, password_data, require_current=not admin_reset)


@router.post("/{user_id}/promote", response_model=UserResponse)
def promote_user(
    user_id: str,
    services: Services = Depends(get_services),
    _admin: Optional[User] = Depends(require_admin),
):
    return services.users.promote_to_admin(user_id)


@router.post("/{user_id}/demote", response_model=UserResponse)
def demote_user(
    user_id: str,
    services: Services = Depends(get_services),
    _admin: Optional[User] = Depends(require_admin),
):
    return services.users.demote_to_user(user_id)


@router.delete("/{user_id}", status_code=204)
def delete_user(
    user_id: str,
    services: Services = Depends(get_services),
    user: Optional[User] = Depends(get_current_user),
):
    _check_self(services, user, user_id)
    services.users.delete_user(user_id)
    return Response(status_code=204)
