"""
Request dependencies: services, caller identity, authorization and paging
"""
from typing import Literal, Optional

from fastapi import Depends, Query, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import structlog

from crowdfund.core.errors import ForbiddenError, UnauthorizedError
from crowdfund.factory import Services
from crowdfund.models.user import User
from crowdfund.schemas.common import PageParams

logger = structlog.get_logger(__name__)
security = HTTPBearer(auto_error=False)


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_current_user(
    services: Services = Depends(get_services),
    credentials: Optional[HTTPAuthorizationCredentials] = Security(security),
) -> Optional[User]:
    """Resolve the bearer token to a user; a bad token leaves the request anonymous"""
    if not credentials:
        return None
    try:
        identity = services.verifier.verify(credentials.credentials)
    except UnauthorizedError as e:
        logger.warning("Ignoring invalid bearer token", error=e.message)
        return None

    user = services.users.find_for_subject(identity.subject)
    if user is None:
        logger.warning("Token subject has no local account", subject=identity.subject)
    return user


def _role_mode(services: Services) -> bool:
    return services.settings.authorization_mode == "role"


def require_verified_user(
    services: Services = Depends(get_services),
    user: Optional[User] = Depends(get_current_user),
) -> Optional[User]:
    """Campaign creators must be signed in and verified when roles are enforced"""
    if not _role_mode(services):
        return user
    if user is None:
        raise UnauthorizedError("Authentication required")
    if not user.verified:
        raise ForbiddenError("Only verified users can create campaigns")
    return user


def ensure_admin(services: Services, user: Optional[User]) -> Optional[User]:
    if not _role_mode(services):
        return user
    if user is None:
        raise UnauthorizedError("Authentication required")
    if not user.is_admin:
        raise ForbiddenError("Admin access required")
    return user


def require_admin(
    services: Services = Depends(get_services),
    user: Optional[User] = Depends(get_current_user),
) -> Optional[User]:
    return ensure_admin(services, user)


def page_params(
    page: int = Query(0, ge=0),
    size: int = Query(20, ge=1, le=100),
    sort_by: str = Query("createdAt", alias="sortBy"),
    sort_dir: Literal["asc", "desc"] = Query("desc", alias="sortDir"),
) -> PageParams:
    return PageParams(page=page, size=size, sort_by=sort_by, sort_dir=sort_dir)


def client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None
