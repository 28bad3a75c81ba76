from fastapi import APIRouter, Depends
import structlog

from crowdfund.api.deps import get_services
from crowdfund.factory import Services
from crowdfund.schemas.auth import AuthResponse, TokenLoginRequest, TokenRegisterRequest

router = APIRouter(prefix="/api/auth", tags=["auth"])
logger = structlog.get_logger(__name__)


@router.post("/register", response_model=AuthResponse, status_code=201)
def register(request: TokenRegisterRequest, services: Services = Depends(get_services)):
    """
    Register a local account for an identity-provider user.

    The provider token must carry a verified email address.
    """
    return services.auth.register(request)


@router.post("/login", response_model=AuthResponse)
def login(request: TokenLoginRequest, services: Services = Depends(get_services)):
    """Log in with a provider token; first-time users get an account created"""
    return services.auth.login(request.token)
