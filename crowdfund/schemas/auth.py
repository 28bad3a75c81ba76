from pydantic import Field
from typing import Optional

from crowdfund.schemas.common import CamelModel
from crowdfund.schemas.user import UserResponse


class TokenRegisterRequest(CamelModel):
    """Register with a token issued by the identity provider"""
    token: str = Field(..., min_length=1)
    username: Optional[str] = Field(None, min_length=3, max_length=100, pattern=r"^[A-Za-z0-9_.-]+$")


class TokenLoginRequest(CamelModel):
    token: str = Field(..., min_length=1)


class AuthResponse(CamelModel):
    message: str
    user: UserResponse
    access_token: Optional[str] = None
    token_type: str = "bearer"
