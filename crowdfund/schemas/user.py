from pydantic import Field, ConfigDict, EmailStr, model_validator
from datetime import datetime
from typing import Dict, Optional

from crowdfund.schemas.common import CamelModel


class RegisterUserRequest(CamelModel):
    """Password based registration"""
    username: str = Field(..., min_length=3, max_length=100, pattern=r"^[A-Za-z0-9_.-]+$")
    email: EmailStr
    # bcrypt only looks at the first 72 bytes
    password: str = Field(..., min_length=6, max_length=72)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "username": "aisyah",
                "email": "aisyah@example.com",
                "password": "s3cret-pass",
            }
        }
    )


class LoginRequest(CamelModel):
    username_or_email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1, max_length=72)


class UpdateUserRequest(CamelModel):
    username: Optional[str] = Field(None, min_length=3, max_length=100, pattern=r"^[A-Za-z0-9_.-]+$")
    email: Optional[EmailStr] = None
    profile_image_url: Optional[str] = Field(None, max_length=500)

    model_config = ConfigDict(extra="forbid")


class ChangePasswordRequest(CamelModel):
    current_password: Optional[str] = Field(None, max_length=72)
    new_password: str = Field(..., min_length=6, max_length=72)
    confirm_password: str = Field(..., min_length=6, max_length=72)

    @model_validator(mode="after")
    def passwords_match(self):
        if self.new_password != self.confirm_password:
            raise ValueError("New password and confirmation do not match")
        return self


class UserResponse(CamelModel):
    """Response schema for user data, never carries the password hash"""
    id: str
    username: str
    email: str
    role: str
    verified: bool
    external: bool
    profile_image_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_user(cls, user) -> "UserResponse":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            role=user.role,
            verified=bool(user.verified),
            external=user.is_external,
            profile_image_url=user.profile_image_url,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )


class AvailabilityResponse(CamelModel):
    value: str
    available: bool


class UserStats(CamelModel):
    total_users: int
    verified_users: int
    unverified_users: int
    role_distribution: Dict[str, int]
    recent_signups: int
