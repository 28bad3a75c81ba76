"""
Accounts backed by an external identity provider.

The provider's token proves who the caller is; this service keeps a matching
local user record so campaigns, donations and roles can reference it.
"""
from typing import Optional
import re

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker
import structlog

from crowdfund.core.errors import InvalidStateError, ValidationError
from crowdfund.database.database import session_scope
from crowdfund.models.user import User, UserRole
from crowdfund.schemas.auth import AuthResponse, TokenRegisterRequest
from crowdfund.schemas.user import UserResponse
from crowdfund.services.identity import TokenVerifier, VerifiedIdentity

logger = structlog.get_logger(__name__)


def username_from_email(email: str) -> str:
    local = email.split("@")[0]
    cleaned = re.sub(r"[^A-Za-z0-9_.-]", "", local)
    return cleaned or "user"


class AuthService:
    """Registration and login with identity provider tokens"""

    def __init__(self, session_factory: sessionmaker, verifier: TokenVerifier):
        self.session_factory = session_factory
        self.verifier = verifier

    def _unique_username(self, db: Session, base: str) -> str:
        candidate, suffix = base, 1
        while db.execute(select(User.id).where(func.lower(User.username) == candidate.lower())).first():
            suffix += 1
            candidate = f"{base}{suffix}"
        return candidate

    def _find(self, db: Session, identity: VerifiedIdentity) -> Optional[User]:
        return db.execute(select(User).where(User.external_auth_id == identity.subject)).scalar_one_or_none()

    def register(self, request: TokenRegisterRequest) -> AuthResponse:
        """Create the local account for a verified provider identity"""
        identity = self.verifier.verify(request.token)
        if not identity.email:
            raise ValidationError("Token carries no email address")
        if not identity.email_verified:
            logger.warning("Registration with unverified email", subject=identity.subject)
            raise ValidationError("Email not verified. Please check your email and verify your account.")

        with session_scope(self.session_factory) as db:
            if self._find(db, identity) is not None:
                raise InvalidStateError("User already registered. Please login instead.")
            if db.execute(select(User.id).where(func.lower(User.email) == identity.email.lower())).first():
                raise InvalidStateError("User already registered. Please login instead.")

            username = request.username or username_from_email(identity.email)
            if request.username and db.execute(
                select(User.id).where(func.lower(User.username) == request.username.lower())
            ).first():
                raise InvalidStateError(f"Username already exists: {request.username}")
            if not request.username:
                username = self._unique_username(db, username)

            user = User(
                external_auth_id=identity.subject,
                email=identity.email.lower(),
                username=username,
                role=UserRole.USER.value,
                verified=True,
            )
            db.add(user)
            db.flush()
            db.refresh(user)
            response = UserResponse.from_user(user)

        logger.info("External user registered", user_id=response.id, subject=identity.subject)
        return AuthResponse(message=f"User registered successfully with username: {response.username}", user=response)

    def login(self, token: str) -> AuthResponse:
        """Log in with a provider token, creating the local account on first sight"""
        identity = self.verifier.verify(token)

        with session_scope(self.session_factory) as db:
            user = self._find(db, identity)
            if user is not None:
                if identity.email_verified and not user.verified:
                    user.verified = True
                response = UserResponse.from_user(user)
                message = f"Login successful: {user.email}"
            else:
                if not identity.email:
                    raise ValidationError("Token carries no email address")
                if db.execute(select(User.id).where(func.lower(User.email) == identity.email.lower())).first():
                    raise InvalidStateError("Email is already used by another account")
                user = User(
                    external_auth_id=identity.subject,
                    email=identity.email.lower(),
                    username=self._unique_username(db, username_from_email(identity.email)),
                    role=UserRole.USER.value,
                    verified=identity.email_verified,
                )
                db.add(user)
                db.flush()
                db.refresh(user)
                response = UserResponse.from_user(user)
                message = f"Login successful (user auto-created): {user.email}"
                logger.info("External user auto-created", user_id=user.id, subject=identity.subject)

        logger.info("External user logged in", user_id=response.id)
        return AuthResponse(message=message, user=response)
