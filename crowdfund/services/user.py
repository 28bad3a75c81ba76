from datetime import timedelta
from typing import List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, sessionmaker
import structlog

from crowdfund.core.config import Settings
from crowdfund.core.errors import InvalidStateError, NotFoundError, UnauthorizedError, ValidationError
from crowdfund.core.security import create_access_token, hash_password, verify_password
from crowdfund.database.database import session_scope
from crowdfund.models.base import utcnow
from crowdfund.models.user import User, UserRole
from crowdfund.schemas.auth import AuthResponse
from crowdfund.schemas.common import Page, PageParams
from crowdfund.schemas.user import (
    ChangePasswordRequest,
    RegisterUserRequest,
    UpdateUserRequest,
    UserResponse,
    UserStats,
)
from crowdfund.services.pagination import paginate

logger = structlog.get_logger(__name__)

USER_SORT_COLUMNS = {
    "createdAt": User.created_at,
    "updatedAt": User.updated_at,
    "username": User.username,
    "email": User.email,
    "role": User.role,
}


class UserService:
    """Business logic for user accounts"""

    def __init__(self, session_factory: sessionmaker, settings: Settings):
        self.session_factory = session_factory
        self.settings = settings

    def _get(self, db: Session, user_id: str) -> User:
        user = db.get(User, user_id)
        if user is None:
            raise NotFoundError(f"User not found with id: {user_id}")
        return user

    def _ensure_unique(self, db: Session, username: Optional[str], email: Optional[str], exclude_id: str = None):
        if username:
            stmt = select(User.id).where(func.lower(User.username) == username.lower())
            if exclude_id:
                stmt = stmt.where(User.id != exclude_id)
            if db.execute(stmt).first():
                raise InvalidStateError(f"Username already exists: {username}")
        if email:
            stmt = select(User.id).where(func.lower(User.email) == email.lower())
            if exclude_id:
                stmt = stmt.where(User.id != exclude_id)
            if db.execute(stmt).first():
                raise InvalidStateError(f"Email already exists: {email}")

    def register(self, request: RegisterUserRequest) -> UserResponse:
        """Create a password account with the default role"""
        with session_scope(self.session_factory) as db:
            self._ensure_unique(db, request.username, request.email)
            user = User(
                username=request.username,
                email=request.email.lower(),
                role=UserRole.USER.value,
                verified=False,
                password_hash=hash_password(request.password, rounds=self.settings.bcrypt_rounds),
            )
            db.add(user)
            db.flush()
            db.refresh(user)
            response = UserResponse.from_user(user)

        logger.info("User registered", user_id=response.id, username=response.username)
        return response

    def authenticate(self, username_or_email: str, password: str) -> AuthResponse:
        """Check a password login and issue an access token"""
        with session_scope(self.session_factory) as db:
            user = db.execute(
                select(User).where(
                    or_(
                        func.lower(User.username) == username_or_email.lower(),
                        func.lower(User.email) == username_or_email.lower(),
                    )
                )
            ).scalar_one_or_none()

            if user is None or not verify_password(password, user.password_hash):
                logger.warning("Invalid login attempt", username_or_email=username_or_email)
                raise UnauthorizedError("Invalid credentials")
            response = UserResponse.from_user(user)

        token = create_access_token(
            self.settings,
            subject=response.id,
            email=response.email,
            email_verified=response.verified,
        )
        logger.info("User logged in", user_id=response.id)
        return AuthResponse(message="Login successful", user=response, access_token=token)

    def get_user(self, user_id: str) -> UserResponse:
        with session_scope(self.session_factory) as db:
            return UserResponse.from_user(self._get(db, user_id))

    def get_by_username(self, username: str) -> UserResponse:
        with session_scope(self.session_factory) as db:
            user = db.execute(select(User).where(User.username == username)).scalar_one_or_none()
            if user is None:
                raise NotFoundError(f"User not found with username: {username}")
            return UserResponse.from_user(user)

    def find_for_subject(self, subject: str) -> Optional[User]:
        """Resolve a token subject to a user: external id first, then our own id"""
        with session_scope(self.session_factory) as db:
            user = db.execute(select(User).where(User.external_auth_id == subject)).scalar_one_or_none()
            if user is None:
                user = db.get(User, subject)
            return user

    def list_users(
        self,
        params: PageParams,
        role: Optional[str] = None,
        verified: Optional[bool] = None,
        search: Optional[str] = None,
    ) -> Page:
        stmt = select(User)
        if role:
            try:
                stmt = stmt.where(User.role == UserRole(role.lower()).value)
            except ValueError:
                raise ValidationError(f"Invalid role: {role}")
        if verified is not None:
            stmt = stmt.where(User.verified.is_(verified))
        if search:
            pattern = f"%{search.strip()}%"
            stmt = stmt.where(or_(User.username.ilike(pattern), User.email.ilike(pattern)))
        with session_scope(self.session_factory) as db:
            return paginate(db, stmt, params, USER_SORT_COLUMNS, UserResponse.from_user)

    def users_by_role(self, role: str) -> List[UserResponse]:
        try:
            role_value = UserRole(role.lower()).value
        except ValueError:
            raise ValidationError(f"Invalid role: {role}")
        with session_scope(self.session_factory) as db:
            users = db.execute(select(User).where(User.role == role_value).order_by(User.created_at)).scalars().all()
            return [UserResponse.from_user(u) for u in users]

    def search(self, query: str) -> List[UserResponse]:
        if not query or not query.strip():
            raise ValidationError("Search query cannot be empty")
        pattern = f"%{query.strip()}%"
        with session_scope(self.session_factory) as db:
            users = db.execute(
                select(User)
                .where(or_(User.username.ilike(pattern), User.email.ilike(pattern)))
                .order_by(User.username)
            ).scalars().all()
            return [UserResponse.from_user(u) for u in users]

    def update_user(self, user_id: str, request: UpdateUserRequest) -> UserResponse:
        changes = request.model_dump(exclude_unset=True)
        with session_scope(self.session_factory) as db:
            user = self._get(db, user_id)
            self._ensure_unique(db, changes.get("username"), changes.get("email"), exclude_id=user_id)
            if "email" in changes and changes["email"]:
                changes["email"] = changes["email"].lower()
            for key, value in changes.items():
                if value is not None:
                    setattr(user, key, value)
            db.flush()
            db.refresh(user)
            response = UserResponse.from_user(user)

        logger.info("User updated", user_id=user_id, fields=sorted(changes))
        return response

    def change_password(self, user_id: str, request: ChangePasswordRequest, require_current: bool = True) -> UserResponse:
        with session_scope(self.session_factory) as db:
            user = self._get(db, user_id)
            if user.is_external:
                raise InvalidStateError("Password is managed by the identity provider for this account")
            if require_current and not verify_password(request.current_password or "", user.password_hash):
                raise ValidationError("Current password is incorrect")
            user.password_hash = hash_password(request.new_password, rounds=self.settings.bcrypt_rounds)
            db.flush()
            response = UserResponse.from_user(user)

        logger.info("User password changed", user_id=user_id)
        return response

    def _set_role(self, user_id: str, role: UserRole) -> UserResponse:
        with session_scope(self.session_factory) as db:
            user = self._get(db, user_id)
            if user.role == role.value:
                raise InvalidStateError(f"User is already {role.value}")
            user.role = role.value
            db.flush()
            response = UserResponse.from_user(user)
        logger.info("User role changed", user_id=user_id, role=role.value)
        return response

    def promote_to_admin(self, user_id: str) -> UserResponse:
        return self._set_role(user_id, UserRole.ADMIN)

    def demote_to_user(self, user_id: str) -> UserResponse:
        return self._set_role(user_id, UserRole.USER)

    def verify_user(self, user_id: str) -> UserResponse:
        with session_scope(self.session_factory) as db:
            user = self._get(db, user_id)
            user.verified = True
            db.flush()
            response = UserResponse.from_user(user)
        logger.info("User verified", user_id=user_id)
        return response

    def delete_user(self, user_id: str):
        with session_scope(self.session_factory) as db:
            db.delete(self._get(db, user_id))
        logger.info("User deleted", user_id=user_id)

    def is_username_available(self, username: str) -> bool:
        with session_scope(self.session_factory) as db:
            return db.execute(
                select(User.id).where(func.lower(User.username) == username.lower())
            ).first() is None

    def is_email_available(self, email: str) -> bool:
        with session_scope(self.session_factory) as db:
            return db.execute(
                select(User.id).where(func.lower(User.email) == email.lower())
            ).first() is None

    def stats(self, recent_days: int = 30) -> UserStats:
        since = utcnow() - timedelta(days=recent_days)
        with session_scope(self.session_factory) as db:
            users = db.execute(select(User.role, User.verified, User.created_at)).all()

        role_distribution = {role.value: 0 for role in UserRole}
        for role, _, _ in users:
            role_distribution[role] = role_distribution.get(role, 0) + 1
        verified = sum(1 for _, is_verified, _ in users if is_verified)
        return UserStats(
            total_users=len(users),
            verified_users=verified,
            unverified_users=len(users) - verified,
            role_distribution=role_distribution,
            recent_signups=sum(1 for _, _, created_at in users if created_at >= since),
        )

    def recent_users(self, days: int = 30, limit: Optional[int] = None) -> List[UserResponse]:
        since = utcnow() - timedelta(days=days)
        stmt = select(User).where(User.created_at >= since).order_by(User.created_at.desc())
        if limit:
            stmt = stmt.limit(limit)
        with session_scope(self.session_factory) as db:
            return [UserResponse.from_user(u) for u in db.execute(stmt).scalars().all()]
