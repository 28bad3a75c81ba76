"""
Password hashing and access token issuing
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
from jose import jwt

from crowdfund.core.config import Settings


def hash_password(password: str, rounds: int = 12) -> str:
    """Hash a password with bcrypt"""
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    """Check a password against a stored bcrypt hash"""
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def create_access_token(
    settings: Settings,
    subject: str,
    email: str,
    email_verified: bool,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Create a signed JWT for a password-authenticated user"""
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(seconds=settings.access_token_expire_seconds))

    claims = {
        "sub": subject,
        "email": email,
        "email_verified": email_verified,
        "iat": now,
        "exp": expire,
    }
    if settings.auth_jwt_audience:
        claims["aud"] = settings.auth_jwt_audience

    return jwt.encode(claims, settings.auth_jwt_secret, algorithm=settings.auth_jwt_algorithm)
