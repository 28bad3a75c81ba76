"""
Identity token verification
"""
from dataclasses import dataclass
from typing import Optional, Protocol

from jose import JWTError, jwt
import structlog

from crowdfund.core.errors import UnauthorizedError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class VerifiedIdentity:
    subject: str
    email: Optional[str]
    email_verified: bool


class TokenVerifier(Protocol):
    """Protocol for bearer token verification"""

    def verify(self, token: str) -> VerifiedIdentity:
        """Return the identity behind ``token`` or raise UnauthorizedError"""
        ...


class JoseTokenVerifier:
    """Verifies signed JWTs carrying ``sub``, ``email`` and ``email_verified`` claims"""

    def __init__(self, secret: str, algorithm: str = "HS256", audience: Optional[str] = None):
        self.secret = secret
        self.algorithm = algorithm
        self.audience = audience

    def verify(self, token: str) -> VerifiedIdentity:
        options = {"verify_aud": self.audience is not None}
        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                audience=self.audience,
                options=options,
            )
        except JWTError as e:
            logger.warning("JWT decode error", error=str(e))
            raise UnauthorizedError("Invalid token")

        subject = payload.get("sub")
        if not subject:
            raise UnauthorizedError("Token has no subject")

        return VerifiedIdentity(
            subject=subject,
            email=payload.get("email"),
            email_verified=bool(payload.get("email_verified", False)),
        )
