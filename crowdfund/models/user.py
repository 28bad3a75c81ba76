import enum

from sqlalchemy import Column, String, DateTime, Boolean

from crowdfund.models.base import Base, new_id, utcnow


class UserRole(str, enum.Enum):
    USER = "user"
    ADMIN = "admin"


class User(Base):
    """Platform account, either password based or linked to an external identity"""
    __tablename__ = "users"

    id = Column(String(64), primary_key=True, default=new_id)
    external_auth_id = Column(String(128), nullable=True, unique=True, index=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    username = Column(String(100), nullable=False, unique=True, index=True)
    role = Column(String(20), nullable=False, default=UserRole.USER.value, index=True)
    verified = Column(Boolean, nullable=False, default=False)
    password_hash = Column(String(255), nullable=True)
    profile_image_url = Column(String(500), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value

    @property
    def is_external(self) -> bool:
        return self.external_auth_id is not None

    def __repr__(self):
        return f"<User(id={self.id}, username='{self.username}', role='{self.role}')>"
