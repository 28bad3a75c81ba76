from datetime import date
import enum

from sqlalchemy import Column, String, Text, Date, DateTime, Boolean, Float

from crowdfund.models.base import Base, new_id, utcnow


class CampaignStatus(str, enum.Enum):
    """Moderation status of a campaign"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Campaign(Base):
    """Fundraising campaign"""
    __tablename__ = "campaigns"

    id = Column(String(64), primary_key=True, default=new_id)
    creator_id = Column(String(64), nullable=True, index=True)
    name = Column(String(200), nullable=False, index=True)
    category = Column(String(100), nullable=False, index=True)
    description = Column(Text, nullable=True)
    image_url = Column(String(500), nullable=True)
    document_url = Column(String(500), nullable=True)
    goal_amount = Column(Float, nullable=False, default=0.0)
    # derived from succeeded donations, written only by DonationService
    raised_amount = Column(Float, nullable=False, default=0.0)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    status = Column(String(20), nullable=False, default=CampaignStatus.PENDING.value, index=True)
    verified = Column(Boolean, nullable=False, default=False)
    rejection_reason = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def completion_percentage(self) -> float:
        if not self.goal_amount:
            return 0.0
        return (self.raised_amount or 0.0) / self.goal_amount * 100

    def is_expired(self, today: date = None) -> bool:
        today = today or date.today()
        return self.end_date is not None and self.end_date < today

    def is_active(self, today: date = None) -> bool:
        return (
            self.status == CampaignStatus.APPROVED.value
            and bool(self.verified)
            and not self.is_expired(today)
        )

    def can_receive_donations(self, today: date = None) -> bool:
        today = today or date.today()
        if self.start_date is not None and self.start_date > today:
            return False
        return self.is_active(today)

    def approve(self):
        self.status = CampaignStatus.APPROVED.value
        self.verified = True
        self.rejection_reason = None

    def reject(self, reason: str = None):
        self.status = CampaignStatus.REJECTED.value
        self.verified = False
        self.rejection_reason = reason

    def __repr__(self):
        return f"<Campaign(id={self.id}, name='{self.name}', status='{self.status}')>"
