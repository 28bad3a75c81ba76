from typing import Optional
import enum

from sqlalchemy import Column, String, Text, DateTime, Boolean, Float
from sqlalchemy.orm import validates

from crowdfund.models.base import Base, new_id, utcnow


class PaymentStatus(str, enum.Enum):
    """Donation payment status following the processor's intent lifecycle"""
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"
    REFUNDED = "refunded"


# Allowed source states for each target state. Terminal states never move
# again except succeeded -> refunded.
ALLOWED_SOURCES = {
    PaymentStatus.PROCESSING: (PaymentStatus.PENDING,),
    PaymentStatus.SUCCEEDED: (PaymentStatus.PENDING, PaymentStatus.PROCESSING),
    PaymentStatus.FAILED: (PaymentStatus.PENDING, PaymentStatus.PROCESSING),
    PaymentStatus.CANCELED: (PaymentStatus.PENDING, PaymentStatus.PROCESSING),
    PaymentStatus.REFUNDED: (PaymentStatus.SUCCEEDED,),
}

OPEN_STATUSES = (PaymentStatus.PENDING, PaymentStatus.PROCESSING)


def can_transition(current: PaymentStatus, target: PaymentStatus) -> bool:
    return PaymentStatus(current) in ALLOWED_SOURCES.get(PaymentStatus(target), ())


def compute_net_amount(
    amount: Optional[float],
    processor_fee: Optional[float],
    platform_fee: Optional[float],
) -> Optional[float]:
    if amount is None:
        return None
    return amount - ((processor_fee or 0.0) + (platform_fee or 0.0))


class Donation(Base):
    """Single contribution to a campaign, tied to one processor payment intent"""
    __tablename__ = "donations"

    id = Column(String(64), primary_key=True, default=new_id)
    campaign_id = Column(String(64), nullable=False, index=True)
    donor_id = Column(String(64), nullable=True, index=True)  # null for anonymous guests
    donor_name = Column(String(255), nullable=True)
    donor_email = Column(String(255), nullable=True)

    amount = Column(Float, nullable=False)
    currency = Column(String(3), nullable=False, default="MYR")

    payment_intent_id = Column(String(255), nullable=False, unique=True, index=True)
    payment_method_id = Column(String(255), nullable=True)
    charge_id = Column(String(255), nullable=True)
    payment_status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value, index=True)

    message = Column(Text, nullable=True)
    is_anonymous = Column(Boolean, nullable=False, default=False)
    show_in_public_list = Column(Boolean, nullable=False, default=True)
    receive_updates = Column(Boolean, nullable=False, default=False)

    processor_fee = Column(Float, nullable=True)
    platform_fee = Column(Float, nullable=True)
    net_amount = Column(Float, nullable=True)

    is_refunded = Column(Boolean, nullable=False, default=False)
    refund_reason = Column(Text, nullable=True)
    refund_id = Column(String(255), nullable=True)
    refund_amount = Column(Float, nullable=True)

    donor_ip_address = Column(String(64), nullable=True, index=True)
    donor_country = Column(String(2), nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    completed_at = Column(DateTime, nullable=True)
    refunded_at = Column(DateTime, nullable=True)

    @validates("amount", "processor_fee", "platform_fee")
    def _recompute_net_amount(self, key, value):
        parts = {
            "amount": self.amount,
            "processor_fee": self.processor_fee,
            "platform_fee": self.platform_fee,
        }
        parts[key] = value
        self.net_amount = compute_net_amount(**parts)
        return value

    @property
    def display_name(self) -> str:
        if self.is_anonymous or not (self.donor_name or "").strip():
            return "Anonymous"
        return self.donor_name

    @property
    def is_completed(self) -> bool:
        return self.payment_status == PaymentStatus.SUCCEEDED.value

    @property
    def is_open(self) -> bool:
        return self.payment_status in (PaymentStatus.PENDING.value, PaymentStatus.PROCESSING.value)

    def can_be_refunded(self) -> bool:
        return self.is_completed and not self.is_refunded

    def __repr__(self):
        return (
            f"<Donation(id={self.id}, campaign_id={self.campaign_id}, "
            f"amount={self.amount}, status='{self.payment_status}')>"
        )
