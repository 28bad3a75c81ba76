from .base import Base, utcnow
from .campaign import Campaign, CampaignStatus
from .donation import Donation, PaymentStatus, can_transition, compute_net_amount
from .user import User, UserRole

__all__ = [
    "Base",
    "utcnow",
    "Campaign",
    "CampaignStatus",
    "Donation",
    "PaymentStatus",
    "can_transition",
    "compute_net_amount",
    "User",
    "UserRole",
]
