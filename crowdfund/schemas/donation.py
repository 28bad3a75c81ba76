from pydantic import Field, ConfigDict, EmailStr
from datetime import datetime
from typing import Dict, List, Optional

from crowdfund.schemas.common import CamelModel


class CreateDonationRequest(CamelModel):
    """Request schema for starting a donation"""
    campaign_id: str = Field(..., min_length=1, description="Campaign receiving the donation")
    amount: float = Field(..., allow_inf_nan=False, description="Donation amount in major currency units")
    currency: str = Field(default="MYR", description="MYR, USD or SGD")
    donor_id: Optional[str] = Field(None, description="Registered donor id, overridden by the authenticated user")
    donor_name: Optional[str] = Field(None, max_length=255)
    donor_email: Optional[EmailStr] = None
    message: Optional[str] = Field(None, max_length=1000)
    is_anonymous: bool = False
    show_in_public_list: bool = True
    receive_updates: bool = False
    donor_country: Optional[str] = Field(None, min_length=2, max_length=2)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "campaignId": "3f1c2a9be0c44d7e9a0d2f1b6c8e4a11",
                "amount": 50.0,
                "currency": "MYR",
                "donorName": "Aisyah",
                "donorEmail": "aisyah@example.com",
                "message": "Good luck!",
            }
        }
    )


class CreateDonationResponse(CamelModel):
    """Processor handle the client needs to confirm the payment"""
    donation_id: str
    payment_intent_id: str
    client_secret: Optional[str] = None
    amount: float
    currency: str
    status: str


class RefundRequest(CamelModel):
    amount: Optional[float] = Field(None, gt=0, description="Partial refund amount, full refund when omitted")
    reason: Optional[str] = Field(None, max_length=500)


class DonationPublicResponse(CamelModel):
    """Donation as shown on a campaign page"""
    id: str
    campaign_id: str
    donor_name: str
    amount: float
    currency: str
    message: Optional[str] = None
    is_anonymous: bool
    created_at: datetime

    @classmethod
    def from_donation(cls, donation) -> "DonationPublicResponse":
        return cls(
            id=donation.id,
            campaign_id=donation.campaign_id,
            donor_name=donation.display_name,
            amount=donation.amount,
            currency=donation.currency,
            message=donation.message,
            is_anonymous=bool(donation.is_anonymous),
            created_at=donation.created_at,
        )


class DonationResponse(CamelModel):
    """Full donation record"""
    id: str
    campaign_id: str
    donor_id: Optional[str] = None
    donor_name: Optional[str] = None
    donor_email: Optional[str] = None
    display_name: str
    amount: float
    currency: str
    payment_intent_id: str
    payment_method_id: Optional[str] = None
    charge_id: Optional[str] = None
    payment_status: str
    processor_fee: Optional[float] = None
    platform_fee: Optional[float] = None
    net_amount: Optional[float] = None
    message: Optional[str] = None
    is_anonymous: bool
    show_in_public_list: bool
    receive_updates: bool
    is_refunded: bool
    refund_reason: Optional[str] = None
    refund_id: Optional[str] = None
    refund_amount: Optional[float] = None
    donor_ip_address: Optional[str] = None
    donor_country: Optional[str] = None
    can_refund: bool
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None

    @classmethod
    def from_donation(cls, donation) -> "DonationResponse":
        return cls(
            id=donation.id,
            campaign_id=donation.campaign_id,
            donor_id=donation.donor_id,
            donor_name=donation.donor_name,
            donor_email=donation.donor_email,
            display_name=donation.display_name,
            amount=donation.amount,
            currency=donation.currency,
            payment_intent_id=donation.payment_intent_id,
            payment_method_id=donation.payment_method_id,
            charge_id=donation.charge_id,
            payment_status=donation.payment_status,
            processor_fee=donation.processor_fee,
            platform_fee=donation.platform_fee,
            net_amount=donation.net_amount,
            message=donation.message,
            is_anonymous=bool(donation.is_anonymous),
            show_in_public_list=bool(donation.show_in_public_list),
            receive_updates=bool(donation.receive_updates),
            is_refunded=bool(donation.is_refunded),
            refund_reason=donation.refund_reason,
            refund_id=donation.refund_id,
            refund_amount=donation.refund_amount,
            donor_ip_address=donation.donor_ip_address,
            donor_country=donation.donor_country,
            can_refund=donation.can_be_refunded(),
            created_at=donation.created_at,
            updated_at=donation.updated_at,
            completed_at=donation.completed_at,
            refunded_at=donation.refunded_at,
        )


class CampaignDonationStats(CamelModel):
    campaign_id: str
    total_amount: float
    donation_count: int
    average_amount: float
    largest_amount: float
    unique_donors: int
    anonymous_count: int
    with_message_count: int


class PlatformDonationStats(CamelModel):
    total_amount: float
    donation_count: int
    unique_campaigns: int
    unique_donors: int
    average_amount: float
    total_fees: float
    net_amount: float
    recent_donation_count: int


class TopDonor(CamelModel):
    donor_id: Optional[str] = None
    display_name: str
    total_amount: float
    donation_count: int
    average_donation: float


class MonthlyTrend(CamelModel):
    year: int
    month: int
    month_name: str
    total_amount: float
    donation_count: int
    average_amount: float


class DonationAnalytics(CamelModel):
    platform: PlatformDonationStats
    status_breakdown: Dict[str, int]
    currency_breakdown: Dict[str, float]
    monthly_trends: List[MonthlyTrend]

