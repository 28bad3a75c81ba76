from pydantic import Field, ConfigDict, model_validator
from datetime import date, datetime
from typing import Dict, List, Optional

from crowdfund.schemas.common import CamelModel


class CreateCampaignRequest(CamelModel):
    """Request schema for creating a campaign"""
    name: str = Field(..., min_length=1, max_length=200, description="Campaign name is required")
    category: str = Field(..., min_length=1, max_length=100, description="Campaign category is required")
    description: Optional[str] = Field(None, description="Campaign description")
    image_url: Optional[str] = Field(None, max_length=500, description="Cover image URL")
    document_url: Optional[str] = Field(None, max_length=500, description="Supporting document URL")
    goal_amount: float = Field(..., gt=0, description="Goal amount must be greater than 0")
    start_date: Optional[date] = Field(None, description="Campaign start date")
    end_date: Optional[date] = Field(None, description="Campaign end date")
    creator_id: Optional[str] = Field(None, description="Creator id, overridden by the authenticated user")

    model_config = ConfigDict(
        extra="forbid",
        json_schema_extra={
            "example": {
                "name": "Clean Water for Kampung Baru",
                "category": "Community",
                "description": "Installing water filters for 200 households",
                "goalAmount": 25000.0,
                "startDate": "2025-06-01",
                "endDate": "2025-08-31",
            }
        },
    )

    @model_validator(mode="after")
    def check_dates(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("End date must be on or after start date")
        return self


class UpdateCampaignRequest(CamelModel):
    """Request schema for updating a campaign. The raised amount is not writable."""
    name: Optional[str] = Field(None, min_length=1, max_length=200, description="Campaign name")
    category: Optional[str] = Field(None, min_length=1, max_length=100, description="Campaign category")
    description: Optional[str] = Field(None, description="Campaign description")
    image_url: Optional[str] = Field(None, max_length=500, description="Cover image URL")
    document_url: Optional[str] = Field(None, max_length=500, description="Supporting document URL")
    goal_amount: Optional[float] = Field(None, gt=0, description="Goal amount")
    start_date: Optional[date] = Field(None, description="Campaign start date")
    end_date: Optional[date] = Field(None, description="Campaign end date")

    model_config = ConfigDict(
        extra="forbid",
        json_schema_extra={
            "example": {
                "description": "Extended to cover two more villages",
                "goalAmount": 40000.0,
                "endDate": "2025-09-30",
            }
        },
    )


class CampaignResponse(CamelModel):
    """Response schema for campaign data"""
    id: str
    creator_id: Optional[str] = None
    creator_username: Optional[str] = None
    name: str
    category: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    document_url: Optional[str] = None
    goal_amount: float
    raised_amount: float
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    status: str
    verified: bool
    rejection_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    completion_percentage: float
    days_remaining: Optional[int] = None
    is_active: bool
    can_receive_donations: bool

    @classmethod
    def from_campaign(cls, campaign, creator_username: Optional[str] = None) -> "CampaignResponse":
        today = date.today()
        days_remaining = None
        if campaign.end_date is not None:
            days_remaining = max((campaign.end_date - today).days, 0)
        return cls(
            id=campaign.id,
            creator_id=campaign.creator_id,
            creator_username=creator_username,
            name=campaign.name,
            category=campaign.category,
            description=campaign.description,
            image_url=campaign.image_url,
            document_url=campaign.document_url,
            goal_amount=campaign.goal_amount,
            raised_amount=campaign.raised_amount or 0.0,
            start_date=campaign.start_date,
            end_date=campaign.end_date,
            status=campaign.status,
            verified=bool(campaign.verified),
            rejection_reason=campaign.rejection_reason,
            created_at=campaign.created_at,
            updated_at=campaign.updated_at,
            completion_percentage=campaign.completion_percentage,
            days_remaining=days_remaining,
            is_active=campaign.is_active(today),
            can_receive_donations=campaign.can_receive_donations(today),
        )


class ModerationRequest(CamelModel):
    """Optional body for approve/reject"""
    reason: Optional[str] = Field(None, max_length=1000, description="Rejection reason or approval note")


class BulkModerationRequest(CamelModel):
    campaign_ids: List[str] = Field(..., min_length=1, description="Campaign ids to moderate")
    reason: Optional[str] = Field(None, max_length=1000)


class BulkModerationResponse(CamelModel):
    succeeded: List[str]
    failed: Dict[str, str]
