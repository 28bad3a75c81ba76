from datetime import date
from typing import Dict, List, Optional

from crowdfund.schemas.common import CamelModel
from crowdfund.schemas.campaign import CampaignResponse
from crowdfund.schemas.donation import MonthlyTrend
from crowdfund.schemas.user import UserResponse


class CampaignAnalytics(CamelModel):
    total_campaigns: int
    status_distribution: Dict[str, int]
    category_distribution: Dict[str, int]
    active_campaigns: int
    expired_campaigns: int
    recent_campaigns: int
    total_goal_amount: float
    total_raised_amount: float
    average_goal_amount: float
    average_raised_amount: float
    funding_efficiency: float
    success_rate: float


class TopCampaign(CamelModel):
    id: str
    name: str
    category: str
    goal_amount: float
    raised_amount: float
    completion_percentage: float


class CampaignTrendPoint(CamelModel):
    day: date
    created: int
    approved: int


class DailyCount(CamelModel):
    day: date
    count: int


class UserAnalytics(CamelModel):
    total_users: int
    role_distribution: Dict[str, int]
    verified_users: int
    unverified_users: int
    external_users: int
    password_users: int
    recent_signups: int


class ActiveUser(CamelModel):
    user_id: str
    username: Optional[str] = None
    campaign_count: int


class FinancialAnalytics(CamelModel):
    total_raised: float
    total_processor_fees: float
    total_platform_fees: float
    total_net: float
    donation_count: int
    average_donation: float
    status_breakdown: Dict[str, int]
    monthly_trends: List[MonthlyTrend]
    growth_rate: float
    category_raised: Dict[str, float]


class AdminDashboard(CamelModel):
    campaigns: CampaignAnalytics
    users: UserAnalytics
    financial: FinancialAnalytics
    pending_campaigns: List[CampaignResponse]
    recent_users: List[UserResponse]


class AdminStats(CamelModel):
    total_campaigns: int
    pending_campaigns: int
    approved_campaigns: int
    rejected_campaigns: int
    total_users: int
    admin_users: int
    total_donations: int
    total_raised: float


class MaintenanceReport(CamelModel):
    auto_rejected_campaigns: int
    reassigned_campaigns: int
    deleted_users: int


class UserDetails(CamelModel):
    user: UserResponse
    campaigns: List[CampaignResponse]
    campaign_count: int
    total_donated: float
