"""
Administrator endpoints: dashboards, moderation, user management and maintenance
"""
from fastapi import APIRouter, Body, Depends, Query, Response
from typing import List, Optional
import structlog

from crowdfund.api.deps import get_services, page_params, require_admin
from crowdfund.factory import Services
from crowdfund.schemas.admin import (
    ActiveUser,
    AdminDashboard,
    AdminStats,
    CampaignAnalytics,
    CampaignTrendPoint,
    DailyCount,
    FinancialAnalytics,
    MaintenanceReport,
    TopCampaign,
    UserAnalytics,
    UserDetails,
)
from crowdfund.schemas.campaign import (
    BulkModerationRequest,
    BulkModerationResponse,
    CampaignResponse,
    ModerationRequest,
)
from crowdfund.schemas.common import Page, PageParams
from crowdfund.schemas.user import UserResponse

router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)])
logger = structlog.get_logger(__name__)


@router.get("/dashboard", response_model=AdminDashboard)
def dashboard(services: Services = Depends(get_services)):
    return services.admin.dashboard()


@router.get("/stats", response_model=AdminStats)
def stats(services: Services = Depends(get_services)):
    return services.admin.stats()


# Campaign moderation

@router.get("/campaigns", response_model=Page[CampaignResponse])
def campaigns(
    params: PageParams = Depends(page_params),
    status: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    services: Services = Depends(get_services),
):
    return services.campaigns.list_campaigns(params, status=status, category=category)


@router.get("/campaigns/pending", response_model=List[CampaignResponse])
def pending_campaigns(services: Services = Depends(get_services)):
    return services.campaigns.pending_campaigns()


@router.post("/campaigns/bulk-approve", response_model=BulkModerationResponse)
def bulk_approve(request: BulkModerationRequest, services: Services = Depends(get_services)):
    return services.campaigns.bulk_approve(request.campaign_ids, request.reason)


@router.post("/campaigns/bulk-reject", response_model=BulkModerationResponse)
def bulk_reject(request: BulkModerationRequest, services: Services = Depends(get_services)):
    return services.campaigns.bulk_reject(request.campaign_ids, request.reason)


@router.post("/campaigns/{campaign_id}/approve", response_model=CampaignResponse)
def approve_campaign(
    campaign_id: str,
    body: Optional[ModerationRequest] = Body(None),
    services: Services = Depends(get_services),
):
    return services.campaigns.approve_campaign(campaign_id, body.reason if body else None)


@router.post("/campaigns/{campaign_id}/reject", response_model=CampaignResponse)
def reject_campaign(
    campaign_id: str,
    body: Optional[ModerationRequest] = Body(None),
    services: Services = Depends(get_services),
):
    return services.campaigns.reject_campaign(campaign_id, body.reason if body else None)


# User management

@router.get("/users", response_model=Page[UserResponse])
def users(
    params: PageParams = Depends(page_params),
    role: Optional[str] = Query(None),
    verified: Optional[bool] = Query(None),
    search: Optional[str] = Query(None),
    services: Services = Depends(get_services),
):
    return services.users.list_users(params, role=role, verified=verified, search=search)


@router.get("/users/{user_id}", response_model=UserDetails)
def user_details(user_id: str, services: Services = Depends(get_services)):
    """A user together with the campaigns they created and what they donated"""
    return services.admin.user_details(user_id)


@router.post("/users/{user_id}/promote", response_model=UserResponse)
def promote_user(user_id: str, services: Services = Depends(get_services)):
    return services.users.promote_to_admin(user_id)


@router.post("/users/{user_id}/demote", response_model=UserResponse)
def demote_user(user_id: str, services: Services = Depends(get_services)):
    return services.users.demote_to_user(user_id)


@router.post("/users/{user_id}/verify", response_model=UserResponse)
def verify_user(user_id: str, services: Services = Depends(get_services)):
    return services.users.verify_user(user_id)


@router.delete("/users/{user_id}", status_code=204)
def delete_user(user_id: str, services: Services = Depends(get_services)):
    services.users.delete_user(user_id)
    return Response(status_code=204)


# Analytics

@router.get("/analytics/campaigns", response_model=CampaignAnalytics)
def campaign_analytics(services: Services = Depends(get_services)):
    return services.analytics.campaign_analytics()


@router.get("/analytics/users", response_model=UserAnalytics)
def user_analytics(services: Services = Depends(get_services)):
    return services.analytics.user_analytics()


@router.get("/analytics/financial", response_model=FinancialAnalytics)
def financial_analytics(services: Services = Depends(get_services)):
    return services.analytics.financial_analytics()


@router.get("/analytics/top-campaigns", response_model=List[TopCampaign])
def top_campaigns(limit: int = Query(10, ge=1, le=100), services: Services = Depends(get_services)):
    return services.analytics.top_campaigns(limit)


@router.get("/analytics/campaign-trends", response_model=List[CampaignTrendPoint])
def campaign_trends(days: int = Query(30), services: Services = Depends(get_services)):
    return services.analytics.campaign_trends(days)


@router.get("/analytics/registration-trends", response_model=List[DailyCount])
def registration_trends(days: int = Query(30), services: Services = Depends(get_services)):
    return services.analytics.registration_trends(days)


@router.get("/analytics/active-users", response_model=List[ActiveUser])
def active_users(limit: int = Query(10, ge=1, le=100), services: Services = Depends(get_services)):
    return services.analytics.most_active_users(limit)


# Maintenance

@router.post("/maintenance/cleanup", response_model=MaintenanceReport)
def run_maintenance(services: Services = Depends(get_services)):
    """Auto-reject stale pending campaigns, reassign orphans and drop abandoned accounts"""
    report = services.admin.run_maintenance()
    logger.info("Maintenance triggered from admin API")
    return report


@router.post("/maintenance/stale-donations")
def sweep_stale_donations(services: Services = Depends(get_services)):
    """Run the stale-donation sweep now instead of waiting for the scheduler"""
    return {"failedDonations": services.donations.cleanup_stale_donations()}
