from fastapi import APIRouter, Body, Depends, Query, Response
from typing import List, Optional
import structlog

from crowdfund.api.deps import get_current_user, get_services, page_params, require_admin, require_verified_user
from crowdfund.core.errors import ForbiddenError, UnauthorizedError
from crowdfund.factory import Services
from crowdfund.models.user import User
from crowdfund.schemas.campaign import (
    CampaignResponse,
    CreateCampaignRequest,
    ModerationRequest,
    UpdateCampaignRequest,
)
from crowdfund.schemas.common import Page, PageParams

router = APIRouter(prefix="/api/campaigns", tags=["campaigns"])
logger = structlog.get_logger(__name__)


def _check_owner(services: Services, user: Optional[User], campaign_id: str):
    if services.settings.authorization_mode != "role":
        return
    if user is None:
        raise UnauthorizedError("Authentication required")
    if user.is_admin:
        return
    if services.campaigns.get_campaign(campaign_id).creator_id != user.id:
        raise ForbiddenError("Only the campaign creator can change this campaign")


@router.post("", response_model=CampaignResponse, status_code=201)
@router.post("/create", response_model=CampaignResponse, status_code=201)
def create_campaign(
    campaign_data: CreateCampaignRequest,
    services: Services = Depends(get_services),
    user: Optional[User] = Depends(require_verified_user),
):
    """Create a new campaign awaiting moderation"""
    return services.campaigns.create_campaign(campaign_data, creator_id=user.id if user else None)


@router.get("", response_model=Page[CampaignResponse])
def list_campaigns(
    params: PageParams = Depends(page_params),
    status: Optional[str] = Query(None, description="pending, approved or rejected"),
    category: Optional[str] = Query(None),
    creator_id: Optional[str] = Query(None, alias="creatorId"),
    services: Services = Depends(get_services),
):
    """List campaigns with filters and pagination"""
    return services.campaigns.list_campaigns(params, status=status, category=category, creator_id=creator_id)


@router.get("/public", response_model=List[CampaignResponse])
def public_campaigns(services: Services = Depends(get_services)):
    """Approved and verified campaigns"""
    return services.campaigns.public_campaigns()


@router.get("/active", response_model=List[CampaignResponse])
def active_campaigns(services: Services = Depends(get_services)):
    return services.campaigns.active_campaigns()


@router.get("/pending", response_model=List[CampaignResponse])
def pending_campaigns(
    services: Services = Depends(get_services),
    _admin: Optional[User] = Depends(require_admin),
):
    return services.campaigns.pending_campaigns()


@router.get("/categories", response_model=List[str])
def categories(services: Services = Depends(get_services)):
    return services.campaigns.categories()


@router.get("/category/{category}", response_model=List[CampaignResponse])
def campaigns_by_category(category: str, services: Services = Depends(get_services)):
    return services.campaigns.campaigns_by_category(category)


@router.get("/creator/{creator_id}", response_model=List[CampaignResponse])
def campaigns_by_creator(creator_id: str, services: Services = Depends(get_services)):
    return services.campaigns.campaigns_by_creator(creator_id)


@router.get("/search", response_model=List[CampaignResponse])
def search_campaigns(q: str = Query(..., min_length=1), services: Services = Depends(get_services)):
    return services.campaigns.search(q)


@router.post("/verify/{campaign_id}", response_model=CampaignResponse)
def verify_campaign(
    campaign_id: str,
    body: Optional[ModerationRequest] = Body(None),
    services: Services = Depends(get_services),
    _admin: Optional[User] = Depends(require_admin),
):
    """Approve a pending campaign"""
    return services.campaigns.approve_campaign(campaign_id, body.reason if body else None)


@router.post("/reject/{campaign_id}", response_model=CampaignResponse)
def reject_campaign(
    campaign_id: str,
    body: Optional[ModerationRequest] = Body(None),
    services: Services = Depends(get_services),
    _admin: Optional[User] = Depends(require_admin),
):
    """Reject a pending campaign with an optional reason"""
    return services.campaigns.reject_campaign(campaign_id, body.reason if body else None)


@router.get("/{campaign_id}", response_model=CampaignResponse)
def get_campaign(campaign_id: str, services: Services = Depends(get_services)):
    return services.campaigns.get_campaign(campaign_id)


@router.put("/{campaign_id}", response_model=CampaignResponse)
def update_campaign(
    campaign_id: str,
    campaign_data: UpdateCampaignRequest,
    services: Services = Depends(get_services),
    user: Optional[User] = Depends(get_current_user),
):
    """Update campaign details; the raised amount is never client-writable"""
    _check_owner(services, user, campaign_id)
    return services.campaigns.update_campaign(campaign_id, campaign_data)


@router.delete("/{campaign_id}", status_code=204)
def delete_campaign(
    campaign_id: str,
    services: Services = Depends(get_services),
    user: Optional[User] = Depends(get_current_user),
):
    _check_owner(services, user, campaign_id)
    services.campaigns.delete_campaign(campaign_id)
    return Response(status_code=204)
