from fastapi import APIRouter, Body, Depends, Query, Request
from typing import List, Optional
import structlog

from crowdfund.api.deps import client_ip, ensure_admin, get_current_user, get_services, page_params, require_admin
from crowdfund.factory import Services
from crowdfund.models.user import User
from crowdfund.schemas.common import Page, PageParams
from crowdfund.schemas.donation import (
    CampaignDonationStats,
    CreateDonationRequest,
    CreateDonationResponse,
    DonationAnalytics,
    DonationPublicResponse,
    DonationResponse,
    MonthlyTrend,
    PlatformDonationStats,
    RefundRequest,
    TopDonor,
)

router = APIRouter(prefix="/api/donations", tags=["donations"])
logger = structlog.get_logger(__name__)


@router.post("", response_model=CreateDonationResponse, status_code=201)
def create_donation(
    donation_data: CreateDonationRequest,
    request: Request,
    services: Services = Depends(get_services),
    user: Optional[User] = Depends(get_current_user),
):
    """
    Start a donation: opens a payment intent and records the donation as pending.
    The returned client secret is used by the browser to confirm the payment.
    """
    return services.donations.create_donation(
        donation_data,
        donor_id=user.id if user else None,
        ip_address=client_ip(request),
    )


@router.get("", response_model=Page[DonationResponse])
def list_donations(
    params: PageParams = Depends(page_params),
    status: Optional[str] = Query(None),
    campaign_id: Optional[str] = Query(None, alias="campaignId"),
    donor_id: Optional[str] = Query(None, alias="donorId"),
    services: Services = Depends(get_services),
    _admin: Optional[User] = Depends(require_admin),
):
    return services.donations.list_donations(params, status=status, campaign_id=campaign_id, donor_id=donor_id)


@router.get("/recent", response_model=List[DonationPublicResponse])
def recent_donations(
    limit: int = Query(10, ge=1, le=100),
    hours: int = Query(24, ge=1, le=24 * 30),
    services: Services = Depends(get_services),
):
    return services.donations.recent_donations(limit=limit, hours=hours)


@router.get("/statistics", response_model=PlatformDonationStats)
def platform_statistics(services: Services = Depends(get_services)):
    return services.donations.platform_statistics()


@router.get("/trends", response_model=List[MonthlyTrend])
def monthly_trends(
    months: int = Query(12, ge=1, le=60),
    services: Services = Depends(get_services),
):
    """Monthly succeeded totals, oldest month first"""
    return services.donations.monthly_trends(months)


@router.get("/analytics", response_model=DonationAnalytics)
def donation_analytics(
    services: Services = Depends(get_services),
    _admin: Optional[User] = Depends(require_admin),
):
    return services.donations.analytics()


@router.get("/search", response_model=Page[DonationResponse])
def search_donations(
    query: str = Query(..., alias="q"),
    params: PageParams = Depends(page_params),
    services: Services = Depends(get_services),
    _admin: Optional[User] = Depends(require_admin),
):
    return services.donations.search(query, params)


@router.get("/campaign/{campaign_id}", response_model=Page[DonationPublicResponse])
def campaign_donations(
    campaign_id: str,
    params: PageParams = Depends(page_params),
    include_private: bool = Query(False, alias="includePrivate"),
    services: Services = Depends(get_services),
    user: Optional[User] = Depends(get_current_user),
):
    """Succeeded donations for a campaign; donors who opted out are only listed for admins via includePrivate"""
    if include_private:
        ensure_admin(services, user)
    return services.donations.list_campaign_donations(campaign_id, params, include_private=include_private)


@router.get("/campaign/{campaign_id}/messages", response_model=Page[DonationPublicResponse])
def campaign_messages(
    campaign_id: str,
    params: PageParams = Depends(page_params),
    services: Services = Depends(get_services),
):
    return services.donations.campaign_messages(campaign_id, params)


@router.get("/campaign/{campaign_id}/statistics", response_model=CampaignDonationStats)
def campaign_statistics(campaign_id: str, services: Services = Depends(get_services)):
    return services.donations.campaign_statistics(campaign_id)


@router.get("/campaign/{campaign_id}/top-donors", response_model=List[TopDonor])
def top_donors(
    campaign_id: str,
    limit: int = Query(10, ge=1, le=100),
    services: Services = Depends(get_services),
):
    return services.donations.top_donors(campaign_id, limit=limit)


@router.get("/donor/{donor_id}", response_model=Page[DonationResponse])
def donor_donations(
    donor_id: str,
    params: PageParams = Depends(page_params),
    services: Services = Depends(get_services),
):
    return services.donations.list_donor_donations(donor_id, params)


@router.get("/payment-intent/{payment_intent_id}", response_model=DonationResponse)
def donation_by_payment_intent(payment_intent_id: str, services: Services = Depends(get_services)):
    return services.donations.get_by_payment_intent(payment_intent_id)


@router.get("/{donation_id}", response_model=DonationResponse)
def get_donation(donation_id: str, services: Services = Depends(get_services)):
    return services.donations.get_donation(donation_id)


@router.post("/{donation_id}/refund", response_model=DonationResponse)
def refund_donation(
    donation_id: str,
    refund: Optional[RefundRequest] = Body(None),
    services: Services = Depends(get_services),
    _admin: Optional[User] = Depends(require_admin),
):
    """Refund a succeeded donation, fully or partially"""
    logger.info("Refund requested", donation_id=donation_id)
    return services.donations.refund_donation(
        donation_id,
        amount=refund.amount if refund else None,
        reason=refund.reason if refund else None,
    )
