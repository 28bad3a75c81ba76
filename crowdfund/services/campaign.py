from datetime import date
from typing import Dict, Iterable, List, Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session, sessionmaker
import structlog

from crowdfund.core.errors import InvalidStateError, NotFoundError, ValidationError
from crowdfund.database.database import session_scope
from crowdfund.models.campaign import Campaign, CampaignStatus
from crowdfund.models.user import User
from crowdfund.schemas.campaign import (
    BulkModerationResponse,
    CampaignResponse,
    CreateCampaignRequest,
    UpdateCampaignRequest,
)
from crowdfund.schemas.common import Page, PageParams
from crowdfund.services.notifications import Notifier
from crowdfund.services.pagination import apply_sort, paginate

logger = structlog.get_logger(__name__)

CAMPAIGN_SORT_COLUMNS = {
    "createdAt": Campaign.created_at,
    "updatedAt": Campaign.updated_at,
    "name": Campaign.name,
    "category": Campaign.category,
    "goalAmount": Campaign.goal_amount,
    "raisedAmount": Campaign.raised_amount,
    "startDate": Campaign.start_date,
    "endDate": Campaign.end_date,
}


def _usernames(db: Session, creator_ids: Iterable[Optional[str]]) -> Dict[str, str]:
    ids = {cid for cid in creator_ids if cid}
    if not ids:
        return {}
    rows = db.execute(select(User.id, User.username).where(User.id.in_(ids))).all()
    return {user_id: username for user_id, username in rows}


def to_responses(db: Session, campaigns: List[Campaign]) -> List[CampaignResponse]:
    names = _usernames(db, (c.creator_id for c in campaigns))
    return [CampaignResponse.from_campaign(c, names.get(c.creator_id)) for c in campaigns]


class CampaignService:
    """Business logic for campaign operations"""

    def __init__(self, session_factory: sessionmaker, notifier: Optional[Notifier] = None):
        self.session_factory = session_factory
        self.notifier = notifier

    def _get(self, db: Session, campaign_id: str) -> Campaign:
        campaign = db.get(Campaign, campaign_id)
        if campaign is None:
            raise NotFoundError(f"Campaign not found with id: {campaign_id}")
        return campaign

    def create_campaign(self, request: CreateCampaignRequest, creator_id: Optional[str] = None) -> CampaignResponse:
        """Create a campaign awaiting moderation"""
        with session_scope(self.session_factory) as db:
            campaign = Campaign(
                creator_id=creator_id or request.creator_id,
                name=request.name.strip(),
                category=request.category.strip(),
                description=request.description,
                image_url=request.image_url,
                document_url=request.document_url,
                goal_amount=request.goal_amount,
                raised_amount=0.0,
                start_date=request.start_date,
                end_date=request.end_date,
                status=CampaignStatus.PENDING.value,
                verified=False,
            )
            db.add(campaign)
            db.flush()
            db.refresh(campaign)
            response = to_responses(db, [campaign])[0]

        logger.info("Campaign created", campaign_id=response.id, creator_id=response.creator_id)
        return response

    def get_campaign(self, campaign_id: str) -> CampaignResponse:
        with session_scope(self.session_factory) as db:
            return to_responses(db, [self._get(db, campaign_id)])[0]

    def update_campaign(self, campaign_id: str, request: UpdateCampaignRequest) -> CampaignResponse:
        changes = request.model_dump(exclude_unset=True)
        with session_scope(self.session_factory) as db:
            campaign = self._get(db, campaign_id)
            for key, value in changes.items():
                setattr(campaign, key, value)
            if campaign.start_date and campaign.end_date and campaign.end_date < campaign.start_date:
                raise ValidationError("End date must be on or after start date")
            db.flush()
            db.refresh(campaign)
            response = to_responses(db, [campaign])[0]

        logger.info("Campaign updated", campaign_id=campaign_id, fields=sorted(changes))
        return response

    def delete_campaign(self, campaign_id: str):
        with session_scope(self.session_factory) as db:
            db.delete(self._get(db, campaign_id))
        logger.info("Campaign deleted", campaign_id=campaign_id)

    def list_campaigns(
        self,
        params: PageParams,
        status: Optional[str] = None,
        category: Optional[str] = None,
        creator_id: Optional[str] = None,
    ) -> Page:
        stmt = select(Campaign)
        if status:
            try:
                stmt = stmt.where(Campaign.status == CampaignStatus(status.lower()).value)
            except ValueError:
                raise ValidationError(f"Invalid campaign status: {status}")
        if category:
            stmt = stmt.where(Campaign.category == category)
        if creator_id:
            stmt = stmt.where(Campaign.creator_id == creator_id)

        with session_scope(self.session_factory) as db:
            page = paginate(db, stmt, params, CAMPAIGN_SORT_COLUMNS, lambda c: c)
            page.items = to_responses(db, page.items)
            return page

    def _query(self, stmt, params: Optional[PageParams] = None) -> List[CampaignResponse]:
        params = params or PageParams(sort_by="createdAt", sort_dir="desc", size=100)
        with session_scope(self.session_factory) as db:
            campaigns = db.execute(apply_sort(stmt, params, CAMPAIGN_SORT_COLUMNS)).scalars().all()
            return to_responses(db, campaigns)

    def public_campaigns(self) -> List[CampaignResponse]:
        """Approved and verified campaigns, expired ones included"""
        return self._query(
            select(Campaign).where(
                Campaign.status == CampaignStatus.APPROVED.value,
                Campaign.verified.is_(True),
            )
        )

    def active_campaigns(self, today: Optional[date] = None) -> List[CampaignResponse]:
        today = today or date.today()
        return self._query(
            select(Campaign).where(
                Campaign.status == CampaignStatus.APPROVED.value,
                Campaign.verified.is_(True),
                or_(Campaign.end_date.is_(None), Campaign.end_date >= today),
            )
        )

    def pending_campaigns(self) -> List[CampaignResponse]:
        return self._query(
            select(Campaign).where(Campaign.status == CampaignStatus.PENDING.value),
            PageParams(sort_by="createdAt", sort_dir="asc", size=100),
        )

    def campaigns_by_category(self, category: str) -> List[CampaignResponse]:
        return self._query(
            select(Campaign).where(
                Campaign.category == category,
                Campaign.status == CampaignStatus.APPROVED.value,
                Campaign.verified.is_(True),
            )
        )

    def campaigns_by_creator(self, creator_id: str) -> List[CampaignResponse]:
        return self._query(select(Campaign).where(Campaign.creator_id == creator_id))

    def search(self, query: str) -> List[CampaignResponse]:
        if not query or not query.strip():
            raise ValidationError("Search query cannot be empty")
        pattern = f"%{query.strip()}%"
        return self._query(
            select(Campaign).where(
                Campaign.status == CampaignStatus.APPROVED.value,
                or_(
                    Campaign.name.ilike(pattern),
                    Campaign.description.ilike(pattern),
                    Campaign.category.ilike(pattern),
                ),
            )
        )

    def categories(self) -> List[str]:
        with session_scope(self.session_factory) as db:
            rows = db.execute(select(Campaign.category).distinct().order_by(Campaign.category)).scalars().all()
            return list(rows)

    # Moderation

    def _moderate(self, db: Session, campaign_id: str, approve: bool, reason: Optional[str]) -> Campaign:
        campaign = self._get(db, campaign_id)
        if campaign.status != CampaignStatus.PENDING.value:
            raise InvalidStateError(
                f"Campaign {campaign_id} is already {campaign.status} and cannot be moderated"
            )
        if approve:
            campaign.approve()
        else:
            campaign.reject(reason)
        db.flush()
        return campaign

    def approve_campaign(self, campaign_id: str, note: Optional[str] = None) -> CampaignResponse:
        with session_scope(self.session_factory) as db:
            campaign = self._moderate(db, campaign_id, True, None)
            response = to_responses(db, [campaign])[0]
        logger.info("Campaign approved", campaign_id=campaign_id, note=note)
        if self.notifier:
            self.notifier.campaign_moderated(campaign)
        return response

    def reject_campaign(self, campaign_id: str, reason: Optional[str] = None) -> CampaignResponse:
        with session_scope(self.session_factory) as db:
            campaign = self._moderate(db, campaign_id, False, reason)
            response = to_responses(db, [campaign])[0]
        logger.info("Campaign rejected", campaign_id=campaign_id, reason=reason)
        if self.notifier:
            self.notifier.campaign_moderated(campaign)
        return response

    def _bulk(self, campaign_ids: List[str], approve: bool, reason: Optional[str]) -> BulkModerationResponse:
        succeeded, failed = [], {}
        for campaign_id in dict.fromkeys(campaign_ids):
            try:
                if approve:
                    self.approve_campaign(campaign_id, reason)
                else:
                    self.reject_campaign(campaign_id, reason)
                succeeded.append(campaign_id)
            except (NotFoundError, InvalidStateError) as e:
                failed[campaign_id] = e.message
        logger.info("Bulk moderation finished", approve=approve, succeeded=len(succeeded), failed=len(failed))
        return BulkModerationResponse(succeeded=succeeded, failed=failed)

    def bulk_approve(self, campaign_ids: List[str], note: Optional[str] = None) -> BulkModerationResponse:
        return self._bulk(campaign_ids, True, note)

    def bulk_reject(self, campaign_ids: List[str], reason: Optional[str] = None) -> BulkModerationResponse:
        return self._bulk(campaign_ids, False, reason)
