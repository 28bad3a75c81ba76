from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.orm import sessionmaker
import structlog

from crowdfund.core.errors import NotFoundError
from crowdfund.database.database import session_scope
from crowdfund.models.base import utcnow
from crowdfund.models.campaign import Campaign, CampaignStatus
from crowdfund.models.donation import Donation, PaymentStatus
from crowdfund.models.user import User, UserRole
from crowdfund.schemas.admin import AdminDashboard, AdminStats, MaintenanceReport, UserDetails
from crowdfund.schemas.user import UserResponse
from crowdfund.services.analytics import AnalyticsService
from crowdfund.services.campaign import CampaignService, to_responses
from crowdfund.services.user import UserService

logger = structlog.get_logger(__name__)

SYSTEM_CREATOR = "system"
PENDING_EXPIRY = timedelta(days=182)
UNVERIFIED_USER_EXPIRY = timedelta(days=30)
AUTO_REJECT_REASON = "Automatically rejected due to prolonged pending status (6+ months)"


class AdminService:
    """Dashboards and maintenance actions for administrators"""

    def __init__(
        self,
        session_factory: sessionmaker,
        analytics: AnalyticsService,
        campaigns: CampaignService,
        users: UserService,
    ):
        self.session_factory = session_factory
        self.analytics = analytics
        self.campaigns = campaigns
        self.users = users

    def dashboard(self) -> AdminDashboard:
        return AdminDashboard(
            campaigns=self.analytics.campaign_analytics(),
            users=self.analytics.user_analytics(),
            financial=self.analytics.financial_analytics(),
            pending_campaigns=self.campaigns.pending_campaigns()[:5],
            recent_users=self.users.recent_users(days=7, limit=5),
        )

    def stats(self) -> AdminStats:
        with session_scope(self.session_factory) as db:
            status_counts = dict(
                db.execute(select(Campaign.status, func.count(Campaign.id)).group_by(Campaign.status)).all()
            )
            total_users = db.execute(select(func.count(User.id))).scalar_one()
            admin_users = db.execute(
                select(func.count(User.id)).where(User.role == UserRole.ADMIN.value)
            ).scalar_one()
            donation_count, total_raised = db.execute(
                select(func.count(Donation.id), func.coalesce(func.sum(Donation.amount), 0.0)).where(
                    Donation.payment_status == PaymentStatus.SUCCEEDED.value
                )
            ).one()

        return AdminStats(
            total_campaigns=sum(status_counts.values()),
            pending_campaigns=status_counts.get(CampaignStatus.PENDING.value, 0),
            approved_campaigns=status_counts.get(CampaignStatus.APPROVED.value, 0),
            rejected_campaigns=status_counts.get(CampaignStatus.REJECTED.value, 0),
            total_users=total_users,
            admin_users=admin_users,
            total_donations=donation_count,
            total_raised=float(total_raised),
        )

    def user_details(self, user_id: str) -> UserDetails:
        with session_scope(self.session_factory) as db:
            user = db.get(User, user_id)
            if user is None:
                raise NotFoundError(f"User not found with id: {user_id}")
            campaigns = db.execute(
                select(Campaign).where(Campaign.creator_id == user_id).order_by(Campaign.created_at.desc())
            ).scalars().all()
            total_donated = db.execute(
                select(func.coalesce(func.sum(Donation.amount), 0.0)).where(
                    Donation.donor_id == user_id,
                    Donation.payment_status == PaymentStatus.SUCCEEDED.value,
                )
            ).scalar_one()
            return UserDetails(
                user=UserResponse.from_user(user),
                campaigns=to_responses(db, campaigns),
                campaign_count=len(campaigns),
                total_donated=float(total_donated),
            )

    def run_maintenance(self, now: Optional[datetime] = None) -> MaintenanceReport:
        """
        Housekeeping over the whole dataset:

        - reject campaigns left pending for more than six months
        - hand campaigns whose creator no longer exists to the system creator
        - delete unverified password accounts older than 30 days that own no campaigns
        """
        now = now or utcnow()
        with session_scope(self.session_factory) as db:
            rejected = db.execute(
                update(Campaign)
                .where(
                    Campaign.status == CampaignStatus.PENDING.value,
                    Campaign.created_at < now - PENDING_EXPIRY,
                )
                .values(
                    status=CampaignStatus.REJECTED.value,
                    verified=False,
                    rejection_reason=AUTO_REJECT_REASON,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            ).rowcount

            known_users = select(User.id)
            reassigned = db.execute(
                update(Campaign)
                .where(
                    or_(Campaign.creator_id.is_(None), Campaign.creator_id.not_in(known_users)),
                    or_(Campaign.creator_id.is_(None), Campaign.creator_id != SYSTEM_CREATOR),
                )
                .values(creator_id=SYSTEM_CREATOR, updated_at=now)
                .execution_options(synchronize_session=False)
            ).rowcount

            owners = select(Campaign.creator_id).where(Campaign.creator_id.is_not(None))
            deleted = db.execute(
                delete(User)
                .where(
                    User.verified.is_(False),
                    User.external_auth_id.is_(None),
                    User.created_at < now - UNVERIFIED_USER_EXPIRY,
                    User.id.not_in(owners),
                )
                .execution_options(synchronize_session=False)
            ).rowcount

        logger.info(
            "Maintenance finished",
            auto_rejected_campaigns=rejected,
            reassigned_campaigns=reassigned,
            deleted_users=deleted,
        )
        return MaintenanceReport(
            auto_rejected_campaigns=rejected,
            reassigned_campaigns=reassigned,
            deleted_users=deleted,
        )
