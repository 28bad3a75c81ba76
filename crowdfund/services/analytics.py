"""
Read-only aggregation over campaigns, users and donations for admin dashboards.

Every figure is a fresh fold over the full collections; nothing is cached or
materialized between requests.
"""
from collections import Counter
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker
import structlog

from crowdfund.core.errors import ValidationError
from crowdfund.database.database import session_scope
from crowdfund.models.base import utcnow
from crowdfund.models.campaign import Campaign, CampaignStatus
from crowdfund.models.donation import Donation, PaymentStatus
from crowdfund.models.user import User, UserRole
from crowdfund.schemas.admin import (
    ActiveUser,
    CampaignAnalytics,
    CampaignTrendPoint,
    DailyCount,
    FinancialAnalytics,
    TopCampaign,
    UserAnalytics,
)
from crowdfund.services.donation import DonationService

logger = structlog.get_logger(__name__)


def growth_rate(previous: float, current: float) -> float:
    """Percent change between two consecutive periods"""
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return (current - previous) / previous * 100


def _check_days(days: int):
    if days < 1 or days > 366:
        raise ValidationError("Days must be between 1 and 366")


class AnalyticsService:

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def _campaigns(self) -> List[Campaign]:
        with session_scope(self.session_factory) as db:
            return db.execute(select(Campaign)).scalars().all()

    def _users(self) -> List[User]:
        with session_scope(self.session_factory) as db:
            return db.execute(select(User)).scalars().all()

    def campaign_analytics(self, today: Optional[date] = None) -> CampaignAnalytics:
        today = today or date.today()
        campaigns = self._campaigns()
        recent_since = utcnow() - timedelta(days=30)

        total = len(campaigns)
        goal = sum(c.goal_amount or 0.0 for c in campaigns)
        raised = sum(c.raised_amount or 0.0 for c in campaigns)
        successful = sum(1 for c in campaigns if c.completion_percentage >= 100.0)

        status_distribution = {status.value: 0 for status in CampaignStatus}
        status_distribution.update(Counter(c.status for c in campaigns))

        return CampaignAnalytics(
            total_campaigns=total,
            status_distribution=status_distribution,
            category_distribution=dict(Counter(c.category for c in campaigns)),
            active_campaigns=sum(1 for c in campaigns if c.is_active(today)),
            expired_campaigns=sum(1 for c in campaigns if c.is_expired(today)),
            recent_campaigns=sum(1 for c in campaigns if c.created_at >= recent_since),
            total_goal_amount=goal,
            total_raised_amount=raised,
            average_goal_amount=goal / total if total else 0.0,
            average_raised_amount=raised / total if total else 0.0,
            funding_efficiency=raised / goal * 100 if goal else 0.0,
            success_rate=successful / total * 100 if total else 0.0,
        )

    def top_campaigns(self, limit: int = 10) -> List[TopCampaign]:
        campaigns = [c for c in self._campaigns() if c.status == CampaignStatus.APPROVED.value]
        ranked = sorted(campaigns, key=lambda c: c.completion_percentage, reverse=True)[:limit]
        return [
            TopCampaign(
                id=c.id,
                name=c.name,
                category=c.category,
                goal_amount=c.goal_amount,
                raised_amount=c.raised_amount or 0.0,
                completion_percentage=c.completion_percentage,
            )
            for c in ranked
        ]

    def campaign_trends(self, days: int = 30) -> List[CampaignTrendPoint]:
        """Campaigns created and approved per day, oldest day first"""
        _check_days(days)
        today = utcnow().date()
        series: Dict[date, List[int]] = {
            today - timedelta(days=offset): [0, 0] for offset in range(days - 1, -1, -1)
        }
        for campaign in self._campaigns():
            created_day = campaign.created_at.date()
            if created_day in series:
                series[created_day][0] += 1
            # approval time is not stored, updated_at stands in for it
            if campaign.status == CampaignStatus.APPROVED.value:
                approved_day = campaign.updated_at.date()
                if approved_day in series:
                    series[approved_day][1] += 1
        return [CampaignTrendPoint(day=day, created=created, approved=approved) for day, (created, approved) in series.items()]

    def user_analytics(self) -> UserAnalytics:
        users = self._users()
        recent_since = utcnow() - timedelta(days=30)
        role_distribution = {role.value: 0 for role in UserRole}
        role_distribution.update(Counter(u.role for u in users))
        verified = sum(1 for u in users if u.verified)
        external = sum(1 for u in users if u.is_external)
        return UserAnalytics(
            total_users=len(users),
            role_distribution=role_distribution,
            verified_users=verified,
            unverified_users=len(users) - verified,
            external_users=external,
            password_users=len(users) - external,
            recent_signups=sum(1 for u in users if u.created_at >= recent_since),
        )

    def registration_trends(self, days: int = 30) -> List[DailyCount]:
        _check_days(days)
        today = utcnow().date()
        series = {today - timedelta(days=offset): 0 for offset in range(days - 1, -1, -1)}
        for user in self._users():
            day = user.created_at.date()
            if day in series:
                series[day] += 1
        return [DailyCount(day=day, count=count) for day, count in series.items()]

    def most_active_users(self, limit: int = 10) -> List[ActiveUser]:
        with session_scope(self.session_factory) as db:
            creators = db.execute(select(Campaign.creator_id)).scalars().all()
            usernames = dict(db.execute(select(User.id, User.username)).all())

        counts = Counter(cid for cid in creators if cid)
        return [
            ActiveUser(user_id=user_id, username=usernames.get(user_id), campaign_count=count)
            for user_id, count in counts.most_common(limit)
        ]

    def financial_analytics(self, now: Optional[datetime] = None) -> FinancialAnalytics:
        now = now or utcnow()
        with session_scope(self.session_factory) as db:
            donations = db.execute(select(Donation)).scalars().all()
            categories = dict(db.execute(select(Campaign.id, Campaign.category)).all())

        succeeded = [d for d in donations if d.payment_status == PaymentStatus.SUCCEEDED.value]
        total = sum(d.amount for d in succeeded)
        processor_fees = sum(d.processor_fee or 0.0 for d in succeeded)
        platform_fees = sum(d.platform_fee or 0.0 for d in succeeded)

        status_breakdown = {status.value: 0 for status in PaymentStatus}
        status_breakdown.update(Counter(d.payment_status for d in donations))

        category_raised: Dict[str, float] = {}
        for donation in succeeded:
            category = categories.get(donation.campaign_id, "unknown")
            category_raised[category] = category_raised.get(category, 0.0) + donation.amount

        trends = DonationService.fold_monthly_trends(succeeded, 12, now)
        growth = growth_rate(trends[-2].total_amount, trends[-1].total_amount)

        return FinancialAnalytics(
            total_raised=total,
            total_processor_fees=processor_fees,
            total_platform_fees=platform_fees,
            total_net=total - processor_fees - platform_fees,
            donation_count=len(succeeded),
            average_donation=total / len(succeeded) if succeeded else 0.0,
            status_breakdown=status_breakdown,
            monthly_trends=trends,
            growth_rate=growth,
            category_raised=category_raised,
        )
