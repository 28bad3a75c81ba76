"""
Donation lifecycle: intake, processor reconciliation, refunds and statistics.

Every status change is a single conditional UPDATE keyed on the processor
reference and the allowed source statuses, so duplicate or out-of-order
webhooks and the stale sweep can race without corrupting a donation.
"""
from calendar import month_name
import math
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session, sessionmaker
import structlog

from crowdfund.core.config import Settings
from crowdfund.core.errors import InvalidStateError, NotFoundError, UpstreamError, ValidationError
from crowdfund.database.database import session_scope
from crowdfund.middleware.metrics import (
    donation_rejections_total,
    donation_transitions_total,
    stale_donations_swept_total,
    webhook_events_total,
)
from crowdfund.models.base import utcnow
from crowdfund.models.campaign import Campaign
from crowdfund.models.donation import ALLOWED_SOURCES, OPEN_STATUSES, Donation, PaymentStatus
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
    TopDonor,
)
from crowdfund.services.fees import calculate_fees
from crowdfund.services.fraud import FraudCheck
from crowdfund.services.notifications import Notifier
from crowdfund.services.pagination import paginate
from crowdfund.services.stripe_client import PaymentGateway, WebhookEvent

logger = structlog.get_logger(__name__)

SUPPORTED_CURRENCIES = ("MYR", "USD", "SGD")
SUSPICIOUS_MESSAGE = "Unable to process donation at this time. Please contact support."

WEBHOOK_TRANSITIONS = {
    "payment_intent.processing": PaymentStatus.PROCESSING,
    "payment_intent.succeeded": PaymentStatus.SUCCEEDED,
    "payment_intent.payment_failed": PaymentStatus.FAILED,
    "payment_intent.canceled": PaymentStatus.CANCELED,
}

DONATION_SORT_COLUMNS = {
    "createdAt": Donation.created_at,
    "amount": Donation.amount,
    "completedAt": Donation.completed_at,
    "updatedAt": Donation.updated_at,
}


def month_floor(moment: datetime, months_back: int) -> datetime:
    year, month = moment.year, moment.month - months_back
    while month <= 0:
        month += 12
        year -= 1
    return datetime(year, month, 1)


class DonationService:
    """Business logic for donation operations"""

    def __init__(
        self,
        session_factory: sessionmaker,
        gateway: PaymentGateway,
        notifier: Notifier,
        settings: Settings,
        fraud_check: Optional[FraudCheck] = None,
    ):
        self.session_factory = session_factory
        self.gateway = gateway
        self.notifier = notifier
        self.settings = settings
        self.fraud_check = fraud_check or FraudCheck(
            max_donations_per_ip=settings.max_donations_per_ip,
            window_minutes=settings.ip_window_minutes,
            large_amount=settings.large_donation_threshold,
        )

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    def _validate_amount(self, amount: float, currency: str):
        if amount is not None and not math.isfinite(amount):
            donation_rejections_total.labels(reason="not_a_number").inc()
            raise ValidationError("Donation amount must be a finite number")
        if amount is None or amount < self.settings.min_donation_amount:
            donation_rejections_total.labels(reason="below_minimum").inc()
            raise ValidationError(
                f"Minimum donation amount is {self.settings.min_donation_amount:.2f}"
            )
        if amount > self.settings.max_donation_amount:
            donation_rejections_total.labels(reason="above_maximum").inc()
            raise ValidationError(
                f"Maximum donation amount is {self.settings.max_donation_amount:.2f}"
            )
        if currency not in SUPPORTED_CURRENCIES:
            donation_rejections_total.labels(reason="currency").inc()
            raise ValidationError(
                f"Unsupported currency: {currency}. Supported: {', '.join(SUPPORTED_CURRENCIES)}"
            )

    def create_donation(
        self,
        request: CreateDonationRequest,
        donor_id: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> CreateDonationResponse:
        """Admit a donation, open a processor intent and persist it as pending"""
        currency = (request.currency or self.settings.default_currency).upper()
        self._validate_amount(request.amount, currency)
        donor_id = donor_id or request.donor_id

        with session_scope(self.session_factory) as db:
            campaign = db.get(Campaign, request.campaign_id)
            if campaign is None:
                raise NotFoundError(f"Campaign not found with id: {request.campaign_id}")
            if not campaign.can_receive_donations():
                donation_rejections_total.labels(reason="campaign_closed").inc()
                raise InvalidStateError("Campaign is not accepting donations")

            if self.fraud_check.is_suspicious(db, request.amount, ip_address):
                donation_rejections_total.labels(reason="suspicious").inc()
                logger.warning(
                    "Suspicious donation rejected",
                    campaign_id=request.campaign_id,
                    ip_address=ip_address,
                    amount=request.amount,
                )
                raise ValidationError(SUSPICIOUS_MESSAGE)
            campaign_name = campaign.name

        metadata = {
            "campaign_id": request.campaign_id,
            "campaign_name": campaign_name,
            "is_anonymous": str(request.is_anonymous).lower(),
        }
        if donor_id:
            metadata["donor_id"] = donor_id
        if request.donor_name and not request.is_anonymous:
            metadata["donor_name"] = request.donor_name

        intent = self.gateway.create_payment_intent(
            request.amount,
            currency,
            metadata,
            receipt_email=request.donor_email,
        )
        fees = calculate_fees(request.amount)

        try:
            donation = self._insert_donation(request, donor_id, currency, intent.id, fees, ip_address)
        except Exception as e:
            logger.error(
                "Failed to record donation, canceling payment intent",
                payment_intent_id=intent.id,
                campaign_id=request.campaign_id,
                error=str(e),
            )
            try:
                self.gateway.cancel_payment_intent(intent.id, reason="abandoned")
            except UpstreamError as cancel_error:
                logger.error(
                    "Failed to cancel orphaned payment intent",
                    payment_intent_id=intent.id,
                    error=str(cancel_error),
                )
            raise

        donation_transitions_total.labels(status=PaymentStatus.PENDING.value).inc()
        logger.info(
            "Donation created",
            donation_id=donation.id,
            campaign_id=donation.campaign_id,
            payment_intent_id=intent.id,
            amount=donation.amount,
        )
        self.notifier.donation_created(donation)

        return CreateDonationResponse(
            donation_id=donation.id,
            payment_intent_id=intent.id,
            client_secret=intent.client_secret,
            amount=donation.amount,
            currency=currency,
            status=donation.payment_status,
        )

    def _insert_donation(self, request, donor_id, currency, payment_intent_id, fees, ip_address) -> Donation:
        with session_scope(self.session_factory) as db:
            donation = Donation(
                campaign_id=request.campaign_id,
                donor_id=donor_id,
                donor_name=request.donor_name,
                donor_email=request.donor_email,
                amount=request.amount,
                currency=currency,
                payment_intent_id=payment_intent_id,
                payment_status=PaymentStatus.PENDING.value,
                message=request.message,
                is_anonymous=request.is_anonymous,
                show_in_public_list=request.show_in_public_list,
                receive_updates=request.receive_updates,
                processor_fee=fees.processor_fee,
                platform_fee=fees.platform_fee,
                donor_ip_address=ip_address,
                donor_country=request.donor_country,
            )
            db.add(donation)
            db.flush()
            db.refresh(donation)
        return donation

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    def _find_by_intent(self, db: Session, payment_intent_id: str) -> Optional[Donation]:
        return db.execute(
            select(Donation).where(Donation.payment_intent_id == payment_intent_id)
        ).scalar_one_or_none()

    def _recompute_raised_amount(self, db: Session, campaign_id: str) -> float:
        total = db.execute(
            select(func.coalesce(func.sum(Donation.amount), 0.0)).where(
                Donation.campaign_id == campaign_id,
                Donation.payment_status == PaymentStatus.SUCCEEDED.value,
            )
        ).scalar_one()
        db.execute(
            update(Campaign)
            .where(Campaign.id == campaign_id)
            .values(raised_amount=float(total), updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        logger.info("Campaign raised amount recomputed", campaign_id=campaign_id, raised_amount=float(total))
        return float(total)

    def _transition(self, db: Session, payment_intent_id: str, target: PaymentStatus, **values) -> bool:
        """Conditionally move a donation to ``target``; True when this call applied it"""
        sources = [status.value for status in ALLOWED_SOURCES[target]]
        result = db.execute(
            update(Donation)
            .where(
                Donation.payment_intent_id == payment_intent_id,
                Donation.payment_status.in_(sources),
            )
            .values(payment_status=target.value, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        applied = result.rowcount == 1
        if applied:
            donation_transitions_total.labels(status=target.value).inc()
        return applied

    def apply_event(self, event: WebhookEvent) -> str:
        """
        Reconcile one processor event with the donation it references.

        Returns the outcome: ``applied``, ``duplicate``, ``ignored`` or
        ``recorded`` (charge id only).
        """
        if event.type != "charge.succeeded" and event.type not in WEBHOOK_TRANSITIONS:
            logger.info("Unhandled webhook event type", event_type=event.type, event_id=event.id)
            webhook_events_total.labels(event_type=event.type, outcome="unhandled").inc()
            return "unhandled"

        if not event.payment_intent_id:
            raise ValidationError(f"Webhook event {event.id} carries no payment reference")

        notify = None
        with session_scope(self.session_factory) as db:
            donation = self._find_by_intent(db, event.payment_intent_id)
            if donation is None:
                webhook_events_total.labels(event_type=event.type, outcome="not_found").inc()
                raise NotFoundError(f"Donation not found for payment intent: {event.payment_intent_id}")

            if event.type == "charge.succeeded":
                if event.charge_id:
                    db.execute(
                        update(Donation)
                        .where(Donation.payment_intent_id == event.payment_intent_id)
                        .values(charge_id=event.charge_id)
                        .execution_options(synchronize_session=False)
                    )
                outcome = "recorded"
            else:
                target = WEBHOOK_TRANSITIONS[event.type]
                values = {}
                if target == PaymentStatus.SUCCEEDED:
                    values["completed_at"] = utcnow()
                    if event.payment_method_id:
                        values["payment_method_id"] = event.payment_method_id
                    if event.charge_id:
                        values["charge_id"] = event.charge_id

                if self._transition(db, event.payment_intent_id, target, **values):
                    outcome = "applied"
                    if target == PaymentStatus.SUCCEEDED:
                        self._recompute_raised_amount(db, donation.campaign_id)
                    notify = target
                elif donation.payment_status == target.value:
                    outcome = "duplicate"
                else:
                    outcome = "ignored"
                    logger.warning(
                        "Webhook transition not allowed",
                        payment_intent_id=event.payment_intent_id,
                        current_status=donation.payment_status,
                        requested_status=target.value,
                    )

            db.flush()
            db.expire_all()
            donation = self._find_by_intent(db, event.payment_intent_id)

        webhook_events_total.labels(event_type=event.type, outcome=outcome).inc()
        logger.info(
            "Webhook processed",
            event_type=event.type,
            payment_intent_id=event.payment_intent_id,
            outcome=outcome,
        )

        if notify == PaymentStatus.SUCCEEDED:
            self.notifier.donation_succeeded(donation)
        elif notify in (PaymentStatus.FAILED, PaymentStatus.CANCELED):
            self.notifier.donation_failed(donation, reason=event.failure_message)

        return outcome

    def handle_webhook(self, payload: bytes, signature: str) -> Tuple[WebhookEvent, str]:
        """Verify a raw processor callback and apply it"""
        event = self.gateway.construct_event(payload, signature)
        outcome = self.apply_event(event)
        return event, outcome

    def refund_donation(self, donation_id: str, amount: Optional[float] = None, reason: Optional[str] = None) -> DonationResponse:
        """Refund a succeeded donation in full or in part"""
        with session_scope(self.session_factory) as db:
            donation = db.get(Donation, donation_id)
            if donation is None:
                raise NotFoundError(f"Donation not found with id: {donation_id}")
            if not donation.can_be_refunded():
                raise InvalidStateError(
                    f"Donation cannot be refunded in status {donation.payment_status}"
                )
            if amount is not None:
                if amount <= 0:
                    raise ValidationError("Refund amount must be greater than 0")
                if amount > donation.amount:
                    raise ValidationError(
                        f"Refund amount {amount:.2f} exceeds donation amount {donation.amount:.2f}"
                    )
            payment_intent_id = donation.payment_intent_id
            currency = donation.currency
            original_amount = donation.amount

        refund = self.gateway.create_refund(payment_intent_id, amount=amount, currency=currency, reason=reason)

        with session_scope(self.session_factory) as db:
            applied = self._transition(
                db,
                payment_intent_id,
                PaymentStatus.REFUNDED,
                is_refunded=True,
                refund_reason=reason,
                refund_id=refund.id,
                refund_amount=amount if amount is not None else original_amount,
                refunded_at=utcnow(),
            )
            if not applied:
                raise InvalidStateError("Donation was modified while the refund was issued")

            donation = db.get(Donation, donation_id, populate_existing=True)
            self._recompute_raised_amount(db, donation.campaign_id)

        logger.info(
            "Donation refunded",
            donation_id=donation_id,
            refund_id=refund.id,
            refund_amount=donation.refund_amount,
        )
        self.notifier.donation_refunded(donation)
        return DonationResponse.from_donation(donation)

    # ------------------------------------------------------------------
    # Stale sweep
    # ------------------------------------------------------------------

    def cleanup_stale_donations(self, now: Optional[datetime] = None) -> int:
        """Cancel intents of donations stuck open past the cutoff and mark them failed"""
        cutoff = (now or utcnow()) - timedelta(hours=self.settings.stale_donation_hours)
        with session_scope(self.session_factory) as db:
            stale = db.execute(
                select(Donation.id, Donation.payment_intent_id).where(
                    Donation.payment_status.in_([status.value for status in OPEN_STATUSES]),
                    Donation.created_at < cutoff,
                )
            ).all()

        failed = 0
        for donation_id, payment_intent_id in stale:
            try:
                self.gateway.cancel_payment_intent(payment_intent_id, reason="abandoned")
            except UpstreamError as e:
                stale_donations_swept_total.labels(outcome="cancel_failed").inc()
                logger.error(
                    "Failed to cancel stale payment intent",
                    donation_id=donation_id,
                    payment_intent_id=payment_intent_id,
                    error=str(e),
                )
                continue

            with session_scope(self.session_factory) as db:
                if self._transition(db, payment_intent_id, PaymentStatus.FAILED):
                    failed += 1
                    stale_donations_swept_total.labels(outcome="failed").inc()
                else:
                    stale_donations_swept_total.labels(outcome="already_resolved").inc()

        logger.info("Stale donation sweep finished", candidates=len(stale), failed=failed)
        return failed

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_donation(self, donation_id: str) -> DonationResponse:
        with session_scope(self.session_factory) as db:
            donation = db.get(Donation, donation_id)
            if donation is None:
                raise NotFoundError(f"Donation not found with id: {donation_id}")
            return DonationResponse.from_donation(donation)

    def get_by_payment_intent(self, payment_intent_id: str) -> DonationResponse:
        with session_scope(self.session_factory) as db:
            donation = self._find_by_intent(db, payment_intent_id)
            if donation is None:
                raise NotFoundError(f"Donation not found for payment intent: {payment_intent_id}")
            return DonationResponse.from_donation(donation)

    def list_campaign_donations(self, campaign_id: str, params: PageParams, include_private: bool = False) -> Page:
        stmt = select(Donation).where(
            Donation.campaign_id == campaign_id,
            Donation.payment_status == PaymentStatus.SUCCEEDED.value,
        )
        if not include_private:
            stmt = stmt.where(Donation.show_in_public_list.is_(True))
        with session_scope(self.session_factory) as db:
            return paginate(db, stmt, params, DONATION_SORT_COLUMNS, DonationPublicResponse.from_donation)

    def list_donor_donations(self, donor_id: str, params: PageParams) -> Page:
        stmt = select(Donation).where(Donation.donor_id == donor_id)
        with session_scope(self.session_factory) as db:
            return paginate(db, stmt, params, DONATION_SORT_COLUMNS, DonationResponse.from_donation)

    def list_donations(
        self,
        params: PageParams,
        status: Optional[str] = None,
        campaign_id: Optional[str] = None,
        donor_id: Optional[str] = None,
    ) -> Page:
        stmt = select(Donation)
        if status:
            try:
                stmt = stmt.where(Donation.payment_status == PaymentStatus(status.lower()).value)
            except ValueError:
                raise ValidationError(f"Invalid payment status: {status}")
        if campaign_id:
            stmt = stmt.where(Donation.campaign_id == campaign_id)
        if donor_id:
            stmt = stmt.where(Donation.donor_id == donor_id)
        with session_scope(self.session_factory) as db:
            return paginate(db, stmt, params, DONATION_SORT_COLUMNS, DonationResponse.from_donation)

    def campaign_messages(self, campaign_id: str, params: PageParams) -> Page:
        stmt = select(Donation).where(
            Donation.campaign_id == campaign_id,
            Donation.payment_status == PaymentStatus.SUCCEEDED.value,
            Donation.show_in_public_list.is_(True),
            Donation.message.is_not(None),
            Donation.message != "",
        )
        with session_scope(self.session_factory) as db:
            return paginate(db, stmt, params, DONATION_SORT_COLUMNS, DonationPublicResponse.from_donation)

    def recent_donations(self, limit: int = 10, hours: int = 24) -> List[DonationPublicResponse]:
        since = utcnow() - timedelta(hours=hours)
        with session_scope(self.session_factory) as db:
            rows = db.execute(
                select(Donation)
                .where(
                    Donation.payment_status == PaymentStatus.SUCCEEDED.value,
                    Donation.show_in_public_list.is_(True),
                    Donation.created_at >= since,
                )
                .order_by(Donation.created_at.desc())
                .limit(limit)
            ).scalars().all()
            return [DonationPublicResponse.from_donation(d) for d in rows]

    def search(self, query: str, params: PageParams) -> Page:
        if not query or not query.strip():
            raise ValidationError("Search query cannot be empty")
        pattern = f"%{query.strip()}%"
        stmt = select(Donation).where(
            or_(
                Donation.donor_name.ilike(pattern),
                Donation.donor_email.ilike(pattern),
                Donation.message.ilike(pattern),
                Donation.payment_intent_id == query.strip(),
            )
        )
        with session_scope(self.session_factory) as db:
            return paginate(db, stmt, params, DONATION_SORT_COLUMNS, DonationResponse.from_donation)

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def _succeeded(self, db: Session, campaign_id: Optional[str] = None) -> List[Donation]:
        stmt = select(Donation).where(Donation.payment_status == PaymentStatus.SUCCEEDED.value)
        if campaign_id:
            stmt = stmt.where(Donation.campaign_id == campaign_id)
        return db.execute(stmt).scalars().all()

    def campaign_statistics(self, campaign_id: str) -> CampaignDonationStats:
        with session_scope(self.session_factory) as db:
            if db.get(Campaign, campaign_id) is None:
                raise NotFoundError(f"Campaign not found with id: {campaign_id}")
            donations = self._succeeded(db, campaign_id)

        amounts = [d.amount for d in donations]
        total = sum(amounts)
        return CampaignDonationStats(
            campaign_id=campaign_id,
            total_amount=total,
            donation_count=len(donations),
            average_amount=total / len(donations) if donations else 0.0,
            largest_amount=max(amounts, default=0.0),
            unique_donors=len({d.donor_id or d.donor_email for d in donations if d.donor_id or d.donor_email}),
            anonymous_count=sum(1 for d in donations if d.is_anonymous),
            with_message_count=sum(1 for d in donations if (d.message or "").strip()),
        )

    def _platform_stats(self, donations: List[Donation], now: datetime) -> PlatformDonationStats:
        total = sum(d.amount for d in donations)
        fees = sum((d.processor_fee or 0.0) + (d.platform_fee or 0.0) for d in donations)
        recent_since = now - timedelta(days=30)
        return PlatformDonationStats(
            total_amount=total,
            donation_count=len(donations),
            unique_campaigns=len({d.campaign_id for d in donations}),
            unique_donors=len({d.donor_id or d.donor_email for d in donations if d.donor_id or d.donor_email}),
            average_amount=total / len(donations) if donations else 0.0,
            total_fees=fees,
            net_amount=sum(d.net_amount if d.net_amount is not None else d.amount for d in donations),
            recent_donation_count=sum(1 for d in donations if d.created_at >= recent_since),
        )

    def platform_statistics(self) -> PlatformDonationStats:
        with session_scope(self.session_factory) as db:
            donations = self._succeeded(db)
        return self._platform_stats(donations, utcnow())

    def top_donors(self, campaign_id: str, limit: int = 10) -> List[TopDonor]:
        with session_scope(self.session_factory) as db:
            donations = self._succeeded(db, campaign_id)

        grouped: Dict[str, dict] = {}
        for donation in donations:
            if donation.is_anonymous:
                continue
            key = donation.donor_id or donation.donor_email or donation.display_name
            entry = grouped.setdefault(
                key,
                {"donor_id": donation.donor_id, "display_name": donation.display_name, "total": 0.0, "count": 0},
            )
            entry["total"] += donation.amount
            entry["count"] += 1

        ranked = sorted(grouped.values(), key=lambda e: e["total"], reverse=True)[:limit]
        return [
            TopDonor(
                donor_id=entry["donor_id"],
                display_name=entry["display_name"],
                total_amount=entry["total"],
                donation_count=entry["count"],
                average_donation=entry["total"] / entry["count"],
            )
            for entry in ranked
        ]

    @staticmethod
    def fold_monthly_trends(donations: List[Donation], months: int, now: datetime) -> List[MonthlyTrend]:
        """One bucket per calendar month, oldest first, empty months included"""
        buckets = {}
        for back in range(months - 1, -1, -1):
            start = month_floor(now, back)
            buckets[(start.year, start.month)] = [0.0, 0]
        for donation in donations:
            key = (donation.created_at.year, donation.created_at.month)
            if key in buckets:
                buckets[key][0] += donation.amount
                buckets[key][1] += 1
        return [
            MonthlyTrend(
                year=year,
                month=month,
                month_name=month_name[month],
                total_amount=total,
                donation_count=count,
                average_amount=total / count if count else 0.0,
            )
            for (year, month), (total, count) in buckets.items()
        ]

    def monthly_trends(self, months: int = 12) -> List[MonthlyTrend]:
        if months < 1:
            raise ValidationError("Months must be at least 1")
        now = utcnow()
        with session_scope(self.session_factory) as db:
            since = month_floor(now, months - 1)
            donations = db.execute(
                select(Donation).where(
                    Donation.payment_status == PaymentStatus.SUCCEEDED.value,
                    Donation.created_at >= since,
                )
            ).scalars().all()
        return self.fold_monthly_trends(donations, months, now)

    def analytics(self) -> DonationAnalytics:
        now = utcnow()
        with session_scope(self.session_factory) as db:
            every = db.execute(select(Donation)).scalars().all()

        succeeded = [d for d in every if d.payment_status == PaymentStatus.SUCCEEDED.value]
        status_breakdown = {status.value: 0 for status in PaymentStatus}
        for donation in every:
            status_breakdown[donation.payment_status] = status_breakdown.get(donation.payment_status, 0) + 1
        currency_breakdown: Dict[str, float] = {}
        for donation in succeeded:
            currency_breakdown[donation.currency] = currency_breakdown.get(donation.currency, 0.0) + donation.amount

        return DonationAnalytics(
            platform=self._platform_stats(succeeded, now),
            status_breakdown=status_breakdown,
            currency_breakdown=currency_breakdown,
            monthly_trends=self.fold_monthly_trends(succeeded, 12, now),
        )
