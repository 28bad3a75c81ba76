"""
Unit Tests for the donation lifecycle
Intake, processor reconciliation, refunds and the stale sweep
"""
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from pydantic import ValidationError as SchemaValidationError
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from crowdfund.core.errors import InvalidStateError, NotFoundError, UpstreamError, ValidationError
from crowdfund.database.database import session_scope
from crowdfund.models.base import utcnow
from crowdfund.models.campaign import Campaign, CampaignStatus
from crowdfund.models.donation import Donation, PaymentStatus, can_transition
from crowdfund.schemas.common import PageParams
from crowdfund.schemas.donation import CreateDonationRequest
from crowdfund.services.donation import SUSPICIOUS_MESSAGE
from crowdfund.services.stripe_client import PaymentIntentResult


def donation_request(campaign_id, amount=50.0, **overrides):
    values = dict(
        campaign_id=campaign_id,
        amount=amount,
        currency="MYR",
        donor_name="Aisyah",
        donor_email="aisyah@example.com",
        message="Good luck!",
    )
    values.update(overrides)
    return CreateDonationRequest(**values)


def raised_amount(services, campaign_id):
    with session_scope(services.session_factory) as db:
        return db.get(Campaign, campaign_id).raised_amount


def donation_status(services, donation_id):
    with session_scope(services.session_factory) as db:
        return db.get(Donation, donation_id).payment_status


# ============================================================================
# MODEL RULES
# ============================================================================

class TestDonationModel:
    """Derived fields and the status state machine"""

    def test_net_amount_follows_amount_and_fees(self):
        donation = Donation(amount=100.0, processor_fee=4.9, platform_fee=5.0)
        assert donation.net_amount == pytest.approx(90.1)

        donation.platform_fee = 10.0
        assert donation.net_amount == pytest.approx(85.1)

        donation.amount = 200.0
        assert donation.net_amount == pytest.approx(185.1)

    def test_missing_fees_count_as_zero(self):
        donation = Donation(amount=25.0)
        assert donation.net_amount == 25.0

    def test_display_name_hides_anonymous_donors(self):
        assert Donation(donor_name="Aisyah", is_anonymous=True).display_name == "Anonymous"
        assert Donation(donor_name="  ", is_anonymous=False).display_name == "Anonymous"
        assert Donation(donor_name="Aisyah", is_anonymous=False).display_name == "Aisyah"

    @pytest.mark.parametrize("current,target,allowed", [
        (PaymentStatus.PENDING, PaymentStatus.PROCESSING, True),
        (PaymentStatus.PENDING, PaymentStatus.SUCCEEDED, True),
        (PaymentStatus.PROCESSING, PaymentStatus.FAILED, True),
        (PaymentStatus.SUCCEEDED, PaymentStatus.REFUNDED, True),
        (PaymentStatus.SUCCEEDED, PaymentStatus.FAILED, False),
        (PaymentStatus.FAILED, PaymentStatus.SUCCEEDED, False),
        (PaymentStatus.CANCELED, PaymentStatus.PENDING, False),
        (PaymentStatus.REFUNDED, PaymentStatus.SUCCEEDED, False),
        (PaymentStatus.PENDING, PaymentStatus.REFUNDED, False),
    ])
    def test_transitions(self, current, target, allowed):
        assert can_transition(current, target) is allowed


# ============================================================================
# SERVICE TESTS - CREATE DONATION
# ============================================================================

class TestCreateDonation:
    """Donation intake - success and rejection scenarios"""

    def test_create_donation_success(self, services, gateway, campaign_id):
        response = services.donations.create_donation(donation_request(campaign_id), ip_address="10.0.0.1")

        assert response.status == PaymentStatus.PENDING.value
        assert response.payment_intent_id == "pi_1"
        assert response.client_secret == "pi_1_secret"
        gateway.create_payment_intent.assert_called_once()

        donation = services.donations.get_donation(response.donation_id)
        assert donation.processor_fee == 3.2
        assert donation.platform_fee == 2.5
        assert donation.net_amount == pytest.approx(44.3)
        assert donation.donor_ip_address == "10.0.0.1"

    def test_below_minimum_never_reaches_processor(self, services, gateway, campaign_id):
        with pytest.raises(ValidationError):
            services.donations.create_donation(donation_request(campaign_id, amount=0.5))

        gateway.create_payment_intent.assert_not_called()

    def test_unsupported_currency(self, services, gateway, campaign_id):
        with pytest.raises(ValidationError) as exc_info:
            services.donations.create_donation(donation_request(campaign_id, currency="EUR"))

        assert "Unsupported currency" in exc_info.value.message
        gateway.create_payment_intent.assert_not_called()

    def test_unknown_campaign(self, services, gateway):
        with pytest.raises(NotFoundError):
            services.donations.create_donation(donation_request("missing"))

        gateway.create_payment_intent.assert_not_called()

    def test_campaign_not_accepting_donations(self, services, gateway, campaign_factory):
        pending_id = campaign_factory(status=CampaignStatus.PENDING.value, verified=False)

        with pytest.raises(InvalidStateError):
            services.donations.create_donation(donation_request(pending_id))

        gateway.create_payment_intent.assert_not_called()

    def test_sixth_donation_from_same_ip_is_rejected(self, services, gateway, campaign_id):
        for _ in range(5):
            services.donations.create_donation(donation_request(campaign_id), ip_address="1.2.3.4")
        assert gateway.create_payment_intent.call_count == 5

        with pytest.raises(ValidationError) as exc_info:
            services.donations.create_donation(donation_request(campaign_id), ip_address="1.2.3.4")

        assert exc_info.value.message == SUSPICIOUS_MESSAGE
        assert gateway.create_payment_intent.call_count == 5

    def test_other_ip_is_not_affected(self, services, gateway, campaign_id):
        for _ in range(5):
            services.donations.create_donation(donation_request(campaign_id), ip_address="1.2.3.4")

        services.donations.create_donation(donation_request(campaign_id), ip_address="5.6.7.8")
        assert gateway.create_payment_intent.call_count == 6

    def test_large_amount_is_flagged(self, services, gateway, campaign_id):
        with pytest.raises(ValidationError):
            services.donations.create_donation(donation_request(campaign_id, amount=20000.0))

        gateway.create_payment_intent.assert_not_called()

    def test_processor_failure_leaves_no_donation(self, services, gateway, campaign_id):
        gateway.create_payment_intent.side_effect = UpstreamError("card network down")

        with pytest.raises(UpstreamError):
            services.donations.create_donation(donation_request(campaign_id))

        with session_scope(services.session_factory) as db:
            assert db.query(Donation).count() == 0

    @pytest.mark.parametrize("amount", [float("nan"), float("inf")])
    def test_non_finite_amount_never_reaches_processor(self, services, gateway, campaign_id, amount):
        request = CreateDonationRequest.model_construct(campaign_id=campaign_id, amount=amount, currency="MYR")

        with pytest.raises(ValidationError):
            services.donations.create_donation(request)

        gateway.create_payment_intent.assert_not_called()

    def test_request_schema_rejects_nan(self, campaign_id):
        with pytest.raises(SchemaValidationError):
            CreateDonationRequest(campaign_id=campaign_id, amount=float("nan"))

    def test_failed_insert_cancels_intent(self, services, gateway, campaign_id):
        # the fake gateway hands out pi_1 next, so the unique reference collides
        with session_scope(services.session_factory) as db:
            db.add(Donation(campaign_id=campaign_id, amount=10.0, payment_intent_id="pi_1"))

        with pytest.raises(IntegrityError):
            services.donations.create_donation(donation_request(campaign_id))

        gateway.cancel_payment_intent.assert_called_once_with("pi_1", reason="abandoned")
        with session_scope(services.session_factory) as db:
            assert db.query(Donation).count() == 1

    def test_failed_insert_and_failed_cancel_reraises_insert_error(self, services, gateway, campaign_id):
        with session_scope(services.session_factory) as db:
            db.add(Donation(campaign_id=campaign_id, amount=10.0, payment_intent_id="pi_1"))
        gateway.cancel_payment_intent.side_effect = UpstreamError("processor unavailable")

        with pytest.raises(IntegrityError):
            services.donations.create_donation(donation_request(campaign_id))


# ============================================================================
# SERVICE TESTS - WEBHOOKS
# ============================================================================

class TestWebhookReconciliation:
    """Processor events drive the donation state machine"""

    def test_succeeded_event_credits_campaign(self, services, campaign_id, event_factory):
        created = services.donations.create_donation(donation_request(campaign_id, amount=50.0))
        assert created.status == "pending"

        outcome = services.donations.apply_event(
            event_factory("payment_intent.succeeded", created.payment_intent_id, payment_method_id="pm_card")
        )

        assert outcome == "applied"
        donation = services.donations.get_donation(created.donation_id)
        assert donation.payment_status == "succeeded"
        assert donation.payment_method_id == "pm_card"
        assert donation.completed_at is not None
        assert raised_amount(services, campaign_id) == 50.0

    def test_replayed_event_is_idempotent(self, services, campaign_id, event_factory):
        created = services.donations.create_donation(donation_request(campaign_id, amount=50.0))
        event = event_factory("payment_intent.succeeded", created.payment_intent_id)

        assert services.donations.apply_event(event) == "applied"
        assert services.donations.apply_event(event) == "duplicate"

        assert raised_amount(services, campaign_id) == 50.0

    def test_terminal_state_does_not_regress(self, services, campaign_id, event_factory):
        created = services.donations.create_donation(donation_request(campaign_id))
        services.donations.apply_event(event_factory("payment_intent.succeeded", created.payment_intent_id))

        outcome = services.donations.apply_event(
            event_factory("payment_intent.payment_failed", created.payment_intent_id)
        )

        assert outcome == "ignored"
        assert donation_status(services, created.donation_id) == "succeeded"

    def test_processing_then_failed(self, services, campaign_id, event_factory):
        created = services.donations.create_donation(donation_request(campaign_id))

        services.donations.apply_event(event_factory("payment_intent.processing", created.payment_intent_id))
        assert donation_status(services, created.donation_id) == "processing"

        services.donations.apply_event(
            event_factory("payment_intent.payment_failed", created.payment_intent_id, failure_message="declined")
        )
        assert donation_status(services, created.donation_id) == "failed"
        assert raised_amount(services, campaign_id) == 0.0

    def test_charge_succeeded_records_charge(self, services, campaign_id, event_factory):
        created = services.donations.create_donation(donation_request(campaign_id))

        outcome = services.donations.apply_event(
            event_factory("charge.succeeded", created.payment_intent_id, charge_id="ch_1")
        )

        assert outcome == "recorded"
        donation = services.donations.get_donation(created.donation_id)
        assert donation.charge_id == "ch_1"
        assert donation.payment_status == "pending"

    def test_unknown_reference(self, services, event_factory):
        with pytest.raises(NotFoundError):
            services.donations.apply_event(event_factory("payment_intent.succeeded", "pi_unknown"))

    def test_unhandled_event_type(self, services, event_factory):
        assert services.donations.apply_event(event_factory("customer.created", None)) == "unhandled"

    def test_handle_webhook_verifies_with_gateway(self, services, gateway, campaign_id, event_factory):
        created = services.donations.create_donation(donation_request(campaign_id))
        gateway.construct_event.return_value = event_factory("payment_intent.succeeded", created.payment_intent_id)

        event, outcome = services.donations.handle_webhook(b"{}", "t=1,v1=sig")

        gateway.construct_event.assert_called_once_with(b"{}", "t=1,v1=sig")
        assert event.type == "payment_intent.succeeded"
        assert outcome == "applied"

    def test_raised_amount_matches_succeeded_sum(self, services, campaign_id, event_factory):
        intents = [
            services.donations.create_donation(donation_request(campaign_id, amount=amount))
            for amount in (10.0, 20.0, 30.0)
        ]
        services.donations.apply_event(event_factory("payment_intent.succeeded", intents[0].payment_intent_id))
        services.donations.apply_event(event_factory("payment_intent.succeeded", intents[1].payment_intent_id))
        services.donations.apply_event(event_factory("payment_intent.canceled", intents[2].payment_intent_id))

        assert raised_amount(services, campaign_id) == 30.0

        services.donations.refund_donation(intents[0].donation_id)
        assert raised_amount(services, campaign_id) == 20.0


# ============================================================================
# SERVICE TESTS - REFUNDS
# ============================================================================

class TestRefunds:
    """Refunds are only legal from succeeded"""

    @pytest.fixture
    def succeeded(self, services, campaign_id, event_factory):
        created = services.donations.create_donation(donation_request(campaign_id, amount=100.0))
        services.donations.apply_event(event_factory("payment_intent.succeeded", created.payment_intent_id))
        return created

    def test_full_refund(self, services, gateway, campaign_id, succeeded):
        refunded = services.donations.refund_donation(succeeded.donation_id, reason="duplicate")

        assert refunded.payment_status == "refunded"
        assert refunded.is_refunded is True
        assert refunded.refund_amount == 100.0
        assert refunded.refund_id == f"re_{succeeded.payment_intent_id}"
        assert refunded.can_refund is False
        gateway.create_refund.assert_called_once()
        assert raised_amount(services, campaign_id) == 0.0

    def test_partial_refund_marks_donation_refunded(self, services, succeeded):
        refunded = services.donations.refund_donation(succeeded.donation_id, amount=40.0)

        assert refunded.payment_status == "refunded"
        assert refunded.refund_amount == 40.0

    def test_refund_larger_than_donation(self, services, gateway, succeeded):
        with pytest.raises(ValidationError):
            services.donations.refund_donation(succeeded.donation_id, amount=150.0)

        gateway.create_refund.assert_not_called()
        donation = services.donations.get_donation(succeeded.donation_id)
        assert donation.payment_status == "succeeded"
        assert donation.is_refunded is False

    def test_refund_pending_donation(self, services, gateway, campaign_id):
        created = services.donations.create_donation(donation_request(campaign_id))

        with pytest.raises(InvalidStateError):
            services.donations.refund_donation(created.donation_id)

        gateway.create_refund.assert_not_called()

    def test_refund_twice(self, services, succeeded):
        services.donations.refund_donation(succeeded.donation_id)

        with pytest.raises(InvalidStateError):
            services.donations.refund_donation(succeeded.donation_id)

    def test_refund_unknown_donation(self, services):
        with pytest.raises(NotFoundError):
            services.donations.refund_donation("missing")


# ============================================================================
# SERVICE TESTS - STALE SWEEP
# ============================================================================

class TestStaleSweep:
    """Donations left open past the cutoff are cancelled and failed"""

    def _age(self, services, donation_id, hours):
        with session_scope(services.session_factory) as db:
            db.execute(
                update(Donation)
                .where(Donation.id == donation_id)
                .values(created_at=utcnow() - timedelta(hours=hours))
            )

    def test_sweep_fails_old_open_donations(self, services, gateway, campaign_id, event_factory):
        old = services.donations.create_donation(donation_request(campaign_id))
        fresh = services.donations.create_donation(donation_request(campaign_id))
        done = services.donations.create_donation(donation_request(campaign_id))
        services.donations.apply_event(event_factory("payment_intent.succeeded", done.payment_intent_id))
        self._age(services, old.donation_id, 48)
        self._age(services, done.donation_id, 48)

        assert services.donations.cleanup_stale_donations() == 1

        gateway.cancel_payment_intent.assert_called_once_with(old.payment_intent_id, reason="abandoned")
        assert donation_status(services, old.donation_id) == "failed"
        assert donation_status(services, fresh.donation_id) == "pending"
        assert donation_status(services, done.donation_id) == "succeeded"

    def test_cancel_failure_keeps_donation_open(self, services, gateway, campaign_id):
        old = services.donations.create_donation(donation_request(campaign_id))
        self._age(services, old.donation_id, 48)
        gateway.cancel_payment_intent.side_effect = UpstreamError("processor unavailable")

        assert services.donations.cleanup_stale_donations() == 0
        assert donation_status(services, old.donation_id) == "pending"

    def test_webhook_during_sweep_wins(self, services, gateway, campaign_id, event_factory):
        old = services.donations.create_donation(donation_request(campaign_id, amount=50.0))
        self._age(services, old.donation_id, 48)

        def succeed_while_canceling(payment_intent_id, reason=None):
            services.donations.apply_event(event_factory("payment_intent.succeeded", payment_intent_id))
            return PaymentIntentResult(id=payment_intent_id, status="succeeded", amount=50.0, currency="MYR")

        gateway.cancel_payment_intent.side_effect = succeed_while_canceling

        assert services.donations.cleanup_stale_donations() == 0
        assert donation_status(services, old.donation_id) == "succeeded"
        assert raised_amount(services, campaign_id) == 50.0

    def test_scheduler_swallows_sweep_errors(self, services):
        services.donations.cleanup_stale_donations = MagicMock(side_effect=RuntimeError("db down"))

        assert services.scheduler.run_stale_sweep() == 0


# ============================================================================
# SERVICE TESTS - QUERIES AND STATISTICS
# ============================================================================

class TestDonationQueries:

    @pytest.fixture
    def donations(self, services, campaign_id, event_factory):
        public = services.donations.create_donation(donation_request(campaign_id, amount=30.0, donor_id="u1"))
        private = services.donations.create_donation(
            donation_request(campaign_id, amount=70.0, show_in_public_list=False, donor_id="u2")
        )
        anonymous = services.donations.create_donation(
            donation_request(campaign_id, amount=100.0, is_anonymous=True, message=None)
        )
        services.donations.create_donation(donation_request(campaign_id, amount=5.0))
        for created in (public, private, anonymous):
            services.donations.apply_event(event_factory("payment_intent.succeeded", created.payment_intent_id))
        return public, private, anonymous

    def test_public_list_respects_opt_out(self, services, campaign_id, donations):
        page = services.donations.list_campaign_donations(campaign_id, PageParams())
        assert page.pagination.total_elements == 2

        page = services.donations.list_campaign_donations(campaign_id, PageParams(), include_private=True)
        assert page.pagination.total_elements == 3

    def test_campaign_statistics(self, services, campaign_id, donations):
        stats = services.donations.campaign_statistics(campaign_id)

        assert stats.total_amount == 200.0
        assert stats.donation_count == 3
        assert stats.largest_amount == 100.0
        assert stats.anonymous_count == 1

    def test_top_donors_skip_anonymous(self, services, campaign_id, donations):
        top = services.donations.top_donors(campaign_id)

        assert [d.total_amount for d in top] == [70.0, 30.0]
        assert all(d.display_name != "Anonymous" for d in top)

    def test_monthly_trends_include_current_month(self, services, donations):
        trends = services.donations.monthly_trends(3)

        assert len(trends) == 3
        assert trends[-1].total_amount == 200.0
        assert trends[-1].donation_count == 3

    def test_list_with_invalid_status(self, services, donations):
        with pytest.raises(ValidationError):
            services.donations.list_donations(PageParams(), status="lost")

    def test_unknown_sort_field(self, services, campaign_id, donations):
        with pytest.raises(ValidationError):
            services.donations.list_campaign_donations(campaign_id, PageParams(sort_by="password"))
