"""
Shared fixtures: an in-memory database, fake processor/storage/identity
collaborators and an HTTP client bound to the app.
"""
from datetime import date, timedelta
from itertools import count
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from crowdfund.core.config import Settings
from crowdfund.database.database import init_db, session_scope
from crowdfund.factory import build_services
from crowdfund.main import create_app
from crowdfund.models.campaign import Campaign, CampaignStatus
from crowdfund.services.identity import TokenVerifier, VerifiedIdentity
from crowdfund.services.media_client import MediaStorage
from crowdfund.services.notifications import Notifier
from crowdfund.services.stripe_client import PaymentGateway, PaymentIntentResult, RefundResult, WebhookEvent


# ============================================================================
# COLLABORATOR FAKES
# ============================================================================

@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite://",
        scheduler_enabled=False,
        tracing_enabled=False,
        bcrypt_rounds=4,
        auth_jwt_secret="test-secret",
        stripe_webhook_secret="whsec_test",
    )


@pytest.fixture
def gateway():
    """Payment gateway fake handing out sequential intent ids"""
    ids = count(1)
    fake = MagicMock(spec=PaymentGateway)

    def create_payment_intent(amount, currency, metadata, receipt_email=None):
        n = next(ids)
        return PaymentIntentResult(
            id=f"pi_{n}",
            status="requires_payment_method",
            amount=amount,
            currency=currency,
            client_secret=f"pi_{n}_secret",
        )

    def cancel_payment_intent(payment_intent_id, reason=None):
        return PaymentIntentResult(id=payment_intent_id, status="canceled", amount=0.0, currency="MYR")

    def create_refund(payment_intent_id, amount=None, currency="MYR", reason=None):
        return RefundResult(id=f"re_{payment_intent_id}", status="succeeded", amount=amount or 0.0)

    fake.create_payment_intent.side_effect = create_payment_intent
    fake.cancel_payment_intent.side_effect = cancel_payment_intent
    fake.create_refund.side_effect = create_refund
    fake.supported_payment_methods.return_value = [
        {"type": "card", "name": "Credit / Debit Card", "currencies": ["MYR", "USD", "SGD"]},
        {"type": "fpx", "name": "FPX Online Banking", "currencies": ["MYR"]},
    ]
    return fake


@pytest.fixture
def storage():
    fake = MagicMock(spec=MediaStorage)
    fake.upload.return_value = {
        "url": "https://res.cloudinary.com/demo/image/upload/v1700000000/fundizen/campaigns/abc.jpg",
        "public_id": "fundizen/campaigns/abc",
    }
    fake.delete.return_value = True
    fake.build_url.return_value = "https://res.cloudinary.com/demo/image/upload/c_fill,w_800,h_600/abc.jpg"
    return fake


@pytest.fixture
def verifier():
    fake = MagicMock(spec=TokenVerifier)
    fake.verify.return_value = VerifiedIdentity(subject="ext-1", email="nadia@example.com", email_verified=True)
    return fake


@pytest.fixture
def services(settings, gateway, storage, verifier):
    services = build_services(
        settings=settings,
        gateway=gateway,
        storage=storage,
        verifier=verifier,
        notifier=Notifier(inline=True),
    )
    init_db(services.engine)
    yield services
    services.engine.dispose()


# ============================================================================
# DATA HELPERS
# ============================================================================

def make_campaign(services, **overrides) -> str:
    values = dict(
        name="Clean Water for Kampung Baru",
        category="Community",
        description="Wells for the village",
        goal_amount=1000.0,
        raised_amount=0.0,
        start_date=date.today() - timedelta(days=1),
        end_date=date.today() + timedelta(days=30),
        status=CampaignStatus.APPROVED.value,
        verified=True,
        creator_id=None,
    )
    values.update(overrides)
    with session_scope(services.session_factory) as db:
        campaign = Campaign(**values)
        db.add(campaign)
        db.flush()
        return campaign.id


def webhook_event(event_type: str, payment_intent_id: str, **fields) -> WebhookEvent:
    return WebhookEvent(
        id=f"evt_{event_type}_{payment_intent_id}",
        type=event_type,
        payment_intent_id=payment_intent_id,
        **fields,
    )


@pytest.fixture
def campaign_id(services):
    """Approved, verified campaign with a goal of 1000.00"""
    return make_campaign(services)


# ============================================================================
# HTTP CLIENT
# ============================================================================

@pytest.fixture
def app(services):
    return create_app(services)


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac


@pytest.fixture
def campaign_factory(services):
    def factory(**overrides):
        return make_campaign(services, **overrides)
    return factory


@pytest.fixture
def event_factory():
    return webhook_event
