"""
Integration Tests for the HTTP API
Requests go through the full app against an in-memory database
"""
from unittest.mock import MagicMock
import threading

import pytest
from fastapi import Request, Response

from crowdfund.core.errors import ValidationError
from crowdfund.middleware import logging as request_logging
from crowdfund.schemas.user import RegisterUserRequest
from crowdfund.services.identity import JoseTokenVerifier


# ============================================================================
# HEALTH AND ERROR SHAPE
# ============================================================================

@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_readiness(client):
    response = await client.get("/health/ready")

    assert response.status_code == 200
    assert response.json()["database"] == "connected"


@pytest.mark.asyncio
async def test_metrics_exposed(client):
    await client.get("/health")
    response = await client.get("/metrics")

    assert response.status_code == 200
    assert "http_requests_total" in response.text


@pytest.mark.asyncio
async def test_not_found_body(client):
    response = await client.get("/api/campaigns/missing")

    assert response.status_code == 404
    assert response.json() == {"error": "NotFound", "message": "Campaign not found with id: missing"}


@pytest.mark.asyncio
async def test_malformed_body_is_validation_error(client):
    response = await client.post("/api/campaigns", json={"name": "No goal"})

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "ValidationError"
    assert "goalAmount" in body["message"]


@pytest.mark.asyncio
async def test_unknown_sort_field(client):
    response = await client.get("/api/campaigns", params={"sortBy": "secret"})

    assert response.status_code == 400
    assert response.json()["error"] == "ValidationError"


# ============================================================================
# CAMPAIGNS
# ============================================================================

@pytest.mark.asyncio
async def test_campaign_lifecycle(client):
    created = await client.post("/api/campaigns/create", json={
        "name": "Flood Relief Kelantan",
        "category": "Disaster",
        "goalAmount": 20000,
        "startDate": "2025-01-01",
        "endDate": "2099-12-31",
    })
    assert created.status_code == 201
    campaign = created.json()
    assert campaign["status"] == "pending"
    assert campaign["raisedAmount"] == 0.0

    pending = await client.get("/api/campaigns/pending")
    assert [c["id"] for c in pending.json()] == [campaign["id"]]

    approved = await client.post(f"/api/campaigns/verify/{campaign['id']}")
    assert approved.status_code == 200
    assert approved.json()["status"] == "approved"

    again = await client.post(f"/api/campaigns/reject/{campaign['id']}", json={"reason": "late"})
    assert again.status_code == 409
    assert again.json()["error"] == "InvalidState"

    active = await client.get("/api/campaigns/active")
    assert campaign["id"] in [c["id"] for c in active.json()]


@pytest.mark.asyncio
async def test_update_cannot_set_raised_amount(client, campaign_id):
    response = await client.put(f"/api/campaigns/{campaign_id}", json={"raisedAmount": 1000000})

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_paged_campaign_list(client, campaign_factory):
    for n in range(3):
        campaign_factory(name=f"Campaign {n}")

    response = await client.get("/api/campaigns", params={"page": 1, "size": 2, "sortBy": "name", "sortDir": "asc"})

    assert response.status_code == 200
    body = response.json()
    assert [c["name"] for c in body["items"]] == ["Campaign 2"]
    assert body["pagination"] == {"currentPage": 1, "totalPages": 2, "totalElements": 3, "size": 2}


# ============================================================================
# DONATIONS AND WEBHOOKS
# ============================================================================

@pytest.mark.asyncio
async def test_donation_paid_through_webhook(client, services, gateway, campaign_id, event_factory):
    created = await client.post("/api/donations", json={
        "campaignId": campaign_id,
        "amount": 50.0,
        "donorName": "Aisyah",
        "donorEmail": "aisyah@example.com",
    })
    assert created.status_code == 201
    donation = created.json()
    assert donation["status"] == "pending"
    assert donation["clientSecret"] == "pi_1_secret"

    gateway.construct_event.return_value = event_factory("payment_intent.succeeded", donation["paymentIntentId"])
    ack = await client.post(
        "/api/payment/webhook",
        content=b'{"type": "payment_intent.succeeded"}',
        headers={"Stripe-Signature": "t=1,v1=abc"},
    )
    assert ack.status_code == 200
    assert ack.json() == {"received": True, "eventType": "payment_intent.succeeded", "outcome": "applied"}

    replay = await client.post(
        "/api/payment/webhook",
        content=b'{"type": "payment_intent.succeeded"}',
        headers={"Stripe-Signature": "t=1,v1=abc"},
    )
    assert replay.json()["outcome"] == "duplicate"

    campaign = (await client.get(f"/api/campaigns/{campaign_id}")).json()
    assert campaign["raisedAmount"] == 50.0
    assert campaign["completionPercentage"] == 5.0

    public = (await client.get(f"/api/donations/campaign/{campaign_id}")).json()
    assert [d["donorName"] for d in public["items"]] == ["Aisyah"]


@pytest.mark.asyncio
async def test_donation_below_minimum(client, gateway, campaign_id):
    response = await client.post("/api/donations", json={"campaignId": campaign_id, "amount": 0.5})

    assert response.status_code == 400
    assert response.json()["error"] == "ValidationError"
    gateway.create_payment_intent.assert_not_called()


@pytest.mark.asyncio
async def test_donation_with_nan_amount(client, gateway, campaign_id):
    body = '{"campaignId": "%s", "amount": NaN}' % campaign_id

    response = await client.post("/api/donations", content=body, headers={"Content-Type": "application/json"})

    assert response.status_code == 400
    assert response.json()["error"] == "ValidationError"
    gateway.create_payment_intent.assert_not_called()


@pytest.mark.asyncio
async def test_ip_limit_uses_forwarded_header(client, gateway, campaign_id):
    headers = {"X-Forwarded-For": "1.2.3.4, 10.0.0.1"}
    for _ in range(5):
        response = await client.post("/api/donations", json={"campaignId": campaign_id, "amount": 20}, headers=headers)
        assert response.status_code == 201

    response = await client.post("/api/donations", json={"campaignId": campaign_id, "amount": 20}, headers=headers)

    assert response.status_code == 400
    assert gateway.create_payment_intent.call_count == 5


@pytest.mark.asyncio
async def test_webhook_without_signature(client):
    response = await client.post("/api/payment/webhook", content=b"{}")

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_webhook_with_bad_signature(client, gateway):
    gateway.construct_event.side_effect = ValidationError("Invalid webhook signature")

    response = await client.post("/api/payment/webhook", content=b"{}", headers={"Stripe-Signature": "bad"})

    assert response.status_code == 400
    assert response.json()["message"] == "Invalid webhook signature"


@pytest.mark.asyncio
async def test_webhook_for_unknown_intent(client, gateway, event_factory):
    gateway.construct_event.return_value = event_factory("payment_intent.succeeded", "pi_ghost")

    response = await client.post("/api/payment/webhook", content=b"{}", headers={"Stripe-Signature": "sig"})

    assert response.status_code == 404
    assert response.json()["error"] == "NotFound"


@pytest.mark.asyncio
async def test_refund_over_amount(client, services, campaign_id, event_factory):
    created = (await client.post("/api/donations", json={"campaignId": campaign_id, "amount": 30})).json()
    services.donations.apply_event(event_factory("payment_intent.succeeded", created["paymentIntentId"]))

    response = await client.post(f"/api/donations/{created['donationId']}/refund", json={"amount": 31})

    assert response.status_code == 400
    donation = (await client.get(f"/api/donations/{created['donationId']}")).json()
    assert donation["paymentStatus"] == "succeeded"


@pytest.mark.asyncio
async def test_fee_preview(client):
    response = await client.get("/api/payment/fees", params={"amount": 100})

    assert response.json() == {"amount": 100.0, "processorFee": 4.9, "platformFee": 5.0, "netAmount": 90.1}


@pytest.mark.asyncio
async def test_payment_methods(client):
    body = (await client.get("/api/payment/methods")).json()

    assert [m["type"] for m in body["methods"]] == ["card", "fpx"]
    assert body["currencies"]["MYR"] == ["card", "fpx"]


# ============================================================================
# USERS AND AUTH
# ============================================================================

@pytest.mark.asyncio
async def test_register_and_login(client):
    registered = await client.post("/api/users/register", json={
        "username": "farid",
        "email": "farid@example.com",
        "password": "s3cret-pass",
    })
    assert registered.status_code == 201
    assert "passwordHash" not in registered.json()

    duplicate = await client.post("/api/users/register", json={
        "username": "farid",
        "email": "other@example.com",
        "password": "s3cret-pass",
    })
    assert duplicate.status_code == 409

    login = await client.post("/api/users/login", json={"usernameOrEmail": "farid", "password": "s3cret-pass"})
    assert login.status_code == 200
    assert login.json()["accessToken"]

    bad = await client.post("/api/users/login", json={"usernameOrEmail": "farid", "password": "nope-nope"})
    assert bad.status_code == 401
    assert bad.json()["error"] == "Unauthorized"


@pytest.mark.asyncio
async def test_availability_routes_before_id(client):
    response = await client.get("/api/users/check/username/free-name")

    assert response.json() == {"value": "free-name", "available": True}


@pytest.mark.asyncio
async def test_provider_register(client):
    response = await client.post("/api/auth/register", json={"token": "provider-token"})

    assert response.status_code == 201
    assert response.json()["user"]["username"] == "nadia"


# ============================================================================
# ROLE ENFORCEMENT
# ============================================================================

@pytest.fixture
def role_mode(services):
    services.settings.authorization_mode = "role"
    return services


async def _token(client, services, username, admin=False, verified=True):
    user = services.users.register(
        RegisterUserRequest(username=username, email=f"{username}@example.com", password="s3cret-pass")
    )
    if admin:
        services.users.promote_to_admin(user.id)
    if verified:
        services.users.verify_user(user.id)
    login = await client.post("/api/users/login", json={"usernameOrEmail": username, "password": "s3cret-pass"})
    return {"Authorization": f"Bearer {login.json()['accessToken']}"}


@pytest.fixture
def jwt_verifier(services, settings):
    services.verifier = JoseTokenVerifier(settings.auth_jwt_secret)
    return services.verifier


@pytest.mark.asyncio
async def test_admin_routes_require_admin(client, role_mode, jwt_verifier):
    anonymous = await client.get("/api/admin/stats")
    assert anonymous.status_code == 401

    user_headers = await _token(client, role_mode, "plainuser")
    forbidden = await client.get("/api/admin/stats", headers=user_headers)
    assert forbidden.status_code == 403

    admin_headers = await _token(client, role_mode, "boss", admin=True)
    allowed = await client.get("/api/admin/stats", headers=admin_headers)
    assert allowed.status_code == 200
    assert allowed.json()["adminUsers"] == 1


@pytest.mark.asyncio
async def test_unverified_user_cannot_create_campaign(client, role_mode, jwt_verifier):
    headers = await _token(client, role_mode, "newbie", verified=False)

    response = await client.post(
        "/api/campaigns",
        json={"name": "Mine", "category": "Misc", "goalAmount": 10},
        headers=headers,
    )

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_invalid_token_is_treated_as_anonymous(client, jwt_verifier, campaign_id):
    response = await client.post(
        "/api/donations",
        json={"campaignId": campaign_id, "amount": 15},
        headers={"Authorization": "Bearer not-a-jwt"},
    )

    assert response.status_code == 201
    donation = (await client.get(f"/api/donations/{response.json()['donationId']}")).json()
    assert donation["donorId"] is None


# ============================================================================
# UPLOADS
# ============================================================================

@pytest.mark.asyncio
async def test_upload_campaign_image(client, storage):
    response = await client.post(
        "/api/upload/campaign/image",
        files={"file": ("cover.png", b"\x89PNG\r\n", "image/png")},
    )

    assert response.status_code == 201
    assert response.json()["publicId"] == "fundizen/campaigns/abc"


@pytest.mark.asyncio
async def test_upload_too_large(client, services):
    services.uploads.max_bytes = 4

    response = await client.post(
        "/api/upload",
        files={"file": ("cover.png", b"\x89PNG\r\n", "image/png")},
    )

    assert response.status_code == 413
    assert response.json()["error"] == "FILE_SIZE_EXCEEDED"


@pytest.mark.asyncio
async def test_private_donations_are_admin_only(client, role_mode, jwt_verifier, services, campaign_id, event_factory):
    created = (await client.post(
        "/api/donations",
        json={"campaignId": campaign_id, "amount": 40, "showInPublicList": False},
    )).json()
    services.donations.apply_event(event_factory("payment_intent.succeeded", created["paymentIntentId"]))
    url = f"/api/donations/campaign/{campaign_id}"

    public = await client.get(url)
    assert public.status_code == 200
    assert public.json()["pagination"]["totalElements"] == 0

    anonymous = await client.get(url, params={"includePrivate": "true"})
    assert anonymous.status_code == 401

    user_headers = await _token(client, role_mode, "curious")
    forbidden = await client.get(url, params={"includePrivate": "true"}, headers=user_headers)
    assert forbidden.status_code == 403

    admin_headers = await _token(client, role_mode, "auditor", admin=True)
    allowed = await client.get(url, params={"includePrivate": "true"}, headers=admin_headers)
    assert allowed.status_code == 200
    assert allowed.json()["pagination"]["totalElements"] == 1


# ============================================================================
# BLOCKING CALLS STAY OFF THE EVENT LOOP
# ============================================================================

@pytest.mark.asyncio
async def test_upload_runs_storage_in_worker_thread(client, storage):
    loop_thread = threading.get_ident()
    seen = []

    def record_thread(*args, **kwargs):
        seen.append(threading.get_ident())
        return {"url": "https://res.cloudinary.com/demo/image/upload/v1/fundizen/campaigns/abc.jpg", "public_id": "abc"}

    storage.upload.side_effect = record_thread

    response = await client.post(
        "/api/upload/campaign/image",
        files={"file": ("cover.png", b"\x89PNG\r\n", "image/png")},
    )

    assert response.status_code == 201
    assert len(seen) == 1
    assert seen[0] != loop_thread


@pytest.mark.asyncio
async def test_webhook_runs_processing_in_worker_thread(client, gateway, campaign_id, event_factory):
    created = (await client.post("/api/donations", json={"campaignId": campaign_id, "amount": 25})).json()
    loop_thread = threading.get_ident()
    seen = []

    def record_thread(payload, signature):
        seen.append(threading.get_ident())
        return event_factory("payment_intent.succeeded", created["paymentIntentId"])

    gateway.construct_event.side_effect = record_thread

    response = await client.post("/api/payment/webhook", content=b"{}", headers={"Stripe-Signature": "sig"})

    assert response.status_code == 200
    assert response.json()["outcome"] == "applied"
    assert seen and seen[0] != loop_thread


# ============================================================================
# REQUEST LOGGING
# ============================================================================

def _request(path, headers):
    return Request({
        "type": "http",
        "method": "POST",
        "path": path,
        "query_string": b"",
        "headers": [(k.encode(), v.encode()) for k, v in headers.items()],
        "client": ("127.0.0.1", 50000),
    })


@pytest.mark.asyncio
async def test_request_log_uses_forwarded_client_ip(monkeypatch):
    fake_logger = MagicMock()
    monkeypatch.setattr(request_logging, "logger", fake_logger)

    async def call_next(request):
        return Response(status_code=201)

    request = _request("/api/donations", {"x-forwarded-for": "1.2.3.4, 10.0.0.1", "user-agent": "checkout-web"})
    response = await request_logging.logging_middleware(request, call_next)

    assert response.status_code == 201
    fields = fake_logger.info.call_args.kwargs
    assert fields["client_ip"] == "1.2.3.4"
    assert fields["user_agent"] == "checkout-web"
    assert fields["authenticated"] is False


@pytest.mark.asyncio
async def test_request_log_escalates_server_errors(monkeypatch):
    fake_logger = MagicMock()
    monkeypatch.setattr(request_logging, "logger", fake_logger)

    async def call_next(request):
        return Response(status_code=502)

    await request_logging.logging_middleware(_request("/health", {}), call_next)

    fake_logger.info.assert_not_called()
    fields = fake_logger.error.call_args.kwargs
    assert fields["status_code"] == 502
    assert fields["client_ip"] == "127.0.0.1"
    assert "user_agent" not in fields
