from fastapi import APIRouter, Depends, Header, Query, Request
from starlette.concurrency import run_in_threadpool
from typing import Dict, List, Optional
import structlog

from crowdfund.api.deps import get_services
from crowdfund.core.errors import ValidationError
from crowdfund.factory import Services
from crowdfund.schemas.payment import (
    ConfirmPaymentIntentRequest,
    CreatePaymentIntentRequest,
    FeeBreakdownResponse,
    PaymentIntentResponse,
    PaymentMethodInfo,
    PaymentMethodsResponse,
    WebhookAck,
)
from crowdfund.services.fees import calculate_fees, from_minor_units, to_minor_units
from crowdfund.services.stripe_client import PaymentIntentResult

router = APIRouter(prefix="/api/payment", tags=["payment"])
logger = structlog.get_logger(__name__)


def _intent_response(intent: PaymentIntentResult) -> PaymentIntentResponse:
    return PaymentIntentResponse(
        id=intent.id,
        client_secret=intent.client_secret,
        status=intent.status,
        amount=to_minor_units(intent.amount, intent.currency),
        currency=intent.currency.lower(),
    )


@router.post("/create-payment-intent", response_model=PaymentIntentResponse, status_code=201)
def create_payment_intent(
    intent_data: CreatePaymentIntentRequest,
    services: Services = Depends(get_services),
):
    """Open a bare payment intent; the amount is given in minor units"""
    currency = intent_data.currency.upper()
    intent = services.gateway.create_payment_intent(
        from_minor_units(intent_data.amount, currency),
        currency,
        {"source": "direct"},
    )
    return _intent_response(intent)


@router.post("/webhook", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    services: Services = Depends(get_services),
):
    """
    Processor notifications. The signature is verified before anything is
    read from the payload; replays of an applied event are acknowledged.
    """
    if not stripe_signature:
        raise ValidationError("Missing Stripe-Signature header")
    payload = await request.body()
    event, outcome = await run_in_threadpool(services.donations.handle_webhook, payload, stripe_signature)
    return WebhookAck(event_type=event.type, outcome=outcome)


@router.get("/intent/{payment_intent_id}", response_model=PaymentIntentResponse)
def get_payment_intent(payment_intent_id: str, services: Services = Depends(get_services)):
    return _intent_response(services.gateway.retrieve_payment_intent(payment_intent_id))


@router.post("/intent/{payment_intent_id}/confirm", response_model=PaymentIntentResponse)
def confirm_payment_intent(
    payment_intent_id: str,
    confirm_data: ConfirmPaymentIntentRequest,
    services: Services = Depends(get_services),
):
    intent = services.gateway.confirm_payment_intent(payment_intent_id, confirm_data.payment_method_id)
    return _intent_response(intent)


@router.get("/methods", response_model=PaymentMethodsResponse)
def payment_methods(services: Services = Depends(get_services)):
    methods = [PaymentMethodInfo(**m) for m in services.gateway.supported_payment_methods()]
    currencies: Dict[str, List[str]] = {}
    for method in methods:
        for currency in method.currencies:
            currencies.setdefault(currency, []).append(method.type)
    return PaymentMethodsResponse(methods=methods, currencies=currencies)


@router.get("/fees", response_model=FeeBreakdownResponse)
def fee_breakdown(amount: float = Query(..., gt=0)):
    fees = calculate_fees(amount)
    return FeeBreakdownResponse(
        amount=fees.amount,
        processor_fee=fees.processor_fee,
        platform_fee=fees.platform_fee,
        net_amount=round(fees.net_amount, 2),
    )
