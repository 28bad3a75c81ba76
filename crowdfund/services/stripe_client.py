"""
Payment processor client

``PaymentGateway`` is the narrow interface the donation service depends on;
``StripeGateway`` implements it with the Stripe SDK. Amounts cross this
boundary in major units and are converted to minor units here.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import stripe
import structlog

from crowdfund.core.errors import UpstreamError, ValidationError
from crowdfund.services.fees import to_minor_units, from_minor_units

logger = structlog.get_logger(__name__)

REFUND_REASONS = ("duplicate", "fraudulent", "requested_by_customer")
CANCELLATION_REASONS = ("duplicate", "fraudulent", "requested_by_customer", "abandoned")

SUPPORTED_PAYMENT_METHODS = [
    {"type": "card", "name": "Credit / Debit Card", "currencies": ["MYR", "USD", "SGD"]},
    {"type": "fpx", "name": "FPX Online Banking", "currencies": ["MYR"]},
    {"type": "grabpay", "name": "GrabPay", "currencies": ["MYR", "SGD"]},
    {"type": "paynow", "name": "PayNow", "currencies": ["SGD"]},
]


@dataclass
class PaymentIntentResult:
    id: str
    status: str
    amount: float
    currency: str
    client_secret: Optional[str] = None
    payment_method_id: Optional[str] = None


@dataclass
class RefundResult:
    id: str
    status: str
    amount: float


@dataclass
class WebhookEvent:
    """Processor notification reduced to what the donation lifecycle needs"""
    id: str
    type: str
    payment_intent_id: Optional[str]
    charge_id: Optional[str] = None
    payment_method_id: Optional[str] = None
    failure_message: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)


def normalize_refund_reason(reason: Optional[str]) -> str:
    """Map free text onto one of the reasons the processor accepts"""
    if reason:
        candidate = reason.strip().lower().replace(" ", "_")
        if candidate in REFUND_REASONS:
            return candidate
    return "requested_by_customer"


class PaymentGateway(Protocol):
    """Protocol for the payment processor"""

    def create_payment_intent(
        self,
        amount: float,
        currency: str,
        metadata: Dict[str, str],
        receipt_email: Optional[str] = None,
    ) -> PaymentIntentResult:
        ...

    def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentIntentResult:
        ...

    def confirm_payment_intent(self, payment_intent_id: str, payment_method_id: str) -> PaymentIntentResult:
        ...

    def cancel_payment_intent(self, payment_intent_id: str, reason: Optional[str] = None) -> PaymentIntentResult:
        ...

    def create_refund(
        self,
        payment_intent_id: str,
        amount: Optional[float] = None,
        currency: str = "MYR",
        reason: Optional[str] = None,
    ) -> RefundResult:
        ...

    def construct_event(self, payload: bytes, signature: str) -> WebhookEvent:
        ...

    def supported_payment_methods(self) -> List[Dict[str, Any]]:
        ...


class StripeGateway:
    """Stripe implementation of PaymentGateway"""

    def __init__(self, secret_key: str, webhook_secret: str):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        if not secret_key:
            logger.warning("Stripe secret key not configured, payment calls will fail")

    def _intent_result(self, intent) -> PaymentIntentResult:
        currency = (intent.get("currency") or "myr").upper()
        payment_method = intent.get("payment_method")
        if isinstance(payment_method, dict):
            payment_method = payment_method.get("id")
        return PaymentIntentResult(
            id=intent["id"],
            status=intent.get("status"),
            amount=from_minor_units(intent.get("amount"), currency),
            currency=currency,
            client_secret=intent.get("client_secret"),
            payment_method_id=payment_method,
        )

    def create_payment_intent(
        self,
        amount: float,
        currency: str,
        metadata: Dict[str, str],
        receipt_email: Optional[str] = None,
    ) -> PaymentIntentResult:
        params = {
            "amount": to_minor_units(amount, currency),
            "currency": currency.lower(),
            "metadata": {**metadata, "platform": "crowdfund"},
            "automatic_payment_methods": {"enabled": True, "allow_redirects": "never"},
        }
        if receipt_email:
            params["receipt_email"] = receipt_email

        try:
            intent = stripe.PaymentIntent.create(api_key=self.secret_key, **params)
        except stripe.StripeError as e:
            logger.error("Failed to create payment intent", amount=amount, currency=currency, error=str(e))
            raise UpstreamError(f"Failed to create payment intent: {e.user_message or str(e)}")

        logger.info("Payment intent created", payment_intent_id=intent["id"], amount=amount, currency=currency)
        return self._intent_result(intent)

    def retrieve_payment_intent(self, payment_intent_id: str) -> PaymentIntentResult:
        try:
            intent = stripe.PaymentIntent.retrieve(payment_intent_id, api_key=self.secret_key)
        except stripe.StripeError as e:
            logger.error("Failed to retrieve payment intent", payment_intent_id=payment_intent_id, error=str(e))
            raise UpstreamError(f"Failed to retrieve payment intent: {e.user_message or str(e)}")
        return self._intent_result(intent)

    def confirm_payment_intent(self, payment_intent_id: str, payment_method_id: str) -> PaymentIntentResult:
        try:
            intent = stripe.PaymentIntent.confirm(
                payment_intent_id,
                payment_method=payment_method_id,
                api_key=self.secret_key,
            )
        except stripe.StripeError as e:
            logger.error("Failed to confirm payment intent", payment_intent_id=payment_intent_id, error=str(e))
            raise UpstreamError(f"Failed to confirm payment intent: {e.user_message or str(e)}")

        logger.info("Payment intent confirmed", payment_intent_id=payment_intent_id, status=intent.get("status"))
        return self._intent_result(intent)

    def cancel_payment_intent(self, payment_intent_id: str, reason: Optional[str] = None) -> PaymentIntentResult:
        params = {}
        if reason:
            params["cancellation_reason"] = reason if reason in CANCELLATION_REASONS else "requested_by_customer"

        try:
            intent = stripe.PaymentIntent.cancel(payment_intent_id, api_key=self.secret_key, **params)
        except stripe.StripeError as e:
            logger.error("Failed to cancel payment intent", payment_intent_id=payment_intent_id, error=str(e))
            raise UpstreamError(f"Failed to cancel payment intent: {e.user_message or str(e)}")

        logger.info("Payment intent canceled", payment_intent_id=payment_intent_id, reason=reason)
        return self._intent_result(intent)

    def create_refund(
        self,
        payment_intent_id: str,
        amount: Optional[float] = None,
        currency: str = "MYR",
        reason: Optional[str] = None,
    ) -> RefundResult:
        params = {
            "payment_intent": payment_intent_id,
            "reason": normalize_refund_reason(reason),
        }
        if amount is not None:
            params["amount"] = to_minor_units(amount, currency)

        try:
            refund = stripe.Refund.create(api_key=self.secret_key, **params)
        except stripe.StripeError as e:
            logger.error("Failed to create refund", payment_intent_id=payment_intent_id, error=str(e))
            raise UpstreamError(f"Failed to create refund: {e.user_message or str(e)}")

        logger.info("Refund created", refund_id=refund["id"], payment_intent_id=payment_intent_id)
        return RefundResult(
            id=refund["id"],
            status=refund.get("status"),
            amount=from_minor_units(refund.get("amount"), currency),
        )

    def construct_event(self, payload: bytes, signature: str) -> WebhookEvent:
        """Verify the webhook signature and reduce the event to a WebhookEvent"""
        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except ValueError as e:
            logger.warning("Invalid webhook payload", error=str(e))
            raise ValidationError("Invalid webhook payload")
        except stripe.SignatureVerificationError as e:
            logger.warning("Invalid webhook signature", error=str(e))
            raise ValidationError("Invalid webhook signature")

        obj = event["data"]["object"]
        if event["type"].startswith("charge."):
            payment_intent_id = obj.get("payment_intent")
            charge_id = obj.get("id")
        else:
            payment_intent_id = obj.get("id")
            charge_id = obj.get("latest_charge")

        last_error = obj.get("last_payment_error") or {}
        payment_method = obj.get("payment_method")
        if isinstance(payment_method, dict):
            payment_method = payment_method.get("id")

        return WebhookEvent(
            id=event["id"],
            type=event["type"],
            payment_intent_id=payment_intent_id,
            charge_id=charge_id if isinstance(charge_id, str) else None,
            payment_method_id=payment_method,
            failure_message=last_error.get("message"),
            data=dict(obj),
        )

    def supported_payment_methods(self) -> List[Dict[str, Any]]:
        return [dict(method) for method in SUPPORTED_PAYMENT_METHODS]
