from pydantic import Field
from typing import Dict, List, Optional

from crowdfund.schemas.common import CamelModel


class CreatePaymentIntentRequest(CamelModel):
    """Standalone intent creation, amount in minor units"""
    amount: int = Field(..., gt=0, description="Amount in minor currency units")
    currency: str = Field(default="myr", min_length=3, max_length=3)


class PaymentIntentResponse(CamelModel):
    id: str
    client_secret: Optional[str] = None
    status: str
    amount: int
    currency: str


class ConfirmPaymentIntentRequest(CamelModel):
    payment_method_id: str = Field(..., min_length=1)


class PaymentMethodInfo(CamelModel):
    type: str
    name: str
    currencies: List[str]


class WebhookAck(CamelModel):
    received: bool = True
    event_type: str
    outcome: str


class FeeBreakdownResponse(CamelModel):
    amount: float
    processor_fee: float
    platform_fee: float
    net_amount: float


class PaymentMethodsResponse(CamelModel):
    methods: List[PaymentMethodInfo]
    currencies: Dict[str, List[str]]
