"""
Processor and platform fee calculation, plus minor-unit conversion
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

PROCESSOR_PERCENTAGE_FEE = Decimal("0.034")
PROCESSOR_FIXED_FEE = Decimal("1.50")
PLATFORM_PERCENTAGE_FEE = Decimal("0.05")

ZERO_DECIMAL_CURRENCIES = {"JPY", "KRW"}


@dataclass(frozen=True)
class FeeBreakdown:
    amount: float
    processor_fee: float
    platform_fee: float

    @property
    def total_fees(self) -> float:
        return self.processor_fee + self.platform_fee

    @property
    def net_amount(self) -> float:
        return self.amount - self.total_fees


def _round_half_up(value: Decimal) -> float:
    return float(value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def calculate_fees(amount: float) -> FeeBreakdown:
    """3.4% + 1.50 to the processor and 5% to the platform, each rounded half-up to cents"""
    value = Decimal(str(amount))
    processor_fee = _round_half_up(value * PROCESSOR_PERCENTAGE_FEE + PROCESSOR_FIXED_FEE)
    platform_fee = _round_half_up(value * PLATFORM_PERCENTAGE_FEE)
    return FeeBreakdown(amount=amount, processor_fee=processor_fee, platform_fee=platform_fee)


def to_minor_units(amount: float, currency: str) -> int:
    if currency.upper() in ZERO_DECIMAL_CURRENCIES:
        return int(Decimal(str(amount)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int, currency: str) -> float:
    if amount is None:
        return 0.0
    if currency.upper() in ZERO_DECIMAL_CURRENCIES:
        return float(amount)
    return amount / 100.0
