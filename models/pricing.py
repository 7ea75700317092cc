"""
Pricing schemas: the four editable inputs and the derived landed-cost breakdown.

Car price, shipping and broker fee are entered in USD; the platform fee is
entered in SAR. Every derived amount is in SAR.
"""

from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import Field, field_validator

from models.base import BaseSchema


ZERO = Decimal("0")


def coerce_amount(value: Any) -> Decimal:
    """
    Coerce a user-entered amount to a non-negative Decimal.

    Negative, non-numeric, NaN and infinite input all become 0.
    """
    if value is None or isinstance(value, bool):
        return ZERO
    try:
        amount = Decimal(str(value).strip().replace(",", ""))
    except (InvalidOperation, ValueError):
        return ZERO
    if not amount.is_finite() or amount < 0:
        return ZERO
    return amount


class PricingInputs(BaseSchema):
    """Editable pricing inputs."""

    car_price: Decimal = Field(default=ZERO, description="Car price (USD)")
    shipping: Decimal = Field(default=ZERO, description="Shipping cost (USD)")
    broker_fee: Decimal = Field(default=ZERO, description="Broker fee (USD)")
    platform_fee: Decimal = Field(default=ZERO, description="Platform fee (SAR)")

    @field_validator("car_price", "shipping", "broker_fee", "platform_fee", mode="before")
    @classmethod
    def non_negative_amount(cls, v: Any) -> Decimal:
        return coerce_amount(v)


class PricingBreakdown(PricingInputs):
    """Inputs plus every derived amount, as stored on the post."""

    car_price_sar: Decimal = Field(default=ZERO, description="Car price converted to SAR")
    shipping_sar: Decimal = Field(default=ZERO, description="Shipping converted to SAR")
    broker_fee_sar: Decimal = Field(default=ZERO, description="Broker fee converted to SAR")
    customs_fees: Decimal = Field(default=ZERO, description="Customs fees (SAR)")
    vat: Decimal = Field(default=ZERO, description="VAT on car price plus customs (SAR)")
    total: Decimal = Field(default=ZERO, description="Landed total (SAR)")

    @property
    def inputs(self) -> PricingInputs:
        return PricingInputs(
            car_price=self.car_price,
            shipping=self.shipping,
            broker_fee=self.broker_fee,
            platform_fee=self.platform_fee,
        )
