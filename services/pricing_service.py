"""
Landed-cost pricing calculator.

Pure functions; rates come from settings unless passed explicitly.

    car_price_sar  = car_price  * rate
    shipping_sar   = shipping   * rate
    broker_fee_sar = broker_fee * rate
    customs_fees   = car_price_sar * customs_rate
    vat            = (car_price_sar + customs_fees) * vat_rate
    total          = car_price_sar + customs_fees + vat
                     + shipping_sar + broker_fee_sar + platform_fee
"""

from decimal import Decimal
from typing import Optional, Union

from config import settings
from models.post import Post
from models.pricing import PricingBreakdown, PricingInputs


Rate = Union[Decimal, float, str]


def _decimal(value: Rate) -> Decimal:
    # str() first so 3.75 stays 3.75 rather than its binary expansion
    return value if isinstance(value, Decimal) else Decimal(str(value))


def calculate_pricing(
    inputs: PricingInputs,
    rate: Optional[Rate] = None,
    customs_rate: Optional[Rate] = None,
    vat_rate: Optional[Rate] = None,
) -> PricingBreakdown:
    """
    Compute the SAR breakdown for the given inputs.

    Args:
        inputs: Car price, shipping and broker fee (USD), platform fee (SAR)
        rate: USD to SAR conversion rate (default from settings)
        customs_rate: Customs rate on the converted car price
        vat_rate: VAT rate on car price plus customs

    Returns:
        PricingBreakdown with inputs and derived amounts
    """
    rate = _decimal(settings.usd_to_sar_rate if rate is None else rate)
    customs_rate = _decimal(settings.customs_rate if customs_rate is None else customs_rate)
    vat_rate = _decimal(settings.vat_rate if vat_rate is None else vat_rate)

    car_price_sar = inputs.car_price * rate
    shipping_sar = inputs.shipping * rate
    broker_fee_sar = inputs.broker_fee * rate
    customs_fees = car_price_sar * customs_rate
    vat = (car_price_sar + customs_fees) * vat_rate
    total = car_price_sar + customs_fees + vat + shipping_sar + broker_fee_sar + inputs.platform_fee

    return PricingBreakdown(
        car_price=inputs.car_price,
        shipping=inputs.shipping,
        broker_fee=inputs.broker_fee,
        platform_fee=inputs.platform_fee,
        car_price_sar=car_price_sar,
        shipping_sar=shipping_sar,
        broker_fee_sar=broker_fee_sar,
        customs_fees=customs_fees,
        vat=vat,
        total=total,
    )


def default_pricing_inputs(post: Post) -> PricingInputs:
    """
    Seed the pricing form for a post.

    Saved pricing wins; otherwise the car price comes from the extracted
    listing price and the fees from the configured defaults.
    """
    if post.pricing is not None:
        return post.pricing.inputs

    listing_price = post.parsed_json.price if post.parsed_json else None
    return PricingInputs(
        car_price=listing_price or 0,
        shipping=settings.default_shipping_usd,
        broker_fee=settings.default_broker_fee_usd,
        platform_fee=settings.default_platform_fee_sar,
    )
