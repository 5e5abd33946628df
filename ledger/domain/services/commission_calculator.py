"""
Commission Calculator - splits an order total between platform, business and driver

Markup model:
- business receives 100% of the product base
- driver receives 100% of the delivery fee
- platform receives a markup (default 15%) charged on top of the product base

The customer-facing total already contains the markup. Every split sums to
the order total exactly; rounding leftovers land in the business share.
"""
from dataclasses import dataclass, asdict
from decimal import Decimal
from typing import Optional

from ledger.core.exceptions import ValidationException
from ledger.core.logging import get_logger
from ledger.core.money import require_centavos, round_half_up
from ledger.domain.services.rate_config_store import RateConfigStore

logger = get_logger(__name__)


@dataclass(frozen=True)
class CommissionSplit:
    platform: int
    business: int
    driver: int
    total: int
    product_base: int

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def split_order_total(
    total: int,
    delivery_fee: int,
    markup_rate: float,
    product_base: Optional[int] = None,
    platform_fee: Optional[int] = None,
) -> CommissionSplit:
    """
    Pure split of an order total.

    Without a product_base it is backed out of the total using the live markup
    rate: round((total - delivery_fee) / (1 + markup_rate)).

    Raises:
        ValidationException: non-integer amounts, total <= 0, a delivery fee
            larger than the total, or precomputed values that do not fit.
    """
    require_centavos(total, "total", allow_zero=False)
    require_centavos(delivery_fee, "delivery_fee")
    if delivery_fee > total:
        raise ValidationException(
            "delivery_fee cannot exceed the order total",
            field="delivery_fee",
            details={"total": total, "delivery_fee": delivery_fee},
        )

    goods_amount = total - delivery_fee
    markup = Decimal(str(markup_rate))

    if product_base is None:
        product_base = round_half_up(Decimal(goods_amount) / (Decimal(1) + markup))
    else:
        require_centavos(product_base, "product_base")
        if product_base > goods_amount:
            raise ValidationException(
                "product_base cannot exceed total minus delivery_fee",
                field="product_base",
                details={"product_base": product_base, "goods_amount": goods_amount},
            )

    if platform_fee is None:
        platform = round_half_up(Decimal(product_base) * markup)
    else:
        platform = require_centavos(platform_fee, "platform_fee")

    if platform > goods_amount:
        raise ValidationException(
            "platform_fee cannot exceed total minus delivery_fee",
            field="platform_fee",
            details={"platform_fee": platform, "goods_amount": goods_amount},
        )

    return CommissionSplit(
        platform=platform,
        business=goods_amount - platform,
        driver=delivery_fee,
        total=total,
        product_base=product_base,
    )


def expected_order_total(subtotal: int, delivery_fee: int, tax_rate: float) -> int:
    """subtotal + delivery_fee + tax, with tax recomputed from the subtotal"""
    tax = round_half_up(Decimal(subtotal) * Decimal(str(tax_rate)))
    return subtotal + delivery_fee + tax


class CommissionCalculator:
    """Applies the current platform markup from RateConfigStore"""

    def __init__(self, rate_store: RateConfigStore):
        self.rate_store = rate_store

    async def calculate(
        self,
        total: int,
        delivery_fee: int,
        product_base: Optional[int] = None,
        platform_fee: Optional[int] = None,
    ) -> CommissionSplit:
        rates = await self.rate_store.get_rates()
        split = split_order_total(
            total,
            delivery_fee,
            rates.platform,
            product_base=product_base,
            platform_fee=platform_fee,
        )

        # A checkout that stored product_base and total inconsistently shows up here
        if split.business != split.product_base:
            logger.warning(
                "Business share differs from product base",
                extra_data={
                    **split.as_dict(),
                    "markup_rate": rates.platform,
                    "difference": split.business - split.product_base,
                },
            )
        return split
