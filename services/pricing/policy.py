"""Pricing policy for fuel purchases.

Quotes a unit price just under the client's ceiling and a total rounded to
cents. The total is also the exact amount settlement must match, so it is
scaled to token base units with Decimal arithmetic only.
"""

import logging
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from pydantic import BaseModel

from services.shared.config import Settings
from services.shared.errors import InvalidInputError

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


class Quote(BaseModel):
    """Quoted price for a purchase.

    Attributes:
        unit_price: Price per unit, strictly below the client's ceiling
        total: quantity x unit_price, rounded half-up to cents
    """

    unit_price: Decimal
    total: Decimal


def round_cents(amount: Decimal) -> Decimal:
    """Round to two decimal places, half-up."""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def to_base_units(amount: Decimal, decimals: int) -> int:
    """Scale a decimal token amount to its integer base-unit representation.

    Args:
        amount: Human-readable token amount (e.g. Decimal("9.50"))
        decimals: Token decimal precision

    Returns:
        Exact integer amount in base units

    Raises:
        ValueError: If the amount is negative or has more fractional digits
            than the token supports
    """
    if amount < 0:
        raise ValueError(f"Negative amount: {amount}")
    scaled = amount.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise ValueError(f"{amount} is not representable with {decimals} decimals")
    return int(scaled)


class PricingPolicy:
    """Deterministic ceiling-minus-margin pricing.

    unit_price = max(min_unit_price, round_cents(ceiling - margin)), and the
    quote is refused when that is not strictly below the ceiling, or when the
    total rounds to zero cents (a zero-value transfer must never settle).
    """

    def __init__(self, margin: Decimal, min_unit_price: Decimal) -> None:
        self.margin = margin
        self.min_unit_price = min_unit_price

    @classmethod
    def from_settings(cls, settings: Settings) -> "PricingPolicy":
        return cls(margin=settings.price_margin, min_unit_price=settings.min_unit_price)

    def quote(self, quantity: Decimal, price_ceiling: Decimal) -> Quote:
        """Quote a unit price and total.

        Args:
            quantity: Units requested, must be > 0
            price_ceiling: Maximum unit price the client accepts, must be > 0

        Returns:
            Quote with unit price and total

        Raises:
            InvalidInputError: On non-positive or non-numeric inputs, when the
                ceiling is at or below the minimum unit price, or when the total
                rounds to zero or overflows
        """
        quantity = _as_decimal("quantity", quantity)
        price_ceiling = _as_decimal("price ceiling", price_ceiling)

        try:
            unit_price = max(self.min_unit_price, round_cents(price_ceiling - self.margin))
            total = round_cents(quantity * unit_price)
        except InvalidOperation:
            raise InvalidInputError(
                f"Quantity {quantity} at {price_ceiling} exceeds the representable total"
            ) from None

        if unit_price >= price_ceiling:
            raise InvalidInputError(
                f"price ceiling {price_ceiling} below minimum unit price {self.min_unit_price}"
            )
        if total <= 0:
            raise InvalidInputError(f"quantity too small: total rounds to {total}")

        logger.debug(f"Quoted {quantity} @ {unit_price} = {total} (ceiling {price_ceiling})")
        return Quote(unit_price=unit_price, total=total)


def _as_decimal(name: str, value: Decimal | int | str) -> Decimal:
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation:
        raise InvalidInputError(f"Invalid {name}: {value!r}") from None
    if not amount.is_finite() or amount <= 0:
        raise InvalidInputError(f"Invalid {name}: must be greater than zero")
    return amount
