"""Unit tests for PricingPolicy and base-unit scaling."""

from decimal import Decimal

import pytest

from services.pricing.policy import PricingPolicy, round_cents, to_base_units
from services.shared.errors import InvalidInputError


@pytest.fixture
def policy() -> PricingPolicy:
    return PricingPolicy(margin=Decimal("0.05"), min_unit_price=Decimal("0.50"))


class TestQuote:
    """Test quote computation."""

    def test_quote_ten_litres_under_one_dollar(self, policy: PricingPolicy) -> None:
        """10 units at a 1.00 ceiling quote 0.95 each, 9.50 total."""
        quote = policy.quote(Decimal("10"), Decimal("1.00"))

        assert quote.unit_price == Decimal("0.95")
        assert quote.total == Decimal("9.50")

    @pytest.mark.parametrize(
        "quantity,ceiling",
        [
            ("1", "0.56"),
            ("3.333", "1.237"),
            ("0.001", "100"),
            ("12.5", "2.005"),
            ("7", "0.551"),
        ],
    )
    def test_unit_price_below_ceiling_and_total_rounded(
        self, policy: PricingPolicy, quantity: str, ceiling: str
    ) -> None:
        q, c = Decimal(quantity), Decimal(ceiling)
        quote = policy.quote(q, c)

        assert quote.unit_price < c
        assert quote.total == round_cents(q * quote.unit_price)

    def test_quote_is_deterministic(self, policy: PricingPolicy) -> None:
        first = policy.quote(Decimal("3.333"), Decimal("1.237"))
        second = policy.quote(Decimal("3.333"), Decimal("1.237"))

        assert first == second

    def test_total_rounds_half_up_at_cent_boundary(self, policy: PricingPolicy) -> None:
        """1.5 x 0.95 = 1.425 rounds up to 1.43, not banker's 1.42."""
        quote = policy.quote(Decimal("1.5"), Decimal("1.00"))

        assert quote.total == Decimal("1.43")

    def test_unit_price_floored_at_minimum(self, policy: PricingPolicy) -> None:
        quote = policy.quote(Decimal("2"), Decimal("0.52"))

        assert quote.unit_price == Decimal("0.50")
        assert quote.total == Decimal("1.00")

    def test_ceiling_at_or_below_minimum_rejected(self, policy: PricingPolicy) -> None:
        with pytest.raises(InvalidInputError):
            policy.quote(Decimal("1"), Decimal("0.50"))

        with pytest.raises(InvalidInputError):
            policy.quote(Decimal("1"), Decimal("0.10"))

    @pytest.mark.parametrize("quantity,ceiling", [("0", "1"), ("-1", "1"), ("1", "0"), ("1", "-2")])
    def test_non_positive_inputs_rejected(
        self, policy: PricingPolicy, quantity: str, ceiling: str
    ) -> None:
        with pytest.raises(InvalidInputError):
            policy.quote(Decimal(quantity), Decimal(ceiling))

    def test_non_numeric_input_rejected(self, policy: PricingPolicy) -> None:
        with pytest.raises(InvalidInputError):
            policy.quote("ten", Decimal("1.00"))  # type: ignore[arg-type]

        with pytest.raises(InvalidInputError):
            policy.quote(Decimal("NaN"), Decimal("1.00"))

    @pytest.mark.parametrize("quantity", ["0.001", "0.005", "0.0000001"])
    def test_total_rounding_to_zero_rejected(self, policy: PricingPolicy, quantity: str) -> None:
        """A total of 0.00 would let a zero-value transfer settle the invoice."""
        with pytest.raises(InvalidInputError, match="total rounds to 0.00"):
            policy.quote(Decimal(quantity), Decimal("1.00"))

    def test_smallest_billable_quantity_accepted(self, policy: PricingPolicy) -> None:
        quote = policy.quote(Decimal("0.006"), Decimal("1.00"))

        assert quote.total == Decimal("0.01")

    @pytest.mark.parametrize("quantity,ceiling", [("1e30", "1"), ("1", "1e30")])
    def test_unrepresentable_total_rejected(
        self, policy: PricingPolicy, quantity: str, ceiling: str
    ) -> None:
        with pytest.raises(InvalidInputError):
            policy.quote(Decimal(quantity), Decimal(ceiling))


class TestBaseUnits:
    """Test exact decimal-to-integer scaling."""

    def test_scales_quoted_total(self) -> None:
        assert to_base_units(Decimal("9.50"), 6) == 9_500_000

    def test_fractional_cents_scale_exactly(self) -> None:
        """Values that drift under float multiplication stay exact."""
        assert to_base_units(Decimal("9.505"), 6) == 9_505_000
        assert to_base_units(Decimal("0.29"), 6) == 290_000
        assert to_base_units(Decimal("1.015"), 6) == 1_015_000
        assert to_base_units(Decimal("123456789.123456"), 6) == 123_456_789_123_456

    def test_eighteen_decimal_token(self) -> None:
        assert to_base_units(Decimal("0.1"), 18) == 10**17

    def test_too_many_fractional_digits_rejected(self) -> None:
        with pytest.raises(ValueError):
            to_base_units(Decimal("1.0000001"), 6)

    def test_negative_rejected(self) -> None:
        with pytest.raises(ValueError):
            to_base_units(Decimal("-1"), 6)
