"""
Pricing and money primitive tests.

Verifies:
- subtotal / discount / tax / total arithmetic and clamping
- half-up rounding of percentage amounts
- strict cents coercion (no floats-as-fractions, no scientific notation)
"""

from decimal import Decimal

import pytest

from tillpoint.errors import ValidationError
from tillpoint.money import MAX_AMOUNT_CENTS, MAX_QUANTITY, format_cents, loyalty_points_for, percent_of, require_quantity, to_cents
from tillpoint.services.pricing_service import (
    MODE_FIXED,
    MODE_PERCENTAGE,
    PricedLine,
    compute_subtotal,
    compute_totals,
)


# =============================================================================
# MONEY PRIMITIVES
# =============================================================================


class TestMoney:
    def test_percent_of_rounds_half_up(self):
        assert percent_of(1050, Decimal("5")) == 53  # 52.5 -> 53
        assert percent_of(1030, Decimal("5")) == 52  # 51.5 -> 52
        assert percent_of(1000, Decimal("7.5")) == 75

    @pytest.mark.parametrize("value,expected", [(150, 150), ("150", 150), (Decimal("150"), 150), ("150.0", 150)])
    def test_to_cents_accepts_integral_values(self, value, expected):
        assert to_cents(value) == expected

    @pytest.mark.parametrize("value", [True, None, "12.5", 12.5, "1e3", "abc", -1])
    def test_to_cents_rejects(self, value):
        with pytest.raises(ValidationError):
            to_cents(value)

    def test_require_quantity(self):
        assert require_quantity(3) == 3
        assert require_quantity("4") == 4
        assert require_quantity(MAX_QUANTITY) == MAX_QUANTITY
        for bad in (0, -1, 1.5, True, "x", MAX_QUANTITY + 1):
            with pytest.raises(ValidationError):
                require_quantity(bad)

    def test_loyalty_points_floor(self):
        assert loyalty_points_for(10000) == 10
        assert loyalty_points_for(999) == 0
        assert loyalty_points_for(2950) == 2
        assert loyalty_points_for(-500) == 0

    def test_format_cents(self):
        assert format_cents(2950) == "29.50"
        assert format_cents(-5) == "-0.05"


# =============================================================================
# TOTALS
# =============================================================================


class TestComputeTotals:
    def test_worked_example(self):
        """3 x 10.00, 5% tax, fixed 2.00 off -> 30.00 / 2.00 / 1.50 / 29.50."""
        totals = compute_totals(
            [PricedLine(unit_price_cents=1000, quantity=3)],
            MODE_PERCENTAGE, Decimal(5),
            MODE_FIXED, Decimal(200),
        )
        assert totals.subtotal_cents == 3000
        assert totals.discount_cents == 200
        assert totals.tax_cents == 150
        assert totals.total_cents == 2950

    def test_tax_is_on_subtotal_not_discounted_amount(self):
        totals = compute_totals(
            [PricedLine(1000, 1)],
            MODE_PERCENTAGE, Decimal(10),
            MODE_PERCENTAGE, Decimal(50),
        )
        assert totals.discount_cents == 500
        assert totals.tax_cents == 100
        assert totals.total_cents == 600

    def test_fixed_discount_clamped_to_subtotal(self):
        totals = compute_totals([PricedLine(500, 2)], MODE_FIXED, Decimal(0), MODE_FIXED, Decimal(5000))
        assert totals.discount_cents == 1000
        assert totals.total_cents == 0

    def test_percentage_discount_over_hundred_clamped(self):
        totals = compute_totals([PricedLine(500, 2)], MODE_FIXED, Decimal(0), MODE_PERCENTAGE, Decimal(150))
        assert totals.discount_cents == 1000
        assert totals.total_cents == 0

    def test_fixed_tax_added_after_discount(self):
        totals = compute_totals([PricedLine(500, 2)], MODE_FIXED, Decimal(30), MODE_FIXED, Decimal(1000))
        assert totals.total_cents == 30

    def test_empty_cart_totals_zero(self):
        totals = compute_totals([], MODE_PERCENTAGE, Decimal(8), MODE_PERCENTAGE, Decimal(0))
        assert totals.to_dict() == {"subtotal_cents": 0, "tax_cents": 0, "discount_cents": 0, "total_cents": 0}

    def test_deterministic(self):
        items = [PricedLine(333, 3), PricedLine(1999, 2)]
        first = compute_totals(items, MODE_PERCENTAGE, Decimal("8.25"), MODE_PERCENTAGE, Decimal("12.5"))
        second = compute_totals(items, MODE_PERCENTAGE, Decimal("8.25"), MODE_PERCENTAGE, Decimal("12.5"))
        assert first == second
        assert first.total_cents == first.subtotal_cents - first.discount_cents + first.tax_cents

    @pytest.mark.parametrize("tax_mode,discount_mode", [("flat", MODE_FIXED), (MODE_FIXED, "bogus")])
    def test_unknown_mode_rejected(self, tax_mode, discount_mode):
        with pytest.raises(ValidationError):
            compute_totals([PricedLine(100, 1)], tax_mode, Decimal(0), discount_mode, Decimal(0))

    def test_negative_values_rejected(self):
        with pytest.raises(ValidationError):
            compute_totals([PricedLine(100, 1)], MODE_FIXED, Decimal(-1), MODE_FIXED, Decimal(0))
        with pytest.raises(ValidationError):
            compute_totals([PricedLine(100, 1)], MODE_FIXED, Decimal(0), MODE_PERCENTAGE, Decimal(-5))

    def test_fractional_fixed_amount_rejected(self):
        with pytest.raises(ValidationError):
            compute_totals([PricedLine(100, 1)], MODE_FIXED, Decimal("0.5"), MODE_FIXED, Decimal(0))

    def test_negative_price_rejected(self):
        with pytest.raises(ValidationError):
            compute_subtotal([PricedLine(-100, 1)])

    def test_percentage_above_ceiling_rejected(self):
        with pytest.raises(ValidationError):
            compute_totals([PricedLine(100, 1)], MODE_PERCENTAGE, Decimal("1e30"), MODE_FIXED, Decimal(0))

    def test_fixed_amount_above_maximum_rejected(self):
        with pytest.raises(ValidationError):
            compute_totals([PricedLine(100, 1)], MODE_FIXED, Decimal("1e20"), MODE_FIXED, Decimal(0))

    def test_total_above_maximum_rejected(self):
        # subtotal fits, subtotal plus 1000% tax does not
        lines = [PricedLine(MAX_AMOUNT_CENTS // 2, 1)]
        with pytest.raises(ValidationError) as exc:
            compute_totals(lines, MODE_PERCENTAGE, Decimal(1000), MODE_FIXED, Decimal(0))
        assert "total_cents" in exc.value.details

    def test_subtotal_above_maximum_rejected(self):
        with pytest.raises(ValidationError):
            compute_totals([PricedLine(MAX_AMOUNT_CENTS, 2)], MODE_FIXED, Decimal(0), MODE_FIXED, Decimal(0))
