"""
Request parsing tests: shapes and types are rejected before any database work.
"""

from decimal import Decimal

import pytest

from tillpoint.errors import ValidationError
from tillpoint.validation import (
    parse_checkout_request,
    parse_refund_request,
    parse_restore_request,
    parse_status_request,
)


def _body(**overrides):
    body = {
        "items": [{"product_id": 1, "quantity": 2}],
        "payment_method": "cash",
        "amount_received_cents": 5000,
    }
    body.update(overrides)
    return body


class TestCheckoutRequest:
    def test_minimal(self):
        req = parse_checkout_request(_body())
        assert req.items[0].product_id == 1
        assert req.items[0].quantity == 2
        assert req.tax_mode is None
        assert req.discount_mode == "percentage"
        assert req.discount_value == Decimal(0)
        assert req.hold is False

    def test_full(self):
        req = parse_checkout_request(_body(
            tax_mode="Percentage",
            tax_value="7.5",
            discount_mode="fixed",
            discount_value=200,
            customer_id="12",
            idempotency_key="  key-1 ",
            notes="gift wrap",
            payment_method="MOBILE_MONEY",
            hold=True,
        ))
        assert req.tax_mode == "percentage"
        assert req.tax_value == Decimal("7.5")
        assert req.discount_value == Decimal(200)
        assert req.customer_id == 12
        assert req.idempotency_key == "key-1"
        assert req.payment_method == "mobile_money"
        assert req.hold is True

    @pytest.mark.parametrize("overrides", [
        {"items": []},
        {"items": "nope"},
        {"items": [{"product_id": 1}]},
        {"items": [{"product_id": 1, "quantity": 0}]},
        {"items": [{"product_id": 1, "quantity": 1.5}]},
        {"items": [{"product_id": -1, "quantity": 1}]},
        {"items": [{"product_id": 1, "quantity": 1, "colour": "red"}]},
        {"payment_method": "barter"},
        {"payment_method": None},
        {"tax_mode": "flat"},
        {"tax_value": 5},
        {"discount_value": -1},
        {"discount_mode": "fixed", "discount_value": "abc"},
        {"amount_received_cents": 12.5},
        {"customer_id": 0},
        {"hold": "yes"},
        {"surprise": 1},
    ])
    def test_rejected(self, overrides):
        with pytest.raises(ValidationError):
            parse_checkout_request(_body(**overrides))

    @pytest.mark.parametrize("overrides", [
        {"tax_mode": "percentage", "tax_value": 1e30},
        {"tax_mode": "percentage", "tax_value": "1001"},
        {"tax_mode": "fixed", "tax_value": "1e20"},
        {"tax_mode": "fixed", "tax_value": 10**20},
        {"tax_mode": "fixed", "tax_value": "2.5"},
        {"discount_mode": "fixed", "discount_value": 1_000_000_000},
        {"discount_value": "1e30"},
        {"items": [{"product_id": 1, "quantity": 1_000_001}]},
    ])
    def test_out_of_range_adjustments_rejected(self, overrides):
        with pytest.raises(ValidationError):
            parse_checkout_request(_body(**overrides))

    def test_fixed_adjustments_are_whole_cents(self):
        req = parse_checkout_request(_body(tax_mode="fixed", tax_value="150", discount_mode="fixed", discount_value=75))
        assert req.tax_value == Decimal(150)
        assert req.discount_value == Decimal(75)

    def test_non_dict_payload(self):
        with pytest.raises(ValidationError):
            parse_checkout_request(["items"])


class TestOtherRequests:
    def test_refund(self):
        assert parse_refund_request({}) is None
        assert parse_refund_request(None) is None
        assert parse_refund_request({"refund_amount_cents": 500}) == 500
        with pytest.raises(ValidationError):
            parse_refund_request({"refund_amount_cents": "5.5"})

    def test_status(self):
        assert parse_status_request({"status": "Cancelled"}) == "cancelled"
        with pytest.raises(ValidationError):
            parse_status_request({"status": "voided"})

    def test_restore(self):
        assert parse_restore_request({"quantity": 3}) == (3, None)
        assert parse_restore_request({"quantity": "2", "note": " recount "}) == (2, "recount")
        with pytest.raises(ValidationError):
            parse_restore_request({})
