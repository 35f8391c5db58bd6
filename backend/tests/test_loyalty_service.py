"""
Loyalty accrual tests.

Verifies:
- points = floor(amount / 10.00), purchases = amount
- reversal clamps at zero and records requested vs applied points
- unknown / foreign customers raise CustomerNotFound
"""

import pytest

from tillpoint.errors import CustomerNotFound
from tillpoint.models import Customer
from tillpoint.services import loyalty_service


def _balances(session, customer_id):
    session.expire_all()
    c = session.get(Customer, customer_id)
    return c.loyalty_points, c.total_purchases_cents


class TestAccrue:
    def test_accrue_points_and_purchases(self, db_session, store, customer):
        txn = loyalty_service.accrue(customer.id, store.id, 10000)
        db_session.commit()

        assert _balances(db_session, customer.id) == (10, 10000)
        assert txn.transaction_type == loyalty_service.TXN_EARN
        assert txn.points_applied == 10
        assert txn.points_balance_after == 10

    def test_accrue_sets_last_visit(self, db_session, store, customer):
        loyalty_service.accrue(customer.id, store.id, 500)
        db_session.commit()
        db_session.expire_all()
        assert db_session.get(Customer, customer.id).last_visit_at is not None

    def test_small_amount_earns_no_points(self, db_session, store, customer):
        loyalty_service.accrue(customer.id, store.id, 999)
        db_session.commit()
        assert _balances(db_session, customer.id) == (0, 999)


class TestReverse:
    def test_full_reversal_restores_zero(self, db_session, store, customer):
        loyalty_service.accrue(customer.id, store.id, 10000)
        loyalty_service.reverse(customer.id, store.id, 10000)
        db_session.commit()
        assert _balances(db_session, customer.id) == (0, 0)

    def test_reversal_clamps_at_zero(self, db_session, store, customer):
        loyalty_service.accrue(customer.id, store.id, 3000)
        txn = loyalty_service.reverse(customer.id, store.id, 10000)
        db_session.commit()

        assert _balances(db_session, customer.id) == (0, 0)
        assert txn.points_requested == -10
        assert txn.points_applied == -3

    def test_history_in_order(self, db_session, store, customer):
        loyalty_service.accrue(customer.id, store.id, 2000)
        loyalty_service.reverse(customer.id, store.id, 1000)
        db_session.commit()

        kinds = [t.transaction_type for t in loyalty_service.history(customer.id)]
        assert kinds == [loyalty_service.TXN_EARN, loyalty_service.TXN_REVERSE]


class TestCustomerLookup:
    def test_unknown_customer(self, db_session, store):
        with pytest.raises(CustomerNotFound):
            loyalty_service.accrue(999_999, store.id, 1000)

    def test_customer_from_other_store(self, db_session, other_store, customer):
        with pytest.raises(CustomerNotFound):
            loyalty_service.accrue(customer.id, other_store.id, 1000)

    @pytest.mark.parametrize("bad_id", [0, -1, "1", True, None])
    def test_invalid_reference(self, db_session, store, bad_id):
        with pytest.raises(CustomerNotFound):
            loyalty_service.get_customer(bad_id, store.id)
