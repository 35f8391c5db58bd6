"""
Stock ledger tests.

Verifies:
- validate_and_reserve counts what the cart already holds
- decrement is conditional: never below zero, nothing written on failure
- every mutation leaves a StockMovement with the resulting quantity
- manual restore is its own committed unit of work
- alert classification (out/low/reorder/expiry)
"""

from datetime import date, timedelta

import pytest

from conftest import make_product, settings_for
from tillpoint.errors import BranchAccessDenied, InsufficientStock, NotFound, ValidationError
from tillpoint.models import LedgerEvent, Product, StockMovement
from tillpoint.services import stock_service
from tillpoint.services.stock_service import STOCK_IN, STOCK_LOW, STOCK_OUT, classify_stock


def _on_hand(session, product_id):
    return session.query(Product.stock_on_hand).filter_by(id=product_id).scalar()


class TestValidateAndReserve:
    def test_within_stock(self, db_session, branch, product):
        assert stock_service.validate_and_reserve(product.id, branch.id, 4).id == product.id

    def test_counts_quantity_already_in_cart(self, db_session, branch, product):
        with pytest.raises(InsufficientStock) as exc:
            stock_service.validate_and_reserve(product.id, branch.id, 4, already_in_cart=7)
        err = exc.value
        assert err.details["requested"] == 11
        assert err.details["on_hand"] == 10
        assert err.shortfall == 1

    def test_product_from_other_branch_not_found(self, db_session, other_branch, product):
        with pytest.raises(NotFound):
            stock_service.validate_and_reserve(product.id, other_branch.id, 1)

    def test_inactive_product_rejected(self, db_session, branch):
        product = make_product(db_session, branch, sku="OLD", is_active=False)
        with pytest.raises(ValidationError):
            stock_service.validate_and_reserve(product.id, branch.id, 1)

    def test_zero_quantity_rejected(self, db_session, branch, product):
        with pytest.raises(ValidationError):
            stock_service.validate_and_reserve(product.id, branch.id, 0)


class TestDecrement:
    def test_decrement_records_movement(self, db_session, product):
        movement = stock_service.decrement(product.id, 3, actor_id=7, note="test")
        db_session.commit()

        assert _on_hand(db_session, product.id) == 7
        assert movement.quantity_delta == -3
        assert movement.stock_after == 7
        assert movement.movement_type == stock_service.MOVEMENT_SALE

    def test_decrement_to_exactly_zero(self, db_session, product):
        stock_service.decrement(product.id, 10)
        db_session.commit()
        assert _on_hand(db_session, product.id) == 0

    def test_decrement_beyond_stock_writes_nothing(self, db_session, product):
        with pytest.raises(InsufficientStock) as exc:
            stock_service.decrement(product.id, 11)
        db_session.rollback()

        assert exc.value.details == {
            "product_id": product.id,
            "requested": 11,
            "on_hand": 10,
            "shortfall": 1,
        }
        assert _on_hand(db_session, product.id) == 10
        assert db_session.query(StockMovement).count() == 0

    def test_restore_adds_back(self, db_session, product):
        stock_service.decrement(product.id, 4)
        movement = stock_service.restore(product.id, 4, movement_type=stock_service.MOVEMENT_REFUND_RESTOCK)
        db_session.commit()
        assert movement.stock_after == 10
        assert _on_hand(db_session, product.id) == 10


class TestManualRestore:
    def test_commits_and_logs_ledger_event(self, db_session, branch, product):
        result = stock_service.manual_restore(branch_id=branch.id, product_id=product.id, quantity=5, actor_id=3)

        assert result.stock_on_hand == 15
        event = db_session.query(LedgerEvent).filter_by(event_type="stock.restored").one()
        assert event.entity_id == product.id
        assert event.actor_id == 3

    def test_wrong_branch_rolls_back(self, db_session, other_branch, product):
        with pytest.raises(NotFound):
            stock_service.manual_restore(branch_id=other_branch.id, product_id=product.id, quantity=5)
        assert _on_hand(db_session, product.id) == 10

    def test_restore_stock_requires_manager(self, db_session, branch, product, cashier_ctx, manager_ctx):
        with pytest.raises(BranchAccessDenied):
            stock_service.restore_stock(cashier_ctx, branch.id, product.id, 2)

        restored = stock_service.restore_stock(manager_ctx, branch.id, product.id, 2, "recount")
        assert restored.stock_on_hand == 12


# =============================================================================
# ALERTS
# =============================================================================


class TestAlerts:
    @pytest.mark.parametrize("stock,expected", [(0, STOCK_OUT), (3, STOCK_LOW), (10, STOCK_LOW), (11, STOCK_IN)])
    def test_classify_stock(self, stock, expected):
        assert classify_stock(stock, min_stock=5, threshold=10) == expected

    def test_branch_alerts_sorted_by_severity(self, db_session, branch):
        make_product(db_session, branch, sku="A", name="Apples", stock=4)
        make_product(db_session, branch, sku="B", name="Bananas", stock=0)
        make_product(db_session, branch, sku="C", name="Cherries", stock=50)
        make_product(
            db_session, branch, sku="D", name="Dates", stock=50,
            is_perishable=True, expiry_date=date(2026, 3, 5),
        )

        settings = settings_for(branch_id=branch.id, store_id=branch.store_id, low_stock_threshold=10)
        alerts = stock_service.low_stock_alerts(branch.id, settings, today=date(2026, 3, 1))

        assert [(a.product_name, a.alert_type) for a in alerts] == [
            ("Bananas", STOCK_OUT),
            ("Apples", STOCK_LOW),
            ("Dates", "expiry"),
        ]
        assert alerts[2].severity == "warning"

    def test_expired_and_reorder(self, db_session, branch):
        product = make_product(
            db_session, branch, sku="M", name="Milk", stock=30, reorder_point=30,
            is_perishable=True, expiry_date=date(2026, 3, 1) - timedelta(days=1),
        )
        settings = settings_for(branch_id=branch.id, store_id=branch.store_id, low_stock_threshold=10)
        alerts = stock_service.product_alerts(product, settings, today=date(2026, 3, 1))

        kinds = {(a.alert_type, a.severity) for a in alerts}
        assert ("reorder", "info") in kinds
        assert ("expiry", "error") in kinds
        assert alerts[0].to_dict()["product_id"] == product.id
