"""
Offline sale queue tests.

Verifies:
- uploads are stored once per local_id
- sync replays through checkout with local_id as the idempotency key
- rejected carts are marked failed with the checkout error, transient
  storage errors stay pending
- status counts per branch
"""

import pytest

from conftest import OperationContextFactory, cart, make_product
from tillpoint.errors import BranchAccessDenied, PersistenceFailure, ValidationError
from tillpoint.models import OfflineSale, Product, Sale
from tillpoint.services import checkout_service, offline_service


def _body(product_id, quantity=1, **extra):
    body = {"items": [{"product_id": product_id, "quantity": quantity}], "payment_method": "card"}
    body.update(extra)
    return body


def _entry(session, entry_id):
    session.expire_all()
    return session.get(OfflineSale, entry_id)


def _stock(session, product_id):
    session.expire_all()
    return session.get(Product, product_id).stock_on_hand


# =============================================================================
# QUEUE
# =============================================================================


class TestQueue:
    def test_stored_pending(self, db_session, branch, product, cashier_ctx):
        entry, created = offline_service.queue_offline_sale(
            cashier_ctx, branch.id, "dev1-0001", _body(product.id, 2), device_id="till-1",
        )
        assert created is True
        assert entry.status == "pending"
        assert entry.sync_attempts == 0
        assert entry.cashier_id == 7
        assert entry.body()["items"][0]["quantity"] == 2
        # Queueing never touches stock
        assert _stock(db_session, product.id) == 10

    def test_repeat_upload_returns_first_entry(self, db_session, branch, product, cashier_ctx):
        first, _ = offline_service.queue_offline_sale(cashier_ctx, branch.id, "dev1-0001", _body(product.id))
        again, created = offline_service.queue_offline_sale(cashier_ctx, branch.id, "dev1-0001", _body(product.id, 5))

        assert created is False
        assert again.id == first.id
        assert again.body()["items"][0]["quantity"] == 1
        assert db_session.query(OfflineSale).count() == 1

    @pytest.mark.parametrize("body", [
        {"items": [], "payment_method": "card"},
        {"items": [{"product_id": 1, "quantity": 1}], "payment_method": "barter"},
        {"items": [{"product_id": 1, "quantity": 1}], "payment_method": "card", "tax_mode": "percentage", "tax_value": 1e30},
    ])
    def test_malformed_cart_refused(self, db_session, branch, cashier_ctx, body):
        with pytest.raises(ValidationError):
            offline_service.queue_offline_sale(cashier_ctx, branch.id, "bad-1", body)
        assert db_session.query(OfflineSale).count() == 0

    def test_other_branch_denied(self, db_session, other_branch, product, cashier_ctx):
        with pytest.raises(BranchAccessDenied):
            offline_service.queue_offline_sale(cashier_ctx, other_branch.id, "x-1", _body(product.id))


# =============================================================================
# SYNC
# =============================================================================


class TestSync:
    def test_replays_through_checkout(self, db_session, branch, product, cashier_ctx):
        ok, _ = offline_service.queue_offline_sale(cashier_ctx, branch.id, "dev1-0001", _body(product.id, 3))
        short, _ = offline_service.queue_offline_sale(cashier_ctx, branch.id, "dev1-0002", _body(product.id, 8))

        results = offline_service.sync_offline_sales(cashier_ctx, branch.id)

        assert [r["local_id"] for r in results] == ["dev1-0001", "dev1-0002"]
        assert results[0]["success"] is True
        assert results[0]["sale_number"] == "S000001"
        assert results[1]["success"] is False
        assert results[1]["error"]["error"] == "INSUFFICIENT_STOCK"

        synced = _entry(db_session, ok.id)
        assert synced.status == "synced"
        assert synced.synced_sale_id == results[0]["sale_id"]
        assert synced.sync_attempts == 1
        assert db_session.get(Sale, synced.synced_sale_id).idempotency_key == "dev1-0001"

        failed = _entry(db_session, short.id)
        assert failed.status == "failed"
        assert failed.error_code == "INSUFFICIENT_STOCK"
        assert failed.sync_attempts == 1
        assert _stock(db_session, product.id) == 7

        assert offline_service.offline_sync_status(cashier_ctx, branch.id) == {"pending": 0, "synced": 1, "failed": 1}

    def test_second_sync_has_nothing_to_do(self, db_session, branch, product, cashier_ctx):
        offline_service.queue_offline_sale(cashier_ctx, branch.id, "dev1-0001", _body(product.id))
        offline_service.sync_offline_sales(cashier_ctx, branch.id)

        assert offline_service.sync_offline_sales(cashier_ctx, branch.id) == []
        assert db_session.query(Sale).count() == 1

    def test_sale_already_recorded_online_is_not_sold_twice(self, db_session, branch, product, cashier_ctx):
        online = checkout_service.checkout(
            cashier_ctx, branch.id, cart((product.id, 2), payment_method="card", idempotency_key="dev1-0001"),
        )
        entry, _ = offline_service.queue_offline_sale(cashier_ctx, branch.id, "dev1-0001", _body(product.id, 2))

        results = offline_service.sync_offline_sales(cashier_ctx, branch.id)

        assert results[0]["success"] is True
        assert results[0]["replayed"] is True
        assert _entry(db_session, entry.id).synced_sale_id == online.sale_id
        assert _stock(db_session, product.id) == 8
        assert db_session.query(Sale).count() == 1

    def test_failed_entries_retried_on_request(self, db_session, branch, product, cashier_ctx):
        entry, _ = offline_service.queue_offline_sale(cashier_ctx, branch.id, "dev1-0001", _body(product.id, 12))
        offline_service.sync_offline_sales(cashier_ctx, branch.id)
        assert _entry(db_session, entry.id).status == "failed"

        # Not retried unless asked
        assert offline_service.sync_offline_sales(cashier_ctx, branch.id) == []

        db_session.get(Product, product.id).stock_on_hand = 20
        db_session.commit()
        results = offline_service.sync_offline_sales(cashier_ctx, branch.id, retry_failed=True)

        assert results[0]["success"] is True
        retried = _entry(db_session, entry.id)
        assert retried.status == "synced"
        assert retried.sync_attempts == 2
        assert retried.error_code is None
        assert _stock(db_session, product.id) == 8

    def test_storage_error_leaves_entry_pending(self, db_session, monkeypatch, branch, product, cashier_ctx):
        entry, _ = offline_service.queue_offline_sale(cashier_ctx, branch.id, "dev1-0001", _body(product.id))

        def busy(context, branch_id, request):
            raise PersistenceFailure("Database is busy, please retry")

        monkeypatch.setattr(checkout_service, "checkout", busy)
        results = offline_service.sync_offline_sales(cashier_ctx, branch.id)

        assert results[0]["status"] == "pending"
        pending = _entry(db_session, entry.id)
        assert pending.status == "pending"
        assert pending.sync_attempts == 1
        assert pending.error_code == "PERSISTENCE_FAILURE"
        assert pending.last_sync_attempt_at is not None

    def test_only_this_branch(self, db_session, branch, other_branch, product, gate):
        other_product = make_product(db_session, other_branch, sku="X", stock=5)
        ctx = OperationContextFactory(1, "manager", frozenset({branch.id, other_branch.id})).context(gate)
        offline_service.queue_offline_sale(ctx, other_branch.id, "up-1", _body(other_product.id))

        assert offline_service.sync_offline_sales(ctx, branch.id) == []
        assert offline_service.offline_sync_status(ctx, branch.id) == {"pending": 0, "synced": 0, "failed": 0}
        assert offline_service.offline_sync_status(ctx, other_branch.id)["pending"] == 1
