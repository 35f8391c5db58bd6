"""
Sale ledger tests: snapshots and compare-and-swap transitions.
"""

import pytest
from sqlalchemy import update

from conftest import settings_for
from tillpoint.errors import IllegalTransition, ValidationError
from tillpoint.models import Sale
from tillpoint.services import sales_service
from tillpoint.services.pricing_service import MODE_PERCENTAGE, Totals


def _record(session, branch, product, *, hold=False):
    settings = settings_for(branch_id=branch.id, store_id=branch.store_id)
    line = sales_service.LineSnapshot(
        unit_price_cents=product.price_cents,
        quantity=2,
        product_id=product.id,
        name=product.name,
    )
    sale = sales_service.record_sale(
        settings=settings,
        sale_number="S000001",
        lines=[line],
        totals=Totals(subtotal_cents=2000, tax_cents=0, discount_cents=0, total_cents=2000),
        tax_mode=MODE_PERCENTAGE,
        discount_mode=MODE_PERCENTAGE,
        payment_method="card",
        amount_received_cents=None,
        change_cents=0,
        customer_id=None,
        cashier_id=7,
        hold=hold,
    )
    session.commit()
    return sale, settings


@pytest.mark.parametrize("current,new,legal", [
    ("pending", "completed", True),
    ("pending", "cancelled", True),
    ("pending", "refunded", False),
    ("completed", "refunded", True),
    ("completed", "cancelled", True),
    ("completed", "pending", False),
    ("refunded", "completed", False),
    ("refunded", "cancelled", False),
    ("cancelled", "completed", False),
])
def test_legal_transitions(current, new, legal):
    assert sales_service.is_legal_transition(current, new) is legal


def test_record_sale_snapshots_items(db_session, branch, product):
    sale, _ = _record(db_session, branch, product)

    product.name = "Renamed Widget"
    product.price_cents = 5
    db_session.commit()

    db_session.expire_all()
    stored = db_session.get(Sale, sale.id)
    assert stored.items[0].name == "Widget"
    assert stored.items[0].unit_price_cents == 1000
    assert stored.items[0].line_total_cents == 2000
    assert stored.to_dict()["items"][0]["line_number"] == 1


def test_record_sale_without_items_rejected(db_session, branch):
    with pytest.raises(ValidationError):
        sales_service.record_sale(
            settings=settings_for(branch_id=branch.id, store_id=branch.store_id),
            sale_number="S000001",
            lines=[],
            totals=Totals(0, 0, 0, 0),
            tax_mode=MODE_PERCENTAGE,
            discount_mode=MODE_PERCENTAGE,
            payment_method="card",
            amount_received_cents=None,
            change_cents=0,
            customer_id=None,
            cashier_id=None,
        )


def test_compare_and_swap_loses_to_concurrent_change(db_session, branch, product):
    """Another terminal refunded the sale after we loaded it; our cancel must fail."""
    sale, settings = _record(db_session, branch, product)
    assert sale.status == "completed"

    db_session.execute(
        update(Sale).where(Sale.id == sale.id).values(status="refunded").execution_options(synchronize_session=False)
    )

    # `sale` still says completed in this session
    with pytest.raises(IllegalTransition):
        sales_service.transition(sale, "cancelled")
    db_session.rollback()


def test_refund_amount_bounds(db_session, branch, product):
    sale, settings = _record(db_session, branch, product)
    for amount in (0, -5, 2001):
        with pytest.raises(ValidationError):
            sales_service.refund_sale(sale, settings, amount)
    db_session.rollback()

    db_session.expire_all()
    assert db_session.get(Sale, sale.id).status == "completed"


def test_unknown_status_rejected(db_session, branch, product):
    sale, settings = _record(db_session, branch, product)
    with pytest.raises(ValidationError):
        sales_service.change_status(sale, settings, "voided")


def test_complete_held_sale(db_session, branch, product):
    sale, settings = _record(db_session, branch, product, hold=True)
    assert sale.payment_status == "pending"
    assert sale.completed_at is None

    sales_service.complete_sale(sale, settings, actor_id=7)
    db_session.commit()

    db_session.expire_all()
    stored = db_session.get(Sale, sale.id)
    assert stored.status == "completed"
    assert stored.payment_status == "paid"
    assert stored.completed_at is not None
