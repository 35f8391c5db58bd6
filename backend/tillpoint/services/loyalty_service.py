"""
Loyalty accrual service

Converts a sale's money into customer balance deltas:
    points    = floor(amount / 10)   (money.loyalty_points_for)
    purchases = amount

Both columns move in ONE UPDATE statement per call. Reversals clamp each
balance at zero inside that statement, and the LoyaltyTransaction row
records requested vs applied points so a clamp is visible in the audit
trail.

An unknown customer, or one from another store, raises CustomerNotFound;
the enclosing checkout/refund fails instead of silently skipping loyalty.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import case, update

from ..extensions import db
from ..models import Customer, LoyaltyTransaction
from ..errors import CustomerNotFound, ValidationError
from ..money import loyalty_points_for
from tillpoint.time_utils import utcnow

TXN_EARN = "EARN"
TXN_REVERSE = "REVERSE"


def get_customer(customer_id: int, store_id: int) -> Customer:
    if isinstance(customer_id, bool) or not isinstance(customer_id, int) or customer_id <= 0:
        raise CustomerNotFound(f"Invalid customer reference: {customer_id!r}")
    customer = db.session.query(Customer).filter_by(id=customer_id).first()
    if customer is None or customer.store_id != store_id:
        raise CustomerNotFound(f"Customer {customer_id} not found")
    return customer


def _balances(customer_id: int) -> tuple[int, int]:
    row = (
        db.session.query(Customer.loyalty_points, Customer.total_purchases_cents)
        .filter(Customer.id == customer_id)
        .one()
    )
    return int(row.loyalty_points), int(row.total_purchases_cents)


def _clamped(column, delta: int):
    return case((column + delta < 0, 0), else_=column + delta)


def _apply(
    *,
    customer_id: int,
    store_id: int,
    points_delta: int,
    purchases_delta: int,
    transaction_type: str,
    sale_id: int | None,
    touch_visit: bool,
) -> LoyaltyTransaction:
    get_customer(customer_id, store_id)

    points_before, _ = _balances(customer_id)

    values = {
        "loyalty_points": _clamped(Customer.loyalty_points, points_delta),
        "total_purchases_cents": _clamped(Customer.total_purchases_cents, purchases_delta),
    }
    if touch_visit:
        values["last_visit_at"] = utcnow()

    stmt = (
        update(Customer)
        .where(Customer.id == customer_id, Customer.store_id == store_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount != 1:
        raise CustomerNotFound(f"Customer {customer_id} not found")

    points_after, _ = _balances(customer_id)
    applied = points_after - points_before
    if applied != points_delta:
        current_app.logger.warning(
            "Loyalty balance clamped at zero: customer=%s requested=%s applied=%s",
            customer_id, points_delta, applied,
        )

    txn = LoyaltyTransaction(
        customer_id=customer_id,
        sale_id=sale_id,
        transaction_type=transaction_type,
        points_requested=points_delta,
        points_applied=applied,
        purchases_delta_cents=purchases_delta,
        points_balance_after=points_after,
        occurred_at=utcnow(),
    )
    db.session.add(txn)
    db.session.flush()
    return txn


def accrue(customer_id: int, store_id: int, amount_cents: int, *, sale_id: int | None = None) -> LoyaltyTransaction:
    """Add floor(amount/10) points and `amount` to lifetime purchases. Does not commit."""
    if amount_cents < 0:
        raise ValidationError("accrual amount cannot be negative")
    return _apply(
        customer_id=customer_id,
        store_id=store_id,
        points_delta=loyalty_points_for(amount_cents),
        purchases_delta=amount_cents,
        transaction_type=TXN_EARN,
        sale_id=sale_id,
        touch_visit=True,
    )


def reverse(customer_id: int, store_id: int, amount_cents: int, *, sale_id: int | None = None) -> LoyaltyTransaction:
    """Take back floor(amount/10) points and `amount` of purchases, never below zero. Does not commit."""
    if amount_cents < 0:
        raise ValidationError("reversal amount cannot be negative")
    return _apply(
        customer_id=customer_id,
        store_id=store_id,
        points_delta=-loyalty_points_for(amount_cents),
        purchases_delta=-amount_cents,
        transaction_type=TXN_REVERSE,
        sale_id=sale_id,
        touch_visit=False,
    )


def history(customer_id: int) -> list[LoyaltyTransaction]:
    return (
        db.session.query(LoyaltyTransaction)
        .filter_by(customer_id=customer_id)
        .order_by(LoyaltyTransaction.id.asc())
        .all()
    )
