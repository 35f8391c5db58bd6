# Overview: Stock ledger; owns Product.stock_on_hand and its audit trail.

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import Product, StockMovement
from ..errors import InsufficientStock, NotFound, ValidationError
from ..money import require_quantity
from tillpoint.time_utils import utcnow
from .settings_service import BranchSettings
from .ledger_service import append_ledger_event
from .concurrency import run_in_write_transaction
from .policy import ROLE_ADMIN, ROLE_MANAGER, guarded, require_role
"""
Stock invariants (authoritative)

- stock_on_hand is never negative (CHECK constraint + conditional UPDATE).
- Every mutation is ONE statement:
    UPDATE products SET stock_on_hand = stock_on_hand - :qty
    WHERE id = :id AND stock_on_hand >= :qty
  Zero matched rows means insufficient stock; nothing is read and then
  written back in a separate step.
- Each mutation appends a StockMovement with the resulting quantity.
- Refunds/cancellations do not restore stock unless the branch settings
  ask for it (restock_on_refund / restock_on_cancel).
"""

MOVEMENT_SALE = "SALE"
MOVEMENT_RESTORE = "RESTORE"
MOVEMENT_REFUND_RESTOCK = "REFUND_RESTOCK"
MOVEMENT_CANCEL_RESTOCK = "CANCEL_RESTOCK"

STOCK_OUT = "out_of_stock"
STOCK_LOW = "low_stock"
STOCK_IN = "in_stock"

EXPIRY_WARNING_DAYS = 7


def get_product(product_id: int, branch_id: int | None = None) -> Product:
    product = db.session.query(Product).filter_by(id=product_id).first()
    if product is None or (branch_id is not None and product.branch_id != branch_id):
        raise NotFound(f"Product {product_id} not found")
    return product


def _current_stock(product_id: int) -> int:
    value = (
        db.session.query(Product.stock_on_hand)
        .filter(Product.id == product_id)
        .scalar()
    )
    return int(value or 0)


def _record_movement(
    product: Product,
    *,
    movement_type: str,
    quantity_delta: int,
    sale_id: int | None,
    actor_id: int | None,
    note: str | None,
) -> StockMovement:
    movement = StockMovement(
        product_id=product.id,
        branch_id=product.branch_id,
        movement_type=movement_type,
        quantity_delta=quantity_delta,
        stock_after=_current_stock(product.id),
        sale_id=sale_id,
        actor_id=actor_id,
        note=note,
        occurred_at=utcnow(),
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def validate_and_reserve(
    product_id: int,
    branch_id: int,
    requested_qty: int,
    already_in_cart: int = 0,
) -> Product:
    """
    Check that `requested_qty` more units fit on top of what the cart holds.

    This is an early, advisory check; decrement() repeats it atomically.
    """
    requested_qty = require_quantity(requested_qty)
    if already_in_cart < 0:
        raise ValidationError("already_in_cart cannot be negative")

    product = get_product(product_id, branch_id)
    if not product.is_active:
        raise ValidationError(f"Product {product.name} is inactive")

    wanted = already_in_cart + requested_qty
    if product.stock_on_hand < wanted:
        raise InsufficientStock(
            product_id=product.id,
            requested=wanted,
            on_hand=product.stock_on_hand,
            name=product.name,
        )
    return product


def decrement(
    product_id: int,
    qty: int,
    *,
    sale_id: int | None = None,
    actor_id: int | None = None,
    note: str | None = None,
) -> StockMovement:
    """
    Atomically take `qty` units off stock_on_hand, or raise InsufficientStock.

    Runs inside the caller's transaction; does not commit.
    """
    qty = require_quantity(qty)
    product = get_product(product_id)

    stmt = (
        update(Product)
        .where(Product.id == product_id, Product.stock_on_hand >= qty)
        .values(stock_on_hand=Product.stock_on_hand - qty)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount != 1:
        on_hand = _current_stock(product_id)
        current_app.logger.warning(
            "Stock decrement rejected: product=%s requested=%s on_hand=%s",
            product_id, qty, on_hand,
        )
        raise InsufficientStock(product_id=product_id, requested=qty, on_hand=on_hand, name=product.name)

    return _record_movement(
        product,
        movement_type=MOVEMENT_SALE,
        quantity_delta=-qty,
        sale_id=sale_id,
        actor_id=actor_id,
        note=note,
    )


def restore(
    product_id: int,
    qty: int,
    *,
    movement_type: str = MOVEMENT_RESTORE,
    sale_id: int | None = None,
    actor_id: int | None = None,
    note: str | None = None,
) -> StockMovement:
    """Atomically add `qty` units back. Runs inside the caller's transaction."""
    qty = require_quantity(qty)
    product = get_product(product_id)

    stmt = (
        update(Product)
        .where(Product.id == product_id)
        .values(stock_on_hand=Product.stock_on_hand + qty)
        .execution_options(synchronize_session=False)
    )
    db.session.execute(stmt)

    return _record_movement(
        product,
        movement_type=movement_type,
        quantity_delta=qty,
        sale_id=sale_id,
        actor_id=actor_id,
        note=note,
    )


def manual_restore(
    *,
    branch_id: int,
    product_id: int,
    quantity: int,
    actor_id: int | None = None,
    note: str | None = None,
) -> Product:
    """Manual stock correction as its own committed unit of work."""
    quantity = require_quantity(quantity)

    def _op():
        product = get_product(product_id, branch_id)
        movement = restore(product.id, quantity, actor_id=actor_id, note=note or "Manual stock correction")
        append_ledger_event(
            branch_id=branch_id,
            event_type="stock.restored",
            entity_type="product",
            entity_id=product.id,
            actor_id=actor_id,
            note=f"+{quantity} (now {movement.stock_after})",
        )
        return product.id

    restored_id = run_in_write_transaction(_op)
    current_app.logger.info("Stock restored: product=%s qty=%s actor=%s", restored_id, quantity, actor_id)
    return get_product(restored_id, branch_id)


def classify_stock(stock_on_hand: int, min_stock: int, threshold: int) -> str:
    """0 -> out_of_stock; 0 < s <= max(min_stock, threshold) -> low_stock; else in_stock."""
    if stock_on_hand <= 0:
        return STOCK_OUT
    if stock_on_hand <= max(min_stock or 0, threshold or 0):
        return STOCK_LOW
    return STOCK_IN


@dataclass(frozen=True)
class StockAlert:
    alert_type: str  # out_of_stock, low_stock, reorder, expiry
    severity: str  # error, warning, info
    product_id: int
    product_name: str
    current_stock: int
    message: str
    threshold: int | None = None

    def to_dict(self) -> dict:
        return {
            "type": self.alert_type,
            "severity": self.severity,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "current_stock": self.current_stock,
            "threshold": self.threshold,
            "message": self.message,
        }


_SEVERITY_ORDER = {"error": 0, "warning": 1, "info": 2}


def product_alerts(product: Product, settings: BranchSettings, today: date | None = None) -> list[StockAlert]:
    today = today or utcnow().date()
    alerts: list[StockAlert] = []
    threshold = max(product.min_stock or 0, settings.low_stock_threshold)

    state = classify_stock(product.stock_on_hand, product.min_stock, settings.low_stock_threshold)
    if state == STOCK_OUT:
        alerts.append(StockAlert(
            STOCK_OUT, "error", product.id, product.name, product.stock_on_hand,
            f"{product.name} is out of stock",
        ))
    elif state == STOCK_LOW:
        alerts.append(StockAlert(
            STOCK_LOW, "warning", product.id, product.name, product.stock_on_hand,
            f"{product.name} is running low ({product.stock_on_hand} left)",
            threshold=threshold,
        ))

    if product.reorder_point and product.stock_on_hand <= product.reorder_point:
        alerts.append(StockAlert(
            "reorder", "info", product.id, product.name, product.stock_on_hand,
            f"{product.name} needs to be reordered",
            threshold=product.reorder_point,
        ))

    if product.is_perishable and product.expiry_date:
        days_left = (product.expiry_date - today).days
        if days_left <= 0:
            alerts.append(StockAlert(
                "expiry", "error", product.id, product.name, product.stock_on_hand,
                f"{product.name} has expired",
            ))
        elif days_left <= EXPIRY_WARNING_DAYS:
            alerts.append(StockAlert(
                "expiry", "warning", product.id, product.name, product.stock_on_hand,
                f"{product.name} expires in {days_left} days",
            ))

    return alerts


def low_stock_alerts(branch_id: int, settings: BranchSettings, today: date | None = None) -> list[StockAlert]:
    products = (
        db.session.query(Product)
        .filter_by(branch_id=branch_id, is_active=True)
        .order_by(Product.name.asc())
        .all()
    )
    alerts: list[StockAlert] = []
    for product in products:
        alerts.extend(product_alerts(product, settings, today=today))
    alerts.sort(key=lambda a: (_SEVERITY_ORDER[a.severity], a.product_name))
    return alerts




def _do_alerts(context, settings: BranchSettings) -> list[StockAlert]:
    return low_stock_alerts(settings.branch_id, settings)


def _do_restore(context, settings: BranchSettings, product_id: int, quantity: int, note: str | None = None) -> Product:
    require_role(context, ROLE_ADMIN, ROLE_MANAGER)
    return manual_restore(
        branch_id=settings.branch_id,
        product_id=product_id,
        quantity=quantity,
        actor_id=context.identity.user_id,
        note=note,
    )


def branch_alerts(context, branch_id: int) -> list[StockAlert]:
    return guarded(_do_alerts, context)(branch_id)


def restore_stock(context, branch_id: int, product_id: int, quantity: int, note: str | None = None) -> Product:
    return guarded(_do_restore, context)(branch_id, product_id, quantity, note)
