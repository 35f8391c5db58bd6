"""
Sale ledger: persistence and lifecycle of Sale documents.

Totals and items are written once, at checkout, from already-priced
snapshots. Afterwards only the status moves, along these edges:

    pending   -> completed | cancelled
    completed -> cancelled | refunded

refunded and cancelled are terminal. Every move is a compare-and-swap
(UPDATE ... WHERE status = :expected), so two terminals racing on the same
sale cannot both win; the loser gets IllegalTransition.

Nothing here commits. Callers run these inside run_in_write_transaction so
the status change, the stock/loyalty side effects and the ledger event land
together or not at all.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from flask import current_app
from sqlalchemy import update
from sqlalchemy.orm import joinedload

from ..extensions import db
from ..models import LoyaltyTransaction, Sale, SaleItem
from ..models.sales import (
    SALE_STATUS_PENDING,
    SALE_STATUS_COMPLETED,
    SALE_STATUS_CANCELLED,
    SALE_STATUS_REFUNDED,
    SALE_STATUSES,
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUS_PENDING,
    PAYMENT_STATUS_REFUNDED,
)
from ..errors import IllegalTransition, NotFound, ValidationError
from tillpoint.time_utils import utcnow
from . import loyalty_service, stock_service
from .concurrency import lock_for_update
from .ledger_service import append_ledger_event
from .pricing_service import PricedLine, Totals
from .settings_service import BranchSettings

DEFAULT_LIST_LIMIT = 50
MAX_LIST_LIMIT = 200

LEGAL_TRANSITIONS: dict[str, frozenset[str]] = {
    SALE_STATUS_PENDING: frozenset({SALE_STATUS_COMPLETED, SALE_STATUS_CANCELLED}),
    SALE_STATUS_COMPLETED: frozenset({SALE_STATUS_CANCELLED, SALE_STATUS_REFUNDED}),
    SALE_STATUS_CANCELLED: frozenset(),
    SALE_STATUS_REFUNDED: frozenset(),
}


@dataclass(frozen=True)
class LineSnapshot(PricedLine):
    """A cart line after the catalog price and name were copied onto it."""
    product_id: int = 0
    name: str = ""
    line_discount_cents: int = 0


def is_legal_transition(current: str, new: str) -> bool:
    return new in LEGAL_TRANSITIONS.get(current, frozenset())


def get_sale(sale_id: int, branch_id: int, *, for_update: bool = False) -> Sale:
    query = db.session.query(Sale).filter_by(id=sale_id)
    if for_update:
        query = lock_for_update(query)
    sale = query.first()
    if sale is None or sale.branch_id != branch_id:
        raise NotFound(f"Sale {sale_id} not found")
    return sale


def find_by_idempotency_key(branch_id: int, key: str | None) -> Sale | None:
    if not key:
        return None
    return db.session.query(Sale).filter_by(branch_id=branch_id, idempotency_key=key).first()


def list_sales(
    branch_id: int,
    *,
    limit: int = DEFAULT_LIST_LIMIT,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[Sale]:
    """
    Newest sales first, with their customer loaded.

    start/end bound created_at as [start, end); either may be omitted.
    """
    if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= MAX_LIST_LIMIT:
        raise ValidationError(f"limit must be between 1 and {MAX_LIST_LIMIT}")
    if start is not None and end is not None and end <= start:
        raise ValidationError("end must be after start")

    query = db.session.query(Sale).options(joinedload(Sale.customer)).filter(Sale.branch_id == branch_id)
    if start is not None:
        query = query.filter(Sale.created_at >= start)
    if end is not None:
        query = query.filter(Sale.created_at < end)
    return query.order_by(Sale.created_at.desc(), Sale.id.desc()).limit(limit).all()


def record_sale(
    *,
    settings: BranchSettings,
    sale_number: str,
    lines: list[LineSnapshot],
    totals: Totals,
    tax_mode: str,
    discount_mode: str,
    payment_method: str,
    amount_received_cents: int | None,
    change_cents: int,
    customer_id: int | None,
    cashier_id: int | None,
    hold: bool = False,
    idempotency_key: str | None = None,
    notes: str | None = None,
) -> Sale:
    """Insert the sale header and its item snapshots. Does not commit."""
    if not lines:
        raise ValidationError("Cannot record a sale with no items")

    now = utcnow()
    sale = Sale(
        branch_id=settings.branch_id,
        store_id=settings.store_id,
        sale_number=sale_number,
        customer_id=customer_id,
        cashier_id=cashier_id,
        subtotal_cents=totals.subtotal_cents,
        tax_cents=totals.tax_cents,
        tax_mode=tax_mode,
        discount_cents=totals.discount_cents,
        discount_mode=discount_mode,
        total_cents=totals.total_cents,
        payment_method=payment_method,
        amount_received_cents=amount_received_cents,
        change_cents=change_cents,
        status=SALE_STATUS_PENDING if hold else SALE_STATUS_COMPLETED,
        payment_status=PAYMENT_STATUS_PENDING if hold else PAYMENT_STATUS_PAID,
        refunded_amount_cents=0,
        idempotency_key=idempotency_key,
        notes=notes,
        created_at=now,
        completed_at=None if hold else now,
    )
    db.session.add(sale)
    db.session.flush()

    for line_number, line in enumerate(lines, start=1):
        db.session.add(SaleItem(
            sale_id=sale.id,
            line_number=line_number,
            product_id=line.product_id,
            name=line.name,
            unit_price_cents=line.unit_price_cents,
            quantity=line.quantity,
            line_discount_cents=line.line_discount_cents,
            line_total_cents=line.line_total_cents,
        ))
    db.session.flush()

    append_ledger_event(
        branch_id=sale.branch_id,
        event_type="sale.held" if hold else "sale.completed",
        entity_type="sale",
        entity_id=sale.id,
        actor_id=cashier_id,
        sale_id=sale.id,
        occurred_at=now,
        note=f"Sale {sale.sale_number} total={sale.total_cents}",
    )
    return sale


def _compare_and_set(sale: Sale, expected: str, new: str, **values) -> None:
    stmt = (
        update(Sale)
        .where(Sale.id == sale.id, Sale.status == expected)
        .values(status=new, **values)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount != 1:
        current_app.logger.warning(
            "Sale status changed underneath transition: sale=%s expected=%s new=%s",
            sale.id, expected, new,
        )
        raise IllegalTransition(
            f"Sale {sale.sale_number} is no longer {expected}",
            details={"sale_id": sale.id, "expected": expected, "requested": new},
        )
    db.session.expire(sale)


def transition(sale: Sale, new_status: str, **values) -> None:
    """Move `sale` to `new_status` if the edge is legal and nobody moved it first."""
    if new_status not in SALE_STATUSES:
        raise ValidationError(f"status must be one of {list(SALE_STATUSES)}")
    current = sale.status
    if current == new_status:
        raise IllegalTransition(
            f"Sale {sale.sale_number} is already {current}",
            details={"sale_id": sale.id, "status": current},
        )
    if not is_legal_transition(current, new_status):
        raise IllegalTransition(
            f"Cannot change sale {sale.sale_number} from {current} to {new_status}",
            details={"sale_id": sale.id, "status": current, "requested": new_status},
        )
    _compare_and_set(sale, current, new_status, **values)


def _accrued_for(sale: Sale) -> bool:
    return db.session.query(LoyaltyTransaction.id).filter_by(
        sale_id=sale.id,
        transaction_type=loyalty_service.TXN_EARN,
    ).first() is not None


def _restock_items(sale: Sale, movement_type: str, actor_id: int | None) -> None:
    for item in sale.items:
        stock_service.restore(
            item.product_id,
            item.quantity,
            movement_type=movement_type,
            sale_id=sale.id,
            actor_id=actor_id,
            note=f"Restock from sale {sale.sale_number}",
        )


def accrue_loyalty(sale: Sale, settings: BranchSettings) -> None:
    """Credit the sale's customer, if any and if the branch runs a loyalty program."""
    if not sale.customer_id or not settings.loyalty_program:
        return
    loyalty_service.accrue(sale.customer_id, sale.store_id, sale.total_cents, sale_id=sale.id)


def complete_sale(sale: Sale, settings: BranchSettings, *, actor_id: int | None = None) -> Sale:
    """pending -> completed; payment is taken and loyalty accrues now."""
    now = utcnow()
    number = sale.sale_number
    transition(sale, SALE_STATUS_COMPLETED, payment_status=PAYMENT_STATUS_PAID, completed_at=now)
    accrue_loyalty(sale, settings)
    append_ledger_event(
        branch_id=settings.branch_id,
        event_type="sale.completed",
        entity_type="sale",
        entity_id=sale.id,
        actor_id=actor_id,
        sale_id=sale.id,
        occurred_at=now,
        note=f"Held sale {number} completed",
    )
    return sale


def cancel_sale(sale: Sale, settings: BranchSettings, *, actor_id: int | None = None) -> Sale:
    """
    pending|completed -> cancelled.

    Stock comes back only with restock_on_cancel; loyalty earned by a
    completed sale is reversed only with reverse_loyalty_on_cancel.
    """
    now = utcnow()
    was, number = sale.status, sale.sale_number
    accrued = _accrued_for(sale)

    transition(sale, SALE_STATUS_CANCELLED, cancelled_at=now)

    if settings.restock_on_cancel:
        _restock_items(sale, stock_service.MOVEMENT_CANCEL_RESTOCK, actor_id)
    if was == SALE_STATUS_COMPLETED and accrued and settings.reverse_loyalty_on_cancel:
        loyalty_service.reverse(sale.customer_id, settings.store_id, sale.total_cents, sale_id=sale.id)

    append_ledger_event(
        branch_id=settings.branch_id,
        event_type="sale.cancelled",
        entity_type="sale",
        entity_id=sale.id,
        actor_id=actor_id,
        sale_id=sale.id,
        occurred_at=now,
        note=f"Sale {number} cancelled (was {was})",
    )
    return sale


def refund_sale(
    sale: Sale,
    settings: BranchSettings,
    refund_amount_cents: int | None = None,
    *,
    actor_id: int | None = None,
) -> Sale:
    """
    completed -> refunded, for the full total or a part of it.

    The refunded amount is taken back from the customer's loyalty balance
    (clamped at zero) when the sale earned loyalty. Goods go back on the
    shelf only for a full refund with restock_on_refund.
    """
    if sale.status == SALE_STATUS_REFUNDED:
        raise IllegalTransition(
            f"Sale {sale.sale_number} is already refunded",
            details={"sale_id": sale.id, "status": sale.status},
        )
    if sale.status != SALE_STATUS_COMPLETED:
        raise IllegalTransition(
            f"Only completed sales can be refunded (sale {sale.sale_number} is {sale.status})",
            details={"sale_id": sale.id, "status": sale.status},
        )

    total = sale.total_cents
    amount = total if refund_amount_cents is None else refund_amount_cents
    if amount <= 0 or amount > total:
        raise ValidationError(
            "Refund amount must be greater than zero and at most the sale total",
            details={"refund_amount_cents": amount, "total_cents": total},
        )

    now = utcnow()
    number = sale.sale_number
    accrued = _accrued_for(sale)

    transition(
        sale,
        SALE_STATUS_REFUNDED,
        payment_status=PAYMENT_STATUS_REFUNDED,
        refunded_amount_cents=amount,
        refunded_at=now,
    )

    if accrued:
        loyalty_service.reverse(sale.customer_id, settings.store_id, amount, sale_id=sale.id)
    if settings.restock_on_refund and amount == total:
        _restock_items(sale, stock_service.MOVEMENT_REFUND_RESTOCK, actor_id)

    append_ledger_event(
        branch_id=settings.branch_id,
        event_type="sale.refunded",
        entity_type="sale",
        entity_id=sale.id,
        actor_id=actor_id,
        sale_id=sale.id,
        occurred_at=now,
        note=f"Sale {number} refunded {amount} of {total}",
    )
    return sale


def change_status(sale: Sale, settings: BranchSettings, new_status: str, *, actor_id: int | None = None) -> Sale:
    if new_status == SALE_STATUS_COMPLETED:
        return complete_sale(sale, settings, actor_id=actor_id)
    if new_status == SALE_STATUS_CANCELLED:
        return cancel_sale(sale, settings, actor_id=actor_id)
    if new_status == SALE_STATUS_REFUNDED:
        return refund_sale(sale, settings, actor_id=actor_id)
    if new_status in SALE_STATUSES:
        raise IllegalTransition(
            f"Cannot move sale {sale.sale_number} back to {new_status}",
            details={"sale_id": sale.id, "status": sale.status, "requested": new_status},
        )
    raise ValidationError(f"status must be one of {list(SALE_STATUSES)}")
