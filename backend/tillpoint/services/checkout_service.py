"""
Checkout orchestrator

One checkout is one database transaction:

    policy checks (no writes)
    -> stock validation per line (advisory, cart-aware)
    -> pricing from catalog prices
    -> discount cap / cash tendered checks
    -> sale number from the branch sequence
    -> sale + item snapshots
    -> conditional stock decrement per line (authoritative)
    -> loyalty accrual (completed sales only)
    -> commit

Any failure after the first write rolls the whole transaction back: stock,
sequence counter, sale rows and loyalty balances all return to where they
were. There is no hand-written compensation to get wrong.

Retrying a request with the same idempotency_key returns the sale it
already created instead of charging twice.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import InsufficientPayment, PersistenceFailure, PolicyViolation, ValidationError
from ..models import Sale
from ..money import percent_of
from ..validation import CheckoutRequest
from . import loyalty_service, sales_service, stock_service
from .concurrency import run_in_write_transaction
from .policy import OperationContext, guarded
from .sequence_service import next_sale_number
from .pricing_service import MODE_PERCENTAGE, compute_subtotal, compute_totals
from .settings_service import PAYMENT_CASH, BranchSettings


@dataclass(frozen=True)
class CheckoutResult:
    sale_id: int
    sale_number: str
    total_cents: int
    change_cents: int
    sale: Sale
    replayed: bool = False

    def to_dict(self) -> dict:
        return {
            "sale_id": self.sale_id,
            "sale_number": self.sale_number,
            "total_cents": self.total_cents,
            "change_cents": self.change_cents,
            "replayed": self.replayed,
            "sale": self.sale.to_dict(),
        }


def _result(sale: Sale, replayed: bool = False) -> CheckoutResult:
    return CheckoutResult(
        sale_id=sale.id,
        sale_number=sale.sale_number,
        total_cents=sale.total_cents,
        change_cents=sale.change_cents,
        sale=sale,
        replayed=replayed,
    )


def _check_policy(settings: BranchSettings, request: CheckoutRequest) -> None:
    """Branch rules that need no database access."""
    if not settings.allows_payment_method(request.payment_method):
        raise PolicyViolation(
            f"Payment method {request.payment_method!r} is not accepted at this branch",
            details={"payment_method": request.payment_method, "allowed": sorted(settings.allowed_payment_methods)},
        )
    if settings.require_customer_info and request.customer_id is None:
        raise PolicyViolation("This branch requires a customer on every sale")
    if request.discount_value > 0 and not settings.allow_discounts:
        raise PolicyViolation("Discounts are disabled at this branch")
    if request.discount_mode == MODE_PERCENTAGE and request.discount_value > settings.max_discount_percent:
        raise PolicyViolation(
            f"Discount exceeds the branch maximum of {settings.max_discount_percent}%",
            details={"discount_value": str(request.discount_value), "max_discount_percent": str(settings.max_discount_percent)},
        )


def _tax_for(settings: BranchSettings, request: CheckoutRequest) -> tuple[str, Decimal]:
    if request.tax_mode is not None:
        return request.tax_mode, request.tax_value or Decimal(0)
    if settings.tax_included:
        return MODE_PERCENTAGE, Decimal(0)
    return MODE_PERCENTAGE, settings.default_tax_rate


def _snapshot_lines(settings: BranchSettings, request: CheckoutRequest) -> list[sales_service.LineSnapshot]:
    """Validate each line against stock (counting earlier lines of the same product) and copy catalog price/name."""
    in_cart: dict[int, int] = {}
    lines = []
    for item in request.items:
        product = stock_service.validate_and_reserve(
            item.product_id,
            settings.branch_id,
            item.quantity,
            already_in_cart=in_cart.get(item.product_id, 0),
        )
        in_cart[item.product_id] = in_cart.get(item.product_id, 0) + item.quantity
        if item.unit_price_cents is not None and item.unit_price_cents != product.price_cents:
            current_app.logger.info(
                "Cart price differs from catalog: product=%s cart=%s catalog=%s",
                product.id, item.unit_price_cents, product.price_cents,
            )
        lines.append(sales_service.LineSnapshot(
            unit_price_cents=product.price_cents,
            quantity=item.quantity,
            product_id=product.id,
            name=product.name,
            line_discount_cents=item.line_discount_cents,
        ))
    return lines


def _do_checkout(context: OperationContext, settings: BranchSettings, request: CheckoutRequest) -> CheckoutResult:
    _check_policy(settings, request)

    existing = sales_service.find_by_idempotency_key(settings.branch_id, request.idempotency_key)
    if existing is not None:
        current_app.logger.info("Checkout replayed: branch=%s key=%s sale=%s", settings.branch_id, request.idempotency_key, existing.id)
        return _result(existing, replayed=True)

    if request.customer_id is not None:
        loyalty_service.get_customer(request.customer_id, settings.store_id)

    tax_mode, tax_value = _tax_for(settings, request)
    cashier_id = context.identity.user_id

    def _op() -> tuple[int, bool]:
        replay = sales_service.find_by_idempotency_key(settings.branch_id, request.idempotency_key)
        if replay is not None:
            return replay.id, True

        lines = _snapshot_lines(settings, request)
        totals = compute_totals(lines, tax_mode, tax_value, request.discount_mode, request.discount_value)

        cap = percent_of(compute_subtotal(lines), settings.max_discount_percent)
        if totals.discount_cents > cap:
            raise PolicyViolation(
                "Discount exceeds the branch maximum",
                details={"discount_cents": totals.discount_cents, "max_discount_cents": cap},
            )

        amount_received = request.amount_received_cents
        change = 0
        if request.payment_method == PAYMENT_CASH and not request.hold:
            if amount_received is None:
                raise ValidationError("amount_received_cents is required for cash payments")
            if amount_received < totals.total_cents:
                raise InsufficientPayment(
                    "Amount received is less than the sale total",
                    details={"amount_received_cents": amount_received, "total_cents": totals.total_cents},
                )
            change = amount_received - totals.total_cents

        sale_number = next_sale_number(settings.branch_id)
        sale = sales_service.record_sale(
            settings=settings,
            sale_number=sale_number,
            lines=lines,
            totals=totals,
            tax_mode=tax_mode,
            discount_mode=request.discount_mode,
            payment_method=request.payment_method,
            amount_received_cents=amount_received,
            change_cents=change,
            customer_id=request.customer_id,
            cashier_id=cashier_id,
            hold=request.hold,
            idempotency_key=request.idempotency_key,
            notes=request.notes,
        )

        for line in lines:
            stock_service.decrement(
                line.product_id,
                line.quantity,
                sale_id=sale.id,
                actor_id=cashier_id,
                note=f"Sale {sale_number}",
            )

        if not request.hold:
            sales_service.accrue_loyalty(sale, settings)
        return sale.id, False

    try:
        outcome = run_in_write_transaction(_op)
    except PersistenceFailure as exc:
        if request.idempotency_key and isinstance(exc.__cause__, IntegrityError):
            existing = sales_service.find_by_idempotency_key(settings.branch_id, request.idempotency_key)
            if existing is not None:
                current_app.logger.info("Checkout replayed after race: branch=%s sale=%s", settings.branch_id, existing.id)
                return _result(existing, replayed=True)
        raise

    sale_id, replayed = outcome
    sale = sales_service.get_sale(sale_id, settings.branch_id)
    current_app.logger.info(
        "Checkout completed: branch=%s sale=%s number=%s total=%s status=%s",
        settings.branch_id, sale.id, sale.sale_number, sale.total_cents, sale.status,
    )
    return _result(sale, replayed=replayed)


def _do_refund(
    context: OperationContext,
    settings: BranchSettings,
    sale_id: int,
    refund_amount_cents: int | None = None,
) -> Sale:
    def _op() -> None:
        sale = sales_service.get_sale(sale_id, settings.branch_id, for_update=True)
        sales_service.refund_sale(sale, settings, refund_amount_cents, actor_id=context.identity.user_id)

    run_in_write_transaction(_op)
    sale = sales_service.get_sale(sale_id, settings.branch_id)
    current_app.logger.info(
        "Sale refunded: branch=%s sale=%s amount=%s",
        settings.branch_id, sale.id, sale.refunded_amount_cents,
    )
    return sale


def _do_set_status(context: OperationContext, settings: BranchSettings, sale_id: int, status: str) -> Sale:
    def _op() -> None:
        sale = sales_service.get_sale(sale_id, settings.branch_id, for_update=True)
        sales_service.change_status(sale, settings, status, actor_id=context.identity.user_id)

    run_in_write_transaction(_op)
    sale = sales_service.get_sale(sale_id, settings.branch_id)
    current_app.logger.info("Sale status changed: branch=%s sale=%s status=%s", settings.branch_id, sale.id, sale.status)
    return sale


def _do_get_sale(context: OperationContext, settings: BranchSettings, sale_id: int) -> Sale:
    return sales_service.get_sale(sale_id, settings.branch_id)


def _do_list_sales(
    context: OperationContext,
    settings: BranchSettings,
    limit: int,
    start: datetime | None,
    end: datetime | None,
) -> list[Sale]:
    return sales_service.list_sales(settings.branch_id, limit=limit, start=start, end=end)


def checkout(context: OperationContext, branch_id: int, request: CheckoutRequest) -> CheckoutResult:
    return guarded(_do_checkout, context)(branch_id, request)


def refund(context: OperationContext, branch_id: int, sale_id: int, refund_amount_cents: int | None = None) -> Sale:
    return guarded(_do_refund, context)(branch_id, sale_id, refund_amount_cents)


def set_sale_status(context: OperationContext, branch_id: int, sale_id: int, status: str) -> Sale:
    return guarded(_do_set_status, context)(branch_id, sale_id, status)


def get_sale(context: OperationContext, branch_id: int, sale_id: int) -> Sale:
    return guarded(_do_get_sale, context)(branch_id, sale_id)


def list_sales(
    context: OperationContext,
    branch_id: int,
    limit: int = sales_service.DEFAULT_LIST_LIMIT,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[Sale]:
    return guarded(_do_list_sales, context)(branch_id, limit, start, end)
