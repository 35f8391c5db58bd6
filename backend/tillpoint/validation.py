from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from .errors import ValidationError
from .money import require_quantity, to_cents, to_percent
from .services.pricing_service import ADJUSTMENT_MODES, MODE_PERCENTAGE
from .services.settings_service import KNOWN_PAYMENT_METHODS
from .models.sales import SALE_STATUSES


MAX_CART_LINES = 500
MAX_IDEMPOTENCY_KEY_LENGTH = 128
MAX_NOTES_LENGTH = 500

CHECKOUT_FIELDS = {
    "items",
    "tax_mode",
    "tax_value",
    "discount_mode",
    "discount_value",
    "customer_id",
    "payment_method",
    "amount_received_cents",
    "idempotency_key",
    "hold",
    "notes",
}

CART_LINE_FIELDS = {"product_id", "quantity", "unit_price_cents", "name", "line_discount_cents"}


@dataclass(frozen=True)
class CartLine:
    """
    One line of a submitted cart.

    unit_price_cents and name are what the terminal displayed; checkout
    prices from the catalog row and only keeps these for the log.
    """
    product_id: int
    quantity: int
    unit_price_cents: int | None = None
    name: str | None = None
    line_discount_cents: int = 0


@dataclass(frozen=True)
class CheckoutRequest:
    items: tuple[CartLine, ...]
    payment_method: str
    tax_mode: str | None = None
    tax_value: Decimal | None = None
    discount_mode: str = MODE_PERCENTAGE
    discount_value: Decimal = Decimal(0)
    customer_id: int | None = None
    amount_received_cents: int | None = None
    idempotency_key: str | None = None
    hold: bool = False
    notes: str | None = None


def _require_dict(payload: Any, label: str = "payload") -> dict:
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError(f"Invalid JSON {label}")
    return payload


def _reject_unknown(payload: dict, allowed: set[str], label: str) -> None:
    unknown = sorted(k for k in payload if k not in allowed)
    if unknown:
        raise ValidationError(f"Unknown {label} field(s): {', '.join(unknown)}")


def _positive_id(value: Any, field: str) -> int:
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a positive integer")
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped.isdigit():
            raise ValidationError(f"{field} must be a positive integer")
        value = int(stripped)
    if not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{field} must be a positive integer")
    return value


def _optional_text(value: Any, field: str, max_length: int) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text


def _mode(value: Any, field: str) -> str:
    if not isinstance(value, str) or value.strip().lower() not in ADJUSTMENT_MODES:
        raise ValidationError(f"{field} must be one of {list(ADJUSTMENT_MODES)}")
    return value.strip().lower()


def _adjustment_value(mode: str, value: Any, field: str) -> Decimal:
    """Percent for percentage mode, whole cents for fixed mode; both bounded."""
    if mode == MODE_PERCENTAGE:
        return to_percent(value, field)
    return Decimal(to_cents(value, field))


def parse_cart_line(raw: Any, index: int) -> CartLine:
    label = f"items[{index}]"
    raw = _require_dict(raw, label)
    _reject_unknown(raw, CART_LINE_FIELDS, label)
    if "product_id" not in raw:
        raise ValidationError(f"{label}.product_id is required")
    if "quantity" not in raw:
        raise ValidationError(f"{label}.quantity is required")

    unit_price = raw.get("unit_price_cents")
    return CartLine(
        product_id=_positive_id(raw["product_id"], f"{label}.product_id"),
        quantity=require_quantity(raw["quantity"], f"{label}.quantity"),
        unit_price_cents=None if unit_price is None else to_cents(unit_price, f"{label}.unit_price_cents"),
        name=_optional_text(raw.get("name"), f"{label}.name", 255),
        line_discount_cents=to_cents(raw.get("line_discount_cents", 0), f"{label}.line_discount_cents"),
    )


def parse_checkout_request(payload: Any) -> CheckoutRequest:
    """
    Validate and normalize a checkout body.

    Everything that can be rejected without touching the database is
    rejected here: shapes, types, modes, non-negative amounts, known payment
    method. Branch-specific policy is checked later against BranchSettings.
    """
    payload = _require_dict(payload)
    _reject_unknown(payload, CHECKOUT_FIELDS, "checkout")

    raw_items = payload.get("items")
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("items must be a non-empty list")
    if len(raw_items) > MAX_CART_LINES:
        raise ValidationError(f"items cannot exceed {MAX_CART_LINES} lines")
    items = tuple(parse_cart_line(raw, i) for i, raw in enumerate(raw_items))

    method = payload.get("payment_method")
    if not isinstance(method, str) or not method.strip():
        raise ValidationError("payment_method is required")
    method = method.strip().lower()
    if method not in KNOWN_PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of {sorted(KNOWN_PAYMENT_METHODS)}")

    tax_mode = None
    tax_value = None
    if payload.get("tax_mode") is not None:
        tax_mode = _mode(payload["tax_mode"], "tax_mode")
        tax_value = _adjustment_value(tax_mode, payload.get("tax_value", 0), "tax_value")
    elif payload.get("tax_value") is not None:
        raise ValidationError("tax_value requires tax_mode")

    discount_mode = MODE_PERCENTAGE
    if payload.get("discount_mode") is not None:
        discount_mode = _mode(payload["discount_mode"], "discount_mode")
    discount_value = _adjustment_value(discount_mode, payload.get("discount_value", 0), "discount_value")

    customer_id = None
    if payload.get("customer_id") is not None:
        customer_id = _positive_id(payload["customer_id"], "customer_id")

    amount_received = None
    if payload.get("amount_received_cents") is not None:
        amount_received = to_cents(payload["amount_received_cents"], "amount_received_cents")

    hold = payload.get("hold", False)
    if not isinstance(hold, bool):
        raise ValidationError("hold must be a boolean")

    return CheckoutRequest(
        items=items,
        payment_method=method,
        tax_mode=tax_mode,
        tax_value=tax_value,
        discount_mode=discount_mode,
        discount_value=discount_value,
        customer_id=customer_id,
        amount_received_cents=amount_received,
        idempotency_key=_optional_text(payload.get("idempotency_key"), "idempotency_key", MAX_IDEMPOTENCY_KEY_LENGTH),
        hold=hold,
        notes=_optional_text(payload.get("notes"), "notes", MAX_NOTES_LENGTH),
    )


def parse_refund_request(payload: Any) -> int | None:
    """Returns the refund amount in cents, or None for a full refund."""
    payload = _require_dict(payload)
    _reject_unknown(payload, {"refund_amount_cents"}, "refund")
    raw = payload.get("refund_amount_cents")
    if raw is None:
        return None
    return to_cents(raw, "refund_amount_cents")


def parse_status_request(payload: Any) -> str:
    payload = _require_dict(payload)
    _reject_unknown(payload, {"status"}, "status")
    status = payload.get("status")
    if not isinstance(status, str) or status.strip().lower() not in SALE_STATUSES:
        raise ValidationError(f"status must be one of {list(SALE_STATUSES)}")
    return status.strip().lower()


def parse_restore_request(payload: Any) -> tuple[int, str | None]:
    payload = _require_dict(payload)
    _reject_unknown(payload, {"quantity", "note"}, "restore")
    if "quantity" not in payload:
        raise ValidationError("quantity is required")
    return (
        require_quantity(payload["quantity"]),
        _optional_text(payload.get("note"), "note", MAX_NOTES_LENGTH),
    )


def parse_offline_sale_request(payload: Any) -> tuple[str, str | None, dict]:
    """Returns (local_id, device_id, checkout body); the body is checked when queued."""
    payload = _require_dict(payload)
    _reject_unknown(payload, {"local_id", "device_id", "sale"}, "offline sale")
    local_id = _optional_text(payload.get("local_id"), "local_id", MAX_IDEMPOTENCY_KEY_LENGTH)
    if local_id is None:
        raise ValidationError("local_id is required")
    body = payload.get("sale")
    if not isinstance(body, dict):
        raise ValidationError("sale must be a checkout object")
    return local_id, _optional_text(payload.get("device_id"), "device_id", 128), body


def parse_sync_request(payload: Any) -> bool:
    """Returns retry_failed."""
    payload = _require_dict(payload)
    _reject_unknown(payload, {"retry_failed"}, "sync")
    retry_failed = payload.get("retry_failed", False)
    if not isinstance(retry_failed, bool):
        raise ValidationError("retry_failed must be a boolean")
    return retry_failed
