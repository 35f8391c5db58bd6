"""
Typed errors raised by the sale transaction engine.

Every failure mode of checkout/refund/status-change has its own class so
callers can branch on the type (or on ``code``) instead of a generic
"failed" flag. Routes translate the base class into a JSON error body with
``http_status``.
"""

from __future__ import annotations


class SaleEngineError(Exception):
    """Base class for all engine errors."""

    code = "SALE_ENGINE_ERROR"
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(SaleEngineError):
    """Malformed input rejected before any mutation."""

    code = "VALIDATION_ERROR"
    http_status = 400


class NotFound(SaleEngineError):
    code = "NOT_FOUND"
    http_status = 404


class BranchAccessDenied(SaleEngineError):
    """Caller's identity does not cover the requested branch."""

    code = "BRANCH_ACCESS_DENIED"
    http_status = 403


class SubscriptionBlocked(SaleEngineError):
    """Tenant subscription gate refused the operation."""

    code = "SUBSCRIPTION_BLOCKED"
    http_status = 402


class PolicyViolation(SaleEngineError):
    """Branch configuration forbids the request (customer required, payment method, discount cap)."""

    code = "POLICY_VIOLATION"
    http_status = 422


class InsufficientStock(SaleEngineError):
    code = "INSUFFICIENT_STOCK"
    http_status = 409

    def __init__(self, *, product_id: int, requested: int, on_hand: int, name: str | None = None):
        shortfall = max(requested - on_hand, 0)
        label = name or f"Product {product_id}"
        super().__init__(
            f"Insufficient stock for {label}: requested {requested}, on hand {on_hand}",
            details={
                "product_id": product_id,
                "requested": requested,
                "on_hand": on_hand,
                "shortfall": shortfall,
            },
        )
        self.product_id = product_id
        self.shortfall = shortfall


class InsufficientPayment(SaleEngineError):
    """Cash tendered is less than the sale total."""

    code = "INSUFFICIENT_PAYMENT"
    http_status = 422


class CustomerNotFound(SaleEngineError):
    """Customer reference is unknown or belongs to another store."""

    code = "CUSTOMER_NOT_FOUND"
    http_status = 422


class IllegalTransition(SaleEngineError):
    code = "ILLEGAL_TRANSITION"
    http_status = 409


class PersistenceFailure(SaleEngineError):
    """Storage-layer failure; the enclosing transaction has been rolled back."""

    code = "PERSISTENCE_FAILURE"
    http_status = 503
