from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from ..extensions import db
from ..models import Branch
from ..errors import NotFound
from ..money import bps_to_percent


PAYMENT_CASH = "cash"
PAYMENT_CARD = "card"
PAYMENT_MOBILE_MONEY = "mobile_money"
PAYMENT_TRANSFER = "transfer"
PAYMENT_CRYPTO = "crypto"

KNOWN_PAYMENT_METHODS = frozenset({
    PAYMENT_CASH,
    PAYMENT_CARD,
    PAYMENT_MOBILE_MONEY,
    PAYMENT_TRANSFER,
    PAYMENT_CRYPTO,
})


@dataclass(frozen=True)
class BranchSettings:
    """
    Immutable POS/inventory configuration for one branch.

    Loaded once per operation and passed by value into pricing, policy and
    stock checks; nothing downstream reads branch configuration on its own.
    """
    branch_id: int
    store_id: int
    default_tax_rate: Decimal = Decimal(0)  # percent
    tax_included: bool = False
    allow_discounts: bool = True
    max_discount_percent: Decimal = Decimal(100)
    require_customer_info: bool = False
    allowed_payment_methods: frozenset[str] = field(
        default_factory=lambda: frozenset({PAYMENT_CASH, PAYMENT_CARD, PAYMENT_MOBILE_MONEY})
    )
    loyalty_program: bool = False
    low_stock_threshold: int = 10
    restock_on_refund: bool = False
    restock_on_cancel: bool = False
    reverse_loyalty_on_cancel: bool = False

    def allows_payment_method(self, method: str) -> bool:
        return method in self.allowed_payment_methods


def _parse_methods(raw: str | None) -> frozenset[str]:
    if not raw:
        return frozenset()
    return frozenset(m.strip().lower() for m in raw.split(",") if m.strip())


def settings_from_branch(branch: Branch) -> BranchSettings:
    return BranchSettings(
        branch_id=branch.id,
        store_id=branch.store_id,
        default_tax_rate=bps_to_percent(branch.default_tax_rate_bps or 0),
        tax_included=bool(branch.tax_included),
        allow_discounts=bool(branch.allow_discounts),
        max_discount_percent=Decimal(branch.max_discount_percent if branch.max_discount_percent is not None else 100),
        require_customer_info=bool(branch.require_customer_info),
        allowed_payment_methods=_parse_methods(branch.allowed_payment_methods),
        loyalty_program=bool(branch.loyalty_program),
        low_stock_threshold=int(branch.low_stock_threshold or 0),
        restock_on_refund=bool(branch.restock_on_refund),
        restock_on_cancel=bool(branch.restock_on_cancel),
        reverse_loyalty_on_cancel=bool(branch.reverse_loyalty_on_cancel),
    )


def get_branch(branch_id: int) -> Branch:
    branch = db.session.query(Branch).filter_by(id=branch_id).first()
    if not branch:
        raise NotFound(f"Branch {branch_id} not found")
    return branch


def load_branch_settings(branch_id: int) -> BranchSettings:
    return settings_from_branch(get_branch(branch_id))
