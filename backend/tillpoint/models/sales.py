from __future__ import annotations

from ..extensions import db
from tillpoint.time_utils import to_utc_z


SALE_STATUS_PENDING = "pending"
SALE_STATUS_COMPLETED = "completed"
SALE_STATUS_CANCELLED = "cancelled"
SALE_STATUS_REFUNDED = "refunded"

SALE_STATUSES = (
    SALE_STATUS_PENDING,
    SALE_STATUS_COMPLETED,
    SALE_STATUS_CANCELLED,
    SALE_STATUS_REFUNDED,
)

PAYMENT_STATUS_PENDING = "pending"
PAYMENT_STATUS_PARTIAL = "partial"
PAYMENT_STATUS_PAID = "paid"
PAYMENT_STATUS_REFUNDED = "refunded"


class Sale(db.Model):
    """
    Financial record of a checkout.

    Totals and items are written once at checkout and never updated; only
    the status/payment_status columns (and their timestamps) move, through
    sales_service transitions.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "sale_number", name="uq_sales_branch_number"),
        db.UniqueConstraint("branch_id", "idempotency_key", name="uq_sales_branch_idempotency"),
        db.Index("ix_sales_branch_status_created", "branch_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    # Human-facing, e.g. "S000123"
    sale_number = db.Column(db.String(32), nullable=False)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    cashier_id = db.Column(db.Integer, nullable=True)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_mode = db.Column(db.String(16), nullable=False, default="percentage")
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_mode = db.Column(db.String(16), nullable=False, default="percentage")
    total_cents = db.Column(db.Integer, nullable=False)

    payment_method = db.Column(db.String(32), nullable=False)
    amount_received_cents = db.Column(db.Integer, nullable=True)
    change_cents = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=SALE_STATUS_PENDING, index=True)
    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_STATUS_PENDING)
    refunded_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    idempotency_key = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.String(500), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    branch = db.relationship("Branch", backref=db.backref("sales", lazy=True))
    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True))
    items = db.relationship(
        "SaleItem",
        backref="sale",
        lazy=True,
        order_by="SaleItem.line_number",
    )

    def to_dict(self, include_items: bool = True, include_customer: bool = False) -> dict:
        data = {
            "id": self.id,
            "branch_id": self.branch_id,
            "store_id": self.store_id,
            "sale_number": self.sale_number,
            "customer_id": self.customer_id,
            "cashier_id": self.cashier_id,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "tax_mode": self.tax_mode,
            "discount_cents": self.discount_cents,
            "discount_mode": self.discount_mode,
            "total_cents": self.total_cents,
            "payment_method": self.payment_method,
            "amount_received_cents": self.amount_received_cents,
            "change_cents": self.change_cents,
            "status": self.status,
            "payment_status": self.payment_status,
            "refunded_amount_cents": self.refunded_amount_cents,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "refunded_at": to_utc_z(self.refunded_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        if include_customer:
            data["customer"] = self.customer.to_dict() if self.customer is not None else None
        return data


class SaleItem(db.Model):
    """
    Snapshot of a cart line at checkout time.

    name and unit_price_cents are copies, not references, so later catalog
    edits never change historical sales.
    """
    __tablename__ = "sale_items"
    __table_args__ = (
        db.UniqueConstraint("sale_id", "line_number", name="uq_sale_items_sale_line"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    line_discount_cents = db.Column(db.Integer, nullable=False, default=0)
    line_total_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "line_number": self.line_number,
            "product_id": self.product_id,
            "name": self.name,
            "unit_price_cents": self.unit_price_cents,
            "quantity": self.quantity,
            "line_discount_cents": self.line_discount_cents,
            "line_total_cents": self.line_total_cents,
        }


class SaleSequence(db.Model):
    """
    Atomic per-branch sale number counter.

    next_number is only advanced with UPDATE ... SET next_number = next_number + 1.
    """
    __tablename__ = "sale_sequences"
    __table_args__ = (
        db.UniqueConstraint("branch_id", name="uq_sale_sequences_branch"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
