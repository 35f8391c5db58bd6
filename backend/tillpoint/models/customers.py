from __future__ import annotations

from ..extensions import db
from tillpoint.time_utils import to_utc_z


class Customer(db.Model):
    """
    Customer with loyalty balance and lifetime purchase total.

    loyalty_points and total_purchases_cents are shared counters; they are
    changed only by loyalty_service with single UPDATE statements.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("store_id", "email", name="uq_customers_store_email"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)

    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)

    loyalty_points = db.Column(db.Integer, nullable=False, default=0)
    total_purchases_cents = db.Column(db.Integer, nullable=False, default=0)
    last_visit_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    store = db.relationship("Store", backref=db.backref("customers", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "branch_id": self.branch_id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "loyalty_points": self.loyalty_points,
            "total_purchases_cents": self.total_purchases_cents,
            "last_visit_at": to_utc_z(self.last_visit_at),
            "created_at": to_utc_z(self.created_at),
        }


class LoyaltyTransaction(db.Model):
    """
    Append-only ledger of loyalty balance changes.

    TRANSACTION TYPES:
    - EARN: points accrued from a completed sale
    - REVERSE: points taken back by a refund or cancellation

    points_requested is the delta the sale implied; points_applied is what
    actually moved after clamping the balance at zero.
    """
    __tablename__ = "loyalty_transactions"
    __table_args__ = (
        db.Index("ix_loyalty_txns_customer_occurred", "customer_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)

    transaction_type = db.Column(db.String(16), nullable=False, index=True)
    points_requested = db.Column(db.Integer, nullable=False)
    points_applied = db.Column(db.Integer, nullable=False)
    purchases_delta_cents = db.Column(db.Integer, nullable=False)
    points_balance_after = db.Column(db.Integer, nullable=False)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "sale_id": self.sale_id,
            "transaction_type": self.transaction_type,
            "points_requested": self.points_requested,
            "points_applied": self.points_applied,
            "purchases_delta_cents": self.purchases_delta_cents,
            "points_balance_after": self.points_balance_after,
            "occurred_at": to_utc_z(self.occurred_at),
        }
