from __future__ import annotations

from ..extensions import db
from tillpoint.time_utils import to_utc_z


class Product(db.Model):
    """
    Product with its authoritative on-hand quantity for one branch.

    stock_on_hand is a counter, not a derived sum. It is only ever changed by
    stock_service through single conditional UPDATE statements, and the
    CHECK constraint backs the never-negative invariant at the database.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "sku", name="uq_products_branch_sku"),
        db.CheckConstraint("stock_on_hand >= 0", name="ck_products_stock_non_negative"),
        db.Index("ix_products_branch_name", "branch_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    stock_on_hand = db.Column(db.Integer, nullable=False, default=0)
    min_stock = db.Column(db.Integer, nullable=False, default=5)
    max_stock = db.Column(db.Integer, nullable=False, default=100)
    reorder_point = db.Column(db.Integer, nullable=False, default=0)

    # Batch / expiry metadata for perishables
    is_perishable = db.Column(db.Boolean, nullable=False, default=False)
    batch_number = db.Column(db.String(64), nullable=True)
    expiry_date = db.Column(db.Date, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    branch = db.relationship("Branch", backref=db.backref("products", lazy=True))

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} stock={self.stock_on_hand} branch_id={self.branch_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "sku": self.sku,
            "name": self.name,
            "price_cents": self.price_cents,
            "is_active": self.is_active,
            "stock_on_hand": self.stock_on_hand,
            "min_stock": self.min_stock,
            "max_stock": self.max_stock,
            "reorder_point": self.reorder_point,
            "is_perishable": self.is_perishable,
            "batch_number": self.batch_number,
            "expiry_date": self.expiry_date.isoformat() if self.expiry_date else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only record of every stock_on_hand mutation.

    MOVEMENT TYPES:
    - SALE: decrement at checkout
    - RESTORE: manual stock correction
    - REFUND_RESTOCK / CANCEL_RESTOCK: restock driven by branch reversal policy

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_product_occurred", "product_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    movement_type = db.Column(db.String(32), nullable=False, index=True)
    quantity_delta = db.Column(db.Integer, nullable=False)
    stock_after = db.Column(db.Integer, nullable=False)

    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    actor_id = db.Column(db.Integer, nullable=True)
    note = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "branch_id": self.branch_id,
            "movement_type": self.movement_type,
            "quantity_delta": self.quantity_delta,
            "stock_after": self.stock_after,
            "sale_id": self.sale_id,
            "actor_id": self.actor_id,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }
