from __future__ import annotations

from ..extensions import db
from tillpoint.time_utils import to_utc_z


class Store(db.Model):
    """
    Tenant root. Every branch, product, customer and sale belongs to one store.

    Subscription fields are read by the default subscription gate; billing
    itself lives outside this engine.
    """
    __tablename__ = "stores"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=True, unique=True, index=True)

    is_blocked = db.Column(db.Boolean, nullable=False, default=False)
    is_banned = db.Column(db.Boolean, nullable=False, default=False)
    subscription_expires_at = db.Column(db.DateTime(timezone=True), nullable=True)
    trial_ends_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Store id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "is_blocked": self.is_blocked,
            "is_banned": self.is_banned,
            "subscription_expires_at": to_utc_z(self.subscription_expires_at),
            "trial_ends_at": to_utc_z(self.trial_ends_at),
            "created_at": to_utc_z(self.created_at),
        }


class Branch(db.Model):
    """
    Physical retail location. Stock, sale numbering and POS configuration
    are isolated per branch.

    The POS/inventory settings columns are read through
    settings_service.load_branch_settings into an immutable BranchSettings
    value; services never read these columns directly.
    """
    __tablename__ = "branches"
    __table_args__ = (
        db.UniqueConstraint("store_id", "name", name="uq_branches_store_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    code = db.Column(db.String(32), nullable=True)

    # POS settings
    default_tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)  # 750 = 7.50%
    tax_included = db.Column(db.Boolean, nullable=False, default=False)
    allow_discounts = db.Column(db.Boolean, nullable=False, default=True)
    max_discount_percent = db.Column(db.Integer, nullable=False, default=100)
    require_customer_info = db.Column(db.Boolean, nullable=False, default=False)
    allowed_payment_methods = db.Column(db.String(255), nullable=False, default="cash,card,mobile_money")
    loyalty_program = db.Column(db.Boolean, nullable=False, default=False)

    # Inventory settings
    low_stock_threshold = db.Column(db.Integer, nullable=False, default=10)

    # Post-sale reversal policy
    restock_on_refund = db.Column(db.Boolean, nullable=False, default=False)
    restock_on_cancel = db.Column(db.Boolean, nullable=False, default=False)
    reverse_loyalty_on_cancel = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    store = db.relationship("Store", backref=db.backref("branches", lazy=True))

    def __repr__(self) -> str:
        return f"<Branch id={self.id} name={self.name!r} store_id={self.store_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "name": self.name,
            "code": self.code,
            "default_tax_rate_bps": self.default_tax_rate_bps,
            "tax_included": self.tax_included,
            "allow_discounts": self.allow_discounts,
            "max_discount_percent": self.max_discount_percent,
            "require_customer_info": self.require_customer_info,
            "allowed_payment_methods": self.allowed_payment_methods,
            "loyalty_program": self.loyalty_program,
            "low_stock_threshold": self.low_stock_threshold,
            "restock_on_refund": self.restock_on_refund,
            "restock_on_cancel": self.restock_on_cancel,
            "reverse_loyalty_on_cancel": self.reverse_loyalty_on_cancel,
            "created_at": to_utc_z(self.created_at),
        }
