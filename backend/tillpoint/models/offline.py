from __future__ import annotations

import json

from ..extensions import db
from tillpoint.time_utils import to_utc_z


OFFLINE_STATUS_PENDING = "pending"
OFFLINE_STATUS_SYNCED = "synced"
OFFLINE_STATUS_FAILED = "failed"

OFFLINE_STATUSES = (
    OFFLINE_STATUS_PENDING,
    OFFLINE_STATUS_SYNCED,
    OFFLINE_STATUS_FAILED,
)


class OfflineSale(db.Model):
    """
    A checkout captured by a terminal while it had no connection.

    The body is kept exactly as the terminal would have posted it and is
    replayed through checkout on sync, with local_id as the idempotency key,
    so a sale that reached the server twice is still only recorded once.

    - pending: not yet replayed, or the last attempt hit a transient error
    - synced: synced_sale_id points at the recorded sale
    - failed: checkout rejected the cart; error_code/error_message say why
    """
    __tablename__ = "offline_sales"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "local_id", name="uq_offline_sales_branch_local"),
        db.Index("ix_offline_sales_branch_status", "branch_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    # Terminal-generated id, unique per branch
    local_id = db.Column(db.String(128), nullable=False)
    device_id = db.Column(db.String(128), nullable=True)
    cashier_id = db.Column(db.Integer, nullable=True)

    # Checkout body as JSON
    payload = db.Column(db.Text, nullable=False)

    status = db.Column(db.String(16), nullable=False, default=OFFLINE_STATUS_PENDING, index=True)
    sync_attempts = db.Column(db.Integer, nullable=False, default=0)
    last_sync_attempt_at = db.Column(db.DateTime(timezone=True), nullable=True)
    synced_sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True)
    error_code = db.Column(db.String(64), nullable=True)
    error_message = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def body(self) -> dict:
        return json.loads(self.payload)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "store_id": self.store_id,
            "local_id": self.local_id,
            "device_id": self.device_id,
            "cashier_id": self.cashier_id,
            "status": self.status,
            "sync_attempts": self.sync_attempts,
            "last_sync_attempt_at": to_utc_z(self.last_sync_attempt_at),
            "synced_sale_id": self.synced_sale_id,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "created_at": to_utc_z(self.created_at),
        }
