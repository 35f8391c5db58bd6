from __future__ import annotations

from ..extensions import db
from tillpoint.time_utils import to_utc_z


class LedgerEvent(db.Model):
    """
    Append-only audit log of engine events (sale.completed, sale.refunded, ...).

    Written inside the same DB transaction as the change it records, so a
    rolled-back checkout leaves no event behind.
    """
    __tablename__ = "ledger_events"
    __table_args__ = (
        db.Index("ix_ledger_events_branch_occurred", "branch_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    event_type = db.Column(db.String(64), nullable=False, index=True)
    entity_type = db.Column(db.String(32), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)

    actor_id = db.Column(db.Integer, nullable=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    note = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "event_type": self.event_type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor_id": self.actor_id,
            "sale_id": self.sale_id,
            "note": self.note,
            "occurred_at": to_utc_z(self.occurred_at),
        }
