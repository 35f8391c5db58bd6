# Overview: Append-only audit events for sale, stock and loyalty changes.

from __future__ import annotations

from typing import Optional
from datetime import datetime

from ..extensions import db
from ..models import LedgerEvent
from tillpoint.time_utils import utcnow
"""
Ledger invariants

- Append-only: no updates or deletes of existing events.
- No business logic here; callers decide what happened.
- Events are flushed inside the caller's transaction and commit (or roll
  back) together with the change they describe.
"""


def append_ledger_event(
    *,
    branch_id: int,
    event_type: str,
    entity_type: str,
    entity_id: int,
    actor_id: int | None = None,
    sale_id: int | None = None,
    note: Optional[str] = None,
    occurred_at: Optional[datetime] = None,
) -> LedgerEvent:
    ev = LedgerEvent(
        branch_id=branch_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_id=actor_id,
        sale_id=sale_id,
        note=note[:255] if note else None,
        occurred_at=occurred_at or utcnow(),
    )
    db.session.add(ev)
    db.session.flush()
    return ev
