"""
Subscription gate backed by the stores table.

Billing lives elsewhere; this engine only needs a yes/no answer to
"is this tenant blocked?" before every operation. A store is blocked when:
1. it was blocked or banned manually, or
2. the later of subscription_expires_at / trial_ends_at is more than the
   grace period in the past.

A store with neither date set has never been put on a plan and is not blocked.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from ..extensions import db
from ..models import Store
from tillpoint.time_utils import utcnow

DEFAULT_GRACE_DAYS = 7


@dataclass(frozen=True)
class SubscriptionStatus:
    is_active: bool
    is_expired: bool
    is_blocked: bool
    days_remaining: int
    message: str | None = None

    def to_dict(self) -> dict:
        return {
            "is_active": self.is_active,
            "is_expired": self.is_expired,
            "is_blocked": self.is_blocked,
            "days_remaining": self.days_remaining,
            "message": self.message,
        }


def subscription_status(store: Store | None, *, now: datetime, grace_days: int = DEFAULT_GRACE_DAYS) -> SubscriptionStatus:
    if store is None:
        return SubscriptionStatus(False, True, True, 0, "Store not found")

    if store.is_banned:
        return SubscriptionStatus(False, True, True, 0, "Store is banned")
    if store.is_blocked:
        return SubscriptionStatus(False, True, True, 0, "Subscription is blocked")

    dates = [d for d in (store.subscription_expires_at, store.trial_ends_at) if d is not None]
    if not dates:
        return SubscriptionStatus(True, False, False, 0)

    expiry = max(dates)
    grace_end = expiry + timedelta(days=grace_days)
    days_remaining = max(0, (expiry - now).days)

    if now <= expiry:
        return SubscriptionStatus(True, False, False, days_remaining)
    if now <= grace_end:
        left = (grace_end - now).days + 1
        return SubscriptionStatus(True, True, False, 0, f"Subscription expired. {left} days remaining in grace period.")
    return SubscriptionStatus(False, True, True, 0, "Subscription expired. Please renew to continue using the service.")


class StoreSubscriptionGate:
    """Default gate: reads the store row on every check."""

    def __init__(self, grace_days: int = DEFAULT_GRACE_DAYS):
        self.grace_days = grace_days

    def status(self, store_id: int) -> SubscriptionStatus:
        store = db.session.query(Store).filter_by(id=store_id).first()
        return subscription_status(store, now=utcnow(), grace_days=self.grace_days)

    def is_blocked(self, store_id: int) -> bool:
        return self.status(store_id).is_blocked

    def reason(self, store_id: int) -> str | None:
        return self.status(store_id).message
