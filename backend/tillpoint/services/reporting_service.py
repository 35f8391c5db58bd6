# Overview: Sales statistics for a branch over a half-open time window.

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import func

from ..extensions import db
from ..models import Sale
from ..models.sales import SALE_STATUS_COMPLETED, SALE_STATUS_REFUNDED
from ..errors import ValidationError
from tillpoint.time_utils import prior_window, start_of_day, to_utc_z, utcnow
from .policy import OperationContext, guarded
from .settings_service import BranchSettings


def _window_totals(branch_id: int, start: datetime, end: datetime) -> tuple[int, int]:
    row = (
        db.session.query(
            func.coalesce(func.sum(Sale.total_cents), 0).label("revenue_cents"),
            func.count(Sale.id).label("transaction_count"),
        )
        .filter(
            Sale.branch_id == branch_id,
            Sale.status == SALE_STATUS_COMPLETED,
            Sale.created_at >= start,
            Sale.created_at < end,
        )
        .one()
    )
    return int(row.revenue_cents or 0), int(row.transaction_count or 0)


def _refunded_cents(branch_id: int, start: datetime, end: datetime) -> int:
    value = (
        db.session.query(func.coalesce(func.sum(Sale.refunded_amount_cents), 0))
        .filter(
            Sale.branch_id == branch_id,
            Sale.status == SALE_STATUS_REFUNDED,
            Sale.refunded_at >= start,
            Sale.refunded_at < end,
        )
        .scalar()
    )
    return int(value or 0)


def growth_percent(current: int, prior: int) -> float:
    if prior == 0:
        return 0.0
    return round((current - prior) / prior * 100, 2)


def get_sale_stats(branch_id: int, start: datetime | None = None, end: datetime | None = None) -> dict:
    """
    Revenue, count and average sale over completed sales in [start, end),
    plus growth against the equal-length window just before it.

    Defaults to today (UTC) when no window is given.
    """
    if start is None and end is None:
        start = start_of_day(utcnow())
        end = start + timedelta(days=1)
    elif start is None or end is None:
        raise ValidationError("start and end must be given together")
    if end <= start:
        raise ValidationError("end must be after start")

    revenue, count = _window_totals(branch_id, start, end)
    prior_start, prior_end = prior_window(start, end)
    prior_revenue, prior_count = _window_totals(branch_id, prior_start, prior_end)

    # Half-up to the cent, same as percentage amounts
    avg = (revenue * 2 + count) // (count * 2) if count else 0

    return {
        "branch_id": branch_id,
        "start": to_utc_z(start),
        "end": to_utc_z(end),
        "revenue_cents": revenue,
        "transaction_count": count,
        "avg_sale_cents": avg,
        "refunded_cents": _refunded_cents(branch_id, start, end),
        "prior_revenue_cents": prior_revenue,
        "prior_transaction_count": prior_count,
        "growth_vs_prior_period": growth_percent(revenue, prior_revenue),
        "transaction_growth_vs_prior_period": growth_percent(count, prior_count),
    }


def _do_stats(context: OperationContext, settings: BranchSettings, start: datetime | None, end: datetime | None) -> dict:
    return get_sale_stats(settings.branch_id, start, end)


def sale_stats(context: OperationContext, branch_id: int, start: datetime | None = None, end: datetime | None = None) -> dict:
    return guarded(_do_stats, context)(branch_id, start, end)
