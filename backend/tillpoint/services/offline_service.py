# Overview: Queue of checkouts captured offline by terminals, replayed through checkout on sync.

"""
Offline sale queue

A terminal that loses its connection keeps selling and later uploads each
sale as an OfflineSale entry. Sync replays the stored checkout body through
the normal checkout path with local_id as the idempotency key, so:

- an entry uploaded twice is stored once (unique per branch on local_id)
- an entry replayed twice records one sale (the second replay finds it)
- stock, pricing, sequencing and loyalty follow the online rules exactly

Per-entry outcome after a sync:
- synced: the sale exists; synced_sale_id points at it
- failed: checkout refused the cart (stock, policy, payment, validation)
- pending: a transient storage error; the next sync tries again
"""

from __future__ import annotations

import json
from dataclasses import replace

from flask import current_app
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import PersistenceFailure, SaleEngineError
from ..models import OfflineSale
from ..models.offline import (
    OFFLINE_STATUS_FAILED,
    OFFLINE_STATUS_PENDING,
    OFFLINE_STATUS_SYNCED,
    OFFLINE_STATUSES,
)
from ..validation import parse_checkout_request
from tillpoint.time_utils import utcnow
from . import checkout_service
from .concurrency import run_in_write_transaction
from .policy import OperationContext, guarded
from .settings_service import BranchSettings

# Entries replayed per sync call
MAX_SYNC_BATCH = 100


def _json_dumps(value) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def _find(branch_id: int, local_id: str) -> OfflineSale | None:
    return db.session.query(OfflineSale).filter_by(branch_id=branch_id, local_id=local_id).first()


def _do_queue(
    context: OperationContext,
    settings: BranchSettings,
    local_id: str,
    body: dict,
    device_id: str | None,
) -> tuple[OfflineSale, bool]:
    parse_checkout_request(body)
    existing = _find(settings.branch_id, local_id)
    if existing is not None:
        return existing, False

    def _op() -> int:
        entry = OfflineSale(
            branch_id=settings.branch_id,
            store_id=settings.store_id,
            local_id=local_id,
            device_id=device_id,
            cashier_id=context.identity.user_id,
            payload=_json_dumps(body),
            status=OFFLINE_STATUS_PENDING,
            sync_attempts=0,
        )
        db.session.add(entry)
        db.session.flush()
        return entry.id

    try:
        entry_id = run_in_write_transaction(_op)
    except PersistenceFailure as exc:
        # Same local_id uploaded concurrently from another request
        if isinstance(exc.__cause__, IntegrityError):
            existing = _find(settings.branch_id, local_id)
            if existing is not None:
                return existing, False
        raise

    current_app.logger.info("Offline sale queued: branch=%s local_id=%s device=%s", settings.branch_id, local_id, device_id)
    return db.session.get(OfflineSale, entry_id), True


def _mark(entry_id: int, status: str, **values) -> None:
    def _op() -> None:
        db.session.execute(
            update(OfflineSale)
            .where(OfflineSale.id == entry_id)
            .values(
                status=status,
                sync_attempts=OfflineSale.sync_attempts + 1,
                last_sync_attempt_at=utcnow(),
                **values,
            )
            .execution_options(synchronize_session=False)
        )

    run_in_write_transaction(_op)


def _replay(context: OperationContext, settings: BranchSettings, entry: OfflineSale) -> dict:
    entry_id, local_id = entry.id, entry.local_id
    try:
        request = replace(parse_checkout_request(entry.body()), idempotency_key=local_id)
        result = checkout_service.checkout(context, settings.branch_id, request)
    except PersistenceFailure as exc:
        current_app.logger.warning("Offline sale left pending: branch=%s local_id=%s reason=%s", settings.branch_id, local_id, exc.message)
        _mark(entry_id, OFFLINE_STATUS_PENDING, error_code=exc.code, error_message=exc.message)
        return {"local_id": local_id, "success": False, "status": OFFLINE_STATUS_PENDING, "error": exc.to_dict()}
    except SaleEngineError as exc:
        current_app.logger.info("Offline sale rejected: branch=%s local_id=%s error=%s", settings.branch_id, local_id, exc.code)
        _mark(entry_id, OFFLINE_STATUS_FAILED, error_code=exc.code, error_message=exc.message)
        return {"local_id": local_id, "success": False, "status": OFFLINE_STATUS_FAILED, "error": exc.to_dict()}

    _mark(entry_id, OFFLINE_STATUS_SYNCED, synced_sale_id=result.sale_id, error_code=None, error_message=None)
    return {
        "local_id": local_id,
        "success": True,
        "status": OFFLINE_STATUS_SYNCED,
        "sale_id": result.sale_id,
        "sale_number": result.sale_number,
        "replayed": result.replayed,
    }


def _do_sync(context: OperationContext, settings: BranchSettings, retry_failed: bool) -> list[dict]:
    statuses = [OFFLINE_STATUS_PENDING]
    if retry_failed:
        statuses.append(OFFLINE_STATUS_FAILED)

    entries = (
        db.session.query(OfflineSale)
        .filter(OfflineSale.branch_id == settings.branch_id, OfflineSale.status.in_(statuses))
        .order_by(OfflineSale.id.asc())
        .limit(MAX_SYNC_BATCH)
        .all()
    )
    results = [_replay(context, settings, entry) for entry in entries]

    current_app.logger.info(
        "Offline sync finished: branch=%s processed=%s synced=%s",
        settings.branch_id, len(results), sum(1 for r in results if r["success"]),
    )
    return results


def _do_status(context: OperationContext, settings: BranchSettings) -> dict:
    counts = dict.fromkeys(OFFLINE_STATUSES, 0)
    rows = (
        db.session.query(OfflineSale.status, func.count(OfflineSale.id))
        .filter(OfflineSale.branch_id == settings.branch_id)
        .group_by(OfflineSale.status)
        .all()
    )
    for status, count in rows:
        counts[status] = int(count)
    return counts


def queue_offline_sale(
    context: OperationContext,
    branch_id: int,
    local_id: str,
    body: dict,
    device_id: str | None = None,
) -> tuple[OfflineSale, bool]:
    """Store one offline checkout. Returns (entry, created); created is False for a repeat upload."""
    return guarded(_do_queue, context)(branch_id, local_id, body, device_id)


def sync_offline_sales(context: OperationContext, branch_id: int, retry_failed: bool = False) -> list[dict]:
    return guarded(_do_sync, context)(branch_id, retry_failed)


def offline_sync_status(context: OperationContext, branch_id: int) -> dict:
    return guarded(_do_status, context)(branch_id)
