# Overview: Flask API routes for uploading and syncing sales captured while a terminal was offline.

from flask import Blueprint, g, jsonify, request

from ..decorators import require_identity
from ..errors import SaleEngineError
from ..services import offline_service
from ..validation import parse_offline_sale_request, parse_sync_request
from .sales import engine_error_response, internal_error_response


offline_bp = Blueprint("offline", __name__, url_prefix="/api/branches/<int:branch_id>/offline-sales")


@offline_bp.post("")
@require_identity
def queue_route(branch_id: int):
    """
    Body: {"local_id": str, "device_id": str?, "sale": <checkout body>}

    201 when stored, 200 when this local_id was already uploaded.
    """
    try:
        local_id, device_id, body = parse_offline_sale_request(request.get_json(silent=True))
        entry, created = offline_service.queue_offline_sale(g.operation_context, branch_id, local_id, body, device_id)
        return jsonify({"ok": True, "offline_sale": entry.to_dict()}), 201 if created else 200

    except SaleEngineError as e:
        return engine_error_response(e)
    except Exception:
        return internal_error_response("Failed to store offline sale")


@offline_bp.post("/sync")
@require_identity
def sync_route(branch_id: int):
    try:
        retry_failed = parse_sync_request(request.get_json(silent=True))
        results = offline_service.sync_offline_sales(g.operation_context, branch_id, retry_failed)
        return jsonify({"ok": True, "results": results}), 200

    except SaleEngineError as e:
        return engine_error_response(e)
    except Exception:
        return internal_error_response("Offline sync failed")


@offline_bp.get("/status")
@require_identity
def status_route(branch_id: int):
    try:
        counts = offline_service.offline_sync_status(g.operation_context, branch_id)
        return jsonify({"status": counts}), 200

    except SaleEngineError as e:
        return engine_error_response(e)
    except Exception:
        return internal_error_response("Failed to load offline sync status")
