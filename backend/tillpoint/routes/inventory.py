# Overview: Flask API routes for branch stock alerts and manual corrections.

from flask import Blueprint, g, jsonify, request

from ..decorators import require_identity
from ..errors import SaleEngineError
from ..services import stock_service
from ..validation import parse_restore_request
from .sales import engine_error_response, internal_error_response


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/branches/<int:branch_id>/stock")


@inventory_bp.get("/alerts")
@require_identity
def alerts_route(branch_id: int):
    try:
        alerts = stock_service.branch_alerts(g.operation_context, branch_id)
        return jsonify({"alerts": [a.to_dict() for a in alerts]}), 200

    except SaleEngineError as e:
        return engine_error_response(e)
    except Exception:
        return internal_error_response("Failed to list stock alerts")


@inventory_bp.post("/<int:product_id>/restore")
@require_identity
def restore_route(branch_id: int, product_id: int):
    """
    Manual stock correction.

    Available to: admin, manager
    """
    try:
        quantity, note = parse_restore_request(request.get_json(silent=True))
        product = stock_service.restore_stock(g.operation_context, branch_id, product_id, quantity, note)
        return jsonify({"product": product.to_dict()}), 200

    except SaleEngineError as e:
        return engine_error_response(e)
    except Exception:
        return internal_error_response("Stock restore failed")
