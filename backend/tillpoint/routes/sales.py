# Overview: Flask API routes for checkout and sale lifecycle; parses input and returns JSON responses.

"""Branch-scoped sales API"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_identity
from ..errors import SaleEngineError, ValidationError
from ..services import checkout_service, reporting_service, sales_service
from ..time_utils import parse_iso_datetime
from ..validation import parse_checkout_request, parse_refund_request, parse_status_request


sales_bp = Blueprint("sales", __name__, url_prefix="/api/branches/<int:branch_id>")


def engine_error_response(exc: SaleEngineError):
    return jsonify(exc.to_dict()), exc.http_status


def internal_error_response(what: str):
    current_app.logger.exception(what)
    return jsonify({"error": "INTERNAL_ERROR", "message": "Internal server error"}), 500


@sales_bp.post("/checkout")
@require_identity
def checkout_route(branch_id: int):
    """
    Turn a cart into a completed (or held) sale.

    201 with the new sale; 200 with the original sale when the
    idempotency_key was already used at this branch.
    """
    try:
        checkout_request = parse_checkout_request(request.get_json(silent=True))
        result = checkout_service.checkout(g.operation_context, branch_id, checkout_request)
        return jsonify(result.to_dict()), 200 if result.replayed else 201

    except SaleEngineError as e:
        return engine_error_response(e)
    except Exception:
        return internal_error_response("Checkout failed")


@sales_bp.post("/sales/<int:sale_id>/refund")
@require_identity
def refund_route(branch_id: int, sale_id: int):
    try:
        amount = parse_refund_request(request.get_json(silent=True))
        sale = checkout_service.refund(g.operation_context, branch_id, sale_id, amount)
        return jsonify({"ok": True, "sale": sale.to_dict()}), 200

    except SaleEngineError as e:
        return engine_error_response(e)
    except Exception:
        return internal_error_response("Refund failed")


@sales_bp.post("/sales/<int:sale_id>/status")
@require_identity
def status_route(branch_id: int, sale_id: int):
    try:
        status = parse_status_request(request.get_json(silent=True))
        sale = checkout_service.set_sale_status(g.operation_context, branch_id, sale_id, status)
        return jsonify({"ok": True, "sale": sale.to_dict()}), 200

    except SaleEngineError as e:
        return engine_error_response(e)
    except Exception:
        return internal_error_response("Sale status change failed")


@sales_bp.get("/sales")
@require_identity
def list_sales_route(branch_id: int):
    """
    Recent sales at the branch, newest first, each with its customer.

    Query: limit (default 50, max 200), start, end (ISO-8601, either or
    both), items=1 to include line items.
    """
    try:
        raw_limit = request.args.get("limit", "").strip()
        if raw_limit and not raw_limit.isdigit():
            raise ValidationError("limit must be a positive integer")
        try:
            start = parse_iso_datetime(request.args.get("start"))
            end = parse_iso_datetime(request.args.get("end"))
        except ValueError:
            raise ValidationError("start/end must be ISO-8601 dates or datetimes")

        limit = int(raw_limit) if raw_limit else sales_service.DEFAULT_LIST_LIMIT
        include_items = request.args.get("items") in ("1", "true")
        sales = checkout_service.list_sales(g.operation_context, branch_id, limit, start, end)
        return jsonify({
            "sales": [s.to_dict(include_items=include_items, include_customer=True) for s in sales],
        }), 200

    except SaleEngineError as e:
        return engine_error_response(e)
    except Exception:
        return internal_error_response("Failed to list sales")


@sales_bp.get("/sales/<int:sale_id>")
@require_identity
def get_sale_route(branch_id: int, sale_id: int):
    try:
        sale = checkout_service.get_sale(g.operation_context, branch_id, sale_id)
        return jsonify({"sale": sale.to_dict()}), 200

    except SaleEngineError as e:
        return engine_error_response(e)
    except Exception:
        return internal_error_response("Failed to load sale")


@sales_bp.get("/sales/stats")
@require_identity
def stats_route(branch_id: int):
    """Query: start, end (ISO-8601; both or neither). Defaults to today."""
    try:
        try:
            start = parse_iso_datetime(request.args.get("start"))
            end = parse_iso_datetime(request.args.get("end"))
        except ValueError:
            raise ValidationError("start/end must be ISO-8601 dates or datetimes")

        stats = reporting_service.sale_stats(g.operation_context, branch_id, start, end)
        return jsonify({"stats": stats}), 200

    except SaleEngineError as e:
        return engine_error_response(e)
    except Exception:
        return internal_error_response("Failed to compute sale stats")
