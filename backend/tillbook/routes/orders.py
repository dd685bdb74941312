# Overview: Flask API routes for orders; the line endpoint is the sale commit.

from flask import Blueprint, current_app, jsonify, request

from ..services import order_service
from ..services.errors import InvalidArgument, TillbookError
from ..time_utils import parse_iso_datetime
from .errors import error_response

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.post("")
def create_order_route():
    """
    Open a Pending order.

    Body: {"customer_id": int, "created_at": ISO-8601 (optional, for backfills)}
    """
    data = request.get_json(silent=True) or {}
    try:
        customer_id = data.get("customer_id")
        if not isinstance(customer_id, int) or isinstance(customer_id, bool):
            raise InvalidArgument("customer_id required")
        try:
            created_at = parse_iso_datetime(data.get("created_at"))
        except (TypeError, ValueError):
            raise InvalidArgument("created_at must be an ISO-8601 datetime")

        order = order_service.create_order(customer_id, created_at=created_at)
        return jsonify({"order": order.to_dict()}), 201
    except TillbookError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id)
    except TillbookError as e:
        return error_response(e)
    lines = order_service.list_lines(order_id)
    return jsonify({
        "order": order.to_dict(),
        "lines": [line.to_dict() for line in lines],
    }), 200


@orders_bp.post("/<int:order_id>/lines")
def commit_line_route(order_id: int):
    """
    Sell product_id x quantity on the order.

    409 InsufficientStock carries product_id, available and requested.
    503 Contention is retryable with the same body.
    """
    data = request.get_json(silent=True) or {}
    try:
        product_id = data.get("product_id")
        if not isinstance(product_id, int) or isinstance(product_id, bool):
            raise InvalidArgument("product_id required")

        line = order_service.commit_line(order_id, product_id, data.get("quantity"))
        return jsonify({"line": line.to_dict()}), 201
    except TillbookError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to commit order line")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/pay")
def pay_order_route(order_id: int):
    try:
        order = order_service.mark_paid(order_id)
    except TillbookError as e:
        return error_response(e)
    return jsonify({"order": order.to_dict()}), 200


@orders_bp.post("/<int:order_id>/cancel")
def cancel_order_route(order_id: int):
    try:
        order = order_service.cancel_order(order_id)
    except TillbookError as e:
        return error_response(e)
    return jsonify({"order": order.to_dict()}), 200


@orders_bp.delete("/<int:order_id>")
def delete_order_route(order_id: int):
    try:
        order_service.delete_order(order_id)
    except TillbookError as e:
        return error_response(e)
    return jsonify({"ok": True}), 200
