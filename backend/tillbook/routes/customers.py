# Overview: Flask API routes for customers.

from flask import Blueprint, current_app, jsonify, request

from ..models import Customer
from ..services import customer_service
from ..services.errors import TillbookError
from ..validation import ModelValidationPolicy, validate_payload
from .errors import error_response

CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "email", "city", "state"},
    required_on_create={"name"},
)

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("")
def list_customers_route():
    try:
        customers = customer_service.list_customers(segment=request.args.get("segment"))
    except TillbookError as e:
        return error_response(e)
    return jsonify({"items": [c.to_dict() for c in customers], "count": len(customers)}), 200


@customers_bp.post("")
def create_customer_route():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=False)
        customer = customer_service.create_customer(patch=patch)
        return jsonify({"customer": customer.to_dict()}), 201
    except TillbookError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create customer")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.get("/<int:customer_id>")
def get_customer_route(customer_id: int):
    try:
        customer = customer_service.get_customer(customer_id)
    except TillbookError as e:
        return error_response(e)
    return jsonify({"customer": customer.to_dict()}), 200
