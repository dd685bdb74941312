# Overview: Flask API routes for catalog operations; parses input and returns JSON responses.

from flask import Blueprint, current_app, jsonify, request

from ..models import Product
from ..services import catalog_service
from ..services.errors import TillbookError
from ..validation import ModelValidationPolicy, enforce_rules_product, validate_payload
from .errors import error_response

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={"sku", "name", "category", "cost_cents", "price_cents", "stock", "is_active"},
    required_on_create={"name", "price_cents"},
)

# Stock only moves through restock and order lines
PRODUCT_PATCH_POLICY = ModelValidationPolicy(
    writable_fields={"sku", "name", "category", "cost_cents", "price_cents", "is_active"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
def list_products_route():
    """
    List products.

    Query params:
    - category: str (optional)
    - active: "true" to hide inactive products
    """
    category = request.args.get("category")
    active_only = request.args.get("active", "false").lower() == "true"
    products = catalog_service.list_products(category=category, active_only=active_only)
    return jsonify({"items": [p.to_dict() for p in products], "count": len(products)}), 200


@products_bp.post("")
def create_product_route():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
        product = catalog_service.create_product(patch=patch)
        return jsonify({"product": product.to_dict()}), 201
    except TillbookError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/<int:product_id>")
def get_product_route(product_id: int):
    try:
        product = catalog_service.get_product(product_id)
    except TillbookError as e:
        return error_response(e)
    return jsonify({"product": product.to_dict()}), 200


@products_bp.patch("/<int:product_id>")
def update_product_route(product_id: int):
    """
    Change price, cost or descriptive fields.

    Lines already sold keep the price and cost they were committed with.
    """
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_PATCH_POLICY, partial=True)
        enforce_rules_product(patch)
        product = catalog_service.update_product(product_id, patch=patch)
        return jsonify({"product": product.to_dict()}), 200
    except TillbookError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.post("/<int:product_id>/restock")
def restock_route(product_id: int):
    data = request.get_json(silent=True) or {}
    try:
        product = catalog_service.restock(product_id, data.get("quantity"))
        return jsonify({"product": product.to_dict()}), 200
    except TillbookError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to restock product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.delete("/<int:product_id>")
def delete_product_route(product_id: int):
    """Delete a product. 409 once any order line references it."""
    try:
        catalog_service.delete_product(product_id)
    except TillbookError as e:
        return error_response(e)
    return jsonify({"ok": True}), 200
