# Overview: Flask API routes for products and their bills of materials.

# backend/app/routes/products.py
"""
Product routes.

manufacturing_cost is derived from the ingredient list; clients send
ingredients as [{"raw_material_id", "quantity_used"}] (JSON body, or a
JSON-encoded string in form submissions).

SECURITY: All routes require authentication; delete requires super_admin.
"""
from flask import Blueprint, request, jsonify, current_app

from ..extensions import db
from ..models import Product, ROLE_SUPER_ADMIN
from ..services import catalog_service
from ..services.catalog_service import RecordNotFoundError
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
    parse_ingredient_lines,
    coerce_number,
    ValidationError,
)
from ..decorators import require_auth, require_role

PRODUCT_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={"name", "photo_url", "selling_price", "ingredients"},
    required_on_create={"name", "selling_price"},
)

PRODUCT_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={"name", "photo_url", "selling_price", "ingredients"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _request_payload() -> dict:
    payload = request.get_json(silent=True)
    if payload is None and request.form:
        payload = request.form.to_dict()
    return payload or {}


@products_bp.get("")
@require_auth
def list_products_route():
    """All products, newest first, each with its ingredient rows."""
    return jsonify(catalog_service.list_products(db.session))


@products_bp.get("/<int:product_id>")
@require_auth
def get_product_route(product_id: int):
    try:
        return jsonify(catalog_service.get_product(db.session, product_id))
    except RecordNotFoundError as e:
        return jsonify({"error": str(e)}), 404


@products_bp.post("")
@require_auth
def create_product_route():
    payload = _request_payload()
    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_CREATE_POLICY, partial=False)
        enforce_rules_product(patch)
        ingredients = parse_ingredient_lines(patch.pop("ingredients", None))
        created = catalog_service.create_product(db.session, patch=patch, ingredients=ingredients)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify(created), 201


@products_bp.put("/<int:product_id>")
@require_auth
def update_product_route(product_id: int):
    """
    Partial update. Sending "ingredients" replaces the whole bill of
    materials and recomputes manufacturing_cost.
    """
    payload = _request_payload()
    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_UPDATE_POLICY, partial=True)
        enforce_rules_product(patch)
        ingredients = None
        if "ingredients" in patch:
            ingredients = parse_ingredient_lines(patch.pop("ingredients"))
        updated = catalog_service.update_product(db.session, product_id, patch=patch, ingredients=ingredients)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except RecordNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify(updated)


@products_bp.delete("/<int:product_id>")
@require_auth
@require_role(ROLE_SUPER_ADMIN)
def delete_product_route(product_id: int):
    """Deletes the product together with its ingredients and sales history."""
    try:
        catalog_service.delete_product(db.session, product_id)
    except RecordNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to delete product")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify({"message": "Product deleted."})


@products_bp.put("/<int:product_id>/ingredients/<int:raw_material_id>")
@require_auth
def set_ingredient_route(product_id: int, raw_material_id: int):
    """Set (insert or replace) how much of one raw material the product uses."""
    payload = request.get_json(silent=True) or {}
    try:
        quantity_used = coerce_number("quantity_used", payload.get("quantity_used"))
        updated = catalog_service.set_ingredient(db.session, product_id, raw_material_id, quantity_used)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except RecordNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to set ingredient")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify(updated)


@products_bp.delete("/<int:product_id>/ingredients/<int:raw_material_id>")
@require_auth
def remove_ingredient_route(product_id: int, raw_material_id: int):
    try:
        updated = catalog_service.remove_ingredient(db.session, product_id, raw_material_id)
    except RecordNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to remove ingredient")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify(updated)
