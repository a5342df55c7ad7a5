# Overview: Flask API routes for raw materials and low-stock alerts.

# backend/app/routes/raw_materials.py
"""
Raw material routes.

SECURITY: All routes require authentication; delete requires super_admin.
"""
from flask import Blueprint, request, jsonify, current_app

from ..extensions import db
from ..models import RawMaterial, ROLE_SUPER_ADMIN
from ..services import catalog_service, stock_service
from ..services.catalog_service import RecordNotFoundError
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_raw_material,
    ValidationError,
    ConflictError,
)
from ..decorators import require_auth, require_role


raw_materials_bp = Blueprint("raw_materials", __name__, url_prefix="/api/raw-materials")

RAW_MATERIAL_POLICY = ModelValidationPolicy(
    writable_fields={"name", "quantity_available", "unit", "cost_per_unit", "low_stock_threshold"},
    required_on_create={"name", "quantity_available", "unit", "cost_per_unit"},
)


@raw_materials_bp.get("")
@require_auth
def list_raw_materials_route():
    return jsonify(catalog_service.list_raw_materials(db.session))


# Must be registered before /<int:material_id>
@raw_materials_bp.get("/low-stock")
@require_auth
def low_stock_route():
    """Materials below their low_stock_threshold, lowest quantity first."""
    return jsonify(stock_service.low_stock(db.session))


@raw_materials_bp.get("/<int:material_id>")
@require_auth
def get_raw_material_route(material_id: int):
    try:
        return jsonify(catalog_service.get_raw_material(db.session, material_id))
    except RecordNotFoundError as e:
        return jsonify({"error": str(e)}), 404


@raw_materials_bp.post("")
@require_auth
def create_raw_material_route():
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=RawMaterial, payload=payload, policy=RAW_MATERIAL_POLICY, partial=False)
        enforce_rules_raw_material(patch)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        created = catalog_service.create_raw_material(
            db.session,
            patch=patch,
            default_threshold=current_app.config.get("DEFAULT_LOW_STOCK_THRESHOLD", 10),
        )
    except Exception:
        current_app.logger.exception("Failed to create raw material")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify(created), 201


@raw_materials_bp.put("/<int:material_id>")
@require_auth
def update_raw_material_route(material_id: int):
    payload = request.get_json(silent=True) or {}
    try:
        patch = validate_payload(model=RawMaterial, payload=payload, policy=RAW_MATERIAL_POLICY, partial=True)
        enforce_rules_raw_material(patch)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    try:
        updated = catalog_service.update_raw_material(db.session, material_id, patch=patch)
    except RecordNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to update raw material")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify(updated)


@raw_materials_bp.delete("/<int:material_id>")
@require_auth
@require_role(ROLE_SUPER_ADMIN)
def delete_raw_material_route(material_id: int):
    try:
        catalog_service.delete_raw_material(db.session, material_id)
    except RecordNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to delete raw material")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify({"message": "Raw material deleted."})
