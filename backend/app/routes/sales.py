# Overview: Flask API routes for checkout and the sales journal.

# backend/app/routes/sales.py
"""
Sales API routes.

Checkout responses:
- 201 {sales, total_bill, total_profit, total_items, transaction_count}
- 400 validation error, or insufficient stock with details = shortfall list
- 404 unknown product
- 409 stock changed during checkout (retryable: true); safe to resubmit
"""

from flask import Blueprint, request, jsonify, current_app

from ..extensions import db
from ..models import ROLE_SUPER_ADMIN
from ..services import checkout_service, sales_service
from ..services.checkout_service import (
    CheckoutError,
    NotFoundError,
    InsufficientStockError,
    ConcurrencyConflictError,
)
from ..services.sales_service import SalesError
from ..validation import ValidationError, coerce_int
from ..decorators import require_auth, require_role


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _checkout_error_response(e: CheckoutError):
    body = {"error": str(e), "retryable": e.retryable}
    if e.details is not None:
        body["details"] = e.details
    if isinstance(e, NotFoundError):
        return jsonify(body), 404
    if isinstance(e, ConcurrencyConflictError):
        return jsonify(body), 409
    if isinstance(e, InsufficientStockError):
        return jsonify(body), 400
    return jsonify(body), 400


@sales_bp.get("")
@require_auth
def list_sales_route():
    """
    Query params (all optional):
    - from / to: ISO-8601 date or datetime, inclusive
    - product_id: int
    """
    try:
        product_id = request.args.get("product_id")
        sales = sales_service.list_sales(
            db.session,
            start=request.args.get("from"),
            end=request.args.get("to"),
            product_id=coerce_int("product_id", product_id) if product_id else None,
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(sales)


@sales_bp.get("/summary")
@require_auth
def sales_summary_route():
    return jsonify(sales_service.sales_summary(db.session))


@sales_bp.get("/by-product")
@require_auth
def sales_by_product_route():
    return jsonify(sales_service.sales_by_product(db.session))


@sales_bp.post("")
@require_auth
def record_sale_route():
    """Single-product sale: {"product_id", "quantity"}. Returns the sale record."""
    data = request.get_json(silent=True) or {}
    try:
        lines = checkout_service.parse_cart_lines([data])
        result = checkout_service.checkout(db.session, lines)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except CheckoutError as e:
        return _checkout_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record sale")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify(result.sales[0]), 201


@sales_bp.post("/checkout")
@require_auth
def checkout_route():
    """Multi-product checkout: {"items": [{"product_id", "quantity"}, ...]}."""
    data = request.get_json(silent=True) or {}
    try:
        lines = checkout_service.parse_cart_lines(data.get("items"))
        result = checkout_service.checkout(db.session, lines)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except CheckoutError as e:
        return _checkout_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to checkout")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify(result.to_dict()), 201


@sales_bp.delete("/<int:sale_id>")
@require_auth
@require_role(ROLE_SUPER_ADMIN)
def delete_sale_route(sale_id: int):
    try:
        sales_service.delete_sale(db.session, sale_id)
    except SalesError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to delete sale")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify({"message": "Sale record deleted."})
