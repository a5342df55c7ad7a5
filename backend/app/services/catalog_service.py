# Overview: Service-layer operations for the catalog (products, raw materials, bills of materials).

"""
Catalog Service

Owns Product, RawMaterial and ProductIngredient. Every function takes the
SQLAlchemy session explicitly; write operations run in their own
transaction (atomic) and retry on lock/version conflicts.

COSTING:
- Product.manufacturing_cost = sum(quantity_used * cost_per_unit) over the
  product's ingredient rows, evaluated at write time.
- Recomputed on every ingredient-set write (create with ingredients,
  replace, set_ingredient, remove_ingredient). Later changes to a raw
  material's cost_per_unit do not ripple into existing products until their
  ingredient set is written again.
"""

from __future__ import annotations

import logging
from typing import Iterable, NamedTuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models import Product, ProductIngredient, RawMaterial
from ..validation import ValidationError, ConflictError
from .concurrency import atomic, run_with_retry

logger = logging.getLogger(__name__)

RAW_MATERIAL_MUTABLE_FIELDS = {"name", "quantity_available", "unit", "cost_per_unit", "low_stock_threshold"}
PRODUCT_MUTABLE_FIELDS = {"name", "photo_url", "selling_price"}


class CatalogError(Exception):
    """Raised for catalog operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class RecordNotFoundError(CatalogError):
    """Product or raw material id does not exist."""


class BomLine(NamedTuple):
    product_id: int
    raw_material_id: int
    quantity_used: float


# ---------------------------------------------------------------------------
# Checkout-facing reads (no commit, caller's transaction)
# ---------------------------------------------------------------------------

def resolve_products(session: Session, product_ids: Iterable[int]) -> list[Product]:
    """Products for the given ids; ids that do not resolve are simply absent."""
    ids = sorted(set(product_ids))
    if not ids:
        return []
    # populate_existing: prices must come from this transaction, not the identity map
    return session.query(Product).populate_existing().filter(Product.id.in_(ids)).all()


def ingredients_for_products(session: Session, product_ids: Iterable[int]) -> list[BomLine]:
    ids = sorted(set(product_ids))
    if not ids:
        return []
    rows = (
        session.query(
            ProductIngredient.product_id,
            ProductIngredient.raw_material_id,
            ProductIngredient.quantity_used,
        )
        .filter(ProductIngredient.product_id.in_(ids))
        .order_by(ProductIngredient.product_id.asc(), ProductIngredient.raw_material_id.asc())
        .all()
    )
    return [BomLine(r.product_id, r.raw_material_id, float(r.quantity_used)) for r in rows]


def raw_materials_by_id(session: Session, material_ids: Iterable[int]) -> dict[int, RawMaterial]:
    ids = sorted(set(material_ids))
    if not ids:
        return {}
    return {m.id: m for m in session.query(RawMaterial).filter(RawMaterial.id.in_(ids)).all()}


# ---------------------------------------------------------------------------
# Costing
# ---------------------------------------------------------------------------

def compute_manufacturing_cost(session: Session, product_id: int) -> float:
    cost = (
        session.query(
            func.coalesce(func.sum(ProductIngredient.quantity_used * RawMaterial.cost_per_unit), 0)
        )
        .join(RawMaterial, RawMaterial.id == ProductIngredient.raw_material_id)
        .filter(ProductIngredient.product_id == product_id)
        .scalar()
    )
    return float(cost or 0)


def _refresh_cost(session: Session, product: Product) -> None:
    session.flush()
    product.manufacturing_cost = compute_manufacturing_cost(session, product.id)


def _replace_ingredients(session: Session, product: Product, lines: list[tuple[int, float]]) -> None:
    materials = raw_materials_by_id(session, [material_id for material_id, _ in lines])
    missing = [material_id for material_id, _ in lines if material_id not in materials]
    if missing:
        raise ValidationError("One or more ingredients reference invalid raw materials.")

    # Deletes must reach the DB before the inserts or the unique pair collides
    product.ingredients.clear()
    session.flush()
    for material_id, quantity_used in lines:
        product.ingredients.append(
            ProductIngredient(raw_material_id=material_id, quantity_used=quantity_used)
        )
    _refresh_cost(session, product)


def _get_product(session: Session, product_id: int) -> Product:
    product = session.get(Product, product_id)
    if product is None:
        raise RecordNotFoundError("Product not found.", details={"product_id": product_id})
    return product


def _get_raw_material(session: Session, material_id: int) -> RawMaterial:
    material = session.get(RawMaterial, material_id)
    if material is None:
        raise RecordNotFoundError("Raw material not found.", details={"raw_material_id": material_id})
    return material


# ---------------------------------------------------------------------------
# Raw materials
# ---------------------------------------------------------------------------

def list_raw_materials(session: Session) -> list[dict]:
    materials = session.query(RawMaterial).order_by(
        RawMaterial.created_at.desc(), RawMaterial.id.desc()
    ).all()
    return [m.to_dict() for m in materials]


def get_raw_material(session: Session, material_id: int) -> dict:
    return _get_raw_material(session, material_id).to_dict()


def create_raw_material(session: Session, *, patch: dict, default_threshold: float = 10) -> dict:
    """Create from a validated patch; low_stock_threshold falls back to default_threshold."""
    def _op():
        with atomic(session):
            material = RawMaterial(
                name=patch["name"],
                quantity_available=patch["quantity_available"],
                unit=patch["unit"],
                cost_per_unit=patch["cost_per_unit"],
                low_stock_threshold=(
                    patch["low_stock_threshold"]
                    if patch.get("low_stock_threshold") is not None
                    else default_threshold
                ),
            )
            session.add(material)
        return material

    material = run_with_retry(session, _op)
    logger.info("raw material %s created (%s %s)", material.id, material.quantity_available, material.unit)
    return material.to_dict()


def update_raw_material(session: Session, material_id: int, *, patch: dict) -> dict:
    """
    Admin edit. May overwrite quantity_available directly (restock or
    stocktake correction); checkout never goes through here.
    """
    def _op():
        with atomic(session):
            material = _get_raw_material(session, material_id)
            for k, v in patch.items():
                if k not in RAW_MATERIAL_MUTABLE_FIELDS or v is None:
                    continue
                setattr(material, k, v)
        return material

    material = run_with_retry(session, _op)
    if material.is_low_stock:
        logger.warning(
            "raw material %s (%s) below threshold: %s < %s",
            material.id, material.name, material.quantity_available, material.low_stock_threshold,
        )
    return material.to_dict()


def delete_raw_material(session: Session, material_id: int) -> None:
    def _op():
        with atomic(session):
            material = _get_raw_material(session, material_id)
            in_use = (
                session.query(ProductIngredient.id)
                .filter(ProductIngredient.raw_material_id == material_id)
                .first()
            )
            if in_use is not None:
                raise ConflictError(
                    "Raw material is used by one or more products; remove it from their ingredients first."
                )
            session.delete(material)

    run_with_retry(session, _op)


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------

def list_products(session: Session) -> list[dict]:
    products = session.query(Product).order_by(Product.created_at.desc(), Product.id.desc()).all()
    return [p.to_dict() for p in products]


def get_product(session: Session, product_id: int) -> dict:
    return _get_product(session, product_id).to_dict()


def create_product(session: Session, *, patch: dict, ingredients: list[tuple[int, float]] | None = None) -> dict:
    """
    Create a product and (optionally) its bill of materials in one transaction.

    manufacturing_cost starts at 0 and is derived from the ingredients.
    """
    def _op():
        with atomic(session):
            product = Product(
                name=patch["name"],
                photo_url=patch.get("photo_url"),
                selling_price=patch["selling_price"],
                manufacturing_cost=0,
                sell_count=0,
            )
            session.add(product)
            session.flush()
            _replace_ingredients(session, product, ingredients or [])
        return product

    product = run_with_retry(session, _op)
    logger.info("product %s created, manufacturing_cost=%s", product.id, product.manufacturing_cost)
    return product.to_dict()


def update_product(
    session: Session,
    product_id: int,
    *,
    patch: dict,
    ingredients: list[tuple[int, float]] | None = None,
) -> dict:
    """
    Partial update.

    ingredients=None leaves the bill of materials and its cost alone; a list,
    even an empty one, replaces it and the cost is recomputed from the new rows.
    manufacturing_cost is never taken from the patch.
    """
    def _op():
        with atomic(session):
            product = _get_product(session, product_id)
            for k, v in patch.items():
                if k not in PRODUCT_MUTABLE_FIELDS:
                    continue
                if v is None and k != "photo_url":
                    continue
                setattr(product, k, v)
            if ingredients is not None:
                _replace_ingredients(session, product, ingredients)
        return product

    return run_with_retry(session, _op).to_dict()


def delete_product(session: Session, product_id: int) -> None:
    """Deletes the product, its ingredient rows and its sales (FK cascade)."""
    def _op():
        with atomic(session):
            session.delete(_get_product(session, product_id))

    run_with_retry(session, _op)


def set_ingredient(session: Session, product_id: int, raw_material_id: int, quantity_used: float) -> dict:
    """Upsert one bill-of-materials row; the existing quantity for the pair is replaced."""
    if quantity_used <= 0:
        raise ValidationError("quantity_used must be greater than 0.")

    def _op():
        with atomic(session):
            product = _get_product(session, product_id)
            _get_raw_material(session, raw_material_id)
            row = (
                session.query(ProductIngredient)
                .filter_by(product_id=product_id, raw_material_id=raw_material_id)
                .first()
            )
            if row is None:
                product.ingredients.append(
                    ProductIngredient(raw_material_id=raw_material_id, quantity_used=quantity_used)
                )
            else:
                row.quantity_used = quantity_used
            _refresh_cost(session, product)
        return product

    return run_with_retry(session, _op).to_dict()


def remove_ingredient(session: Session, product_id: int, raw_material_id: int) -> dict:
    def _op():
        with atomic(session):
            product = _get_product(session, product_id)
            row = (
                session.query(ProductIngredient)
                .filter_by(product_id=product_id, raw_material_id=raw_material_id)
                .first()
            )
            if row is None:
                raise RecordNotFoundError(
                    "Ingredient not found.",
                    details={"product_id": product_id, "raw_material_id": raw_material_id},
                )
            product.ingredients.remove(row)
            _refresh_cost(session, product)
        return product

    return run_with_retry(session, _op).to_dict()
