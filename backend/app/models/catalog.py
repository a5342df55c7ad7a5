from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z


class RawMaterial(db.Model):
    """
    Raw material stock row.

    quantity_available is the live on-hand figure (continuous unit). Checkout
    is the only code path that decrements it, and only through the
    conditional decrement in stock_service; admins may overwrite it directly.
    """
    __tablename__ = "raw_materials"
    __table_args__ = (
        db.CheckConstraint("quantity_available >= 0", name="ck_raw_materials_qty_nonnegative"),
        db.CheckConstraint("cost_per_unit >= 0", name="ck_raw_materials_cost_nonnegative"),
        db.Index("ix_raw_materials_low_stock", "quantity_available", "low_stock_threshold"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)

    quantity_available = db.Column(db.Float, nullable=False, default=0)
    unit = db.Column(db.String(32), nullable=False)
    cost_per_unit = db.Column(db.Float, nullable=False, default=0)
    low_stock_threshold = db.Column(db.Float, nullable=False, default=10)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<RawMaterial id={self.id} name={self.name!r} available={self.quantity_available} {self.unit}>"

    @property
    def is_low_stock(self) -> bool:
        return self.quantity_available < self.low_stock_threshold

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "quantity_available": self.quantity_available,
            "unit": self.unit,
            "cost_per_unit": self.cost_per_unit,
            "low_stock_threshold": self.low_stock_threshold,
            "is_low_stock": self.is_low_stock,
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """
    Menu product.

    manufacturing_cost is derived: sum(quantity_used * cost_per_unit) over the
    product's ingredient rows, recomputed by catalog_service on every
    ingredient-set write. sell_count only ever grows (checkout increments it).
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("selling_price >= 0", name="ck_products_price_nonnegative"),
        db.Index("ix_products_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    photo_url = db.Column(db.String(512), nullable=True)

    manufacturing_cost = db.Column(db.Float, nullable=False, default=0)
    selling_price = db.Column(db.Float, nullable=False, default=0)
    sell_count = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    ingredients = db.relationship(
        "ProductIngredient",
        back_populates="product",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy=True,
    )
    sales = db.relationship(
        "Sale",
        back_populates="product",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} price={self.selling_price}>"

    @property
    def profit_per_item(self) -> float:
        return (self.selling_price or 0) - (self.manufacturing_cost or 0)

    def to_dict(self, include_ingredients: bool = True) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "photo_url": self.photo_url,
            "manufacturing_cost": self.manufacturing_cost,
            "selling_price": self.selling_price,
            "profit_per_item": self.profit_per_item,
            "sell_count": self.sell_count,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
        }
        if include_ingredients:
            rows = sorted(self.ingredients, key=lambda i: (i.raw_material.name, i.raw_material_id))
            data["ingredients"] = [row.to_dict() for row in rows]
        return data


class ProductIngredient(db.Model):
    """Bill-of-materials row: how much of one raw material one unit of a product consumes."""
    __tablename__ = "product_ingredients"
    __table_args__ = (
        # At most one row per (product, raw material); re-specifying replaces it
        db.UniqueConstraint("product_id", "raw_material_id", name="uq_product_ingredients_product_material"),
        db.CheckConstraint("quantity_used > 0", name="ck_product_ingredients_qty_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(
        db.Integer,
        db.ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    raw_material_id = db.Column(
        db.Integer,
        db.ForeignKey("raw_materials.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    quantity_used = db.Column(db.Float, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", back_populates="ingredients")
    raw_material = db.relationship("RawMaterial", lazy="joined")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "raw_material_id": self.raw_material_id,
            "raw_material_name": self.raw_material.name if self.raw_material else None,
            "raw_material_unit": self.raw_material.unit if self.raw_material else None,
            "quantity_used": self.quantity_used,
        }
