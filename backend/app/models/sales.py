from __future__ import annotations

from ..extensions import db
from app.time_utils import to_utc_z


class Sale(db.Model):
    """
    Sales journal row: one product line of a completed checkout.

    total_price and total_profit are snapshots taken from the product at
    checkout time, so later price or recipe edits never rewrite history.
    Rows are append-only apart from administrative deletion.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sales_quantity_positive"),
        db.Index("ix_sales_product_date", "product_id", "date_time"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(
        db.Integer,
        db.ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Name at time of sale, for receipts and reports
    product_name = db.Column(db.String(255), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    total_price = db.Column(db.Float, nullable=False)
    total_profit = db.Column(db.Float, nullable=False)

    date_time = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    product = db.relationship("Product", back_populates="sales")

    def __repr__(self) -> str:
        return f"<Sale id={self.id} product_id={self.product_id} qty={self.quantity} total={self.total_price}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "total_price": self.total_price,
            "total_profit": self.total_profit,
            "date_time": to_utc_z(self.date_time),
        }
