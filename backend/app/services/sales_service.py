"""
Sales Journal - read side and administrative deletion.

Sales rows are written only by checkout_service. Nothing here edits a sale;
delete_sale exists for super admins correcting mistakes and does not put
stock back.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models import Sale, Product
from ..validation import ValidationError
from app.time_utils import parse_iso_datetime, to_utc_z
from .concurrency import atomic


class SalesError(Exception):
    """Raised for sales journal errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


def _parse_bound(name: str, value: str | None) -> datetime | None:
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 date or datetime")


def list_sales(
    session: Session,
    *,
    start: str | None = None,
    end: str | None = None,
    product_id: int | None = None,
) -> list[dict]:
    """
    Journal rows, newest first.

    start/end are inclusive. A bare date as end ("2026-03-01") means the end
    of that day.
    """
    start_dt = _parse_bound("from", start)
    end_dt = _parse_bound("to", end)
    if end_dt is not None and end and len(end.strip()) == 10:
        end_dt = end_dt.replace(hour=23, minute=59, second=59, microsecond=999999)

    query = session.query(Sale, Product.name).outerjoin(Product, Product.id == Sale.product_id)
    if start_dt is not None:
        query = query.filter(Sale.date_time >= start_dt)
    if end_dt is not None:
        query = query.filter(Sale.date_time <= end_dt)
    if product_id is not None:
        query = query.filter(Sale.product_id == product_id)

    rows = query.order_by(Sale.date_time.desc(), Sale.id.desc()).all()
    items = []
    for sale, current_name in rows:
        data = sale.to_dict()
        data["product_name"] = current_name or sale.product_name
        items.append(data)
    return items


def sales_summary(session: Session) -> dict:
    row = session.query(
        func.count(Sale.id).label("total_transactions"),
        func.coalesce(func.sum(Sale.quantity), 0).label("total_items_sold"),
        func.coalesce(func.sum(Sale.total_price), 0).label("total_revenue"),
        func.coalesce(func.sum(Sale.total_profit), 0).label("total_profit"),
    ).one()
    return {
        "total_transactions": int(row.total_transactions or 0),
        "total_items_sold": int(row.total_items_sold or 0),
        "total_revenue": float(row.total_revenue or 0),
        "total_profit": float(row.total_profit or 0),
    }


def sales_by_product(session: Session) -> list[dict]:
    """Per-product totals, best sellers first."""
    rows = (
        session.query(
            Sale.product_id,
            func.max(Sale.product_name).label("product_name"),
            func.count(Sale.id).label("transactions"),
            func.coalesce(func.sum(Sale.quantity), 0).label("items_sold"),
            func.coalesce(func.sum(Sale.total_price), 0).label("revenue"),
            func.coalesce(func.sum(Sale.total_profit), 0).label("profit"),
            func.max(Sale.date_time).label("last_sold_at"),
        )
        .group_by(Sale.product_id)
        .order_by(func.sum(Sale.quantity).desc(), Sale.product_id.asc())
        .all()
    )
    return [
        {
            "product_id": r.product_id,
            "product_name": r.product_name,
            "transactions": int(r.transactions or 0),
            "items_sold": int(r.items_sold or 0),
            "revenue": float(r.revenue or 0),
            "profit": float(r.profit or 0),
            "last_sold_at": to_utc_z(r.last_sold_at),
        }
        for r in rows
    ]


def delete_sale(session: Session, sale_id: int) -> None:
    with atomic(session):
        sale = session.get(Sale, sale_id)
        if sale is None:
            raise SalesError("Sale not found.", details={"sale_id": sale_id})
        session.delete(sale)
