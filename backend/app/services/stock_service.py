# Overview: Stock ledger over raw_materials.quantity_available; reads, conditional decrements, low-stock query.

from __future__ import annotations

from typing import Iterable

from sqlalchemy import update
from sqlalchemy.orm import Session

from ..models import RawMaterial
"""
Stock Ledger Invariants (authoritative)

- quantity_available is never negative in committed state.
- During checkout the ONLY write to quantity_available is
  conditional_decrement(): UPDATE ... SET q = q - :amount
  WHERE id = :id AND q >= :amount. A zero row count means the
  stock was consumed by someone else after it was read.
- Reads made for sufficiency checks are advisory; the conditional
  write is what guarantees no oversell.
"""


def quantities_for(session: Session, material_ids: Iterable[int]) -> dict[int, float]:
    """Current quantity_available per id, read inside the caller's transaction. Unknown ids are absent."""
    ids = sorted(set(material_ids))
    if not ids:
        return {}
    rows = session.query(RawMaterial.id, RawMaterial.quantity_available).filter(
        RawMaterial.id.in_(ids)
    ).all()
    return {row.id: float(row.quantity_available or 0) for row in rows}


def conditional_decrement(session: Session, material_id: int, amount: float) -> int:
    """
    Atomically subtract amount from a material if enough is still there.

    Returns the affected row count (1 on success, 0 when the guard failed or
    the row does not exist). Never commits; the caller owns the transaction.
    """
    if amount <= 0:
        raise ValueError("amount must be > 0")
    stmt = (
        update(RawMaterial)
        .where(
            RawMaterial.id == material_id,
            RawMaterial.quantity_available >= amount,
        )
        .values(quantity_available=RawMaterial.quantity_available - amount)
        .execution_options(synchronize_session=False)
    )
    result = session.execute(stmt)
    return result.rowcount


def low_stock(session: Session) -> dict:
    """Materials below their threshold, lowest quantity first."""
    items = (
        session.query(RawMaterial)
        .filter(RawMaterial.quantity_available < RawMaterial.low_stock_threshold)
        .order_by(RawMaterial.quantity_available.asc(), RawMaterial.id.asc())
        .all()
    )
    return {"count": len(items), "items": [m.to_dict() for m in items]}
