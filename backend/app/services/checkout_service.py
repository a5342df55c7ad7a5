# Overview: Checkout engine; turns a cart into sales and stock decrements atomically, or changes nothing.

"""
Checkout Service

A checkout takes a cart of (product_id, quantity) lines and, inside ONE
transaction on the caller's session:

1. resolves every product (unknown id -> NotFoundError)
2. loads the bill of materials of every product in the cart
3. sums the demand per raw material across ALL lines, so two products that
   both use flour produce one flour total
4. compares each total with quantity_available read in the same
   transaction; every material that falls short is reported at once
   (InsufficientStockError with the shortfall list)
5. writes one Sale per (coalesced) line with price and profit captured from
   the product as it is now, and bumps Product.sell_count
6. applies a conditional decrement per material; a zero row count means a
   concurrent checkout consumed the stock after step 4 was read, and the
   whole transaction is rolled back (ConcurrencyConflictError)

Any failure rolls back everything: no sale rows, no sell_count changes, no
stock changes. The step-4 read is only used for reporting shortfalls; the
step-6 conditional write is what prevents overselling. No write lock is
taken up front: two carts may both pass step 4, and the guarded UPDATE
decides which one wins. The engine never retries;
ConcurrencyConflictError.retryable tells the caller it may.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field, asdict
from typing import Any, Iterable, Sequence

from sqlalchemy import update
from sqlalchemy.orm import Session

from ..models import Product, Sale
from ..validation import MAX_AMOUNT, ValidationError, coerce_int
from app.time_utils import utcnow
from . import catalog_service, stock_service
from .concurrency import atomic

logger = logging.getLogger(__name__)

# Largest id SQLite (and BIGINT) can store; anything above overflows the driver
MAX_ID = 2**63 - 1


class CheckoutError(Exception):
    """Base for checkout aborts. Raising one means nothing was written."""
    retryable = False

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.details = details


class NotFoundError(CheckoutError):
    """A cart line references a product that does not exist."""


class InsufficientStockError(CheckoutError):
    """Aggregated demand exceeds available stock for at least one raw material."""

    def __init__(self, shortfalls: list[Shortfall]):
        super().__init__(
            "Insufficient raw materials for this sale.",
            details=[s.to_dict() for s in shortfalls],
        )
        self.shortfalls = shortfalls


class ConcurrencyConflictError(CheckoutError):
    """Stock was consumed between the sufficiency read and the conditional write."""
    retryable = True


@dataclass(frozen=True)
class CartLine:
    product_id: int
    quantity: int


@dataclass(frozen=True)
class Shortfall:
    raw_material_id: int
    raw_material_name: str | None
    required: float
    available: float
    unit: str | None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class CheckoutResult:
    sales: list[dict] = field(default_factory=list)
    total_bill: float = 0.0
    total_profit: float = 0.0
    total_items: int = 0
    transaction_count: int = 0

    def to_dict(self) -> dict:
        return {
            "sales": self.sales,
            "total_bill": self.total_bill,
            "total_profit": self.total_profit,
            "total_items": self.total_items,
            "transaction_count": self.transaction_count,
        }


# ---------------------------------------------------------------------------
# Input boundary (runs before any transaction is opened)
# ---------------------------------------------------------------------------

def parse_cart_lines(raw_items: Any) -> list[CartLine]:
    """Turn a JSON items array into CartLines. Raises ValidationError."""
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("At least one cart item is required.")

    lines: list[CartLine] = []
    for item in raw_items:
        if not isinstance(item, dict) or item.get("product_id") in (None, ""):
            raise ValidationError("Each cart item must include product_id and quantity > 0.")
        try:
            product_id = coerce_int("product_id", item["product_id"])
            quantity = coerce_int("quantity", item.get("quantity"))
        except ValidationError:
            raise ValidationError("Each cart item must include product_id and quantity > 0.")
        lines.append(CartLine(product_id=product_id, quantity=quantity))
    return lines


def coalesce_cart_lines(cart_lines: Iterable[CartLine]) -> list[CartLine]:
    """
    Validate lines and merge duplicates of the same product (quantities summed).

    Order of first appearance is kept so sales come out in cart order.
    """
    merged: dict[int, int] = {}
    for line in cart_lines:
        if not isinstance(line, CartLine):
            raise ValidationError("Cart lines must be CartLine values.")
        if isinstance(line.product_id, bool) or not isinstance(line.product_id, int) or line.product_id <= 0:
            raise ValidationError("Each cart item must include product_id and quantity > 0.")
        if isinstance(line.quantity, bool) or not isinstance(line.quantity, int) or line.quantity <= 0:
            raise ValidationError("Each cart item must include product_id and quantity > 0.")
        if line.product_id > MAX_ID:
            raise ValidationError(f"product_id cannot exceed {MAX_ID}")
        merged[line.product_id] = merged.get(line.product_id, 0) + line.quantity
        if merged[line.product_id] > MAX_AMOUNT:
            raise ValidationError(f"quantity cannot exceed {MAX_AMOUNT}")

    if not merged:
        raise ValidationError("At least one cart item is required.")
    return [CartLine(product_id=pid, quantity=qty) for pid, qty in merged.items()]


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

def required_materials(cart: Sequence[CartLine], bom: Iterable[catalog_service.BomLine]) -> dict[int, float]:
    """required[material] = sum(line.quantity * quantity_used) across every line and product."""
    by_product: dict[int, list[catalog_service.BomLine]] = defaultdict(list)
    for row in bom:
        by_product[row.product_id].append(row)

    required: dict[int, float] = {}
    for line in cart:
        for row in by_product.get(line.product_id, ()):
            required[row.raw_material_id] = (
                required.get(row.raw_material_id, 0.0) + line.quantity * row.quantity_used
            )
    return required


def find_shortfalls(session: Session, required: dict[int, float]) -> list[Shortfall]:
    available = stock_service.quantities_for(session, required.keys())
    materials = catalog_service.raw_materials_by_id(session, required.keys())

    shortfalls = []
    for material_id, amount in required.items():
        have = available.get(material_id, 0.0)
        if amount > have:
            material = materials.get(material_id)
            shortfalls.append(Shortfall(
                raw_material_id=material_id,
                raw_material_name=material.name if material else None,
                required=amount,
                available=have,
                unit=material.unit if material else None,
            ))
    return shortfalls


def _checkout_in_transaction(session: Session, cart: list[CartLine]) -> CheckoutResult:
    product_ids = [line.product_id for line in cart]

    products = {p.id: p for p in catalog_service.resolve_products(session, product_ids)}
    missing = [pid for pid in product_ids if pid not in products]
    if missing:
        raise NotFoundError("One or more products no longer exist.", details={"product_ids": missing})

    bom = catalog_service.ingredients_for_products(session, product_ids)
    required = required_materials(cart, bom)

    shortfalls = find_shortfalls(session, required)
    if shortfalls:
        raise InsufficientStockError(shortfalls)

    result = CheckoutResult()
    sold_at = utcnow()
    sales: list[Sale] = []
    for line in cart:
        product = products[line.product_id]
        selling_price = float(product.selling_price or 0)
        manufacturing_cost = float(product.manufacturing_cost or 0)

        sale = Sale(
            product_id=product.id,
            product_name=product.name,
            quantity=line.quantity,
            total_price=selling_price * line.quantity,
            total_profit=(selling_price - manufacturing_cost) * line.quantity,
            date_time=sold_at,
        )
        session.add(sale)
        sales.append(sale)

        session.execute(
            update(Product)
            .where(Product.id == product.id)
            .values(sell_count=Product.sell_count + line.quantity)
            .execution_options(synchronize_session=False)
        )
    session.flush()

    for material_id, amount in required.items():
        if amount <= 0:
            continue
        if stock_service.conditional_decrement(session, material_id, amount) != 1:
            raise ConcurrencyConflictError(
                "Stock changed during checkout. Please try again.",
                details={"raw_material_id": material_id, "required": amount},
            )

    for sale in sales:
        result.sales.append(sale.to_dict())
        result.total_bill += sale.total_price
        result.total_profit += sale.total_profit
        result.total_items += sale.quantity
    result.transaction_count = len(sales)
    return result


def checkout(session: Session, cart_lines: Iterable[CartLine]) -> CheckoutResult:
    """
    Sell a cart atomically.

    Raises ValidationError before touching the database; NotFoundError,
    InsufficientStockError or ConcurrencyConflictError after a full rollback.
    Unexpected database errors are re-raised after the same rollback.
    """
    cart = coalesce_cart_lines(cart_lines)

    try:
        # Deferred transaction: the guarded decrement settles races
        with atomic(session, write=False):
            result = _checkout_in_transaction(session, cart)
    except InsufficientStockError as exc:
        logger.info(
            "checkout aborted, insufficient stock for materials %s",
            [s.raw_material_id for s in exc.shortfalls],
        )
        raise
    except ConcurrencyConflictError as exc:
        logger.warning("checkout conflict, rolled back: %s", exc.details)
        raise
    except NotFoundError as exc:
        logger.info("checkout aborted, unknown products %s", exc.details)
        raise

    logger.info(
        "checkout committed: %d sale(s), %d item(s), bill=%.2f",
        result.transaction_count, result.total_items, result.total_bill,
    )
    return result


def record_sale(session: Session, product_id: int, quantity: int) -> dict:
    """Single-product checkout; returns the one sale record."""
    result = checkout(session, [CartLine(product_id=product_id, quantity=quantity)])
    return result.sales[0]
