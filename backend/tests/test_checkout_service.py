"""
Checkout engine tests.

Verifies:
- Demand is aggregated per raw material across every cart line
- All shortfalls are reported together and nothing is written on abort
- Sales capture price and profit at checkout time
- A lost race on the conditional decrement rolls back the whole checkout
"""

import pytest

from app.models import Product, RawMaterial, Sale
from app.services import checkout_service, stock_service
from app.services.checkout_service import (
    CartLine,
    NotFoundError,
    InsufficientStockError,
    ConcurrencyConflictError,
)
from app.validation import ValidationError
from conftest import make_material, make_product, stock_of


def _sale_count(session):
    return session.query(Sale).count()


def _sell_count(session, product_id):
    session.expire_all()
    return session.get(Product, product_id).sell_count


# =============================================================================
# SUCCESSFUL CHECKOUT
# =============================================================================


class TestCheckoutCommits:

    def test_multi_line_cart_decrements_aggregate_demand(self, db_session, catalog):
        result = checkout_service.checkout(db_session, [
            CartLine(catalog["pizza"], 2),
            CartLine(catalog["bread"], 1),
        ])

        # flour: 2*200 + 1*300
        assert stock_of(db_session, catalog["flour"]) == pytest.approx(300)
        assert stock_of(db_session, catalog["cheese"]) == pytest.approx(300)
        assert stock_of(db_session, catalog["tomato"]) == pytest.approx(200)

        assert result.transaction_count == 2
        assert result.total_items == 3
        assert result.total_bill == pytest.approx(28.0)
        assert result.total_profit == pytest.approx(9.0)

        assert _sale_count(db_session) == 2
        assert _sell_count(db_session, catalog["pizza"]) == 2
        assert _sell_count(db_session, catalog["bread"]) == 1

    def test_sales_follow_cart_order(self, db_session, catalog):
        result = checkout_service.checkout(db_session, [
            CartLine(catalog["bread"], 1),
            CartLine(catalog["pizza"], 1),
        ])
        assert [s["product_id"] for s in result.sales] == [catalog["bread"], catalog["pizza"]]
        assert [s["product_name"] for s in result.sales] == ["Bread", "Pizza"]

    def test_sale_totals_snapshot_price_and_cost(self, db_session, catalog):
        result = checkout_service.checkout(db_session, [CartLine(catalog["pizza"], 2)])
        sale = result.sales[0]
        assert sale["quantity"] == 2
        assert sale["total_price"] == pytest.approx(24.0)
        assert sale["total_profit"] == pytest.approx(8.0)
        assert sale["date_time"].endswith("Z")

        pizza = db_session.get(Product, catalog["pizza"])
        pizza.selling_price = 99.0
        db_session.commit()

        stored = db_session.get(Sale, sale["id"])
        assert stored.total_price == pytest.approx(24.0)

    def test_price_change_is_seen_by_next_checkout(self, db_session, catalog):
        pizza = db_session.get(Product, catalog["pizza"])
        pizza.selling_price = 15.0
        db_session.commit()

        result = checkout_service.checkout(db_session, [CartLine(catalog["pizza"], 1)])
        assert result.total_bill == pytest.approx(15.0)

    def test_duplicate_lines_are_merged(self, db_session, catalog):
        result = checkout_service.checkout(db_session, [
            CartLine(catalog["pizza"], 1),
            CartLine(catalog["bread"], 1),
            CartLine(catalog["pizza"], 2),
        ])
        assert result.transaction_count == 2
        assert result.sales[0]["product_id"] == catalog["pizza"]
        assert result.sales[0]["quantity"] == 3
        assert stock_of(db_session, catalog["cheese"]) == pytest.approx(200)

    def test_exact_stock_can_be_consumed_to_zero(self, db_session, catalog):
        # Five pizzas use exactly all of the flour and cheese
        checkout_service.checkout(db_session, [CartLine(catalog["pizza"], 2)])
        checkout_service.checkout(db_session, [CartLine(catalog["pizza"], 2)])
        checkout_service.checkout(db_session, [CartLine(catalog["pizza"], 1)])
        assert stock_of(db_session, catalog["tomato"]) == pytest.approx(50)
        assert stock_of(db_session, catalog["cheese"]) == pytest.approx(0)

    def test_product_without_ingredients_sells_freely(self, db_session, catalog):
        water = make_product(db_session, "Water", 1.5, [])
        result = checkout_service.checkout(db_session, [CartLine(water.id, 10)])
        assert result.total_bill == pytest.approx(15.0)
        assert stock_of(db_session, catalog["flour"]) == pytest.approx(1000)

    def test_record_sale_returns_single_sale(self, db_session, catalog):
        sale = checkout_service.record_sale(db_session, catalog["bread"], 2)
        assert sale["product_id"] == catalog["bread"]
        assert sale["quantity"] == 2
        assert sale["total_price"] == pytest.approx(8.0)
        assert stock_of(db_session, catalog["flour"]) == pytest.approx(400)


# =============================================================================
# ABORTS - NOTHING WRITTEN
# =============================================================================


class TestCheckoutAborts:

    def test_aggregate_shortfall_across_lines(self, db_session, catalog):
        # Each line fits on its own; together they need 1200g flour
        with pytest.raises(InsufficientStockError) as excinfo:
            checkout_service.checkout(db_session, [
                CartLine(catalog["pizza"], 3),
                CartLine(catalog["bread"], 2),
            ])

        shortfalls = excinfo.value.shortfalls
        assert len(shortfalls) == 1
        assert shortfalls[0].raw_material_id == catalog["flour"]
        assert shortfalls[0].raw_material_name == "Flour"
        assert shortfalls[0].required == pytest.approx(1200)
        assert shortfalls[0].available == pytest.approx(1000)
        assert excinfo.value.retryable is False

        assert _sale_count(db_session) == 0
        assert stock_of(db_session, catalog["flour"]) == pytest.approx(1000)
        assert stock_of(db_session, catalog["cheese"]) == pytest.approx(500)
        assert _sell_count(db_session, catalog["pizza"]) == 0

    def test_every_short_material_is_reported(self, db_session, catalog):
        with pytest.raises(InsufficientStockError) as excinfo:
            checkout_service.checkout(db_session, [CartLine(catalog["pizza"], 6)])

        short_ids = {s.raw_material_id for s in excinfo.value.shortfalls}
        # tomato needs exactly 300 of 300 and is not short
        assert short_ids == {catalog["flour"], catalog["cheese"]}
        assert {d["raw_material_id"] for d in excinfo.value.details} == short_ids
        assert stock_of(db_session, catalog["tomato"]) == pytest.approx(300)

    def test_unknown_product_aborts_whole_cart(self, db_session, catalog):
        with pytest.raises(NotFoundError) as excinfo:
            checkout_service.checkout(db_session, [
                CartLine(catalog["bread"], 1),
                CartLine(999999, 1),
            ])
        assert excinfo.value.details == {"product_ids": [999999]}
        assert _sale_count(db_session) == 0
        assert stock_of(db_session, catalog["flour"]) == pytest.approx(1000)

    @pytest.mark.parametrize("lines", [
        [],
        [CartLine(1, 0)],
        [CartLine(1, -2)],
        [CartLine(1, True)],
        [CartLine("1", 1)],
        [CartLine(0, 1)],
        [CartLine(-1, 1)],
        [CartLine(10**20, 1)],
        [CartLine(1, 10**20)],
        [CartLine(1, 999_999_999), CartLine(1, 1)],
    ])
    def test_invalid_cart_rejected_before_database(self, db_session, catalog, lines):
        with pytest.raises(ValidationError):
            checkout_service.checkout(db_session, lines)
        assert _sale_count(db_session) == 0
        assert stock_of(db_session, catalog["flour"]) == pytest.approx(1000)

    def test_lost_race_on_decrement_rolls_back(self, db_session, catalog, monkeypatch):
        checkout_service.checkout(db_session, [CartLine(catalog["bread"], 3)])
        assert stock_of(db_session, catalog["flour"]) == pytest.approx(100)

        # Sufficiency read sees the stock as it was before the first checkout
        monkeypatch.setattr(
            stock_service,
            "quantities_for",
            lambda session, ids: {catalog["flour"]: 1000.0},
        )

        with pytest.raises(ConcurrencyConflictError) as excinfo:
            checkout_service.checkout(db_session, [CartLine(catalog["bread"], 1)])

        assert excinfo.value.retryable is True
        assert excinfo.value.details["raw_material_id"] == catalog["flour"]
        assert _sale_count(db_session) == 1
        assert _sell_count(db_session, catalog["bread"]) == 3
        assert stock_of(db_session, catalog["flour"]) == pytest.approx(100)

    def test_partial_decrement_is_undone_on_conflict(self, db_session, catalog, monkeypatch):
        # Cheese is plentiful, tomato has been drained behind our back
        tomato_before = stock_of(db_session, catalog["tomato"])
        real_quantities = stock_service.quantities_for

        def stale_quantities(session, ids):
            snapshot = real_quantities(session, ids)
            snapshot[catalog["tomato"]] = tomato_before
            return snapshot

        db_session.get(RawMaterial, catalog["tomato"]).quantity_available = 10
        db_session.commit()
        monkeypatch.setattr(stock_service, "quantities_for", stale_quantities)

        with pytest.raises(ConcurrencyConflictError):
            checkout_service.checkout(db_session, [CartLine(catalog["pizza"], 1)])

        assert stock_of(db_session, catalog["flour"]) == pytest.approx(1000)
        assert stock_of(db_session, catalog["cheese"]) == pytest.approx(500)
        assert stock_of(db_session, catalog["tomato"]) == pytest.approx(10)
        assert _sale_count(db_session) == 0


# =============================================================================
# INPUT PARSING
# =============================================================================


class TestParseCartLines:

    def test_parses_numeric_strings(self):
        lines = checkout_service.parse_cart_lines([{"product_id": "3", "quantity": "2"}])
        assert lines == [CartLine(3, 2)]

    @pytest.mark.parametrize("raw", [None, [], {}, "abc"])
    def test_requires_non_empty_list(self, raw):
        with pytest.raises(ValidationError, match="At least one cart item"):
            checkout_service.parse_cart_lines(raw)

    @pytest.mark.parametrize("item", [
        {"quantity": 1},
        {"product_id": 1},
        {"product_id": 1, "quantity": 1.5},
        {"product_id": "x", "quantity": 1},
        "not-an-object",
    ])
    def test_rejects_malformed_items(self, item):
        with pytest.raises(ValidationError, match="product_id and quantity"):
            checkout_service.parse_cart_lines([item])

    @pytest.mark.parametrize("lines, message", [
        ([CartLine(2**63, 1)], "product_id cannot exceed"),
        ([CartLine(1, 1_000_000_000)], "quantity cannot exceed"),
        ([CartLine(0, 1)], "product_id and quantity"),
    ])
    def test_coalesce_rejects_out_of_range(self, lines, message):
        with pytest.raises(ValidationError, match=message):
            checkout_service.coalesce_cart_lines(lines)

    def test_coalesce_accepts_largest_values(self):
        lines = checkout_service.coalesce_cart_lines([CartLine(2**63 - 1, 999_999_999)])
        assert lines == [CartLine(2**63 - 1, 999_999_999)]


# =============================================================================
# AGGREGATION BOUNDARY
# =============================================================================


class TestAggregationBoundary:
    """A uses 3 M, B uses 1 M; cart [A x2, B x1] needs 7 M."""

    def _setup(self, db_session, available):
        m = make_material(db_session, "M", available, 1.0, unit="pcs")
        a = make_product(db_session, "A", 10.0, [(m, 3)])
        b = make_product(db_session, "B", 5.0, [(m, 1)])
        return m.id, [CartLine(a.id, 2), CartLine(b.id, 1)]

    def test_one_short(self, db_session):
        material_id, cart = self._setup(db_session, 6)
        with pytest.raises(InsufficientStockError) as excinfo:
            checkout_service.checkout(db_session, cart)
        assert excinfo.value.details == [{
            "raw_material_id": material_id,
            "raw_material_name": "M",
            "required": 7.0,
            "available": 6.0,
            "unit": "pcs",
        }]

    def test_exactly_enough(self, db_session):
        material_id, cart = self._setup(db_session, 7)
        checkout_service.checkout(db_session, cart)
        assert stock_of(db_session, material_id) == 0

    def test_failure_repeats_identically(self, db_session):
        _, cart = self._setup(db_session, 6)
        outcomes = []
        for _ in range(2):
            with pytest.raises(InsufficientStockError) as excinfo:
                checkout_service.checkout(db_session, cart)
            outcomes.append(excinfo.value.details)
        assert outcomes[0] == outcomes[1]
        assert _sale_count(db_session) == 0
