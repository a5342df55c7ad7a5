"""
HTTP tests for checkout and the sales journal.

Verifies:
- Checkout returns 201 with sales and totals
- Insufficient stock returns 400 with the full shortfall list
- Unknown products return 404; lost races return 409 (retryable)
- Journal filtering, summary and per-product totals
"""

from datetime import datetime

import pytest

from app.models import Sale
from app.services import stock_service
from conftest import stock_of


def _checkout(client, headers, *items):
    return client.post(
        "/api/sales/checkout",
        json={"items": [{"product_id": pid, "quantity": qty} for pid, qty in items]},
        headers=headers,
    )


class TestCheckoutRoute:

    def test_checkout_success(self, client, staff_headers, catalog, db_session):
        resp = _checkout(client, staff_headers, (catalog["pizza"], 2), (catalog["bread"], 1))
        assert resp.status_code == 201
        body = resp.json
        assert body["transaction_count"] == 2
        assert body["total_items"] == 3
        assert body["total_bill"] == pytest.approx(28.0)
        assert body["total_profit"] == pytest.approx(9.0)
        assert len(body["sales"]) == 2
        assert stock_of(db_session, catalog["flour"]) == pytest.approx(300)

    def test_insufficient_stock_lists_every_material(self, client, staff_headers, catalog, db_session):
        resp = _checkout(client, staff_headers, (catalog["pizza"], 6))
        assert resp.status_code == 400
        assert resp.json["error"] == "Insufficient raw materials for this sale."
        assert resp.json["retryable"] is False
        details = {d["raw_material_id"]: d for d in resp.json["details"]}
        assert set(details) == {catalog["flour"], catalog["cheese"]}
        assert details[catalog["cheese"]]["required"] == pytest.approx(600)
        assert details[catalog["cheese"]]["available"] == pytest.approx(500)
        assert details[catalog["cheese"]]["unit"] == "g"

        assert db_session.query(Sale).count() == 0
        assert stock_of(db_session, catalog["tomato"]) == pytest.approx(300)

    def test_unknown_product_404(self, client, staff_headers, catalog):
        resp = _checkout(client, staff_headers, (catalog["bread"], 1), (424242, 1))
        assert resp.status_code == 404
        assert resp.json["details"] == {"product_ids": [424242]}

    @pytest.mark.parametrize("body", [
        {},
        {"items": []},
        {"items": [{"product_id": 1}]},
        {"items": [{"product_id": 1, "quantity": 0}]},
        {"items": [{"product_id": 1, "quantity": -3}]},
        {"items": "pizza"},
        {"items": [{"product_id": 0, "quantity": 1}]},
        {"items": [{"product_id": 1, "quantity": 10**20}]},
        {"items": [{"product_id": 10**20, "quantity": 1}]},
    ])
    def test_invalid_cart_400(self, client, staff_headers, catalog, db_session, body):
        resp = client.post("/api/sales/checkout", json=body, headers=staff_headers)
        assert resp.status_code == 400
        assert db_session.query(Sale).count() == 0

    def test_single_sale_out_of_range_400(self, client, staff_headers, catalog):
        resp = client.post("/api/sales", json={"product_id": catalog["bread"], "quantity": 10**20}, headers=staff_headers)
        assert resp.status_code == 400
        assert resp.json["error"] == "quantity cannot exceed 999999999"

    def test_conflict_is_409_and_retryable(self, client, staff_headers, catalog, db_session, monkeypatch):
        _checkout(client, staff_headers, (catalog["bread"], 3))
        monkeypatch.setattr(
            stock_service,
            "quantities_for",
            lambda session, ids: {catalog["flour"]: 1000.0},
        )

        resp = _checkout(client, staff_headers, (catalog["bread"], 1))
        assert resp.status_code == 409
        assert resp.json["retryable"] is True
        assert stock_of(db_session, catalog["flour"]) == pytest.approx(100)

    def test_single_sale_endpoint(self, client, staff_headers, catalog):
        resp = client.post(
            "/api/sales",
            json={"product_id": catalog["pizza"], "quantity": 1},
            headers=staff_headers,
        )
        assert resp.status_code == 201
        assert resp.json["product_name"] == "Pizza"
        assert resp.json["total_price"] == pytest.approx(12.0)
        assert resp.json["total_profit"] == pytest.approx(4.0)

    def test_single_sale_insufficient(self, client, staff_headers, catalog):
        resp = client.post(
            "/api/sales",
            json={"product_id": catalog["bread"], "quantity": 4},
            headers=staff_headers,
        )
        assert resp.status_code == 400
        assert resp.json["details"][0]["raw_material_id"] == catalog["flour"]


class TestSalesJournal:

    def _seed_sales(self, db_session, catalog):
        rows = [
            Sale(product_id=catalog["pizza"], product_name="Pizza", quantity=2,
                 total_price=24.0, total_profit=8.0, date_time=datetime(2026, 3, 1, 9, 0)),
            Sale(product_id=catalog["bread"], product_name="Bread", quantity=1,
                 total_price=4.0, total_profit=1.0, date_time=datetime(2026, 3, 1, 22, 30)),
            Sale(product_id=catalog["pizza"], product_name="Pizza", quantity=1,
                 total_price=12.0, total_profit=4.0, date_time=datetime(2026, 3, 2, 12, 0)),
        ]
        db_session.add_all(rows)
        db_session.commit()
        return [r.id for r in rows]

    def test_list_newest_first(self, client, staff_headers, catalog, db_session):
        ids = self._seed_sales(db_session, catalog)
        resp = client.get("/api/sales", headers=staff_headers)
        assert resp.status_code == 200
        assert [s["id"] for s in resp.json] == list(reversed(ids))

    def test_bare_date_bound_covers_whole_day(self, client, staff_headers, catalog, db_session):
        self._seed_sales(db_session, catalog)
        resp = client.get("/api/sales?from=2026-03-01&to=2026-03-01", headers=staff_headers)
        assert resp.status_code == 200
        assert len(resp.json) == 2

    def test_filter_by_product(self, client, staff_headers, catalog, db_session):
        self._seed_sales(db_session, catalog)
        resp = client.get(f"/api/sales?product_id={catalog['pizza']}", headers=staff_headers)
        assert {s["product_id"] for s in resp.json} == {catalog["pizza"]}
        assert len(resp.json) == 2

    def test_bad_date_400(self, client, staff_headers, db_session):
        resp = client.get("/api/sales?from=yesterday", headers=staff_headers)
        assert resp.status_code == 400

    def test_summary(self, client, staff_headers, catalog, db_session):
        self._seed_sales(db_session, catalog)
        resp = client.get("/api/sales/summary", headers=staff_headers)
        assert resp.json == {
            "total_transactions": 3,
            "total_items_sold": 4,
            "total_revenue": pytest.approx(40.0),
            "total_profit": pytest.approx(13.0),
        }

    def test_empty_summary(self, client, staff_headers, db_session):
        resp = client.get("/api/sales/summary", headers=staff_headers)
        assert resp.json["total_transactions"] == 0
        assert resp.json["total_revenue"] == 0

    def test_by_product(self, client, staff_headers, catalog, db_session):
        self._seed_sales(db_session, catalog)
        resp = client.get("/api/sales/by-product", headers=staff_headers)
        assert [r["product_id"] for r in resp.json] == [catalog["pizza"], catalog["bread"]]
        assert resp.json[0]["items_sold"] == 3
        assert resp.json[0]["revenue"] == pytest.approx(36.0)
        assert resp.json[0]["last_sold_at"] == "2026-03-02T12:00:00Z"

    def test_admin_delete_does_not_restock(self, client, admin_headers, catalog, db_session):
        sale = client.post(
            "/api/sales", json={"product_id": catalog["bread"], "quantity": 1}, headers=admin_headers,
        ).json

        resp = client.delete(f"/api/sales/{sale['id']}", headers=admin_headers)
        assert resp.status_code == 200
        assert stock_of(db_session, catalog["flour"]) == pytest.approx(700)

        resp = client.delete(f"/api/sales/{sale['id']}", headers=admin_headers)
        assert resp.status_code == 404
