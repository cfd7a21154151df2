import json
import re

import pytest
from sqlalchemy import event

from pharmpos.database import SessionLocal, engine
from pharmpos.models.audit_log import AuditLog
from pharmpos.models.sale import Receipt, Sale, SaleItem
from pharmpos.services import audit_service, sales_service


@pytest.fixture
def sale_payload(make_item):
    """Two lines over two products: 2 x 2.50 and 3 x 1.00."""
    para = make_item(name="Paracetamol", quantity=10, unit_price=2.5, cost_price=1.2)
    vitc = make_item(name="Vitamin C", quantity=4, unit_price=1.0, cost_price=0.4)
    payload = {
        "total": 8.0,
        "paymentMethod": "Cash",
        "customerName": "Jane Doe",
        "items": [
            {"id": para, "name": "Paracetamol", "quantity": 2, "price": 2.5},
            {"id": vitc, "name": "Vitamin C", "quantity": 3, "price": 1.0},
        ],
    }
    return payload, para, vitc


@pytest.fixture
def inventory_updates():
    statements = []

    def _capture(conn, cursor, statement, parameters, context, executemany):
        if statement.lstrip().upper().startswith("UPDATE INVENTORY"):
            statements.append(statement)

    event.listen(engine, "before_cursor_execute", _capture)
    yield statements
    event.remove(engine, "before_cursor_execute", _capture)


def test_basic_sale(client, sale_payload, stock_of, count_rows):
    payload, para, vitc = sale_payload

    resp = client.post("/api/functions/complete-sale", json=payload)
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["subtotal"] == 8.0
    assert re.fullmatch(r"TR-\d{14}-[0-9A-F]{6}", body["transactionId"])

    assert stock_of(para) == 8
    assert stock_of(vitc) == 1
    assert count_rows(SaleItem, sale_id=body["saleId"]) == 2

    with SessionLocal() as db:
        sale = db.get(Sale, body["saleId"])
        assert sale.total == 8.0
        assert sale.customer_name == "Jane Doe"
        assert sale.transaction_id == body["transactionId"]

        receipt = db.get(Receipt, body["receiptId"])
        assert receipt.sale_id == sale.id
        assert json.loads(receipt.receipt_data) == payload

        line = db.query(SaleItem).filter_by(sale_id=sale.id, inventory_id=para).one()
        assert line.cost_price == 1.2
        assert line.total == 5.0


def test_sales_route_is_the_same_pipeline(client, sale_payload, stock_of):
    payload, para, _ = sale_payload
    resp = client.post("/api/sales", json=payload)
    assert resp.status_code == 200
    assert stock_of(para) == 8


def test_stock_is_decremented_in_one_statement(client, sale_payload, inventory_updates):
    payload, _, _ = sale_payload
    payload["items"].append({"id": payload["items"][0]["id"], "quantity": 1, "price": 2.5})
    payload["total"] = 10.5

    resp = client.post("/api/sales", json=payload)
    assert resp.status_code == 200
    assert len(inventory_updates) == 1
    assert "CASE" in inventory_updates[0]


def test_repeated_product_lines_are_summed(client, make_item, stock_of):
    item = make_item(quantity=5)
    payload = {"total": 5.0, "items": [{"id": item, "quantity": 2, "price": 1.0}, {"id": item, "quantity": 3, "price": 1.0}]}
    assert client.post("/api/sales", json=payload).status_code == 200
    assert stock_of(item) == 0


def test_sale_without_items_still_records_header_and_receipt(client, count_rows):
    resp = client.post("/api/sales", json={"total": 0, "items": []})
    assert resp.status_code == 200
    assert count_rows(Sale) == 1
    assert count_rows(Receipt) == 1
    assert count_rows(SaleItem) == 0


def test_insufficient_stock_rolls_back(client, sale_payload, stock_of, count_rows):
    payload, para, vitc = sale_payload
    payload["items"][1]["quantity"] = 5

    resp = client.post("/api/functions/complete-sale", json=payload)
    assert resp.status_code == 500
    assert "Insufficient stock for Vitamin C" in resp.json()["detail"]
    assert count_rows(Sale) == 0
    assert stock_of(para) == 10
    assert stock_of(vitc) == 4


def test_expired_item_is_rejected(client, make_item, expired_date, count_rows):
    item = make_item(name="Old Syrup", expiry_date=expired_date)
    resp = client.post("/api/sales", json={"total": 2.5, "items": [{"id": item, "quantity": 1, "price": 2.5}]})
    assert resp.status_code == 500
    assert "EXPIRED" in resp.json()["detail"]
    assert count_rows(Sale) == 0


def test_unknown_product_is_rejected(client, count_rows):
    resp = client.post("/api/sales", json={"total": 1, "items": [{"id": "missing", "quantity": 1, "price": 1}]})
    assert resp.status_code == 500
    assert "Product not found" in resp.json()["detail"]
    assert count_rows(Sale) == 0


def test_failure_after_item_insert_rolls_everything_back(client, sale_payload, monkeypatch, stock_of, count_rows):
    payload, para, vitc = sale_payload

    def _explode(db, demand):
        raise RuntimeError("inventory update failed")

    monkeypatch.setattr(sales_service, "_decrement_stock", _explode)

    resp = client.post("/api/sales", json=payload)
    assert resp.status_code == 500
    assert resp.json()["detail"] == "inventory update failed"
    assert count_rows(Sale) == 0
    assert count_rows(SaleItem) == 0
    assert count_rows(Receipt) == 0
    assert stock_of(para) == 10
    assert stock_of(vitc) == 4


def test_invalid_payload_is_a_bad_request(client, make_item, count_rows):
    item = make_item()
    resp = client.post("/api/sales", json={"total": 1, "items": [{"id": item, "quantity": 0, "price": 1}]})
    assert resp.status_code == 400
    resp = client.post("/api/sales", json={"total": 1, "discount": 150})
    assert resp.status_code == 400
    assert count_rows(Sale) == 0


def test_mismatched_total_is_stored_as_submitted(client, sale_payload, caplog):
    payload, _, _ = sale_payload
    payload["total"] = 7.0

    resp = client.post("/api/sales", json=payload)
    assert resp.status_code == 200
    with SessionLocal() as db:
        assert db.get(Sale, resp.json()["saleId"]).total == 7.0
    assert any("differs from computed" in r.getMessage() for r in caplog.records)


def test_sale_is_audited_for_the_cashier(client, sale_payload, cashier):
    payload, _, _ = sale_payload
    payload["cashierId"] = cashier["id"]

    resp = client.post("/api/sales", json=payload)
    with SessionLocal() as db:
        entry = db.query(AuditLog).filter_by(event_type="SALE_CREATED").one()
        assert entry.resource_id == resp.json()["saleId"]
        assert entry.user_id == cashier["id"]
        assert entry.user_email == cashier["email"]
        assert entry.user_role == cashier["role"]


def test_audit_failure_does_not_fail_the_sale(client, sale_payload, monkeypatch, count_rows):
    payload, _, _ = sale_payload

    def _broken_session():
        raise RuntimeError("audit store unavailable")

    monkeypatch.setattr(audit_service, "SessionLocal", _broken_session)

    resp = client.post("/api/sales", json=payload)
    assert resp.status_code == 200
    assert count_rows(Sale) == 1
    assert count_rows(AuditLog) == 0
