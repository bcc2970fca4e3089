from __future__ import annotations

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from backend.app import models
from backend.app.main import app


@pytest.fixture
def billed_client(factory):
    customer = factory.client("Acme")
    factory.assign(customer, factory.service())
    tariff = factory.tariff("Basic", "5.00")
    factory.tracked_object(customer, "Truck", tariff=tariff)
    factory.tracked_object(customer, "Van", tariff=tariff)
    return customer


def test_health_check_is_public():
    response = TestClient(app).get("/")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "billing-backend"}


def test_invoice_routes_require_a_token():
    response = TestClient(app).get("/invoices")

    assert response.status_code == 401


def test_generate_creates_invoices_for_the_period(client, billed_client):
    response = client.post("/invoices/generate", json={"month": 1, "year": 2026})

    assert response.status_code == 201, response.text
    [invoice] = response.json()
    assert invoice["client_id"] == billed_client.id
    assert invoice["invoice_number"] == "2026-0001"
    assert invoice["status"] == "issued"
    assert Decimal(invoice["total_amount"]) == Decimal("10.00")
    assert invoice["created_by"] == "billing@example.com"

    rerun = client.post("/invoices/generate", json={"month": "1", "year": "2026"})
    assert rerun.status_code == 201
    assert rerun.json() == []


@pytest.mark.parametrize(
    ("payload", "expected"),
    [
        ({"month": "13", "year": 2026}, 400),
        ({"month": "abc", "year": 2026}, 400),
        ({"month": " 3 ", "year": 2026}, 400),
        ({"month": 2, "year": 1999}, 400),
        ({"month": 2.5, "year": 2026}, 422),
        ({"month": 2}, 422),
    ],
)
def test_generate_rejects_invalid_periods(client, payload, expected):
    response = client.post("/invoices/generate", json=payload)

    assert response.status_code == expected


def test_generate_for_client(client, factory, billed_client):
    other = factory.client("Other")
    factory.assign(other, factory.service("Tracking Plus"))
    factory.tracked_object(other, "Bus", tariff=factory.tariff("Bus", "8.00"))

    response = client.post(
        f"/invoices/generate-for-client/{other.id}", json={"month": 1, "year": 2026}
    )

    assert response.status_code == 201
    assert [invoice["client_id"] for invoice in response.json()] == [other.id]

    missing = client.post(
        "/invoices/generate-for-client/00000000-0000-0000-0000-000000000000",
        json={"month": 1, "year": 2026},
    )
    assert missing.status_code == 404


def test_list_and_detail(client, factory, billed_client):
    bus = factory.tracked_object(billed_client, "Bus")
    factory.invoice(billed_client, month=1, year=2026, number="2026-0001", objects=[bus])
    paid = factory.invoice(
        billed_client,
        month=2,
        year=2026,
        number="2026-0002",
        status=models.InvoiceStatus.PAID,
    )

    listing = client.get("/invoices", params={"status": "paid"})
    assert listing.status_code == 200
    body = listing.json()
    assert body["total"] == 1
    assert [item["id"] for item in body["items"]] == [paid.id]

    by_period = client.get("/invoices", params={"year": 2026, "month": 1})
    assert [item["invoice_number"] for item in by_period.json()["items"]] == ["2026-0001"]

    invalid = client.get("/invoices", params={"month": 13})
    assert invalid.status_code == 422

    detail = client.get(f"/invoices/{paid.id}")
    assert detail.status_code == 200
    assert detail.json()["client_name"] == "Acme"

    first = by_period.json()["items"][0]
    items = client.get(f"/invoices/{first['id']}").json()["items"]
    assert items[0]["metadata"]["kind"] == "object_based"
    assert [entry["id"] for entry in items[0]["metadata"]["objects"]] == [bus.id]

    assert client.get("/invoices/not-a-uuid").status_code == 404


def test_status_transitions(client, factory, billed_client):
    to_pay = factory.invoice(billed_client, month=1, year=2026, number="2026-0001")
    to_cancel = factory.invoice(billed_client, month=2, year=2026, number="2026-0002")

    paid = client.patch(
        f"/invoices/{to_pay.id}/status",
        json={"status": "paid", "payment_date": "2026-02-05", "notes": "Cash"},
    )
    assert paid.status_code == 200, paid.text
    assert paid.json()["status"] == "paid"
    assert paid.json()["payment_date"] == "2026-02-05"
    assert paid.json()["payment_id"] is not None

    again = client.patch(f"/invoices/{to_pay.id}/status", json={"status": "paid"})
    assert again.status_code == 409

    cancelled = client.patch(f"/invoices/{to_cancel.id}/status", json={"status": "cancelled"})
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"

    reissue = client.patch(f"/invoices/{to_cancel.id}/status", json={"status": "issued"})
    assert reissue.status_code == 409


def test_status_update_validation(client, factory, billed_client):
    invoice = factory.invoice(billed_client, month=1, year=2026, number="2026-0001")

    with_amount = client.patch(
        f"/invoices/{invoice.id}/status", json={"status": "cancelled", "amount": "5.00"}
    )
    assert with_amount.status_code == 422

    missing = client.patch(
        "/invoices/00000000-0000-0000-0000-000000000000/status", json={"status": "paid"}
    )
    assert missing.status_code == 404
