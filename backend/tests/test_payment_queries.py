from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError

from backend.app import models, schemas
from backend.app.services.audit import AuditSink
from backend.app.services.payments import PaymentService


class RecordingAuditSink(AuditSink):
    def __init__(self):
        self.entries = []

    def log(self, db, *, actor, action_type, entity_type, entity_id, **kwargs):
        self.entries.append((actor, action_type, entity_id, kwargs.get("new_values")))


@pytest.fixture
def fleet(factory):
    customer = factory.client("Fleet Co")
    factory.assign(customer, factory.service())
    tariff = factory.tariff("Basic", "5.00")
    truck = factory.tracked_object(customer, "Truck", tariff=tariff)
    van = factory.tracked_object(customer, "Van", tariff=tariff)
    return {"client": customer, "tariff": tariff, "truck": truck, "van": van}


def pay(db, resolver, client, tracked, *, month, year, paid_on, **extra):
    return PaymentService.record_payment(
        db,
        schemas.PaymentCreate(
            client_id=client.id,
            payment_date=paid_on,
            object_payments=[
                schemas.ObjectPaymentInput(
                    object_id=tracked.id, billing_month=month, billing_year=year
                )
            ],
            **extra,
        ),
        tariff_resolver=resolver,
    )


@pytest.fixture
def ledger(db_session, factory, fleet, tariff_resolver):
    other = factory.client("Other Co")
    bus = factory.tracked_object(other, "Bus", tariff=fleet["tariff"])
    return {
        "truck": pay(
            db_session, tariff_resolver, fleet["client"], fleet["truck"],
            month=2, year=2026, paid_on=date(2026, 2, 10),
        ),
        "van": pay(
            db_session, tariff_resolver, fleet["client"], fleet["van"],
            month=1, year=2026, paid_on=date(2026, 1, 12),
        ),
        "bus": pay(
            db_session, tariff_resolver, other, bus,
            month=3, year=2026, paid_on=date(2026, 3, 5),
            payment_type=models.PaymentType.ADVANCE, notes="Prepaid quarter",
        ),
        "other": other,
    }


def listed_ids(db, **filters):
    items, total = PaymentService.list_payments(db, **filters)
    ids = [payment.id for payment in items]
    assert total == len(ids)
    return ids


def test_list_payments_is_newest_first(db_session, ledger):
    assert listed_ids(db_session) == [ledger["bus"].id, ledger["truck"].id, ledger["van"].id]


def test_list_payments_filters(db_session, fleet, ledger):
    assert listed_ids(db_session, client_id=fleet["client"].id) == [
        ledger["truck"].id,
        ledger["van"].id,
    ]
    assert listed_ids(db_session, payment_type=models.PaymentType.ADVANCE) == [ledger["bus"].id]
    assert listed_ids(db_session, date_from=date(2026, 2, 1), date_to=date(2026, 2, 28)) == [
        ledger["truck"].id
    ]
    assert listed_ids(db_session, month=1, year=2026) == [ledger["van"].id]
    assert listed_ids(db_session, search="prepaid") == [ledger["bus"].id]
    assert listed_ids(db_session, search="fleet") == [ledger["truck"].id, ledger["van"].id]


def test_list_payments_paginates(db_session, ledger):
    items, total = PaymentService.list_payments(db_session, skip=1, limit=1)

    assert total == 3
    assert [payment.id for payment in items] == [ledger["truck"].id]


def test_payment_list_endpoints(client, fleet, ledger):
    response = client.get("/payments", params={"from": "2026-03-01"})

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["total"] == 1
    assert body["items"][0]["client_name"] == "Other Co"

    per_client = client.get(f"/payments/clients/{fleet['client'].id}", params={"month": 2})
    assert per_client.status_code == 200
    assert [item["id"] for item in per_client.json()["items"]] == [ledger["truck"].id]

    missing = client.get("/payments/clients/00000000-0000-0000-0000-000000000000")
    assert missing.status_code == 404


def test_update_payment_moves_the_payment_period(db_session, ledger):
    audit = RecordingAuditSink()

    updated = PaymentService.update_payment(
        db_session,
        ledger["truck"],
        schemas.PaymentUpdate(amount=Decimal("12.50"), payment_date=date(2026, 4, 1)),
        actor="cashier",
        audit_sink=audit,
    )

    assert updated.amount == Decimal("12.50")
    assert (updated.payment_month, updated.payment_year) == (4, 2026)
    assert [record.billing_month for record in updated.object_records] == [2]
    assert audit.entries == [
        (
            "cashier",
            models.AuditAction.PAYMENT_UPDATE.value,
            updated.id,
            {"amount": "12.50", "payment_date": "2026-04-01"},
        )
    ]


def test_payment_update_requires_a_change():
    with pytest.raises(ValidationError):
        schemas.PaymentUpdate()
    with pytest.raises(ValidationError):
        schemas.PaymentUpdate(amount=None)
    assert schemas.PaymentUpdate(notes=None).model_fields_set == {"notes"}


def test_update_payment_endpoint(client, ledger):
    response = client.put(
        f"/payments/{ledger['van'].id}",
        json={"payment_type": "adjustment", "notes": "Bank correction"},
    )

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["payment_type"] == "adjustment"
    assert body["notes"] == "Bank correction"
    assert Decimal(body["amount"]) == Decimal("5.00")

    assert client.put(f"/payments/{ledger['van'].id}", json={}).status_code == 422
    unknown = client.put(
        "/payments/00000000-0000-0000-0000-000000000000", json={"notes": "x"}
    )
    assert unknown.status_code == 404


def test_object_paid_periods_are_chronological(db_session, fleet, tariff_resolver):
    pay(db_session, tariff_resolver, fleet["client"], fleet["truck"],
        month=3, year=2026, paid_on=date(2026, 3, 1))
    first = pay(db_session, tariff_resolver, fleet["client"], fleet["truck"],
                month=1, year=2026, paid_on=date(2026, 1, 3))

    periods = PaymentService.object_paid_periods(db_session, fleet["truck"].id)

    assert [(period.billing_year, period.billing_month) for period in periods] == [
        (2026, 1),
        (2026, 3),
    ]
    assert periods[0].payment_id == first.id
    assert periods[0].amount == Decimal("5.00")
    assert periods[0].payment_type == models.PaymentType.REGULAR
    assert PaymentService.object_paid_periods(db_session, fleet["van"].id) == []


def test_next_unpaid_period_skips_settled_months(db_session, factory, fleet, tariff_resolver):
    today = date(2026, 3, 20)
    truck = fleet["truck"]
    first = PaymentService.next_unpaid_period(db_session, truck, today=today)
    assert (first.billing_year, first.billing_month) == (2025, 1)

    for month in (1, 2):
        pay(db_session, tariff_resolver, fleet["client"], truck,
            month=month, year=2025, paid_on=date(2026, 1, 5))

    following = PaymentService.next_unpaid_period(db_session, truck, today=today)
    assert (following.billing_year, following.billing_month) == (2025, 3)

    untariffed = factory.tracked_object(fleet["client"], "Trailer")
    fallback = PaymentService.next_unpaid_period(db_session, untariffed, today=today)
    assert (fallback.billing_year, fallback.billing_month) == (2026, 3)


def test_available_periods_flag_invoices_and_skip_settled(
    db_session, factory, fleet, tariff_resolver
):
    today = date(2026, 3, 20)
    truck = fleet["truck"]
    pay(db_session, tariff_resolver, fleet["client"], truck,
        month=1, year=2025, paid_on=date(2025, 1, 5))
    invoice = factory.invoice(
        fleet["client"], month=3, year=2025, number="2025-0003", objects=[truck], price="5.00"
    )

    available = PaymentService.available_payment_periods(
        db_session, truck, count=3, today=today
    )

    assert available.object_id == truck.id
    assert [(period.billing_year, period.billing_month) for period in available.periods] == [
        (2025, 2),
        (2025, 3),
        (2025, 4),
    ]
    assert [period.has_invoice for period in available.periods] == [False, True, False]
    assert available.periods[1].invoice_id == invoice.id
    assert available.periods[1].invoice_number == "2025-0003"
    assert {period.price for period in available.periods} == {Decimal("5.00")}
    assert {period.tariff_name for period in available.periods} == {"Basic"}

    everything = PaymentService.available_payment_periods(
        db_session, truck, count=0, today=today
    )
    assert len(everything.periods) == 26
    assert (everything.periods[-1].billing_year, everything.periods[-1].billing_month) == (
        2027,
        3,
    )


def test_available_periods_need_a_current_tariff(db_session, factory, fleet):
    untariffed = factory.tracked_object(fleet["client"], "Trailer")

    available = PaymentService.available_payment_periods(
        db_session, untariffed, today=date(2026, 3, 20)
    )

    assert available.periods == []


def test_object_payment_history_is_newest_period_first(db_session, fleet, tariff_resolver):
    for month in (1, 2):
        pay(db_session, tariff_resolver, fleet["client"], fleet["truck"],
            month=month, year=2026, paid_on=date(2026, month, 9))

    items, total = PaymentService.object_payment_history(db_session, fleet["truck"].id)

    assert total == 2
    assert [item.billing_month for item in items] == [2, 1]
    assert items[0].tariff_name == "Basic"
    assert items[0].client_name == "Fleet Co"

    january, total = PaymentService.object_payment_history(
        db_session, fleet["truck"].id, month=1
    )
    assert total == 1
    assert january[0].payment_date == date(2026, 1, 9)


def test_object_payment_endpoints(client, db_session, fleet, tariff_resolver):
    pay(db_session, tariff_resolver, fleet["client"], fleet["truck"],
        month=2, year=2026, paid_on=date(2026, 2, 10))
    base = f"/payments/objects/{fleet['truck'].id}"

    paid = client.get(f"{base}/paid-periods")
    assert paid.status_code == 200
    assert [(item["billing_year"], item["billing_month"]) for item in paid.json()] == [(2026, 2)]

    next_unpaid = client.get(f"{base}/next-unpaid")
    assert next_unpaid.status_code == 200
    assert next_unpaid.json()["object_id"] == fleet["truck"].id

    available = client.get(f"{base}/available-periods", params={"count": 2})
    assert available.status_code == 200
    assert len(available.json()["periods"]) == 2

    history = client.get(f"{base}/history")
    assert history.status_code == 200
    assert history.json()["object_name"] == "Truck"
    assert history.json()["total"] == 1

    too_many = client.get(f"{base}/available-periods", params={"count": 61})
    assert too_many.status_code == 422

    missing = client.get("/payments/objects/not-a-uuid/history")
    assert missing.status_code == 404
