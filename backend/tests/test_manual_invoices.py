from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from backend.app import models, schemas
from backend.app.schemas.invoice_metadata import (
    FixedFeeMetadata,
    ObjectBasedMetadata,
    parse_item_metadata,
)
from backend.app.services.audit import AuditSink
from backend.app.services.billing_computation import BillingComputation
from backend.app.services.invoice_numbers import InvoiceNumberAllocator
from backend.app.services.invoice_writer import InvoiceWriter
from backend.app.services.invoices import InvoiceService


class RecordingAuditSink(AuditSink):
    def __init__(self):
        self.entries = []

    def log(self, db, *, actor, action_type, entity_type, entity_id, **kwargs):
        self.entries.append((action_type, entity_id, kwargs.get("new_values")))


@pytest.fixture
def customer(factory):
    acme = factory.client("Acme")
    gps = factory.service("GPS Tracking")
    factory.assign(acme, gps)
    tariff = factory.tariff("Basic", "5.00")
    factory.tracked_object(acme, "Truck", tariff=tariff)
    factory.tracked_object(acme, "Van", tariff=tariff)
    return {"client": acme, "gps": gps}


@pytest.fixture
def create(db_session, tariff_resolver, fixed_today):
    audit = RecordingAuditSink()

    def issue(client, *items, invoice_date=date(2026, 3, 5), **extra):
        invoice = InvoiceService.create_invoice(
            db_session,
            schemas.InvoiceCreate(
                client_id=client.id,
                invoice_date=invoice_date,
                items=[schemas.InvoiceItemCreate(**item) for item in items],
                **extra,
            ),
            actor="clerk",
            computation=BillingComputation(tariff_resolver, today=lambda: fixed_today),
            writer=InvoiceWriter(InvoiceNumberAllocator(lock_key=1)),
            audit_sink=audit,
        )
        return invoice

    issue.audit = audit
    return issue


def test_fixed_fee_is_priced_from_the_catalogue(db_session, factory, customer, create):
    sim = factory.service(
        "SIM card", service_type=models.ServiceType.FIXED, fixed_price="3.50"
    )

    invoice = create(
        customer["client"], {"service_id": sim.id, "quantity": 2}, notes="Two spare cards"
    )

    assert invoice.total_amount == Decimal("7.00")
    assert (invoice.billing_month, invoice.billing_year) == (3, 2026)
    assert invoice.notes == "Two spare cards"
    assert invoice.created_by == "clerk"
    [item] = invoice.items
    assert item.quantity == 2
    assert item.unit_price == Decimal("3.50")
    assert parse_item_metadata(item.item_metadata) == FixedFeeMetadata(service_id=sim.id)
    [(action, entity_id, values)] = create.audit.entries
    assert action == models.AuditAction.INVOICE_CREATE.value
    assert entity_id == invoice.id
    assert values["manual"] is True


def test_object_line_skips_objects_already_billed(db_session, factory, customer, create):
    truck, van = db_session.query(models.TrackedObject).order_by(models.TrackedObject.name).all()
    factory.invoice(customer["client"], month=3, year=2026, number="2026-0001", objects=[truck])

    invoice = create(
        customer["client"],
        {"service_id": customer["gps"].id, "description": "Tracking for March"},
    )

    [item] = invoice.items
    assert item.description == "Tracking for March"
    metadata = parse_item_metadata(item.item_metadata)
    assert isinstance(metadata, ObjectBasedMetadata)
    assert [charge.id for charge in metadata.objects] == [van.id]
    assert invoice.total_amount == Decimal("5.00")
    assert invoice.invoice_number != "2026-0001"


def test_billing_period_can_differ_from_the_invoice_date(customer, create):
    invoice = create(
        customer["client"],
        {"service_id": customer["gps"].id},
        billing_month=2,
        billing_year=2026,
    )

    assert (invoice.billing_month, invoice.billing_year) == (2, 2026)
    assert invoice.invoice_date == date(2026, 3, 5)
    assert invoice.total_amount == Decimal("10.00")


def test_object_service_must_be_assigned(db_session, factory, customer, create):
    unassigned = factory.service("Fuel sensors")

    with pytest.raises(ValueError, match="must be assigned"):
        create(customer["client"], {"service_id": unassigned.id})

    assert db_session.query(models.Invoice).count() == 0


def test_inactive_or_unknown_services_are_rejected(factory, customer, create):
    retired = factory.service(
        "Old plan", service_type=models.ServiceType.FIXED, fixed_price="1.00", is_active=False
    )

    with pytest.raises(ValueError, match="inactive"):
        create(customer["client"], {"service_id": retired.id})
    with pytest.raises(ValueError, match="not found"):
        create(customer["client"], {"service_id": "00000000-0000-0000-0000-000000000000"})


def test_nothing_billable_is_rejected(db_session, factory, customer, create):
    objects = db_session.query(models.TrackedObject).all()
    factory.invoice(customer["client"], month=3, year=2026, number="2026-0001", objects=objects)

    with pytest.raises(ValueError, match="Nothing billable"):
        create(customer["client"], {"service_id": customer["gps"].id})

    assert db_session.query(models.Invoice).count() == 1


def test_create_invoice_endpoint(client, factory, customer):
    sim = factory.service(
        "SIM card", service_type=models.ServiceType.FIXED, fixed_price="3.50"
    )

    response = client.post(
        "/invoices",
        json={
            "client_id": customer["client"].id,
            "invoice_date": "2026-03-05",
            "items": [{"service_id": sim.id, "quantity": 3}],
        },
    )

    assert response.status_code == 201, response.text
    body = response.json()
    assert Decimal(body["total_amount"]) == Decimal("10.50")
    assert body["client_name"] == "Acme"
    assert body["items"][0]["quantity"] == 3
    assert body["created_by"] == "billing@example.com"


@pytest.mark.parametrize(
    "payload_items, expected",
    [
        ([], 422),
        ([{"service_id": "00000000-0000-0000-0000-000000000000"}], 400),
    ],
)
def test_create_invoice_endpoint_rejects_bad_items(client, customer, payload_items, expected):
    response = client.post(
        "/invoices",
        json={"client_id": customer["client"].id, "items": payload_items},
    )

    assert response.status_code == expected


def test_create_invoice_for_unknown_client_returns_404(client, customer):
    response = client.post(
        "/invoices",
        json={
            "client_id": "00000000-0000-0000-0000-000000000000",
            "items": [{"service_id": customer["gps"].id}],
        },
    )

    assert response.status_code == 404
