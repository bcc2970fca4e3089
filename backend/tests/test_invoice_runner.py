from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from backend.app import models
from backend.app.schemas.invoice_metadata import ObjectBasedMetadata, parse_item_metadata
from backend.app.services.audit import AuditSink
from backend.app.services.billing_computation import BillingComputation
from backend.app.services.invoice_numbers import InvoiceNumberAllocator
from backend.app.services.invoice_runner import (
    GENERATION_EVENT,
    InvoiceGenerationError,
    MonthlyInvoiceRunner,
    parse_period_component,
)
from backend.app.services.invoice_writer import InvoiceWriter
from backend.app.services.tariff_resolver import TariffQuote, TariffResolver


class RecordingAuditSink(AuditSink):
    def __init__(self):
        self.entries = []

    def log(self, db, *, actor, action_type, entity_type, entity_id, **kwargs):
        self.entries.append((actor, action_type, entity_type, entity_id))


class AcmeResolver(TariffResolver):
    """Prices objects from a table and lets the test decide who is chargeable."""

    def __init__(self, prices):
        self.prices = prices
        self.not_chargeable = set()

    def resolve_latest_tariff(self, db, object_id, year, month):
        price = self.prices.get(object_id)
        return TariffQuote(tariff_id=None, price=price) if price is not None else None

    def is_period_paid(self, db, object_id, year, month):
        return False

    def should_charge_for_month(self, db, object_id, client_id, year, month):
        return (object_id, year, month) not in self.not_chargeable


def make_runner(resolver, today, audit_sink=None, computation=None):
    return MonthlyInvoiceRunner(
        computation=computation or BillingComputation(resolver, today=lambda: today),
        writer=InvoiceWriter(InvoiceNumberAllocator(lock_key=1)),
        audit_sink=audit_sink or RecordingAuditSink(),
        today=lambda: today,
    )


def object_lines(invoice):
    lines = []
    for item in invoice.items:
        metadata = parse_item_metadata(item.item_metadata)
        if isinstance(metadata, ObjectBasedMetadata):
            lines.append((item, metadata))
    return lines


@pytest.mark.parametrize(
    ("value", "expected"),
    [(3, 3), ("3", 3), ("12", 12), ("03", 3)],
)
def test_parse_period_component_accepts_integers_and_digit_strings(value, expected):
    assert parse_period_component(value, "month", 1, 12) == expected


@pytest.mark.parametrize(
    "value", [True, 0, 13, "3a", "", " 3 ", "3\n", "١٢", 3.0, None, "-1"]
)
def test_parse_period_component_rejects_everything_else(value):
    with pytest.raises(InvoiceGenerationError):
        parse_period_component(value, "month", 1, 12)


def test_acme_scenario_bills_new_object_from_the_next_period(db_session, factory):
    acme = factory.client("Acme")
    factory.assign(acme, factory.service())
    first = factory.tracked_object(acme, "O1")
    second = factory.tracked_object(acme, "O2")
    resolver = AcmeResolver({first.id: Decimal("5"), second.id: Decimal("7")})
    resolver.not_chargeable.add((second.id, 2026, 2))
    runner = make_runner(resolver, date(2026, 3, 20))

    february = runner.run(db_session, 2, 2026, "tester")

    assert len(february) == 1
    [(item, metadata)] = object_lines(february[0])
    assert item.unit_price == Decimal("5.00")
    assert metadata.object_ids() == {first.id}

    march = runner.run(db_session, 3, 2026, "tester")

    assert len(march) == 1
    [(item, metadata)] = object_lines(march[0])
    assert item.unit_price == Decimal("12.00")
    assert metadata.object_ids() == {first.id, second.id}


def test_rerun_for_same_period_creates_nothing(db_session, factory, tariff_resolver, fixed_today):
    customer = factory.client()
    factory.assign(customer, factory.service())
    factory.tracked_object(customer, "Truck", tariff=factory.tariff("Basic", "5.00"))
    runner = make_runner(tariff_resolver, fixed_today)

    assert len(runner.run(db_session, 2, 2026, "tester")) == 1
    assert runner.run(db_session, 2, 2026, "tester") == []
    assert db_session.query(models.Invoice).count() == 1


def test_rerun_bills_only_objects_added_since(db_session, factory, tariff_resolver, fixed_today):
    customer = factory.client()
    factory.assign(customer, factory.service())
    tariff = factory.tariff("Basic", "5.00")
    factory.tracked_object(customer, "Truck", tariff=tariff)
    runner = make_runner(tariff_resolver, fixed_today)
    runner.run(db_session, 2, 2026, "tester")

    newcomer = factory.tracked_object(customer, "Van", tariff=tariff)
    [second] = runner.run(db_session, 2, 2026, "tester")

    [(item, metadata)] = object_lines(second)
    assert metadata.object_ids() == {newcomer.id}
    assert item.unit_price == Decimal("5.00")
    billed = [
        charge.id
        for invoice in db_session.query(models.Invoice).all()
        for _, metadata in object_lines(invoice)
        for charge in metadata.objects
    ]
    assert sorted(billed) == sorted(set(billed))


def test_fixed_fee_is_not_repeated_by_a_rerun(db_session, factory, tariff_resolver, fixed_today):
    customer = factory.client()
    factory.assign(customer, factory.service())
    factory.assign(
        customer,
        factory.service("Platform", service_type=models.ServiceType.FIXED, fixed_price="50.00"),
    )
    tariff = factory.tariff("Basic", "5.00")
    factory.tracked_object(customer, "Truck", tariff=tariff)
    runner = make_runner(tariff_resolver, fixed_today)
    [first] = runner.run(db_session, 2, 2026, "tester")
    assert first.total_amount == Decimal("55.00")

    factory.tracked_object(customer, "Van", tariff=tariff)
    [second] = runner.run(db_session, 2, 2026, "tester")

    assert second.total_amount == Decimal("5.00")


def test_cancelled_invoices_do_not_block_regeneration(
    db_session, factory, tariff_resolver, fixed_today
):
    customer = factory.client()
    factory.assign(customer, factory.service())
    factory.tracked_object(customer, "Truck", tariff=factory.tariff("Basic", "5.00"))
    runner = make_runner(tariff_resolver, fixed_today)
    [first] = runner.run(db_session, 2, 2026, "tester")
    first.status = models.InvoiceStatus.CANCELLED
    db_session.commit()

    [replacement] = runner.run(db_session, 2, 2026, "tester")

    assert replacement.id != first.id
    assert replacement.total_amount == Decimal("5.00")


def test_numbers_are_sequential_across_clients(db_session, factory, tariff_resolver, fixed_today):
    service = factory.service()
    tariff = factory.tariff("Basic", "5.00")
    for name in ("Zeta Freight", "Acme"):
        customer = factory.client(name)
        factory.assign(customer, service)
        factory.tracked_object(customer, f"{name} truck", tariff=tariff)
    audit = RecordingAuditSink()

    invoices = make_runner(tariff_resolver, fixed_today, audit_sink=audit).run(
        db_session, 2, 2026, "tester"
    )

    assert [invoice.invoice_number for invoice in invoices] == ["2026-0001", "2026-0002"]
    assert [invoice.client.name for invoice in invoices] == ["Acme", "Zeta Freight"]
    assert [entry[1] for entry in audit.entries] == [
        models.AuditAction.INVOICE_CREATE.value,
        models.AuditAction.INVOICE_CREATE.value,
    ]
    assert {entry[2] for entry in audit.entries} == {"INVOICE"}


def test_only_clients_with_active_object_services_are_eligible(
    db_session, factory, tariff_resolver, fixed_today
):
    tariff = factory.tariff("Basic", "5.00")
    tracking = factory.service()
    fee = factory.service("Platform", service_type=models.ServiceType.FIXED, fixed_price="50.00")

    inactive = factory.client("Dormant", is_active=False)
    factory.assign(inactive, tracking)
    factory.tracked_object(inactive, "Dormant truck", tariff=tariff)

    fixed_only = factory.client("Fixed Only")
    factory.assign(fixed_only, fee)

    ended = factory.client("Ended")
    factory.assign(ended, tracking, end_date=date(2026, 1, 31))
    factory.tracked_object(ended, "Ended truck", tariff=tariff)

    invoices = make_runner(tariff_resolver, fixed_today).run(db_session, 2, 2026, "tester")

    assert invoices == []


def test_client_filter_limits_the_run(db_session, factory, tariff_resolver, fixed_today):
    service = factory.service()
    tariff = factory.tariff("Basic", "5.00")
    wanted = factory.client("Wanted")
    other = factory.client("Other")
    for customer in (wanted, other):
        factory.assign(customer, service)
        factory.tracked_object(customer, f"{customer.name} truck", tariff=tariff)

    invoices = make_runner(tariff_resolver, fixed_today).run(
        db_session, "2", "2026", "tester", client_id=wanted.id
    )

    assert [invoice.client_id for invoice in invoices] == [wanted.id]


def test_failure_for_one_client_does_not_stop_the_others(
    db_session, factory, tariff_resolver, fixed_today
):
    service = factory.service()
    tariff = factory.tariff("Basic", "5.00")
    broken = factory.client("Broken")
    healthy = factory.client("Healthy")
    for customer in (broken, healthy):
        factory.assign(customer, service)
        factory.tracked_object(customer, f"{customer.name} truck", tariff=tariff)

    class ExplodingComputation(BillingComputation):
        def compute(self, db, client, billing_month, billing_year):
            if client.id == broken.id:
                raise RuntimeError("boom")
            return super().compute(db, client, billing_month, billing_year)

    runner = make_runner(
        tariff_resolver,
        fixed_today,
        computation=ExplodingComputation(tariff_resolver, today=lambda: fixed_today),
    )

    invoices = runner.run(db_session, 2, 2026, "tester")

    assert [invoice.client_id for invoice in invoices] == [healthy.id]
    assert db_session.query(models.Invoice).count() == 1
    event = (
        db_session.query(models.OperationalMetricEvent)
        .filter(models.OperationalMetricEvent.event_type == GENERATION_EVENT)
        .one()
    )
    assert event.outcome == "partial"
    assert event.details["failed"] == 1


@pytest.mark.parametrize(
    ("month", "year", "client_id"),
    [
        (13, 2026, None),
        ("3a", 2026, None),
        (True, 2026, None),
        (2, 1999, None),
        (2, "20x6", None),
        (2, 2026, "not-a-uuid"),
    ],
)
def test_invalid_parameters_are_rejected(
    db_session, tariff_resolver, fixed_today, month, year, client_id
):
    runner = make_runner(tariff_resolver, fixed_today)

    with pytest.raises(InvoiceGenerationError):
        runner.run(db_session, month, year, "tester", client_id)

    event = db_session.query(models.OperationalMetricEvent).one()
    assert event.event_type == GENERATION_EVENT
    assert event.outcome == "rejected"
