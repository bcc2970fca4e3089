from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError

from backend.app import models, schemas
from backend.app.services.service_catalog import ServiceCatalog, ServiceCatalogError


def test_fixed_service_requires_a_price():
    with pytest.raises(ValidationError):
        schemas.ServiceCreate(name="Platform", service_type=models.ServiceType.FIXED)


def test_object_based_services_never_store_a_fixed_price(db_session):
    service = ServiceCatalog.create_service(
        db_session,
        schemas.ServiceCreate(
            name="  GPS Tracking ",
            service_type=models.ServiceType.OBJECT_BASED,
            fixed_price=Decimal("9.99"),
        ),
        actor="admin",
    )

    assert service.name == "GPS Tracking"
    assert service.fixed_price is None
    assert service.is_active is True


def test_duplicate_service_names_conflict(db_session, factory):
    factory.service("GPS Tracking")

    with pytest.raises(ServiceCatalogError):
        ServiceCatalog.create_service(
            db_session,
            schemas.ServiceCreate(name="GPS Tracking", service_type=models.ServiceType.OBJECT_BASED),
        )


def test_service_in_use_cannot_be_deleted(db_session, factory):
    service = factory.service()
    factory.assign(factory.client(), service)

    with pytest.raises(ServiceCatalogError) as excinfo:
        ServiceCatalog.delete_service(db_session, service)

    assert excinfo.value.detail["assignments"] == 1
    assert excinfo.value.detail["invoice_items"] == 0
    assert db_session.get(models.Service, service.id) is not None


def test_unused_service_is_deleted(db_session, factory):
    service = factory.service("Spare")

    ServiceCatalog.delete_service(db_session, service)

    assert db_session.query(models.Service).count() == 0


def test_active_assignment_cannot_be_duplicated(db_session, factory):
    customer = factory.client()
    service = factory.service()
    payload = schemas.ClientServiceAssign(service_id=service.id, start_date=date(2026, 1, 1))
    ServiceCatalog.assign_service(db_session, customer.id, payload)

    with pytest.raises(ServiceCatalogError):
        ServiceCatalog.assign_service(db_session, customer.id, payload)


def test_ended_assignment_can_be_renewed(db_session, factory):
    customer = factory.client()
    service = factory.service()
    factory.assign(
        customer,
        service,
        end_date=date(2025, 6, 30),
        status=models.AssignmentStatus.TERMINATED,
    )

    renewed = ServiceCatalog.assign_service(
        db_session, customer.id, schemas.ClientServiceAssign(service_id=service.id)
    )

    assert renewed.status == models.AssignmentStatus.ACTIVE


def test_inactive_services_cannot_be_assigned(db_session, factory):
    customer = factory.client()
    retired = factory.service("Retired", is_active=False)

    with pytest.raises(ValueError):
        ServiceCatalog.assign_service(
            db_session, customer.id, schemas.ClientServiceAssign(service_id=retired.id)
        )


def test_terminate_assignment_sets_end_date_once(db_session, factory):
    assignment = factory.assign(factory.client(), factory.service(), start_date=date(2026, 1, 1))

    terminated = ServiceCatalog.terminate_assignment(
        db_session, assignment, end_date=date(2026, 2, 28)
    )

    assert terminated.status == models.AssignmentStatus.TERMINATED
    assert terminated.end_date == date(2026, 2, 28)
    with pytest.raises(ServiceCatalogError):
        ServiceCatalog.terminate_assignment(db_session, terminated)


def test_termination_cannot_precede_start(db_session, factory):
    assignment = factory.assign(factory.client(), factory.service(), start_date=date(2026, 1, 1))

    with pytest.raises(ValueError):
        ServiceCatalog.terminate_assignment(db_session, assignment, end_date=date(2025, 12, 31))


def test_service_endpoints(client, factory):
    created = client.post(
        "/services",
        json={"name": "Platform", "service_type": "fixed", "fixed_price": "50.00"},
    )
    assert created.status_code == 201, created.text
    service = created.json()
    assert Decimal(service["fixed_price"]) == Decimal("50.00")

    duplicate = client.post(
        "/services",
        json={"name": "Platform", "service_type": "fixed", "fixed_price": "10.00"},
    )
    assert duplicate.status_code == 409

    missing_price = client.post("/services", json={"name": "Other", "service_type": "fixed"})
    assert missing_price.status_code == 422

    customer = factory.client()
    assigned = client.post(
        f"/services/clients/{customer.id}/assignments",
        json={"service_id": service["id"], "start_date": "2026-01-01"},
    )
    assert assigned.status_code == 201, assigned.text
    assignment = assigned.json()

    in_use = client.delete(f"/services/{service['id']}")
    assert in_use.status_code == 409
    assert in_use.json()["detail"]["assignments"] == 1

    terminated = client.post(
        f"/services/assignments/{assignment['id']}/terminate",
        params={"end_date": "2026-03-31"},
    )
    assert terminated.status_code == 200
    assert terminated.json()["status"] == "terminated"

    listed = client.get("/services")
    assert [entry["name"] for entry in listed.json()] == ["Platform"]


def test_service_endpoints_return_404_for_unknown_ids(client):
    assert client.delete("/services/not-a-uuid").status_code == 404
    assert (
        client.post(
            "/services/clients/00000000-0000-0000-0000-000000000000/assignments",
            json={"service_id": "00000000-0000-0000-0000-000000000000"},
        ).status_code
        == 404
    )
