from __future__ import annotations

import base64
import os
import sys
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Generator, Iterable, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Ensure the project root (which exposes the ``backend`` package) is on ``sys.path``
PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from backend.app import models
from backend.app.database import Base, get_db
from backend.app.main import app
from backend.app.security import StaffIdentity, _load_jwt_key, create_access_token
from backend.app.services.tariff_resolver import SqlTariffResolver


@pytest.fixture(scope="session")
def security_settings() -> dict:
    os.environ["STAFF_JWT_SECRET"] = base64.urlsafe_b64encode(os.urandom(32)).decode()
    os.environ["ACCESS_TOKEN_EXPIRE_MINUTES"] = "60"
    os.environ["RUN_MIGRATIONS_ON_STARTUP"] = "0"
    _load_jwt_key.cache_clear()
    return {"user_id": "staff-1", "email": "billing@example.com"}


@pytest.fixture(scope="session", autouse=True)
def _ensure_security_settings(security_settings: dict) -> Generator[None, None, None]:
    yield


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture
def db_session(engine: Engine) -> Generator[Session, None, None]:
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def staff_token(security_settings: dict) -> str:
    return create_access_token(
        StaffIdentity(
            user_id=security_settings["user_id"],
            email=security_settings["email"],
            permissions=["billing"],
        )
    )


@pytest.fixture
def client(db_session: Session, staff_token: str) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        try:
            yield db_session
        finally:
            db_session.expire_all()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        test_client.headers.update({"Authorization": f"Bearer {staff_token}"})
        yield test_client
    app.dependency_overrides.pop(get_db, None)


class BillingFactory:
    """Builds billing fixtures directly through the models and commits them."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def _save(self, instance):
        self.db.add(instance)
        self.db.commit()
        self.db.refresh(instance)
        return instance

    def client(self, name: str = "Acme", *, is_active: bool = True) -> models.Client:
        return self._save(models.Client(name=name, is_active=is_active))

    def service(
        self,
        name: str = "GPS Tracking",
        *,
        service_type: models.ServiceType = models.ServiceType.OBJECT_BASED,
        fixed_price: Optional[str] = None,
        is_active: bool = True,
    ) -> models.Service:
        return self._save(
            models.Service(
                name=name,
                service_type=service_type,
                fixed_price=Decimal(fixed_price) if fixed_price is not None else None,
                is_active=is_active,
            )
        )

    def assign(
        self,
        client: models.Client,
        service: models.Service,
        *,
        start_date: date = date(2025, 1, 1),
        end_date: Optional[date] = None,
        status: models.AssignmentStatus = models.AssignmentStatus.ACTIVE,
    ) -> models.ClientServiceAssignment:
        return self._save(
            models.ClientServiceAssignment(
                client_id=client.id,
                service_id=service.id,
                start_date=start_date,
                end_date=end_date,
                status=status,
            )
        )

    def tariff(self, name: str = "Standard", price: str = "25.00") -> models.Tariff:
        return self._save(models.Tariff(name=name, price=Decimal(price)))

    def tracked_object(
        self,
        client: models.Client,
        name: str,
        *,
        tariff: Optional[models.Tariff] = None,
        effective_from: date = date(2025, 1, 1),
        status: models.ObjectStatus = models.ObjectStatus.ACTIVE,
    ) -> models.TrackedObject:
        tracked = models.TrackedObject(client_id=client.id, name=name, status=status)
        if tariff is not None:
            tracked.tariff_assignments.append(
                models.ObjectTariff(tariff_id=tariff.id, effective_from=effective_from)
            )
        return self._save(tracked)

    def ownership(
        self,
        tracked: models.TrackedObject,
        client: models.Client,
        start_date: date,
        end_date: Optional[date] = None,
    ) -> models.ObjectOwnershipHistory:
        return self._save(
            models.ObjectOwnershipHistory(
                object_id=tracked.id,
                client_id=client.id,
                start_date=start_date,
                end_date=end_date,
            )
        )

    def attribute(
        self, tracked: models.TrackedObject, name: str, value: str
    ) -> models.ObjectAttribute:
        return self._save(
            models.ObjectAttribute(
                object_id=tracked.id, attribute_name=name, attribute_value=value
            )
        )

    def invoice(
        self,
        client: models.Client,
        *,
        month: int,
        year: int,
        number: str,
        objects: Iterable[models.TrackedObject] = (),
        price: str = "10.00",
        status: models.InvoiceStatus = models.InvoiceStatus.ISSUED,
        service: Optional[models.Service] = None,
    ) -> models.Invoice:
        """An invoice with one object-based line charging ``price`` per object."""

        charged = list(objects)
        unit = Decimal(price)
        total = unit * len(charged) if charged else unit
        invoice = models.Invoice(
            client_id=client.id,
            invoice_number=number,
            invoice_date=date(year, month, 1),
            billing_month=month,
            billing_year=year,
            total_amount=total,
            status=status,
        )
        invoice.items.append(
            models.InvoiceItem(
                position=0,
                service_id=service.id if service is not None else None,
                description="Historical tracking",
                quantity=1,
                unit_price=total,
                total_price=total,
                item_metadata={
                    "kind": "object_based",
                    "objects": [
                        {"id": tracked.id, "tariff_id": None, "price": str(unit)}
                        for tracked in charged
                    ],
                },
            )
        )
        return self._save(invoice)


@pytest.fixture
def factory(db_session: Session) -> BillingFactory:
    return BillingFactory(db_session)


@pytest.fixture
def fixed_today() -> date:
    return date(2026, 3, 20)


@pytest.fixture
def tariff_resolver(fixed_today: date) -> SqlTariffResolver:
    return SqlTariffResolver(cutoff_day=15, today=lambda: fixed_today)
