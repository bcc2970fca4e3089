"""Expose the billing backend FastAPI app and enforce local development CORS defaults."""

import logging
import os
import re
from contextlib import asynccontextmanager
from typing import Iterable

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import schemas
from .migrations import run_database_migrations
from .routers import invoices_router, payments_router, services_router
from .settings import RUN_MIGRATIONS_ENV, read_bool_env

LOGGER = logging.getLogger(__name__)

SERVICE_NAME = "billing-backend"

LOCAL_DEVELOPMENT_ORIGINS = {
    "http://localhost:5174",
    "http://localhost:5173",
}
LOCALHOST_ORIGIN_REGEX = r"https?://(localhost|127\.0\.0\.1|0\.0\.0\.0)(:\d+)?$"

DEFAULT_ALLOWED_ORIGINS = {
    "http://127.0.0.1:5173",
    "http://127.0.0.1:5174",
    "http://localhost:4173",
    "http://127.0.0.1:4173",
    *LOCAL_DEVELOPMENT_ORIGINS,
}


def _normalize_origin(origin: str) -> str | None:
    stripped = origin.strip()
    if not stripped:
        return None
    return stripped.rstrip("/")


def _read_allowed_origins(raw_origins: Iterable[str]) -> list[str]:
    normalized = {_normalize_origin(origin) for origin in raw_origins}
    return sorted({origin for origin in normalized if origin})


def _split_raw_origins(raw_value: str) -> list[str]:
    """Split a raw origin string using commas or whitespace as separators."""

    return [origin for origin in re.split(r"[\s,]+", raw_value) if origin]


def _resolve_allowed_origins() -> list[str]:
    raw_value = os.getenv("BACKEND_ALLOWED_ORIGINS")
    if raw_value:
        origins = _read_allowed_origins(_split_raw_origins(raw_value))
    else:
        origins = _read_allowed_origins(DEFAULT_ALLOWED_ORIGINS)

    missing_dev_origins = [
        origin for origin in LOCAL_DEVELOPMENT_ORIGINS if origin not in origins
    ]
    if missing_dev_origins:
        origins = _read_allowed_origins([*origins, *missing_dev_origins])
    return origins


def ensure_database_is_ready() -> None:
    """Apply pending database migrations when the service starts."""

    if not read_bool_env(RUN_MIGRATIONS_ENV, True):
        LOGGER.info("Startup migrations disabled via %s", RUN_MIGRATIONS_ENV)
        return
    LOGGER.info("Ensuring database schema is up to date before serving requests")
    run_database_migrations()


@asynccontextmanager
async def lifespan(_: FastAPI):
    ensure_database_is_ready()
    yield


app = FastAPI(title="Billing Backoffice API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_resolve_allowed_origins(),
    allow_origin_regex=LOCALHOST_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(invoices_router, prefix="/invoices", tags=["invoices"])
app.include_router(payments_router, prefix="/payments", tags=["payments"])
app.include_router(services_router, prefix="/services", tags=["services"])


@app.get("/", tags=["health"], response_model=schemas.HealthStatus)
def read_root() -> schemas.HealthStatus:
    """Return a simple health check response."""
    return schemas.HealthStatus(status="ok", service=SERVICE_NAME)
