"""Routers package."""

from .invoices import router as invoices_router
from .payments import router as payments_router
from .services import router as services_router

__all__ = [
    "invoices_router",
    "payments_router",
    "services_router",
]
