"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter

from rental_engine.api.routes import bookings, drivers, webhooks

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(bookings.router)
api_router.include_router(drivers.router)
api_router.include_router(webhooks.router)
