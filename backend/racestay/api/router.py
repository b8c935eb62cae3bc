"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter
from racestay.api.routes import admin, availability, bookings, points, webhooks

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(bookings.router)
api_router.include_router(points.router)
api_router.include_router(availability.router)
api_router.include_router(webhooks.router)
api_router.include_router(admin.router)
