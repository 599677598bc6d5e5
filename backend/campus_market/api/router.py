"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter
from campus_market.api.routes import admin, auth, listings, requests

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(auth.router)
api_router.include_router(listings.router)
api_router.include_router(requests.router)
api_router.include_router(admin.router)
