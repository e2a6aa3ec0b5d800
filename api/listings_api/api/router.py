from fastapi import APIRouter

from listings_api.api.routes import admin_listings, health, host_listings, sweeps

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(admin_listings.router, prefix="/admin", tags=["admin"])
api_router.include_router(host_listings.router, prefix="/hosts", tags=["host"])
api_router.include_router(sweeps.router, prefix="/jobs", tags=["scheduler"])
