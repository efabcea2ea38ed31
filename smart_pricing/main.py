"""Main FastAPI application."""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from smart_pricing.config import settings
from smart_pricing.database import init_db
from smart_pricing.scheduler import scheduler
from smart_pricing.routers import (
    health,
    pricing,
    stores,
    webhooks,
)
from smart_pricing.routers import settings as settings_router

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Revenue-driven automatic price adjustment for Shopify variants"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, prefix="/api/v1", tags=["Health"])
app.include_router(settings_router.router, prefix="/api/v1/settings", tags=["Settings"])
app.include_router(stores.router, prefix="/api/v1/stores", tags=["Stores"])
app.include_router(pricing.router, prefix="/api/v1/pricing", tags=["Smart Pricing"])
app.include_router(webhooks.router, prefix="/api/v1/webhooks", tags=["Webhooks"])


@app.api_route("/api")
async def api_root():
    """API information endpoint."""
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "docs": "/docs",
        "redoc": "/redoc"
    }


@app.on_event("startup")
async def startup_event():
    """Create tables and start the background scheduler."""
    init_db()
    if settings.scheduler_enabled:
        scheduler.start()


@app.on_event("shutdown")
async def shutdown_event():
    """Stop background scheduler on app shutdown."""
    scheduler.stop()
