"""Health check and status endpoints."""
from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from smart_pricing.config import settings
from smart_pricing.database import get_db
from smart_pricing.scheduler import scheduler

router = APIRouter()


@router.get("/health")
async def health_check(db: Session = Depends(get_db)):
    """Check API and database health."""
    try:
        db.execute(text("SELECT 1"))
        db_status = "healthy"
    except Exception as e:
        db_status = f"unhealthy: {str(e)}"

    return {
        "status": "healthy" if db_status == "healthy" else "degraded",
        "database": db_status,
        "webhook_verification": bool(settings.shopify_webhook_secret),
        "scheduler": scheduler.get_status(),
    }


@router.get("/config")
async def get_config():
    """Get current configuration (non-sensitive)."""
    return {
        "shopify_api_version": settings.shopify_api_version,
        "shopify_min_request_interval_ms": settings.shopify_min_request_interval_ms,
        "pricing_defaults": {
            "increment_percent": settings.default_increment_percent,
            "period_hours": settings.default_period_hours,
            "revenue_drop_threshold_percent": settings.default_revenue_drop_threshold_percent,
            "wait_hours_after_revert": settings.default_wait_hours_after_revert,
            "max_increase_percent": settings.default_max_increase_percent,
        },
        "enable_bump_percent": settings.enable_bump_percent,
        "manual_edit_cooldown_hours": settings.manual_edit_cooldown_hours,
        "pricing_run_hour_utc": settings.pricing_run_hour_utc,
    }
