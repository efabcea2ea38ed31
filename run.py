#!/usr/bin/env python3
"""
Start the smart pricing API with uvicorn.
Run with: python run.py
"""
import uvicorn
from dotenv import load_dotenv

load_dotenv()

from smart_pricing.config import settings  # noqa: E402  (reads the .env loaded above)

if __name__ == "__main__":
    scheduler = (
        f"daily at {settings.pricing_run_hour_utc:02d}:00 UTC" if settings.scheduler_enabled else "disabled"
    )
    print(f"{settings.app_name} v{settings.app_version}")
    print(f"Database: {settings.database_url}")
    print(f"Pricing run: {scheduler}")
    print("Webhooks: /api/v1/webhooks/products/update, /api/v1/webhooks/orders/create")
    print("API docs: http://localhost:8000/docs\n")

    uvicorn.run(
        "smart_pricing.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level=settings.log_level.lower()
    )
