"""Scheduled daily smart pricing run."""
import asyncio
import logging
import threading
from datetime import datetime, timezone
from typing import Optional

from smart_pricing.config import settings
from smart_pricing.database import SessionLocal
from smart_pricing.services.algorithm_service import algorithm_service
from smart_pricing.services.repository import PricingRepository

LOG = logging.getLogger(__name__)


class Scheduler:
    """Simple scheduler for the daily pricing run."""

    def __init__(self):
        self.is_running = False
        self.thread: Optional[threading.Thread] = None
        self.last_pricing_run: Optional[datetime] = None
        self._stop_event = threading.Event()

    def start(self):
        """Start the scheduler in a background thread."""
        if self.is_running:
            return

        self.is_running = True
        self._stop_event.clear()
        self.thread = threading.Thread(target=self._run, daemon=True)
        self.thread.start()
        LOG.info("Scheduler started, pricing runs daily at %02d:00 UTC", settings.pricing_run_hour_utc)

    def stop(self):
        """Stop the scheduler."""
        self.is_running = False
        self._stop_event.set()
        if self.thread:
            self.thread.join(timeout=5)
        LOG.info("Scheduler stopped")

    def _run(self):
        """Main scheduler loop."""
        while self.is_running:
            try:
                now = datetime.now(timezone.utc)
                if now.hour == settings.pricing_run_hour_utc and now.minute < 5:
                    self.run_pricing()
                    # Sleep for 1 hour to avoid running twice in the window
                    self._stop_event.wait(3600)
                else:
                    self._stop_event.wait(300)
            except Exception:
                LOG.exception("Scheduler error")
                self._stop_event.wait(60)

    def run_pricing(self) -> list:
        """Run the pricing algorithm for every active store."""
        LOG.info("Running daily smart pricing")
        db = SessionLocal()
        try:
            runs = asyncio.run(algorithm_service.run_all_stores(PricingRepository(db)))
            self.last_pricing_run = datetime.now(timezone.utc)
            LOG.info("Daily smart pricing finished for %d store(s)", len(runs))
            return runs
        finally:
            db.close()

    def get_status(self) -> dict:
        """Get scheduler status."""
        return {
            "is_running": self.is_running,
            "last_pricing_run": self.last_pricing_run.isoformat() if self.last_pricing_run else None,
        }


# Global scheduler instance
scheduler = Scheduler()
