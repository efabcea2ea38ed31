"""Revenue service - two-window revenue comparison and order ingestion."""
import logging
from datetime import datetime, timedelta
from typing import Optional

from smart_pricing.exceptions import ValidationError
from smart_pricing.models import Store
from smart_pricing.services.pricing_rules import RevenueComparison
from smart_pricing.services.repository import PricingRepository
from smart_pricing.services.shopify_ids import normalize_shopify_id
from smart_pricing.timeutils import as_utc, utcnow

LOG = logging.getLogger(__name__)


class RevenueService:
    """Service for revenue windows used by the pricing decision."""

    def evaluate(
        self,
        repo: PricingRepository,
        variant_id: int,
        period_hours: int,
        now: Optional[datetime] = None
    ) -> RevenueComparison:
        """
        Compare revenue of the last ``period_hours`` against the window before it.

        Daily rows are keyed by UTC date, so each window covers the dates
        from its start date onwards; the previous window stops before the
        current window's start date. When either window is empty there is
        no comparable history yet.
        """
        now = as_utc(now) or utcnow()
        period = timedelta(hours=period_hours)
        current_start = (now - period).date()
        previous_start = (now - 2 * period).date()

        current_revenue = repo.sum_revenue(variant_id, current_start)
        previous_revenue = repo.sum_revenue(variant_id, previous_start, current_start)

        has_sufficient_data = current_revenue > 0 and previous_revenue > 0
        change_percent = 0.0
        if has_sufficient_data:
            change_percent = (current_revenue - previous_revenue) / previous_revenue * 100

        return RevenueComparison(
            current_revenue=current_revenue,
            previous_revenue=previous_revenue,
            change_percent=change_percent,
            has_sufficient_data=has_sufficient_data,
        )

    def record_order(self, repo: PricingRepository, store: Store, order: dict) -> int:
        """
        Add an order's line items to the daily revenue rows. Not committed.

        Line items for variants that are not mirrored locally are skipped.
        Returns the number of line items recorded.
        """
        created_at = order.get("created_at")
        try:
            order_day = as_utc(datetime.fromisoformat(created_at.replace("Z", "+00:00"))).date() if created_at else utcnow().date()
        except (AttributeError, ValueError) as exc:
            raise ValidationError(f"Invalid order timestamp: {created_at!r}") from exc

        recorded = 0
        for item in order.get("line_items") or []:
            if not item.get("variant_id"):
                continue
            try:
                variant_shopify_id = normalize_shopify_id(item["variant_id"])
                price = float(item.get("price") or 0)
                quantity = int(item.get("quantity") or 0)
            except (ValidationError, TypeError, ValueError) as exc:
                LOG.warning("Skipping malformed line item in order %s: %s", order.get("id"), exc)
                continue

            variant = repo.get_variant_by_shopify_id(store.id, variant_shopify_id)
            if not variant:
                continue

            repo.add_sale(store.id, variant.id, order_day, quantity, price * quantity)
            recorded += 1

        return recorded


# Singleton instance
revenue_service = RevenueService()
