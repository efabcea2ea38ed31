"""Price mutation service - applies one price change across Shopify and the local store.

Order of operations:

1. push the price to Shopify; on failure nothing local is written
   (ExternalAPIError, safe to retry next cycle),
2. write the local price mirror, the config and one history entry in a
   single transaction; a failure here means Shopify already has the new
   price while the local store does not (PersistenceError, needs
   reconciliation).

The config version is re-read right before the push so a mutation computed
against a stale config is abandoned before anything leaves the process.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from smart_pricing.exceptions import (
    ConcurrentModificationError,
    ConfigNotFoundError,
    ExternalAPIError,
    PersistenceError,
)
from smart_pricing.models import PricingAction, PricingHistory, Variant, VariantPricingConfig
from smart_pricing.services.pricing_rules import PricingDecision, RevenueComparison
from smart_pricing.services.repository import PricingRepository
from smart_pricing.services.shopify_service import shopify_service
from smart_pricing.timeutils import utcnow

LOG = logging.getLogger(__name__)


@dataclass
class PriceMutation:
    """A price change plus the config fields written alongside it."""
    variant: Variant
    config: VariantPricingConfig
    expected_version: int
    new_price: float
    action: PricingAction
    reason: str
    config_fields: Dict[str, Any] = field(default_factory=dict)
    revenue: Optional[RevenueComparison] = None

    @classmethod
    def from_decision(
        cls,
        variant: Variant,
        config: VariantPricingConfig,
        decision: PricingDecision,
        revenue: RevenueComparison,
        now: datetime
    ) -> "PriceMutation":
        if decision.action == PricingAction.REVERT:
            fields = {
                "state": decision.new_state,
                "revert_wait_until": decision.revert_wait_until,
                "next_eligible_at": decision.revert_wait_until,
            }
        else:
            fields = {
                "state": decision.new_state,
                "revert_wait_until": None,
                "next_eligible_at": now + timedelta(hours=config.period_hours),
                "last_smart_price": decision.new_price,
            }
        return cls(
            variant=variant,
            config=config,
            expected_version=config.version,
            new_price=decision.new_price,
            action=decision.action,
            reason=decision.reason,
            config_fields=fields,
            revenue=revenue,
        )


class PriceMutationService:
    """Executes price mutations with explicit partial-failure semantics."""

    def __init__(self, commerce=None):
        self.commerce = commerce or shopify_service

    async def execute(
        self,
        repo: PricingRepository,
        mutation: PriceMutation,
        now: Optional[datetime] = None
    ) -> PricingHistory:
        now = now or utcnow()
        variant = mutation.variant
        variant_id = variant.id

        stored_version = repo.config_version(mutation.config.id)
        if stored_version != mutation.expected_version:
            raise ConcurrentModificationError(
                f"Variant {variant.id}: config is at version {stored_version}, "
                f"mutation was computed against {mutation.expected_version}"
            )

        store = repo.get_store(variant.store_id)
        product = variant.product
        if store is None or product is None:
            raise ConfigNotFoundError(f"Variant {variant.id} has no store or product")

        try:
            await self.commerce.update_variant_price(store, product.shopify_id, variant.shopify_id, mutation.new_price)
        except ExternalAPIError as exc:
            LOG.warning("Shopify push failed for variant %s, nothing written locally: %s", variant.id, exc)
            raise
        except Exception as exc:
            LOG.warning("Shopify push failed for variant %s, nothing written locally: %s", variant.id, exc)
            raise ExternalAPIError(f"Shopify price update failed: {exc}") from exc

        fields = dict(mutation.config_fields)
        fields.setdefault("last_price_change_at", now)
        try:
            entry = repo.apply_price_change(
                variant=variant,
                config=mutation.config,
                expected_version=mutation.expected_version,
                new_price=mutation.new_price,
                action=mutation.action,
                reason=mutation.reason,
                config_fields=fields,
                now=now,
                revenue=mutation.revenue,
            )
        except Exception as exc:
            LOG.error(
                "DIVERGENCE variant %s: Shopify price is %.2f but the local write failed (%s); "
                "reconciliation required",
                variant_id, mutation.new_price, exc
            )
            raise PersistenceError(
                f"Variant {variant_id}: Shopify updated to {mutation.new_price:.2f} "
                f"but local state was not written: {exc}",
                variant_id=variant_id,
                pushed_price=mutation.new_price,
            ) from exc

        LOG.info(
            "Variant %s %s %.2f -> %.2f (%s)",
            variant.id, entry.action, entry.old_price, entry.new_price, entry.reason
        )
        return entry


# Singleton instance
price_mutation_service = PriceMutationService()
