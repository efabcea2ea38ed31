"""Algorithm service - the scheduled smart pricing run.

For each enabled variant of a store: skip it while it is parked at the cap
or cooling down, otherwise compare revenue windows, decide, and execute the
price change. A failing variant is logged and listed in the run record;
the run moves on to the next one.
"""
import logging
import time
from datetime import datetime
from typing import List, Optional

from smart_pricing.exceptions import (
    ConcurrentModificationError,
    ExternalAPIError,
    PersistenceError,
    PricingError,
)
from smart_pricing.models import AlgorithmRun, PricingAction, PricingState, VariantPricingConfig
from smart_pricing.services.price_mutation_service import PriceMutation, price_mutation_service
from smart_pricing.services.pricing_rules import PricingInputs, decide
from smart_pricing.services.repository import PricingRepository
from smart_pricing.services.revenue_service import revenue_service
from smart_pricing.timeutils import as_utc, utcnow

LOG = logging.getLogger(__name__)

GLOBAL_DISABLED_ERROR = "Global smart pricing is disabled"


def skip_reason(config: VariantPricingConfig, now: datetime) -> Optional[str]:
    """Why the variant is not evaluated this cycle, or None when it is due."""
    state = config.pricing_state
    if state == PricingState.AT_MAX_CAP:
        return "at max cap"

    revert_wait_until = as_utc(config.revert_wait_until)
    if state == PricingState.WAITING_AFTER_REVERT and revert_wait_until and now < revert_wait_until:
        return f"waiting after revert until {revert_wait_until.isoformat()}"

    next_eligible_at = as_utc(config.next_eligible_at)
    if next_eligible_at and now < next_eligible_at:
        return f"not eligible until {next_eligible_at.isoformat()}"
    return None


class AlgorithmService:
    """Runs the pricing algorithm for stores."""

    def __init__(self, executor=None):
        self.executor = executor or price_mutation_service

    async def run_for_store(
        self,
        repo: PricingRepository,
        store_id: int,
        now: Optional[datetime] = None
    ) -> AlgorithmRun:
        now = as_utc(now) or utcnow()
        started = time.monotonic()

        if not repo.is_globally_enabled():
            LOG.info("Global smart pricing is disabled, store %s not processed", store_id)
            return repo.record_run(store_id, 0, 0, 0, 0, [GLOBAL_DISABLED_ERROR], 0, now)

        processed = increased = reverted = waiting = 0
        errors: List[str] = []

        for variant, config in repo.list_enabled_configs(store_id):
            processed += 1
            variant_id = variant.id
            try:
                reason = skip_reason(config, now)
                if reason:
                    waiting += 1
                    LOG.debug("Variant %s skipped: %s", variant_id, reason)
                    continue

                revenue = revenue_service.evaluate(repo, variant_id, config.period_hours, now)
                inputs = PricingInputs(
                    current_price=variant.price,
                    starting_price=variant.starting_price,
                    increment_percent=config.increment_percent,
                    revenue_drop_threshold_percent=config.revenue_drop_threshold_percent,
                    wait_hours_after_revert=config.wait_hours_after_revert,
                    max_increase_percent=config.max_increase_percent,
                    last_increase_old_price=repo.last_increase_old_price(variant_id),
                )
                decision = decide(inputs, revenue, now)
                mutation = PriceMutation.from_decision(variant, config, decision, revenue, now)
                await self.executor.execute(repo, mutation, now)

                if decision.action == PricingAction.REVERT:
                    reverted += 1
                else:
                    increased += 1

            except ExternalAPIError as exc:
                LOG.warning("Variant %s: Shopify update failed, will retry next cycle: %s", variant_id, exc)
                errors.append(f"Variant {variant_id}: {exc}")
            except PersistenceError as exc:
                LOG.error("Variant %s: local mirror diverged, needs reconciliation: %s", variant_id, exc)
                errors.append(f"Variant {variant_id}: {exc}")
            except ConcurrentModificationError as exc:
                LOG.info("Variant %s changed during the run, skipped this cycle: %s", variant_id, exc)
                errors.append(f"Variant {variant_id}: {exc}")
            except PricingError as exc:
                LOG.warning("Variant %s: %s", variant_id, exc)
                errors.append(f"Variant {variant_id}: {exc}")
            except Exception as exc:
                LOG.exception("Variant %s: unexpected error", variant_id)
                repo.rollback()
                errors.append(f"Variant {variant_id}: {exc}")

        execution_time_ms = int((time.monotonic() - started) * 1000)
        run = repo.record_run(store_id, processed, increased, reverted, waiting, errors, execution_time_ms, now)
        LOG.info(
            "Store %s: %d processed, %d increased, %d reverted, %d waiting, %d errors (%d ms)",
            store_id, processed, increased, reverted, waiting, len(errors), execution_time_ms
        )
        return run

    async def run_all_stores(self, repo: PricingRepository, now: Optional[datetime] = None) -> List[AlgorithmRun]:
        runs = []
        for store in repo.list_active_stores():
            store_id = store.id
            try:
                runs.append(await self.run_for_store(repo, store_id, now))
            except Exception:
                LOG.exception("Pricing run failed for store %s", store_id)
                repo.rollback()
        return runs


# Singleton instance
algorithm_service = AlgorithmService()
