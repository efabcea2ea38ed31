"""Smart pricing service - enable, disable, resume, batch toggles and undo.

Every operation here is a price mutation executed by the mutation service,
so it pushes to Shopify first and writes exactly one history entry.
Batch operations snapshot each variant before touching it and keep going
when one variant fails; undo replays snapshots as new forward mutations.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

from smart_pricing.config import settings
from smart_pricing.exceptions import ConcurrentModificationError, PricingError, ValidationError
from smart_pricing.models import PricingAction, PricingHistory, PricingState, Variant, VariantPricingConfig
from smart_pricing.services.price_mutation_service import PriceMutation, price_mutation_service
from smart_pricing.services.pricing_rules import cap_price, compute_increase
from smart_pricing.services.repository import PricingRepository
from smart_pricing.timeutils import as_utc, utcnow

LOG = logging.getLogger(__name__)

RESUME_OPTIONS = ("base", "last")

EDITABLE_FIELDS = (
    "increment_percent",
    "period_hours",
    "revenue_drop_threshold_percent",
    "wait_hours_after_revert",
    "max_increase_percent",
)

ENABLE_REASON = "smart pricing enabled"
DISABLE_REASON = "smart pricing disabled"
UNDO_REASON = "undo of batch operation"


@dataclass
class ProductSnapshot:
    """Pre-mutation state of one variant, enough to restore it later."""
    variant_id: int
    price: float
    auto_pricing_enabled: bool
    state: str
    next_eligible_at: Optional[datetime] = None
    revert_wait_until: Optional[datetime] = None
    last_price_change_at: Optional[datetime] = None

    @classmethod
    def capture(cls, variant: Variant, config: VariantPricingConfig) -> "ProductSnapshot":
        return cls(
            variant_id=variant.id,
            price=variant.price,
            auto_pricing_enabled=bool(config.auto_pricing_enabled),
            state=config.state,
            next_eligible_at=as_utc(config.next_eligible_at),
            revert_wait_until=as_utc(config.revert_wait_until),
            last_price_change_at=as_utc(config.last_price_change_at),
        )


@dataclass
class VariantOutcome:
    variant_id: int
    success: bool
    operation: str
    old_price: Optional[float] = None
    new_price: Optional[float] = None
    error: Optional[str] = None
    error_type: Optional[str] = None


@dataclass
class BatchResult:
    outcomes: List[VariantOutcome] = field(default_factory=list)
    snapshots: List[ProductSnapshot] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.success)

    @property
    def failed(self) -> int:
        return sum(1 for outcome in self.outcomes if not outcome.success)


MutationBuilder = Callable[[Variant, VariantPricingConfig, datetime], PriceMutation]


def _enable_builder(variant: Variant, config: VariantPricingConfig, now: datetime) -> PriceMutation:
    new_price, capped = compute_increase(
        variant.price,
        variant.starting_price,
        settings.enable_bump_percent,
        config.max_increase_percent,
    )
    fields = {
        "auto_pricing_enabled": True,
        "state": PricingState.AT_MAX_CAP if capped else PricingState.INCREASING,
        "next_eligible_at": None,
        "revert_wait_until": None,
        "last_smart_price": new_price,
    }
    if config.baseline_price is None:
        fields["baseline_price"] = variant.price
    return PriceMutation(
        variant=variant,
        config=config,
        expected_version=config.version,
        new_price=new_price,
        action=PricingAction.INCREASE,
        reason=ENABLE_REASON,
        config_fields=fields,
    )


def _disable_builder(variant: Variant, config: VariantPricingConfig, now: datetime) -> PriceMutation:
    target = config.baseline_price if config.baseline_price is not None else variant.starting_price
    return PriceMutation(
        variant=variant,
        config=config,
        expected_version=config.version,
        new_price=target,
        action=PricingAction.REVERT,
        reason=DISABLE_REASON,
        config_fields={
            "auto_pricing_enabled": False,
            "last_smart_price": variant.price,
            "state": PricingState.INCREASING,
            "revert_wait_until": None,
        },
    )


def _resume_builder(option: str) -> MutationBuilder:
    if option not in RESUME_OPTIONS:
        raise ValidationError(f"resume option must be one of {RESUME_OPTIONS}, got {option!r}")

    def build(variant: Variant, config: VariantPricingConfig, now: datetime) -> PriceMutation:
        if option == "base":
            target = config.baseline_price if config.baseline_price is not None else variant.starting_price
            action = PricingAction.RESUME_BASE
            reason = "smart pricing resumed from base price"
        else:
            target = config.last_smart_price if config.last_smart_price is not None else variant.price
            target = min(target, cap_price(variant.starting_price, config.max_increase_percent))
            action = PricingAction.RESUME_LAST
            reason = "smart pricing resumed from last smart price"

        fields = {
            "auto_pricing_enabled": True,
            "state": PricingState.INCREASING,
            "next_eligible_at": None,
            "revert_wait_until": None,
            "last_smart_price": target,
        }
        if config.baseline_price is None:
            fields["baseline_price"] = target if option == "base" else variant.price
        return PriceMutation(
            variant=variant,
            config=config,
            expected_version=config.version,
            new_price=target,
            action=action,
            reason=reason,
            config_fields=fields,
        )

    return build


def _restore_builder(snapshot: ProductSnapshot) -> MutationBuilder:
    state = PricingState(snapshot.state)
    # A snapshot always satisfies the state / revert_wait_until pairing
    revert_wait_until = snapshot.revert_wait_until if state == PricingState.WAITING_AFTER_REVERT else None

    def build(variant: Variant, config: VariantPricingConfig, now: datetime) -> PriceMutation:
        return PriceMutation(
            variant=variant,
            config=config,
            expected_version=config.version,
            new_price=snapshot.price,
            action=PricingAction.REVERT,
            reason=UNDO_REASON,
            config_fields={
                "auto_pricing_enabled": snapshot.auto_pricing_enabled,
                "state": state,
                "next_eligible_at": snapshot.next_eligible_at,
                "revert_wait_until": revert_wait_until,
                "last_price_change_at": snapshot.last_price_change_at,
            },
        )

    return build


class SmartPricingService:
    """Operator-facing smart pricing operations."""

    MAX_ATTEMPTS = 2

    def __init__(self, executor=None):
        self.executor = executor or price_mutation_service

    async def _mutate(
        self,
        repo: PricingRepository,
        variant: Variant,
        build: MutationBuilder,
        now: datetime
    ) -> PricingHistory:
        """Build and execute a mutation, rebuilding once from fresh state on a version conflict."""
        for attempt in range(1, self.MAX_ATTEMPTS + 1):
            config = repo.get_or_create_config(variant)
            repo.refresh(variant)
            repo.refresh(config)
            mutation = build(variant, config, now)
            try:
                return await self.executor.execute(repo, mutation, now)
            except ConcurrentModificationError:
                if attempt == self.MAX_ATTEMPTS:
                    raise
                LOG.info("Config of variant %s changed concurrently, retrying", variant.id)

    # ------------------------------------------------------------------
    # Single variant
    # ------------------------------------------------------------------

    async def enable(self, repo: PricingRepository, variant_id: int, now: Optional[datetime] = None) -> PricingHistory:
        """Switch smart pricing on: capture the baseline once, apply the activation bump."""
        variant = repo.require_variant(variant_id)
        return await self._mutate(repo, variant, _enable_builder, now or utcnow())

    async def disable(self, repo: PricingRepository, variant_id: int, now: Optional[datetime] = None) -> PricingHistory:
        """Switch smart pricing off and go back to the baseline (or starting) price."""
        variant = repo.require_variant(variant_id)
        return await self._mutate(repo, variant, _disable_builder, now or utcnow())

    async def resume(
        self,
        repo: PricingRepository,
        variant_id: int,
        option: str,
        now: Optional[datetime] = None
    ) -> PricingHistory:
        """Switch smart pricing back on from the base price or the last smart price."""
        build = _resume_builder(option)
        variant = repo.require_variant(variant_id)
        return await self._mutate(repo, variant, build, now or utcnow())

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    async def _run_batch(
        self,
        repo: PricingRepository,
        variants: Iterable[Variant],
        operation: str,
        builder_for: Callable[[Variant], MutationBuilder],
        now: datetime
    ) -> BatchResult:
        result = BatchResult()
        for variant in variants:
            variant_id = variant.id
            old_price = variant.price
            try:
                config = repo.get_or_create_config(variant)
                result.snapshots.append(ProductSnapshot.capture(variant, config))
                entry = await self._mutate(repo, variant, builder_for(variant), now)
                result.outcomes.append(VariantOutcome(
                    variant_id=variant_id,
                    success=True,
                    operation=operation,
                    old_price=old_price,
                    new_price=entry.new_price,
                ))
            except PricingError as exc:
                LOG.warning("%s failed for variant %s: %s", operation, variant_id, exc)
                result.outcomes.append(VariantOutcome(
                    variant_id=variant_id,
                    success=False,
                    operation=operation,
                    old_price=old_price,
                    error=str(exc),
                    error_type=type(exc).__name__,
                ))
            except Exception as exc:
                LOG.exception("%s failed unexpectedly for variant %s", operation, variant_id)
                repo.rollback()
                result.outcomes.append(VariantOutcome(
                    variant_id=variant_id,
                    success=False,
                    operation=operation,
                    old_price=old_price,
                    error=str(exc),
                    error_type=type(exc).__name__,
                ))

        LOG.info("%s: %d succeeded, %d failed", operation, result.succeeded, result.failed)
        return result

    async def set_variant_enabled(
        self,
        repo: PricingRepository,
        variant_id: int,
        enabled: bool,
        now: Optional[datetime] = None
    ) -> BatchResult:
        """Single-variant toggle with the same outcome/snapshot contract as batches."""
        variant = repo.require_variant(variant_id)
        builder = _enable_builder if enabled else _disable_builder
        return await self._run_batch(
            repo, [variant], "enable" if enabled else "disable", lambda v: builder, now or utcnow()
        )

    async def resume_variant(
        self,
        repo: PricingRepository,
        variant_id: int,
        option: str,
        now: Optional[datetime] = None
    ) -> BatchResult:
        build = _resume_builder(option)
        variant = repo.require_variant(variant_id)
        return await self._run_batch(repo, [variant], f"resume_{option}", lambda v: build, now or utcnow())

    async def toggle_product(
        self,
        repo: PricingRepository,
        product_id: int,
        enabled: bool,
        now: Optional[datetime] = None
    ) -> BatchResult:
        """Enable or disable every variant of a product that is not already in that state."""
        variants = [
            variant for variant in repo.list_variants_for_product(product_id)
            if bool(variant.pricing_config and variant.pricing_config.auto_pricing_enabled) != enabled
        ]
        builder = _enable_builder if enabled else _disable_builder
        return await self._run_batch(
            repo, variants, "enable" if enabled else "disable", lambda v: builder, now or utcnow()
        )

    async def resume_product(
        self,
        repo: PricingRepository,
        product_id: int,
        option: str,
        now: Optional[datetime] = None
    ) -> BatchResult:
        build = _resume_builder(option)
        variants = [
            variant for variant in repo.list_variants_for_product(product_id)
            if not (variant.pricing_config and variant.pricing_config.auto_pricing_enabled)
        ]
        return await self._run_batch(repo, variants, f"resume_{option}", lambda v: build, now or utcnow())

    async def global_disable(self, repo: PricingRepository, store_id: int, now: Optional[datetime] = None) -> BatchResult:
        """Disable every enabled variant of a store and switch the global flag off."""
        variants = [variant for variant, _ in repo.list_enabled_configs(store_id)]
        result = await self._run_batch(repo, variants, "disable", lambda v: _disable_builder, now or utcnow())
        repo.set_globally_enabled(False)
        return result

    async def global_resume(
        self,
        repo: PricingRepository,
        store_id: int,
        option: str,
        now: Optional[datetime] = None
    ) -> BatchResult:
        """Resume every disabled variant of a store and switch the global flag on."""
        build = _resume_builder(option)
        variants = [variant for variant, _ in repo.list_configs_for_store(store_id, enabled=False)]
        result = await self._run_batch(repo, variants, f"resume_{option}", lambda v: build, now or utcnow())
        repo.set_globally_enabled(True)
        return result

    async def undo(
        self,
        repo: PricingRepository,
        snapshots: List[ProductSnapshot],
        now: Optional[datetime] = None
    ) -> BatchResult:
        """Replay snapshots as forward mutations restoring price, switch, state and schedule.

        The returned snapshots describe the state just before the undo.
        """
        by_variant: Dict[int, ProductSnapshot] = {snapshot.variant_id: snapshot for snapshot in snapshots}
        variants = []
        result = BatchResult()
        for variant_id in by_variant:
            variant = repo.get_variant(variant_id)
            if variant is None:
                result.outcomes.append(VariantOutcome(
                    variant_id=variant_id,
                    success=False,
                    operation="undo",
                    error=f"Variant {variant_id} not found",
                    error_type="ConfigNotFoundError",
                ))
                continue
            variants.append(variant)

        replayed = await self._run_batch(
            repo, variants, "undo", lambda v: _restore_builder(by_variant[v.id]), now or utcnow()
        )
        result.outcomes.extend(replayed.outcomes)
        result.snapshots.extend(replayed.snapshots)
        return result

    # ------------------------------------------------------------------
    # Config edits
    # ------------------------------------------------------------------

    def update_config(self, repo: PricingRepository, variant_id: int, updates: dict) -> VariantPricingConfig:
        """
        Apply plain rule edits.

        Raising ``max_increase_percent`` on a variant parked at the cap puts
        it back into the increasing state.
        """
        unknown = set(updates) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Fields not editable: {', '.join(sorted(unknown))}")
        fields = {key: value for key, value in updates.items() if value is not None}
        if not fields:
            raise ValidationError("No valid fields to update")
        for key, value in fields.items():
            if value < 0 or (value == 0 and key != "revenue_drop_threshold_percent"):
                raise ValidationError(f"{key} must be positive")

        for attempt in range(1, self.MAX_ATTEMPTS + 1):
            config = repo.require_config(variant_id)
            repo.refresh(config)
            to_write = dict(fields)
            new_max = fields.get("max_increase_percent")
            if (
                new_max is not None
                and config.state == PricingState.AT_MAX_CAP.value
                and new_max > config.max_increase_percent
            ):
                to_write["state"] = PricingState.INCREASING
            try:
                config = repo.update_config(config, config.version, to_write)
                LOG.info("Pricing config of variant %s updated: %s", variant_id, to_write)
                return config
            except ConcurrentModificationError:
                if attempt == self.MAX_ATTEMPTS:
                    raise

    def approve_max_cap(self, repo: PricingRepository, variant_id: int, new_max_percent: float) -> VariantPricingConfig:
        """Set a new cap and leave the at-max-cap state."""
        if new_max_percent is None or new_max_percent <= 0:
            raise ValidationError("new max percentage must be a positive number")

        for attempt in range(1, self.MAX_ATTEMPTS + 1):
            config = repo.require_config(variant_id)
            repo.refresh(config)
            fields = {"max_increase_percent": new_max_percent}
            if config.state == PricingState.AT_MAX_CAP.value:
                fields["state"] = PricingState.INCREASING
            try:
                config = repo.update_config(config, config.version, fields)
                LOG.info("Max cap of variant %s set to %.1f%%", variant_id, new_max_percent)
                return config
            except ConcurrentModificationError:
                if attempt == self.MAX_ATTEMPTS:
                    raise


# Singleton instance
smart_pricing_service = SmartPricingService()
