"""Pricing repository - every read and write the pricing engine makes.

Components never reach for a global session; they receive a
``PricingRepository`` bound to one SQLAlchemy session. Config writes are
compare-and-swap on ``VariantPricingConfig.version``.
"""
import enum
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from smart_pricing.config import settings
from smart_pricing.exceptions import (
    ConcurrentModificationError,
    ConfigNotFoundError,
    DuplicateEventError,
)
from smart_pricing.models import (
    AlgorithmRun,
    PricingAction,
    PricingHistory,
    PricingState,
    ProcessedWebhook,
    Product,
    SalesData,
    Setting,
    Store,
    Variant,
    VariantPricingConfig,
)
from smart_pricing.timeutils import utcnow

LOG = logging.getLogger(__name__)

GLOBAL_ENABLED_KEY = "smart_pricing_global_enabled"

VariantWithConfig = Tuple[Variant, VariantPricingConfig]


def _column_value(value):
    if isinstance(value, enum.Enum):
        return value.value
    return value


class PricingRepository:
    """Data access for stores, variants, pricing configs, history and ledgers."""

    def __init__(self, db: Session):
        self.db = db

    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()

    # ------------------------------------------------------------------
    # Stores
    # ------------------------------------------------------------------

    def get_store(self, store_id: int) -> Optional[Store]:
        return self.db.query(Store).filter(Store.id == store_id).first()

    def get_store_by_domain(self, shop_domain: str) -> Optional[Store]:
        return self.db.query(Store).filter(Store.shop_domain == shop_domain).first()

    def list_active_stores(self) -> List[Store]:
        return self.db.query(Store).filter(Store.is_active == True).order_by(Store.id).all()  # noqa: E712

    def list_stores(self) -> List[Store]:
        return self.db.query(Store).order_by(Store.id).all()

    def upsert_store(self, shop_domain: str, access_token: Optional[str]) -> Store:
        store = self.get_store_by_domain(shop_domain)
        if store:
            if access_token:
                store.access_token = access_token
            store.is_active = True
        else:
            store = Store(shop_domain=shop_domain, access_token=access_token, is_active=True)
            self.db.add(store)
        self.db.commit()
        self.db.refresh(store)
        return store

    # ------------------------------------------------------------------
    # Products and variants
    # ------------------------------------------------------------------

    def get_product(self, product_id: int) -> Optional[Product]:
        return self.db.query(Product).filter(Product.id == product_id).first()

    def get_product_by_shopify_id(self, store_id: int, shopify_id: str) -> Optional[Product]:
        return self.db.query(Product).filter(
            Product.store_id == store_id,
            Product.shopify_id == shopify_id
        ).first()

    def get_variant(self, variant_id: int) -> Optional[Variant]:
        return self.db.query(Variant).filter(Variant.id == variant_id).first()

    def require_variant(self, variant_id: int) -> Variant:
        variant = self.get_variant(variant_id)
        if not variant:
            raise ConfigNotFoundError(f"Variant {variant_id} not found")
        return variant

    def get_variant_by_shopify_id(self, store_id: int, shopify_id: str) -> Optional[Variant]:
        return self.db.query(Variant).filter(
            Variant.store_id == store_id,
            Variant.shopify_id == shopify_id
        ).first()

    def list_variants_for_product(self, product_id: int) -> List[Variant]:
        return self.db.query(Variant).filter(Variant.product_id == product_id).order_by(Variant.id).all()

    def list_variants_for_store(self, store_id: int) -> List[Variant]:
        return self.db.query(Variant).filter(Variant.store_id == store_id).order_by(Variant.id).all()

    # ------------------------------------------------------------------
    # Pricing configs
    # ------------------------------------------------------------------

    def get_config(self, variant_id: int) -> Optional[VariantPricingConfig]:
        return self.db.query(VariantPricingConfig).filter(
            VariantPricingConfig.variant_id == variant_id
        ).first()

    def require_config(self, variant_id: int) -> VariantPricingConfig:
        config = self.get_config(variant_id)
        if not config:
            raise ConfigNotFoundError(f"Variant {variant_id} has no pricing config")
        return config

    def get_or_create_config(self, variant: Variant) -> VariantPricingConfig:
        """Return the variant's config, creating a disabled one with default rules."""
        config = self.get_config(variant.id)
        if config:
            return config

        config = VariantPricingConfig(
            variant_id=variant.id,
            auto_pricing_enabled=False,
            state=PricingState.INCREASING.value,
            increment_percent=settings.default_increment_percent,
            period_hours=settings.default_period_hours,
            revenue_drop_threshold_percent=settings.default_revenue_drop_threshold_percent,
            wait_hours_after_revert=settings.default_wait_hours_after_revert,
            max_increase_percent=settings.default_max_increase_percent,
            version=1,
        )
        self.db.add(config)
        self.db.commit()
        self.db.refresh(config)
        return config

    def refresh(self, instance):
        self.db.refresh(instance)
        return instance

    def config_version(self, config_id: int) -> Optional[int]:
        """Read the stored version, bypassing the session's identity map."""
        return self.db.query(VariantPricingConfig.version).filter(
            VariantPricingConfig.id == config_id
        ).scalar()

    def list_configs_for_store(self, store_id: int, enabled: Optional[bool] = None) -> List[VariantWithConfig]:
        query = self.db.query(Variant, VariantPricingConfig).join(
            VariantPricingConfig, VariantPricingConfig.variant_id == Variant.id
        ).filter(Variant.store_id == store_id)
        if enabled is not None:
            query = query.filter(VariantPricingConfig.auto_pricing_enabled == enabled)
        return [tuple(row) for row in query.order_by(Variant.id).all()]

    def list_enabled_configs(self, store_id: int) -> List[VariantWithConfig]:
        return self.list_configs_for_store(store_id, enabled=True)

    def find_configs_for_external_product(self, store_id: int, external_product_id: str) -> List[VariantWithConfig]:
        rows = self.db.query(Variant, VariantPricingConfig).join(
            Product, Product.id == Variant.product_id
        ).join(
            VariantPricingConfig, VariantPricingConfig.variant_id == Variant.id
        ).filter(
            Product.store_id == store_id,
            Product.shopify_id == external_product_id
        ).order_by(Variant.id).all()
        return [tuple(row) for row in rows]

    def _compare_and_swap(self, config_id: int, expected_version: int, fields: Dict[str, Any]) -> int:
        values = {key: _column_value(value) for key, value in fields.items()}
        values["version"] = expected_version + 1
        values["updated_at"] = utcnow()
        matched = self.db.query(VariantPricingConfig).filter(
            VariantPricingConfig.id == config_id,
            VariantPricingConfig.version == expected_version
        ).update(values, synchronize_session=False)
        if matched != 1:
            raise ConcurrentModificationError(
                f"Pricing config {config_id} changed since version {expected_version}"
            )
        return expected_version + 1

    def update_config(
        self,
        config: VariantPricingConfig,
        expected_version: int,
        fields: Dict[str, Any]
    ) -> VariantPricingConfig:
        """Conditionally write config fields and commit."""
        try:
            self._compare_and_swap(config.id, expected_version, fields)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.expire(config)
        return config

    def stage_config_update(self, config_id: int, expected_version: int, fields: Dict[str, Any]) -> int:
        """Conditional config write inside the caller's transaction. Not committed."""
        return self._compare_and_swap(config_id, expected_version, fields)

    def add_history(
        self,
        variant: Variant,
        old_price: float,
        new_price: float,
        action: PricingAction,
        reason: str,
        now: datetime,
        revenue=None,
    ) -> PricingHistory:
        """Stage a history entry. Not committed."""
        entry = PricingHistory(
            variant_id=variant.id,
            product_id=variant.product_id,
            store_id=variant.store_id,
            old_price=old_price,
            new_price=new_price,
            action=_column_value(action),
            reason=reason,
            revenue_previous_period=revenue.previous_revenue if revenue else None,
            revenue_current_period=revenue.current_revenue if revenue else None,
            revenue_change_percent=revenue.change_percent if revenue else None,
            created_at=now,
        )
        self.db.add(entry)
        return entry

    def apply_price_change(
        self,
        variant: Variant,
        config: VariantPricingConfig,
        expected_version: int,
        new_price: float,
        action: PricingAction,
        reason: str,
        config_fields: Dict[str, Any],
        now: datetime,
        revenue=None,
    ) -> PricingHistory:
        """Write mirror price, config and history entry in one transaction."""
        old_price = variant.price
        try:
            variant.price = new_price
            variant.updated_at = now
            self._compare_and_swap(config.id, expected_version, config_fields)
            entry = self.add_history(variant, old_price, new_price, action, reason, now, revenue)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.expire(config)
        return entry

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def last_increase_old_price(self, variant_id: int) -> Optional[float]:
        entry = self.db.query(PricingHistory).filter(
            PricingHistory.variant_id == variant_id,
            PricingHistory.action == PricingAction.INCREASE.value
        ).order_by(PricingHistory.created_at.desc(), PricingHistory.id.desc()).first()
        return entry.old_price if entry else None

    def list_history(self, variant_id: int, limit: int = 50) -> List[PricingHistory]:
        return self.db.query(PricingHistory).filter(
            PricingHistory.variant_id == variant_id
        ).order_by(PricingHistory.created_at.desc(), PricingHistory.id.desc()).limit(limit).all()

    def count_history(self, variant_id: Optional[int] = None) -> int:
        query = self.db.query(func.count(PricingHistory.id))
        if variant_id is not None:
            query = query.filter(PricingHistory.variant_id == variant_id)
        return query.scalar() or 0

    # ------------------------------------------------------------------
    # Revenue
    # ------------------------------------------------------------------

    def sum_revenue(self, variant_id: int, start: date, end: Optional[date] = None) -> float:
        """Sum daily revenue for dates >= start (and < end when given)."""
        query = self.db.query(func.coalesce(func.sum(SalesData.revenue), 0.0)).filter(
            SalesData.variant_id == variant_id,
            SalesData.date >= start
        )
        if end is not None:
            query = query.filter(SalesData.date < end)
        return float(query.scalar() or 0.0)

    def add_sale(self, store_id: int, variant_id: int, day: date, units: int, revenue: float) -> SalesData:
        """Accumulate units and revenue onto the variant's row for ``day``. Not committed."""
        row = self.db.query(SalesData).filter(
            SalesData.variant_id == variant_id,
            SalesData.date == day
        ).first()
        if row:
            row.units_sold = (row.units_sold or 0) + units
            row.revenue = (row.revenue or 0.0) + revenue
        else:
            row = SalesData(
                store_id=store_id,
                variant_id=variant_id,
                date=day,
                units_sold=units,
                revenue=revenue,
            )
            self.db.add(row)
            self.db.flush()
        return row

    # ------------------------------------------------------------------
    # Webhook ledger
    # ------------------------------------------------------------------

    def is_event_processed(self, event_id: str, store_id: int) -> bool:
        return self.db.query(ProcessedWebhook.id).filter(
            ProcessedWebhook.webhook_id == event_id,
            ProcessedWebhook.store_id == store_id
        ).first() is not None

    def record_event(self, event_id: str, store_id: int, topic: str, payload_hash: Optional[str]) -> ProcessedWebhook:
        """Insert a ledger row inside the current transaction.

        A concurrent delivery that inserted the same key first surfaces as
        DuplicateEventError; the transaction is rolled back.
        """
        record = ProcessedWebhook(
            webhook_id=event_id,
            store_id=store_id,
            topic=topic,
            payload_hash=payload_hash,
            processed_at=utcnow(),
        )
        self.db.add(record)
        try:
            self.db.flush()
        except IntegrityError as exc:
            self.db.rollback()
            raise DuplicateEventError(f"Event {event_id} already processed for store {store_id}") from exc
        return record

    def count_events(self, store_id: Optional[int] = None) -> int:
        query = self.db.query(func.count(ProcessedWebhook.id))
        if store_id is not None:
            query = query.filter(ProcessedWebhook.store_id == store_id)
        return query.scalar() or 0

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def record_run(
        self,
        store_id: int,
        processed: int,
        increased: int,
        reverted: int,
        waiting: int,
        errors: List[str],
        execution_time_ms: int,
        now: datetime,
    ) -> AlgorithmRun:
        run = AlgorithmRun(
            store_id=store_id,
            products_processed=processed,
            products_increased=increased,
            products_reverted=reverted,
            products_waiting=waiting,
            errors=errors or None,
            execution_time_ms=execution_time_ms,
            created_at=now,
        )
        self.db.add(run)
        self.db.commit()
        self.db.refresh(run)
        return run

    def list_runs(self, store_id: Optional[int] = None, limit: int = 20) -> List[AlgorithmRun]:
        query = self.db.query(AlgorithmRun)
        if store_id is not None:
            query = query.filter(AlgorithmRun.store_id == store_id)
        return query.order_by(AlgorithmRun.created_at.desc(), AlgorithmRun.id.desc()).limit(limit).all()

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def get_setting_value(self, key: str) -> Optional[str]:
        setting = self.db.query(Setting).filter(Setting.key == key).first()
        return setting.value if setting else None

    def set_setting(self, key: str, value: Optional[str], description: Optional[str] = None) -> Setting:
        setting = self.db.query(Setting).filter(Setting.key == key).first()
        if setting:
            setting.value = value
            if description is not None:
                setting.description = description
        else:
            setting = Setting(key=key, value=value, description=description)
            self.db.add(setting)
        self.db.commit()
        self.db.refresh(setting)
        return setting

    def is_globally_enabled(self) -> bool:
        value = self.get_setting_value(GLOBAL_ENABLED_KEY)
        if value is None:
            return True
        return value.strip().lower() == "true"

    def set_globally_enabled(self, enabled: bool) -> None:
        self.set_setting(
            GLOBAL_ENABLED_KEY,
            "true" if enabled else "false",
            "Master switch for scheduled smart pricing runs"
        )
        LOG.info("Global smart pricing %s", "enabled" if enabled else "disabled")
