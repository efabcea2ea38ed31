"""SQLAlchemy database models."""
import enum

from sqlalchemy import (
    Column, Integer, String, Float, Boolean, Date, DateTime, Text, JSON, ForeignKey, Index,
    UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from smart_pricing.database import Base


class PricingState(str, enum.Enum):
    """Per-variant state of the pricing cycle."""
    INCREASING = "increasing"
    WAITING_AFTER_REVERT = "waiting_after_revert"
    AT_MAX_CAP = "at_max_cap"


class PricingAction(str, enum.Enum):
    """Action recorded on a pricing history entry."""
    INCREASE = "increase"
    REVERT = "revert"
    RESUME_BASE = "resume_base"
    RESUME_LAST = "resume_last"
    MANUAL_RESET = "manual_reset"


class Store(Base):
    """Connected Shopify store."""
    __tablename__ = "stores"

    id = Column(Integer, primary_key=True, index=True)
    shop_domain = Column(String(255), unique=True, nullable=False, index=True)
    access_token = Column(String(255))
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    last_synced_at = Column(DateTime(timezone=True))

    products = relationship("Product", back_populates="store", cascade="all, delete-orphan")


class Product(Base):
    """Shopify product model."""
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=False, index=True)
    shopify_id = Column(String(255), nullable=False, index=True)  # numeric, normalized
    title = Column(String(500), nullable=False)
    status = Column(String(50))  # active, archived, draft

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    store = relationship("Store", back_populates="products")
    variants = relationship("Variant", back_populates="product", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint('store_id', 'shopify_id', name='uq_product_store_shopify'),
    )


class Variant(Base):
    """Shopify product variant with its local price mirror."""
    __tablename__ = "variants"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=False, index=True)
    shopify_id = Column(String(255), index=True)  # numeric, normalized

    title = Column(String(500))
    sku = Column(String(255))
    price = Column(Float, nullable=False)
    # Reference price for cap math, never changed after creation
    starting_price = Column(Float, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    product = relationship("Product", back_populates="variants")
    pricing_config = relationship(
        "VariantPricingConfig", back_populates="variant", uselist=False, cascade="all, delete-orphan"
    )


class VariantPricingConfig(Base):
    """Smart pricing configuration and cycle state for one variant."""
    __tablename__ = "variant_pricing_configs"

    id = Column(Integer, primary_key=True, index=True)
    variant_id = Column(Integer, ForeignKey("variants.id"), unique=True, nullable=False, index=True)

    auto_pricing_enabled = Column(Boolean, nullable=False, default=False)
    state = Column(String(50), nullable=False, default=PricingState.INCREASING.value)

    # Rules
    increment_percent = Column(Float, nullable=False, default=5.0)
    period_hours = Column(Integer, nullable=False, default=24)
    revenue_drop_threshold_percent = Column(Float, nullable=False, default=1.0)
    wait_hours_after_revert = Column(Integer, nullable=False, default=24)
    max_increase_percent = Column(Float, nullable=False, default=100.0)

    # Prices
    baseline_price = Column(Float)
    last_smart_price = Column(Float)

    # Schedule
    last_price_change_at = Column(DateTime(timezone=True))
    next_eligible_at = Column(DateTime(timezone=True))
    revert_wait_until = Column(DateTime(timezone=True))

    # Optimistic concurrency counter, bumped by every write
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    variant = relationship("Variant", back_populates="pricing_config")

    __table_args__ = (
        CheckConstraint(
            "(state = 'waiting_after_revert' AND revert_wait_until IS NOT NULL) OR "
            "(state != 'waiting_after_revert' AND revert_wait_until IS NULL)",
            name='ck_revert_wait_matches_state',
        ),
        Index('idx_pricing_config_enabled', 'auto_pricing_enabled'),
    )

    @property
    def pricing_state(self) -> PricingState:
        return PricingState(self.state)


class PricingHistory(Base):
    """Append-only audit log of every price mutation."""
    __tablename__ = "pricing_history"

    id = Column(Integer, primary_key=True, index=True)
    variant_id = Column(Integer, ForeignKey("variants.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=False, index=True)

    old_price = Column(Float, nullable=False)
    new_price = Column(Float, nullable=False)
    action = Column(String(50), nullable=False)
    reason = Column(Text)

    # Revenue snapshot used for the decision
    revenue_previous_period = Column(Float)
    revenue_current_period = Column(Float)
    revenue_change_percent = Column(Float)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    __table_args__ = (
        Index('idx_history_variant_action', 'variant_id', 'action'),
    )


class SalesData(Base):
    """Recorded revenue per variant per UTC day."""
    __tablename__ = "sales_data"

    id = Column(Integer, primary_key=True, index=True)
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=False, index=True)
    variant_id = Column(Integer, ForeignKey("variants.id"), nullable=False, index=True)
    date = Column(Date, nullable=False)

    units_sold = Column(Integer, default=0)
    revenue = Column(Float, default=0.0)

    __table_args__ = (
        UniqueConstraint('variant_id', 'date', name='uq_sales_variant_date'),
    )


class AlgorithmRun(Base):
    """Summary of one pricing run for a store."""
    __tablename__ = "algorithm_runs"

    id = Column(Integer, primary_key=True, index=True)
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=False, index=True)

    products_processed = Column(Integer, default=0)
    products_increased = Column(Integer, default=0)
    products_reverted = Column(Integer, default=0)
    products_waiting = Column(Integer, default=0)
    errors = Column(JSON)
    execution_time_ms = Column(Integer, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)


class ProcessedWebhook(Base):
    """Idempotency ledger for webhook deliveries."""
    __tablename__ = "processed_webhooks"

    id = Column(Integer, primary_key=True, index=True)
    webhook_id = Column(String(255), nullable=False)
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=False, index=True)
    topic = Column(String(100), nullable=False)
    payload_hash = Column(String(64))
    processed_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint('webhook_id', 'store_id', name='uq_processed_webhook_store'),
    )


class Setting(Base):
    """Application settings stored in database."""
    __tablename__ = "settings"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String(255), unique=True, nullable=False, index=True)
    value = Column(Text)
    description = Column(Text)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
