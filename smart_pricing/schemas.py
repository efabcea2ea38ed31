"""Pydantic schemas for request/response validation."""
from datetime import datetime
from typing import Optional, List, Literal

from pydantic import BaseModel, Field


# ============================================================================
# Store Schemas
# ============================================================================

class StoreCreate(BaseModel):
    shop_domain: str
    access_token: str


class StoreResponse(BaseModel):
    id: int
    shop_domain: str
    is_active: bool
    created_at: Optional[datetime] = None
    last_synced_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class StoreSyncResponse(BaseModel):
    store_id: int
    total_products: int
    total_variants: int
    synced_at: Optional[datetime] = None


# ============================================================================
# Pricing Config Schemas
# ============================================================================

class PricingConfigResponse(BaseModel):
    id: int
    variant_id: int
    auto_pricing_enabled: bool
    state: str
    increment_percent: float
    period_hours: int
    revenue_drop_threshold_percent: float
    wait_hours_after_revert: int
    max_increase_percent: float
    baseline_price: Optional[float] = None
    last_smart_price: Optional[float] = None
    last_price_change_at: Optional[datetime] = None
    next_eligible_at: Optional[datetime] = None
    revert_wait_until: Optional[datetime] = None
    version: int

    class Config:
        from_attributes = True


class PricingConfigUpdate(BaseModel):
    """
    Config mutation request.

    Exactly one of three shapes: ``auto_pricing_enabled`` toggles,
    ``resume_option`` resumes, anything else is a plain rule edit.
    """
    auto_pricing_enabled: Optional[bool] = None
    resume_option: Optional[Literal["base", "last"]] = None
    increment_percent: Optional[float] = Field(None, gt=0)
    period_hours: Optional[int] = Field(None, gt=0)
    revenue_drop_threshold_percent: Optional[float] = Field(None, ge=0)
    wait_hours_after_revert: Optional[int] = Field(None, gt=0)
    max_increase_percent: Optional[float] = Field(None, gt=0)


class MaxCapApproval(BaseModel):
    max_increase_percent: float = Field(..., gt=0)


class ResumeRequest(BaseModel):
    option: Literal["base", "last"] = "base"


class ToggleRequest(BaseModel):
    enabled: bool


# ============================================================================
# Batch / Undo Schemas
# ============================================================================

class SnapshotSchema(BaseModel):
    variant_id: int
    price: float
    auto_pricing_enabled: bool
    state: Literal["increasing", "waiting_after_revert", "at_max_cap"]
    next_eligible_at: Optional[datetime] = None
    revert_wait_until: Optional[datetime] = None
    last_price_change_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class VariantOutcomeSchema(BaseModel):
    variant_id: int
    success: bool
    operation: str
    old_price: Optional[float] = None
    new_price: Optional[float] = None
    error: Optional[str] = None
    error_type: Optional[str] = None

    class Config:
        from_attributes = True


class BatchResponse(BaseModel):
    outcomes: List[VariantOutcomeSchema] = []
    snapshots: List[SnapshotSchema] = []
    succeeded: int = 0
    failed: int = 0


class UndoRequest(BaseModel):
    snapshots: List[SnapshotSchema]


# ============================================================================
# History / Run Schemas
# ============================================================================

class PricingHistoryResponse(BaseModel):
    id: int
    variant_id: int
    product_id: int
    store_id: int
    old_price: float
    new_price: float
    action: str
    reason: Optional[str] = None
    revenue_previous_period: Optional[float] = None
    revenue_current_period: Optional[float] = None
    revenue_change_percent: Optional[float] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AlgorithmRunResponse(BaseModel):
    id: int
    store_id: int
    products_processed: int
    products_increased: int
    products_reverted: int
    products_waiting: int
    errors: Optional[List[str]] = None
    execution_time_ms: int
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RunRequest(BaseModel):
    store_id: Optional[int] = None


# ============================================================================
# Settings / Webhook Schemas
# ============================================================================

class GlobalPricingSetting(BaseModel):
    enabled: bool


class WebhookResponse(BaseModel):
    event_id: str
    store_id: int
    duplicate: bool = False
    variants_reset: int = 0
    variants_unchanged: int = 0
    line_items_recorded: int = 0

    class Config:
        from_attributes = True


class ConfigMutationResponse(BatchResponse):
    config: Optional[PricingConfigResponse] = None
