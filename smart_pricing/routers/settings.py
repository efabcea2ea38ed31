"""Settings router."""
from fastapi import APIRouter, Depends

from smart_pricing.database import get_repository
from smart_pricing.schemas import GlobalPricingSetting
from smart_pricing.services.repository import PricingRepository

router = APIRouter()


@router.get("/global-pricing", response_model=GlobalPricingSetting)
async def get_global_pricing(repo: PricingRepository = Depends(get_repository)):
    """Get the master switch for scheduled smart pricing runs."""
    return {"enabled": repo.is_globally_enabled()}


@router.put("/global-pricing", response_model=GlobalPricingSetting)
async def set_global_pricing(
    setting: GlobalPricingSetting,
    repo: PricingRepository = Depends(get_repository)
):
    """
    Turn scheduled smart pricing runs on or off.

    Only the switch changes; prices and per-variant configs are untouched.
    Use the store-wide disable/resume endpoints to move prices as well.
    """
    repo.set_globally_enabled(setting.enabled)
    return {"enabled": repo.is_globally_enabled()}
