"""Store registry router."""
from typing import List

from fastapi import APIRouter, Depends, HTTPException

from smart_pricing.database import get_repository
from smart_pricing.exceptions import PricingError
from smart_pricing.routers.errors import http_error
from smart_pricing.schemas import StoreCreate, StoreResponse, StoreSyncResponse
from smart_pricing.services import shopify_service
from smart_pricing.services.repository import PricingRepository

router = APIRouter()


@router.post("/", response_model=StoreResponse)
async def register_store(
    store: StoreCreate,
    repo: PricingRepository = Depends(get_repository)
):
    """Register a store, or update the access token of a known one."""
    shop_domain = store.shop_domain.strip().lower()
    if not shop_domain:
        raise HTTPException(status_code=400, detail="shop_domain is required")
    return repo.upsert_store(shop_domain, store.access_token)


@router.get("/", response_model=List[StoreResponse])
async def list_stores(repo: PricingRepository = Depends(get_repository)):
    return repo.list_stores()


@router.post("/{store_id}/sync", response_model=StoreSyncResponse)
async def sync_store(
    store_id: int,
    repo: PricingRepository = Depends(get_repository)
):
    """
    Pull products and variants from Shopify into the local mirror.

    New variants take their current price as starting price.
    """
    store = repo.get_store(store_id)
    if not store:
        raise HTTPException(status_code=404, detail="Store not found")
    try:
        result = await shopify_service.sync_store_products(repo.db, store)
    except PricingError as e:
        raise http_error(e)
    return {"store_id": store_id, **result}
