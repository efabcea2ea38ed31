"""Smart pricing router - configs, toggles, batches, undo, history and runs."""
from dataclasses import asdict
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from smart_pricing.database import get_repository
from smart_pricing.exceptions import PricingError
from smart_pricing.routers.errors import http_error
from smart_pricing.schemas import (
    AlgorithmRunResponse,
    BatchResponse,
    ConfigMutationResponse,
    MaxCapApproval,
    PricingConfigResponse,
    PricingConfigUpdate,
    PricingHistoryResponse,
    ResumeRequest,
    RunRequest,
    ToggleRequest,
    UndoRequest,
)
from smart_pricing.services import algorithm_service, smart_pricing_service
from smart_pricing.services.repository import PricingRepository
from smart_pricing.services.smart_pricing_service import EDITABLE_FIELDS, ProductSnapshot

router = APIRouter()


def _batch_payload(result) -> dict:
    return {
        "outcomes": [asdict(outcome) for outcome in result.outcomes],
        "snapshots": [asdict(snapshot) for snapshot in result.snapshots],
        "succeeded": result.succeeded,
        "failed": result.failed,
    }


def _require_product(repo: PricingRepository, product_id: int):
    product = repo.get_product(product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


def _require_store(repo: PricingRepository, store_id: int):
    store = repo.get_store(store_id)
    if not store:
        raise HTTPException(status_code=404, detail="Store not found")
    return store


@router.get("/variants/{variant_id}/config", response_model=PricingConfigResponse)
async def get_pricing_config(
    variant_id: int,
    repo: PricingRepository = Depends(get_repository)
):
    """Get the smart pricing config of a variant, creating the default one if missing."""
    try:
        variant = repo.require_variant(variant_id)
        return repo.get_or_create_config(variant)
    except PricingError as e:
        raise http_error(e)


@router.patch("/variants/{variant_id}/config", response_model=ConfigMutationResponse)
async def update_pricing_config(
    variant_id: int,
    update: PricingConfigUpdate,
    repo: PricingRepository = Depends(get_repository)
):
    """
    Mutate a variant's smart pricing config.

    - `{"auto_pricing_enabled": true|false}` enables or disables smart pricing
    - `{"resume_option": "base"|"last"}` resumes smart pricing
    - any of the rule fields is a plain edit
    """
    payload = update.model_dump(exclude_none=True)
    edits = {key: value for key, value in payload.items() if key in EDITABLE_FIELDS}
    shapes = sum([
        "auto_pricing_enabled" in payload,
        "resume_option" in payload,
        bool(edits),
    ])
    if shapes != 1:
        raise HTTPException(
            status_code=400,
            detail="Send exactly one of: auto_pricing_enabled, resume_option, or rule fields"
        )

    try:
        if "auto_pricing_enabled" in payload:
            result = await smart_pricing_service.set_variant_enabled(repo, variant_id, payload["auto_pricing_enabled"])
            response = _batch_payload(result)
        elif "resume_option" in payload:
            result = await smart_pricing_service.resume_variant(repo, variant_id, payload["resume_option"])
            response = _batch_payload(result)
        else:
            smart_pricing_service.update_config(repo, variant_id, edits)
            response = {}
        response["config"] = repo.get_config(variant_id)
        return response
    except PricingError as e:
        raise http_error(e)


@router.post("/variants/{variant_id}/approve-max-cap", response_model=PricingConfigResponse)
async def approve_max_cap(
    variant_id: int,
    approval: MaxCapApproval,
    repo: PricingRepository = Depends(get_repository)
):
    """Raise the max increase of a variant parked at the cap so it can keep increasing."""
    try:
        return smart_pricing_service.approve_max_cap(repo, variant_id, approval.max_increase_percent)
    except PricingError as e:
        raise http_error(e)


@router.get("/variants/{variant_id}/history", response_model=List[PricingHistoryResponse])
async def get_pricing_history(
    variant_id: int,
    limit: int = Query(50, ge=1, le=500),
    repo: PricingRepository = Depends(get_repository)
):
    """Get the most recent price changes of a variant."""
    if not repo.get_variant(variant_id):
        raise HTTPException(status_code=404, detail="Variant not found")
    return repo.list_history(variant_id, limit=limit)


@router.post("/products/{product_id}/toggle", response_model=BatchResponse)
async def toggle_product(
    product_id: int,
    request: ToggleRequest,
    repo: PricingRepository = Depends(get_repository)
):
    """Enable or disable smart pricing for every variant of a product."""
    _require_product(repo, product_id)
    result = await smart_pricing_service.toggle_product(repo, product_id, request.enabled)
    return _batch_payload(result)


@router.post("/products/{product_id}/resume", response_model=BatchResponse)
async def resume_product(
    product_id: int,
    request: ResumeRequest,
    repo: PricingRepository = Depends(get_repository)
):
    """Resume smart pricing for every disabled variant of a product."""
    _require_product(repo, product_id)
    result = await smart_pricing_service.resume_product(repo, product_id, request.option)
    return _batch_payload(result)


@router.post("/stores/{store_id}/global-disable", response_model=BatchResponse)
async def global_disable(
    store_id: int,
    repo: PricingRepository = Depends(get_repository)
):
    """Disable smart pricing store-wide and switch scheduled runs off."""
    _require_store(repo, store_id)
    result = await smart_pricing_service.global_disable(repo, store_id)
    return _batch_payload(result)


@router.post("/stores/{store_id}/global-resume", response_model=BatchResponse)
async def global_resume(
    store_id: int,
    request: ResumeRequest,
    repo: PricingRepository = Depends(get_repository)
):
    """Resume smart pricing store-wide and switch scheduled runs back on."""
    _require_store(repo, store_id)
    try:
        result = await smart_pricing_service.global_resume(repo, store_id, request.option)
    except PricingError as e:
        raise http_error(e)
    return _batch_payload(result)


@router.post("/undo", response_model=BatchResponse)
async def undo(
    request: UndoRequest,
    repo: PricingRepository = Depends(get_repository)
):
    """Restore variants to the snapshots returned by a batch operation."""
    if not request.snapshots:
        raise HTTPException(status_code=400, detail="No snapshots to restore")
    snapshots = [ProductSnapshot(**snapshot.model_dump()) for snapshot in request.snapshots]
    result = await smart_pricing_service.undo(repo, snapshots)
    return _batch_payload(result)


@router.post("/run", response_model=List[AlgorithmRunResponse])
async def run_pricing(
    request: Optional[RunRequest] = None,
    repo: PricingRepository = Depends(get_repository)
):
    """Run the pricing algorithm now, for one store or for every active store."""
    if request and request.store_id is not None:
        _require_store(repo, request.store_id)
        return [await algorithm_service.run_for_store(repo, request.store_id)]
    return await algorithm_service.run_all_stores(repo)


@router.get("/runs", response_model=List[AlgorithmRunResponse])
async def list_runs(
    store_id: Optional[int] = None,
    limit: int = Query(20, ge=1, le=200),
    repo: PricingRepository = Depends(get_repository)
):
    """Get the audit trail of pricing runs."""
    return repo.list_runs(store_id=store_id, limit=limit)
