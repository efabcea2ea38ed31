"""Shopify webhook endpoints."""
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request

from smart_pricing.config import settings
from smart_pricing.database import get_repository
from smart_pricing.exceptions import PricingError
from smart_pricing.routers.errors import http_error
from smart_pricing.schemas import WebhookResponse
from smart_pricing.services import webhook_service
from smart_pricing.services.repository import PricingRepository
from smart_pricing.services.webhook_service import parse_product_update, payload_digest, verify_hmac

LOG = logging.getLogger(__name__)

router = APIRouter()


async def _read_verified_body(request: Request, hmac_header: Optional[str]) -> bytes:
    body = await request.body()
    if settings.shopify_webhook_secret and not verify_hmac(body, hmac_header, settings.shopify_webhook_secret):
        LOG.warning("Rejected webhook with invalid HMAC from %s", request.headers.get("X-Shopify-Shop-Domain"))
        raise HTTPException(status_code=401, detail="Invalid webhook signature")
    return body


def _parse_json(body: bytes) -> dict:
    try:
        payload = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=400, detail="Webhook body is not valid JSON")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Webhook body must be a JSON object")
    return payload


@router.post("/products/update", response_model=WebhookResponse)
async def products_update(
    request: Request,
    x_shopify_webhook_id: Optional[str] = Header(None),
    x_shopify_shop_domain: Optional[str] = Header(None),
    x_shopify_hmac_sha256: Optional[str] = Header(None),
    repo: PricingRepository = Depends(get_repository)
):
    """
    Handle a products/update webhook.

    A price edited in Shopify pauses smart pricing for the product's
    variants for the manual-edit cooldown. Redeliveries are no-ops.
    """
    body = await _read_verified_body(request, x_shopify_hmac_sha256)
    payload = _parse_json(body)
    try:
        store = webhook_service.resolve_store(repo, x_shopify_shop_domain)
        event = parse_product_update(x_shopify_webhook_id, store.id, payload, payload_digest(body))
        return webhook_service.handle_product_update(repo, event)
    except PricingError as e:
        raise http_error(e)


@router.post("/orders/create", response_model=WebhookResponse)
async def orders_create(
    request: Request,
    x_shopify_webhook_id: Optional[str] = Header(None),
    x_shopify_shop_domain: Optional[str] = Header(None),
    x_shopify_hmac_sha256: Optional[str] = Header(None),
    repo: PricingRepository = Depends(get_repository)
):
    """Handle an orders/create webhook by recording revenue per variant and day."""
    body = await _read_verified_body(request, x_shopify_hmac_sha256)
    payload = _parse_json(body)
    try:
        store = webhook_service.resolve_store(repo, x_shopify_shop_domain)
        return webhook_service.handle_order_created(
            repo, x_shopify_webhook_id, store, payload, payload_digest(body)
        )
    except PricingError as e:
        raise http_error(e)
