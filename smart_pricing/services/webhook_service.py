"""Webhook service - Shopify products/update and orders/create handling.

Every delivery is deduplicated through the processed-event ledger keyed by
``(event_id, store_id)``. The ledger row and the writes it guards are
committed together, so a redelivery either finds the row and does nothing
or finds nothing because the first attempt rolled back.
"""
import base64
import hashlib
import hmac
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from smart_pricing.config import settings
from smart_pricing.exceptions import ConcurrentModificationError, ConfigNotFoundError, DuplicateEventError, ValidationError
from smart_pricing.models import PricingAction, Store, Variant, VariantPricingConfig
from smart_pricing.services.pricing_rules import round_price
from smart_pricing.services.repository import PricingRepository
from smart_pricing.services.revenue_service import revenue_service
from smart_pricing.services.shopify_ids import normalize_shopify_id
from smart_pricing.timeutils import utcnow

LOG = logging.getLogger(__name__)

PRODUCT_UPDATE_TOPIC = "products/update"
ORDER_CREATE_TOPIC = "orders/create"

MANUAL_RESET_REASON = "price edited in Shopify"


@dataclass
class ProductUpdateEvent:
    event_id: str
    store_id: int
    external_product_id: Any
    new_price: float
    topic: str = PRODUCT_UPDATE_TOPIC
    payload_hash: Optional[str] = None


@dataclass
class WebhookResult:
    event_id: str
    store_id: int
    duplicate: bool = False
    variants_reset: int = 0
    variants_unchanged: int = 0
    line_items_recorded: int = 0


def payload_digest(body: bytes) -> str:
    return hashlib.sha256(body).hexdigest()


def verify_hmac(body: bytes, hmac_header: Optional[str], secret: str) -> bool:
    """Check Shopify's base64 HMAC-SHA256 signature of the raw body."""
    if not hmac_header:
        return False
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("utf-8")
    return hmac.compare_digest(expected, hmac_header)


def parse_product_update(
    event_id: Optional[str],
    store_id: int,
    payload: dict,
    payload_hash: Optional[str] = None
) -> ProductUpdateEvent:
    """Build an event from a products/update body. Only the id and first variant price are used."""
    if not event_id:
        raise ValidationError("Missing webhook id")

    variants = payload.get("variants") or []
    if not variants or variants[0].get("price") in (None, ""):
        raise ValidationError("products/update payload has no variant price")
    try:
        new_price = float(variants[0]["price"])
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid variant price: {variants[0]['price']!r}") from exc
    if new_price < 0:
        raise ValidationError(f"Invalid variant price: {new_price}")

    return ProductUpdateEvent(
        event_id=str(event_id),
        store_id=store_id,
        external_product_id=payload.get("id"),
        new_price=round_price(new_price),
        payload_hash=payload_hash,
    )


class WebhookService:
    """Service for inbound Shopify webhooks."""

    MAX_ATTEMPTS = 3

    def resolve_store(self, repo: PricingRepository, shop_domain: Optional[str]) -> Store:
        if not shop_domain:
            raise ValidationError("Missing shop domain")
        store = repo.get_store_by_domain(shop_domain)
        if not store:
            raise ConfigNotFoundError(f"Unknown store {shop_domain}")
        return store

    def _claim(self, repo: PricingRepository, event_id: str, store_id: int, topic: str, payload_hash: Optional[str]) -> bool:
        """Insert the ledger row. False when the delivery was already processed."""
        if repo.is_event_processed(event_id, store_id):
            LOG.info("Webhook %s for store %s already processed, skipping", event_id, store_id)
            return False
        try:
            repo.record_event(event_id, store_id, topic, payload_hash)
        except DuplicateEventError:
            LOG.info("Webhook %s for store %s processed concurrently, skipping", event_id, store_id)
            return False
        return True

    def _reset_variant(
        self,
        repo: PricingRepository,
        variant: Variant,
        config: VariantPricingConfig,
        new_price: float,
        now: datetime
    ) -> bool:
        """Restart the cooldown. True when the mirror price changed."""
        # state and revert_wait_until are left alone
        fields = {
            "last_price_change_at": now,
            "next_eligible_at": now + timedelta(hours=settings.manual_edit_cooldown_hours),
        }
        for attempt in range(1, self.MAX_ATTEMPTS + 1):
            version = repo.config_version(config.id)
            try:
                repo.stage_config_update(config.id, version, fields)
                break
            except ConcurrentModificationError:
                if attempt == self.MAX_ATTEMPTS:
                    raise
                LOG.info("Config of variant %s changed during manual reset, retrying", variant.id)

        old_price = variant.price
        if round_price(old_price) == new_price:
            return False
        variant.price = new_price
        variant.updated_at = now
        repo.add_history(variant, old_price, new_price, PricingAction.MANUAL_RESET, MANUAL_RESET_REASON, now)
        return True

    def handle_product_update(
        self,
        repo: PricingRepository,
        event: ProductUpdateEvent,
        now: Optional[datetime] = None
    ) -> WebhookResult:
        """
        Start a manual-edit cooldown on every configured variant of the product.

        The mirror price takes the webhook price and ``next_eligible_at`` moves
        ``manual_edit_cooldown_hours`` out. Every variant is reset, whether or
        not the price moved; a ``manual_reset`` history entry is written only
        for variants whose price changed.
        """
        now = now or utcnow()
        product_shopify_id = normalize_shopify_id(event.external_product_id)
        result = WebhookResult(event_id=event.event_id, store_id=event.store_id)

        if not self._claim(repo, event.event_id, event.store_id, event.topic, event.payload_hash):
            result.duplicate = True
            return result

        try:
            for variant, config in repo.find_configs_for_external_product(event.store_id, product_shopify_id):
                if not self._reset_variant(repo, variant, config, event.new_price, now):
                    result.variants_unchanged += 1
                result.variants_reset += 1
            repo.commit()
        except Exception:
            repo.rollback()
            raise

        LOG.info(
            "products/update %s: product %s reset %d variant(s), %d with unchanged price",
            event.event_id, product_shopify_id, result.variants_reset, result.variants_unchanged
        )
        return result

    def handle_order_created(
        self,
        repo: PricingRepository,
        event_id: Optional[str],
        store: Store,
        order: dict,
        payload_hash: Optional[str] = None
    ) -> WebhookResult:
        """Record an order's line items as daily revenue."""
        if not event_id:
            raise ValidationError("Missing webhook id")
        result = WebhookResult(event_id=str(event_id), store_id=store.id)

        if not self._claim(repo, result.event_id, store.id, ORDER_CREATE_TOPIC, payload_hash):
            result.duplicate = True
            return result

        try:
            result.line_items_recorded = revenue_service.record_order(repo, store, order)
            repo.commit()
        except Exception:
            repo.rollback()
            raise

        LOG.info("orders/create %s: recorded %d line item(s)", event_id, result.line_items_recorded)
        return result


# Singleton instance
webhook_service = WebhookService()
