import base64
import hashlib
import hmac
from datetime import date, timedelta

import pytest

from smart_pricing.config import settings
from smart_pricing.exceptions import ConfigNotFoundError, ValidationError
from smart_pricing.models import PricingState, Store
from smart_pricing.services.webhook_service import (
    ProductUpdateEvent,
    WebhookService,
    parse_product_update,
    verify_hmac,
)
from smart_pricing.timeutils import as_utc

from .conftest import NOW


@pytest.fixture
def service():
    return WebhookService()


def _event(store_id, product_id, price, event_id="evt-1"):
    return ProductUpdateEvent(
        event_id=event_id,
        store_id=store_id,
        external_product_id=product_id,
        new_price=price,
    )


def test_manual_edit_starts_cooldown(repo, service, store, make_product, make_variant):
    product = make_product()
    variant = make_variant(price=20.0, product=product, auto_pricing_enabled=True)

    result = service.handle_product_update(repo, _event(store.id, int(product.shopify_id), 17.5), NOW)

    config = repo.get_config(variant.id)
    assert result.variants_reset == 1
    assert variant.price == 17.5
    assert as_utc(config.last_price_change_at) == NOW
    assert as_utc(config.next_eligible_at) == NOW + timedelta(hours=settings.manual_edit_cooldown_hours)
    assert config.version == 2
    history = repo.list_history(variant.id)
    assert [entry.action for entry in history] == ["manual_reset"]
    assert history[0].old_price == 20.0
    assert history[0].new_price == 17.5


def test_reset_never_touches_state(repo, service, store, make_product, make_variant):
    product = make_product()
    wait_until = NOW + timedelta(hours=5)
    variant = make_variant(
        price=20.0,
        product=product,
        auto_pricing_enabled=True,
        state=PricingState.WAITING_AFTER_REVERT.value,
        revert_wait_until=wait_until,
        next_eligible_at=wait_until,
    )

    service.handle_product_update(repo, _event(store.id, product.shopify_id, 19.0), NOW)

    config = repo.get_config(variant.id)
    assert config.state == PricingState.WAITING_AFTER_REVERT.value
    assert as_utc(config.revert_wait_until) == wait_until


def test_same_event_id_in_two_stores_and_replay(repo, service, store, make_product, make_variant, db):
    other = Store(shop_domain="other-shop.myshopify.com", access_token="shpat_other", is_active=True)
    db.add(other)
    db.commit()
    product_a = make_product(shopify_id="777")
    product_b = make_product(shopify_id="777", owner=other)
    variant_a = make_variant(price=20.0, product=product_a)
    variant_b = make_variant(price=20.0, product=product_b)

    first = service.handle_product_update(repo, _event(store.id, "777", 18.0), NOW)
    second = service.handle_product_update(repo, _event(other.id, "777", 18.0), NOW)

    assert first.variants_reset == 1
    assert second.variants_reset == 1
    assert variant_a.price == 18.0
    assert variant_b.price == 18.0

    replay = service.handle_product_update(repo, _event(store.id, "777", 15.0), NOW + timedelta(hours=1))

    assert replay.duplicate is True
    assert variant_a.price == 18.0
    assert repo.get_config(variant_a.id).version == 2
    assert repo.count_history(variant_a.id) == 1
    assert repo.count_events() == 2


def test_unchanged_price_still_starts_cooldown(repo, service, store, make_product, make_variant):
    product = make_product()
    variant = make_variant(price=20.0, product=product, auto_pricing_enabled=True)

    result = service.handle_product_update(repo, _event(store.id, product.shopify_id, 20.0), NOW)

    config = repo.get_config(variant.id)
    assert result.variants_reset == 1
    assert result.variants_unchanged == 1
    assert variant.price == 20.0
    assert as_utc(config.last_price_change_at) == NOW
    assert as_utc(config.next_eligible_at) == NOW + timedelta(hours=settings.manual_edit_cooldown_hours)
    assert config.version == 2
    assert repo.count_history(variant.id) == 0
    assert repo.count_events(store.id) == 1


def test_invalid_product_id_is_rejected_before_ledger(repo, service, store):
    with pytest.raises(ValidationError):
        service.handle_product_update(repo, _event(store.id, "not-a-number", 10.0), NOW)

    assert repo.count_events() == 0


def test_parse_product_update():
    event = parse_product_update("evt-9", 1, {"id": 123, "variants": [{"price": "12.50"}, {"price": "99.00"}]})

    assert event.external_product_id == 123
    assert event.new_price == 12.5
    assert event.event_id == "evt-9"


@pytest.mark.parametrize("payload", [
    {"id": 1},
    {"id": 1, "variants": []},
    {"id": 1, "variants": [{"price": None}]},
    {"id": 1, "variants": [{"price": "free"}]},
    {"id": 1, "variants": [{"price": "-1"}]},
])
def test_parse_product_update_rejects_bad_payloads(payload):
    with pytest.raises(ValidationError):
        parse_product_update("evt-1", 1, payload)


def test_parse_product_update_requires_event_id():
    with pytest.raises(ValidationError):
        parse_product_update(None, 1, {"id": 1, "variants": [{"price": "1.00"}]})


def test_order_created_records_revenue_once(repo, service, store, make_variant):
    variant = make_variant(price=10.0)
    order = {
        "id": 42,
        "created_at": "2026-03-10T08:00:00+00:00",
        "line_items": [{"variant_id": variant.shopify_id, "price": "10.00", "quantity": 3}],
    }

    first = service.handle_order_created(repo, "order-evt-1", store, order)
    again = service.handle_order_created(repo, "order-evt-1", store, order)

    assert first.line_items_recorded == 1
    assert again.duplicate is True
    assert repo.sum_revenue(variant.id, date(2026, 3, 10)) == 30.0


def test_resolve_store(repo, service, store):
    assert service.resolve_store(repo, store.shop_domain).id == store.id
    with pytest.raises(ConfigNotFoundError):
        service.resolve_store(repo, "unknown.myshopify.com")
    with pytest.raises(ValidationError):
        service.resolve_store(repo, None)


def test_verify_hmac():
    body = b'{"id": 1}'
    signature = base64.b64encode(hmac.new(b"secret", body, hashlib.sha256).digest()).decode()

    assert verify_hmac(body, signature, "secret") is True
    assert verify_hmac(body, signature, "other") is False
    assert verify_hmac(body, None, "secret") is False
