import itertools
from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from smart_pricing.database import Base
from smart_pricing.exceptions import ExternalAPIError
from smart_pricing.models import Product, Store, Variant, VariantPricingConfig
from smart_pricing.services.price_mutation_service import PriceMutationService
from smart_pricing.services.repository import PricingRepository

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


class FakeCommerce:
    """Records price pushes instead of calling Shopify."""

    def __init__(self):
        self.calls = []
        self.fail_with = None
        self.fail_for = set()

    async def update_variant_price(self, store, product_shopify_id, variant_shopify_id, price):
        if self.fail_with is not None:
            raise self.fail_with
        if variant_shopify_id in self.fail_for:
            raise ExternalAPIError(f"Shopify rejected variant {variant_shopify_id}")
        self.calls.append((product_shopify_id, variant_shopify_id, price))
        return {"productVariants": [{"price": f"{price:.2f}"}], "userErrors": []}


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    import smart_pricing.models  # noqa: F401
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def repo(db):
    return PricingRepository(db)


@pytest.fixture
def commerce():
    return FakeCommerce()


@pytest.fixture
def executor(commerce):
    return PriceMutationService(commerce=commerce)


@pytest.fixture
def store(db):
    store = Store(shop_domain="test-shop.myshopify.com", access_token="shpat_test", is_active=True)
    db.add(store)
    db.commit()
    return store


@pytest.fixture
def make_product(db, store):
    counter = itertools.count(1001)

    def _make(shopify_id=None, owner=None):
        owner = owner or store
        product = Product(
            store_id=owner.id,
            shopify_id=shopify_id or str(next(counter)),
            title="Booster Box",
            status="ACTIVE",
        )
        db.add(product)
        db.commit()
        return product

    return _make


@pytest.fixture
def make_variant(db, make_product):
    """Create a variant (and its product and config unless told otherwise)."""
    counter = itertools.count(5001)

    def _make(price=10.0, starting_price=None, product=None, with_config=True, **config_fields):
        product = product or make_product()
        variant = Variant(
            product_id=product.id,
            store_id=product.store_id,
            shopify_id=str(next(counter)),
            title="Default Title",
            price=price,
            starting_price=starting_price if starting_price is not None else price,
        )
        db.add(variant)
        db.flush()

        if with_config:
            fields = {
                "auto_pricing_enabled": False,
                "state": "increasing",
                "increment_percent": 5.0,
                "period_hours": 24,
                "revenue_drop_threshold_percent": 1.0,
                "wait_hours_after_revert": 24,
                "max_increase_percent": 100.0,
                "version": 1,
            }
            fields.update(config_fields)
            db.add(VariantPricingConfig(variant_id=variant.id, **fields))

        db.commit()
        return variant

    return _make
