from datetime import date

import pytest

from smart_pricing.exceptions import ValidationError
from smart_pricing.services.revenue_service import revenue_service

from .conftest import NOW


def test_evaluate_compares_consecutive_windows(repo, store, make_variant):
    variant = make_variant()
    repo.add_sale(store.id, variant.id, date(2026, 3, 7), 50, 500.0)  # outside both windows
    repo.add_sale(store.id, variant.id, date(2026, 3, 8), 12, 120.0)
    repo.add_sale(store.id, variant.id, date(2026, 3, 10), 10, 100.0)
    repo.commit()

    revenue = revenue_service.evaluate(repo, variant.id, 24, NOW)

    assert revenue.previous_revenue == 120.0
    assert revenue.current_revenue == 100.0
    assert revenue.has_sufficient_data is True
    assert revenue.change_percent == pytest.approx(-16.6667, abs=1e-3)


def test_evaluate_without_sales_is_insufficient(repo, make_variant):
    variant = make_variant()

    revenue = revenue_service.evaluate(repo, variant.id, 24, NOW)

    assert revenue.has_sufficient_data is False
    assert revenue.change_percent == 0.0
    assert revenue.current_revenue == 0.0


def test_evaluate_with_only_current_sales_is_insufficient(repo, store, make_variant):
    variant = make_variant()
    repo.add_sale(store.id, variant.id, date(2026, 3, 10), 3, 30.0)
    repo.commit()

    revenue = revenue_service.evaluate(repo, variant.id, 24, NOW)

    assert revenue.has_sufficient_data is False
    assert revenue.current_revenue == 30.0


def test_record_order_accumulates_per_variant_and_day(repo, store, make_variant):
    variant = make_variant(price=10.0)
    order = {
        "id": 1,
        "created_at": "2026-03-10T09:30:00-05:00",
        "line_items": [
            {"variant_id": int(variant.shopify_id), "price": "10.00", "quantity": 2},
            {"variant_id": 999999, "price": "5.00", "quantity": 1},
            {"variant_id": None, "price": "1.00", "quantity": 1},
        ],
    }
    second = {
        "id": 2,
        "created_at": "2026-03-10T10:00:00+00:00",
        "line_items": [
            {"variant_id": f"gid://shopify/ProductVariant/{variant.shopify_id}", "price": "10.00", "quantity": 1},
        ],
    }

    assert revenue_service.record_order(repo, store, order) == 1
    assert revenue_service.record_order(repo, store, second) == 1
    repo.commit()

    assert repo.sum_revenue(variant.id, date(2026, 3, 10)) == 30.0


def test_record_order_rejects_bad_timestamp(repo, store):
    with pytest.raises(ValidationError):
        revenue_service.record_order(repo, store, {"created_at": "yesterday", "line_items": []})
