from datetime import timedelta

import pytest

from smart_pricing.exceptions import ConcurrentModificationError, ConfigNotFoundError, ValidationError
from smart_pricing.models import PricingState
from smart_pricing.services.smart_pricing_service import SmartPricingService, UNDO_REASON
from smart_pricing.timeutils import as_utc

from .conftest import NOW


@pytest.fixture
def service(executor):
    return SmartPricingService(executor=executor)


@pytest.mark.asyncio
async def test_enable_captures_baseline_and_bumps(repo, service, commerce, make_variant):
    variant = make_variant(price=20.0)

    entry = await service.enable(repo, variant.id, NOW)

    config = repo.get_config(variant.id)
    assert variant.price == 21.0
    assert commerce.calls[-1][2] == 21.0
    assert config.auto_pricing_enabled is True
    assert config.baseline_price == 20.0
    assert config.last_smart_price == 21.0
    assert config.state == PricingState.INCREASING.value
    assert config.next_eligible_at is None
    assert entry.action == "increase"
    assert entry.reason == "smart pricing enabled"


@pytest.mark.asyncio
async def test_enable_keeps_existing_baseline(repo, service, make_variant):
    variant = make_variant(price=20.0, baseline_price=18.0)

    await service.enable(repo, variant.id, NOW)

    assert repo.get_config(variant.id).baseline_price == 18.0


@pytest.mark.asyncio
async def test_enable_bump_respects_cap(repo, service, make_variant):
    variant = make_variant(price=21.9, starting_price=20.0, max_increase_percent=10.0)

    await service.enable(repo, variant.id, NOW)

    assert variant.price == 22.0
    assert repo.get_config(variant.id).state == PricingState.AT_MAX_CAP.value


@pytest.mark.asyncio
async def test_disable_returns_to_baseline(repo, service, make_variant):
    variant = make_variant(price=25.0, starting_price=20.0, auto_pricing_enabled=True, baseline_price=21.0)

    entry = await service.disable(repo, variant.id, NOW)

    config = repo.get_config(variant.id)
    assert variant.price == 21.0
    assert config.auto_pricing_enabled is False
    assert config.last_smart_price == 25.0
    assert entry.action == "revert"
    assert entry.reason == "smart pricing disabled"


@pytest.mark.asyncio
async def test_disable_without_baseline_falls_back_to_starting_price(repo, service, make_variant):
    variant = make_variant(price=18.0, starting_price=15.0, auto_pricing_enabled=True)

    await service.disable(repo, variant.id, NOW)

    assert variant.price == 15.0


@pytest.mark.asyncio
async def test_disable_while_waiting_clears_revert_wait(repo, service, make_variant):
    variant = make_variant(
        price=30.0,
        auto_pricing_enabled=True,
        state=PricingState.WAITING_AFTER_REVERT.value,
        revert_wait_until=NOW + timedelta(hours=10),
        next_eligible_at=NOW + timedelta(hours=10),
    )

    await service.disable(repo, variant.id, NOW)

    config = repo.get_config(variant.id)
    assert config.state == PricingState.INCREASING.value
    assert config.revert_wait_until is None


@pytest.mark.asyncio
async def test_disable_then_resume_base_restores_baseline(repo, service, make_variant):
    variant = make_variant(price=25.0, starting_price=20.0, auto_pricing_enabled=True, baseline_price=22.0)

    await service.disable(repo, variant.id, NOW)
    entry = await service.resume(repo, variant.id, "base", NOW)

    config = repo.get_config(variant.id)
    assert variant.price == 22.0
    assert config.auto_pricing_enabled is True
    assert config.next_eligible_at is None
    assert entry.action == "resume_base"


@pytest.mark.asyncio
async def test_resume_last_returns_to_last_smart_price(repo, service, make_variant):
    variant = make_variant(price=25.0, starting_price=20.0, auto_pricing_enabled=True, baseline_price=20.0)

    await service.disable(repo, variant.id, NOW)
    entry = await service.resume(repo, variant.id, "last", NOW)

    assert variant.price == 25.0
    assert entry.action == "resume_last"
    assert repo.get_config(variant.id).last_smart_price == 25.0


@pytest.mark.asyncio
async def test_resume_last_is_clamped_to_cap(repo, service, make_variant):
    variant = make_variant(price=20.0, starting_price=20.0, max_increase_percent=50.0, last_smart_price=40.0)

    await service.resume(repo, variant.id, "last", NOW)

    assert variant.price == 30.0


@pytest.mark.asyncio
async def test_resume_rejects_unknown_option(repo, service, commerce, make_variant):
    variant = make_variant()

    with pytest.raises(ValidationError):
        await service.resume(repo, variant.id, "middle", NOW)
    assert commerce.calls == []


@pytest.mark.asyncio
async def test_unknown_variant(repo, service):
    with pytest.raises(ConfigNotFoundError):
        await service.enable(repo, 424242, NOW)


@pytest.mark.asyncio
async def test_enable_creates_missing_config(repo, service, make_variant):
    variant = make_variant(price=10.0, with_config=False)

    await service.enable(repo, variant.id, NOW)

    config = repo.get_config(variant.id)
    assert config.auto_pricing_enabled is True
    assert config.baseline_price == 10.0


@pytest.mark.asyncio
async def test_toggle_product_isolates_failures(repo, service, commerce, make_product, make_variant):
    product = make_product()
    first = make_variant(price=10.0, product=product)
    second = make_variant(price=20.0, product=product)
    third = make_variant(price=30.0, product=product)
    commerce.fail_for.add(second.shopify_id)

    result = await service.toggle_product(repo, product.id, True, NOW)

    assert [outcome.success for outcome in result.outcomes] == [True, False, True]
    assert result.outcomes[1].error_type == "ExternalAPIError"
    assert [snapshot.variant_id for snapshot in result.snapshots] == [first.id, second.id, third.id]
    assert result.succeeded == 2
    assert result.failed == 1
    repo.refresh(second)
    assert second.price == 20.0
    assert repo.get_config(second.id).auto_pricing_enabled is False
    assert repo.get_config(third.id).auto_pricing_enabled is True


@pytest.mark.asyncio
async def test_toggle_product_skips_variants_already_in_state(repo, service, make_product, make_variant):
    product = make_product()
    make_variant(price=10.0, product=product, auto_pricing_enabled=True)
    disabled = make_variant(price=20.0, product=product)

    result = await service.toggle_product(repo, product.id, True, NOW)

    assert [outcome.variant_id for outcome in result.outcomes] == [disabled.id]


@pytest.mark.asyncio
async def test_undo_replays_snapshots(repo, service, make_product, make_variant):
    product = make_product()
    variant = make_variant(price=10.0, product=product)

    toggled = await service.toggle_product(repo, product.id, True, NOW)
    assert variant.price == 10.5

    undone = await service.undo(repo, toggled.snapshots, NOW + timedelta(minutes=5))

    config = repo.get_config(variant.id)
    assert undone.outcomes[0].success is True
    assert variant.price == 10.0
    assert config.auto_pricing_enabled is False
    assert config.state == PricingState.INCREASING.value
    assert repo.count_history(variant.id) == 2
    assert repo.list_history(variant.id)[0].reason == UNDO_REASON
    # Snapshots of the undo describe the state it replaced
    assert undone.snapshots[0].price == 10.5
    assert undone.snapshots[0].auto_pricing_enabled is True


@pytest.mark.asyncio
async def test_global_disable_and_undo_restore_waiting_state(repo, service, store, make_variant):
    wait_until = NOW + timedelta(hours=10)
    variant = make_variant(
        price=12.0,
        auto_pricing_enabled=True,
        state=PricingState.WAITING_AFTER_REVERT.value,
        revert_wait_until=wait_until,
        next_eligible_at=wait_until,
    )

    result = await service.global_disable(repo, store.id, NOW)

    assert repo.is_globally_enabled() is False
    assert repo.get_config(variant.id).auto_pricing_enabled is False

    await service.undo(repo, result.snapshots, NOW)

    config = repo.get_config(variant.id)
    assert config.auto_pricing_enabled is True
    assert config.state == PricingState.WAITING_AFTER_REVERT.value
    assert as_utc(config.revert_wait_until) == wait_until
    assert as_utc(config.next_eligible_at) == wait_until
    assert variant.price == 12.0


@pytest.mark.asyncio
async def test_global_resume_enables_disabled_variants(repo, service, store, make_variant):
    repo.set_globally_enabled(False)
    disabled = make_variant(price=10.0, baseline_price=9.0)
    enabled = make_variant(price=15.0, auto_pricing_enabled=True)

    result = await service.global_resume(repo, store.id, "base", NOW)

    assert repo.is_globally_enabled() is True
    assert [outcome.variant_id for outcome in result.outcomes] == [disabled.id]
    assert disabled.price == 9.0
    assert enabled.price == 15.0


@pytest.mark.asyncio
async def test_conflict_is_retried_against_fresh_state(repo, commerce, executor, make_variant):
    class FlakyExecutor:
        def __init__(self):
            self.attempts = 0

        async def execute(self, repo, mutation, now=None):
            self.attempts += 1
            if self.attempts == 1:
                raise ConcurrentModificationError("changed underneath")
            return await executor.execute(repo, mutation, now)

    flaky = FlakyExecutor()
    variant = make_variant(price=20.0)

    await SmartPricingService(executor=flaky).enable(repo, variant.id, NOW)

    assert flaky.attempts == 2
    assert variant.price == 21.0


def test_update_config_edits_rules(repo, make_variant):
    variant = make_variant()

    config = SmartPricingService().update_config(repo, variant.id, {"increment_percent": 7.5, "period_hours": 48})

    assert config.increment_percent == 7.5
    assert config.period_hours == 48
    assert config.version == 2


def test_raising_cap_leaves_at_max_cap(repo, make_variant):
    variant = make_variant(state=PricingState.AT_MAX_CAP.value, max_increase_percent=10.0)

    config = SmartPricingService().update_config(repo, variant.id, {"max_increase_percent": 20.0})

    assert config.state == PricingState.INCREASING.value


def test_lowering_cap_keeps_at_max_cap(repo, make_variant):
    variant = make_variant(state=PricingState.AT_MAX_CAP.value, max_increase_percent=10.0)

    config = SmartPricingService().update_config(repo, variant.id, {"max_increase_percent": 5.0})

    assert config.state == PricingState.AT_MAX_CAP.value


def test_update_config_rejects_unknown_and_empty(repo, make_variant):
    variant = make_variant()
    service = SmartPricingService()

    with pytest.raises(ValidationError):
        service.update_config(repo, variant.id, {"state": "increasing"})
    with pytest.raises(ValidationError):
        service.update_config(repo, variant.id, {})
    with pytest.raises(ValidationError):
        service.update_config(repo, variant.id, {"period_hours": 0})


def test_approve_max_cap(repo, make_variant):
    variant = make_variant(state=PricingState.AT_MAX_CAP.value, max_increase_percent=10.0)

    config = SmartPricingService().approve_max_cap(repo, variant.id, 25.0)

    assert config.max_increase_percent == 25.0
    assert config.state == PricingState.INCREASING.value
