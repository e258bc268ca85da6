"""
tests/test_sync_coordinator.py
───────────────────────────────
Behavioural tests for ``SyncCoordinator``: dependency chaining, key changes,
per-dependency errors, debounced recomputation and pair swapping.
"""

import asyncio

import pytest

from conftest import ETH_ADDRESS, USDC_ADDRESS, FakeProvider, collect_updates, settle
from swapsync.core.cache.resource_cache import EntryState, ResourceCache
from swapsync.core.errors import FetchErrorKind, UnknownTokenError
from swapsync.core.structures.structures import (
    DependencyId,
    PriceRecord,
    SwapSide,
    SyncPhase,
    TokenRecord,
    ZERO_SNAPSHOT,
)
from swapsync.core.sync.sync_coordinator import SyncCoordinator


# ─── Resolution chain ─────────────────────────────────────────────────────────


async def test_subscribe_resolves_tokens_then_prices(coordinator: SyncCoordinator) -> None:
    stream = coordinator.subscribe("USDC", "ETH", "100")
    await settle()

    assert coordinator.phase is SyncPhase.READY
    assert coordinator.snapshot.usd_value_text == "100.00"
    assert coordinator.snapshot.target_amount_text == "0.05"
    assert coordinator.errors == ()

    updates = await collect_updates(stream)
    assert updates[0].phase is SyncPhase.TOKEN_RESOLVING
    assert updates[-1].phase is SyncPhase.READY
    assert updates[-1].snapshot.target_amount_text == "0.05"
    assert all(not update.snapshot.inputs_complete for update in updates[:-1])


async def test_phases_before_both_sides_are_selected(coordinator: SyncCoordinator) -> None:
    assert coordinator.phase is SyncPhase.IDLE

    coordinator.select_source("usdc")
    assert coordinator.selected_symbol(SwapSide.SOURCE) == "USDC"
    assert coordinator.phase is SyncPhase.PARTIALLY_SELECTED

    await settle()
    assert coordinator.phase is SyncPhase.PARTIALLY_SELECTED
    assert coordinator.snapshot == ZERO_SNAPSHOT


async def test_late_result_for_replaced_key_is_ignored(coordinator: SyncCoordinator, provider: FakeProvider) -> None:
    usdc_gate = provider.hold("USDC")
    wbtc_gate = provider.hold("WBTC")
    coordinator.subscribe("USDC", "ETH", "100")

    coordinator.select_source("WBTC")
    coordinator.select_source("LINK")
    entry = coordinator.token_entry(SwapSide.SOURCE)
    assert entry is not None and entry.state is EntryState.LOADING

    await settle()
    assert coordinator.phase is SyncPhase.READY
    assert coordinator.snapshot.usd_value_text == "1500.00"
    assert coordinator.snapshot.target_amount_text == "0.75"
    recomputes = coordinator.recompute_count

    usdc_gate.set()
    wbtc_gate.set()
    await settle()

    entry = coordinator.token_entry(SwapSide.SOURCE)
    assert entry is not None and entry.value is not None
    assert entry.value.symbol == "LINK"
    assert coordinator.snapshot.usd_value_text == "1500.00"
    assert coordinator.recompute_count == recomputes
    assert provider.price_calls_for(USDC_ADDRESS) == 0


async def test_unknown_symbol_leaves_selection_untouched(coordinator: SyncCoordinator) -> None:
    coordinator.subscribe("USDC", "ETH", "100")
    await settle()

    with pytest.raises(UnknownTokenError):
        coordinator.select_target("DOGE")

    assert coordinator.selected_symbol(SwapSide.TARGET) == "ETH"
    assert coordinator.phase is SyncPhase.READY


async def test_sessions_sharing_caches_reuse_fresh_entries(
        provider: FakeProvider,
        token_cache: ResourceCache[TokenRecord],
        price_cache: ResourceCache[PriceRecord],
        coordinator: SyncCoordinator,
) -> None:
    coordinator.subscribe("USDC", "ETH", "100")
    await settle()

    other = SyncCoordinator(provider, token_cache=token_cache, price_cache=price_cache, debounce_seconds=0.05)
    other.subscribe("USDC", "ETH", "50")
    assert other.phase is SyncPhase.READY
    assert other.snapshot.usd_value_text == "50.00"
    assert len(provider.token_calls) == 2
    assert len(provider.price_calls) == 2
    await other.close()


# ─── Swap ─────────────────────────────────────────────────────────────────────


async def test_swap_reuses_cached_entries_and_carries_amount(
        coordinator: SyncCoordinator,
        provider: FakeProvider,
) -> None:
    coordinator.subscribe("USDC", "ETH", "100")
    await settle()
    token_calls, price_calls = len(provider.token_calls), len(provider.price_calls)

    coordinator.swap_pair()
    await settle()

    assert len(provider.token_calls) == token_calls
    assert len(provider.price_calls) == price_calls
    assert coordinator.selected_symbol(SwapSide.SOURCE) == "ETH"
    assert coordinator.selected_symbol(SwapSide.TARGET) == "USDC"
    assert coordinator.raw_amount == "0.05"
    assert coordinator.phase is SyncPhase.READY
    assert coordinator.snapshot.usd_value_text == "100.00"
    assert coordinator.snapshot.target_amount == pytest.approx(100.0)


async def test_swap_with_oversized_carried_amount_clears_snapshot(coordinator: SyncCoordinator) -> None:
    coordinator.subscribe("WBTC", "USDC", "20000")
    await settle()
    assert coordinator.snapshot.inputs_complete

    coordinator.swap_pair()
    await settle()

    assert coordinator.raw_amount == "1200000000"
    assert coordinator.snapshot == ZERO_SNAPSHOT
    (notice,) = coordinator.errors
    assert notice.dependency is DependencyId.AMOUNT_VALIDATION
    assert notice.message == "Amount is too large"


# ─── Errors ───────────────────────────────────────────────────────────────────


async def test_failing_price_reports_only_its_dependency(coordinator: SyncCoordinator, provider: FakeProvider) -> None:
    provider.fail_price(ETH_ADDRESS, times=3)

    coordinator.subscribe("USDC", "ETH", "100")
    await settle()

    assert coordinator.phase is SyncPhase.PRICE_RESOLVING
    assert coordinator.snapshot == ZERO_SNAPSHOT
    (notice,) = coordinator.errors
    assert notice.dependency is DependencyId.PRICE_FETCH_TARGET
    assert notice.kind is FetchErrorKind.NETWORK_ERROR
    assert notice.message.startswith("ETH prices are temporarily unavailable")
    assert notice.retryable
    assert provider.price_calls_for(ETH_ADDRESS) == 3
    assert provider.price_calls_for(USDC_ADDRESS) == 1


async def test_dismiss_then_retry_recovers(coordinator: SyncCoordinator, provider: FakeProvider) -> None:
    provider.fail_price(ETH_ADDRESS, times=3)
    coordinator.subscribe("USDC", "ETH", "100")
    await settle()

    assert coordinator.dismiss_error("price-fetch-target")
    assert coordinator.errors == ()
    assert not coordinator.dismiss_error(DependencyId.TOKEN_FETCH_SOURCE)

    coordinator.retry(DependencyId.PRICE_FETCH_TARGET)
    await settle()

    assert coordinator.phase is SyncPhase.READY
    assert coordinator.snapshot.target_amount_text == "0.05"
    assert coordinator.errors == ()


async def test_dismissed_error_reappears_on_new_failure(coordinator: SyncCoordinator, provider: FakeProvider) -> None:
    provider.fail_token("ETH", kind=FetchErrorKind.NOT_FOUND)
    coordinator.subscribe("USDC", "ETH", "100")
    await settle()

    (first,) = coordinator.errors
    assert first.dependency is DependencyId.TOKEN_FETCH_TARGET
    assert first.kind is FetchErrorKind.NOT_FOUND
    assert provider.token_calls_for("ETH") == 1
    coordinator.dismiss_error(DependencyId.TOKEN_FETCH_TARGET)

    provider.fail_token("ETH", kind=FetchErrorKind.NOT_FOUND)
    coordinator.retry(DependencyId.TOKEN_FETCH_TARGET)
    await settle()

    (second,) = coordinator.errors
    assert second.dependency is DependencyId.TOKEN_FETCH_TARGET
    assert second.error_id != first.error_id
    assert coordinator.phase is SyncPhase.TOKEN_RESOLVING


# ─── Amount ───────────────────────────────────────────────────────────────────


async def test_rapid_amount_input_recomputes_once(coordinator: SyncCoordinator) -> None:
    coordinator.subscribe("USDC", "ETH", "")
    await settle()
    assert coordinator.phase is SyncPhase.READY
    assert coordinator.snapshot == ZERO_SNAPSHOT
    baseline = coordinator.recompute_count

    for raw in ("1", "10", "100"):
        coordinator.set_amount(raw)
        await asyncio.sleep(0.01)
    assert coordinator.phase is SyncPhase.RECOMPUTING
    assert coordinator.recompute_count == baseline

    await asyncio.sleep(0.15)

    assert coordinator.recompute_count == baseline + 1
    assert coordinator.phase is SyncPhase.READY
    assert coordinator.snapshot.usd_value_text == "100.00"


async def test_invalid_amount_keeps_previous_snapshot(coordinator: SyncCoordinator) -> None:
    coordinator.subscribe("USDC", "ETH", "100")
    await settle()

    coordinator.set_amount("abc")
    (notice,) = coordinator.errors
    assert notice.dependency is DependencyId.AMOUNT_VALIDATION
    assert notice.message == "Please enter a valid number"
    assert not notice.retryable

    await asyncio.sleep(0.1)
    assert coordinator.snapshot.usd_value_text == "100.00"

    coordinator.set_amount("")
    await asyncio.sleep(0.1)
    assert coordinator.errors == ()
    assert coordinator.snapshot == ZERO_SNAPSHOT


async def test_slippage_tolerance_updates_minimum_received(coordinator: SyncCoordinator) -> None:
    coordinator.subscribe("USDC", "ETH", "100")
    await settle()
    assert coordinator.snapshot.minimum_received == pytest.approx(0.04975)

    coordinator.set_slippage_tolerance(1.0)
    assert coordinator.snapshot.minimum_received == pytest.approx(0.0495)

    with pytest.raises(ValueError):
        coordinator.set_slippage_tolerance(75.0)
    assert coordinator.slippage_tolerance_pct == 1.0


# ─── Lifecycle ────────────────────────────────────────────────────────────────


async def test_close_ends_the_update_stream(coordinator: SyncCoordinator, token_cache: ResourceCache[TokenRecord]) -> None:
    stream = coordinator.subscribe("USDC", "ETH", "100")
    await settle()

    await coordinator.close()
    updates = await collect_updates(stream, timeout=0.5)

    assert updates
    assert updates[-1].phase is SyncPhase.READY
    entry = token_cache.get(coordinator.token_entry(SwapSide.SOURCE).key)  # type: ignore[union-attr]
    assert entry is not None and entry.subscribers == 0


async def test_dismissals_are_forgotten_once_the_error_is_gone(coordinator: SyncCoordinator) -> None:
    coordinator.subscribe("USDC", "ETH", "100")
    await settle()

    coordinator.set_amount("abc")
    assert coordinator.dismiss_error(DependencyId.AMOUNT_VALIDATION)
    assert coordinator.errors == ()

    coordinator.set_amount("50")
    assert coordinator._dismissed == set()

    coordinator.set_amount("abc")
    (notice,) = coordinator.errors
    assert notice.dependency is DependencyId.AMOUNT_VALIDATION
