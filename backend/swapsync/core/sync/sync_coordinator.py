from __future__ import annotations

import asyncio
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, Iterator, List, Optional, Set, Tuple, Union

from swapsync.core.cache.resource_cache import CacheEntry, CachePolicy, EntryState, ResourceCache
from swapsync.core.conversion.conversion_engine import (
    AmountValidation,
    build_snapshot,
    validate_slippage_tolerance,
    validate_usd_amount,
)
from swapsync.core.structures.structures import (
    CacheKey,
    ConversionSnapshot,
    DependencyId,
    ErrorNotice,
    PriceRecord,
    SwapSide,
    SyncPhase,
    SyncUpdate,
    TokenRecord,
    ZERO_SNAPSHOT,
)
from swapsync.core.tokens.token_catalog import TokenCatalog, normalize_symbol
from swapsync.core.debounce.debounce_gate import DebounceGate
from swapsync.integrations.base import TokenDataProvider
from swapsync.logging.logger import get_logger

log = get_logger(__name__)

_TOKEN_DEPENDENCY: Dict[SwapSide, DependencyId] = {
    SwapSide.SOURCE: DependencyId.TOKEN_FETCH_SOURCE,
    SwapSide.TARGET: DependencyId.TOKEN_FETCH_TARGET,
}
_PRICE_DEPENDENCY: Dict[SwapSide, DependencyId] = {
    SwapSide.SOURCE: DependencyId.PRICE_FETCH_SOURCE,
    SwapSide.TARGET: DependencyId.PRICE_FETCH_TARGET,
}


@dataclass
class _SideState:
    """Selection of one side of the pair and the cache keys it depends on."""
    symbol: Optional[str] = None
    token_key: Optional[CacheKey] = None
    price_key: Optional[CacheKey] = None


class SyncCoordinator:
    """
    Keeps one swap pair's token/price lookups and its conversion snapshot in sync.

    Dependency changes are explicit events: selection and amount changes come in through
    the public methods, fetch completions through cache listeners. Each event re-requests
    only the affected cache keys and recomputes the snapshot when its inputs changed.

    Notes:
        - All methods must be called from the event loop that runs the caches.
        - Results for keys that are no longer selected stay in the cache but never reach
          the snapshot.
        - The token and price caches can be shared between coordinators; when omitted,
          the coordinator creates and owns private ones.
    """

    def __init__(
            self,
            provider: TokenDataProvider,
            *,
            catalog: Optional[TokenCatalog] = None,
            token_cache: Optional[ResourceCache[TokenRecord]] = None,
            price_cache: Optional[ResourceCache[PriceRecord]] = None,
            cache_policy: Optional[CachePolicy] = None,
            debounce_seconds: float = 0.3,
            slippage_tolerance_pct: float = 0.5,
            clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._provider = provider
        self._catalog = catalog or TokenCatalog()
        self._owned_caches: List[ResourceCache[Any]] = []
        if token_cache is None:
            token_cache = ResourceCache("tokens", cache_policy, clock=clock)
            self._owned_caches.append(token_cache)
        if price_cache is None:
            price_cache = ResourceCache("prices", cache_policy, clock=clock)
            self._owned_caches.append(price_cache)
        self._token_cache: ResourceCache[TokenRecord] = token_cache
        self._price_cache: ResourceCache[PriceRecord] = price_cache

        self._sides: Dict[SwapSide, _SideState] = {SwapSide.SOURCE: _SideState(), SwapSide.TARGET: _SideState()}
        self._gate: DebounceGate[str] = DebounceGate(debounce_seconds, self._on_amount_settled)
        self._raw_amount = ""
        self._debounced_amount = ""
        self._amount_validation: AmountValidation = validate_usd_amount("")
        self._slippage_tolerance_pct = validate_slippage_tolerance(slippage_tolerance_pct)

        self._snapshot: ConversionSnapshot = ZERO_SNAPSHOT
        self._snapshot_inputs: Optional[Tuple[Any, ...]] = None
        self._dismissed: Set[str] = set()
        self._queues: List["asyncio.Queue[Optional[SyncUpdate]]"] = []
        self._last_update: Optional[SyncUpdate] = None
        self._closed = False
        self._batch_depth = 0
        self.recompute_count = 0

        self._token_cache.add_listener(self._on_token_entry_changed)
        self._price_cache.add_listener(self._on_price_entry_changed)

    # ---------- read side ---------- #

    @property
    def snapshot(self) -> ConversionSnapshot:
        return self._snapshot

    @property
    def raw_amount(self) -> str:
        return self._raw_amount

    @property
    def slippage_tolerance_pct(self) -> float:
        return self._slippage_tolerance_pct

    def selected_symbol(self, side: SwapSide) -> Optional[str]:
        return self._sides[side].symbol

    def token_entry(self, side: SwapSide) -> Optional[CacheEntry[TokenRecord]]:
        key = self._sides[side].token_key
        return self._token_cache.get(key) if key else None

    def price_entry(self, side: SwapSide) -> Optional[CacheEntry[PriceRecord]]:
        key = self._sides[side].price_key
        return self._price_cache.get(key) if key else None

    @property
    def phase(self) -> SyncPhase:
        selected = [state for state in self._sides.values() if state.token_key is not None]
        if not selected:
            return SyncPhase.IDLE
        if len(selected) < len(self._sides):
            return SyncPhase.PARTIALLY_SELECTED
        if any(not _has_value(self.token_entry(side)) for side in self._sides):
            return SyncPhase.TOKEN_RESOLVING
        if any(not _has_value(self.price_entry(side)) for side in self._sides):
            return SyncPhase.PRICE_RESOLVING
        if self._gate.pending:
            return SyncPhase.RECOMPUTING
        return SyncPhase.READY

    @property
    def errors(self) -> Tuple[ErrorNotice, ...]:
        return tuple(notice for notice in self._all_errors() if notice.error_id not in self._dismissed)

    def current_update(self) -> SyncUpdate:
        return SyncUpdate(phase=self.phase, snapshot=self._snapshot, errors=self.errors)

    # ---------- consumer stream ---------- #

    def subscribe(
            self,
            source_symbol: Optional[str],
            target_symbol: Optional[str],
            raw_amount: str = "",
    ) -> AsyncIterator[SyncUpdate]:
        """
        Select the pair and amount, then stream updates starting with the current one.

        The initial amount is applied without debounce.
        """
        with self._batched():
            self.select_pair(source_symbol, target_symbol)
            self._apply_amount_now(raw_amount)
        return self.updates()

    def updates(self) -> AsyncIterator[SyncUpdate]:
        """Stream updates from now on; the first item is the current state."""
        queue: "asyncio.Queue[Optional[SyncUpdate]]" = asyncio.Queue()
        queue.put_nowait(self.current_update())
        self._queues.append(queue)
        return self._drain(queue)

    async def _drain(self, queue: "asyncio.Queue[Optional[SyncUpdate]]") -> AsyncIterator[SyncUpdate]:
        try:
            while True:
                update = await queue.get()
                if update is None:
                    return
                yield update
        finally:
            if queue in self._queues:
                self._queues.remove(queue)

    # ---------- commands ---------- #

    def select_source(self, symbol: Optional[str]) -> None:
        self._select(SwapSide.SOURCE, symbol)
        self._refresh()

    def select_target(self, symbol: Optional[str]) -> None:
        self._select(SwapSide.TARGET, symbol)
        self._refresh()

    def select_pair(self, source_symbol: Optional[str], target_symbol: Optional[str]) -> None:
        # Resolve both keys first so an unknown symbol leaves the selection untouched.
        for symbol in (source_symbol, target_symbol):
            if symbol:
                self._catalog.require(symbol)
        with self._batched():
            self._select(SwapSide.SOURCE, source_symbol)
            self._select(SwapSide.TARGET, target_symbol)

    def set_amount(self, raw_amount: str) -> None:
        """Record a raw amount; the snapshot follows once input settles."""
        self._raw_amount = raw_amount or ""
        self._amount_validation = validate_usd_amount(self._raw_amount)
        self._gate.push(self._raw_amount)
        self._publish()

    def swap_pair(self) -> None:
        """
        Exchange source and target.

        Cache keys move with their side, so fresh entries are reused as-is. The previous
        target amount becomes the new source amount.
        """
        carried_amount = self._snapshot.target_amount_text if self._snapshot.inputs_complete else None
        source, target = self._sides[SwapSide.SOURCE], self._sides[SwapSide.TARGET]
        self._sides[SwapSide.SOURCE], self._sides[SwapSide.TARGET] = target, source
        log.info("[SYNC][SWAP] source=%s target=%s carried_amount=%s", target.symbol, source.symbol, carried_amount)

        with self._batched():
            # The previous snapshot belongs to the other orientation.
            self._snapshot = ZERO_SNAPSHOT
            self._snapshot_inputs = None
            for side in self._sides:
                self._request_token(side)
            if carried_amount is not None:
                self._apply_amount_now(carried_amount)

    def set_slippage_tolerance(self, percent: float) -> None:
        self._slippage_tolerance_pct = validate_slippage_tolerance(percent)
        log.debug("[SYNC][SLIPPAGE] tolerance=%.2f%%", self._slippage_tolerance_pct)
        self._refresh()

    def dismiss_error(self, dependency: Union[DependencyId, str]) -> bool:
        """Hide the current error of `dependency`; a later failure is shown again."""
        dependency_id = DependencyId(dependency)
        for notice in self._all_errors():
            if notice.dependency is dependency_id:
                self._dismissed.add(notice.error_id)
                log.debug("[SYNC][DISMISS] %s", notice.error_id)
                self._publish()
                return True
        return False

    def retry(self, dependency: Union[DependencyId, str]) -> None:
        """Re-issue the cache request behind `dependency`."""
        dependency_id = DependencyId(dependency)
        log.info("[SYNC][RETRY] dependency=%s", dependency_id.value)
        for side in self._sides:
            if _TOKEN_DEPENDENCY[side] is dependency_id:
                self._request_token(side)
            elif _PRICE_DEPENDENCY[side] is dependency_id:
                self._request_price(side)
        self._refresh()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._gate.cancel()
        self._token_cache.remove_listener(self._on_token_entry_changed)
        self._price_cache.remove_listener(self._on_price_entry_changed)
        for state in self._sides.values():
            if state.token_key is not None:
                self._token_cache.release(state.token_key)
            if state.price_key is not None:
                self._price_cache.release(state.price_key)
        for queue in list(self._queues):
            queue.put_nowait(None)
        for cache in self._owned_caches:
            await cache.close()
        log.debug("[SYNC][CLOSE] Coordinator closed.")

    # ---------- selection & requests ---------- #

    def _select(self, side: SwapSide, symbol: Optional[str]) -> None:
        state = self._sides[side]
        normalized = normalize_symbol(symbol) if symbol else None
        token_key = self._catalog.token_key(normalized) if normalized else None

        if token_key != state.token_key:
            if state.token_key is not None:
                self._token_cache.release(state.token_key)
            if state.price_key is not None:
                self._price_cache.release(state.price_key)
            state.symbol = normalized
            state.token_key = token_key
            state.price_key = None
            if token_key is not None:
                self._token_cache.retain(token_key)
            log.info("[SYNC][SELECT] side=%s symbol=%s key=%s", side.value, normalized, token_key)

        self._request_token(side)

    def _request_token(self, side: SwapSide) -> None:
        key = self._sides[side].token_key
        if key is None:
            return
        provider = self._provider
        entry = self._token_cache.request(key, lambda: provider.fetch_token(key.chain_id, key.identifier))
        self._link_price(side, entry)

    def _link_price(self, side: SwapSide, token_entry: CacheEntry[TokenRecord]) -> None:
        """Point the side's price lookup at the resolved token and request it."""
        if not token_entry.has_value or token_entry.value is None:
            return
        state = self._sides[side]
        price_key = token_entry.value.price_key()
        if price_key != state.price_key:
            if state.price_key is not None:
                self._price_cache.release(state.price_key)
            state.price_key = price_key
            self._price_cache.retain(price_key)
        self._request_price(side)

    def _request_price(self, side: SwapSide) -> None:
        key = self._sides[side].price_key
        if key is None:
            return
        provider = self._provider
        self._price_cache.request(key, lambda: provider.fetch_price(key.chain_id, key.identifier))

    # ---------- events ---------- #

    def _on_token_entry_changed(self, key: CacheKey, entry: CacheEntry[Any]) -> None:
        matched = False
        for side, state in self._sides.items():
            if state.token_key == key:
                matched = True
                self._link_price(side, entry)
        if matched:
            self._refresh()

    def _on_price_entry_changed(self, key: CacheKey, entry: CacheEntry[Any]) -> None:
        if any(state.price_key == key for state in self._sides.values()):
            self._refresh()

    def _on_amount_settled(self, raw_amount: str) -> None:
        self._debounced_amount = raw_amount
        self._refresh()

    def _apply_amount_now(self, raw_amount: str) -> None:
        self._gate.cancel()
        self._raw_amount = raw_amount or ""
        self._debounced_amount = self._raw_amount
        self._amount_validation = validate_usd_amount(self._raw_amount)

    # ---------- derivation ---------- #

    @contextmanager
    def _batched(self) -> Iterator[None]:
        """Defer recompute and publish until the outermost batch exits."""
        self._batch_depth += 1
        try:
            yield
        finally:
            self._batch_depth -= 1
        if self._batch_depth == 0:
            self._refresh()

    def _refresh(self) -> None:
        if self._closed or self._batch_depth:
            return
        self._recompute()
        self._publish()

    def _recompute(self) -> None:
        prices = self._ready_prices()
        validation = validate_usd_amount(self._debounced_amount)

        if prices is None:
            inputs: Tuple[Any, ...] = ("incomplete",)
        elif not validation.valid:
            # Keep the last valid snapshot until the amount is fixed.
            return
        elif validation.amount is None or validation.amount <= 0:
            inputs = ("no-amount",)
        else:
            inputs = (validation.amount, prices[0], prices[1], self._slippage_tolerance_pct)

        if inputs == self._snapshot_inputs:
            return
        self._snapshot_inputs = inputs
        self.recompute_count += 1

        if len(inputs) == 1:
            self._snapshot = ZERO_SNAPSHOT
            return

        amount, source_price, target_price, slippage = inputs
        self._snapshot = build_snapshot(amount, source_price, target_price, slippage_tolerance_pct=slippage)
        log.debug(
            "[SYNC][RECOMPUTE] amount=%s usd=%s target=%s (%s → %s)",
            self._snapshot.source_amount_text,
            self._snapshot.usd_value_text,
            self._snapshot.target_amount_text,
            self._sides[SwapSide.SOURCE].symbol,
            self._sides[SwapSide.TARGET].symbol,
        )

    def _ready_prices(self) -> Optional[Tuple[float, float]]:
        """USD prices of (source, target) when all four lookups hold a value."""
        prices: List[float] = []
        for side in (SwapSide.SOURCE, SwapSide.TARGET):
            token_entry = self.token_entry(side)
            price_entry = self.price_entry(side)
            if not _has_value(token_entry) or not _has_value(price_entry) or price_entry.value is None:
                return None
            prices.append(float(price_entry.value.price_usd))
        return prices[0], prices[1]

    def _all_errors(self) -> List[ErrorNotice]:
        notices: List[ErrorNotice] = []
        for side, state in self._sides.items():
            token_entry = self.token_entry(side)
            if token_entry is not None and token_entry.state is EntryState.FAILED and token_entry.error is not None:
                notices.append(ErrorNotice(
                    dependency=_TOKEN_DEPENDENCY[side],
                    message=f"We couldn't load {state.symbol} information. Please check your connection and try again.",
                    error_id=f"{_TOKEN_DEPENDENCY[side].value}:{token_entry.key}:{token_entry.error_serial}",
                    kind=token_entry.error.kind,
                    stale_value_available=token_entry.is_stale_with_error,
                ))
            price_entry = self.price_entry(side)
            if price_entry is not None and price_entry.state is EntryState.FAILED and price_entry.error is not None:
                notices.append(ErrorNotice(
                    dependency=_PRICE_DEPENDENCY[side],
                    message=f"{state.symbol} prices are temporarily unavailable. They usually update within a few seconds.",
                    error_id=f"{_PRICE_DEPENDENCY[side].value}:{price_entry.key}:{price_entry.error_serial}",
                    kind=price_entry.error.kind,
                    stale_value_available=price_entry.is_stale_with_error,
                ))

        if not self._amount_validation.valid:
            notices.append(ErrorNotice(
                dependency=DependencyId.AMOUNT_VALIDATION,
                message=self._amount_validation.reason or "Please enter a valid amount greater than 0",
                error_id=f"{DependencyId.AMOUNT_VALIDATION.value}:{self._raw_amount}",
                retryable=False,
            ))
        return notices

    def _publish(self) -> None:
        if self._closed:
            return
        self._dismissed.intersection_update(notice.error_id for notice in self._all_errors())
        update = self.current_update()
        if update == self._last_update:
            return
        self._last_update = update
        for queue in self._queues:
            queue.put_nowait(update)


def _has_value(entry: Optional[CacheEntry[Any]]) -> bool:
    return entry is not None and entry.has_value
