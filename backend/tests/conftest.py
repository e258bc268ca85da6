"""
tests/conftest.py
──────────────────
Shared pytest fixtures for the backend test suite.

Fixtures
--------
provider
    ``FakeProvider`` answering token/price lookups from in-memory tables.
    Lookups can be held open (``hold``) or made to fail (``fail_token`` /
    ``fail_price``) so tests control exactly when and how fetches land.

fast_policy
    ``CachePolicy`` with zero retry delays so retries run back-to-back.

token_cache / price_cache
    Isolated ``ResourceCache`` instances, closed after each test.

coordinator
    ``SyncCoordinator`` over the fake provider with a 50 ms debounce.
"""

import asyncio
from datetime import datetime, timezone
from typing import AsyncGenerator, AsyncIterator, Dict, List, Optional, Tuple

import pytest

from swapsync.core.cache.resource_cache import CachePolicy, ResourceCache
from swapsync.core.errors import FetchError, FetchErrorKind
from swapsync.core.structures.structures import PriceRecord, SyncUpdate, TokenRecord
from swapsync.core.sync.sync_coordinator import SyncCoordinator

USDC_ADDRESS = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"
ETH_ADDRESS = "0x4200000000000000000000000000000000000006"
LINK_ADDRESS = "0x514910771AF9Ca656af840dff83E8264EcF986CA"
WBTC_ADDRESS = "0x2260FAC5E5542a773Aa44fBCfeDf7C193bc2C599"

DEFAULT_TOKENS: Dict[str, TokenRecord] = {
    "USDC": TokenRecord("1", "USDC", USDC_ADDRESS, 6, "USD Coin"),
    "ETH": TokenRecord("8453", "ETH", ETH_ADDRESS, 18, "Ether"),
    "LINK": TokenRecord("1", "LINK", LINK_ADDRESS, 18, "Chainlink"),
    "WBTC": TokenRecord("1", "WBTC", WBTC_ADDRESS, 8, "Wrapped BTC"),
}

DEFAULT_PRICES: Dict[str, float] = {
    USDC_ADDRESS: 1.0,
    ETH_ADDRESS: 2000.0,
    LINK_ADDRESS: 15.0,
    WBTC_ADDRESS: 60000.0,
}


class FakeProvider:
    """In-memory ``TokenDataProvider`` with call recording and controllable latency/failures."""

    def __init__(self) -> None:
        self.tokens: Dict[str, TokenRecord] = dict(DEFAULT_TOKENS)
        self.prices: Dict[str, float] = dict(DEFAULT_PRICES)
        self.token_calls: List[Tuple[str, str]] = []
        self.price_calls: List[Tuple[str, str]] = []
        self._token_failures: Dict[str, List[FetchError]] = {}
        self._price_failures: Dict[str, List[FetchError]] = {}
        self._gates: Dict[str, asyncio.Event] = {}

    def hold(self, name: str) -> asyncio.Event:
        """Block lookups of `name` (symbol or address) until the returned event is set."""
        gate = asyncio.Event()
        self._gates[name] = gate
        return gate

    def fail_token(self, symbol: str, kind: FetchErrorKind = FetchErrorKind.NETWORK_ERROR, times: int = 1) -> None:
        self._token_failures.setdefault(symbol, []).extend(
            FetchError(kind, f"{symbol} lookup failed") for _ in range(times)
        )

    def fail_price(self, address: str, kind: FetchErrorKind = FetchErrorKind.NETWORK_ERROR, times: int = 1) -> None:
        self._price_failures.setdefault(address, []).extend(
            FetchError(kind, f"price for {address} failed") for _ in range(times)
        )

    def token_calls_for(self, symbol: str) -> int:
        return sum(1 for _, called in self.token_calls if called == symbol)

    def price_calls_for(self, address: str) -> int:
        return sum(1 for _, called in self.price_calls if called == address)

    async def fetch_token(self, chain_id: str, symbol: str) -> TokenRecord:
        self.token_calls.append((chain_id, symbol))
        gate = self._gates.get(symbol)
        if gate is not None:
            await gate.wait()
        failures = self._token_failures.get(symbol)
        if failures:
            raise failures.pop(0)
        record = self.tokens.get(symbol)
        if record is None:
            raise FetchError(FetchErrorKind.NOT_FOUND, f"Token {symbol} not found on chain {chain_id}")
        return record

    async def fetch_price(self, chain_id: str, address: str) -> PriceRecord:
        self.price_calls.append((chain_id, address))
        gate = self._gates.get(address)
        if gate is not None:
            await gate.wait()
        failures = self._price_failures.get(address)
        if failures:
            raise failures.pop(0)
        if address not in self.prices:
            raise FetchError(FetchErrorKind.NOT_FOUND, f"Price info not found for token {address}")
        return PriceRecord(chain_id, address, self.prices[address], datetime.now(timezone.utc))


async def settle(rounds: int = 50) -> None:
    """Let scheduled fetch tasks and their follow-up requests run to completion."""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def collect_updates(stream: AsyncIterator[SyncUpdate], timeout: float = 0.05) -> List[SyncUpdate]:
    """Drain everything currently queued on `stream`; the stream is closed afterwards."""
    items: List[SyncUpdate] = []
    while True:
        try:
            items.append(await asyncio.wait_for(stream.__anext__(), timeout))
        except (asyncio.TimeoutError, StopAsyncIteration):
            return items


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def fast_policy() -> CachePolicy:
    return CachePolicy(stale_time=30.0, cache_time=300.0, max_attempts=3, retry_base_delay=0.0, retry_max_delay=0.0)


@pytest.fixture
async def token_cache(fast_policy: CachePolicy) -> AsyncGenerator[ResourceCache[TokenRecord], None]:
    cache: ResourceCache[TokenRecord] = ResourceCache("tokens", fast_policy)
    yield cache
    await cache.close()


@pytest.fixture
async def price_cache(fast_policy: CachePolicy) -> AsyncGenerator[ResourceCache[PriceRecord], None]:
    cache: ResourceCache[PriceRecord] = ResourceCache("prices", fast_policy)
    yield cache
    await cache.close()


@pytest.fixture
async def coordinator(
        provider: FakeProvider,
        token_cache: ResourceCache[TokenRecord],
        price_cache: ResourceCache[PriceRecord],
) -> AsyncGenerator[SyncCoordinator, None]:
    coord = SyncCoordinator(
        provider,
        token_cache=token_cache,
        price_cache=price_cache,
        debounce_seconds=0.05,
        slippage_tolerance_pct=0.5,
    )
    yield coord
    await coord.close()


def make_token(symbol: str, chain_id: str = "1", address: Optional[str] = None) -> TokenRecord:
    return TokenRecord(chain_id, symbol, address or f"0x{symbol.lower():0>40}", 18, symbol)
