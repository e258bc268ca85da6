from __future__ import annotations

from typing import Protocol

from swapsync.core.structures.structures import PriceRecord, TokenRecord


class TokenDataProvider(Protocol):
    """
    Upstream source of token metadata and prices.

    Implementations raise `swapsync.core.errors.FetchError` on failure.
    """

    async def fetch_token(self, chain_id: str, symbol: str) -> TokenRecord:
        ...

    async def fetch_price(self, chain_id: str, address: str) -> PriceRecord:
        ...
