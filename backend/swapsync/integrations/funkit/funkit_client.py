from __future__ import annotations

from typing import Optional
from urllib.parse import quote

import httpx

from swapsync.core.errors import FetchError, FetchErrorKind
from swapsync.core.structures.structures import PriceRecord, TokenRecord
from swapsync.integrations.funkit.funkit_constants import ASSET_ERC20_PATH, ASSET_PRICE_PATH
from swapsync.integrations.funkit.funkit_helpers import _build_funkit_headers, _http_get_json
from swapsync.integrations.funkit.funkit_structures import FunkitAsset, FunkitPriceInfo
from swapsync.logging.logger import get_logger

log = get_logger(__name__)


class FunkitClient:
    """
    Token and price lookups against the Funkit asset API.

    Implements `TokenDataProvider`. Pass `client` to reuse (or mock) an
    `httpx.AsyncClient`; otherwise one is created from `base_url`.
    """

    def __init__(
            self,
            *,
            base_url: str,
            api_key: str = "",
            timeout_seconds: float = 12.0,
            default_decimals: int = 18,
            client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if not api_key:
            log.warning("[FUNKIT][CONFIG] FUNKIT_API_KEY is not set; requests may be rejected.")
        self._default_decimals = default_decimals
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=_build_funkit_headers(api_key),
            timeout=httpx.Timeout(timeout_seconds, connect=min(6.0, timeout_seconds)),
        )

    async def fetch_token(self, chain_id: str, symbol: str) -> TokenRecord:
        """
        Resolve an ERC-20 token by chain and symbol.

        Raises:
            FetchError: NOT_FOUND when the asset is unknown or has no address.
        """
        path = ASSET_ERC20_PATH.format(chain_id=quote(chain_id, safe=""), symbol=quote(symbol, safe=""))
        log.debug("[FUNKIT][TOKEN][REQUEST] chain=%s symbol=%s", chain_id, symbol)

        payload = await _http_get_json(self._client, path, f"Token {symbol} on chain {chain_id}")
        asset = FunkitAsset.from_json(payload)
        if not asset.address:
            raise FetchError(FetchErrorKind.NOT_FOUND, f"Token {symbol} not found on chain {chain_id}")

        record = asset.to_token_record(chain_id, symbol, self._default_decimals)
        log.info("[FUNKIT][TOKEN][RECEIVE] %s", record)
        return record

    async def fetch_price(self, chain_id: str, address: str) -> PriceRecord:
        """
        Fetch the USD unit price of a token.

        Raises:
            FetchError: NOT_FOUND when the payload carries no unit price.
        """
        path = ASSET_PRICE_PATH.format(chain_id=quote(chain_id, safe=""), address=quote(address, safe=""))
        log.debug("[FUNKIT][PRICE][REQUEST] chain=%s address=%s", chain_id, address)

        payload = await _http_get_json(self._client, path, f"Price info for token {address}")
        info = FunkitPriceInfo.from_json(payload)
        if info.unit_price is None:
            raise FetchError(FetchErrorKind.NOT_FOUND, f"Price info not found for token {address}")

        record = info.to_price_record(chain_id, address)
        log.info("[FUNKIT][PRICE][RECEIVE] chain=%s address=%s price_usd=%.6f", chain_id, address, record.price_usd)
        return record

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "FunkitClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
