from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from swapsync.core.errors import UnknownTokenError
from swapsync.core.structures.structures import CacheKey, CatalogToken

DEFAULT_TOKENS: List[CatalogToken] = [
    CatalogToken("BTC", "1", "Ethereum"),
    CatalogToken("WBTC", "1", "Ethereum"),
    CatalogToken("USDC", "1", "Ethereum"),
    CatalogToken("USDT", "137", "Polygon"),
    CatalogToken("ETH", "8453", "Base"),
    CatalogToken("MATIC", "137", "Polygon"),
    CatalogToken("LINK", "1", "Ethereum"),
    CatalogToken("BNB", "56", "BSC"),
]


def normalize_symbol(symbol: str) -> str:
    return (symbol or "").strip().upper()


class TokenCatalog:
    """Supported tokens, keyed by symbol, each resolved on one chain."""

    def __init__(self, tokens: Iterable[CatalogToken] = DEFAULT_TOKENS) -> None:
        self._by_symbol: Dict[str, CatalogToken] = {}
        for token in tokens:
            self._by_symbol[normalize_symbol(token.symbol)] = token

    def find(self, symbol: str) -> Optional[CatalogToken]:
        return self._by_symbol.get(normalize_symbol(symbol))

    def require(self, symbol: str) -> CatalogToken:
        token = self.find(symbol)
        if token is None:
            raise UnknownTokenError(symbol)
        return token

    def token_key(self, symbol: str) -> CacheKey:
        """Cache key of the token lookup for `symbol`."""
        token = self.require(symbol)
        return CacheKey(token.chain_id, normalize_symbol(token.symbol))

    def tokens(self) -> List[CatalogToken]:
        return list(self._by_symbol.values())

    def __contains__(self, symbol: object) -> bool:
        return isinstance(symbol, str) and normalize_symbol(symbol) in self._by_symbol
