from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel

from swapsync.core.errors import FetchErrorKind
from swapsync.core.utils.format_utils import _short_address


@dataclass(frozen=True)
class CacheKey:
    """Composite identity of a cached resource: (chain id, symbol or address)."""
    chain_id: str
    identifier: str

    def __str__(self) -> str:
        return f"{self.chain_id}:{self.identifier}"


@dataclass(frozen=True)
class TokenRecord:
    chain_id: str
    symbol: str
    address: str
    decimals: int
    name: str

    def price_key(self) -> CacheKey:
        """Key of the price lookup that depends on this token."""
        return CacheKey(self.chain_id, self.address)

    def __str__(self) -> str:
        return f"[symbol={self.symbol} chain={self.chain_id} address={_short_address(self.address)}]"


@dataclass(frozen=True)
class PriceRecord:
    chain_id: str
    address: str
    price_usd: float
    observed_at: datetime


@dataclass(frozen=True)
class CatalogToken:
    """A token the swap UI offers, with the chain it is resolved on."""
    symbol: str
    chain_id: str
    chain_name: str


class SwapSide(Enum):
    SOURCE = "source"
    TARGET = "target"


class DependencyId(Enum):
    """Independently failing inputs of a swap snapshot."""
    TOKEN_FETCH_SOURCE = "token-fetch-source"
    TOKEN_FETCH_TARGET = "token-fetch-target"
    PRICE_FETCH_SOURCE = "price-fetch-source"
    PRICE_FETCH_TARGET = "price-fetch-target"
    AMOUNT_VALIDATION = "amount-validation"


class SyncPhase(Enum):
    IDLE = "IDLE"
    PARTIALLY_SELECTED = "PARTIALLY_SELECTED"
    TOKEN_RESOLVING = "TOKEN_RESOLVING"
    PRICE_RESOLVING = "PRICE_RESOLVING"
    READY = "READY"
    RECOMPUTING = "RECOMPUTING"


class PriceImpactSeverity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class ConversionResult:
    """Raw numbers produced by the conversion formula."""
    source_amount: float
    target_amount: float
    usd_value: float


@dataclass(frozen=True)
class ConversionSnapshot:
    """
    Consistent view of one conversion.

    `inputs_complete` is False for the zero snapshot, i.e. whenever one of the
    four dependencies or the amount is missing.
    """
    source_amount: float = 0.0
    target_amount: float = 0.0
    usd_value: float = 0.0
    inputs_complete: bool = False
    source_amount_text: str = "0"
    target_amount_text: str = "0"
    usd_value_text: str = "0.00"
    price_impact_pct: Optional[float] = None
    price_impact_severity: Optional[PriceImpactSeverity] = None
    minimum_received: Optional[float] = None


ZERO_SNAPSHOT = ConversionSnapshot()


@dataclass(frozen=True)
class ErrorNotice:
    """
    User-facing notification for one failing dependency.

    `error_id` identifies the error *instance*; dismissing it does not hide a
    later failure of the same dependency.
    """
    dependency: DependencyId
    message: str
    error_id: str
    kind: Optional[FetchErrorKind] = None
    retryable: bool = True
    stale_value_available: bool = False


@dataclass(frozen=True)
class SyncUpdate:
    """One element of the consumer stream."""
    phase: SyncPhase
    snapshot: ConversionSnapshot
    errors: Tuple[ErrorNotice, ...] = field(default_factory=tuple)

    def to_plain_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.value,
            "snapshot": {
                "sourceAmount": self.snapshot.source_amount,
                "targetAmount": self.snapshot.target_amount,
                "usdValue": self.snapshot.usd_value,
                "inputsComplete": self.snapshot.inputs_complete,
                "sourceAmountText": self.snapshot.source_amount_text,
                "targetAmountText": self.snapshot.target_amount_text,
                "usdValueText": self.snapshot.usd_value_text,
                "priceImpactPct": self.snapshot.price_impact_pct,
                "priceImpactSeverity": (
                    self.snapshot.price_impact_severity.value if self.snapshot.price_impact_severity else None
                ),
                "minimumReceived": self.snapshot.minimum_received,
            },
            "errors": [
                {
                    "id": notice.error_id,
                    "dependency": notice.dependency.value,
                    "kind": notice.kind.value if notice.kind else None,
                    "message": notice.message,
                    "retryable": notice.retryable,
                    "staleValueAvailable": notice.stale_value_available,
                }
                for notice in self.errors
            ],
        }


@dataclass(frozen=True)
class InitialSwapState:
    """Selection, amount and slippage a session starts from."""
    source_symbol: Optional[str]
    target_symbol: Optional[str]
    raw_amount: str
    slippage_tolerance_pct: float


class WebsocketInboundMessage(BaseModel):
    """
    Strictly typed websocket inbound message structure.
    """
    type: str
    payload: Optional[Dict[str, Any]] = None


class ConversionRequest(BaseModel):
    """Body of the stateless conversion endpoint."""
    amount: str
    sourcePriceUsd: float
    targetPriceUsd: float
    slippageTolerancePct: Optional[float] = None


class ConversionResponse(BaseModel):
    sourceAmount: float
    targetAmount: float
    usdValue: float
    sourceAmountText: str
    targetAmountText: str
    usdValueText: str
    priceImpactPct: Optional[float] = None
    priceImpactSeverity: Optional[str] = None
    minimumReceived: Optional[float] = None
    errors: List[str] = []
