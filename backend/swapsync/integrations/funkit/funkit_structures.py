from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

from swapsync.core.structures.structures import PriceRecord, TokenRecord
from swapsync.core.utils.date_utils import observed_at_from_epoch, timezone_now
from swapsync.core.utils.format_utils import _num
from swapsync.integrations.funkit.funkit_constants import JSON


def _to_optional_str(value: JSON) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _to_optional_int(value: JSON) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, (float, str)):
        try:
            return int(float(value))
        except ValueError:
            return None
    return None


@dataclass(frozen=True)
class FunkitAsset:
    """Subset of the Funkit ERC-20 asset document we read."""
    address: Optional[str]
    symbol: Optional[str]
    name: Optional[str]
    decimals: Optional[int]

    @staticmethod
    def from_json(payload: Dict[str, JSON]) -> "FunkitAsset":
        return FunkitAsset(
            address=_to_optional_str(payload.get("address")),
            symbol=_to_optional_str(payload.get("symbol")),
            name=_to_optional_str(payload.get("name")),
            decimals=_to_optional_int(payload.get("decimals")),
        )

    def to_token_record(self, chain_id: str, requested_symbol: str, default_decimals: int) -> TokenRecord:
        return TokenRecord(
            chain_id=chain_id,
            symbol=requested_symbol,
            address=self.address or "",
            decimals=self.decimals if self.decimals else default_decimals,
            name=self.name or requested_symbol,
        )


@dataclass(frozen=True)
class FunkitPriceInfo:
    """Subset of the Funkit price document we read."""
    unit_price: Optional[float]
    observed_at: Optional[datetime]

    @staticmethod
    def from_json(payload: Dict[str, JSON]) -> "FunkitPriceInfo":
        return FunkitPriceInfo(
            unit_price=_num(payload.get("unitPrice")),
            observed_at=observed_at_from_epoch(payload.get("timestamp") or payload.get("lastUpdated")),
        )

    def to_price_record(self, chain_id: str, address: str) -> PriceRecord:
        return PriceRecord(
            chain_id=chain_id,
            address=address,
            price_usd=float(self.unit_price or 0.0),
            observed_at=self.observed_at or timezone_now(),
        )
