from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Optional

from swapsync.core.errors import AmountValidationError
from swapsync.core.structures.structures import (
    ConversionResult,
    ConversionSnapshot,
    PriceImpactSeverity,
    ZERO_SNAPSHOT,
)

MAX_AMOUNT: float = 1_000_000_000.0
MIN_SLIPPAGE_TOLERANCE_PCT: float = 0.0
MAX_SLIPPAGE_TOLERANCE_PCT: float = 50.0

_SIGNIFICANT_DIGITS: int = 8
_MAX_FRACTION_DIGITS: int = 8
_SCIENTIFIC_THRESHOLD: float = 1e-6
_TRAILING_ZEROS = re.compile(r"\.?0+$")
_DECIMAL_AMOUNT = re.compile(r"[+-]?(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?")


@dataclass(frozen=True)
class AmountValidation:
    """
    Outcome of validating a raw amount string.

    `amount` is None when the input is empty ("no amount yet") or invalid.
    """
    raw_value: str
    amount: Optional[float] = None
    error: Optional[AmountValidationError] = None

    @property
    def valid(self) -> bool:
        return self.error is None

    @property
    def reason(self) -> Optional[str]:
        return self.error.reason if self.error else None


def _is_positive_finite(value: float) -> bool:
    return math.isfinite(value) and value > 0.0


def validate_usd_amount(value: Optional[str]) -> AmountValidation:
    """
    Validate an amount typed by the user.

    Empty input is valid and carries no amount. Non-numeric, negative and
    values above one billion are rejected with a human-readable reason.
    """
    raw = value or ""
    text = raw.strip()
    if not text:
        return AmountValidation(raw_value=raw)

    # Plain ASCII decimals only; float() alone would also take "1_000" or non-Latin digits.
    if not _DECIMAL_AMOUNT.fullmatch(text):
        return AmountValidation(raw_value=raw, error=AmountValidationError(raw, "Please enter a valid number"))
    number = float(text)
    if not math.isfinite(number):
        return AmountValidation(raw_value=raw, error=AmountValidationError(raw, "Please enter a valid number"))
    if number < 0:
        return AmountValidation(raw_value=raw, error=AmountValidationError(raw, "Amount must be positive"))
    if number > MAX_AMOUNT:
        return AmountValidation(raw_value=raw, error=AmountValidationError(raw, "Amount is too large"))

    return AmountValidation(raw_value=raw, amount=number)


def calculate_conversion(source_amount: float, source_price_usd: float, target_price_usd: float) -> ConversionResult:
    """
    Convert a source token amount into its USD value and the target token amount.

    Degenerates to all zeros when the amount or either price is not a positive finite number.
    """
    if not (
            _is_positive_finite(source_amount)
            and _is_positive_finite(source_price_usd)
            and _is_positive_finite(target_price_usd)
    ):
        return ConversionResult(source_amount=0.0, target_amount=0.0, usd_value=0.0)

    usd_value = source_amount * source_price_usd
    target_amount = usd_value / target_price_usd
    return ConversionResult(source_amount=source_amount, target_amount=target_amount, usd_value=usd_value)


def format_token_amount(value: float) -> str:
    """
    Format a token amount with adaptive precision.

    - |value| >= 1: 8 significant figures
    - |value| < 1e-6: scientific notation with 2 fraction digits
    - otherwise: up to 8 fraction digits, trailing zeros trimmed
    """
    if value == 0 or not math.isfinite(value):
        return "0"

    magnitude = abs(value)
    if magnitude < _SCIENTIFIC_THRESHOLD:
        mantissa, exponent = f"{value:.2e}".split("e")
        return f"{mantissa}e{int(exponent):+d}"

    if magnitude >= 1:
        fraction_digits = max(0, _SIGNIFICANT_DIGITS - int(math.floor(math.log10(magnitude))) - 1)
        return f"{value:.{fraction_digits}f}"

    return _TRAILING_ZEROS.sub("", f"{value:.{_MAX_FRACTION_DIGITS}f}")


def format_usd(value: float) -> str:
    """Format a USD value with exactly two fraction digits."""
    if not math.isfinite(value):
        return "0.00"
    return f"{value:.2f}"


def calculate_price_impact(usd_amount: float) -> float:
    """
    Estimated price impact in percent for a trade of `usd_amount`.

    Simplified tiered model (no pool depth):
      < $1k: 0-0.1%, < $10k: 0.1-0.5%, < $100k: 0.5-2%, above: 2-5% capped.
    """
    if not math.isfinite(usd_amount) or usd_amount <= 0:
        return 0.0
    if usd_amount < 1_000:
        return (usd_amount / 10_000) * 0.1
    if usd_amount < 10_000:
        return 0.1 + ((usd_amount - 1_000) / 9_000) * 0.4
    if usd_amount < 100_000:
        return 0.5 + ((usd_amount - 10_000) / 90_000) * 1.5
    return min(2 + ((usd_amount - 100_000) / 100_000) * 3, 5.0)


def price_impact_severity(impact_pct: float) -> PriceImpactSeverity:
    if impact_pct < 0.5:
        return PriceImpactSeverity.LOW
    if impact_pct < 2:
        return PriceImpactSeverity.MEDIUM
    if impact_pct < 5:
        return PriceImpactSeverity.HIGH
    return PriceImpactSeverity.CRITICAL


def calculate_minimum_received(target_amount: float, slippage_tolerance_pct: float) -> float:
    """Lowest target amount accepted under the given slippage tolerance (percent)."""
    return target_amount * (1 - slippage_tolerance_pct / 100)


def validate_slippage_tolerance(percent: float) -> float:
    """Return `percent` if it is an acceptable slippage tolerance, else raise ValueError."""
    if not math.isfinite(percent) or not (MIN_SLIPPAGE_TOLERANCE_PCT <= percent <= MAX_SLIPPAGE_TOLERANCE_PCT):
        raise ValueError(
            f"Slippage tolerance must be between {MIN_SLIPPAGE_TOLERANCE_PCT:g}% and {MAX_SLIPPAGE_TOLERANCE_PCT:g}%"
        )
    return float(percent)


def slippage_warning(percent: float) -> Optional[str]:
    if percent < 0.1:
        return "Your transaction may fail due to very low slippage tolerance."
    if percent > 5:
        return "Your transaction may be frontrun due to high slippage tolerance."
    return None


def build_snapshot(
        source_amount: float,
        source_price_usd: float,
        target_price_usd: float,
        *,
        slippage_tolerance_pct: Optional[float] = None,
) -> ConversionSnapshot:
    """
    Run the conversion and attach display strings and annotations.

    Price impact and minimum received only annotate the snapshot.
    """
    result = calculate_conversion(source_amount, source_price_usd, target_price_usd)
    if result.source_amount <= 0:
        return ZERO_SNAPSHOT

    impact = calculate_price_impact(result.usd_value)
    minimum_received = (
        calculate_minimum_received(result.target_amount, slippage_tolerance_pct)
        if slippage_tolerance_pct is not None
        else None
    )
    return ConversionSnapshot(
        source_amount=result.source_amount,
        target_amount=result.target_amount,
        usd_value=result.usd_value,
        inputs_complete=True,
        source_amount_text=format_token_amount(result.source_amount),
        target_amount_text=format_token_amount(result.target_amount),
        usd_value_text=format_usd(result.usd_value),
        price_impact_pct=impact,
        price_impact_severity=price_impact_severity(impact),
        minimum_received=minimum_received,
    )
