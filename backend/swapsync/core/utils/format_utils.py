import math
from typing import Optional


def _short_address(address: str, keep: int = 4) -> str:
    """Abbreviate an address for logs, e.g. 0xA0b8…eB48."""
    if not address or len(address) <= 2 + 2 * keep:
        return address or ""
    return f"{address[:2 + keep]}…{address[-keep:]}"


def _num(value: object) -> Optional[float]:
    """
    Parse an upstream JSON number or numeric string.

    Booleans, NaN, infinities and anything unparsable give None.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    return parsed if math.isfinite(parsed) else None
