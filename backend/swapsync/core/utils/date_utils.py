from datetime import datetime
from typing import Optional

from swapsync.core.utils.format_utils import _num

# (magnitude above which, divisor to seconds): ns, µs, ms
_EPOCH_SCALES = ((1e18, 1e9), (1e15, 1e6), (1e11, 1e3))


def timezone_now() -> datetime:
    return datetime.now().astimezone()


def observed_at_from_epoch(value: object) -> Optional[datetime]:
    """
    Local datetime of an upstream epoch timestamp given in s, ms, µs or ns.

    Returns None for missing, non-positive or out-of-range values.
    """
    epoch = _num(value)
    if epoch is None or epoch <= 0:
        return None
    for threshold, divisor in _EPOCH_SCALES:
        if epoch > threshold:
            epoch /= divisor
            break
    try:
        return datetime.fromtimestamp(epoch).astimezone()
    except (OverflowError, OSError, ValueError):
        return None
