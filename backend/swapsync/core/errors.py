from __future__ import annotations

from enum import Enum
from typing import Optional


class SwapSyncError(Exception):
    """Base class for every error raised by the synchronization layer."""


class AmountValidationError(SwapSyncError, ValueError):
    """A raw amount string that cannot be used for a conversion."""

    def __init__(self, raw_value: str, reason: str) -> None:
        super().__init__(reason)
        self.raw_value = raw_value
        self.reason = reason


class UnknownTokenError(SwapSyncError, ValueError):
    """A symbol that is not part of the token catalog."""

    def __init__(self, symbol: str) -> None:
        super().__init__(f"Token '{symbol}' is not supported")
        self.symbol = symbol


class FetchErrorKind(Enum):
    NOT_FOUND = "NOT_FOUND"
    NETWORK_ERROR = "NETWORK_ERROR"
    RATE_LIMITED = "RATE_LIMITED"

    @property
    def transient(self) -> bool:
        """NotFound will not change on retry; the other kinds may."""
        return self is not FetchErrorKind.NOT_FOUND


class FetchError(SwapSyncError):
    """
    Failure reported by the upstream token/price provider.

    Fetch errors are attached to cache entries; they are never raised
    past the resource cache.
    """

    def __init__(self, kind: FetchErrorKind, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status_code = status_code

    @property
    def transient(self) -> bool:
        return self.kind.transient

    def __repr__(self) -> str:
        return f"FetchError(kind={self.kind.value}, message={self.message!r}, status_code={self.status_code})"
