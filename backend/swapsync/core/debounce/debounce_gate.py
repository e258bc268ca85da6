from __future__ import annotations

import asyncio
from typing import Callable, Generic, Optional, TypeVar

from swapsync.logging.logger import get_logger

log = get_logger(__name__)

T = TypeVar("T")


class DebounceGate(Generic[T]):
    """
    Trailing-edge debouncer for one mutable value.

    Every `push()` replaces the pending value and restarts the delay; `on_emit`
    receives the last value once no push happened for `delay_seconds`.
    Timers run on the event loop that is running when `push()` is called.
    """

    def __init__(self, delay_seconds: float, on_emit: Callable[[T], None]) -> None:
        if delay_seconds < 0:
            raise ValueError("delay_seconds must be non-negative.")
        self.delay_seconds = float(delay_seconds)
        self._on_emit = on_emit
        self._handle: Optional[asyncio.TimerHandle] = None
        self._pending_value: Optional[T] = None
        self.emitted_count = 0

    @property
    def pending(self) -> bool:
        return self._handle is not None

    @property
    def pending_value(self) -> Optional[T]:
        return self._pending_value if self._handle is not None else None

    def push(self, value: T) -> None:
        if self._handle is not None:
            self._handle.cancel()
        self._pending_value = value
        self._handle = asyncio.get_running_loop().call_later(self.delay_seconds, self._fire)

    def flush(self) -> None:
        """Emit the pending value now, if any."""
        if self._handle is None:
            return
        self._handle.cancel()
        self._fire()

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
        self._handle = None
        self._pending_value = None

    def _fire(self) -> None:
        value = self._pending_value
        self._handle = None
        self._pending_value = None
        self.emitted_count += 1
        log.debug("[DEBOUNCE][EMIT] value=%r after %.0fms", value, self.delay_seconds * 1000)
        try:
            self._on_emit(value)
        except Exception:
            log.exception("[DEBOUNCE][EMIT] Emission callback failed.")
