from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, TypeVar

from swapsync.core.errors import FetchError, FetchErrorKind
from swapsync.core.structures.structures import CacheKey
from swapsync.logging.logger import get_logger

log = get_logger(__name__)

T = TypeVar("T")
Fetcher = Callable[[], Awaitable[T]]


class EntryState(Enum):
    IDLE = "IDLE"
    LOADING = "LOADING"
    REFRESHING = "REFRESHING"
    READY = "READY"
    FAILED = "FAILED"


@dataclass
class CacheEntry(Generic[T]):
    """
    Cached state of one resource.

    A FAILED entry keeps the last good `value` next to its `error`.
    `error_serial` increases on every failure and identifies the error instance.
    """
    key: CacheKey
    value: Optional[T] = None
    fetched_at: Optional[float] = None
    state: EntryState = EntryState.IDLE
    error: Optional[FetchError] = None
    stale_at: float = 0.0
    expires_at: float = 0.0
    generation: int = 0
    attempts: int = 0
    error_serial: int = 0
    subscribers: int = 0

    @property
    def has_value(self) -> bool:
        return self.fetched_at is not None

    @property
    def is_fetching(self) -> bool:
        return self.state in (EntryState.LOADING, EntryState.REFRESHING)

    @property
    def is_stale_with_error(self) -> bool:
        return self.state is EntryState.FAILED and self.has_value


Listener = Callable[[CacheKey, CacheEntry[Any]], None]


@dataclass(frozen=True)
class CachePolicy:
    """
    Staleness, eviction and retry parameters of a ResourceCache.

    Attributes:
        stale_time: Seconds a fetched value is fresh; a request after that refreshes it.
        cache_time: Seconds after a fetch before an unsubscribed entry may be evicted.
        max_attempts: Fetch attempts before an entry is left FAILED.
        retry_base_delay: Backoff base; attempt n waits base * 2**n seconds.
        retry_max_delay: Backoff ceiling in seconds.
    """
    stale_time: float = 30.0
    cache_time: float = 300.0
    max_attempts: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0

    def __post_init__(self) -> None:
        if self.stale_time < 0 or self.cache_time < 0:
            raise ValueError("stale_time and cache_time must be non-negative.")
        if self.stale_time > self.cache_time:
            raise ValueError("stale_time must not exceed cache_time.")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1.")
        if self.retry_base_delay < 0 or self.retry_max_delay < 0:
            raise ValueError("Retry delays must be non-negative.")

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retrying after the zero-based `attempt` failed."""
        return min(self.retry_base_delay * (2 ** attempt), self.retry_max_delay)

    @classmethod
    def from_settings(cls, settings: Any) -> "CachePolicy":
        return cls(
            stale_time=float(settings.CACHE_STALE_TIME_SECONDS),
            cache_time=float(settings.CACHE_TIME_SECONDS),
            max_attempts=int(settings.CACHE_MAX_ATTEMPTS),
            retry_base_delay=float(settings.CACHE_RETRY_BASE_DELAY_SECONDS),
            retry_max_delay=float(settings.CACHE_RETRY_MAX_DELAY_SECONDS),
        )


@dataclass
class _Flight:
    generation: int
    task: "asyncio.Task[None]"
    fetcher: Fetcher[Any]
    refetch_requested: bool = False


class ResourceCache(Generic[T]):
    """
    Keyed async cache with stale-while-revalidate, request deduplication and retry backoff.

    Notes:
        - Must be used from a single event loop; `request()` schedules fetch tasks on the running loop.
        - At most one fetch per key is in flight. Callers requesting a key that is being fetched
          share that fetch.
        - Fetch failures are recorded on the entry and never raised to callers.
    """

    def __init__(
            self,
            name: str,
            policy: Optional[CachePolicy] = None,
            *,
            clock: Callable[[], float] = time.monotonic,
            sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.name = name
        self.policy = policy or CachePolicy()
        self._clock = clock
        self._sleep = sleep
        self._entries: Dict[CacheKey, CacheEntry[T]] = {}
        self._in_flight: Dict[CacheKey, _Flight] = {}
        self._listeners: List[Listener] = []

    # ---------- reads ---------- #

    def get(self, key: CacheKey) -> Optional[CacheEntry[T]]:
        return self._entries.get(key)

    def is_in_flight(self, key: CacheKey) -> bool:
        return key in self._in_flight

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    # ---------- listeners ---------- #

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def _notify(self, entry: CacheEntry[T]) -> None:
        for listener in list(self._listeners):
            try:
                listener(entry.key, entry)
            except Exception:
                log.exception("[CACHE][%s][LISTENER] Listener failed for key=%s", self.name, entry.key)

    # ---------- requests ---------- #

    def request(self, key: CacheKey, fetcher: Fetcher[T]) -> CacheEntry[T]:
        """
        Return the entry for `key`, starting a fetch when none is in flight and the
        entry is missing, never fetched, or stale.
        """
        now = self._clock()
        self.sweep(now)

        entry = self._entries.get(key)
        if entry is None:
            entry = CacheEntry(key=key)
            self._entries[key] = entry

        flight = self._in_flight.get(key)
        if flight is not None:
            if flight.generation != entry.generation:
                # The running fetch was invalidated; fetch again once it lands.
                flight.refetch_requested = True
                flight.fetcher = fetcher
            return entry

        if entry.state is not EntryState.IDLE and now < entry.stale_at:
            return entry

        self._start_fetch(entry, fetcher)
        return entry

    async def resolve(self, key: CacheKey, fetcher: Fetcher[T]) -> CacheEntry[T]:
        """Request `key` and wait until no fetch for it is in flight."""
        entry = self.request(key, fetcher)
        flight = self._in_flight.get(key)
        while flight is not None:
            await asyncio.shield(flight.task)
            flight = self._in_flight.get(key)
        return self._entries.get(key, entry)

    def invalidate(self, key: CacheKey) -> None:
        """
        Mark `key` stale and supersede any fetch in flight for it.

        The superseded fetch is not cancelled; its result is discarded on arrival.
        """
        entry = self._entries.get(key)
        if entry is None:
            return
        now = self._clock()
        entry.generation += 1
        entry.stale_at = min(now, entry.expires_at) if entry.has_value else 0.0
        log.debug("[CACHE][%s][INVALIDATE] key=%s generation=%d", self.name, key, entry.generation)
        self._notify(entry)

    # ---------- subscriptions & eviction ---------- #

    def retain(self, key: CacheKey) -> None:
        entry = self._entries.get(key)
        if entry is None:
            entry = CacheEntry(key=key)
            self._entries[key] = entry
        entry.subscribers += 1

    def release(self, key: CacheKey) -> None:
        entry = self._entries.get(key)
        if entry is not None and entry.subscribers > 0:
            entry.subscribers -= 1

    def sweep(self, now: Optional[float] = None) -> int:
        """Evict unsubscribed, expired entries that have no fetch in flight."""
        current = self._clock() if now is None else now
        evicted = [
            key
            for key, entry in self._entries.items()
            if entry.subscribers <= 0 and key not in self._in_flight and current >= entry.expires_at
        ]
        for key in evicted:
            del self._entries[key]
        if evicted:
            log.debug("[CACHE][%s][SWEEP] Evicted %d entr(ies).", self.name, len(evicted))
        return len(evicted)

    async def close(self) -> None:
        """Cancel fetches still in flight (shutdown only)."""
        flights = list(self._in_flight.values())
        self._in_flight.clear()
        for flight in flights:
            flight.task.cancel()
        if flights:
            await asyncio.gather(*(flight.task for flight in flights), return_exceptions=True)
            log.debug("[CACHE][%s][CLOSE] Cancelled %d fetch(es) in flight.", self.name, len(flights))

    # ---------- fetch lifecycle ---------- #

    def _start_fetch(self, entry: CacheEntry[T], fetcher: Fetcher[T]) -> None:
        entry.generation += 1
        entry.state = EntryState.REFRESHING if entry.has_value else EntryState.LOADING
        entry.error = None
        entry.attempts = 0

        generation = entry.generation
        task = asyncio.get_running_loop().create_task(
            self._run_fetch(entry.key, generation, fetcher),
            name=f"{self.name}-fetch-{entry.key}",
        )
        self._in_flight[entry.key] = _Flight(generation=generation, task=task, fetcher=fetcher)
        log.debug("[CACHE][%s][FETCH] key=%s generation=%d state=%s", self.name, entry.key, generation, entry.state.value)
        self._notify(entry)

    async def _run_fetch(self, key: CacheKey, generation: int, fetcher: Fetcher[T]) -> None:
        value: Optional[T] = None
        error: Optional[FetchError] = None
        attempts = 0

        for attempt in range(self.policy.max_attempts):
            attempts = attempt + 1
            try:
                value = await fetcher()
                error = None
                break
            except FetchError as exc:
                error = exc
            except Exception as exc:
                error = FetchError(FetchErrorKind.NETWORK_ERROR, str(exc) or type(exc).__name__)

            if not error.transient or attempts >= self.policy.max_attempts:
                break
            current = self._entries.get(key)
            if current is None or current.generation != generation:
                break

            delay = self.policy.backoff_delay(attempt)
            log.debug(
                "[CACHE][%s][RETRY] key=%s attempt=%d/%d kind=%s delay=%.3fs",
                self.name,
                key,
                attempts,
                self.policy.max_attempts,
                error.kind.value,
                delay,
            )
            await self._sleep(delay)

        self._settle(key, generation, value, error, attempts)

    def _settle(self, key: CacheKey, generation: int, value: Optional[T], error: Optional[FetchError], attempts: int) -> None:
        flight = self._in_flight.get(key)
        if flight is not None and flight.generation == generation:
            del self._in_flight[key]
        else:
            flight = None

        entry = self._entries.get(key)
        if entry is None:
            return

        if entry.generation != generation:
            log.debug(
                "[CACHE][%s][DISCARD] key=%s result generation=%d current=%d",
                self.name,
                key,
                generation,
                entry.generation,
            )
            if flight is not None and flight.refetch_requested:
                self._start_fetch(entry, flight.fetcher)
                return
            entry.state = EntryState.READY if entry.has_value else EntryState.IDLE
            self._notify(entry)
            return

        now = self._clock()
        entry.attempts = attempts
        if error is None:
            entry.value = value
            entry.fetched_at = now
            entry.state = EntryState.READY
            entry.error = None
            entry.stale_at = now + self.policy.stale_time
            entry.expires_at = now + self.policy.cache_time
            log.debug("[CACHE][%s][READY] key=%s generation=%d attempts=%d", self.name, key, generation, attempts)
        else:
            entry.state = EntryState.FAILED
            entry.error = error
            entry.error_serial += 1
            entry.stale_at = now
            entry.expires_at = max(entry.expires_at, now)
            log.warning(
                "[CACHE][%s][FAILED] key=%s kind=%s attempts=%d stale_value=%s - %s",
                self.name,
                key,
                error.kind.value,
                attempts,
                entry.has_value,
                error.message,
            )
        self._notify(entry)
