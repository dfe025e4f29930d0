import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional, Tuple

from stats_config import COALESCE_GRACE_PERIOD, GENERAL_CACHE_TTL


def cache_key(operation: str, subject: Any, time_filter: Any = None) -> Tuple[str, str, str]:
    """Generate a cache key for an aggregation result.

    Args:
        operation: Kind of result, e.g. 'repo', 'user' or 'maintainers'
        subject: Repository reference or username the result describes
        time_filter: Optional time filter the result was computed for

    Returns:
        A tuple key; distinct subjects never share a key
    """
    filter_value = getattr(time_filter, 'value', time_filter)
    return (operation, str(subject), '' if filter_value is None else str(filter_value))


@dataclass
class CacheEntry:
    data: Any
    timestamp: float
    ttl: float


class ResultCache:
    """In-memory key/value store with a time-to-live per entry.

    Expired entries are evicted lazily when read; there is no background sweep.
    """

    def __init__(self, default_ttl: float = GENERAL_CACHE_TTL, clock: Callable[[], float] = time.monotonic):
        """Initialize the cache.

        Args:
            default_ttl: TTL in seconds used when ``set`` is given none
            clock: Monotonic time source, replaceable in tests
        """
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: Dict[Hashable, CacheEntry] = {}

    def set(self, key: Hashable, data: Any, ttl: Optional[float] = None) -> None:
        self._entries[key] = CacheEntry(
            data=data,
            timestamp=self._clock(),
            ttl=self.default_ttl if ttl is None else ttl,
        )

    def get(self, key: Hashable) -> Optional[Any]:
        """Load a cached value if it exists and is not stale.

        Args:
            key: Cache key

        Returns:
            The cached value, or None if absent or expired
        """
        entry = self._entries.get(key)
        if entry is None:
            return None

        if self._clock() - entry.timestamp > entry.ttl:
            logging.info(f"Cache entry {key} is stale (older than {entry.ttl}s), will fetch fresh data")
            del self._entries[key]
            return None

        return entry.data

    def has(self, key: Hashable) -> bool:
        return self.get(key) is not None

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


@dataclass
class _Registration:
    future: asyncio.Future
    loop: asyncio.AbstractEventLoop
    settled_at: Optional[float] = None


class RequestCoalescer:
    """Shares one in-flight request per key between concurrent callers.

    The future for a key is registered before the caller can suspend, so two
    callers on the same event loop never both start the factory. Once the
    future settles the registration is kept for a short grace period to absorb
    near-simultaneous callers, then removed so a later call starts afresh.

    A registration made on another event loop, or settled longer than the
    grace period ago, is replaced on the next ``acquire`` even if its timed
    removal never ran (the loop may have closed first).
    """

    def __init__(self, grace_period: float = COALESCE_GRACE_PERIOD, clock: Callable[[], float] = time.monotonic):
        self.grace_period = grace_period
        self._clock = clock
        self._in_flight: Dict[Hashable, _Registration] = {}

    def acquire(self, key: Hashable, factory: Callable[[], Awaitable[Any]]) -> asyncio.Future:
        """Get a future for the shared request of ``key``, starting ``factory`` if none is registered.

        Must be called from a running event loop.

        Args:
            key: Deduplication key
            factory: Zero-argument callable returning the awaitable to share

        Returns:
            A future resolving to the shared result; success and failure are
            delivered identically to every caller. Cancelling it leaves the
            shared request running for the other callers.
        """
        loop = asyncio.get_running_loop()
        registration = self._in_flight.get(key)
        if registration is None or self._is_stale(registration, loop):
            future = asyncio.ensure_future(factory())
            registration = _Registration(future=future, loop=loop)
            self._in_flight[key] = registration
            future.add_done_callback(lambda done: self._settle(key, registration))
        return asyncio.shield(registration.future)

    def is_in_flight(self, key: Hashable) -> bool:
        registration = self._in_flight.get(key)
        if registration is None:
            return False
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        return not self._is_stale(registration, loop)

    def _is_stale(self, registration: _Registration, loop: Optional[asyncio.AbstractEventLoop]) -> bool:
        if registration.loop is not loop or registration.loop.is_closed():
            return True
        if registration.settled_at is None:
            return False
        return self._clock() - registration.settled_at >= self.grace_period

    def _settle(self, key: Hashable, registration: _Registration) -> None:
        registration.settled_at = self._clock()
        future = registration.future
        if not future.cancelled() and future.exception() is not None:
            logging.debug(f"Shared request for {key} failed: {future.exception()}")
        registration.loop.call_later(self.grace_period, self._release, key, registration)

    def _release(self, key: Hashable, registration: _Registration) -> None:
        # a newer registration for the key must survive
        if self._in_flight.get(key) is registration:
            del self._in_flight[key]
