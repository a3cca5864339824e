import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    value: T
    captured_at: float
    ttl: float

    def is_fresh(self, now: float) -> bool:
        return now - self.captured_at < self.ttl


class ResultCache:
    """
    Short-lived memoization for frequent chain reads.

    Each key has a fixed TTL chosen at construction; the cache never holds
    more than one entry per key and never evicts beyond overwriting on refresh.

    Args:
        ttls (Dict[str, float]): TTL in seconds for every key the cache accepts.
        clock (Callable[[], float]): Monotonic time source, injectable in tests.
    """

    def __init__(
        self,
        ttls: Dict[str, float],
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttls = dict(ttls)
        self._clock = clock
        self._entries: Dict[str, CacheEntry[Any]] = {}
        self._locks: Dict[str, asyncio.Lock] = {key: asyncio.Lock() for key in ttls}

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value for ``key`` while it is fresh, else None."""
        entry = self._entries.get(key)
        if entry is None or not entry.is_fresh(self._clock()):
            return None
        return entry.value

    def put(self, key: str, value: Any) -> None:
        if key not in self.ttls:
            raise KeyError(f"No TTL configured for cache key {key!r}")
        self._entries[key] = CacheEntry(value, self._clock(), self.ttls[key])

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    async def get_or_fetch(self, key: str, fetch: Callable[[], Awaitable[T]]) -> T:
        """
        Return the fresh cached value, refreshing it with ``fetch`` when stale.

        Concurrent callers for the same key share one refresh: the per-key lock
        is held while fetching and the cache is re-checked once it is acquired.

        Args:
            key (str): Cache key.
            fetch (Callable[[], Awaitable[T]]): Coroutine function producing a
                                                fresh value.

        Returns:
            T: The cached or freshly fetched value.
        """
        cached = self.get(key)
        if cached is not None:
            return cached
        async with self._locks[key]:
            cached = self.get(key)
            if cached is not None:
                return cached
            value = await fetch()
            self.put(key, value)
            return value
