"""
Bounded TTL stores and in-flight request de-duplication.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Generic,
    Mapping,
    Optional,
    TypeVar,
    TYPE_CHECKING,
)
from urllib.parse import quote

from cachetools import TTLCache

from shared.logging import get_logger

from ..adapters.query import serialize_params

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


T = TypeVar("T")


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """Immutable cached value with its absolute expiry instant."""

    value: T
    expires_at: float


class TTLStore(Generic[T]):
    """Fixed-TTL, size-bounded store.

    Reads check expiry and evict, so an entry is never returned past
    ``expires_at``. On overflow the least recently used entry goes first.
    """

    def __init__(
        self,
        ttl_seconds: float,
        max_entries: int,
        *,
        clock: Callable[[], float] = time.time,
        name: str = "default",
        metrics: Optional["MetricsCollector"] = None,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.name = name
        self.metrics = metrics
        self._clock = clock
        self._entries: TTLCache = TTLCache(maxsize=max_entries, ttl=ttl_seconds, timer=clock)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get_entry(key) is not None

    def get_entry(self, key: str) -> Optional[CacheEntry[T]]:
        entry: Optional[CacheEntry[T]] = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            self._entries.pop(key, None)
            return None
        return entry

    def get(self, key: str) -> Optional[T]:
        entry = self.get_entry(key)
        if entry is None:
            self._record("cache_misses_total")
            return None
        self._record("cache_hits_total")
        return entry.value

    def set(self, key: str, value: T) -> CacheEntry[T]:
        entry = CacheEntry(value=value, expires_at=self._clock() + self.ttl_seconds)
        self._entries[key] = entry
        return entry

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def delete_prefix(self, prefix: str) -> int:
        """Remove every entry whose key starts with ``prefix``."""
        doomed = [key for key in list(self._entries.keys()) if key.startswith(prefix)]
        for key in doomed:
            self._entries.pop(key, None)
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()

    def _record(self, counter: str) -> None:
        if self.metrics:
            self.metrics.increment_counter(counter, cache_type=self.name)


def _is_success(result: Any) -> bool:
    return bool(getattr(result, "success", False))


def _consume_outcome(future: asyncio.Future) -> None:
    # Joined callers may all be cancelled before the load settles.
    if not future.cancelled():
        future.exception()


class FetchCache(Generic[T]):
    """Short-TTL cache with single-flight loading for list queries.

    Fresh entries are returned without I/O. A miss for a key that is
    already loading joins the pending load instead of starting another.
    Only results accepted by ``should_cache`` are stored.
    """

    KEY_SEPARATOR = "|"

    def __init__(
        self,
        store: TTLStore[T],
        *,
        should_cache: Callable[[T], bool] = _is_success,
    ) -> None:
        self.store = store
        self.should_cache = should_cache
        self.logger = get_logger(f"carrier.cache.{store.name}")
        self._inflight: Dict[str, asyncio.Future] = {}

    @classmethod
    def make_key(cls, api_key: str, path: str, params: Mapping[str, Any]) -> str:
        """Build a key independent of the order of ``params``.

        ``None`` and empty sequences are treated as absent. Sequences expand
        to one escaped ``name[]=value`` part per item, as on the wire.
        """
        ordered = {name: params[name] for name in sorted(params)}
        parts = [api_key, path]
        for name, value in serialize_params(ordered):
            parts.append(f"{quote(name, safe='[]')}={quote(value, safe='')}")
        return cls.KEY_SEPARATOR.join(parts)

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)

    async def fetch(self, key: str, loader: Callable[[], Awaitable[T]]) -> T:
        cached = self.store.get(key)
        if cached is not None:
            return cached

        pending = self._inflight.get(key)
        if pending is None:
            pending = asyncio.ensure_future(self._load(key, loader))
            pending.add_done_callback(_consume_outcome)
            self._inflight[key] = pending
        else:
            self.logger.debug("Joining in-flight request", cache=self.store.name)

        return await asyncio.shield(pending)

    async def _load(self, key: str, loader: Callable[[], Awaitable[T]]) -> T:
        try:
            result = await loader()
            if self.should_cache(result):
                self.store.set(key, result)
            return result
        finally:
            self._inflight.pop(key, None)

    def invalidate(self, prefix: str) -> int:
        return self.store.delete_prefix(prefix)
