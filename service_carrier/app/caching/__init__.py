"""
Carrier caching package.

In-memory, process-lifetime caches that reduce load on the upstream carrier
API. Everything here is best effort: losing an entry only costs an extra
upstream call.
"""

from .ttl_store import CacheEntry, FetchCache, TTLStore

__all__ = [
    "CacheEntry",
    "FetchCache",
    "TTLStore",
]
