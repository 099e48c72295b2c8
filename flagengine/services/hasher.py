"""Stable bucket assignment for percentage rollouts.

``bucket(flag_key, user_id)`` maps a (flag, user) pair to an integer in
[0, 100). It is a pure function of its two inputs: no seed, no process state,
so every replica and every restart puts a user in the same bucket.

Construction: SHA-256 over ``f"{flag_key}:{user_id}"`` (UTF-8), the first four
digest bytes read as a signed big-endian 32-bit integer, absolute value,
modulo 100. This matches the buckets issued by the previous JVM service, so
users keep their rollout population across the migration.

Usage:
    from flagengine.services.hasher import bucket

    if bucket("dark-mode", "alice") < 50:
        ...
"""

from __future__ import annotations

import hashlib
import threading

from cachetools import LRUCache, cached
from flagengine.core.config import settings

BUCKET_COUNT = 100

_bucket_cache: LRUCache = LRUCache(maxsize=settings.BUCKET_CACHE_SIZE)
_bucket_cache_lock = threading.Lock()


def compute_bucket(flag_key: str, user_id: str) -> int:
    """Calculate the bucket (0-99) without consulting the cache."""
    digest = hashlib.sha256(f"{flag_key}:{user_id}".encode("utf-8")).digest()
    hash_int = int.from_bytes(digest[:4], byteorder="big", signed=True)
    return abs(hash_int) % BUCKET_COUNT


@cached(cache=_bucket_cache, lock=_bucket_cache_lock)
def bucket(flag_key: str, user_id: str) -> int:
    """Consistent bucket (0-99) for a flag/user combination.

    Results are memoized in a bounded LRU cache; evaluation calls this for
    every request, and the same users hit the same flags repeatedly.
    """
    return compute_bucket(flag_key, user_id)


def clear_bucket_cache() -> None:
    """Drop memoized buckets (useful for testing)."""
    with _bucket_cache_lock:
        _bucket_cache.clear()
