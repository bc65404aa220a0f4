"""Per-principal permission cache with a short TTL.

Two backends share one interface: an in-process dict (default) and Redis for
deployments running several workers. Invalidation is delete-by-key; a stale
read is bounded by the TTL.
"""

import json
import logging
import threading
import time
from typing import Callable, Dict, FrozenSet, Optional, Tuple

import redis

from rbac_engine.core.config import settings

logger = logging.getLogger(__name__)


class MemoryPermissionCache:
    """Thread-safe in-process cache keyed by principal id."""

    def __init__(self, ttl_seconds: int = 30, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[float, FrozenSet[str]]] = {}
        self._lock = threading.Lock()

    def get(self, principal_id: str) -> Optional[FrozenSet[str]]:
        with self._lock:
            entry = self._entries.get(principal_id)
            if entry is None:
                return None
            expires_at, permissions = entry
            if expires_at <= self._clock():
                del self._entries[principal_id]
                return None
            return permissions

    def set(self, principal_id: str, permissions: FrozenSet[str]) -> None:
        with self._lock:
            self._entries[principal_id] = (self._clock() + self.ttl_seconds, permissions)

    def invalidate(self, principal_id: str) -> None:
        with self._lock:
            self._entries.pop(principal_id, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class RedisPermissionCache:
    """Redis-backed cache. Connection failures degrade to cache misses."""

    def __init__(
        self,
        client: Optional[redis.Redis] = None,
        ttl_seconds: int = 30,
        prefix: str = "rbac:perms:",
    ):
        self._client = client
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(
                settings.REDIS_URL,
                decode_responses=True,
                max_connections=100,
            )
        return self._client

    def _key(self, principal_id: str) -> str:
        return f"{self.prefix}{principal_id}"

    def get(self, principal_id: str) -> Optional[FrozenSet[str]]:
        try:
            raw = self.client.get(self._key(principal_id))
        except redis.ConnectionError:
            return None
        if raw is None:
            return None
        return frozenset(json.loads(raw))

    def set(self, principal_id: str, permissions: FrozenSet[str]) -> None:
        try:
            self.client.setex(
                self._key(principal_id),
                self.ttl_seconds,
                json.dumps(sorted(permissions)),
            )
        except redis.ConnectionError:
            pass  # Cache failures are non-fatal

    def invalidate(self, principal_id: str) -> None:
        try:
            self.client.delete(self._key(principal_id))
        except redis.ConnectionError:
            # Entry expires on its own within the TTL
            logger.warning("Could not invalidate cached permissions for %s", principal_id)

    def clear(self) -> None:
        try:
            keys = list(self.client.scan_iter(match=f"{self.prefix}*"))
            if keys:
                self.client.delete(*keys)
        except redis.ConnectionError:
            logger.warning("Could not clear permission cache")

    def health_check(self) -> bool:
        """Check if Redis is reachable."""
        try:
            return bool(self.client.ping())
        except redis.ConnectionError:
            return False


def build_permission_cache():
    """Create the cache backend selected by ``PERMISSION_CACHE_BACKEND``."""
    if settings.PERMISSION_CACHE_BACKEND == "redis":
        return RedisPermissionCache(
            ttl_seconds=settings.PERMISSION_CACHE_TTL_SECONDS,
            prefix=settings.PERMISSION_CACHE_PREFIX,
        )
    return MemoryPermissionCache(ttl_seconds=settings.PERMISSION_CACHE_TTL_SECONDS)


permission_cache = build_permission_cache()
