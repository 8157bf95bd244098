"""Metrics aggregate cache.

WHAT:
    Injected cache for expensive dashboard aggregates, keyed by
    (account id, query fingerprint), with an explicit TTL and an
    account-wide invalidation hook.

WHY:
    - Dashboards tolerate ~1 hour staleness for ranges that are fully in the
      past, so repeated summary/breakdown queries can skip the database.
    - Multiple requests populate the cache concurrently; the in-process
      implementation guards its map with a lock, Redis is atomic per key.
    - Mutations that change ledger numbers (attribution writes, refunds,
      launch date changes) call `invalidate_account`.

IMPLEMENTATIONS:
    - InMemoryMetricsCache: single-process deployments and tests
    - RedisMetricsCache: multiple API replicas sharing one cache

REFERENCES:
    - launchlens/services/metrics_service.py (consumer)
    - launchlens/deps.py::get_metrics_cache (wiring)
"""

from __future__ import annotations

import copy
import hashlib
import json
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional, Protocol, Tuple
from uuid import UUID

from redis import Redis

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600
KEY_PREFIX = "launchlens:metrics"


def make_fingerprint(operation: str, **params: Any) -> str:
    """Stable fingerprint for an operation and its normalized arguments.

    Example:
        make_fingerprint("summary", start=start, end=end, source=None)
        -> "summary:3f1c9a0b2e4d5f67"
    """
    payload = json.dumps(params, sort_keys=True, default=str)
    digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]
    return f"{operation}:{digest}"


class MetricsCache(Protocol):
    """Cache contract used by the metrics services."""

    def get(self, account_id: UUID, fingerprint: str) -> Optional[Any]:
        ...

    def set(self, account_id: UUID, fingerprint: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        ...

    def invalidate_account(self, account_id: UUID) -> None:
        ...


class InMemoryMetricsCache:
    """Thread-safe TTL map.

    Values are deep-copied on the way in and out so callers can never mutate
    a cached entry.
    """

    def __init__(
        self,
        default_ttl_seconds: int = DEFAULT_TTL_SECONDS,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.default_ttl_seconds = default_ttl_seconds
        self._monotonic = monotonic
        self._lock = threading.Lock()
        self._entries: Dict[Tuple[str, str], Tuple[float, Any]] = {}

    def get(self, account_id: UUID, fingerprint: str) -> Optional[Any]:
        key = (str(account_id), fingerprint)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._monotonic() >= expires_at:
                del self._entries[key]
                return None
            return copy.deepcopy(value)

    def set(self, account_id: UUID, fingerprint: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            return
        key = (str(account_id), fingerprint)
        with self._lock:
            self._entries[key] = (self._monotonic() + ttl, copy.deepcopy(value))

    def invalidate_account(self, account_id: UUID) -> None:
        account_key = str(account_id)
        with self._lock:
            stale = [key for key in self._entries if key[0] == account_key]
            for key in stale:
                del self._entries[key]
        if stale:
            logger.debug("[METRICS_CACHE] Invalidated %d entries for account %s", len(stale), account_key)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class RedisMetricsCache:
    """Redis-backed cache; values are stored as JSON with SETEX."""

    def __init__(self, client: Redis, default_ttl_seconds: int = DEFAULT_TTL_SECONDS):
        self.client = client
        self.default_ttl_seconds = default_ttl_seconds

    @staticmethod
    def _key(account_id: UUID, fingerprint: str) -> str:
        return f"{KEY_PREFIX}:{account_id}:{fingerprint}"

    def get(self, account_id: UUID, fingerprint: str) -> Optional[Any]:
        raw = self.client.get(self._key(account_id, fingerprint))
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return json.loads(raw)

    def set(self, account_id: UUID, fingerprint: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            return
        self.client.setex(self._key(account_id, fingerprint), ttl, json.dumps(value, default=str))

    def invalidate_account(self, account_id: UUID) -> None:
        keys = list(self.client.scan_iter(match=f"{KEY_PREFIX}:{account_id}:*", count=500))
        if keys:
            self.client.delete(*keys)
            logger.debug("[METRICS_CACHE] Invalidated %d redis keys for account %s", len(keys), account_id)


def build_metrics_cache(
    backend: str = "memory",
    redis_url: Optional[str] = None,
    default_ttl_seconds: int = DEFAULT_TTL_SECONDS,
) -> MetricsCache:
    """Build the cache configured by METRICS_CACHE_BACKEND."""
    if backend == "redis":
        if not redis_url:
            raise RuntimeError("METRICS_CACHE_BACKEND=redis requires REDIS_URL")
        client = Redis.from_url(redis_url, socket_timeout=5, socket_connect_timeout=5)
        logger.info("[METRICS_CACHE] Using Redis cache (ttl=%ds)", default_ttl_seconds)
        return RedisMetricsCache(client, default_ttl_seconds=default_ttl_seconds)

    if backend != "memory":
        raise ValueError(f"Unknown metrics cache backend: {backend}")

    logger.info("[METRICS_CACHE] Using in-process cache (ttl=%ds)", default_ttl_seconds)
    return InMemoryMetricsCache(default_ttl_seconds=default_ttl_seconds)
