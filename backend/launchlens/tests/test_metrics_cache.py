"""Tests for the metrics aggregate cache implementations."""

import json
import uuid
from datetime import datetime
from unittest.mock import MagicMock

import pytest

from launchlens.services.metrics_cache import (
    InMemoryMetricsCache,
    RedisMetricsCache,
    build_metrics_cache,
    make_fingerprint,
)


class FakeMonotonic:
    def __init__(self):
        self.value = 1000.0

    def __call__(self):
        return self.value


class TestFingerprint:

    def test_stable_regardless_of_argument_order(self):
        start = datetime(2025, 3, 1)
        end = datetime(2025, 3, 8)

        assert make_fingerprint("summary", start=start, end=end, source=None) == \
            make_fingerprint("summary", source=None, end=end, start=start)

    def test_differs_by_operation_and_params(self):
        assert make_fingerprint("summary", source="google") != make_fingerprint("summary", source="facebook")
        assert make_fingerprint("summary", source="google") != make_fingerprint("drill_down", source="google")

    def test_prefixed_with_operation(self):
        assert make_fingerprint("revenue_by_source", start="a").startswith("revenue_by_source:")


class TestInMemoryMetricsCache:

    def test_get_set_and_ttl_expiry(self):
        clock = FakeMonotonic()
        cache = InMemoryMetricsCache(default_ttl_seconds=60, monotonic=clock)
        account_id = uuid.uuid4()

        cache.set(account_id, "summary:1", {"total_revenue": 10.0})
        assert cache.get(account_id, "summary:1") == {"total_revenue": 10.0}

        clock.value += 61
        assert cache.get(account_id, "summary:1") is None
        assert len(cache) == 0

    def test_explicit_ttl_overrides_default(self):
        clock = FakeMonotonic()
        cache = InMemoryMetricsCache(default_ttl_seconds=3600, monotonic=clock)
        account_id = uuid.uuid4()

        cache.set(account_id, "k", [1], ttl_seconds=5)
        clock.value += 6

        assert cache.get(account_id, "k") is None

    def test_non_positive_ttl_is_not_stored(self):
        cache = InMemoryMetricsCache()
        cache.set(uuid.uuid4(), "k", 1, ttl_seconds=0)
        assert len(cache) == 0

    def test_values_are_copied(self):
        cache = InMemoryMetricsCache()
        account_id = uuid.uuid4()
        value = {"rows": [1, 2]}

        cache.set(account_id, "k", value)
        value["rows"].append(3)
        cache.get(account_id, "k")["rows"].append(4)

        assert cache.get(account_id, "k") == {"rows": [1, 2]}

    def test_invalidate_account_only_touches_that_account(self):
        cache = InMemoryMetricsCache()
        first, second = uuid.uuid4(), uuid.uuid4()
        cache.set(first, "a", 1)
        cache.set(first, "b", 2)
        cache.set(second, "a", 3)

        cache.invalidate_account(first)

        assert cache.get(first, "a") is None
        assert cache.get(first, "b") is None
        assert cache.get(second, "a") == 3


class TestRedisMetricsCache:

    def test_set_uses_setex_with_json(self):
        client = MagicMock()
        cache = RedisMetricsCache(client, default_ttl_seconds=3600)
        account_id = uuid.uuid4()

        cache.set(account_id, "summary:1", {"total_revenue": 5.0})

        client.setex.assert_called_once_with(
            f"launchlens:metrics:{account_id}:summary:1", 3600, json.dumps({"total_revenue": 5.0}),
        )

    def test_get_decodes_bytes(self):
        client = MagicMock()
        client.get.return_value = b'{"total_revenue": 5.0}'

        assert RedisMetricsCache(client).get(uuid.uuid4(), "summary:1") == {"total_revenue": 5.0}

    def test_get_miss(self):
        client = MagicMock()
        client.get.return_value = None

        assert RedisMetricsCache(client).get(uuid.uuid4(), "summary:1") is None

    def test_invalidate_deletes_account_keys(self):
        client = MagicMock()
        account_id = uuid.uuid4()
        keys = [f"launchlens:metrics:{account_id}:a", f"launchlens:metrics:{account_id}:b"]
        client.scan_iter.return_value = iter(keys)

        RedisMetricsCache(client).invalidate_account(account_id)

        client.scan_iter.assert_called_once_with(match=f"launchlens:metrics:{account_id}:*", count=500)
        client.delete.assert_called_once_with(*keys)

    def test_invalidate_with_no_keys_skips_delete(self):
        client = MagicMock()
        client.scan_iter.return_value = iter([])

        RedisMetricsCache(client).invalidate_account(uuid.uuid4())

        client.delete.assert_not_called()


class TestBuildMetricsCache:

    def test_memory_backend(self):
        assert isinstance(build_metrics_cache("memory"), InMemoryMetricsCache)

    def test_redis_backend_requires_url(self):
        with pytest.raises(RuntimeError):
            build_metrics_cache("redis", redis_url=None)

    def test_redis_backend_builds_client_lazily(self):
        cache = build_metrics_cache("redis", redis_url="redis://localhost:6379/0", default_ttl_seconds=120)

        assert isinstance(cache, RedisMetricsCache)
        assert cache.default_ttl_seconds == 120

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            build_metrics_cache("memcached")
