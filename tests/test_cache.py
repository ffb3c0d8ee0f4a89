"""Cache backends must never fail a search."""
from __future__ import annotations

import redis

from marketsearch.cache import InMemoryCache, RedisCache, build_cache
from marketsearch.config import Settings


class BrokenRedis:
    def get(self, key):
        raise redis.ConnectionError("redis is down")

    def set(self, key, value, ex=None):
        raise redis.ConnectionError("redis is down")


class DictRedis:
    def __init__(self):
        self.store = {}

    def get(self, key):
        return self.store.get(key)

    def set(self, key, value, ex=None):
        self.store[key] = value.encode("utf-8")


def test_in_memory_cache_returns_fresh_copies():
    cache = InMemoryCache()
    cache.set("search:k", {"data": [1, 2]}, ttl=60)

    first = cache.get("search:k")
    first["data"].append(3)

    assert cache.get("search:k") == {"data": [1, 2]}


def test_in_memory_cache_expires_entries():
    cache = InMemoryCache()
    cache.set("search:k", {"data": []}, ttl=-1)

    assert cache.get("search:k") is None
    assert cache.get("search:missing") is None


def test_redis_failures_behave_like_a_miss():
    cache = RedisCache(BrokenRedis())

    cache.set("search:k", {"data": []}, ttl=60)
    assert cache.get("search:k") is None


def test_redis_round_trip_and_garbage_entries():
    client = DictRedis()
    cache = RedisCache(client)
    cache.set("search:k", {"success": True}, ttl=60)
    client.store["search:bad"] = b"{not json"

    assert cache.get("search:k") == {"success": True}
    assert cache.get("search:bad") is None


def test_unreachable_redis_falls_back_to_memory():
    cache = build_cache(Settings(redis_host="127.0.0.1", redis_port=1))

    assert isinstance(cache, InMemoryCache)
    assert cache.name == "memory"
