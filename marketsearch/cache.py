"""Response cache: Redis when reachable, an in-process TTL map otherwise.

Entries are kept as JSON text in both backends, so every hit decodes into a
new object equal to what was stored. Callers cannot mutate a cached response
in place; an entry only changes when it expires and is computed again.
"""
from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import redis

from .config import Settings, settings

logger = logging.getLogger(__name__)


class CacheBackend(Protocol):
    name: str

    def get(self, key: str) -> Optional[Dict[str, Any]]: ...

    def set(self, key: str, value: Dict[str, Any], ttl: int) -> None: ...


def _encode(value: Dict[str, Any]) -> str:
    return json.dumps(value, separators=(",", ":"))


def _decode(raw: Any) -> Optional[Dict[str, Any]]:
    if not raw:
        return None
    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("Discarding undecodable cache entry")
        return None
    return payload if isinstance(payload, dict) else None


@dataclass
class RedisCache:
    """Errors on either side are logged and behave like a miss."""

    client: redis.Redis
    name: str = "redis"

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            raw = self.client.get(key)
        except redis.RedisError as exc:
            logger.warning("Redis read of %s failed: %s", key, exc)
            return None
        return _decode(raw)

    def set(self, key: str, value: Dict[str, Any], ttl: int) -> None:
        try:
            self.client.set(key, _encode(value), ex=ttl)
        except redis.RedisError as exc:
            logger.warning("Redis write of %s failed: %s", key, exc)


class InMemoryCache:
    name = "memory"

    def __init__(self) -> None:
        self._entries: Dict[str, tuple[float, str]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        now = time.monotonic()
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry[0] <= now:
                del self._entries[key]
                entry = None
        return _decode(entry[1]) if entry else None

    def set(self, key: str, value: Dict[str, Any], ttl: int) -> None:
        encoded = _encode(value)
        with self._lock:
            self._entries[key] = (time.monotonic() + ttl, encoded)


def build_cache(config: Settings = settings) -> CacheBackend:
    client = redis.Redis(host=config.redis_host, port=config.redis_port, decode_responses=False)
    try:
        client.ping()
    except redis.RedisError as exc:
        logger.warning("Redis at %s:%s unreachable (%s); caching in process", config.redis_host, config.redis_port, exc)
        return InMemoryCache()
    logger.info("Caching search responses in Redis at %s:%s", config.redis_host, config.redis_port)
    return RedisCache(client)
