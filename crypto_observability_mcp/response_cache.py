"""Cache backends for fetched upstream responses.

Backends only store and return entries; freshness is decided by the caller
from ``CachedResponse.ts_ms + ttl_ms``.
"""
from __future__ import annotations

import json
import logging
import math
import threading
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from .config import CacheConfig, RedisConfig
from .store import CacheStore

logger = logging.getLogger(__name__)


@dataclass
class CachedResponse:
    value: Any
    ts_ms: int
    ttl_ms: int
    hash: Optional[str] = None
    quality_flags: List[str] = field(default_factory=list)
    source: str = "http"

    def is_fresh(self, now_ms: int) -> bool:
        return self.ts_ms + self.ttl_ms > now_ms

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CachedResponse":
        return cls(
            value=data.get("value"),
            ts_ms=int(data["ts_ms"]),
            ttl_ms=int(data["ttl_ms"]),
            hash=data.get("hash"),
            quality_flags=list(data.get("quality_flags") or []),
            source=data.get("source", "http"),
        )


class ResponseCache(Protocol):
    def get(self, key: str) -> Optional[CachedResponse]: ...

    def set(self, key: str, response: CachedResponse) -> None: ...


class MemoryResponseCache:
    """Thread-safe in-process cache with max size.

    Entries live for the process lifetime unless evicted for space.
    """

    def __init__(self, maxsize: int = 1024) -> None:
        self._maxsize = maxsize
        self._lock = threading.Lock()
        self._store: Dict[str, CachedResponse] = {}

    def __len__(self) -> int:
        return len(self._store)

    def get(self, key: str) -> Optional[CachedResponse]:
        with self._lock:
            return self._store.get(key)

    def set(self, key: str, response: CachedResponse) -> None:
        with self._lock:
            if key not in self._store and len(self._store) >= self._maxsize:
                # Simple eviction: remove oldest
                oldest_key = min(self._store.items(), key=lambda kv: kv[1].ts_ms)[0]
                self._store.pop(oldest_key, None)
            self._store[key] = response


class RedisResponseCache:
    """Redis-backed response cache.

    Entries expire in Redis after their own TTL, rounded up to whole seconds.
    """

    def __init__(self, config: Optional[RedisConfig] = None, key_prefix: str = "crypto_obs:") -> None:
        import redis

        config = config or RedisConfig()
        self._prefix = key_prefix
        self._redis = redis.Redis(
            host=config.host,
            port=config.port,
            db=config.db,
            password=config.password,
            decode_responses=False,
        )
        try:
            self._redis.ping()
        except Exception as exc:
            raise ConnectionError(f"Failed to connect to Redis at {config.host}:{config.port}: {exc}") from exc

    def get(self, key: str) -> Optional[CachedResponse]:
        try:
            data = self._redis.get(self._prefix + key)
            if data is None:
                return None
            return CachedResponse.from_dict(json.loads(data.decode("utf-8")))
        except Exception as exc:
            logger.warning("Redis cache read failed for %s: %s", key, exc)
            return None

    def set(self, key: str, response: CachedResponse) -> None:
        try:
            data = json.dumps(response.to_dict()).encode("utf-8")
            seconds = max(1, math.ceil(response.ttl_ms / 1000))
            self._redis.setex(self._prefix + key, seconds, data)
        except Exception as exc:
            logger.warning("Redis cache write failed for %s: %s", key, exc)


class SqliteResponseCache:
    """Response cache persisted in the ``rest_cache`` table."""

    def __init__(self, store: CacheStore) -> None:
        self._store = store

    def get(self, key: str) -> Optional[CachedResponse]:
        payload = self._store.get_rest_cache(key)
        if payload is None:
            return None
        return CachedResponse.from_dict(json.loads(payload))

    def set(self, key: str, response: CachedResponse) -> None:
        try:
            payload = json.dumps(response.to_dict())
        except (TypeError, ValueError) as exc:
            logger.warning("Response for %s is not JSON-serializable, not persisted: %s", key, exc)
            return
        self._store.cache_rest_response(key, payload, response.ttl_ms)


def create_response_cache(
    cache_config: CacheConfig,
    redis_config: Optional[RedisConfig] = None,
    store: Optional[CacheStore] = None,
) -> ResponseCache:
    """Pick the cache backend named by ``cache_config.backend``.

    An unreachable Redis falls back to the in-memory cache.
    """
    backend = cache_config.backend
    if backend == "redis":
        try:
            return RedisResponseCache(redis_config)
        except ConnectionError as exc:
            logger.warning("Redis unavailable, falling back to memory cache: %s", exc)
            return MemoryResponseCache(maxsize=cache_config.maxsize)
    if backend == "sqlite":
        return SqliteResponseCache(store or CacheStore(cache_config.sqlite_path))
    if backend != "memory":
        raise ValueError(f"Unknown cache backend: {backend}")
    return MemoryResponseCache(maxsize=cache_config.maxsize)
