"""JSON-over-HTTP client with TTL caching and optional-source degradation."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from . import timeutils
from .errors import FetchError
from .hashing import sha256
from .response_cache import CachedResponse, MemoryResponseCache, ResponseCache

logger = logging.getLogger(__name__)


class HttpClient:
    """Fetches JSON documents and caches them per key for a TTL.

    A cached entry is served verbatim while ``ts_ms + ttl_ms`` is in the
    future; otherwise the source is fetched again. Optional sources never
    raise: failures become a ``value=None`` response with a quality flag,
    cached like any other response.
    """

    def __init__(
        self,
        default_ttl_ms: int = 15_000,
        *,
        client: Optional[httpx.AsyncClient] = None,
        cache: Optional[ResponseCache] = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self.default_ttl_ms = default_ttl_ms
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._cache: ResponseCache = cache if cache is not None else MemoryResponseCache()

    @property
    def cache(self) -> ResponseCache:
        return self._cache

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def fetch_json(
        self,
        url: str,
        *,
        ttl_ms: Optional[int] = None,
        optional: bool = False,
        source: str = "http",
        cache_key: Optional[str] = None,
        method: str = "GET",
        headers: Optional[Dict[str, str]] = None,
        json_body: Any = None,
    ) -> CachedResponse:
        ttl = self.default_ttl_ms if ttl_ms is None else ttl_ms
        key = cache_key or url
        now = timeutils.now_ms()

        cached = self._cache.get(key)
        if cached is not None and cached.is_fresh(now):
            logger.debug("Cache hit for %s", key)
            return cached

        try:
            response = await self._client.request(method, url, headers=headers, json=json_body)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            return self._handle_error(url, key, exc, optional=optional, source=source, ttl_ms=ttl, now=now)

        if not response.is_success:
            message = f"HTTP {response.status_code} for {url}"
            if optional:
                logger.warning("Optional source failed: %s", message)
                return self._degraded(key, f"optional_source_unavailable:{source}", source, ttl, now)
            logger.error("HTTP fetch failed: %s", message)
            raise FetchError(message, url=url, status_code=response.status_code)

        try:
            value = response.json()
        except ValueError as exc:
            return self._handle_error(url, key, exc, optional=optional, source=source, ttl_ms=ttl, now=now)

        wrapped = CachedResponse(
            value=value,
            ts_ms=now,
            ttl_ms=ttl,
            hash=sha256(response.content),
            # a JSON null body still needs a flag explaining the missing value
            quality_flags=[] if value is not None else [f"empty_response:{source}"],
            source=source,
        )
        self._cache.set(key, wrapped)
        return wrapped

    def _handle_error(
        self, url: str, key: str, exc: Exception, *, optional: bool, source: str, ttl_ms: int, now: int
    ) -> CachedResponse:
        if optional:
            logger.warning("Optional source error for %s: %s", source, exc)
            return self._degraded(key, f"optional_source_error:{source}", source, ttl_ms, now)
        logger.error("HTTP fetch failed for %s: %s", url, exc)
        raise FetchError(f"Request to {url} failed: {exc}", url=url) from exc

    def _degraded(self, key: str, flag: str, source: str, ttl_ms: int, now: int) -> CachedResponse:
        fallback = CachedResponse(value=None, ts_ms=now, ttl_ms=ttl_ms, quality_flags=[flag], source=source)
        self._cache.set(key, fallback)
        return fallback
