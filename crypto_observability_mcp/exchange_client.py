"""Exchange client abstraction using ccxt."""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Optional

import ccxt

from . import timeutils
from .config import DEFAULT_CONFIG, ServerConfig
from .errors import ExchangeUnavailableError, InvalidSymbolError, InvalidTimeRangeError
from .hashing import hash_payload
from .response_cache import CachedResponse, MemoryResponseCache, ResponseCache

logger = logging.getLogger(__name__)

TIMEFRAMES = ("1m", "5m", "15m", "1h", "4h", "1d")
MARKETS_TTL_MS = 60 * 60 * 1000


@dataclass
class Ticker:
    symbol: str
    price: float
    timestamp: int

    @classmethod
    def from_ccxt(cls, symbol: str, raw: Dict[str, Any]) -> "Ticker":
        return cls(symbol=symbol, price=float(raw["last"]), timestamp=int(raw.get("timestamp") or 0))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class OHLCV:
    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def parse_ohlcv(rows: List[List[Any]]) -> List[OHLCV]:
    return [
        OHLCV(
            timestamp=int(t),
            open=float(o),
            high=float(h),
            low=float(l),
            close=float(c),
            volume=float(v),
        )
        for t, o, h, l, c, v in rows
    ]


class ExchangeClient:
    """High-level wrapper around ccxt for a single exchange.

    The exchange is a mandatory source: failures raise
    ``ExchangeUnavailableError`` rather than degrading.
    """

    def __init__(self, *, config: ServerConfig = DEFAULT_CONFIG, cache: Optional[ResponseCache] = None) -> None:
        exchange_name = config.exchange.name
        try:
            exchange_class = getattr(ccxt, exchange_name)
        except AttributeError as exc:
            raise ExchangeUnavailableError(f"Unsupported exchange: {exchange_name}") from exc

        self._exchange = exchange_class({"enableRateLimit": config.exchange.enable_rate_limit})
        self._ttl_ms = config.cache.ttl_seconds * 1000
        self._cache: ResponseCache = cache if cache is not None else MemoryResponseCache(config.cache.maxsize)

    @property
    def exchange_id(self) -> str:
        return str(getattr(self._exchange, "id", "exchange"))

    @property
    def source(self) -> str:
        return f"ccxt:{self.exchange_id}"

    def _cached(self, key: str, factory: Callable[[], Any], ttl_ms: Optional[int] = None) -> CachedResponse:
        now = timeutils.now_ms()
        cached = self._cache.get(key)
        if cached is not None and cached.is_fresh(now):
            return cached
        try:
            value = factory()
        except Exception as exc:  # ccxt raises many different errors
            logger.error("Exchange call %s failed: %s", key, exc)
            raise ExchangeUnavailableError(str(exc)) from exc
        response = CachedResponse(
            value=value,
            ts_ms=now,
            ttl_ms=self._ttl_ms if ttl_ms is None else ttl_ms,
            hash=hash_payload(value),
            source=self.source,
        )
        self._cache.set(key, response)
        return response

    def _load_markets(self) -> Dict[str, Any]:
        return self._cached(f"{self.exchange_id}:markets", self._exchange.load_markets, MARKETS_TTL_MS).value

    def _ensure_symbol(self, symbol: str) -> None:
        markets = self._load_markets()
        if symbol not in markets:
            raise InvalidSymbolError(f"Symbol not found on {self.exchange_id}: {symbol}")

    def fetch_ticker(self, symbol: str) -> CachedResponse:
        """Fetch the raw ccxt ticker for a trading pair."""
        self._ensure_symbol(symbol)
        return self._cached(f"{self.exchange_id}:ticker:{symbol}", lambda: self._exchange.fetch_ticker(symbol))

    def get_ticker(self, symbol: str) -> Ticker:
        return Ticker.from_ccxt(symbol, self.fetch_ticker(symbol).value)

    def fetch_ohlcv(
        self,
        symbol: str,
        timeframe: str = "1h",
        *,
        limit: int = 100,
        since: Optional[int] = None,
    ) -> CachedResponse:
        """Fetch raw OHLCV rows.

        - `timeframe` is constrained to common values for simplicity.
        - Either `limit` or `since` can be given; ccxt handles validation, but we
          also guard obvious bad values.
        """
        if limit <= 0:
            raise InvalidTimeRangeError("limit must be positive")
        if timeframe not in TIMEFRAMES:
            raise InvalidTimeRangeError(f"timeframe must be one of {', '.join(TIMEFRAMES)}")

        self._ensure_symbol(symbol)
        key = f"{self.exchange_id}:ohlcv:{symbol}:{timeframe}:{limit}:{since}"
        return self._cached(
            key, lambda: self._exchange.fetch_ohlcv(symbol, timeframe=timeframe, limit=limit, since=since)
        )

    def get_ohlcv(self, symbol: str, timeframe: str = "1h", *, limit: int = 100, since: Optional[int] = None) -> List[OHLCV]:
        return parse_ohlcv(self.fetch_ohlcv(symbol, timeframe, limit=limit, since=since).value)

    def fetch_order_book(self, symbol: str, *, limit: int = 20) -> CachedResponse:
        """Fetch order book for a symbol, mainly for richer real-time snapshots."""
        if limit <= 0:
            raise InvalidTimeRangeError("limit must be positive")
        self._ensure_symbol(symbol)
        key = f"{self.exchange_id}:orderbook:{symbol}:{limit}"
        return self._cached(key, lambda: self._exchange.fetch_order_book(symbol, limit=limit))
