"""Test doubles shared by the tool and server tests."""
import asyncio

from crypto_observability_mcp import timeutils
from crypto_observability_mcp.http_client import HttpClient
from crypto_observability_mcp.response_cache import CachedResponse


class StubHttpClient(HttpClient):
    """Serves canned JSON per URL; unknown URLs come back degraded."""

    def __init__(self, responses):
        super().__init__(1000)
        self.responses = responses
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def fetch_json(self, url, **options):
        self.calls.append(url)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            # yield so concurrent callers overlap
            await asyncio.sleep(0)
        finally:
            self.in_flight -= 1

        now = timeutils.now_ms()
        source = options.get("source", "stub")
        ttl_ms = options.get("ttl_ms") or 1000
        payload = self.responses.get(url)
        if payload is not None:
            return CachedResponse(value=payload, ts_ms=now, ttl_ms=ttl_ms, hash="stubhash", source=source)
        return CachedResponse(value=None, ts_ms=now, ttl_ms=ttl_ms, quality_flags=["stub_missing"], source=source)


class DummyCCXT:
    id = "dummy"

    def __init__(self, *_args, **_kwargs):
        self._markets = {"BTC/USDT": {"symbol": "BTC/USDT"}}
        self.ticker_calls = 0

    def load_markets(self):
        return self._markets

    def fetch_ticker(self, symbol):
        self.ticker_calls += 1
        return {"last": 50000.0, "timestamp": 1234567890}

    def fetch_ohlcv(self, symbol, timeframe="1h", limit=100, since=None):
        return [
            [1, 10, 20, 5, 15, 100],
            [2, 15, 25, 10, 20, 200],
        ]

    def fetch_order_book(self, symbol, limit=20):
        return {
            "bids": [[50000.0, 1.0], [49990.0, 2.0], [49980.0, 3.0]],
            "asks": [[50100.0, 2.0], [50110.0, 1.0], [50120.0, 4.0]],
            "timestamp": 1234567000,
        }


class FailingCCXT(DummyCCXT):
    def fetch_ticker(self, symbol):
        raise RuntimeError("exchange down")
