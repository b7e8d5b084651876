import asyncio
from types import SimpleNamespace

import crypto_observability_mcp.server as server_module
from crypto_observability_mcp import exchange_client as ec_module
from crypto_observability_mcp.exchange_client import ExchangeClient
from crypto_observability_mcp.market_tools import create_market_tools
from crypto_observability_mcp.server import (
    market_ohlcv,
    market_order_book,
    market_ticker,
    observability_liquidity_window,
    observability_price_window,
    observability_time_window_snapshot,
    observability_ws_gap,
)
from crypto_observability_mcp.toolset import ToolRegistry, create_observability_tools

from stubs import DummyCCXT, StubHttpClient

PRICE_URL = "https://api.binance.com/api/v3/ticker/price?symbol=BTCUSDT"


def setup_module(module):
    # Patch ccxt in the exchange_client module used by the server
    module._orig_ccxt = ec_module.ccxt
    module._orig_registry = server_module._registry
    ec_module.ccxt = SimpleNamespace(binance=DummyCCXT)

    server_module._registry = ToolRegistry(
        create_observability_tools(StubHttpClient({PRICE_URL: {"price": "50000"}})),
        create_market_tools(ExchangeClient()),
    )


def teardown_module(module):
    ec_module.ccxt = module._orig_ccxt
    server_module._registry = module._orig_registry


def test_market_ticker_tool():
    result = asyncio.run(market_ticker("BTC/USDT"))
    assert result["data"]["symbol"] == "BTC/USDT"
    assert result["data"]["price"] == 50000.0
    assert result["provenance"]["raw"][0]["source"] == "ccxt:dummy"


def test_market_ohlcv_tool():
    result = asyncio.run(market_ohlcv("BTC/USDT", timeframe="1h", limit=2))
    candles = result["data"]["candles"]
    assert len(candles) == 2
    assert candles[0]["open"] == 10.0


def test_market_order_book_tool():
    result = asyncio.run(market_order_book("BTC/USDT", limit=5))
    assert "bids" in result["data"] and "asks" in result["data"]
    assert result["truncated"] is False


def test_price_window_tool():
    result = asyncio.run(observability_price_window("BTCUSDT"))
    assert result["data"]["price"] == "50000"
    assert result["quality_flags"] == []
    assert result["window"]["window_ms"] == 60_000


def test_omitted_arguments_use_tool_defaults():
    result = asyncio.run(observability_time_window_snapshot(anchor_ts_ms=125_000))
    assert result["window"]["window_start_ms"] == 120_000
    assert result["data"]["note"] == "time window anchor established"


def test_ws_gap_tool():
    asyncio.run(observability_ws_gap(seq=10, ts_ms=1, stream="server_test"))
    result = asyncio.run(observability_ws_gap(seq=12, ts_ms=2, stream="server_test"))
    assert result["data"]["ws_gap_detected"] is True
    assert result["quality_flags"] == ["server_test_gap_detected"]


def test_errors_are_returned_as_error_dicts():
    assert "error" in asyncio.run(market_ticker("DOGE/EUR"))
    assert "error" in asyncio.run(observability_liquidity_window("BTCUSDT", limit=0))
    assert "error" in asyncio.run(observability_price_window(""))
