import json
import sqlite3

import httpx
import pytest

from crypto_observability_mcp.errors import UnknownToolError
from crypto_observability_mcp.hashing import canonical_json
from crypto_observability_mcp.http_client import HttpClient
from crypto_observability_mcp.store import CacheStore
from crypto_observability_mcp.toolset import ToolRegistry, create_observability_tools

from stubs import StubHttpClient

PRICE_URL = "https://api.binance.com/api/v3/ticker/price?symbol=BTCUSDT"

EXPECTED_TOOLS = [
    "observability_time_window_snapshot",
    "observability_dune_query",
    "observability_gdelt_events",
    "observability_defillama_tvl",
    "observability_rpc_latency",
    "observability_rpc_balance",
    "observability_ws_gap",
    "observability_price_window",
    "observability_funding_window",
    "observability_liquidity_window",
]


@pytest.fixture
def client():
    return StubHttpClient({PRICE_URL: {"price": "50000"}})


def test_observability_tools_are_listed(client):
    registry = ToolRegistry(create_observability_tools(client))
    assert registry.names() == EXPECTED_TOOLS

    described = registry.list_tools()
    assert [d["name"] for d in described] == EXPECTED_TOOLS
    price = described[EXPECTED_TOOLS.index("observability_price_window")]
    assert price["inputSchema"]["required"] == ["symbol"]
    assert "window_ms" in price["inputSchema"]["properties"]
    assert "quality_flags" in price["outputSchema"]["properties"]


@pytest.mark.asyncio
async def test_call_tool_returns_observation_dict(client, clock):
    registry = ToolRegistry(create_observability_tools(client))
    output = await registry.call_tool("observability_price_window", {"symbol": "BTCUSDT"})

    assert output["data"] == {"symbol": "BTCUSDT", "price": "50000"}
    assert output["quality_flags"] == []
    assert output["provenance"]["calc_version"] == "price_windowed:v1"


@pytest.mark.asyncio
async def test_unknown_tools_are_rejected(client):
    registry = ToolRegistry(create_observability_tools(client))
    with pytest.raises(UnknownToolError):
        await registry.call_tool("observability_does_not_exist", {})
    with pytest.raises(UnknownToolError):
        await registry.call_tool("price_window", {})
    with pytest.raises(UnknownToolError):
        await registry.call_tool("market_ticker", {"symbol": "BTC/USDT"})


@pytest.mark.asyncio
async def test_outputs_are_recorded_in_store(client, clock, tmp_path):
    store = CacheStore(tmp_path / "mcp.sqlite")
    registry = ToolRegistry(create_observability_tools(client), store=store)
    args = {"symbol": "BTCUSDT"}

    output = await registry.call_tool("observability_price_window", args)

    recorded = store.get_tool_output("observability_price_window", canonical_json(args))
    assert json.loads(recorded) == output
    assert len(store.payload_hashes()) == 1


@pytest.mark.asyncio
async def test_recording_failure_does_not_fail_the_call(client, clock, tmp_path):
    store = CacheStore(tmp_path / "mcp.sqlite")
    store.close()
    registry = ToolRegistry(create_observability_tools(client), store=store)

    output = await registry.call_tool("observability_time_window_snapshot", {})
    assert output["data"]["note"] == "time window anchor established"


@pytest.mark.asyncio
async def test_store_without_recording_is_left_untouched(client, clock, tmp_path):
    store = CacheStore(tmp_path / "mcp.sqlite")
    registry = ToolRegistry(create_observability_tools(client), store=store, record_outputs=False)

    await registry.call_tool("observability_price_window", {"symbol": "BTCUSDT"})
    assert store.payload_hashes() == []


@pytest.mark.asyncio
async def test_aclose_releases_http_client_and_store(tmp_path):
    http_client = HttpClient()
    store = CacheStore(tmp_path / "mcp.sqlite")
    registry = ToolRegistry(create_observability_tools(http_client), store=store, http_client=http_client)

    await registry.aclose()

    assert http_client._client.is_closed
    with pytest.raises(sqlite3.ProgrammingError):
        store.table_names()


@pytest.mark.asyncio
async def test_aclose_leaves_borrowed_async_client_open():
    borrowed = httpx.AsyncClient()
    registry = ToolRegistry([], http_client=HttpClient(client=borrowed))

    await registry.aclose()

    assert not borrowed.is_closed
    await borrowed.aclose()
