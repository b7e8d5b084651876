"""MCP server exposing observability and market data tools."""
from __future__ import annotations

import asyncio
import logging
import sys
from typing import Any, Dict, List, Optional

from mcp.server.fastmcp import FastMCP

from .config import DEFAULT_CONFIG, ServerConfig, load_config
from .errors import CryptoMCPError
from .exchange_client import ExchangeClient
from .gap_detector import GapDetectorRegistry
from .http_client import HttpClient
from .market_tools import create_market_tools
from .observation import logging_audit_sink
from .response_cache import create_response_cache
from .store import CacheStore
from .toolset import ToolRegistry, create_observability_tools

logger = logging.getLogger(__name__)

TRANSPORTS = ("stdio", "sse", "streamable-http")


def build_registry(config: ServerConfig) -> ToolRegistry:
    """Wire the tool registry and its collaborators from configuration."""
    store: Optional[CacheStore] = None
    if config.cache.backend == "sqlite" or config.cache.record_tool_outputs:
        store = CacheStore(config.cache.sqlite_path)

    cache = create_response_cache(config.cache, config.redis, store)
    http_client = HttpClient(
        config.http.default_ttl_ms, cache=cache, timeout_seconds=config.http.timeout_seconds
    )
    detectors = GapDetectorRegistry(max_gap_ms=config.gap.max_gap_ms, time_basis=config.gap.time_basis)
    exchange = ExchangeClient(config=config, cache=cache)

    return ToolRegistry(
        create_observability_tools(
            http_client, detectors=detectors, endpoints=config.endpoints, audit_sink=logging_audit_sink
        ),
        create_market_tools(exchange, audit_sink=logging_audit_sink),
        store=store,
        http_client=http_client,
        record_outputs=config.cache.record_tool_outputs,
    )


# Global server config - can be overridden via environment or init
_config = DEFAULT_CONFIG
server = FastMCP("crypto-observability-mcp")
_registry: Optional[ToolRegistry] = None


def _get_registry() -> ToolRegistry:
    global _registry
    if _registry is None:
        _registry = build_registry(_config)
    return _registry


async def _call(name: str, **arguments: Any) -> Dict[str, Any]:
    args = {key: value for key, value in arguments.items() if value is not None}
    try:
        return await _get_registry().call_tool(name, args)
    except CryptoMCPError as exc:
        return {"error": str(exc)}


@server.tool()
async def observability_time_window_snapshot(
    anchor_ts_ms: Optional[int] = None, window_ms: Optional[int] = None, note: Optional[str] = None
) -> Dict[str, Any]:
    """Describe the aligned time window for an anchor timestamp (defaults to now, 60s windows)."""
    return await _call("observability_time_window_snapshot", anchor_ts_ms=anchor_ts_ms, window_ms=window_ms, note=note)


@server.tool()
async def observability_dune_query(
    query_url: str, ttl_ms: Optional[int] = None, anchor_ts_ms: Optional[int] = None, window_ms: Optional[int] = None
) -> Dict[str, Any]:
    """Fetch a cached analytics query result. The source is optional; failures show up as quality flags."""
    return await _call(
        "observability_dune_query", query_url=query_url, ttl_ms=ttl_ms, anchor_ts_ms=anchor_ts_ms, window_ms=window_ms
    )


@server.tool()
async def observability_gdelt_events(
    search: Optional[str] = None,
    limit: Optional[int] = None,
    ttl_ms: Optional[int] = None,
    anchor_ts_ms: Optional[int] = None,
    window_ms: Optional[int] = None,
) -> Dict[str, Any]:
    """Fetch recent GDELT news events matching a search string (default 'crypto', 5 events)."""
    return await _call(
        "observability_gdelt_events",
        search=search,
        limit=limit,
        ttl_ms=ttl_ms,
        anchor_ts_ms=anchor_ts_ms,
        window_ms=window_ms,
    )


@server.tool()
async def observability_defillama_tvl(
    protocol: Optional[str] = None,
    ttl_ms: Optional[int] = None,
    anchor_ts_ms: Optional[int] = None,
    window_ms: Optional[int] = None,
) -> Dict[str, Any]:
    """Fetch DeFiLlama TVL for a protocol slug, or 'aggregate' for all protocols."""
    return await _call(
        "observability_defillama_tvl", protocol=protocol, ttl_ms=ttl_ms, anchor_ts_ms=anchor_ts_ms, window_ms=window_ms
    )


@server.tool()
async def observability_rpc_latency(
    endpoints: Optional[List[str]] = None,
    ttl_ms: Optional[int] = None,
    anchor_ts_ms: Optional[int] = None,
    window_ms: Optional[int] = None,
) -> Dict[str, Any]:
    """Time RPC endpoints in parallel and report per-endpoint latency."""
    return await _call(
        "observability_rpc_latency", endpoints=endpoints, ttl_ms=ttl_ms, anchor_ts_ms=anchor_ts_ms, window_ms=window_ms
    )


@server.tool()
async def observability_rpc_balance(
    address: str,
    network: Optional[str] = None,
    rpc_endpoints: Optional[List[str]] = None,
    ttl_ms: Optional[int] = None,
    anchor_ts_ms: Optional[int] = None,
    window_ms: Optional[int] = None,
) -> Dict[str, Any]:
    """Fetch an account balance from the first RPC endpoint, in priority order, that answers."""
    return await _call(
        "observability_rpc_balance",
        address=address,
        network=network,
        rpc_endpoints=rpc_endpoints,
        ttl_ms=ttl_ms,
        anchor_ts_ms=anchor_ts_ms,
        window_ms=window_ms,
    )


@server.tool()
async def observability_ws_gap(
    seq: int,
    ts_ms: int,
    stream: Optional[str] = None,
    anchor_ts_ms: Optional[int] = None,
    window_ms: Optional[int] = None,
) -> Dict[str, Any]:
    """Feed one stream message (sequence number and timestamp) to the gap detector."""
    return await _call(
        "observability_ws_gap", seq=seq, ts_ms=ts_ms, stream=stream, anchor_ts_ms=anchor_ts_ms, window_ms=window_ms
    )


@server.tool()
async def observability_price_window(
    symbol: str, ttl_ms: Optional[int] = None, anchor_ts_ms: Optional[int] = None, window_ms: Optional[int] = None
) -> Dict[str, Any]:
    """Fetch the spot price for a symbol (e.g. BTCUSDT)."""
    return await _call(
        "observability_price_window", symbol=symbol, ttl_ms=ttl_ms, anchor_ts_ms=anchor_ts_ms, window_ms=window_ms
    )


@server.tool()
async def observability_funding_window(
    symbol: str, ttl_ms: Optional[int] = None, anchor_ts_ms: Optional[int] = None, window_ms: Optional[int] = None
) -> Dict[str, Any]:
    """Fetch the current funding rate for a perpetual symbol (e.g. BTCUSDT)."""
    return await _call(
        "observability_funding_window", symbol=symbol, ttl_ms=ttl_ms, anchor_ts_ms=anchor_ts_ms, window_ms=window_ms
    )


@server.tool()
async def observability_liquidity_window(
    symbol: str,
    limit: Optional[int] = None,
    ttl_ms: Optional[int] = None,
    anchor_ts_ms: Optional[int] = None,
    window_ms: Optional[int] = None,
) -> Dict[str, Any]:
    """Fetch an order book depth snapshot; marked truncated when more levels exist than `limit`."""
    return await _call(
        "observability_liquidity_window",
        symbol=symbol,
        limit=limit,
        ttl_ms=ttl_ms,
        anchor_ts_ms=anchor_ts_ms,
        window_ms=window_ms,
    )


@server.tool()
async def market_ticker(symbol: str) -> Dict[str, Any]:
    """Get the latest ticker for a trading pair (e.g. BTC/USDT)."""
    return await _call("market_ticker", symbol=symbol)


@server.tool()
async def market_order_book(symbol: str, limit: int = 20) -> Dict[str, Any]:
    """Get the current order book snapshot for a symbol."""
    return await _call("market_order_book", symbol=symbol, limit=limit)


@server.tool()
async def market_ohlcv(symbol: str, timeframe: str = "1h", limit: int = 100, since: Optional[int] = None) -> Dict[str, Any]:
    """Get historical OHLCV candles for a symbol.

    timeframe: one of 1m, 5m, 15m, 1h, 4h, 1d
    limit: number of candles to return
    """
    return await _call("market_ohlcv", symbol=symbol, timeframe=timeframe, limit=limit, since=since)


def configure_server(config: ServerConfig) -> None:
    """Configure the server with custom settings.

    The previous registry, if one was built, is closed. Call this before
    ``server.run`` and outside a running event loop.

    Args:
        config: ServerConfig instance with desired settings
    """
    global _config, _registry
    if config.server.transport not in TRANSPORTS:
        raise ValueError(f"Unsupported transport: {config.server.transport}")
    previous, _registry = _registry, None
    if previous is not None:
        asyncio.run(previous.aclose())
    _config = config
    _registry = build_registry(config)
    server.settings.host = config.server.host
    server.settings.port = config.server.port


def main() -> None:
    """Entry point: read configuration from the environment and serve."""
    config = load_config()
    # stdout carries the stdio transport
    logging.basicConfig(level=config.logging.level, format=config.logging.format, stream=sys.stderr)
    configure_server(config)
    logger.info("Starting crypto-observability-mcp over %s", config.server.transport)
    server.run(transport=config.server.transport)


if __name__ == "__main__":  # pragma: no cover
    main()
