"""Observability tool adapters.

Each adapter binds one upstream data source to the observation builder.
Upstream sources are fetched as optional: an unavailable source yields an
observation with quality flags and empty fields, never an exception. Only
invalid arguments raise, before anything is fetched.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Type
from urllib.parse import quote

from . import timeutils
from .arguments import (
    DefiLlamaArgs,
    DuneQueryArgs,
    FundingWindowArgs,
    GdeltEventsArgs,
    LiquidityWindowArgs,
    PriceWindowArgs,
    RpcBalanceArgs,
    RpcLatencyArgs,
    TimeWindowArgs,
    ToolArgs,
    WsGapArgs,
    parse_args,
)
from .config import EndpointConfig
from .fallback import fan_out_parallel, first_success_sequential
from .gap_detector import GapDetectorRegistry, WsMessage
from .http_client import HttpClient
from .observation import (
    TRUNCATED_BY_LIMIT,
    AuditSink,
    Observation,
    RawProvenance,
    build_observation,
    merge_quality_flags,
)
from .response_cache import CachedResponse

MAX_DEPTH_LIMIT = 100

OBSERVATION_OUTPUT_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "ts_ms": {"type": "number"},
        "data_age_ms": {"type": "number"},
        "quality_flags": {"type": "array", "items": {"type": "string"}},
        "truncated": {"type": "boolean"},
        "truncation_reason": {"type": "string"},
        "provenance": {"type": "object"},
        "window": {"type": "object"},
        "data": {"type": "object"},
    },
    "required": ["ts_ms", "data_age_ms", "provenance", "window", "data"],
}


@dataclass(frozen=True)
class ObservabilityTool:
    name: str
    description: str
    args_model: Type[ToolArgs]
    execute: Callable[[Mapping[str, Any]], Awaitable[Observation]]

    @property
    def input_schema(self) -> Dict[str, Any]:
        return self.args_model.model_json_schema()

    def describe(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
            "outputSchema": OBSERVATION_OUTPUT_SCHEMA,
        }


def _provenance(response: CachedResponse, reference: str, ttl_ms: int) -> RawProvenance:
    return RawProvenance(
        source=response.source, reference=reference, ts_ms=response.ts_ms, ttl_ms=ttl_ms, hash=response.hash
    )


def _as_dict(value: Any) -> Optional[Dict[str, Any]]:
    return value if isinstance(value, dict) else None


def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


# -- adapters -----------------------------------------------------------------


def create_time_window_tool(audit_sink: Optional[AuditSink] = None) -> ObservabilityTool:
    """Synthetic observation describing the aligned time window for an anchor."""
    calc_version = "time_window_snapshot:v1"

    async def execute(args: Mapping[str, Any]) -> Observation:
        params = parse_args(TimeWindowArgs, args)
        window = params.window()
        note = params.note
        source_ts = window["anchor_ts_ms"] if window["anchor_ts_ms"] is not None else timeutils.now_ms()
        return build_observation(
            {"note": note},
            source_ts_ms=source_ts,
            calc_version=calc_version,
            raw_provenance=[RawProvenance(source="internal", reference="time_window_snapshot", ts_ms=source_ts)],
            audit_sink=audit_sink,
            **window,
        )

    return ObservabilityTool(
        name="observability_time_window_snapshot",
        description="Generate a synthetic observation describing the unified time window for an anchor timestamp.",
        args_model=TimeWindowArgs,
        execute=execute,
    )


def create_dune_analytics_tool(http_client: HttpClient, audit_sink: Optional[AuditSink] = None) -> ObservabilityTool:
    calc_version = "dune_analytics:v1"

    async def execute(args: Mapping[str, Any]) -> Observation:
        params = parse_args(DuneQueryArgs, args)
        window = params.window()
        query_url = params.query_url
        ttl_ms = params.ttl_ms

        result = await http_client.fetch_json(query_url, ttl_ms=ttl_ms, optional=True, source="dune")
        flags = merge_quality_flags(result.quality_flags, [] if result.value is not None else ["dune_missing"])

        return build_observation(
            {"metrics": result.value if result.value is not None else {}},
            source_ts_ms=result.ts_ms,
            calc_version=calc_version,
            raw_provenance=[_provenance(result, query_url, ttl_ms)],
            quality_flags=flags,
            audit_sink=audit_sink,
            **window,
        )

    return ObservabilityTool(
        name="observability_dune_query",
        description="Fetch a cached analytics query result (optional source) with provenance and quality flags.",
        args_model=DuneQueryArgs,
        execute=execute,
    )


def create_gdelt_events_tool(
    http_client: HttpClient,
    endpoints: Optional[EndpointConfig] = None,
    audit_sink: Optional[AuditSink] = None,
) -> ObservabilityTool:
    calc_version = "gdelt_events:v1"
    endpoints = endpoints or EndpointConfig()

    async def execute(args: Mapping[str, Any]) -> Observation:
        params = parse_args(GdeltEventsArgs, args)
        window = params.window()
        search = params.search
        limit = params.limit
        ttl_ms = params.ttl_ms
        url = f"{endpoints.gdelt_query_endpoint}?query={quote(search, safe='')}&format=json"

        result = await http_client.fetch_json(url, ttl_ms=ttl_ms, optional=True, source="gdelt")
        articles = _as_list((_as_dict(result.value) or {}).get("articles"))
        events = articles[:limit]
        truncated = len(articles) > len(events)
        flags = merge_quality_flags(result.quality_flags, [] if result.value is not None else ["gdelt_missing"])

        return build_observation(
            {"events": events, "total_available": len(articles)},
            source_ts_ms=result.ts_ms,
            calc_version=calc_version,
            raw_provenance=[_provenance(result, url, ttl_ms)],
            quality_flags=flags,
            truncated=truncated,
            truncation_reason=TRUNCATED_BY_LIMIT if truncated else None,
            audit_sink=audit_sink,
            **window,
        )

    return ObservabilityTool(
        name="observability_gdelt_events",
        description="Fetch recent GDELT news events (optional source) with truncation accounting and quality flags.",
        args_model=GdeltEventsArgs,
        execute=execute,
    )


def create_defillama_metrics_tool(
    http_client: HttpClient,
    endpoints: Optional[EndpointConfig] = None,
    audit_sink: Optional[AuditSink] = None,
) -> ObservabilityTool:
    calc_version = "defillama_metrics:v1"
    endpoints = endpoints or EndpointConfig()

    async def execute(args: Mapping[str, Any]) -> Observation:
        params = parse_args(DefiLlamaArgs, args)
        window = params.window()
        protocol = params.protocol
        ttl_ms = params.ttl_ms
        aggregate = protocol == "aggregate"
        if aggregate:
            url = f"{endpoints.defillama_base_url}/protocols"
        else:
            url = f"{endpoints.defillama_base_url}/protocol/{quote(protocol, safe='')}"

        result = await http_client.fetch_json(url, ttl_ms=ttl_ms, optional=True, source="defillama")
        if result.value is not None:
            tvl = result.value
        else:
            tvl = [] if aggregate else {}
        flags = merge_quality_flags(result.quality_flags, [] if result.value is not None else ["defillama_missing"])

        return build_observation(
            {"protocol": protocol, "tvl": tvl},
            source_ts_ms=result.ts_ms,
            calc_version=calc_version,
            raw_provenance=[_provenance(result, url, ttl_ms)],
            quality_flags=flags,
            audit_sink=audit_sink,
            **window,
        )

    return ObservabilityTool(
        name="observability_defillama_tvl",
        description="Fetch DeFiLlama TVL metrics (optional source) with caching, provenance, and quality flags.",
        args_model=DefiLlamaArgs,
        execute=execute,
    )


def create_rpc_latency_tool(http_client: HttpClient, audit_sink: Optional[AuditSink] = None) -> ObservabilityTool:
    """Time several RPC endpoints concurrently and report per-endpoint latency."""
    calc_version = "rpc_latency:v1"

    async def execute(args: Mapping[str, Any]) -> Observation:
        params = parse_args(RpcLatencyArgs, args)
        window = params.window()
        endpoints = params.endpoints
        ttl_ms = params.ttl_ms

        async def measure(endpoint: str) -> Dict[str, Any]:
            started = time.monotonic()
            response = await http_client.fetch_json(
                endpoint,
                method="POST",
                ttl_ms=ttl_ms,
                optional=True,
                source="rpc",
                cache_key=f"rpc-{endpoint}",
                headers={"Content-Type": "application/json"},
                json_body={"jsonrpc": "2.0", "id": 1, "method": "eth_blockNumber", "params": []},
            )
            latency_ms = round((time.monotonic() - started) * 1000, 3)
            return {
                "endpoint": endpoint,
                "latency_ms": latency_ms if response.value is not None else None,
                "quality_flags": response.quality_flags,
                "hash": response.hash,
                "ts_ms": response.ts_ms,
            }

        measurements = await fan_out_parallel(endpoints, measure)

        return build_observation(
            {"measurements": measurements},
            source_ts_ms=timeutils.now_ms(),
            calc_version=calc_version,
            raw_provenance=[
                RawProvenance(source="rpc", reference=p["endpoint"], ts_ms=p["ts_ms"], ttl_ms=ttl_ms, hash=p["hash"])
                for p in measurements
            ],
            quality_flags=merge_quality_flags(*(p["quality_flags"] for p in measurements)),
            audit_sink=audit_sink,
            **window,
        )

    return ObservabilityTool(
        name="observability_rpc_latency",
        description="Measure latency against multiple RPC providers in parallel with caching and quality flags.",
        args_model=RpcLatencyArgs,
        execute=execute,
    )


def create_rpc_balance_tool(http_client: HttpClient, audit_sink: Optional[AuditSink] = None) -> ObservabilityTool:
    """Fetch an account balance from the first RPC endpoint that answers."""
    calc_version = "rpc_balance:v1"

    async def execute(args: Mapping[str, Any]) -> Observation:
        params = parse_args(RpcBalanceArgs, args)
        window = params.window()
        address = params.address
        network = params.network
        endpoints = params.rpc_endpoints
        ttl_ms = params.ttl_ms

        async def attempt(endpoint: str) -> Dict[str, Any]:
            response = await http_client.fetch_json(
                endpoint,
                method="POST",
                ttl_ms=ttl_ms,
                optional=True,
                source="rpc",
                cache_key=f"rpc-balance-{endpoint}-{address}",
                headers={"Content-Type": "application/json"},
                json_body={"jsonrpc": "2.0", "id": 1, "method": "eth_getBalance", "params": [address, "latest"]},
            )
            return {
                "endpoint": endpoint,
                "raw": response.value,
                "quality_flags": response.quality_flags,
                "hash": response.hash,
                "ts_ms": response.ts_ms,
            }

        def has_result(attempt_info: Dict[str, Any]) -> bool:
            return bool((_as_dict(attempt_info["raw"]) or {}).get("result"))

        attempts = await first_success_sequential(endpoints, attempt, has_result)
        primary = next((a for a in attempts if has_result(a)), None)
        flags = merge_quality_flags(
            *(a["quality_flags"] for a in attempts), [] if primary else ["no_successful_rpc"]
        )

        return build_observation(
            {
                "address": address,
                "network": network,
                "balance": primary["raw"]["result"] if primary else None,
                "attempts": attempts,
            },
            source_ts_ms=primary["ts_ms"] if primary else timeutils.now_ms(),
            calc_version=calc_version,
            raw_provenance=[
                RawProvenance(source="rpc", reference=a["endpoint"], ts_ms=a["ts_ms"], ttl_ms=ttl_ms, hash=a["hash"])
                for a in attempts
            ],
            quality_flags=flags,
            audit_sink=audit_sink,
            **window,
        )

    return ObservabilityTool(
        name="observability_rpc_balance",
        description="Fetch an account balance using a priority list of RPC providers with optional-source degradation.",
        args_model=RpcBalanceArgs,
        execute=execute,
    )


def create_ws_gap_tool(
    detectors: Optional[GapDetectorRegistry] = None, audit_sink: Optional[AuditSink] = None
) -> ObservabilityTool:
    calc_version = "ws_gap_monitor:v1"
    detectors = detectors or GapDetectorRegistry()

    async def execute(args: Mapping[str, Any]) -> Observation:
        params = parse_args(WsGapArgs, args)
        window = params.window()
        seq = params.seq
        ts_ms = params.ts_ms
        stream = params.stream

        event = detectors.get(stream).ingest(WsMessage(seq=seq, ts_ms=ts_ms, payload=dict(args or {})))

        return build_observation(
            {
                "stream": stream,
                "seq_received": seq,
                "ws_gap_detected": event.gap_detected,
                "expected_next_seq": event.expected_next_seq,
            },
            source_ts_ms=ts_ms,
            calc_version=calc_version,
            raw_provenance=[RawProvenance(source="ws", reference="ingest", ts_ms=ts_ms)],
            quality_flags=[event.quality_flag] if event.quality_flag else [],
            audit_sink=audit_sink,
            **window,
        )

    return ObservabilityTool(
        name="observability_ws_gap",
        description="Detect websocket sequence/timing gaps and emit quality flags for downstream consumers.",
        args_model=WsGapArgs,
        execute=execute,
    )


def create_price_window_tool(
    http_client: HttpClient,
    endpoints: Optional[EndpointConfig] = None,
    audit_sink: Optional[AuditSink] = None,
) -> ObservabilityTool:
    calc_version = "price_windowed:v1"
    endpoints = endpoints or EndpointConfig()

    async def execute(args: Mapping[str, Any]) -> Observation:
        params = parse_args(PriceWindowArgs, args)
        window = params.window()
        symbol = params.symbol
        ttl_ms = params.ttl_ms
        url = f"{endpoints.binance_api_url}/api/v3/ticker/price?symbol={symbol}"

        result = await http_client.fetch_json(
            url, ttl_ms=ttl_ms, optional=True, source="binance_rest", cache_key=f"price-{symbol}"
        )
        value = _as_dict(result.value)
        flags = merge_quality_flags(result.quality_flags, [] if value else ["price_missing"])

        return build_observation(
            {"symbol": symbol, "price": value.get("price") if value else None},
            source_ts_ms=result.ts_ms,
            calc_version=calc_version,
            raw_provenance=[_provenance(result, url, ttl_ms)],
            quality_flags=flags,
            audit_sink=audit_sink,
            **window,
        )

    return ObservabilityTool(
        name="observability_price_window",
        description="Fetch spot price with cache-aware REST calls and quality flag propagation.",
        args_model=PriceWindowArgs,
        execute=execute,
    )


def create_funding_window_tool(
    http_client: HttpClient,
    endpoints: Optional[EndpointConfig] = None,
    audit_sink: Optional[AuditSink] = None,
) -> ObservabilityTool:
    calc_version = "funding_windowed:v1"
    endpoints = endpoints or EndpointConfig()

    async def execute(args: Mapping[str, Any]) -> Observation:
        params = parse_args(FundingWindowArgs, args)
        window = params.window()
        symbol = params.symbol
        ttl_ms = params.ttl_ms
        url = f"{endpoints.binance_futures_url}/fapi/v1/premiumIndex?symbol={symbol}"

        result = await http_client.fetch_json(
            url, ttl_ms=ttl_ms, optional=True, source="binance_futures", cache_key=f"funding-{symbol}"
        )
        value = _as_dict(result.value) or {}
        flags = merge_quality_flags(result.quality_flags, [] if value else ["funding_missing"])

        return build_observation(
            {
                "symbol": symbol,
                "funding_rate": value.get("lastFundingRate"),
                "next_funding_time_ms": value.get("nextFundingTime"),
            },
            source_ts_ms=result.ts_ms,
            calc_version=calc_version,
            raw_provenance=[_provenance(result, url, ttl_ms)],
            quality_flags=flags,
            audit_sink=audit_sink,
            **window,
        )

    return ObservabilityTool(
        name="observability_funding_window",
        description="Fetch the current perpetual funding rate with TTL-aware caching and provenance metadata.",
        args_model=FundingWindowArgs,
        execute=execute,
    )


def create_liquidity_window_tool(
    http_client: HttpClient,
    endpoints: Optional[EndpointConfig] = None,
    audit_sink: Optional[AuditSink] = None,
) -> ObservabilityTool:
    calc_version = "liquidity_windowed:v1"
    endpoints = endpoints or EndpointConfig()

    async def execute(args: Mapping[str, Any]) -> Observation:
        params = parse_args(LiquidityWindowArgs, args)
        window = params.window()
        symbol = params.symbol
        limit = params.limit
        ttl_ms = params.ttl_ms
        url = f"{endpoints.binance_api_url}/api/v3/depth?symbol={symbol}&limit={min(limit, MAX_DEPTH_LIMIT)}"

        result = await http_client.fetch_json(
            url, ttl_ms=ttl_ms, optional=True, source="binance_rest", cache_key=f"depth-{symbol}-{limit}"
        )
        book = _as_dict(result.value) or {}
        all_bids = _as_list(book.get("bids"))
        all_asks = _as_list(book.get("asks"))
        bids, asks = all_bids[:limit], all_asks[:limit]
        truncated = len(all_bids) > len(bids) or len(all_asks) > len(asks)
        flags = merge_quality_flags(result.quality_flags, [] if book else ["orderbook_missing"])

        return build_observation(
            {
                "symbol": symbol,
                "bids": bids,
                "asks": asks,
                "available_depth": {"bids": len(all_bids), "asks": len(all_asks)},
            },
            source_ts_ms=result.ts_ms,
            calc_version=calc_version,
            raw_provenance=[_provenance(result, url, ttl_ms)],
            quality_flags=flags,
            truncated=truncated,
            truncation_reason=TRUNCATED_BY_LIMIT if truncated else None,
            audit_sink=audit_sink,
            **window,
        )

    return ObservabilityTool(
        name="observability_liquidity_window",
        description="Fetch an order book depth snapshot with truncation handling and quality flags.",
        args_model=LiquidityWindowArgs,
        execute=execute,
    )
