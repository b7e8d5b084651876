"""Exchange market data tools wrapped in observation envelopes.

Unlike the observability adapters these treat the exchange as a mandatory
source, so exchange failures propagate as ``ExchangeUnavailableError``.
"""
from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from .adapters import ObservabilityTool
from .arguments import MarketOhlcvArgs, MarketOrderBookArgs, MarketTickerArgs, parse_args
from .errors import ExchangeUnavailableError
from .exchange_client import ExchangeClient, Ticker, parse_ohlcv
from .observation import TRUNCATED_BY_LIMIT, AuditSink, Observation, RawProvenance, build_observation
from .response_cache import CachedResponse


def _exchange_provenance(client: ExchangeClient, response: CachedResponse, reference: str) -> RawProvenance:
    return RawProvenance(
        source=response.source,
        reference=f"{client.exchange_id}:{reference}",
        ts_ms=response.ts_ms,
        ttl_ms=response.ttl_ms,
        hash=response.hash,
    )


def create_market_ticker_tool(client: ExchangeClient, audit_sink: Optional[AuditSink] = None) -> ObservabilityTool:
    calc_version = "market_ticker:v1"

    async def execute(args: Mapping[str, Any]) -> Observation:
        params = parse_args(MarketTickerArgs, args)
        window = params.window()
        symbol = params.symbol

        response = client.fetch_ticker(symbol)
        try:
            ticker = Ticker.from_ccxt(symbol, response.value)
        except (KeyError, TypeError, ValueError) as exc:
            raise ExchangeUnavailableError(f"Malformed ticker for {symbol}: {exc}") from exc

        return build_observation(
            ticker.to_dict(),
            source_ts_ms=ticker.timestamp or response.ts_ms,
            calc_version=calc_version,
            raw_provenance=[_exchange_provenance(client, response, f"ticker:{symbol}")],
            audit_sink=audit_sink,
            **window,
        )

    return ObservabilityTool(
        name="market_ticker",
        description="Get the latest ticker for a trading pair (e.g. BTC/USDT).",
        args_model=MarketTickerArgs,
        execute=execute,
    )


def create_market_order_book_tool(client: ExchangeClient, audit_sink: Optional[AuditSink] = None) -> ObservabilityTool:
    calc_version = "market_order_book:v1"

    async def execute(args: Mapping[str, Any]) -> Observation:
        params = parse_args(MarketOrderBookArgs, args)
        window = params.window()
        symbol = params.symbol
        limit = params.limit

        response = client.fetch_order_book(symbol, limit=limit)
        book: Dict[str, Any] = response.value if isinstance(response.value, dict) else {}
        all_bids: List[Any] = book.get("bids") or []
        all_asks: List[Any] = book.get("asks") or []
        bids, asks = all_bids[:limit], all_asks[:limit]
        truncated = len(all_bids) > len(bids) or len(all_asks) > len(asks)

        return build_observation(
            {
                "symbol": symbol,
                "bids": bids,
                "asks": asks,
                "available_depth": {"bids": len(all_bids), "asks": len(all_asks)},
            },
            source_ts_ms=book.get("timestamp") or response.ts_ms,
            calc_version=calc_version,
            raw_provenance=[_exchange_provenance(client, response, f"orderbook:{symbol}")],
            quality_flags=[] if book else ["orderbook_missing"],
            truncated=truncated,
            truncation_reason=TRUNCATED_BY_LIMIT if truncated else None,
            audit_sink=audit_sink,
            **window,
        )

    return ObservabilityTool(
        name="market_order_book",
        description="Get the current order book snapshot for a symbol.",
        args_model=MarketOrderBookArgs,
        execute=execute,
    )


def create_market_ohlcv_tool(client: ExchangeClient, audit_sink: Optional[AuditSink] = None) -> ObservabilityTool:
    calc_version = "market_ohlcv:v1"

    async def execute(args: Mapping[str, Any]) -> Observation:
        params = parse_args(MarketOhlcvArgs, args)
        window = params.window()
        symbol = params.symbol
        timeframe = params.timeframe
        limit = params.limit
        since = params.since

        response = client.fetch_ohlcv(symbol, timeframe, limit=limit, since=since)
        try:
            candles = parse_ohlcv(response.value or [])
        except (TypeError, ValueError) as exc:
            raise ExchangeUnavailableError(f"Malformed OHLCV rows for {symbol}: {exc}") from exc

        return build_observation(
            {"symbol": symbol, "timeframe": timeframe, "candles": [c.to_dict() for c in candles]},
            source_ts_ms=response.ts_ms,
            calc_version=calc_version,
            raw_provenance=[_exchange_provenance(client, response, f"ohlcv:{symbol}:{timeframe}")],
            quality_flags=[] if candles else ["ohlcv_empty"],
            audit_sink=audit_sink,
            **window,
        )

    return ObservabilityTool(
        name="market_ohlcv",
        description="Get historical OHLCV candles for a symbol.",
        args_model=MarketOhlcvArgs,
        execute=execute,
    )


def create_market_tools(client: ExchangeClient, audit_sink: Optional[AuditSink] = None) -> List[ObservabilityTool]:
    return [
        create_market_ticker_tool(client, audit_sink),
        create_market_order_book_tool(client, audit_sink),
        create_market_ohlcv_tool(client, audit_sink),
    ]
