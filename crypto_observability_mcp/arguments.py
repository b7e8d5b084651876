"""Pydantic input models for the MCP tools.

Tool calls arrive as loose JSON objects. Each tool validates them against its
model before anything is fetched, and advertises ``model_json_schema()`` as
its input schema.
"""
from __future__ import annotations

from typing import Annotated, Any, Dict, List, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel, Field, StringConstraints, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError

DEFAULT_RPC_ENDPOINTS = ["https://rpc.ankr.com/eth", "https://rpc.ankr.com/bsc"]
DEFAULT_BALANCE_ENDPOINTS = ["https://rpc.ankr.com/eth", "https://cloudflare-eth.com"]
DEFAULT_WS_STREAM = "observability_ws"

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]

ArgsT = TypeVar("ArgsT", bound="ToolArgs")


class ToolArgs(BaseModel):
    """Base for tool inputs: ``null`` and ``[]`` values mean "use the default"."""

    @model_validator(mode="before")
    @classmethod
    def _drop_unset(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None and value != []}
        return data


class WindowArgs(ToolArgs):
    anchor_ts_ms: Optional[int] = Field(
        None, ge=0, description="Anchor timestamp for the time window in milliseconds. Defaults to now."
    )
    window_ms: Optional[int] = Field(None, ge=1, description="Window size to align to. Defaults to 60000ms.")

    def window(self) -> Dict[str, Optional[int]]:
        """``anchor_ts_ms`` / ``window_ms`` keyword arguments for build_observation."""
        return {"anchor_ts_ms": self.anchor_ts_ms, "window_ms": self.window_ms}


class TimeWindowArgs(WindowArgs):
    note: NonEmptyStr = Field("time window anchor established", description="Planned use of the window.")


class DuneQueryArgs(WindowArgs):
    query_url: NonEmptyStr = Field(..., description="Fully qualified query URL returning JSON.")
    ttl_ms: int = Field(30_000, ge=0, description="Cache TTL in milliseconds. Defaults to 30000.")


class GdeltEventsArgs(WindowArgs):
    search: NonEmptyStr = Field("crypto", description="Free text query. Defaults to 'crypto'.")
    limit: int = Field(5, ge=1, description="Maximum number of events to return. Defaults to 5.")
    ttl_ms: int = Field(60_000, ge=0, description="Cache TTL in milliseconds. Defaults to 60000.")


class DefiLlamaArgs(WindowArgs):
    protocol: NonEmptyStr = Field(
        "ethereum", description="Protocol slug (e.g. uniswap), or 'aggregate' for all protocols."
    )
    ttl_ms: int = Field(60_000, ge=0, description="Cache TTL in milliseconds. Defaults to 60000.")


class RpcLatencyArgs(WindowArgs):
    endpoints: List[NonEmptyStr] = Field(
        default_factory=lambda: list(DEFAULT_RPC_ENDPOINTS),
        description="RPC endpoints to measure. Defaults to public endpoints.",
    )
    ttl_ms: int = Field(15_000, ge=0, description="Cache TTL for latency results. Defaults to 15000.")


class RpcBalanceArgs(WindowArgs):
    address: NonEmptyStr = Field(..., description="Account address to query.")
    network: NonEmptyStr = Field("ethereum", description="Network label (e.g. ethereum, bsc).")
    rpc_endpoints: List[NonEmptyStr] = Field(
        default_factory=lambda: list(DEFAULT_BALANCE_ENDPOINTS),
        description="RPC endpoints in priority order. Optional.",
    )
    ttl_ms: int = Field(20_000, ge=0, description="Cache TTL in milliseconds. Defaults to 20000.")


class WsGapArgs(WindowArgs):
    seq: int = Field(..., ge=0, description="Sequence number from the stream payload.")
    ts_ms: int = Field(..., ge=0, description="Timestamp from the stream payload.")
    stream: NonEmptyStr = Field(DEFAULT_WS_STREAM, description="Stream label. Defaults to 'observability_ws'.")


class SymbolArgs(WindowArgs):
    symbol: NonEmptyStr = Field(..., description="Trading symbol (e.g. BTCUSDT, or BTC/USDT for market tools).")

    @field_validator("symbol")
    @classmethod
    def _upper(cls, value: str) -> str:
        return value.upper()


class PriceWindowArgs(SymbolArgs):
    ttl_ms: int = Field(10_000, ge=0, description="Cache TTL in milliseconds. Defaults to 10000.")


class FundingWindowArgs(SymbolArgs):
    ttl_ms: int = Field(120_000, ge=0, description="Cache TTL in milliseconds. Defaults to 120000.")


class LiquidityWindowArgs(SymbolArgs):
    limit: int = Field(10, ge=1, description="Depth limit. Defaults to 10. If more levels exist, the result is truncated.")
    ttl_ms: int = Field(5_000, ge=0, description="Cache TTL in milliseconds. Defaults to 5000.")


class MarketTickerArgs(SymbolArgs):
    pass


class MarketOrderBookArgs(SymbolArgs):
    limit: int = Field(20, ge=1, description="Depth per side. Defaults to 20.")


class MarketOhlcvArgs(SymbolArgs):
    timeframe: NonEmptyStr = Field("1h", description="Candle timeframe: one of 1m, 5m, 15m, 1h, 4h, 1d.")
    limit: int = Field(100, ge=1, description="Number of candles to return. Defaults to 100.")
    since: Optional[int] = Field(None, ge=0, description="Earliest candle timestamp in milliseconds.")


def parse_args(model: Type[ArgsT], args: Optional[Mapping[str, Any]]) -> ArgsT:
    """Validate raw tool arguments, raising the package's ``ValidationError``."""
    try:
        return model.model_validate(dict(args or {}))
    except PydanticValidationError as exc:
        details = "; ".join(
            f"'{'.'.join(str(part) for part in error['loc']) or 'arguments'}': {error['msg']}"
            for error in exc.errors()
        )
        raise ValidationError(f"Invalid arguments: {details}") from exc
