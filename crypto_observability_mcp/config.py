"""Configuration for Crypto Observability MCP server."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from dotenv import load_dotenv


@dataclass
class ExchangeConfig:
    name: str = "binance"
    enable_rate_limit: bool = True


@dataclass
class CacheConfig:
    ttl_seconds: int = 10
    maxsize: int = 1024
    # one of: memory, redis, sqlite
    backend: str = "memory"
    sqlite_path: str = "./data/mcp.sqlite"
    record_tool_outputs: bool = False


@dataclass
class RedisConfig:
    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None


@dataclass
class HttpConfig:
    default_ttl_ms: int = 15_000
    timeout_seconds: float = 10.0


@dataclass
class EndpointConfig:
    binance_api_url: str = "https://api.binance.com"
    binance_futures_url: str = "https://fapi.binance.com"
    gdelt_query_endpoint: str = "https://api.gdeltproject.org/api/v2/doc/doc"
    defillama_base_url: str = "https://api.llama.fi"


@dataclass
class GapConfig:
    max_gap_ms: int = 5_000
    time_basis: str = "receipt"


@dataclass
class TransportConfig:
    # one of: stdio, sse, streamable-http
    transport: str = "stdio"
    host: str = "0.0.0.0"
    port: int = 3000


@dataclass
class LoggingConfig:
    level: str = "INFO"
    format: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass
class ServerConfig:
    exchange: ExchangeConfig = field(default_factory=ExchangeConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    http: HttpConfig = field(default_factory=HttpConfig)
    endpoints: EndpointConfig = field(default_factory=EndpointConfig)
    gap: GapConfig = field(default_factory=GapConfig)
    server: TransportConfig = field(default_factory=TransportConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


DEFAULT_CONFIG = ServerConfig()


def _as_bool(value: Optional[str], fallback: bool) -> bool:
    if value is None:
        return fallback
    return value.lower() == "true"


def _as_int(value: Optional[str], fallback: int) -> int:
    try:
        return int(value) if value is not None else fallback
    except ValueError:
        return fallback


def _as_float(value: Optional[str], fallback: float) -> float:
    try:
        return float(value) if value is not None else fallback
    except ValueError:
        return fallback


def load_config(environ: Optional[Mapping[str, str]] = None) -> ServerConfig:
    """Build a ServerConfig from environment variables.

    When ``environ`` is omitted the process environment is used, after loading
    a ``.env`` file from the working directory if one exists.
    """
    if environ is None:
        load_dotenv()
        environ = os.environ
    env = environ.get

    return ServerConfig(
        exchange=ExchangeConfig(
            name=env("EXCHANGE_NAME", ExchangeConfig.name),
            enable_rate_limit=_as_bool(env("EXCHANGE_RATE_LIMIT"), True),
        ),
        cache=CacheConfig(
            ttl_seconds=_as_int(env("CACHE_TTL"), CacheConfig.ttl_seconds),
            maxsize=_as_int(env("CACHE_MAXSIZE"), CacheConfig.maxsize),
            backend=env("CACHE_BACKEND", CacheConfig.backend).lower(),
            sqlite_path=env("SQLITE_DB_PATH", CacheConfig.sqlite_path),
            record_tool_outputs=_as_bool(env("RECORD_TOOL_OUTPUTS"), False),
        ),
        redis=RedisConfig(
            host=env("REDIS_HOST", RedisConfig.host),
            port=_as_int(env("REDIS_PORT"), RedisConfig.port),
            db=_as_int(env("REDIS_DB"), RedisConfig.db),
            password=env("REDIS_PASSWORD"),
        ),
        http=HttpConfig(
            default_ttl_ms=_as_int(env("HTTP_DEFAULT_TTL_MS"), HttpConfig.default_ttl_ms),
            timeout_seconds=_as_float(env("HTTP_TIMEOUT_SECONDS"), HttpConfig.timeout_seconds),
        ),
        endpoints=EndpointConfig(
            binance_api_url=env("BINANCE_API_URL", EndpointConfig.binance_api_url),
            binance_futures_url=env("BINANCE_FUTURES_URL", EndpointConfig.binance_futures_url),
            gdelt_query_endpoint=env("GDELT_QUERY_ENDPOINT", EndpointConfig.gdelt_query_endpoint),
            defillama_base_url=env("DEFI_LLAMA_BASE_URL", EndpointConfig.defillama_base_url),
        ),
        gap=GapConfig(
            max_gap_ms=_as_int(env("WS_MAX_GAP_MS"), GapConfig.max_gap_ms),
            time_basis=env("WS_GAP_TIME_BASIS", GapConfig.time_basis).lower(),
        ),
        server=TransportConfig(
            transport=env("SERVER_MODE", TransportConfig.transport).lower(),
            host=env("SERVER_HOST", TransportConfig.host),
            port=_as_int(env("SERVER_PORT"), TransportConfig.port),
        ),
        logging=LoggingConfig(level=env("LOG_LEVEL", LoggingConfig.level).upper()),
    )
