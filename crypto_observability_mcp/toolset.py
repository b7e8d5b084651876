"""Tool construction and name-prefix routing."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .adapters import (
    ObservabilityTool,
    create_defillama_metrics_tool,
    create_dune_analytics_tool,
    create_funding_window_tool,
    create_gdelt_events_tool,
    create_liquidity_window_tool,
    create_price_window_tool,
    create_rpc_balance_tool,
    create_rpc_latency_tool,
    create_time_window_tool,
    create_ws_gap_tool,
)
from .config import EndpointConfig
from .errors import UnknownToolError
from .gap_detector import GapDetectorRegistry
from .hashing import canonical_json
from .http_client import HttpClient
from .observation import AuditSink
from .store import CacheStore

logger = logging.getLogger(__name__)

OBSERVABILITY_PREFIX = "observability_"
MARKET_PREFIX = "market_"


def create_observability_tools(
    http_client: Optional[HttpClient] = None,
    *,
    detectors: Optional[GapDetectorRegistry] = None,
    endpoints: Optional[EndpointConfig] = None,
    audit_sink: Optional[AuditSink] = None,
) -> List[ObservabilityTool]:
    """Build the ten observability tools around shared collaborators."""
    client = http_client or HttpClient()
    detectors = detectors or GapDetectorRegistry()
    return [
        create_time_window_tool(audit_sink),
        create_dune_analytics_tool(client, audit_sink),
        create_gdelt_events_tool(client, endpoints, audit_sink),
        create_defillama_metrics_tool(client, endpoints, audit_sink),
        create_rpc_latency_tool(client, audit_sink),
        create_rpc_balance_tool(client, audit_sink),
        create_ws_gap_tool(detectors, audit_sink),
        create_price_window_tool(client, endpoints, audit_sink),
        create_funding_window_tool(client, endpoints, audit_sink),
        create_liquidity_window_tool(client, endpoints, audit_sink),
    ]


class ToolRegistry:
    """Routes tool calls to observability or market tools by name prefix.

    When a store is given and ``record_outputs`` is set, every successful output
    is recorded in it keyed by the hash of the call arguments. The registry owns
    the HTTP client and store it is given, and ``aclose`` releases both.
    """

    def __init__(
        self,
        observability_tools: Sequence[ObservabilityTool],
        market_tools: Sequence[ObservabilityTool] = (),
        store: Optional[CacheStore] = None,
        *,
        http_client: Optional[HttpClient] = None,
        record_outputs: bool = True,
    ) -> None:
        self._groups: Dict[str, Dict[str, ObservabilityTool]] = {
            OBSERVABILITY_PREFIX: {t.name: t for t in observability_tools},
            MARKET_PREFIX: {t.name: t for t in market_tools},
        }
        self._store = store
        self._http_client = http_client
        self._record_outputs = record_outputs

    def list_tools(self) -> List[Dict[str, Any]]:
        return [tool.describe() for group in self._groups.values() for tool in group.values()]

    def names(self) -> List[str]:
        return [name for group in self._groups.values() for name in group]

    def _route(self, name: str) -> ObservabilityTool:
        for prefix, group in self._groups.items():
            if name.startswith(prefix) and name in group:
                return group[name]
        raise UnknownToolError(f"Unknown tool requested: {name}")

    async def call_tool(self, name: str, args: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        tool = self._route(name)
        args = dict(args or {})
        observation = await tool.execute(args)
        output = observation.to_dict()
        logger.debug("Executed %s", name)
        if self._store is not None and self._record_outputs:
            self._record(name, args, output)
        return output

    def _record(self, name: str, args: Mapping[str, Any], output: Dict[str, Any]) -> None:
        try:
            self._store.set_tool_output(name, canonical_json(args), json.dumps(output, default=str))
        except Exception:
            logger.exception("Failed to record output of %s", name)

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
        if self._store is not None:
            self._store.close()

