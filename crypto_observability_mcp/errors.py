"""Error hierarchy for the Crypto Observability MCP server."""
from __future__ import annotations

from typing import Optional


class CryptoMCPError(Exception):
    """Base error for the Crypto Observability MCP server."""


class ValidationError(CryptoMCPError):
    """Raised when tool arguments are missing or malformed."""


class FetchError(CryptoMCPError):
    """Raised when a mandatory HTTP source fails."""

    def __init__(self, message: str, *, url: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class UnknownToolError(CryptoMCPError):
    """Raised when a tool name does not route to any handler."""


class ExchangeUnavailableError(CryptoMCPError):
    """Raised when the upstream exchange API is unavailable or failing."""


class InvalidSymbolError(CryptoMCPError):
    """Raised when a requested trading pair / symbol is invalid."""


class InvalidTimeRangeError(CryptoMCPError):
    """Raised when a requested historical time range is invalid."""
