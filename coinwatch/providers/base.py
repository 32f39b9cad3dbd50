"""Abstract provider interface, normalized records and typed failures."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

# Marker for an asset with no usable image URL.
NO_IMAGE = None


@dataclass(frozen=True)
class AssetRecord:
    """Normalized market snapshot for one asset."""

    id: str
    name: str
    symbol: str
    price_usd: float
    change_24h_pct: float = 0.0
    icon_uri: str | None = NO_IMAGE


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ErrorKind(str, Enum):
    NETWORK_ERROR = "network_error"
    UPSTREAM_ERROR = "upstream_error"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    MALFORMED_RESPONSE = "malformed_response"
    UNEXPECTED = "unexpected_error"


class MarketDataError(Exception):
    """Base class for every failure a provider call can raise."""

    kind: ErrorKind = ErrorKind.UNEXPECTED
    user_message: str = "Unable to load prices."


class NetworkError(MarketDataError):
    """DNS, connection or timeout failure before a response arrived."""

    kind = ErrorKind.NETWORK_ERROR
    user_message = "Unable to load prices. Check your connection and try again."

    def __init__(self, cause: Exception) -> None:
        super().__init__(f"Network error: {cause!r}")
        self.cause = cause


class UpstreamError(MarketDataError):
    """Non-2xx, non-429 response from the provider."""

    kind = ErrorKind.UPSTREAM_ERROR

    def __init__(self, status_code: int) -> None:
        super().__init__(f"Upstream responded with {status_code}")
        self.status_code = status_code

    @property
    def user_message(self) -> str:
        return f"Price service responded with {self.status_code}."


class RateLimitExceeded(MarketDataError):
    """Still rate limited after the retry budget was spent."""

    kind = ErrorKind.RATE_LIMIT_EXCEEDED
    user_message = "Rate limit exceeded. Please try again in a moment."

    def __init__(self, last_wait_hint_ms: int) -> None:
        super().__init__(
            f"Rate limit exceeded (last wait hint {last_wait_hint_ms}ms)"
        )
        self.last_wait_hint_ms = last_wait_hint_ms


class MalformedResponse(MarketDataError):
    """Response body does not have the documented shape."""

    kind = ErrorKind.MALFORMED_RESPONSE
    user_message = "Price service returned an unexpected response."

    def __init__(self, detail: str) -> None:
        super().__init__(f"Malformed response: {detail}")
        self.detail = detail


# ---------------------------------------------------------------------------
# Provider interface
# ---------------------------------------------------------------------------


class DataProvider(ABC):
    """Interface that every market-data provider must implement."""

    @abstractmethod
    async def fetch_market_data(self, ids: list[str]) -> list[AssetRecord]:
        """Fetch current market data for exactly *ids*.

        Ids the provider does not recognize are absent from the result.
        Raises a :class:`MarketDataError` subclass on failure.
        """

    @abstractmethod
    async def search(self, query: str) -> list[dict]:
        """Search for assets matching *query* by name or symbol.

        Returns a list of dicts with: id, symbol, name.
        """
