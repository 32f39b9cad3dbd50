"""Configuration: env vars, provider endpoint, batching and retry policy."""

import os
from dotenv import load_dotenv

load_dotenv()

# ---------------------------------------------------------------------------
# CoinGecko provider
# ---------------------------------------------------------------------------
COINGECKO_BASE_URL: str = os.getenv(
    "COINGECKO_BASE_URL", "https://api.coingecko.com/api/v3"
)
COINGECKO_API_KEY: str = os.getenv("COINGECKO_API_KEY", "")

# Client-enforced per-request timeout; expiry surfaces as a network error.
REQUEST_TIMEOUT_SECONDS: float = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "10"))

# /coins/markets returns at most per_page rows, so one request can carry
# at most this many ids.
MAX_BATCH_SIZE: int = 100

MARKETS_QUERY: dict[str, str] = {
    "vs_currency": "usd",
    "order": "market_cap_desc",
    "per_page": str(MAX_BATCH_SIZE),
    "page": "1",
    "sparkline": "false",
    "price_change_percentage": "24h",
}

# ---------------------------------------------------------------------------
# Rate-limit retry policy (HTTP 429 only)
# ---------------------------------------------------------------------------
RETRY_POLICY: dict[str, int] = {
    "max_attempts": 3,         # Total requests per batch before giving up
    "default_delay_ms": 1000,  # Used when Retry-After is absent or unparseable
    "max_delay_ms": 60_000,    # Upper clamp on server-directed waits
}

# ---------------------------------------------------------------------------
# Watchlist persistence
# ---------------------------------------------------------------------------
WATCHLIST_STORAGE_KEY: str = os.getenv("WATCHLIST_STORAGE_KEY", "userCryptos")

DATABASE_URL: str = os.getenv("DATABASE_URL", "")
DATABASE_PATH: str = os.getenv("DATABASE_PATH", "coinwatch.db")
