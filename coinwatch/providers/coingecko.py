"""CoinGecko API provider for crypto market snapshots and asset search."""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Awaitable, Callable, Iterable

import httpx

from coinwatch.config import (
    COINGECKO_API_KEY,
    COINGECKO_BASE_URL,
    MARKETS_QUERY,
    MAX_BATCH_SIZE,
    REQUEST_TIMEOUT_SECONDS,
)
from coinwatch.providers.base import (
    NO_IMAGE,
    AssetRecord,
    DataProvider,
    MalformedResponse,
    NetworkError,
    RateLimitExceeded,
    UpstreamError,
)
from coinwatch.services.retry import (
    DEFAULT_POLICY,
    STOP,
    RetryPolicy,
    retry_after_ms,
    retry_delay_ms,
)

logger = logging.getLogger(__name__)

_API_KEY_HEADER = "x-cg-demo-api-key"


# ---------------------------------------------------------------------------
# Pure helper functions
# ---------------------------------------------------------------------------


def _unique_ids(ids: Iterable[str]) -> list[str]:
    """Strip, drop blanks and de-duplicate *ids*, keeping first-seen order."""
    cleaned = (i.strip() for i in ids if isinstance(i, str))
    return list(dict.fromkeys(i for i in cleaned if i))


def _chunk(ids: list[str], size: int) -> list[list[str]]:
    return [ids[i:i + size] for i in range(0, len(ids), size)]


def _build_markets_params(batch: list[str]) -> dict[str, str]:
    """Query params for one /coins/markets call covering *batch*."""
    return {**MARKETS_QUERY, "ids": ",".join(batch)}


def _as_float(value: object) -> float | None:
    """Return a finite JSON number as float; ``None`` for anything else.

    Strings, bools, null and the non-standard NaN/Infinity tokens are all
    rejected.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    result = float(value)
    return result if math.isfinite(result) else None


def _parse_market_entry(raw: object) -> AssetRecord:
    """Normalize one /coins/markets element into an ``AssetRecord``.

    Identity fields and ``current_price`` are required; a missing 24h change
    becomes ``0.0`` and a missing or blank ``image`` becomes ``NO_IMAGE``.
    Raises ``KeyError``/``TypeError``/``ValueError`` for unusable entries.
    """
    if not isinstance(raw, dict):
        raise TypeError(f"expected an object, got {type(raw).__name__}")

    fields = {}
    for key in ("id", "name", "symbol"):
        val = raw[key]
        if not isinstance(val, str) or not val.strip():
            raise ValueError(f"invalid {key}: {val!r}")
        fields[key] = val

    price = _as_float(raw.get("current_price"))
    if price is None:
        raise ValueError(f"invalid current_price: {raw.get('current_price')!r}")

    change = _as_float(raw.get("price_change_percentage_24h"))
    image = raw.get("image")

    return AssetRecord(
        id=fields["id"],
        name=fields["name"],
        symbol=fields["symbol"].upper(),
        price_usd=price,
        change_24h_pct=change if change is not None else 0.0,
        icon_uri=image if isinstance(image, str) and image.strip() else NO_IMAGE,
    )


def _parse_markets(raw: object, requested: list[str]) -> list[AssetRecord]:
    """Parse a /coins/markets body for the ids in *requested*.

    The body as a whole must be a JSON array.  Individual bad elements are
    dropped; so are ids that were not asked for and repeated ids.
    """
    if not isinstance(raw, list):
        raise MalformedResponse(
            f"/coins/markets expected a JSON array, got {type(raw).__name__}"
        )

    wanted = set(requested)
    seen: set[str] = set()
    records: list[AssetRecord] = []
    for entry in raw:
        try:
            record = _parse_market_entry(entry)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Dropping unusable market entry: %s", exc)
            continue
        if record.id not in wanted:
            logger.warning("Ignoring unrequested asset %s in response", record.id)
            continue
        if record.id in seen:
            continue
        seen.add(record.id)
        records.append(record)
    return records


def _parse_search_results(raw: object) -> list[dict]:
    """Normalize /search data into a list of ``{id, symbol, name}`` dicts."""
    if not isinstance(raw, dict) or not isinstance(raw.get("coins"), list):
        raise MalformedResponse("/search expected an object with a 'coins' array")

    results: list[dict] = []
    for item in raw["coins"]:
        if not isinstance(item, dict):
            logger.warning("Dropping non-object search result")
            continue
        fields = {key: item.get(key) for key in ("id", "symbol", "name")}
        bad = [k for k, v in fields.items() if not isinstance(v, str) or not v.strip()]
        if bad:
            logger.warning("Dropping search result with invalid %s", ", ".join(bad))
            continue
        results.append(fields)
    return results


# ---------------------------------------------------------------------------
# Provider class
# ---------------------------------------------------------------------------


class CoinGeckoProvider(DataProvider):
    """CoinGecko implementation of the DataProvider interface."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        retry_policy: RetryPolicy = DEFAULT_POLICY,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
        batch_size: int = MAX_BATCH_SIZE,
    ) -> None:
        if client is None:
            headers = {"accept": "application/json"}
            if COINGECKO_API_KEY:
                headers[_API_KEY_HEADER] = COINGECKO_API_KEY
            client = httpx.AsyncClient(
                base_url=COINGECKO_BASE_URL,
                timeout=REQUEST_TIMEOUT_SECONDS,
                headers=headers,
            )
        self._client = client
        self._retry_policy = retry_policy
        self._sleep = sleep
        self._batch_size = batch_size

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def _request(self, endpoint: str, params: dict) -> object:
        """GET *endpoint*, retrying only on 429; returns the decoded JSON body."""
        attempt = 0
        while True:
            attempt += 1
            try:
                resp = await self._client.get(endpoint, params=params)
            except httpx.TransportError as exc:
                raise NetworkError(exc) from exc

            if resp.status_code == 429:
                delay = retry_delay_ms(attempt, resp.headers, self._retry_policy)
                if delay is STOP:
                    hint = retry_after_ms(resp.headers, self._retry_policy)
                    logger.warning(
                        "Rate limited on %s after %d attempts, giving up",
                        endpoint, attempt,
                    )
                    raise RateLimitExceeded(hint)
                logger.warning(
                    "Rate limited on %s, retrying after %dms (attempt %d/%d)",
                    endpoint, delay, attempt, self._retry_policy.max_attempts,
                )
                await self._sleep(delay / 1000)
                continue

            if not resp.is_success:
                raise UpstreamError(resp.status_code)

            try:
                return resp.json()
            except ValueError as exc:
                raise MalformedResponse(f"undecodable body from {endpoint}") from exc

    # -- Public interface ----------------------------------------------------

    async def fetch_market_data(self, ids: list[str]) -> list[AssetRecord]:
        """Fetch market snapshots for *ids* in as few requests as possible.

        One request per ``batch_size`` ids, issued sequentially; results are
        concatenated in batch order.  An empty id list makes no request.
        """
        unique = _unique_ids(ids)
        if not unique:
            return []

        records: list[AssetRecord] = []
        for batch in _chunk(unique, self._batch_size):
            raw = await self._request("/coins/markets", _build_markets_params(batch))
            records.extend(_parse_markets(raw, batch))

        logger.debug("Fetched %d/%d assets", len(records), len(unique))
        return records

    async def search(self, query: str) -> list[dict]:
        """Search for assets matching a name or ticker."""
        query = query.strip()
        if not query:
            return []
        raw = await self._request("/search", {"query": query})
        return _parse_search_results(raw)
