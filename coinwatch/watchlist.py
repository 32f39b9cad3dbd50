"""Watchlist membership and the /api/watchlist router.

Membership is a JSON-encoded list of provider ids stored under one key in an
injected key-value storage.  The router is the integration layer between
the membership list and the ``MarketDataStore`` refresh engine: every
membership change is pushed into the store with ``set_identifiers``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Protocol

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from coinwatch.config import WATCHLIST_STORAGE_KEY
from coinwatch.formatting import serialize_record
from coinwatch.providers.base import DataProvider, MarketDataError
from coinwatch.services.market_store import (
    Failure,
    Idle,
    Loading,
    MarketDataStore,
    Success,
)

logger = logging.getLogger(__name__)


class WatchlistError(Exception):
    pass


class AlreadyInWatchlist(WatchlistError):
    def __init__(self, asset_id: str) -> None:
        super().__init__(f"{asset_id} is already in your list.")
        self.asset_id = asset_id


class NotInWatchlist(WatchlistError):
    def __init__(self, asset_id: str) -> None:
        super().__init__(f"{asset_id} is not in your list.")
        self.asset_id = asset_id


class AssetNotFound(WatchlistError):
    def __init__(self, query: str) -> None:
        super().__init__(
            f'Could not find "{query.strip()}". '
            "Please check the symbol or name and try again."
        )
        self.query = query


# ---------------------------------------------------------------------------
# Storage port
# ---------------------------------------------------------------------------


class KeyValueStorage(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...


class InMemoryStorage:
    """Process-local ``KeyValueStorage``."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def find_match(coins: list[dict], query: str) -> dict | None:
    """Pick the search hit for *query*: exact symbol first, then exact name.

    Both comparisons are case-insensitive.
    """
    needle = query.strip().lower()
    if not needle:
        return None
    for coin in coins:
        if str(coin.get("symbol", "")).lower() == needle:
            return coin
    for coin in coins:
        if str(coin.get("name", "")).lower() == needle:
            return coin
    return None


class Watchlist:
    """Ordered, duplicate-free list of asset ids persisted under one key."""

    def __init__(
        self,
        storage: KeyValueStorage,
        key: str = WATCHLIST_STORAGE_KEY,
    ) -> None:
        self._storage = storage
        self._key = key
        self._lock = asyncio.Lock()

    async def load(self) -> list[str]:
        """Return the stored ids; unreadable data counts as an empty list."""
        raw = await self._storage.get(self._key)
        if raw is None:
            return []
        try:
            ids = json.loads(raw)
        except ValueError:
            logger.warning("Stored watchlist %r is not valid JSON, ignoring", self._key)
            return []
        if not isinstance(ids, list):
            logger.warning("Stored watchlist %r is not a list, ignoring", self._key)
            return []
        return [i for i in ids if isinstance(i, str)]

    async def _save(self, ids: list[str]) -> None:
        await self._storage.set(self._key, json.dumps(ids))

    async def add(self, asset_id: str) -> list[str]:
        async with self._lock:
            ids = await self.load()
            if asset_id in ids:
                raise AlreadyInWatchlist(asset_id)
            ids.append(asset_id)
            await self._save(ids)
        logger.info("Added %s to watchlist", asset_id)
        return ids

    async def remove(self, asset_id: str) -> list[str]:
        async with self._lock:
            ids = await self.load()
            if asset_id not in ids:
                raise NotInWatchlist(asset_id)
            ids.remove(asset_id)
            await self._save(ids)
        logger.info("Removed %s from watchlist", asset_id)
        return ids

    async def add_by_query(self, provider: DataProvider, query: str) -> dict:
        """Resolve *query* through provider search and add the matching id."""
        coins = await provider.search(query)
        match = find_match(coins, query)
        if match is None:
            raise AssetNotFound(query)
        await self.add(match["id"])
        return match


def state_payload(store: MarketDataStore) -> dict:
    """Serialize the store's current state for the presentation layer."""
    state = store.current_state()
    payload: dict = {
        "status": "idle",
        "ids": list(store.identifiers),
        "assets": [],
        "error": None,
    }
    if isinstance(state, Idle):
        return payload
    if isinstance(state, Loading):
        payload["status"] = "loading"
        records = store.last_records
    elif isinstance(state, Success):
        payload["status"] = "success"
        records = state.records
    elif isinstance(state, Failure):
        payload["status"] = "failure"
        payload["error"] = {"kind": state.kind.value, "message": state.message}
        payload["stale"] = state.stale_records is not None
        records = state.stale_records or ()
    else:
        raise TypeError(f"Unknown fetch state: {state!r}")
    payload["assets"] = [serialize_record(r) for r in records]
    return payload


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------


class AddAssetRequest(BaseModel):
    query: str


# ---------------------------------------------------------------------------
# Dependencies (resources live on app.state, created in the lifespan)
# ---------------------------------------------------------------------------


def get_watchlist(request: Request) -> Watchlist:
    return request.app.state.watchlist


def get_store(request: Request) -> MarketDataStore:
    return request.app.state.store


def get_provider(request: Request) -> DataProvider:
    return request.app.state.provider


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------

router = APIRouter(prefix="/api/watchlist", tags=["watchlist"])


@router.get("")
async def list_watchlist(store: MarketDataStore = Depends(get_store)) -> dict:
    """Return the watchlist ids with the latest fetch state and prices."""
    return state_payload(store)


@router.post("")
async def add_asset(
    body: AddAssetRequest,
    watchlist: Watchlist = Depends(get_watchlist),
    provider: DataProvider = Depends(get_provider),
    store: MarketDataStore = Depends(get_store),
) -> dict:
    """Look up an asset by name or ticker and add it to the watchlist."""
    if not body.query.strip():
        raise HTTPException(status_code=400, detail="Query must not be empty")

    try:
        match = await watchlist.add_by_query(provider, body.query)
    except AssetNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except AlreadyInWatchlist as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except MarketDataError as exc:
        logger.warning("Asset search failed for %r: %s", body.query, exc)
        raise HTTPException(status_code=502, detail=exc.user_message)
    except Exception:
        logger.exception("Failed to add asset to watchlist")
        raise HTTPException(status_code=500, detail="Could not save. Try again.")

    store.set_identifiers(await watchlist.load())
    return {"status": "ok", "asset": match}


@router.post("/reload")
async def reload_watchlist(store: MarketDataStore = Depends(get_store)) -> dict:
    """Force a refresh of the current watchlist (manual retry, focus regained)."""
    store.reload()
    return {"status": "ok"}


@router.delete("/{asset_id}")
async def remove_asset(
    asset_id: str,
    watchlist: Watchlist = Depends(get_watchlist),
    store: MarketDataStore = Depends(get_store),
) -> dict:
    """Remove an asset id from the watchlist."""
    try:
        ids = await watchlist.remove(asset_id.strip())
    except NotInWatchlist as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except Exception:
        logger.exception("Failed to remove asset from watchlist")
        raise HTTPException(status_code=500, detail="Failed to remove asset")

    store.set_identifiers(ids)
    return {"status": "ok"}
