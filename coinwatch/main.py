"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from coinwatch.db import SqlKeyValueStorage, close_db, init_db
from coinwatch.providers.coingecko import CoinGeckoProvider
from coinwatch.services.market_store import MarketDataStore
from coinwatch.watchlist import Watchlist
from coinwatch.watchlist import router as watchlist_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize resources on startup, clean up on shutdown."""
    await init_db()
    app.state.provider = CoinGeckoProvider()
    app.state.watchlist = Watchlist(SqlKeyValueStorage())
    app.state.store = MarketDataStore(app.state.provider)

    # First fetch runs in the background; GET /api/watchlist reports loading.
    app.state.store.set_identifiers(await app.state.watchlist.load())

    logger.info("Coinwatch started")
    yield

    await app.state.store.aclose()
    await app.state.provider.close()
    await close_db()
    logger.info("Coinwatch stopped")


app = FastAPI(title="Coinwatch", lifespan=lifespan)
app.include_router(watchlist_router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/api/health")
async def health() -> dict:
    """Return service health status."""
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
