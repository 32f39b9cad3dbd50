#!/usr/bin/env python3
"""Live check of the refresh engine against the real CoinGecko API.

Drives a MarketDataStore through an initial fetch, an identifier change and
a manual reload, printing every state transition and the final records.

Usage: python scripts/live_fetch_check.py [id ...]
"""

import asyncio
import logging
import os
import sys

# Ensure project root is on sys.path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("live_fetch_check")


async def main(ids: list[str]) -> int:
    from coinwatch.formatting import format_change, format_price
    from coinwatch.providers.coingecko import CoinGeckoProvider
    from coinwatch.services.market_store import Failure, MarketDataStore, Success

    print("=" * 70)
    print("  COINWATCH: LIVE FETCH CHECK")
    print("=" * 70)

    provider = CoinGeckoProvider()
    store = MarketDataStore(provider)
    store.subscribe(lambda state: print(f"  state -> {type(state).__name__}"))

    try:
        # -------------------------------------------------------------------
        # Step 1: initial fetch
        # -------------------------------------------------------------------
        print(f"\n--- Step 1: Fetch {', '.join(ids)} ---")
        store.set_identifiers(ids)
        await store.wait_idle()

        # -------------------------------------------------------------------
        # Step 2: value-equal ids must not refetch
        # -------------------------------------------------------------------
        print("\n--- Step 2: Same ids again (expect no transition) ---")
        if store.set_identifiers(list(ids)) is not None:
            print("  ERROR: value-equal ids triggered a refetch")
            return 1

        # -------------------------------------------------------------------
        # Step 3: manual reload
        # -------------------------------------------------------------------
        print("\n--- Step 3: Manual reload ---")
        store.reload()
        await store.wait_idle()
    finally:
        await store.aclose()
        await provider.close()

    state = store.current_state()
    if isinstance(state, Failure):
        print(f"\n  ERROR [{state.kind.value}]: {state.message}")
        return 1
    if not isinstance(state, Success):
        print(f"\n  ERROR: unexpected final state {state!r}")
        return 1

    print(f"\n  Received {len(state.records)} records:")
    for rec in state.records:
        print(
            f"    {rec.symbol:8s} {rec.name:20s} "
            f"{format_price(rec.price_usd):>14s}  {format_change(rec.change_24h_pct)}"
        )

    missing = set(ids) - {rec.id for rec in state.records}
    if missing:
        print(f"  Not recognized upstream: {', '.join(sorted(missing))}")

    print("\n" + "=" * 70)
    print("  LIVE FETCH CHECK COMPLETE")
    print("=" * 70)
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main(sys.argv[1:] or ["bitcoin", "ethereum", "solana"])))
