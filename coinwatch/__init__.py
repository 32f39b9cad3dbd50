"""Coinwatch: watchlist price cache for the CoinGecko API."""
