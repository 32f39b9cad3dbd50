"""Data providers package."""

from coinwatch.providers.base import AssetRecord, DataProvider, MarketDataError
from coinwatch.providers.coingecko import CoinGeckoProvider

__all__ = ["AssetRecord", "CoinGeckoProvider", "DataProvider", "MarketDataError"]
