"""Display formatting applied at the presentation boundary."""

from __future__ import annotations

from coinwatch.providers.base import AssetRecord


def format_price(price_usd: float) -> str:
    """``1234.5`` -> ``"$1234.50"``."""
    return f"${price_usd:.2f}"


def format_change(change_pct: float) -> str:
    """Arrow plus absolute percentage, e.g. ``"↓ 2.31%"``."""
    arrow = "↑" if change_pct >= 0 else "↓"
    return f"{arrow} {abs(change_pct):.2f}%"


def serialize_record(record: AssetRecord) -> dict:
    """JSON-ready dict keeping the raw price next to its display strings."""
    return {
        "id": record.id,
        "name": record.name,
        "symbol": record.symbol,
        "price_usd": record.price_usd,
        "price": format_price(record.price_usd),
        "change_24h_pct": record.change_24h_pct,
        "change": format_change(record.change_24h_pct),
        "icon_uri": record.icon_uri,
    }
