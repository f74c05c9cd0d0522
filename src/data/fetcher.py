"""
Yahoo Finance price sampler.
"""

import logging
from datetime import datetime
from typing import Optional

import yfinance as yf

from src.database.models import Asset, PricePoint
from src.database.repository import AssetRepository, PriceRepository
from src.timeutils import utcnow

logger = logging.getLogger(__name__)

SOURCE = "yahoo_finance"


class PriceSampler:
    """Appends the latest quote of each asset to the price series."""

    def __init__(self, asset_repo: AssetRepository, price_repo: PriceRepository):
        self.asset_repo = asset_repo
        self.price_repo = price_repo

    def get_quote(self, ticker: str) -> tuple[float, float]:
        """
        Fetch the current price and volume.

        Args:
            ticker: Provider symbol (e.g., "AAPL", "BTC-USD")

        Returns:
            (price, volume)

        Raises:
            ValueError: If symbol is invalid or data unavailable
        """
        info = yf.Ticker(ticker).info

        if not info:
            raise ValueError(f"Invalid symbol or no data available: {ticker}")

        # Use regularMarketPrice if available, otherwise fall back to previousClose
        price = info.get("regularMarketPrice")
        if price is None:
            price = info.get("previousClose")

        if price is None:
            raise ValueError(f"Invalid symbol or no data available: {ticker}")

        return float(price), float(info.get("volume") or 0)

    def sample_asset(self, asset: Asset, now: Optional[datetime] = None) -> PricePoint:
        """Fetch and store one sample for an asset."""
        price, volume = self.get_quote(asset.provider_symbol or asset.symbol)
        return self.price_repo.add(
            PricePoint(
                asset_id=asset.id,
                timestamp_utc=now or utcnow(),
                price=price,
                volume=volume,
                source=SOURCE,
            )
        )

    def sample_all(self, now: Optional[datetime] = None) -> list[PricePoint]:
        """
        Sample every asset; assets that fail are logged and skipped.

        Returns:
            Stored price points
        """
        now = now or utcnow()
        points = []
        for asset in self.asset_repo.list_all():
            try:
                points.append(self.sample_asset(asset, now))
            except Exception as e:
                logger.warning(f"Could not sample {asset.symbol}: {e}")
        return points
