"""
Point-in-time price snapshots built from the price point series.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from src.database.models import PricePoint
from src.database.repository import PriceRepository
from src.timeutils import to_utc

HOUR = timedelta(hours=1)
DAY = timedelta(days=1)
WEEK = timedelta(days=7)

# Samples are read back this far past the longest horizon so a sample
# slightly older than 7 days can still serve as the 7d reference.
LOOKBACK_SLACK = timedelta(hours=1)


@dataclass(frozen=True)
class PriceSnapshot:
    """Current price and reference prices of one asset at a point in time."""

    asset_id: int
    current_price: float
    price_1h_ago: float
    price_24h_ago: float
    price_7d_ago: float
    timestamp: datetime


def price_at_or_before(
    points: list[PricePoint], cutoff: datetime
) -> Optional[float]:
    """Price of the newest sample taken at or before ``cutoff``.

    ``points`` must be ordered newest first.
    """
    for point in points:
        if to_utc(point.timestamp_utc) <= cutoff:
            return point.price
    return None


class PriceSnapshotStore:
    """Builds snapshots from the stored price history."""

    def __init__(self, price_repo: PriceRepository):
        self.price_repo = price_repo

    def snapshot(self, asset_id: int, now: datetime) -> Optional[PriceSnapshot]:
        """
        Build a snapshot for an asset.

        Args:
            asset_id: Asset to snapshot
            now: Reference time

        Returns:
            PriceSnapshot, or None if the asset has no samples in the window
        """
        now = to_utc(now)
        points = self.price_repo.get_price_points(asset_id, now - WEEK - LOOKBACK_SLACK)
        if not points:
            return None

        current = points[0].price

        def reference(horizon: timedelta) -> float:
            price = price_at_or_before(points, now - horizon)
            return current if price is None else price

        return PriceSnapshot(
            asset_id=asset_id,
            current_price=current,
            price_1h_ago=reference(HOUR),
            price_24h_ago=reference(DAY),
            price_7d_ago=reference(WEEK),
            timestamp=now,
        )
