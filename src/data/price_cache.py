"""
Materializes price snapshots into the price cache table.
"""

import logging
from datetime import datetime
from typing import Optional

from src.database.models import Asset, PriceCache
from src.database.repository import AssetRepository, PriceCacheRepository
from src.scheduler.cancellation import CancellationToken
from .snapshots import PriceSnapshotStore

logger = logging.getLogger(__name__)


class PriceCacheRefreshError(Exception):
    """Snapshot or persistence failure for one asset."""

    def __init__(self, asset_id: int, symbol: str, cause: Exception):
        self.asset_id = asset_id
        self.symbol = symbol
        super().__init__(f"Failed to refresh price cache for {symbol} (id={asset_id}): {cause}")


class PriceCacheService:
    """Refreshes one cache row per asset from the price history."""

    def __init__(
        self,
        asset_repo: AssetRepository,
        cache_repo: PriceCacheRepository,
        snapshots: PriceSnapshotStore,
        isolate_asset_failures: bool = False,
    ):
        self.asset_repo = asset_repo
        self.cache_repo = cache_repo
        self.snapshots = snapshots
        self.isolate_asset_failures = isolate_asset_failures

    def refresh(
        self, now: datetime, cancel: Optional[CancellationToken] = None
    ) -> int:
        """
        Rebuild the cache for every asset.

        Assets without samples keep whatever row they had.

        Args:
            now: Reference time for the snapshots
            cancel: Optional cancellation token checked between assets

        Returns:
            Number of cache rows written

        Raises:
            PriceCacheRefreshError: If an asset fails and failures are not isolated
            CancelledError: If cancellation was requested
        """
        rows: list[PriceCache] = []

        for asset in self.asset_repo.list_all():
            if cancel is not None:
                cancel.raise_if_cancelled()
            try:
                row = self._build_row(asset, now)
            except Exception as e:
                error = PriceCacheRefreshError(asset.id, asset.symbol, e)
                if not self.isolate_asset_failures:
                    raise error from e
                logger.error(str(error))
                continue
            if row is None:
                logger.debug(f"No price samples for {asset.symbol}, skipping")
                continue
            rows.append(row)

        if rows:
            self.cache_repo.upsert_bulk(rows)
        logger.info(f"Price cache refreshed for {len(rows)} assets")
        return len(rows)

    def _build_row(self, asset: Asset, now: datetime) -> Optional[PriceCache]:
        snapshot = self.snapshots.snapshot(asset.id, now)
        if snapshot is None:
            return None
        return PriceCache(
            asset_id=asset.id,
            current_price=snapshot.current_price,
            price_1h_ago=snapshot.price_1h_ago,
            price_24h_ago=snapshot.price_24h_ago,
            price_7d_ago=snapshot.price_7d_ago,
            last_update=snapshot.timestamp,
            asset=asset,
        )
