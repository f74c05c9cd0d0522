"""
Watchlist auto-alerts derived from price heuristics.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from src.database.models import (
    AUTO_WATCHLIST,
    AlertType,
    Asset,
    PriceCache,
    UserAlertHistory,
)
from src.database.repository import (
    PriceCacheRepository,
    UserAlertHistoryRepository,
    UserRepository,
    WatchlistRepository,
)
from src.scheduler.cancellation import CancellationToken
from .conditions import is_condition_met
from .user_alerts import UserAlertTrigger

logger = logging.getLogger(__name__)

ANCHOR_1H = "1h"
ANCHOR_CURRENT = "current"


@dataclass
class SmartTarget:
    """Derived target price for a watched asset."""

    price: float
    direction: str
    reason: str
    priority: int


@dataclass
class WatchlistMonitorStats:
    """Auto-alert summary for one user."""

    watchlist_asset_count: int
    auto_alerts_last_7_days: int
    last_alert_time: Optional[datetime]


def round_to_significant_level(price: float) -> float:
    """Round a price to a denomination scaled by its magnitude."""
    if price < 1:
        return round(price, 2)
    if price < 10:
        return round(price, 1)
    if price < 100:
        return round(price / 5) * 5
    if price < 1000:
        return round(price / 10) * 10
    if price < 10000:
        return round(price / 100) * 100
    return round(price / 1000) * 1000


def generate_smart_targets(
    anchor_price: float,
    change_24h: Optional[float],
    momentum_threshold_percent: float = 5.0,
    target_offset_percent: float = 5.0,
    round_number_min_gap_percent: float = 1.0,
) -> list[SmartTarget]:
    """
    Derive targets for an asset, ordered by priority.

    Args:
        anchor_price: Price the targets are computed from
        change_24h: 24h percent change, or None if unknown
        momentum_threshold_percent: 24h move that counts as momentum
        target_offset_percent: Distance of momentum and fallback targets
        round_number_min_gap_percent: Minimum distance of a round-number target

    Returns:
        Targets sorted by priority (1 = strongest)
    """
    up = anchor_price * (1 + target_offset_percent / 100)
    down = anchor_price * (1 - target_offset_percent / 100)
    targets = []

    if change_24h is not None and change_24h > momentum_threshold_percent:
        targets.append(SmartTarget(
            price=up,
            direction=AlertType.ABOVE.value,
            reason=f"Strong rally +{change_24h:.1f}% - momentum continuation +{target_offset_percent:g}%",
            priority=1,
        ))
    elif change_24h is not None and change_24h < -momentum_threshold_percent:
        targets.append(SmartTarget(
            price=down,
            direction=AlertType.BELOW.value,
            reason=f"Sharp drop {change_24h:.1f}% - dip accumulation -{target_offset_percent:g}%",
            priority=1,
        ))
    else:
        round_target = round_to_significant_level(anchor_price)
        gap = anchor_price * round_number_min_gap_percent / 100
        if abs(round_target - anchor_price) > gap:
            targets.append(SmartTarget(
                price=round_target,
                direction=(
                    AlertType.ABOVE.value if round_target > anchor_price else AlertType.BELOW.value
                ),
                reason=f"Round number ${round_target:,.2f}",
                priority=2,
            ))

    if not targets:
        targets.append(SmartTarget(
            price=down,
            direction=AlertType.BELOW.value,
            reason=f"Fallback -{target_offset_percent:g}%",
            priority=3,
        ))
        targets.append(SmartTarget(
            price=up,
            direction=AlertType.ABOVE.value,
            reason=f"Fallback +{target_offset_percent:g}%",
            priority=3,
        ))

    return sorted(targets, key=lambda t: t.priority)


class WatchlistMonitor:
    """Fires auto-alerts for assets on user watchlists."""

    def __init__(
        self,
        user_repo: UserRepository,
        watchlist_repo: WatchlistRepository,
        cache_repo: PriceCacheRepository,
        history_repo: UserAlertHistoryRepository,
        anchor: str = ANCHOR_1H,
        momentum_threshold_percent: float = 5.0,
        target_offset_percent: float = 5.0,
        round_number_min_gap_percent: float = 1.0,
        reaches_threshold_percent: float = 0.5,
        auto_alert_cooldown_hours: int = 24,
    ):
        if anchor not in (ANCHOR_1H, ANCHOR_CURRENT):
            raise ValueError(f"Unknown watchlist anchor: {anchor}")
        self.user_repo = user_repo
        self.watchlist_repo = watchlist_repo
        self.cache_repo = cache_repo
        self.history_repo = history_repo
        self.anchor = anchor
        self.momentum_threshold_percent = momentum_threshold_percent
        self.target_offset_percent = target_offset_percent
        self.round_number_min_gap_percent = round_number_min_gap_percent
        self.reaches_threshold_percent = reaches_threshold_percent
        self.auto_alert_cooldown_hours = auto_alert_cooldown_hours

    def monitor_all(
        self, now: datetime, cancel: Optional[CancellationToken] = None
    ) -> list[UserAlertTrigger]:
        """
        Check every watched asset of every user once.

        Args:
            now: Evaluation time
            cancel: Optional cancellation token checked between users

        Returns:
            Auto-alert triggers with their PENDING history rows
        """
        try:
            caches = {cache.asset_id: cache for cache in self.cache_repo.list_all()}
            users = self.user_repo.list_all()
        except Exception as e:
            logger.error(f"Error loading cached prices or users for watchlist monitor: {e}")
            return []

        triggers = []
        watchlists_checked = 0

        for user in users:
            if cancel is not None:
                cancel.raise_if_cancelled()
            seen: set[int] = set()
            try:
                watchlists = self.watchlist_repo.get_watchlists_by_user(user.id)
            except Exception as e:
                logger.warning(f"Error loading watchlists for user {user.id}: {e}")
                continue

            for watchlist in watchlists:
                watchlists_checked += 1
                for asset in watchlist.assets:
                    if asset.id in seen:
                        continue
                    seen.add(asset.id)

                    cache = caches.get(asset.id)
                    if cache is None or cache.current_price <= 0:
                        continue
                    try:
                        history = self.check_asset(user.id, asset, cache, now)
                    except Exception as e:
                        logger.error(
                            f"Error checking {asset.symbol} for user {user.id}: {e}"
                        )
                        continue
                    if history is not None:
                        triggers.append(UserAlertTrigger(history=history, asset_name=asset.name))

        logger.info(
            f"Watchlist monitor checked {watchlists_checked} watchlists, "
            f"created {len(triggers)} alerts"
        )
        return triggers

    def check_asset(
        self, user_id: int, asset: Asset, cache: PriceCache, now: datetime
    ) -> Optional[UserAlertHistory]:
        """
        Evaluate the smart targets of one watched asset.

        Returns:
            The saved auto-alert, or None if nothing fired or the pair is cooling down
        """
        anchor = cache.price_1h_ago if self.anchor == ANCHOR_1H else cache.current_price
        if not anchor or anchor <= 0:
            anchor = cache.current_price

        change_24h = cache.change_24h_pct if cache.price_24h_ago else None
        targets = generate_smart_targets(
            anchor,
            change_24h,
            self.momentum_threshold_percent,
            self.target_offset_percent,
            self.round_number_min_gap_percent,
        )

        current = cache.current_price
        for target in targets:
            if not is_condition_met(
                target.direction, current, target.price, anchor, self.reaches_threshold_percent
            ):
                continue

            since = now - timedelta(hours=self.auto_alert_cooldown_hours)
            history = self.history_repo.add_auto_alert_unless_recent(
                UserAlertHistory(
                    user_id=user_id,
                    asset_id=asset.id,
                    asset_symbol=asset.symbol,
                    alert_type=AUTO_WATCHLIST,
                    target_price=target.price,
                    actual_price=current,
                    price_difference_percent=(current - target.price) / target.price * 100,
                    triggered_at=now,
                    reason=target.reason,
                ),
                since,
            )
            if history is None:
                logger.debug(f"Auto-alert for {asset.symbol} / user {user_id} in cooldown")
                return None

            logger.info(
                f"Auto alert: User {user_id}, Asset {asset.symbol}, "
                f"Target ${target.price:.2f}, Current ${current:.2f}, Reason: {target.reason}"
            )
            return history

        return None

    def get_stats(self, user_id: int, now: datetime) -> WatchlistMonitorStats:
        """Summarize watched assets and recent auto-alerts for a user."""
        return WatchlistMonitorStats(
            watchlist_asset_count=self.watchlist_repo.count_assets_for_user(user_id),
            auto_alerts_last_7_days=self.history_repo.count_auto_alerts_since(
                user_id, now - timedelta(days=7)
            ),
            last_alert_time=self.history_repo.get_last_auto_alert_time(user_id),
        )
