"""
Data models for the Market Pulse alert pipeline.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class AlertType(str, Enum):
    """Condition of a user price alert."""

    REACHES = "REACHES"
    ABOVE = "ABOVE"
    BELOW = "BELOW"


class NotificationStatus(str, Enum):
    """Delivery status of a global alert event."""

    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"


AUTO_WATCHLIST = "AUTO_WATCHLIST"


@dataclass
class Asset:
    """Tradable asset (coin, stock, ETF)."""

    symbol: str
    name: str
    id: Optional[int] = None
    provider_symbol: Optional[str] = None  # e.g. "BTC-USD" on Yahoo Finance


@dataclass
class User:
    """User with notification settings."""

    id: Optional[int] = None
    email: Optional[str] = None
    discord_webhook_url: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class PricePoint:
    """Immutable price sample written by the ingestion producer."""

    asset_id: int
    timestamp_utc: datetime
    price: float
    volume: float = 0.0
    source: str = ""
    id: Optional[int] = None


@dataclass
class PriceCache:
    """Latest price of an asset plus reference prices at fixed horizons."""

    asset_id: int
    current_price: float
    price_1h_ago: float
    price_24h_ago: float
    price_7d_ago: float
    last_update: datetime
    asset: Optional[Asset] = None

    @property
    def change_24h_pct(self) -> float:
        """Percent change against the 24h reference price."""
        if not self.price_24h_ago:
            return 0.0
        return (self.current_price - self.price_24h_ago) / self.price_24h_ago * 100


@dataclass
class GlobalAlertRule:
    """Market-wide percentage change rule."""

    rule_name: str
    rule_type: str  # see src.rules.types.RuleType
    percent_change_threshold: float
    cooldown_minutes: int = 15
    is_active: bool = True
    asset_id: Optional[int] = None  # None = applies to all assets
    priority: str = "NORMAL"
    description: Optional[str] = None
    id: Optional[int] = None


@dataclass
class GlobalAlertEvent:
    """A triggered global rule for one asset."""

    rule_id: int
    asset_id: int
    asset_symbol: str
    event_type: str
    trigger_value: float
    message: str
    severity: str
    triggered_at: datetime
    previous_value: Optional[float] = None
    percent_change: Optional[float] = None
    time_window: Optional[str] = None
    notification_status: str = NotificationStatus.PENDING.value
    notifications_sent: int = 0
    id: Optional[int] = None


@dataclass
class AlertView:
    """Marks a global alert event as seen by a user."""

    user_id: int
    alert_event_id: int
    viewed_at: datetime
    id: Optional[int] = None


@dataclass
class UserAlert:
    """User-authored price alert."""

    user_id: int
    asset_id: int
    asset_symbol: str
    alert_type: str
    target_price: float
    is_repeating: bool = False
    is_active: bool = True
    note: str = ""
    trigger_count: int = 0
    last_known_price: Optional[float] = None
    last_price_check_at: Optional[datetime] = None
    last_triggered_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    id: Optional[int] = None


@dataclass
class UserAlertHistory:
    """Record of a user alert or watchlist auto-alert firing."""

    user_id: int
    asset_id: int
    asset_symbol: str
    alert_type: str
    target_price: float
    actual_price: float
    price_difference_percent: float
    triggered_at: datetime
    user_alert_id: Optional[int] = None  # None for auto-alerts
    was_notified: bool = False
    notification_method: str = "PENDING"
    notification_error: Optional[str] = None
    reason: Optional[str] = None
    id: Optional[int] = None


@dataclass
class Watchlist:
    """Named set of assets owned by a user."""

    user_id: int
    name: str
    is_favorite: bool = False
    assets: list[Asset] = field(default_factory=list)
    id: Optional[int] = None


@dataclass
class WatchlistItem:
    """Junction row between a watchlist and an asset."""

    watchlist_id: int
    asset_id: int
    added_at: Optional[datetime] = None
    id: Optional[int] = None
