"""
Model tests.
"""

from datetime import datetime, timedelta, timezone

from src.database.models import (
    AlertType,
    NotificationStatus,
    PriceCache,
    UserAlert,
    UserAlertHistory,
    Watchlist,
)
from src.timeutils import from_db_time, to_db_time, to_utc


class TestPriceCache:
    """Test derived price cache values."""

    def test_change_24h(self):
        """Should compute the 24h percent change."""
        cache = PriceCache(
            asset_id=1,
            current_price=110.0,
            price_1h_ago=108.0,
            price_24h_ago=100.0,
            price_7d_ago=90.0,
            last_update=datetime.now(timezone.utc),
        )
        assert abs(cache.change_24h_pct - 10.0) < 1e-9

    def test_change_24h_without_reference(self):
        """Should return 0 when the reference price is zero."""
        cache = PriceCache(
            asset_id=1,
            current_price=110.0,
            price_1h_ago=0.0,
            price_24h_ago=0.0,
            price_7d_ago=0.0,
            last_update=datetime.now(timezone.utc),
        )
        assert cache.change_24h_pct == 0.0


class TestDefaults:
    """Test model defaults."""

    def test_user_alert_defaults(self):
        """New alerts are active one-shot alerts with no price history."""
        alert = UserAlert(
            user_id=1, asset_id=1, asset_symbol="BTC", alert_type="ABOVE", target_price=1.0
        )
        assert alert.is_active is True
        assert alert.is_repeating is False
        assert alert.trigger_count == 0
        assert alert.last_known_price is None
        assert alert.last_triggered_at is None

    def test_history_defaults(self):
        """History rows start undelivered."""
        history = UserAlertHistory(
            user_id=1,
            asset_id=1,
            asset_symbol="BTC",
            alert_type="ABOVE",
            target_price=1.0,
            actual_price=1.0,
            price_difference_percent=0.0,
            triggered_at=datetime.now(timezone.utc),
        )
        assert history.was_notified is False
        assert history.notification_method == "PENDING"
        assert history.user_alert_id is None

    def test_watchlist_assets_not_shared(self):
        """Each watchlist gets its own asset list."""
        a = Watchlist(user_id=1, name="a")
        b = Watchlist(user_id=1, name="b")
        a.assets.append(object())
        assert b.assets == []

    def test_enums_compare_to_strings(self):
        """Enum members compare equal to their stored strings."""
        assert AlertType.BELOW == "BELOW"
        assert NotificationStatus.SENT.value == "SENT"


class TestTimeHelpers:
    """Test UTC normalization and storage format."""

    def test_naive_is_treated_as_utc(self):
        naive = datetime(2024, 1, 1, 12, 0)
        assert to_utc(naive) == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def test_other_zone_converted(self):
        plus_two = timezone(timedelta(hours=2))
        value = datetime(2024, 1, 1, 14, 0, tzinfo=plus_two)
        assert to_db_time(value) == "2024-01-01T12:00:00.000000+00:00"

    def test_roundtrip(self):
        value = datetime(2024, 1, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)
        assert from_db_time(to_db_time(value)) == value
        assert from_db_time(None) is None
