"""
Watchlist auto-alert tests.
"""

from datetime import timedelta

import pytest

from src.database.models import AUTO_WATCHLIST, Watchlist
from src.rules.watchlist import (
    WatchlistMonitor,
    generate_smart_targets,
    round_to_significant_level,
)


class TestRoundToSignificantLevel:
    """Test round-number denominations."""

    @pytest.mark.parametrize(
        "price,expected",
        [
            (0.456, 0.46),
            (3.14, 3.1),
            (47.0, 45),
            (48.0, 50),
            (123.0, 120),
            (4567.0, 4600),
            (52600.0, 53000),
        ],
    )
    def test_levels(self, price, expected):
        assert round_to_significant_level(price) == pytest.approx(expected)

    def test_half_rounds_to_even(self):
        """52.5 / 5 = 10.5 rounds to 10."""
        assert round_to_significant_level(52.5) == 50


class TestGenerateSmartTargets:
    """Test target derivation."""

    def test_momentum_up(self):
        targets = generate_smart_targets(100.0, 6.0)
        assert len(targets) == 1
        assert targets[0].direction == "ABOVE"
        assert targets[0].price == pytest.approx(105.0)
        assert targets[0].priority == 1

    def test_momentum_down(self):
        targets = generate_smart_targets(100.0, -6.0)
        assert len(targets) == 1
        assert targets[0].direction == "BELOW"
        assert targets[0].price == pytest.approx(95.0)

    def test_round_number_target(self):
        targets = generate_smart_targets(47.0, 0.5)
        assert len(targets) == 1
        assert targets[0].price == 45
        assert targets[0].direction == "BELOW"
        assert targets[0].priority == 2

    def test_fallback_pair(self):
        """Already round prices fall back to -5% and +5%."""
        targets = generate_smart_targets(100.0, 0.0)
        assert [(t.direction, t.priority) for t in targets] == [("BELOW", 3), ("ABOVE", 3)]
        assert targets[0].price == pytest.approx(95.0)
        assert targets[1].price == pytest.approx(105.0)

    def test_round_target_too_close(self):
        """53,000 is within 1% of 52,600 and is dropped."""
        targets = generate_smart_targets(52600.0, 0.0)
        assert all(t.priority == 3 for t in targets)

    def test_unknown_change_skips_momentum(self):
        targets = generate_smart_targets(100.0, None)
        assert all(t.priority == 3 for t in targets)


class TestWatchlistMonitor:
    """Test auto-alert firing and dedupe."""

    @pytest.fixture
    def watchlist(self, repos, user, btc, now):
        watchlist = repos["watchlist"].create(Watchlist(user_id=user.id, name="Crypto"))
        repos["watchlist"].add_asset(watchlist.id, btc.id, now)
        return watchlist

    def _monitor(self, repos, **kwargs):
        return WatchlistMonitor(
            repos["user"], repos["watchlist"], repos["cache"], repos["history"], **kwargs
        )

    def test_momentum_fires_once_per_window(self, repos, user, btc, watchlist, set_cache, now):
        set_cache(btc, 106.0, h1=100.0, h24=100.0)
        monitor = self._monitor(repos)

        triggers = monitor.monitor_all(now)

        assert len(triggers) == 1
        history = triggers[0].history
        assert history.alert_type == AUTO_WATCHLIST
        assert history.user_alert_id is None
        assert history.target_price == pytest.approx(105.0)
        assert history.actual_price == 106.0
        assert "momentum" in history.reason
        assert triggers[0].asset_name == "Bitcoin"

        assert monitor.monitor_all(now + timedelta(minutes=5)) == []
        assert monitor.monitor_all(now + timedelta(hours=23)) == []
        assert len(monitor.monitor_all(now + timedelta(hours=24, seconds=1))) == 1

    def test_dip_fires(self, repos, btc, watchlist, set_cache, now):
        set_cache(btc, 94.0, h1=100.0, h24=100.0)

        triggers = self._monitor(repos).monitor_all(now)

        assert len(triggers) == 1
        assert triggers[0].history.target_price == pytest.approx(95.0)

    def test_round_number_fires(self, repos, btc, watchlist, set_cache, now):
        set_cache(btc, 44.0, h1=47.0, h24=44.5)

        triggers = self._monitor(repos).monitor_all(now)

        assert len(triggers) == 1
        assert triggers[0].history.target_price == 45
        assert triggers[0].history.reason.startswith("Round number")

    def test_current_anchor_never_fires(self, repos, btc, watchlist, set_cache, now):
        """Targets derived from the current price are never already crossed."""
        set_cache(btc, 106.0, h1=100.0, h24=100.0)

        assert self._monitor(repos, anchor="current").monitor_all(now) == []

    def test_flat_price_no_alert(self, repos, btc, watchlist, set_cache, now):
        set_cache(btc, 100.0)

        assert self._monitor(repos).monitor_all(now) == []

    def test_asset_in_two_watchlists_once(self, repos, user, btc, watchlist, set_cache, now):
        second = repos["watchlist"].create(Watchlist(user_id=user.id, name="Favorites"))
        repos["watchlist"].add_asset(second.id, btc.id, now)
        set_cache(btc, 106.0, h1=100.0, h24=100.0)

        assert len(self._monitor(repos).monitor_all(now)) == 1

    def test_no_cache_or_watchlists(self, repos, user, btc, now):
        assert self._monitor(repos).monitor_all(now) == []

    def test_cache_read_error_returns_empty(self, repos, btc, watchlist, set_cache, now, monkeypatch):
        set_cache(btc, 106.0, h1=100.0, h24=100.0)

        def busy():
            raise RuntimeError("db busy")

        monkeypatch.setattr(repos["cache"], "list_all", busy)

        assert self._monitor(repos).monitor_all(now) == []
        assert repos["history"].get_by_user_id(watchlist.user_id) == []

    def test_invalid_anchor(self, repos):
        with pytest.raises(ValueError):
            self._monitor(repos, anchor="yesterday")

    def test_stats(self, repos, user, btc, eth, watchlist, set_cache, now):
        repos["watchlist"].add_asset(watchlist.id, eth.id, now)
        set_cache(btc, 106.0, h1=100.0, h24=100.0)
        monitor = self._monitor(repos)
        monitor.monitor_all(now)

        stats = monitor.get_stats(user.id, now + timedelta(hours=1))

        assert stats.watchlist_asset_count == 2
        assert stats.auto_alerts_last_7_days == 1
        assert stats.last_alert_time == now
