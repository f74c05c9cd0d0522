"""
Price snapshot and cache refresh tests.
"""

from datetime import timedelta
from unittest.mock import Mock

import pytest

from src.data.price_cache import PriceCacheRefreshError, PriceCacheService
from src.data.snapshots import PriceSnapshotStore
from src.database.models import GlobalAlertRule
from src.rules.engine import RuleEngine
from src.rules.types import percent_change
from src.scheduler.cancellation import CancellationToken, CancelledError


class TestPriceSnapshotStore:
    """Test horizon resolution."""

    @pytest.fixture
    def store(self, repos):
        return PriceSnapshotStore(repos["price"])

    def test_no_samples(self, store, btc, now):
        """Should return None without samples."""
        assert store.snapshot(btc.id, now) is None

    def test_cold_start_falls_back_to_current(self, store, btc, add_points, now):
        """A single fresh sample serves every horizon."""
        add_points(btc, now, [(timedelta(minutes=1), 100.0)])

        snapshot = store.snapshot(btc.id, now)

        assert snapshot.current_price == 100.0
        assert snapshot.price_1h_ago == 100.0
        assert snapshot.price_24h_ago == 100.0
        assert snapshot.price_7d_ago == 100.0

    def test_horizons_use_newest_sample_at_or_before(self, store, btc, add_points, now):
        add_points(btc, now, [
            (timedelta(days=7, minutes=30), 70.0),
            (timedelta(days=2), 80.0),
            (timedelta(hours=24), 90.0),
            (timedelta(hours=3), 95.0),
            (timedelta(minutes=59), 99.0),
            (timedelta(minutes=5), 100.0),
        ])

        snapshot = store.snapshot(btc.id, now)

        assert snapshot.current_price == 100.0
        assert snapshot.price_1h_ago == 95.0
        assert snapshot.price_24h_ago == 90.0
        assert snapshot.price_7d_ago == 70.0

    def test_samples_older_than_lookback_are_ignored(self, store, btc, add_points, now):
        add_points(btc, now, [
            (timedelta(days=8), 50.0),
            (timedelta(minutes=5), 100.0),
        ])

        assert store.snapshot(btc.id, now).price_7d_ago == 100.0


class TestPriceCacheService:
    """Test bulk refresh and failure policy."""

    def _service(self, repos, snapshots=None, isolate=False):
        return PriceCacheService(
            repos["asset"],
            repos["cache"],
            snapshots or PriceSnapshotStore(repos["price"]),
            isolate_asset_failures=isolate,
        )

    def test_refresh_writes_rows(self, repos, btc, eth, add_points, now):
        """Should upsert one row per asset with samples."""
        add_points(btc, now, [(timedelta(hours=25), 47000.0), (timedelta(minutes=1), 52600.0)])

        written = self._service(repos).refresh(now)

        assert written == 1
        row = repos["cache"].get_by_asset_id(btc.id)
        assert row.current_price == 52600.0
        assert row.price_24h_ago == 47000.0
        assert row.last_update == now
        assert repos["cache"].get_by_asset_id(eth.id) is None

    def test_refresh_replaces_previous_row(self, repos, btc, add_points, now):
        add_points(btc, now, [(timedelta(minutes=10), 100.0)])
        service = self._service(repos)
        service.refresh(now)

        add_points(btc, now, [(timedelta(minutes=1), 101.0)])
        service.refresh(now)

        rows = repos["cache"].list_all()
        assert len(rows) == 1
        assert rows[0].current_price == 101.0

    def test_failure_aborts_by_default(self, repos, btc, eth, add_points, now):
        """Should wrap the error and write nothing."""
        add_points(btc, now, [(timedelta(minutes=1), 100.0)])
        add_points(eth, now, [(timedelta(minutes=1), 10.0)])

        real = PriceSnapshotStore(repos["price"])
        snapshots = Mock()

        def snapshot(asset_id, at):
            if asset_id == eth.id:
                raise RuntimeError("corrupt sample")
            return real.snapshot(asset_id, at)

        snapshots.snapshot.side_effect = snapshot

        with pytest.raises(PriceCacheRefreshError) as exc_info:
            self._service(repos, snapshots).refresh(now)

        assert exc_info.value.symbol == "ETH"
        assert exc_info.value.asset_id == eth.id
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert repos["cache"].list_all() == []

    def test_failure_isolated_when_configured(self, repos, btc, eth, add_points, now):
        """Should skip the failing asset and keep the rest."""
        add_points(btc, now, [(timedelta(minutes=1), 100.0)])

        real = PriceSnapshotStore(repos["price"])
        snapshots = Mock()

        def snapshot(asset_id, at):
            if asset_id == eth.id:
                raise RuntimeError("corrupt sample")
            return real.snapshot(asset_id, at)

        snapshots.snapshot.side_effect = snapshot

        written = self._service(repos, snapshots, isolate=True).refresh(now)

        assert written == 1
        assert repos["cache"].get_by_asset_id(btc.id) is not None

    def test_cancellation_between_assets(self, repos, btc, add_points, now):
        add_points(btc, now, [(timedelta(minutes=1), 100.0)])
        token = CancellationToken()
        token.cancel()

        with pytest.raises(CancelledError):
            self._service(repos).refresh(now, token)

    def test_cold_start_feeds_rules_zero_change(self, repos, btc, add_points, now):
        """One sample refreshes cleanly and no horizon shows a move."""
        add_points(btc, now, [(timedelta(minutes=1), 52600.0)])
        for rule_type, threshold in [
            ("PERCENT_CHANGE_1H", 5.0),
            ("PERCENT_CHANGE_24H", -5.0),
            ("PERCENT_CHANGE_7D", 5.0),
        ]:
            repos["global"].create_rule(
                GlobalAlertRule(
                    rule_name=rule_type.lower(),
                    rule_type=rule_type,
                    percent_change_threshold=threshold,
                )
            )

        assert self._service(repos).refresh(now) == 1

        row = repos["cache"].get_by_asset_id(btc.id)
        assert row.price_1h_ago == row.price_24h_ago == row.price_7d_ago == 52600.0
        assert percent_change(row.current_price, row.price_24h_ago) == 0.0
        assert RuleEngine(repos["global"], repos["cache"]).evaluate_all(now) == []
        assert repos["global"].count_events_since(now - timedelta(hours=1)) == 0
