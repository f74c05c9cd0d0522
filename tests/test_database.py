"""
Database layer tests.
Tests for SQLite connection, schema creation, and repository queries.
"""

import sqlite3
from datetime import timedelta
from pathlib import Path

import pytest

from src.database.connection import Database
from src.database.models import (
    AUTO_WATCHLIST,
    GlobalAlertEvent,
    GlobalAlertRule,
    UserAlert,
    UserAlertHistory,
    Watchlist,
)


class TestDatabaseConnection:
    """Test database connection and initialization."""

    def test_create_in_memory_database(self):
        """Should create an in-memory SQLite database."""
        db = Database(":memory:")
        assert db.connection is not None

    def test_create_file_database(self, tmp_path: Path):
        """Should create a file-based SQLite database in a new directory."""
        db_path = tmp_path / "nested" / "test.db"
        db = Database(str(db_path))
        db.initialize()
        assert db_path.exists()
        db.close()

    def test_initialize_schema(self, db):
        """Should create all required tables on initialization."""
        cursor = db.connection.cursor()
        cursor.execute("SELECT name FROM sqlite_master WHERE type='table'")
        tables = {row[0] for row in cursor.fetchall()}

        expected_tables = {
            "assets",
            "users",
            "price_points",
            "price_cache",
            "global_alert_rules",
            "global_alert_events",
            "alert_views",
            "user_alerts",
            "user_alert_history",
            "watchlists",
            "watchlist_items",
        }
        assert expected_tables.issubset(tables)

    def test_initialize_is_idempotent(self, db):
        """Should allow initialize to run twice."""
        db.initialize()

    def test_close_connection(self):
        """Should properly close database connection."""
        db = Database(":memory:")
        db.close()
        with pytest.raises(sqlite3.ProgrammingError):
            db.connection.execute("SELECT 1")

    def test_transaction_rolls_back_on_error(self, db, btc):
        """Should undo statements of a failed transaction."""
        with pytest.raises(RuntimeError):
            with db.transaction() as conn:
                conn.execute("DELETE FROM assets WHERE id = ?", (btc.id,))
                raise RuntimeError("boom")

        row = db.connection.execute("SELECT COUNT(*) FROM assets").fetchone()
        assert row[0] == 1

    def test_nested_transaction_rolls_back_together(self, db, btc):
        """An inner block's statements are undone when the outer block fails."""
        with pytest.raises(RuntimeError):
            with db.transaction() as conn:
                conn.execute("UPDATE assets SET name = 'Renamed' WHERE id = ?", (btc.id,))
                with db.transaction() as inner:
                    inner.execute("DELETE FROM assets WHERE id = ?", (btc.id,))
                raise RuntimeError("boom")

        row = db.connection.execute("SELECT name FROM assets WHERE id = ?", (btc.id,)).fetchone()
        assert row["name"] == btc.name

        with db.transaction() as conn:
            with db.transaction() as inner:
                inner.execute("UPDATE assets SET name = 'Renamed' WHERE id = ?", (btc.id,))
        db.connection.rollback()

        row = db.connection.execute("SELECT name FROM assets WHERE id = ?", (btc.id,)).fetchone()
        assert row["name"] == "Renamed"


class TestAssetAndUserRepository:
    """Test asset and user CRUD."""

    def test_asset_lookup(self, repos, btc):
        """Should find assets by id and symbol."""
        assert repos["asset"].get_by_id(btc.id).symbol == "BTC"
        assert repos["asset"].get_by_symbol("BTC").provider_symbol == "BTC-USD"
        assert repos["asset"].get_by_symbol("DOGE") is None

    def test_duplicate_symbol_rejected(self, repos, btc):
        """Should enforce unique symbols."""
        from src.database.models import Asset

        with pytest.raises(sqlite3.IntegrityError):
            repos["asset"].create(Asset(symbol="BTC", name="Other"))

    def test_user_roundtrip(self, repos, user, sample_discord_webhook_url):
        """Should persist user notification settings."""
        found = repos["user"].get_by_id(user.id)
        assert found.email == "trader@example.com"
        assert found.discord_webhook_url == sample_discord_webhook_url
        assert found.created_at is not None

        found.email = "new@example.com"
        repos["user"].update(found)
        assert repos["user"].get_by_id(user.id).email == "new@example.com"

        repos["user"].delete(user.id)
        assert repos["user"].list_all() == []


class TestPriceRepository:
    """Test price point queries."""

    def test_points_newest_first_within_window(self, repos, btc, add_points, now):
        """Should return samples since the cutoff, newest first."""
        add_points(btc, now, [
            (timedelta(days=9), 90.0),
            (timedelta(hours=2), 98.0),
            (timedelta(minutes=1), 100.0),
        ])

        points = repos["price"].get_price_points(btc.id, now - timedelta(days=7))

        assert [p.price for p in points] == [100.0, 98.0]
        assert points[0].timestamp_utc == now - timedelta(minutes=1)
        assert points[0].timestamp_utc.tzinfo is not None


class TestPriceCacheRepository:
    """Test cache upserts."""

    def test_upsert_keeps_one_row_per_asset(self, repos, btc, set_cache):
        """Should replace the existing row on a second upsert."""
        set_cache(btc, 100.0)
        set_cache(btc, 110.0, h1=105.0)

        rows = repos["cache"].list_all()
        assert len(rows) == 1
        assert rows[0].current_price == 110.0
        assert rows[0].price_1h_ago == 105.0
        assert rows[0].asset.symbol == "BTC"

    def test_get_by_asset_id_missing(self, repos):
        """Should return None for assets without a row."""
        assert repos["cache"].get_by_asset_id(999) is None


class TestGlobalAlertRepository:
    """Test rules, events and views."""

    @pytest.fixture
    def rule(self, repos):
        return repos["global"].create_rule(
            GlobalAlertRule(
                rule_name="24h surge",
                rule_type="PERCENT_CHANGE_24H",
                percent_change_threshold=10.0,
            )
        )

    def _event(self, rule, asset, at):
        return GlobalAlertEvent(
            rule_id=rule.id,
            asset_id=asset.id,
            asset_symbol=asset.symbol,
            event_type=rule.rule_type,
            trigger_value=100.0,
            message="test",
            severity="LOW",
            triggered_at=at,
        )

    def test_active_rules_only(self, repos, rule):
        """Should exclude inactive rules."""
        repos["global"].set_rule_active(rule.id, False)
        assert repos["global"].get_active_rules() == []
        assert len(repos["global"].list_rules()) == 1

    def test_last_event_timestamp(self, repos, rule, btc, now):
        """Should return the newest trigger time per pair."""
        assert repos["global"].get_last_event_timestamp(rule.id, btc.id) is None

        repos["global"].create_event(self._event(rule, btc, now - timedelta(hours=2)))
        repos["global"].create_event(self._event(rule, btc, now - timedelta(minutes=5)))

        assert repos["global"].get_last_event_timestamp(rule.id, btc.id) == now - timedelta(minutes=5)

    def test_conditional_insert_respects_cutoff(self, repos, rule, btc, now):
        """Should refuse an event while the pair has one since the cutoff."""
        cutoff = now - timedelta(minutes=15)
        first = repos["global"].create_event_unless_recent(self._event(rule, btc, now), cutoff)
        second = repos["global"].create_event_unless_recent(self._event(rule, btc, now), cutoff)

        assert first is not None and first.id is not None
        assert second is None

        later = now + timedelta(minutes=16)
        third = repos["global"].create_event_unless_recent(
            self._event(rule, btc, later), later - timedelta(minutes=15)
        )
        assert third is not None

    def test_update_status_and_recent_events(self, repos, rule, btc, now):
        """Should record delivery status and list recent events."""
        event = repos["global"].create_event(self._event(rule, btc, now))
        repos["global"].update_event_status(event.id, "SENT", 1)

        stored = repos["global"].get_event_by_id(event.id)
        assert stored.notification_status == "SENT"
        assert stored.notifications_sent == 1
        assert repos["global"].count_events_since(now - timedelta(hours=1)) == 1
        assert repos["global"].get_recent_events(now + timedelta(seconds=1)) == []

    def test_mark_viewed_once(self, repos, rule, btc, user, now):
        """Should keep a single view per user and event."""
        event = repos["global"].create_event(self._event(rule, btc, now))
        assert repos["global"].has_user_viewed(user.id, event.id) is False

        first = repos["global"].mark_viewed(user.id, event.id, now)
        second = repos["global"].mark_viewed(user.id, event.id, now + timedelta(minutes=1))

        assert repos["global"].has_user_viewed(user.id, event.id) is True
        assert first.id is not None
        assert second.id == first.id
        assert second.alert_event_id == event.id
        assert second.viewed_at == now
        count = repos["global"].db.connection.execute(
            "SELECT COUNT(*) FROM alert_views"
        ).fetchone()[0]
        assert count == 1

    def test_delete_rule_cascades_events(self, repos, rule, btc, user, now):
        event = repos["global"].create_event(self._event(rule, btc, now))
        repos["global"].mark_viewed(user.id, event.id, now)

        repos["global"].delete_rule(rule.id)

        assert repos["global"].get_rule_by_id(rule.id) is None
        assert repos["global"].get_event_by_id(event.id) is None
        assert repos["global"].has_user_viewed(user.id, event.id) is False


class TestUserAlertRepository:
    """Test user alert persistence and trigger claims."""

    @pytest.fixture
    def alert(self, repos, user, btc, now):
        return repos["alert"].create(
            UserAlert(
                user_id=user.id,
                asset_id=btc.id,
                asset_symbol="BTC",
                alert_type="BELOW",
                target_price=100.0,
                created_at=now,
            )
        )

    def test_claim_trigger_deactivates_one_shot(self, repos, alert, now):
        """Should claim once and deactivate non-repeating alerts."""
        cutoff = now - timedelta(minutes=5)
        assert repos["alert"].claim_trigger(alert.id, 98.0, now, cutoff) is True
        assert repos["alert"].claim_trigger(alert.id, 97.0, now, cutoff) is False

        stored = repos["alert"].get_by_id(alert.id)
        assert stored.is_active is False
        assert stored.trigger_count == 1
        assert stored.last_triggered_at == now
        assert stored.last_known_price == 98.0

    def test_claim_trigger_respects_cooldown(self, repos, alert, now):
        """Should refuse a repeating alert still in cooldown."""
        alert.is_repeating = True
        repos["alert"].update(alert)

        assert repos["alert"].claim_trigger(alert.id, 98.0, now, now - timedelta(minutes=5))
        soon = now + timedelta(minutes=2)
        assert not repos["alert"].claim_trigger(alert.id, 98.0, soon, soon - timedelta(minutes=5))
        later = now + timedelta(minutes=5)
        assert repos["alert"].claim_trigger(alert.id, 98.0, later, later - timedelta(minutes=5))

        stored = repos["alert"].get_by_id(alert.id)
        assert stored.is_active is True
        assert stored.trigger_count == 2

    def test_ownership_and_counts(self, repos, alert, user):
        """Should report ownership and per-user counts."""
        assert repos["alert"].is_owned_by_user(alert.id, user.id)
        assert not repos["alert"].is_owned_by_user(alert.id, user.id + 1)
        assert repos["alert"].count_by_user_id(user.id) == 1

    def test_history_survives_alert_deletion(self, repos, alert, user, btc, now):
        """Should keep history rows when the alert is deleted."""
        history = repos["history"].add(
            UserAlertHistory(
                user_alert_id=alert.id,
                user_id=user.id,
                asset_id=btc.id,
                asset_symbol="BTC",
                alert_type="BELOW",
                target_price=100.0,
                actual_price=98.0,
                price_difference_percent=-2.0,
                triggered_at=now,
            )
        )
        repos["alert"].delete(alert.id)

        stored = repos["history"].get_by_id(history.id)
        assert stored is not None
        assert stored.user_alert_id is None


class TestUserAlertHistoryRepository:
    """Test auto-alert dedupe queries."""

    def _auto(self, user, asset, at):
        return UserAlertHistory(
            user_id=user.id,
            asset_id=asset.id,
            asset_symbol=asset.symbol,
            alert_type=AUTO_WATCHLIST,
            target_price=105.0,
            actual_price=106.0,
            price_difference_percent=0.95,
            triggered_at=at,
        )

    def test_auto_alert_dedupe(self, repos, user, btc, eth, now):
        """Should allow one auto-alert per user and asset within the window."""
        since = now - timedelta(hours=24)
        assert repos["history"].add_auto_alert_unless_recent(self._auto(user, btc, now), since)
        assert repos["history"].add_auto_alert_unless_recent(self._auto(user, btc, now), since) is None
        assert repos["history"].add_auto_alert_unless_recent(self._auto(user, eth, now), since)

    def test_auto_alert_stats(self, repos, user, btc, now):
        """Should count recent auto-alerts and report the latest."""
        repos["history"].add(self._auto(user, btc, now - timedelta(days=10)))
        repos["history"].add(self._auto(user, btc, now - timedelta(days=1)))

        assert repos["history"].count_auto_alerts_since(user.id, now - timedelta(days=7)) == 1
        assert repos["history"].get_last_auto_alert_time(user.id) == now - timedelta(days=1)


class TestWatchlistRepository:
    """Test watchlists with assets."""

    def test_watchlists_with_assets(self, repos, user, btc, eth, now):
        """Should load every watchlist with its assets."""
        crypto = repos["watchlist"].create(Watchlist(user_id=user.id, name="Crypto"))
        repos["watchlist"].create(Watchlist(user_id=user.id, name="Empty"))
        repos["watchlist"].add_asset(crypto.id, btc.id, now)
        repos["watchlist"].add_asset(crypto.id, eth.id, now + timedelta(seconds=1))

        watchlists = repos["watchlist"].get_watchlists_by_user(user.id)

        assert [w.name for w in watchlists] == ["Crypto", "Empty"]
        assert [a.symbol for a in watchlists[0].assets] == ["BTC", "ETH"]
        assert watchlists[1].assets == []
        assert repos["watchlist"].count_assets_for_user(user.id) == 2

    def test_remove_asset(self, repos, user, btc, now):
        """Should remove an asset from a watchlist."""
        watchlist = repos["watchlist"].create(Watchlist(user_id=user.id, name="Crypto"))
        repos["watchlist"].add_asset(watchlist.id, btc.id, now)
        repos["watchlist"].remove_asset(watchlist.id, btc.id)

        assert repos["watchlist"].get_watchlists_by_user(user.id)[0].assets == []
