"""
Repository classes for CRUD operations.
"""

from datetime import datetime
from typing import Optional

from src.timeutils import from_db_time, to_db_time
from .connection import Database
from .models import (
    AUTO_WATCHLIST,
    AlertView,
    Asset,
    GlobalAlertEvent,
    GlobalAlertRule,
    PriceCache,
    PricePoint,
    User,
    UserAlert,
    UserAlertHistory,
    Watchlist,
    WatchlistItem,
)


def _row_to_asset(row, prefix: str = "") -> Asset:
    """Convert database row to Asset."""
    return Asset(
        id=row[f"{prefix}id"],
        symbol=row[f"{prefix}symbol"],
        name=row[f"{prefix}name"],
        provider_symbol=row[f"{prefix}provider_symbol"],
    )


class AssetRepository:
    """CRUD operations for assets."""

    def __init__(self, db: Database):
        self.db = db

    def create(self, asset: Asset) -> Asset:
        """Create a new asset."""
        with self.db.transaction() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO assets (symbol, name, provider_symbol)
                VALUES (?, ?, ?)
                """,
                (asset.symbol, asset.name, asset.provider_symbol),
            )
            asset.id = cursor.lastrowid
        return asset

    def get_by_id(self, asset_id: int) -> Optional[Asset]:
        """Get asset by ID."""
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT * FROM assets WHERE id = ?", (asset_id,)
            ).fetchone()
        return _row_to_asset(row) if row else None

    def get_by_symbol(self, symbol: str) -> Optional[Asset]:
        """Get asset by symbol."""
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT * FROM assets WHERE symbol = ?", (symbol,)
            ).fetchone()
        return _row_to_asset(row) if row else None

    def list_all(self) -> list[Asset]:
        """List all assets."""
        with self.db.transaction() as conn:
            rows = conn.execute("SELECT * FROM assets ORDER BY symbol").fetchall()
        return [_row_to_asset(row) for row in rows]


class UserRepository:
    """CRUD operations for users."""

    def __init__(self, db: Database):
        self.db = db

    def create(self, user: User) -> User:
        """Create a new user."""
        with self.db.transaction() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO users (email, discord_webhook_url)
                VALUES (?, ?)
                """,
                (user.email, user.discord_webhook_url),
            )
            user.id = cursor.lastrowid
        return user

    def get_by_id(self, user_id: int) -> Optional[User]:
        """Get user by ID."""
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE id = ?", (user_id,)
            ).fetchone()
        return self._row_to_user(row) if row else None

    def update(self, user: User) -> None:
        """Update user details."""
        with self.db.transaction() as conn:
            conn.execute(
                """
                UPDATE users
                SET email = ?, discord_webhook_url = ?
                WHERE id = ?
                """,
                (user.email, user.discord_webhook_url, user.id),
            )

    def delete(self, user_id: int) -> None:
        """Delete user."""
        with self.db.transaction() as conn:
            conn.execute("DELETE FROM users WHERE id = ?", (user_id,))

    def list_all(self) -> list[User]:
        """List all users."""
        with self.db.transaction() as conn:
            rows = conn.execute("SELECT * FROM users ORDER BY id").fetchall()
        return [self._row_to_user(row) for row in rows]

    def _row_to_user(self, row) -> User:
        """Convert database row to User."""
        return User(
            id=row["id"],
            email=row["email"],
            discord_webhook_url=row["discord_webhook_url"],
            created_at=from_db_time(row["created_at"]),
        )


class PriceRepository:
    """Append-only access to the price point series."""

    def __init__(self, db: Database):
        self.db = db

    def add(self, point: PricePoint) -> PricePoint:
        """Append a price sample."""
        with self.db.transaction() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO price_points (asset_id, timestamp_utc, price, volume, source)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    point.asset_id,
                    to_db_time(point.timestamp_utc),
                    point.price,
                    point.volume,
                    point.source,
                ),
            )
            point.id = cursor.lastrowid
        return point

    def add_many(self, points: list[PricePoint]) -> None:
        """Append multiple price samples."""
        with self.db.transaction() as conn:
            conn.executemany(
                """
                INSERT INTO price_points (asset_id, timestamp_utc, price, volume, source)
                VALUES (?, ?, ?, ?, ?)
                """,
                [
                    (p.asset_id, to_db_time(p.timestamp_utc), p.price, p.volume, p.source)
                    for p in points
                ],
            )

    def get_price_points(self, asset_id: int, since: datetime) -> list[PricePoint]:
        """Samples for an asset at or after ``since``, newest first."""
        with self.db.transaction() as conn:
            rows = conn.execute(
                """
                SELECT * FROM price_points
                WHERE asset_id = ? AND timestamp_utc >= ?
                ORDER BY timestamp_utc DESC, id DESC
                """,
                (asset_id, to_db_time(since)),
            ).fetchall()
        return [self._row_to_point(row) for row in rows]

    def _row_to_point(self, row) -> PricePoint:
        """Convert database row to PricePoint."""
        return PricePoint(
            id=row["id"],
            asset_id=row["asset_id"],
            timestamp_utc=from_db_time(row["timestamp_utc"]),
            price=row["price"],
            volume=row["volume"],
            source=row["source"],
        )


class PriceCacheRepository:
    """One materialized snapshot row per asset."""

    _SELECT = """
        SELECT c.*, a.id AS a_id, a.symbol AS a_symbol, a.name AS a_name,
               a.provider_symbol AS a_provider_symbol
        FROM price_cache c
        LEFT JOIN assets a ON a.id = c.asset_id
    """

    def __init__(self, db: Database):
        self.db = db

    def upsert_bulk(self, caches: list[PriceCache]) -> None:
        """Insert or replace the cache rows for the given assets."""
        with self.db.transaction() as conn:
            conn.executemany(
                """
                INSERT INTO price_cache
                (asset_id, current_price, price_1h_ago, price_24h_ago, price_7d_ago, last_update)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(asset_id) DO UPDATE SET
                    current_price = excluded.current_price,
                    price_1h_ago = excluded.price_1h_ago,
                    price_24h_ago = excluded.price_24h_ago,
                    price_7d_ago = excluded.price_7d_ago,
                    last_update = excluded.last_update
                """,
                [
                    (
                        c.asset_id,
                        c.current_price,
                        c.price_1h_ago,
                        c.price_24h_ago,
                        c.price_7d_ago,
                        to_db_time(c.last_update),
                    )
                    for c in caches
                ],
            )

    def get_by_asset_id(self, asset_id: int) -> Optional[PriceCache]:
        """Get the cache row of one asset."""
        with self.db.transaction() as conn:
            row = conn.execute(
                self._SELECT + " WHERE c.asset_id = ?", (asset_id,)
            ).fetchone()
        return self._row_to_cache(row) if row else None

    def list_all(self) -> list[PriceCache]:
        """List every cache row."""
        with self.db.transaction() as conn:
            rows = conn.execute(self._SELECT + " ORDER BY c.asset_id").fetchall()
        return [self._row_to_cache(row) for row in rows]

    def _row_to_cache(self, row) -> PriceCache:
        """Convert database row to PriceCache."""
        asset = _row_to_asset(row, prefix="a_") if row["a_id"] is not None else None
        return PriceCache(
            asset_id=row["asset_id"],
            current_price=row["current_price"],
            price_1h_ago=row["price_1h_ago"],
            price_24h_ago=row["price_24h_ago"],
            price_7d_ago=row["price_7d_ago"],
            last_update=from_db_time(row["last_update"]),
            asset=asset,
        )


class GlobalAlertRepository:
    """Global rules, their events and per-user views."""

    _EVENT_COLUMNS = (
        "rule_id, asset_id, asset_symbol, event_type, trigger_value, previous_value, "
        "percent_change, time_window, message, severity, triggered_at, "
        "notification_status, notifications_sent"
    )

    def __init__(self, db: Database):
        self.db = db

    # Rules

    def create_rule(self, rule: GlobalAlertRule) -> GlobalAlertRule:
        """Create a new rule."""
        with self.db.transaction() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO global_alert_rules
                (rule_name, rule_type, percent_change_threshold, cooldown_minutes,
                 is_active, asset_id, priority, description)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    rule.rule_name,
                    rule.rule_type,
                    rule.percent_change_threshold,
                    rule.cooldown_minutes,
                    1 if rule.is_active else 0,
                    rule.asset_id,
                    rule.priority,
                    rule.description,
                ),
            )
            rule.id = cursor.lastrowid
        return rule

    def get_rule_by_id(self, rule_id: int) -> Optional[GlobalAlertRule]:
        """Get rule by ID."""
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT * FROM global_alert_rules WHERE id = ?", (rule_id,)
            ).fetchone()
        return self._row_to_rule(row) if row else None

    def get_active_rules(self) -> list[GlobalAlertRule]:
        """Get only active rules."""
        with self.db.transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM global_alert_rules WHERE is_active = 1 ORDER BY id"
            ).fetchall()
        return [self._row_to_rule(row) for row in rows]

    def list_rules(self) -> list[GlobalAlertRule]:
        """List all rules."""
        with self.db.transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM global_alert_rules ORDER BY id"
            ).fetchall()
        return [self._row_to_rule(row) for row in rows]

    def set_rule_active(self, rule_id: int, is_active: bool) -> None:
        """Enable or disable a rule."""
        with self.db.transaction() as conn:
            conn.execute(
                "UPDATE global_alert_rules SET is_active = ? WHERE id = ?",
                (1 if is_active else 0, rule_id),
            )

    def delete_rule(self, rule_id: int) -> None:
        """Delete a rule and its events."""
        with self.db.transaction() as conn:
            conn.execute("DELETE FROM global_alert_rules WHERE id = ?", (rule_id,))

    # Events

    def get_last_event_timestamp(
        self, rule_id: int, asset_id: int
    ) -> Optional[datetime]:
        """Most recent trigger time for a (rule, asset) pair."""
        with self.db.transaction() as conn:
            row = conn.execute(
                """
                SELECT MAX(triggered_at) AS last_at FROM global_alert_events
                WHERE rule_id = ? AND asset_id = ?
                """,
                (rule_id, asset_id),
            ).fetchone()
        return from_db_time(row["last_at"])

    def create_event(self, event: GlobalAlertEvent) -> GlobalAlertEvent:
        """Persist an event unconditionally."""
        with self.db.transaction() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"INSERT INTO global_alert_events ({self._EVENT_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                self._event_params(event),
            )
            event.id = cursor.lastrowid
        return event

    def create_event_unless_recent(
        self, event: GlobalAlertEvent, since: datetime
    ) -> Optional[GlobalAlertEvent]:
        """
        Persist an event only if its (rule, asset) pair has none since ``since``.

        The check and the insert are a single statement, so two evaluations of
        the same pair cannot both pass the cooldown.

        Returns:
            The saved event, or None if the pair is still cooling down
        """
        with self.db.transaction() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                INSERT INTO global_alert_events ({self._EVENT_COLUMNS})
                SELECT ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?
                WHERE NOT EXISTS (
                    SELECT 1 FROM global_alert_events
                    WHERE rule_id = ? AND asset_id = ? AND triggered_at >= ?
                )
                """,
                self._event_params(event)
                + (event.rule_id, event.asset_id, to_db_time(since)),
            )
            if cursor.rowcount != 1:
                return None
            event.id = cursor.lastrowid
        return event

    def update_event_status(
        self, event_id: int, status: str, notifications_sent: int
    ) -> None:
        """Record the delivery outcome of an event."""
        with self.db.transaction() as conn:
            conn.execute(
                """
                UPDATE global_alert_events
                SET notification_status = ?, notifications_sent = ?
                WHERE id = ?
                """,
                (status, notifications_sent, event_id),
            )

    def get_event_by_id(self, event_id: int) -> Optional[GlobalAlertEvent]:
        """Get event by ID."""
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT * FROM global_alert_events WHERE id = ?", (event_id,)
            ).fetchone()
        return self._row_to_event(row) if row else None

    def get_recent_events(self, since: datetime) -> list[GlobalAlertEvent]:
        """Events triggered at or after ``since``, newest first."""
        with self.db.transaction() as conn:
            rows = conn.execute(
                """
                SELECT * FROM global_alert_events
                WHERE triggered_at >= ?
                ORDER BY triggered_at DESC, id DESC
                """,
                (to_db_time(since),),
            ).fetchall()
        return [self._row_to_event(row) for row in rows]

    def count_events_since(self, since: datetime) -> int:
        """Number of events triggered at or after ``since``."""
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM global_alert_events WHERE triggered_at >= ?",
                (to_db_time(since),),
            ).fetchone()
        return row[0]

    # Views

    def has_user_viewed(self, user_id: int, event_id: int) -> bool:
        """Check if a user has seen an event."""
        with self.db.transaction() as conn:
            row = conn.execute(
                """
                SELECT 1 FROM alert_views
                WHERE user_id = ? AND alert_event_id = ?
                """,
                (user_id, event_id),
            ).fetchone()
        return row is not None

    def mark_viewed(self, user_id: int, event_id: int, viewed_at: datetime) -> AlertView:
        """Mark an event as seen; repeated calls keep the first view."""
        with self.db.transaction() as conn:
            conn.execute(
                """
                INSERT OR IGNORE INTO alert_views (user_id, alert_event_id, viewed_at)
                VALUES (?, ?, ?)
                """,
                (user_id, event_id, to_db_time(viewed_at)),
            )
            row = conn.execute(
                """
                SELECT id, user_id, alert_event_id, viewed_at FROM alert_views
                WHERE user_id = ? AND alert_event_id = ?
                """,
                (user_id, event_id),
            ).fetchone()
        return AlertView(
            id=row["id"],
            user_id=row["user_id"],
            alert_event_id=row["alert_event_id"],
            viewed_at=from_db_time(row["viewed_at"]),
        )

    def _event_params(self, event: GlobalAlertEvent) -> tuple:
        return (
            event.rule_id,
            event.asset_id,
            event.asset_symbol,
            event.event_type,
            event.trigger_value,
            event.previous_value,
            event.percent_change,
            event.time_window,
            event.message,
            event.severity,
            to_db_time(event.triggered_at),
            event.notification_status,
            event.notifications_sent,
        )

    def _row_to_rule(self, row) -> GlobalAlertRule:
        """Convert database row to GlobalAlertRule."""
        return GlobalAlertRule(
            id=row["id"],
            rule_name=row["rule_name"],
            rule_type=row["rule_type"],
            percent_change_threshold=row["percent_change_threshold"],
            cooldown_minutes=row["cooldown_minutes"],
            is_active=bool(row["is_active"]),
            asset_id=row["asset_id"],
            priority=row["priority"],
            description=row["description"],
        )

    def _row_to_event(self, row) -> GlobalAlertEvent:
        """Convert database row to GlobalAlertEvent."""
        return GlobalAlertEvent(
            id=row["id"],
            rule_id=row["rule_id"],
            asset_id=row["asset_id"],
            asset_symbol=row["asset_symbol"],
            event_type=row["event_type"],
            trigger_value=row["trigger_value"],
            previous_value=row["previous_value"],
            percent_change=row["percent_change"],
            time_window=row["time_window"],
            message=row["message"],
            severity=row["severity"],
            triggered_at=from_db_time(row["triggered_at"]),
            notification_status=row["notification_status"],
            notifications_sent=row["notifications_sent"],
        )


class UserAlertRepository:
    """CRUD operations for user price alerts."""

    def __init__(self, db: Database):
        self.db = db

    def create(self, alert: UserAlert) -> UserAlert:
        """Create a new alert."""
        with self.db.transaction() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO user_alerts
                (user_id, asset_id, asset_symbol, alert_type, target_price,
                 is_repeating, is_active, note, trigger_count, last_known_price,
                 last_price_check_at, last_triggered_at, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    alert.user_id,
                    alert.asset_id,
                    alert.asset_symbol,
                    alert.alert_type,
                    alert.target_price,
                    1 if alert.is_repeating else 0,
                    1 if alert.is_active else 0,
                    alert.note,
                    alert.trigger_count,
                    alert.last_known_price,
                    _optional_time(alert.last_price_check_at),
                    _optional_time(alert.last_triggered_at),
                    to_db_time(alert.created_at),
                ),
            )
            alert.id = cursor.lastrowid
        return alert

    def get_by_id(self, alert_id: int) -> Optional[UserAlert]:
        """Get alert by ID."""
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT * FROM user_alerts WHERE id = ?", (alert_id,)
            ).fetchone()
        return self._row_to_alert(row) if row else None

    def get_by_user_id(self, user_id: int) -> list[UserAlert]:
        """Get all alerts of a user, newest first."""
        with self.db.transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM user_alerts WHERE user_id = ? ORDER BY id DESC",
                (user_id,),
            ).fetchall()
        return [self._row_to_alert(row) for row in rows]

    def count_by_user_id(self, user_id: int) -> int:
        """Number of alerts owned by a user."""
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM user_alerts WHERE user_id = ?", (user_id,)
            ).fetchone()
        return row[0]

    def get_active_alerts(self) -> list[UserAlert]:
        """Get only active alerts."""
        with self.db.transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM user_alerts WHERE is_active = 1 ORDER BY asset_id, id"
            ).fetchall()
        return [self._row_to_alert(row) for row in rows]

    def is_owned_by_user(self, alert_id: int, user_id: int) -> bool:
        """Check alert ownership."""
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT 1 FROM user_alerts WHERE id = ? AND user_id = ?",
                (alert_id, user_id),
            ).fetchone()
        return row is not None

    def update(self, alert: UserAlert) -> None:
        """Write back every mutable field of an alert."""
        with self.db.transaction() as conn:
            conn.execute(
                """
                UPDATE user_alerts
                SET target_price = ?, is_repeating = ?, is_active = ?, note = ?,
                    trigger_count = ?, last_known_price = ?, last_price_check_at = ?,
                    last_triggered_at = ?
                WHERE id = ?
                """,
                (
                    alert.target_price,
                    1 if alert.is_repeating else 0,
                    1 if alert.is_active else 0,
                    alert.note,
                    alert.trigger_count,
                    alert.last_known_price,
                    _optional_time(alert.last_price_check_at),
                    _optional_time(alert.last_triggered_at),
                    alert.id,
                ),
            )

    def record_price_check(
        self, alert_id: int, price: float, checked_at: datetime
    ) -> None:
        """Store the price seen by an evaluation that did not trigger."""
        with self.db.transaction() as conn:
            conn.execute(
                """
                UPDATE user_alerts
                SET last_known_price = ?, last_price_check_at = ?
                WHERE id = ?
                """,
                (price, to_db_time(checked_at), alert_id),
            )

    def claim_trigger(
        self,
        alert_id: int,
        price: float,
        triggered_at: datetime,
        cooldown_cutoff: datetime,
    ) -> bool:
        """
        Atomically mark an alert as triggered if it is still active and outside
        its cooldown.

        Updates the last known price, trigger time and count, and deactivates
        non-repeating alerts in the same statement.

        Returns:
            True if this call won the trigger
        """
        with self.db.transaction() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                UPDATE user_alerts
                SET last_known_price = ?,
                    last_price_check_at = ?,
                    last_triggered_at = ?,
                    trigger_count = trigger_count + 1,
                    is_active = CASE WHEN is_repeating = 1 THEN is_active ELSE 0 END
                WHERE id = ?
                  AND is_active = 1
                  AND (last_triggered_at IS NULL OR last_triggered_at <= ?)
                """,
                (
                    price,
                    to_db_time(triggered_at),
                    to_db_time(triggered_at),
                    alert_id,
                    to_db_time(cooldown_cutoff),
                ),
            )
            return cursor.rowcount == 1

    def delete(self, alert_id: int) -> None:
        """Delete an alert."""
        with self.db.transaction() as conn:
            conn.execute("DELETE FROM user_alerts WHERE id = ?", (alert_id,))

    def _row_to_alert(self, row) -> UserAlert:
        """Convert database row to UserAlert."""
        return UserAlert(
            id=row["id"],
            user_id=row["user_id"],
            asset_id=row["asset_id"],
            asset_symbol=row["asset_symbol"],
            alert_type=row["alert_type"],
            target_price=row["target_price"],
            is_repeating=bool(row["is_repeating"]),
            is_active=bool(row["is_active"]),
            note=row["note"],
            trigger_count=row["trigger_count"],
            last_known_price=row["last_known_price"],
            last_price_check_at=from_db_time(row["last_price_check_at"]),
            last_triggered_at=from_db_time(row["last_triggered_at"]),
            created_at=from_db_time(row["created_at"]),
        )


class UserAlertHistoryRepository:
    """Append-only firing records for user alerts and auto-alerts."""

    _COLUMNS = (
        "user_alert_id, user_id, asset_id, asset_symbol, alert_type, target_price, "
        "actual_price, price_difference_percent, triggered_at, was_notified, "
        "notification_method, notification_error, reason"
    )

    def __init__(self, db: Database):
        self.db = db

    def add(self, history: UserAlertHistory) -> UserAlertHistory:
        """Append a history record."""
        with self.db.transaction() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"INSERT INTO user_alert_history ({self._COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                self._params(history),
            )
            history.id = cursor.lastrowid
        return history

    def add_auto_alert_unless_recent(
        self, history: UserAlertHistory, since: datetime
    ) -> Optional[UserAlertHistory]:
        """
        Append an auto-alert unless the same user and asset got one since
        ``since``. Check and insert run as one statement.

        Returns:
            The saved record, or None if a recent auto-alert exists
        """
        with self.db.transaction() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                INSERT INTO user_alert_history ({self._COLUMNS})
                SELECT ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?
                WHERE NOT EXISTS (
                    SELECT 1 FROM user_alert_history
                    WHERE user_id = ? AND asset_id = ? AND alert_type = ?
                      AND triggered_at >= ?
                )
                """,
                self._params(history)
                + (history.user_id, history.asset_id, AUTO_WATCHLIST, to_db_time(since)),
            )
            if cursor.rowcount != 1:
                return None
            history.id = cursor.lastrowid
        return history

    def update(self, history: UserAlertHistory) -> None:
        """Write back the notification fields of a record."""
        with self.db.transaction() as conn:
            conn.execute(
                """
                UPDATE user_alert_history
                SET was_notified = ?, notification_method = ?, notification_error = ?
                WHERE id = ?
                """,
                (
                    1 if history.was_notified else 0,
                    history.notification_method,
                    history.notification_error,
                    history.id,
                ),
            )

    def get_by_id(self, history_id: int) -> Optional[UserAlertHistory]:
        """Get record by ID."""
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT * FROM user_alert_history WHERE id = ?", (history_id,)
            ).fetchone()
        return self._row_to_history(row) if row else None

    def get_by_alert_id(self, alert_id: int) -> list[UserAlertHistory]:
        """Firings of one user alert, newest first."""
        with self.db.transaction() as conn:
            rows = conn.execute(
                """
                SELECT * FROM user_alert_history
                WHERE user_alert_id = ?
                ORDER BY triggered_at DESC, id DESC
                """,
                (alert_id,),
            ).fetchall()
        return [self._row_to_history(row) for row in rows]

    def get_by_user_id(self, user_id: int, limit: int = 50) -> list[UserAlertHistory]:
        """Firings for a user, newest first."""
        with self.db.transaction() as conn:
            rows = conn.execute(
                """
                SELECT * FROM user_alert_history
                WHERE user_id = ?
                ORDER BY triggered_at DESC, id DESC
                LIMIT ?
                """,
                (user_id, limit),
            ).fetchall()
        return [self._row_to_history(row) for row in rows]

    def count_auto_alerts_since(self, user_id: int, since: datetime) -> int:
        """Number of auto-alerts a user received at or after ``since``."""
        with self.db.transaction() as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) FROM user_alert_history
                WHERE user_id = ? AND alert_type = ? AND triggered_at >= ?
                """,
                (user_id, AUTO_WATCHLIST, to_db_time(since)),
            ).fetchone()
        return row[0]

    def get_last_auto_alert_time(self, user_id: int) -> Optional[datetime]:
        """Time of the most recent auto-alert for a user."""
        with self.db.transaction() as conn:
            row = conn.execute(
                """
                SELECT MAX(triggered_at) AS last_at FROM user_alert_history
                WHERE user_id = ? AND alert_type = ?
                """,
                (user_id, AUTO_WATCHLIST),
            ).fetchone()
        return from_db_time(row["last_at"])

    def delete(self, history_id: int) -> None:
        """Delete a record."""
        with self.db.transaction() as conn:
            conn.execute("DELETE FROM user_alert_history WHERE id = ?", (history_id,))

    def _params(self, h: UserAlertHistory) -> tuple:
        return (
            h.user_alert_id,
            h.user_id,
            h.asset_id,
            h.asset_symbol,
            h.alert_type,
            h.target_price,
            h.actual_price,
            h.price_difference_percent,
            to_db_time(h.triggered_at),
            1 if h.was_notified else 0,
            h.notification_method,
            h.notification_error,
            h.reason,
        )

    def _row_to_history(self, row) -> UserAlertHistory:
        """Convert database row to UserAlertHistory."""
        return UserAlertHistory(
            id=row["id"],
            user_alert_id=row["user_alert_id"],
            user_id=row["user_id"],
            asset_id=row["asset_id"],
            asset_symbol=row["asset_symbol"],
            alert_type=row["alert_type"],
            target_price=row["target_price"],
            actual_price=row["actual_price"],
            price_difference_percent=row["price_difference_percent"],
            triggered_at=from_db_time(row["triggered_at"]),
            was_notified=bool(row["was_notified"]),
            notification_method=row["notification_method"],
            notification_error=row["notification_error"],
            reason=row["reason"],
        )


class WatchlistRepository:
    """CRUD operations for user watchlists."""

    def __init__(self, db: Database):
        self.db = db

    def create(self, watchlist: Watchlist) -> Watchlist:
        """Create an empty watchlist."""
        with self.db.transaction() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO watchlists (user_id, name, is_favorite)
                VALUES (?, ?, ?)
                """,
                (watchlist.user_id, watchlist.name, 1 if watchlist.is_favorite else 0),
            )
            watchlist.id = cursor.lastrowid
        return watchlist

    def add_asset(
        self, watchlist_id: int, asset_id: int, added_at: datetime
    ) -> WatchlistItem:
        """Add asset to a watchlist."""
        with self.db.transaction() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO watchlist_items (watchlist_id, asset_id, added_at)
                VALUES (?, ?, ?)
                """,
                (watchlist_id, asset_id, to_db_time(added_at)),
            )
            item_id = cursor.lastrowid
        return WatchlistItem(
            id=item_id,
            watchlist_id=watchlist_id,
            asset_id=asset_id,
            added_at=added_at,
        )

    def remove_asset(self, watchlist_id: int, asset_id: int) -> None:
        """Remove asset from a watchlist."""
        with self.db.transaction() as conn:
            conn.execute(
                """
                DELETE FROM watchlist_items
                WHERE watchlist_id = ? AND asset_id = ?
                """,
                (watchlist_id, asset_id),
            )

    def get_watchlists_by_user(self, user_id: int) -> list[Watchlist]:
        """Get all watchlists of a user with their assets."""
        with self.db.transaction() as conn:
            watchlist_rows = conn.execute(
                "SELECT * FROM watchlists WHERE user_id = ? ORDER BY id",
                (user_id,),
            ).fetchall()
            asset_rows = conn.execute(
                """
                SELECT i.watchlist_id, a.* FROM watchlist_items i
                JOIN assets a ON a.id = i.asset_id
                JOIN watchlists w ON w.id = i.watchlist_id
                WHERE w.user_id = ?
                ORDER BY i.added_at, i.id
                """,
                (user_id,),
            ).fetchall()

        watchlists = {
            row["id"]: Watchlist(
                id=row["id"],
                user_id=row["user_id"],
                name=row["name"],
                is_favorite=bool(row["is_favorite"]),
            )
            for row in watchlist_rows
        }
        for row in asset_rows:
            watchlists[row["watchlist_id"]].assets.append(_row_to_asset(row))
        return list(watchlists.values())

    def count_assets_for_user(self, user_id: int) -> int:
        """Number of distinct assets across a user's watchlists."""
        with self.db.transaction() as conn:
            row = conn.execute(
                """
                SELECT COUNT(DISTINCT i.asset_id) FROM watchlist_items i
                JOIN watchlists w ON w.id = i.watchlist_id
                WHERE w.user_id = ?
                """,
                (user_id,),
            ).fetchone()
        return row[0]


def _optional_time(value: Optional[datetime]) -> Optional[str]:
    return to_db_time(value) if value else None
