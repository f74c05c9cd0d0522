"""
SQLite database connection and schema management.
"""

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional


class Database:
    """SQLite database connection manager.

    The connection is shared between the scheduler thread and callers, so every
    statement runs inside ``transaction()`` which serializes access.
    """

    def __init__(self, db_path: str, timeout: float = 10.0):
        """
        Initialize database connection.

        Args:
            db_path: Path to SQLite database file, or ":memory:" for in-memory DB.
            timeout: Seconds to wait on a locked database file.
        """
        self.db_path = db_path
        self.timeout = timeout
        self.lock = threading.RLock()
        self._depth = 0
        self._connection: Optional[sqlite3.Connection] = None
        self._connect()

    def _connect(self) -> None:
        """Establish database connection."""
        if self.db_path != ":memory:":
            # Ensure parent directory exists
            path = Path(self.db_path)
            path.parent.mkdir(parents=True, exist_ok=True)

        self._connection = sqlite3.connect(
            self.db_path, timeout=self.timeout, check_same_thread=False
        )
        self._connection.row_factory = sqlite3.Row
        # Enable foreign keys
        self._connection.execute("PRAGMA foreign_keys = ON")

    @property
    def connection(self) -> sqlite3.Connection:
        """Get the database connection."""
        if self._connection is None:
            raise sqlite3.ProgrammingError("Database connection is closed")
        return self._connection

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run statements under the connection lock; commit or roll back.

        Nested calls join the outermost transaction, which alone commits or
        rolls back.
        """
        with self.lock:
            conn = self.connection
            self._depth += 1
            try:
                yield conn
            except Exception:
                if self._depth == 1:
                    conn.rollback()
                raise
            else:
                if self._depth == 1:
                    conn.commit()
            finally:
                self._depth -= 1

    def initialize(self) -> None:
        """Create database schema if it doesn't exist."""
        with self.transaction() as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS assets (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    symbol TEXT NOT NULL UNIQUE,
                    name TEXT NOT NULL,
                    provider_symbol TEXT
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    email TEXT,
                    discord_webhook_url TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS price_points (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    asset_id INTEGER NOT NULL,
                    timestamp_utc TEXT NOT NULL,
                    price REAL NOT NULL,
                    volume REAL NOT NULL DEFAULT 0,
                    source TEXT NOT NULL DEFAULT '',
                    FOREIGN KEY (asset_id) REFERENCES assets(id) ON DELETE CASCADE
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS price_cache (
                    asset_id INTEGER PRIMARY KEY,
                    current_price REAL NOT NULL,
                    price_1h_ago REAL NOT NULL,
                    price_24h_ago REAL NOT NULL,
                    price_7d_ago REAL NOT NULL,
                    last_update TEXT NOT NULL,
                    FOREIGN KEY (asset_id) REFERENCES assets(id) ON DELETE CASCADE
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS global_alert_rules (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    rule_name TEXT NOT NULL,
                    rule_type TEXT NOT NULL,
                    percent_change_threshold REAL NOT NULL,
                    cooldown_minutes INTEGER NOT NULL DEFAULT 15,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    asset_id INTEGER,
                    priority TEXT NOT NULL DEFAULT 'NORMAL',
                    description TEXT,
                    FOREIGN KEY (asset_id) REFERENCES assets(id) ON DELETE CASCADE
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS global_alert_events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    rule_id INTEGER NOT NULL,
                    asset_id INTEGER NOT NULL,
                    asset_symbol TEXT NOT NULL,
                    event_type TEXT NOT NULL,
                    trigger_value REAL NOT NULL,
                    previous_value REAL,
                    percent_change REAL,
                    time_window TEXT,
                    message TEXT NOT NULL,
                    severity TEXT NOT NULL,
                    triggered_at TEXT NOT NULL,
                    notification_status TEXT NOT NULL DEFAULT 'PENDING',
                    notifications_sent INTEGER NOT NULL DEFAULT 0,
                    FOREIGN KEY (rule_id) REFERENCES global_alert_rules(id) ON DELETE CASCADE,
                    FOREIGN KEY (asset_id) REFERENCES assets(id) ON DELETE CASCADE
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS alert_views (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    alert_event_id INTEGER NOT NULL,
                    viewed_at TEXT NOT NULL,
                    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
                    FOREIGN KEY (alert_event_id) REFERENCES global_alert_events(id) ON DELETE CASCADE,
                    UNIQUE (user_id, alert_event_id)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS user_alerts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    asset_id INTEGER NOT NULL,
                    asset_symbol TEXT NOT NULL,
                    alert_type TEXT NOT NULL,
                    target_price REAL NOT NULL,
                    is_repeating INTEGER NOT NULL DEFAULT 0,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    note TEXT NOT NULL DEFAULT '',
                    trigger_count INTEGER NOT NULL DEFAULT 0,
                    last_known_price REAL,
                    last_price_check_at TEXT,
                    last_triggered_at TEXT,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
                    FOREIGN KEY (asset_id) REFERENCES assets(id) ON DELETE CASCADE
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS user_alert_history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_alert_id INTEGER,
                    user_id INTEGER NOT NULL,
                    asset_id INTEGER NOT NULL,
                    asset_symbol TEXT NOT NULL,
                    alert_type TEXT NOT NULL,
                    target_price REAL NOT NULL,
                    actual_price REAL NOT NULL,
                    price_difference_percent REAL NOT NULL,
                    triggered_at TEXT NOT NULL,
                    was_notified INTEGER NOT NULL DEFAULT 0,
                    notification_method TEXT NOT NULL DEFAULT 'PENDING',
                    notification_error TEXT,
                    reason TEXT,
                    FOREIGN KEY (user_alert_id) REFERENCES user_alerts(id) ON DELETE SET NULL,
                    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
                    FOREIGN KEY (asset_id) REFERENCES assets(id) ON DELETE CASCADE
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS watchlists (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    name TEXT NOT NULL,
                    is_favorite INTEGER NOT NULL DEFAULT 0,
                    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS watchlist_items (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    watchlist_id INTEGER NOT NULL,
                    asset_id INTEGER NOT NULL,
                    added_at TEXT NOT NULL,
                    FOREIGN KEY (watchlist_id) REFERENCES watchlists(id) ON DELETE CASCADE,
                    FOREIGN KEY (asset_id) REFERENCES assets(id) ON DELETE CASCADE,
                    UNIQUE (watchlist_id, asset_id)
                )
            """)

            # Create indexes for common queries
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_price_points_asset_ts
                ON price_points(asset_id, timestamp_utc)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_events_rule_asset
                ON global_alert_events(rule_id, asset_id, triggered_at)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_user_alerts_active
                ON user_alerts(is_active, asset_id)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_history_user_asset
                ON user_alert_history(user_id, asset_id, alert_type, triggered_at)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_watchlists_user ON watchlists(user_id)
            """)

    def close(self) -> None:
        """Close the database connection."""
        with self.lock:
            if self._connection:
                self._connection.close()
                self._connection = None
