"""
Pytest configuration and shared fixtures.
"""

from datetime import datetime, timezone

import pytest

from src.database.connection import Database
from src.database.models import Asset, PriceCache, PricePoint, User
from src.database.repository import (
    AssetRepository,
    GlobalAlertRepository,
    PriceCacheRepository,
    PriceRepository,
    UserAlertHistoryRepository,
    UserAlertRepository,
    UserRepository,
    WatchlistRepository,
)


@pytest.fixture
def db():
    """Create in-memory database with schema."""
    db = Database(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def now():
    """Fixed reference time for deterministic tests."""
    return datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def repos(db):
    """Create all repositories."""
    return {
        "asset": AssetRepository(db),
        "user": UserRepository(db),
        "price": PriceRepository(db),
        "cache": PriceCacheRepository(db),
        "global": GlobalAlertRepository(db),
        "alert": UserAlertRepository(db),
        "history": UserAlertHistoryRepository(db),
        "watchlist": WatchlistRepository(db),
    }


@pytest.fixture
def btc(repos):
    """Bitcoin asset."""
    return repos["asset"].create(
        Asset(symbol="BTC", name="Bitcoin", provider_symbol="BTC-USD")
    )


@pytest.fixture
def eth(repos):
    """Ethereum asset."""
    return repos["asset"].create(
        Asset(symbol="ETH", name="Ethereum", provider_symbol="ETH-USD")
    )


@pytest.fixture
def user(repos, sample_discord_webhook_url):
    """User with a Discord webhook."""
    return repos["user"].create(
        User(email="trader@example.com", discord_webhook_url=sample_discord_webhook_url)
    )


@pytest.fixture
def set_cache(repos, now):
    """Write a price cache row for an asset."""

    def _set(asset, current, h1=None, h24=None, d7=None, at=None):
        repos["cache"].upsert_bulk([
            PriceCache(
                asset_id=asset.id,
                current_price=current,
                price_1h_ago=current if h1 is None else h1,
                price_24h_ago=current if h24 is None else h24,
                price_7d_ago=current if d7 is None else d7,
                last_update=at or now,
            )
        ])

    return _set


@pytest.fixture
def add_points(repos):
    """Append price samples given as (age, price) pairs relative to a time."""

    def _add(asset, reference, samples):
        for age, price in samples:
            repos["price"].add(
                PricePoint(
                    asset_id=asset.id,
                    timestamp_utc=reference - age,
                    price=price,
                    source="test",
                )
            )

    return _add


@pytest.fixture
def sample_quote_info():
    """Sample Yahoo Finance quote response."""
    return {
        "regularMarketPrice": 175.50,
        "previousClose": 173.25,
        "volume": 50_000_000,
        "shortName": "Apple Inc.",
    }


@pytest.fixture
def sample_discord_webhook_url():
    """Sample Discord webhook URL for testing."""
    return "https://discord.com/api/webhooks/123456789/abcdefghijklmnop"
