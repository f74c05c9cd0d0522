"""
Health check - sends a status message to Discord.
"""

import os
from datetime import timedelta
from typing import Optional

import requests

from src.database.connection import Database
from src.database.repository import (
    AssetRepository,
    GlobalAlertRepository,
    PriceCacheRepository,
    UserAlertRepository,
)
from src.timeutils import utcnow


def run_healthcheck(db: Database, webhook_url: Optional[str] = None) -> Optional[dict]:
    """Run health check and send status to Discord.

    Args:
        db: Database instance (already initialized)
        webhook_url: Target webhook; defaults to DISCORD_WEBHOOK_URL

    Returns:
        Summary counts, or None if no webhook is configured
    """
    webhook_url = webhook_url or os.getenv("DISCORD_WEBHOOK_URL")
    if not webhook_url:
        print("DISCORD_WEBHOOK_URL not set")
        return None

    now = utcnow()
    summary = {
        "assets": len(AssetRepository(db).list_all()),
        "cached_assets": len(PriceCacheRepository(db).list_all()),
        "active_rules": len(GlobalAlertRepository(db).get_active_rules()),
        "active_user_alerts": len(UserAlertRepository(db).get_active_alerts()),
        "events_24h": GlobalAlertRepository(db).count_events_since(now - timedelta(hours=24)),
    }

    payload = {
        "embeds": [{
            "title": "Market Pulse Health Check",
            "description": "System is running normally.",
            "color": 0x2ECC71,
            "fields": [
                {"name": "Assets", "value": str(summary["assets"]), "inline": True},
                {"name": "Cached", "value": str(summary["cached_assets"]), "inline": True},
                {"name": "Global Rules", "value": str(summary["active_rules"]), "inline": True},
                {"name": "User Alerts", "value": str(summary["active_user_alerts"]), "inline": True},
                {"name": "Events (24h)", "value": str(summary["events_24h"]), "inline": True},
            ],
            "timestamp": now.isoformat(),
        }]
    }

    response = requests.post(webhook_url, json=payload, timeout=10)
    print(f"{now:%Y-%m-%d %H:%M:%S} - Health check sent (status: {response.status_code})")
    return summary
