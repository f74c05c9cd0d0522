"""
Discord webhook transport.
"""

from typing import Any, Optional

import requests

from src.rules.types import Severity
from .base import GLOBAL_ALERT_METHOD, Transport, TransportError


class DiscordTransport(Transport):
    """Posts alerts to Discord webhooks.

    Broadcasts go to the global webhook; targeted alerts go to the webhook
    stored on the user.
    """

    channel = "DISCORD"

    # Discord embed colors
    COLOR_INFO = 0x3498DB  # Blue
    COLOR_LOW = 0x2ECC71  # Green
    COLOR_MEDIUM = 0xF1C40F  # Yellow
    COLOR_HIGH = 0xFFA500  # Orange
    COLOR_CRITICAL = 0xFF0000  # Red

    SEVERITY_EMOJI = {
        Severity.INFO: "ℹ️",
        Severity.LOW: "📈",
        Severity.MEDIUM: "⚠️",
        Severity.HIGH: "🔥",
        Severity.CRITICAL: "🚨",
    }

    def __init__(
        self,
        global_webhook_url: Optional[str] = None,
        user_repo=None,
        mention_on_critical: bool = True,
    ):
        """
        Initialize Discord transport.

        Args:
            global_webhook_url: Webhook for market-wide alerts
            user_repo: UserRepository used to look up per-user webhooks
            mention_on_critical: Whether to @here on critical alerts
        """
        self.global_webhook_url = global_webhook_url
        self.user_repo = user_repo
        self.mention_on_critical = mention_on_critical

    def broadcast_to_all(self, method: str, payload: dict[str, Any]) -> None:
        if not self.global_webhook_url:
            raise TransportError("No global Discord webhook configured")
        self._post(self.global_webhook_url, self._create_payload(method, payload))

    def broadcast_to_group(
        self, user_id: int, method: str, payload: dict[str, Any]
    ) -> None:
        user = self.user_repo.get_by_id(user_id) if self.user_repo else None
        if user is None or not user.discord_webhook_url:
            raise TransportError(f"User {user_id} has no Discord webhook")
        self._post(user.discord_webhook_url, self._create_payload(method, payload))

    def _post(self, webhook_url: str, body: dict[str, Any]) -> None:
        try:
            response = self._send_webhook(webhook_url, body)
        except requests.exceptions.ConnectionError as e:
            raise TransportError(f"Connection error: {str(e)}") from e
        except requests.exceptions.RequestException as e:
            raise TransportError(str(e)) from e

        if not response.ok:
            raise TransportError(f"HTTP {response.status_code}: {response.text}")

    def _send_webhook(self, webhook_url: str, body: dict[str, Any]) -> requests.Response:
        """Send webhook; a rate-limited request fails without waiting."""
        response = requests.post(webhook_url, json=body, timeout=10)

        # Rate limited: fail the delivery instead of waiting
        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After", "unknown")
            raise TransportError(f"Rate limited by Discord (retry after {retry_after}s)")

        return response

    def _create_payload(self, method: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Create Discord webhook body."""
        if method == GLOBAL_ALERT_METHOD:
            embed = self._create_global_embed(payload)
        else:
            embed = self._create_user_embed(payload)

        body: dict[str, Any] = {"embeds": [embed]}

        # Add @here mention for critical alerts
        if self.mention_on_critical and payload.get("severity") == Severity.CRITICAL.value:
            body["content"] = "@here"

        return body

    def _create_global_embed(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Create Discord embed for a market-wide alert."""
        severity = Severity(payload["severity"])
        emoji = self.SEVERITY_EMOJI.get(severity, "ℹ️")

        embed: dict[str, Any] = {
            "title": f"{emoji} {payload['assetSymbol']} {severity.value} Alert",
            "description": payload["message"],
            "color": self._get_color(severity),
            "fields": [
                {
                    "name": "Current Price",
                    "value": f"${payload['currentPrice']:,.2f}",
                    "inline": True,
                },
            ],
            "timestamp": payload["timestamp"],
        }

        if payload.get("percentChange") is not None:
            embed["fields"].append({
                "name": f"Change ({payload.get('timeWindow') or '-'})",
                "value": f"{payload['percentChange']:+.2f}%",
                "inline": True,
            })

        return embed

    def _create_user_embed(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Create Discord embed for a personal alert."""
        alert_type = payload["alertType"].replace("_", " ").title()
        return {
            "title": f"🔔 {payload['assetSymbol']} {alert_type}",
            "description": f"{payload['assetName']} hit your target",
            "color": self.COLOR_INFO,
            "fields": [
                {
                    "name": "Target Price",
                    "value": f"${payload['targetPrice']:,.2f}",
                    "inline": True,
                },
                {
                    "name": "Actual Price",
                    "value": f"${payload['actualPrice']:,.2f}",
                    "inline": True,
                },
                {
                    "name": "Difference",
                    "value": f"{payload['priceDifference']:+.2f}%",
                    "inline": True,
                },
            ],
            "timestamp": payload["triggeredAt"],
        }

    def _get_color(self, severity: Severity) -> int:
        """Get embed color based on severity."""
        return {
            Severity.CRITICAL: self.COLOR_CRITICAL,
            Severity.HIGH: self.COLOR_HIGH,
            Severity.MEDIUM: self.COLOR_MEDIUM,
            Severity.LOW: self.COLOR_LOW,
        }.get(severity, self.COLOR_INFO)
