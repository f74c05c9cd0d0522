"""
Delivers triggered alerts and records the outcome.
"""

import logging
from typing import Any

from src.database.models import GlobalAlertEvent, NotificationStatus, UserAlertHistory
from src.database.repository import GlobalAlertRepository, UserAlertHistoryRepository
from .base import (
    GLOBAL_ALERT_METHOD,
    USER_ALERT_METHOD,
    NotificationResult,
    Transport,
    group_name,
)

logger = logging.getLogger(__name__)


def global_alert_payload(event: GlobalAlertEvent) -> dict[str, Any]:
    """Message body for a market-wide alert."""
    return {
        "id": event.id,
        "type": "global_alert",
        "assetSymbol": event.asset_symbol,
        "message": event.message,
        "severity": event.severity,
        "eventType": event.event_type,
        "currentPrice": event.trigger_value,
        "percentChange": event.percent_change,
        "timeWindow": event.time_window,
        "timestamp": event.triggered_at.isoformat(),
    }


def user_alert_payload(history: UserAlertHistory, asset_name: str) -> dict[str, Any]:
    """Message body for a personal alert or auto-alert."""
    return {
        "id": history.id,
        "assetSymbol": history.asset_symbol,
        "assetName": asset_name,
        "targetPrice": history.target_price,
        "actualPrice": history.actual_price,
        "alertType": history.alert_type,
        "triggeredAt": history.triggered_at.isoformat(),
        "priceDifference": history.price_difference_percent,
    }


class NotificationDispatcher:
    """Sends alerts through a transport; never raises, never retries."""

    def __init__(
        self,
        transport: Transport,
        global_repo: GlobalAlertRepository,
        history_repo: UserAlertHistoryRepository,
    ):
        self.transport = transport
        self.global_repo = global_repo
        self.history_repo = history_repo

    def dispatch_global(self, event: GlobalAlertEvent) -> NotificationResult:
        """Broadcast an event to every subscriber and record its status."""
        channel = self.transport.channel
        try:
            self.transport.broadcast_to_all(GLOBAL_ALERT_METHOD, global_alert_payload(event))
            result = NotificationResult.sent(channel)
            event.notification_status = NotificationStatus.SENT.value
            event.notifications_sent = 1
            logger.info(f"Broadcasted alert id={event.id} to all clients")
        except Exception as e:
            logger.error(f"Failed to broadcast alert id={event.id}: {e}")
            result = NotificationResult.failed(channel, str(e))
            event.notification_status = NotificationStatus.FAILED.value
            event.notifications_sent = 0

        try:
            self.global_repo.update_event_status(
                event.id, event.notification_status, event.notifications_sent
            )
        except Exception as e:
            logger.error(f"Failed to record status of alert id={event.id}: {e}")
        return result

    def dispatch_user(
        self, history: UserAlertHistory, asset_name: str
    ) -> NotificationResult:
        """Send a fired alert to the user's sessions and record the outcome."""
        channel = self.transport.channel
        try:
            self.transport.broadcast_to_group(
                history.user_id, USER_ALERT_METHOD, user_alert_payload(history, asset_name)
            )
            result = NotificationResult.sent(channel)
            history.was_notified = True
            history.notification_method = channel
            history.notification_error = None
            logger.info(
                f"Notification sent for {history.alert_type} alert on "
                f"{history.asset_symbol} to {group_name(history.user_id)}"
            )
        except Exception as e:
            logger.error(
                f"Failed to notify {group_name(history.user_id)} "
                f"for history id={history.id}: {e}"
            )
            result = NotificationResult.failed(channel, str(e))
            history.was_notified = False
            history.notification_method = NotificationStatus.FAILED.value
            history.notification_error = str(e)

        try:
            self.history_repo.update(history)
        except Exception as e:
            logger.error(f"Failed to record notification of history id={history.id}: {e}")
        return result
