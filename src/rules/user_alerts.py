"""
User price alerts: management and per-cycle evaluation.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from itertools import groupby
from typing import Optional

from src.database.models import AlertType, UserAlert, UserAlertHistory
from src.database.repository import (
    AssetRepository,
    PriceCacheRepository,
    UserAlertHistoryRepository,
    UserAlertRepository,
    UserRepository,
)
from src.scheduler.cancellation import CancellationToken
from src.timeutils import utcnow
from .conditions import is_condition_met

logger = logging.getLogger(__name__)

COOLDOWN_MINUTES = 5
REACHES_THRESHOLD_PERCENT = 0.1
MAX_ALERTS_PER_USER = 50


class AlertValidationError(ValueError):
    """Invalid alert input."""


class AlertLimitExceededError(Exception):
    """User already owns the maximum number of alerts."""


@dataclass
class UserAlertTrigger:
    """A fired alert waiting for targeted delivery."""

    history: UserAlertHistory
    asset_name: str


class UserAlertEngine:
    """Evaluates active user alerts against the price cache."""

    def __init__(
        self,
        alert_repo: UserAlertRepository,
        history_repo: UserAlertHistoryRepository,
        cache_repo: PriceCacheRepository,
        cooldown_minutes: int = COOLDOWN_MINUTES,
        reaches_threshold_percent: float = REACHES_THRESHOLD_PERCENT,
    ):
        self.alert_repo = alert_repo
        self.history_repo = history_repo
        self.cache_repo = cache_repo
        self.cooldown_minutes = cooldown_minutes
        self.reaches_threshold_percent = reaches_threshold_percent

    def evaluate_all(
        self, now: datetime, cancel: Optional[CancellationToken] = None
    ) -> list[UserAlertTrigger]:
        """
        Check every active alert once.

        Args:
            now: Evaluation time
            cancel: Optional cancellation token checked between alerts

        Returns:
            Triggers with their PENDING history rows
        """
        alerts = self.alert_repo.get_active_alerts()
        if not alerts:
            logger.debug("No active user alerts")
            return []

        triggers = []
        alerts.sort(key=lambda a: a.asset_id)
        for asset_id, group in groupby(alerts, key=lambda a: a.asset_id):
            group = list(group)
            try:
                cache = self.cache_repo.get_by_asset_id(asset_id)
            except Exception as e:
                logger.error(
                    f"Error reading cached price for asset {asset_id}, "
                    f"skipping {len(group)} alerts: {e}"
                )
                continue
            if cache is None:
                logger.warning(
                    f"No cached price for asset {asset_id}, skipping {len(group)} alerts"
                )
                continue

            asset_name = cache.asset.name if cache.asset else group[0].asset_symbol
            for alert in group:
                if cancel is not None:
                    cancel.raise_if_cancelled()
                try:
                    history = self.check_alert(alert, cache.current_price, now)
                except Exception as e:
                    logger.error(
                        f"Error checking alert {alert.id} ({alert.asset_symbol}) "
                        f"for user {alert.user_id}: {e}"
                    )
                    continue
                if history is not None:
                    triggers.append(UserAlertTrigger(history=history, asset_name=asset_name))

        return triggers

    def check_alert(
        self, alert: UserAlert, current_price: float, now: datetime
    ) -> Optional[UserAlertHistory]:
        """
        Evaluate one alert and record the result.

        Returns:
            The saved history row if the alert fired, None otherwise
        """
        cooldown = timedelta(minutes=self.cooldown_minutes)
        if alert.last_triggered_at is not None and now - alert.last_triggered_at < cooldown:
            return None

        triggered = is_condition_met(
            alert.alert_type,
            current_price,
            alert.target_price,
            alert.last_known_price,
            self.reaches_threshold_percent,
        )
        if not triggered:
            self.alert_repo.record_price_check(alert.id, current_price, now)
            return None

        # Claim and history row commit together or not at all
        with self.alert_repo.db.transaction():
            if not self.alert_repo.claim_trigger(alert.id, current_price, now, now - cooldown):
                logger.debug(f"Alert {alert.id} was already claimed")
                return None

            history = self.history_repo.add(
                UserAlertHistory(
                    user_alert_id=alert.id,
                    user_id=alert.user_id,
                    asset_id=alert.asset_id,
                    asset_symbol=alert.asset_symbol,
                    alert_type=alert.alert_type,
                    target_price=alert.target_price,
                    actual_price=current_price,
                    price_difference_percent=(current_price - alert.target_price)
                    / alert.target_price
                    * 100,
                    triggered_at=now,
                )
            )
        logger.info(
            f"Alert {alert.id} triggered for user {alert.user_id}. "
            f"Asset: {alert.asset_symbol}, Target: {alert.target_price}, Actual: {current_price}"
        )
        return history


class UserAlertService:
    """Create, update and query user alerts."""

    def __init__(
        self,
        alert_repo: UserAlertRepository,
        history_repo: UserAlertHistoryRepository,
        user_repo: UserRepository,
        asset_repo: AssetRepository,
        max_alerts_per_user: int = MAX_ALERTS_PER_USER,
    ):
        self.alert_repo = alert_repo
        self.history_repo = history_repo
        self.user_repo = user_repo
        self.asset_repo = asset_repo
        self.max_alerts_per_user = max_alerts_per_user

    def create_alert(
        self,
        user_id: int,
        asset_id: int,
        alert_type: str,
        target_price: float,
        is_repeating: bool = False,
        note: str = "",
        now: Optional[datetime] = None,
    ) -> UserAlert:
        """
        Create a new alert.

        Raises:
            AlertLimitExceededError: If the user has reached the alert limit
            AlertValidationError: If the user, asset, type or target is invalid
        """
        if self.alert_repo.count_by_user_id(user_id) >= self.max_alerts_per_user:
            raise AlertLimitExceededError(
                f"Maximum alert limit of {self.max_alerts_per_user} reached"
            )
        if self.user_repo.get_by_id(user_id) is None:
            raise AlertValidationError("User not found")
        asset = self.asset_repo.get_by_id(asset_id)
        if asset is None:
            raise AlertValidationError("Asset not found")

        normalized_type = alert_type.upper()
        if normalized_type not in {t.value for t in AlertType}:
            raise AlertValidationError("Alert type must be REACHES, ABOVE, or BELOW")
        if target_price <= 0:
            raise AlertValidationError("Target price must be greater than 0")

        alert = self.alert_repo.create(
            UserAlert(
                user_id=user_id,
                asset_id=asset_id,
                asset_symbol=asset.symbol,
                alert_type=normalized_type,
                target_price=target_price,
                is_repeating=is_repeating,
                note=note or "",
                created_at=now or utcnow(),
            )
        )
        logger.info(
            f"Alert created: User {user_id}, Asset {asset.symbol}, "
            f"Type {normalized_type}, Target {target_price}"
        )
        return alert

    def get_alert(self, user_id: int, alert_id: int) -> Optional[UserAlert]:
        """Get an alert if the user owns it."""
        alert = self.alert_repo.get_by_id(alert_id)
        if alert is None or alert.user_id != user_id:
            return None
        return alert

    def get_user_alerts(self, user_id: int) -> list[UserAlert]:
        """All alerts of a user."""
        return self.alert_repo.get_by_user_id(user_id)

    def update_alert(
        self,
        user_id: int,
        alert_id: int,
        target_price: Optional[float] = None,
        is_repeating: Optional[bool] = None,
        is_active: Optional[bool] = None,
        note: Optional[str] = None,
    ) -> Optional[UserAlert]:
        """
        Update the given fields of an alert.

        Returns:
            Updated alert, or None if it does not exist or belongs to another user

        Raises:
            AlertValidationError: If target_price is not positive
        """
        alert = self.get_alert(user_id, alert_id)
        if alert is None:
            return None

        if target_price is not None:
            if target_price <= 0:
                raise AlertValidationError("Target price must be greater than 0")
            alert.target_price = target_price
        if is_repeating is not None:
            alert.is_repeating = is_repeating
        if is_active is not None:
            alert.is_active = is_active
        if note is not None:
            alert.note = note

        self.alert_repo.update(alert)
        logger.info(f"Alert {alert_id} updated by user {user_id}")
        return alert

    def delete_alert(self, user_id: int, alert_id: int) -> bool:
        """Delete an alert the user owns."""
        if not self.alert_repo.is_owned_by_user(alert_id, user_id):
            return False
        self.alert_repo.delete(alert_id)
        logger.info(f"Alert {alert_id} deleted by user {user_id}")
        return True

    def get_alert_history(self, user_id: int, alert_id: int) -> list[UserAlertHistory]:
        """Firings of one alert; empty if the user does not own it."""
        if not self.alert_repo.is_owned_by_user(alert_id, user_id):
            return []
        return self.history_repo.get_by_alert_id(alert_id)

    def get_user_history(self, user_id: int, limit: int = 50) -> list[UserAlertHistory]:
        """Recent firings for a user, including auto-alerts."""
        return self.history_repo.get_by_user_id(user_id, limit)

    def delete_history(self, user_id: int, history_id: int) -> bool:
        """Delete a history record the user owns."""
        history = self.history_repo.get_by_id(history_id)
        if history is None or history.user_id != user_id:
            return False
        self.history_repo.delete(history_id)
        logger.info(f"Deleted alert history {history_id} for user {user_id}")
        return True
