"""
Price target conditions shared by user alerts and watchlist auto-alerts.
"""

from typing import Optional

from src.database.models import AlertType


def price_difference_percent(current: float, target: float) -> float:
    """Absolute distance of the current price from the target, in percent."""
    if target == 0:
        return 0.0
    return abs(current - target) / target * 100


def is_condition_met(
    alert_type: str,
    current: float,
    target: float,
    previous: Optional[float],
    reaches_threshold_percent: float = 0.1,
) -> bool:
    """
    Check a target condition.

    ABOVE and BELOW fire on the crossing only: the previous price must be on
    the other side of the target, or unknown.

    Args:
        alert_type: REACHES, ABOVE or BELOW
        current: Current price
        target: Target price
        previous: Price seen on the previous check, if any
        reaches_threshold_percent: Tolerance for REACHES

    Returns:
        True if the condition holds
    """
    if alert_type == AlertType.REACHES:
        if target <= 0:
            return False
        return price_difference_percent(current, target) <= reaches_threshold_percent
    if alert_type == AlertType.ABOVE:
        return current >= target and (previous is None or previous < target)
    if alert_type == AlertType.BELOW:
        return current <= target and (previous is None or previous > target)
    return False
