"""
Global rule kinds and severity banding.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Optional

from src.database.models import GlobalAlertEvent, GlobalAlertRule, PriceCache


class Severity(str, Enum):
    """Severity of a global alert event."""

    INFO = "INFO"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class RuleType(str, Enum):
    """Supported global rule kinds."""

    PERCENT_CHANGE_1H = "PERCENT_CHANGE_1H"
    PERCENT_CHANGE_24H = "PERCENT_CHANGE_24H"
    PERCENT_CHANGE_7D = "PERCENT_CHANGE_7D"


def calculate_severity(change_pct: float) -> Severity:
    """
    Band a percentage move by magnitude. Boundaries are inclusive.

    Args:
        change_pct: Signed percent change

    Returns:
        Severity for |change_pct|
    """
    magnitude = abs(change_pct)
    if magnitude >= 15:
        return Severity.CRITICAL
    if magnitude >= 8:
        return Severity.HIGH
    if magnitude >= 4:
        return Severity.MEDIUM
    if magnitude >= 1:
        return Severity.LOW
    return Severity.INFO


def percent_change(current: float, reference: float) -> float:
    """Percent change from reference to current; reference must be positive."""
    return (current - reference) / reference * 100


def threshold_crossed(change_pct: float, threshold: float) -> bool:
    """Positive thresholds fire on rises, zero or negative ones on drops."""
    if threshold > 0:
        return change_pct >= threshold
    return change_pct <= threshold


class Rule(ABC):
    """Base class for global rule kinds."""

    rule_type: RuleType
    time_window: str

    def __init__(self, rule: GlobalAlertRule):
        self.rule = rule

    @abstractmethod
    def reference_price(self, cache: PriceCache) -> Optional[float]:
        """Price the current price is compared against."""

    def evaluate(
        self, cache: PriceCache, now: datetime
    ) -> Optional[GlobalAlertEvent]:
        """
        Evaluate the rule against a cache row.

        Args:
            cache: Price cache row with its asset loaded
            now: Trigger timestamp to record

        Returns:
            Unsaved GlobalAlertEvent if triggered, None otherwise
        """
        reference = self.reference_price(cache)
        if not reference or reference <= 0:
            return None

        change = percent_change(cache.current_price, reference)
        if not threshold_crossed(change, self.rule.percent_change_threshold):
            return None

        symbol = cache.asset.symbol
        return GlobalAlertEvent(
            rule_id=self.rule.id,
            asset_id=cache.asset_id,
            asset_symbol=symbol,
            event_type=self.rule_type.value,
            trigger_value=cache.current_price,
            previous_value=reference,
            percent_change=change,
            time_window=self.time_window,
            message=self.format_message(symbol, change, cache.current_price),
            severity=calculate_severity(change).value,
            triggered_at=now,
        )

    def format_message(self, symbol: str, change: float, price: float) -> str:
        emoji = "🚀" if change > 0 else "📉"
        verb = "surged" if change > 0 else "dropped"
        return (
            f"{emoji} {symbol} {verb} {abs(change):.2f}% in {self.time_window}! "
            f"Price: ${price:,.2f}"
        )


class PercentChange1HRule(Rule):
    """Move against the price one hour ago."""

    rule_type = RuleType.PERCENT_CHANGE_1H
    time_window = "1H"

    def reference_price(self, cache: PriceCache) -> Optional[float]:
        return cache.price_1h_ago


class PercentChange24HRule(Rule):
    """Move against the price 24 hours ago."""

    rule_type = RuleType.PERCENT_CHANGE_24H
    time_window = "24H"

    def reference_price(self, cache: PriceCache) -> Optional[float]:
        return cache.price_24h_ago


class PercentChange7DRule(Rule):
    """Move against the price seven days ago."""

    rule_type = RuleType.PERCENT_CHANGE_7D
    time_window = "7D"

    def reference_price(self, cache: PriceCache) -> Optional[float]:
        return cache.price_7d_ago


RULE_CLASSES: dict[RuleType, type[Rule]] = {
    RuleType.PERCENT_CHANGE_1H: PercentChange1HRule,
    RuleType.PERCENT_CHANGE_24H: PercentChange24HRule,
    RuleType.PERCENT_CHANGE_7D: PercentChange7DRule,
}
