"""
Rule evaluation engine.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import Optional

from src.database.models import GlobalAlertEvent, GlobalAlertRule, PriceCache
from src.database.repository import GlobalAlertRepository, PriceCacheRepository
from src.scheduler.cancellation import CancellationToken
from .types import RULE_CLASSES, Rule, RuleType, Severity, calculate_severity

# Re-export for convenience
__all__ = ["RuleEngine", "RuleType", "Severity", "calculate_severity"]

logger = logging.getLogger(__name__)


class RuleEngine:
    """Evaluates active global rules against the price cache."""

    def __init__(
        self,
        global_repo: GlobalAlertRepository,
        cache_repo: PriceCacheRepository,
        max_workers: int = 1,
    ):
        """
        Initialize the engine.

        Args:
            global_repo: Rule and event storage
            cache_repo: Price cache storage
            max_workers: Thread pool size for (rule, asset) pairs; 1 runs inline
        """
        self.global_repo = global_repo
        self.cache_repo = cache_repo
        self.max_workers = max_workers

    def evaluate_all(
        self, now: datetime, cancel: Optional[CancellationToken] = None
    ) -> list[GlobalAlertEvent]:
        """
        Evaluate every active rule against the matching cache rows.

        Args:
            now: Evaluation time
            cancel: Optional cancellation token checked between rules

        Returns:
            Newly persisted events, all with PENDING status
        """
        rules = self.global_repo.get_active_rules()
        if not rules:
            logger.debug("No active global rules")
            return []

        caches = self.cache_repo.list_all()
        if not caches:
            logger.debug("Price cache is empty")
            return []

        pairs = []
        for rule in rules:
            for cache in caches:
                if rule.asset_id is None or rule.asset_id == cache.asset_id:
                    pairs.append((rule, cache))

        if self.max_workers > 1 and len(pairs) > 1:
            return self._evaluate_parallel(pairs, now, cancel)

        events = []
        last_rule_id = None
        for rule, cache in pairs:
            if cancel is not None and rule.id != last_rule_id:
                cancel.raise_if_cancelled()
            last_rule_id = rule.id
            event = self.evaluate_pair(rule, cache, now)
            if event is not None:
                events.append(event)
        return events

    def _evaluate_parallel(
        self,
        pairs: list[tuple[GlobalAlertRule, PriceCache]],
        now: datetime,
        cancel: Optional[CancellationToken],
    ) -> list[GlobalAlertEvent]:
        def run(pair):
            if cancel is not None and cancel.cancelled:
                return None
            return self.evaluate_pair(pair[0], pair[1], now)

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            results = list(pool.map(run, pairs))

        if cancel is not None:
            cancel.raise_if_cancelled()
        return [event for event in results if event is not None]

    def evaluate_pair(
        self, rule: GlobalAlertRule, cache: PriceCache, now: datetime
    ) -> Optional[GlobalAlertEvent]:
        """
        Evaluate one rule for one asset and persist the event if it fires.

        Errors are logged and swallowed so one bad pair cannot stop the others.

        Returns:
            Saved event, or None if skipped, not triggered or cooling down
        """
        symbol = cache.asset.symbol if cache.asset else f"asset {cache.asset_id}"
        try:
            if cache.asset is None:
                logger.warning(f"Price cache for asset {cache.asset_id} has no asset, skipping")
                return None

            cutoff = now - timedelta(minutes=rule.cooldown_minutes)
            last = self.global_repo.get_last_event_timestamp(rule.id, cache.asset_id)
            if last is not None and last >= cutoff:
                logger.debug(f"Rule '{rule.rule_name}' for {symbol} in cooldown")
                return None

            try:
                evaluator = self.create_rule(rule)
            except ValueError as e:
                logger.warning(str(e))
                return None

            event = evaluator.evaluate(cache, now)
            if event is None:
                return None

            saved = self.global_repo.create_event_unless_recent(event, cutoff)
            if saved is None:
                logger.debug(f"Rule '{rule.rule_name}' for {symbol} already fired")
                return None

            logger.info(
                f"Alert created: id={saved.id} {symbol} {saved.event_type} {saved.message}"
            )
            return saved
        except Exception as e:
            logger.error(f"Error evaluating rule '{rule.rule_name}' for {symbol}: {e}")
            return None

    def create_rule(self, rule: GlobalAlertRule) -> Rule:
        """
        Create a Rule instance from GlobalAlertRule.

        Args:
            rule: Stored rule configuration

        Returns:
            Appropriate Rule instance

        Raises:
            ValueError: If rule type is unknown
        """
        try:
            rule_type = RuleType(rule.rule_type)
        except ValueError:
            raise ValueError(f"Unknown rule type: {rule.rule_type}") from None
        return RULE_CLASSES[rule_type](rule)
