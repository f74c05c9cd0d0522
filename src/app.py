"""
Alert cycle orchestration and application wiring.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from src.config import AppConfig
from src.data.price_cache import PriceCacheService
from src.data.snapshots import PriceSnapshotStore
from src.database.connection import Database
from src.database.models import GlobalAlertEvent
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
from src.notifiers.base import Transport, build_transport
from src.notifiers.dispatcher import NotificationDispatcher
from src.rules.engine import RuleEngine
from src.rules.user_alerts import UserAlertEngine, UserAlertService, UserAlertTrigger
from src.rules.watchlist import WatchlistMonitor
from src.scheduler.cancellation import CancellationToken, CancelledError
from src.timeutils import to_utc, utcnow

logger = logging.getLogger(__name__)


class CycleState(str, Enum):
    """Phase of the alert detection cycle."""

    IDLE = "IDLE"
    REFRESHING = "REFRESHING"
    EVALUATING = "EVALUATING"
    DISPATCHING = "DISPATCHING"


@dataclass
class CycleReport:
    """Outcome of one orchestrator run."""

    started_at: datetime
    finished_at: Optional[datetime] = None
    skipped: bool = False
    cancelled: bool = False
    error: Optional[str] = None
    cache_rows: int = 0
    global_events: int = 0
    user_alerts: int = 0
    watchlist_alerts: int = 0
    notifications_sent: int = 0
    notifications_failed: int = 0


class AlertCycleOrchestrator:
    """Drives refresh, evaluation and dispatch.

    Each entry point holds its own non-blocking guard, so a manual trigger during
    a running cycle is rejected instead of queued.
    """

    def __init__(
        self,
        price_cache: PriceCacheService,
        rule_engine: RuleEngine,
        user_alert_engine: UserAlertEngine,
        watchlist_monitor: WatchlistMonitor,
        dispatcher: NotificationDispatcher,
        cycle_timeout_seconds: Optional[float] = None,
    ):
        self.price_cache = price_cache
        self.rule_engine = rule_engine
        self.user_alert_engine = user_alert_engine
        self.watchlist_monitor = watchlist_monitor
        self.dispatcher = dispatcher
        self.cycle_timeout_seconds = cycle_timeout_seconds
        self._cycle_guard = threading.Lock()
        self._watchlist_guard = threading.Lock()
        self._state = CycleState.IDLE

    @property
    def state(self) -> CycleState:
        return self._state

    def execute_alert_detection_cycle(
        self,
        cancel: Optional[CancellationToken] = None,
        now: Optional[datetime] = None,
    ) -> CycleReport:
        """
        Run one full cycle: refresh the cache, evaluate all consumers, dispatch.

        Args:
            cancel: Optional cancellation token
            now: Cycle time; defaults to the current UTC time

        Returns:
            CycleReport; ``skipped`` is set if another cycle was running
        """
        now = to_utc(now) if now else utcnow()
        report = CycleReport(started_at=now)

        if not self._cycle_guard.acquire(blocking=False):
            logger.warning("Alert detection cycle already running, skipping")
            report.skipped = True
            return report

        cancel = cancel or CancellationToken(timeout=self.cycle_timeout_seconds)
        events: list[GlobalAlertEvent] = []
        triggers: list[UserAlertTrigger] = []
        try:
            self._state = CycleState.REFRESHING
            report.cache_rows = self.price_cache.refresh(now, cancel)
            cancel.raise_if_cancelled()

            # A failing phase is logged and recorded; later phases and dispatch still run
            self._state = CycleState.EVALUATING
            events = self._run_phase(
                "global rules", report, lambda: self.rule_engine.evaluate_all(now, cancel)
            )
            report.global_events = len(events)

            user_triggers = self._run_phase(
                "user alerts", report, lambda: self.user_alert_engine.evaluate_all(now, cancel)
            )
            report.user_alerts = len(user_triggers)
            triggers.extend(user_triggers)

            if self._watchlist_guard.acquire(blocking=False):
                try:
                    watchlist_triggers = self._run_phase(
                        "watchlist",
                        report,
                        lambda: self.watchlist_monitor.monitor_all(now, cancel),
                    )
                finally:
                    self._watchlist_guard.release()
                report.watchlist_alerts = len(watchlist_triggers)
                triggers.extend(watchlist_triggers)
            else:
                logger.info("Watchlist monitor busy, skipping watchlist phase")

            self._state = CycleState.DISPATCHING
            for event in events:
                cancel.raise_if_cancelled()
                self._count(report, self.dispatcher.dispatch_global(event).success)
            self._dispatch_user_triggers(triggers, report, cancel)

            logger.info(
                f"Cycle complete: {report.global_events} global events, "
                f"{report.user_alerts} user alerts, {report.watchlist_alerts} auto-alerts"
            )
        except CancelledError:
            logger.warning("Alert detection cycle cancelled")
            report.cancelled = True
        except Exception as e:
            logger.exception("Alert detection cycle failed")
            report.error = str(e)
        finally:
            self._state = CycleState.IDLE
            report.finished_at = utcnow()
            self._cycle_guard.release()

        return report

    def monitor_all_watchlist_prices(
        self,
        cancel: Optional[CancellationToken] = None,
        now: Optional[datetime] = None,
    ) -> CycleReport:
        """
        Evaluate watchlist auto-alerts against the current cache and dispatch them.

        Returns:
            CycleReport; ``skipped`` is set if the watchlist monitor was running
        """
        now = to_utc(now) if now else utcnow()
        report = CycleReport(started_at=now)

        if not self._watchlist_guard.acquire(blocking=False):
            logger.warning("Watchlist monitor already running, skipping")
            report.skipped = True
            return report

        cancel = cancel or CancellationToken(timeout=self.cycle_timeout_seconds)
        try:
            triggers = self.watchlist_monitor.monitor_all(now, cancel)
            report.watchlist_alerts = len(triggers)
            self._dispatch_user_triggers(triggers, report, cancel)
        except CancelledError:
            logger.warning("Watchlist monitor cancelled")
            report.cancelled = True
        except Exception as e:
            logger.exception("Watchlist monitor failed")
            report.error = str(e)
        finally:
            report.finished_at = utcnow()
            self._watchlist_guard.release()

        return report

    def _run_phase(self, name: str, report: CycleReport, phase) -> list:
        """Run one evaluation phase; errors other than cancellation are recorded."""
        try:
            return phase()
        except CancelledError:
            raise
        except Exception as e:
            logger.exception(f"{name} phase failed")
            message = f"{name}: {e}"
            report.error = f"{report.error}; {message}" if report.error else message
            return []

    def _dispatch_user_triggers(
        self,
        triggers: list[UserAlertTrigger],
        report: CycleReport,
        cancel: CancellationToken,
    ) -> None:
        for trigger in triggers:
            cancel.raise_if_cancelled()
            result = self.dispatcher.dispatch_user(trigger.history, trigger.asset_name)
            self._count(report, result.success)

    def _count(self, report: CycleReport, success: bool) -> None:
        if success:
            report.notifications_sent += 1
        else:
            report.notifications_failed += 1


class MarketPulseApp:
    """Wires repositories, engines and transports from configuration."""

    def __init__(
        self,
        db: Database,
        config: Optional[AppConfig] = None,
        transport: Optional[Transport] = None,
    ):
        """
        Initialize the application.

        Args:
            db: Database instance (already initialized)
            config: Application config; defaults apply when omitted
            transport: Delivery transport; built from config when omitted
        """
        self.db = db
        self.config = config or AppConfig()

        # Initialize repositories
        self.asset_repo = AssetRepository(db)
        self.user_repo = UserRepository(db)
        self.price_repo = PriceRepository(db)
        self.cache_repo = PriceCacheRepository(db)
        self.global_repo = GlobalAlertRepository(db)
        self.alert_repo = UserAlertRepository(db)
        self.history_repo = UserAlertHistoryRepository(db)
        self.watchlist_repo = WatchlistRepository(db)

        # Initialize services
        cfg = self.config
        self.transport = transport or build_transport(cfg, self.user_repo)
        self.snapshots = PriceSnapshotStore(self.price_repo)
        self.price_cache = PriceCacheService(
            self.asset_repo,
            self.cache_repo,
            self.snapshots,
            isolate_asset_failures=cfg.price_cache.isolate_asset_failures,
        )
        self.rule_engine = RuleEngine(
            self.global_repo, self.cache_repo, max_workers=cfg.advanced.max_workers
        )
        self.user_alert_engine = UserAlertEngine(
            self.alert_repo,
            self.history_repo,
            self.cache_repo,
            cooldown_minutes=cfg.user_alerts.cooldown_minutes,
            reaches_threshold_percent=cfg.user_alerts.reaches_threshold_percent,
        )
        self.user_alerts = UserAlertService(
            self.alert_repo,
            self.history_repo,
            self.user_repo,
            self.asset_repo,
            max_alerts_per_user=cfg.user_alerts.max_alerts_per_user,
        )
        self.watchlist_monitor = WatchlistMonitor(
            self.user_repo,
            self.watchlist_repo,
            self.cache_repo,
            self.history_repo,
            anchor=cfg.watchlist.anchor,
            momentum_threshold_percent=cfg.watchlist.momentum_threshold_percent,
            target_offset_percent=cfg.watchlist.target_offset_percent,
            round_number_min_gap_percent=cfg.watchlist.round_number_min_gap_percent,
            reaches_threshold_percent=cfg.watchlist.reaches_threshold_percent,
            auto_alert_cooldown_hours=cfg.watchlist.auto_alert_cooldown_hours,
        )
        self.dispatcher = NotificationDispatcher(
            self.transport, self.global_repo, self.history_repo
        )
        self.orchestrator = AlertCycleOrchestrator(
            self.price_cache,
            self.rule_engine,
            self.user_alert_engine,
            self.watchlist_monitor,
            self.dispatcher,
            cycle_timeout_seconds=cfg.advanced.cycle_timeout_seconds,
        )
