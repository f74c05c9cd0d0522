"""
Main application entry point.
"""

import argparse
import logging
import signal
import threading

from dotenv import load_dotenv

load_dotenv()

from src.app import MarketPulseApp
from src.config import load_config
from src.database.connection import Database
from src.scheduler.runner import CycleScheduler

logger = logging.getLogger(__name__)


def build_schedulers(app: MarketPulseApp) -> list[CycleScheduler]:
    """Create the alert cycle and watchlist monitor loops."""
    schedule = app.config.schedule
    timeout = app.config.advanced.cycle_timeout_seconds
    orchestrator = app.orchestrator

    return [
        CycleScheduler(
            name="alert-cycle",
            job=lambda cancel: orchestrator.execute_alert_detection_cycle(cancel),
            interval_seconds=schedule.interval_seconds,
            startup_delay_seconds=schedule.startup_delay_seconds,
            cycle_timeout_seconds=timeout,
        ),
        CycleScheduler(
            name="watchlist-monitor",
            job=lambda cancel: orchestrator.monitor_all_watchlist_prices(cancel),
            interval_seconds=schedule.watchlist_interval_seconds,
            startup_delay_seconds=schedule.watchlist_startup_delay_seconds,
            cycle_timeout_seconds=timeout,
        ),
    ]


def main():
    """Service entry point."""
    parser = argparse.ArgumentParser(description="Market Pulse alert service")
    parser.add_argument(
        "--config", default="config.yaml", help="Path to config file"
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug mode")
    parser.add_argument(
        "--once", action="store_true", help="Run a single alert cycle and exit"
    )

    args = parser.parse_args()

    config = load_config(args.config)

    # Setup logging
    log_level = logging.DEBUG if args.debug else getattr(
        logging, config.advanced.log_level.upper()
    )
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    # Initialize database
    db = Database(config.database.path)
    db.initialize()

    app = MarketPulseApp(db=db, config=config)

    if args.once:
        report = app.orchestrator.execute_alert_detection_cycle()
        logger.info(f"Cycle report: {report}")
        db.close()
        return

    schedulers = build_schedulers(app)
    stopped = threading.Event()

    def handle_signal(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        stopped.set()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    for scheduler in schedulers:
        scheduler.start()

    stopped.wait()

    for scheduler in schedulers:
        scheduler.stop(timeout=30)
    db.close()


if __name__ == "__main__":
    main()
