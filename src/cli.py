"""
CLI commands for Market Pulse.
"""

import argparse
from datetime import timedelta
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

from src.app import MarketPulseApp
from src.config import AppConfig, load_config
from src.data.fetcher import PriceSampler
from src.database.connection import Database
from src.database.models import Asset, GlobalAlertRule, PricePoint, User, Watchlist
from src.database.repository import (
    AssetRepository,
    GlobalAlertRepository,
    PriceRepository,
    UserRepository,
    WatchlistRepository,
)
from src.healthcheck import run_healthcheck
from src.rules.types import RuleType
from src.timeutils import utcnow


def add_user(
    db: Database,
    email: Optional[str] = None,
    discord_webhook: Optional[str] = None,
) -> User:
    """Add a new user."""
    repo = UserRepository(db)
    user = User(email=email, discord_webhook_url=discord_webhook)
    return repo.create(user)


def add_asset(
    db: Database, symbol: str, name: str, provider_symbol: Optional[str] = None
) -> Asset:
    """Add a new asset."""
    repo = AssetRepository(db)
    return repo.create(
        Asset(symbol=symbol.upper(), name=name, provider_symbol=provider_symbol)
    )


def add_to_watchlist(
    db: Database,
    user_id: int,
    symbols: list[str],
    name: str = "My Watchlist",
) -> dict:
    """Add assets to a user's watchlist, creating it if needed."""
    asset_repo = AssetRepository(db)
    watchlist_repo = WatchlistRepository(db)

    watchlist = next(
        (w for w in watchlist_repo.get_watchlists_by_user(user_id) if w.name == name),
        None,
    )
    if watchlist is None:
        watchlist = watchlist_repo.create(Watchlist(user_id=user_id, name=name))

    present = {a.id for a in watchlist.assets}
    added = []
    not_found = []

    for symbol in symbols:
        asset = asset_repo.get_by_symbol(symbol.upper())
        if asset is None:
            not_found.append(symbol.upper())
            continue
        if asset.id not in present:
            watchlist_repo.add_asset(watchlist.id, asset.id, utcnow())
            added.append(asset.symbol)

    return {"watchlist_id": watchlist.id, "added": added, "not_found": not_found}


def add_rule(
    db: Database,
    name: str,
    rule_type: str,
    threshold: float,
    cooldown_minutes: int = 15,
    symbol: Optional[str] = None,
) -> GlobalAlertRule:
    """Add a global rule, optionally scoped to one asset."""
    asset_id = None
    if symbol:
        asset = AssetRepository(db).get_by_symbol(symbol.upper())
        if asset is None:
            raise ValueError(f"Unknown asset: {symbol}")
        asset_id = asset.id

    return GlobalAlertRepository(db).create_rule(
        GlobalAlertRule(
            rule_name=name,
            rule_type=rule_type,
            percent_change_threshold=threshold,
            cooldown_minutes=cooldown_minutes,
            asset_id=asset_id,
        )
    )


def add_price(db: Database, symbol: str, price: float, volume: float = 0.0) -> PricePoint:
    """Record a manual price sample."""
    asset = AssetRepository(db).get_by_symbol(symbol.upper())
    if asset is None:
        raise ValueError(f"Unknown asset: {symbol}")
    return PriceRepository(db).add(
        PricePoint(
            asset_id=asset.id,
            timestamp_utc=utcnow(),
            price=price,
            volume=volume,
            source="manual",
        )
    )


def delete_rule(db: Database, rule_id: int) -> bool:
    """Delete a global rule and its events. Returns False if it does not exist."""
    repo = GlobalAlertRepository(db)
    if repo.get_rule_by_id(rule_id) is None:
        return False
    repo.delete_rule(rule_id)
    return True


def recent_events(db: Database, hours: int = 24, user_id: Optional[int] = None) -> list:
    """
    List global events from the last ``hours``.

    With a user, each event is paired with whether that user had already
    seen it, and all listed events are marked as viewed.
    """
    repo = GlobalAlertRepository(db)
    now = utcnow()
    events = repo.get_recent_events(now - timedelta(hours=hours))
    if user_id is None:
        return [(event, None) for event in events]

    listed = []
    for event in events:
        seen = repo.has_user_viewed(user_id, event.id)
        if not seen:
            repo.mark_viewed(user_id, event.id, now)
        listed.append((event, seen))
    return listed


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Market Pulse CLI")
    parser.add_argument("--db", default=None, help="Database path (overrides config)")
    parser.add_argument("--config", default=None, help="Path to config file")

    subparsers = parser.add_subparsers(dest="command", help="Command")

    # User commands
    user_parser = subparsers.add_parser("user", help="User management")
    user_subparsers = user_parser.add_subparsers(dest="action")

    add_user_parser = user_subparsers.add_parser("add", help="Add user")
    add_user_parser.add_argument("--email", help="User email")
    add_user_parser.add_argument("--discord", help="Discord webhook URL")

    user_subparsers.add_parser("list", help="List users")

    # Asset commands
    asset_parser = subparsers.add_parser("assets", help="Asset management")
    asset_subparsers = asset_parser.add_subparsers(dest="action")

    add_asset_parser = asset_subparsers.add_parser("add", help="Add asset")
    add_asset_parser.add_argument("--symbol", required=True, help="Asset symbol")
    add_asset_parser.add_argument("--name", required=True, help="Display name")
    add_asset_parser.add_argument("--provider-symbol", help="Yahoo Finance symbol")

    asset_subparsers.add_parser("list", help="List assets")

    # Watchlist commands
    watchlist_parser = subparsers.add_parser("watchlist", help="Watchlist management")
    watchlist_subparsers = watchlist_parser.add_subparsers(dest="action")

    add_watchlist_parser = watchlist_subparsers.add_parser("add", help="Add to watchlist")
    add_watchlist_parser.add_argument("--user", type=int, required=True, help="User ID")
    add_watchlist_parser.add_argument(
        "--symbols", required=True, help="Comma-separated symbols"
    )
    add_watchlist_parser.add_argument("--name", default="My Watchlist", help="Watchlist name")

    show_watchlist_parser = watchlist_subparsers.add_parser("show", help="Show watchlists")
    show_watchlist_parser.add_argument("--user", type=int, required=True, help="User ID")

    stats_parser = watchlist_subparsers.add_parser("stats", help="Auto-alert stats")
    stats_parser.add_argument("--user", type=int, required=True, help="User ID")

    # Rules commands
    rules_parser = subparsers.add_parser("rules", help="Global rule management")
    rules_subparsers = rules_parser.add_subparsers(dest="action")

    add_rule_parser = rules_subparsers.add_parser("add", help="Add rule")
    add_rule_parser.add_argument("--name", required=True, help="Rule name")
    add_rule_parser.add_argument(
        "--type", required=True, choices=[t.value for t in RuleType]
    )
    add_rule_parser.add_argument(
        "--threshold", type=float, required=True, help="Percent change; negative for drops"
    )
    add_rule_parser.add_argument("--cooldown", type=int, default=15, help="Minutes")
    add_rule_parser.add_argument("--symbol", help="Limit to one asset")

    rules_subparsers.add_parser("list", help="List rules")

    toggle_parser = rules_subparsers.add_parser("toggle", help="Enable or disable a rule")
    toggle_parser.add_argument("--id", type=int, required=True, help="Rule ID")
    toggle_parser.add_argument("--off", action="store_true", help="Disable instead of enable")

    delete_rule_parser = rules_subparsers.add_parser("delete", help="Delete rule and its events")
    delete_rule_parser.add_argument("--id", type=int, required=True, help="Rule ID")

    # Alert commands
    alerts_parser = subparsers.add_parser("alerts", help="User price alerts")
    alerts_subparsers = alerts_parser.add_subparsers(dest="action")

    add_alert_parser = alerts_subparsers.add_parser("add", help="Add alert")
    add_alert_parser.add_argument("--user", type=int, required=True, help="User ID")
    add_alert_parser.add_argument("--symbol", required=True, help="Asset symbol")
    add_alert_parser.add_argument(
        "--type", required=True, choices=["REACHES", "ABOVE", "BELOW"]
    )
    add_alert_parser.add_argument("--target", type=float, required=True, help="Target price")
    add_alert_parser.add_argument("--repeating", action="store_true", help="Re-arm after firing")
    add_alert_parser.add_argument("--note", default="", help="Free-text note")

    list_alerts_parser = alerts_subparsers.add_parser("list", help="List alerts")
    list_alerts_parser.add_argument("--user", type=int, required=True, help="User ID")

    delete_alert_parser = alerts_subparsers.add_parser("delete", help="Delete alert")
    delete_alert_parser.add_argument("--user", type=int, required=True, help="User ID")
    delete_alert_parser.add_argument("--id", type=int, required=True, help="Alert ID")

    history_parser = alerts_subparsers.add_parser("history", help="Alert history")
    history_parser.add_argument("--user", type=int, required=True, help="User ID")
    history_parser.add_argument("--limit", type=int, default=50)

    # Price commands
    prices_parser = subparsers.add_parser("prices", help="Price samples")
    prices_subparsers = prices_parser.add_subparsers(dest="action")

    add_price_parser = prices_subparsers.add_parser("add", help="Add a manual sample")
    add_price_parser.add_argument("--symbol", required=True, help="Asset symbol")
    add_price_parser.add_argument("--price", type=float, required=True)
    add_price_parser.add_argument("--volume", type=float, default=0.0)

    prices_subparsers.add_parser("sample", help="Sample all assets from Yahoo Finance")

    # Event commands
    events_parser = subparsers.add_parser("events", help="Global alert events")
    events_subparsers = events_parser.add_subparsers(dest="action")
    recent_parser = events_subparsers.add_parser("recent", help="Recent events")
    recent_parser.add_argument("--hours", type=int, default=24)
    recent_parser.add_argument("--user", type=int, help="Mark listed events as seen by this user")

    # Cycle commands
    cycle_parser = subparsers.add_parser("cycle", help="Run alert cycles manually")
    cycle_subparsers = cycle_parser.add_subparsers(dest="action")
    cycle_subparsers.add_parser("run", help="Run one alert detection cycle")
    cycle_subparsers.add_parser("watchlist", help="Run the watchlist monitor once")

    # Health check
    subparsers.add_parser("healthcheck", help="Post a status summary to Discord")

    args = parser.parse_args()

    config = load_config(args.config) if args.config else AppConfig()
    db_path = args.db or config.database.path

    # Initialize database
    db = Database(db_path)
    db.initialize()

    # Handle commands
    if args.command == "user":
        if args.action == "add":
            user = add_user(db, email=args.email, discord_webhook=args.discord)
            print(f"Created user with ID: {user.id}")
        elif args.action == "list":
            repo = UserRepository(db)
            for user in repo.list_all():
                print(f"ID: {user.id}, Email: {user.email}")

    elif args.command == "assets":
        if args.action == "add":
            asset = add_asset(db, args.symbol, args.name, args.provider_symbol)
            print(f"Created asset {asset.symbol} with ID: {asset.id}")
        elif args.action == "list":
            for asset in AssetRepository(db).list_all():
                print(f"{asset.id}: {asset.symbol} - {asset.name}")

    elif args.command == "watchlist":
        if args.action == "add":
            symbols = [s.strip() for s in args.symbols.split(",")]
            result = add_to_watchlist(db, args.user, symbols, name=args.name)
            print(f"Added: {result['added']}")
            if result["not_found"]:
                print(f"Not found: {result['not_found']}")
        elif args.action == "show":
            for watchlist in WatchlistRepository(db).get_watchlists_by_user(args.user):
                symbols = ", ".join(a.symbol for a in watchlist.assets) or "(empty)"
                print(f"{watchlist.name}: {symbols}")
        elif args.action == "stats":
            app = MarketPulseApp(db=db, config=config)
            stats = app.watchlist_monitor.get_stats(args.user, utcnow())
            print(f"Watched assets: {stats.watchlist_asset_count}")
            print(f"Auto-alerts (7d): {stats.auto_alerts_last_7_days}")
            print(f"Last alert: {stats.last_alert_time or '-'}")

    elif args.command == "rules":
        repo = GlobalAlertRepository(db)
        if args.action == "add":
            rule = add_rule(
                db, args.name, args.type, args.threshold, args.cooldown, args.symbol
            )
            print(f"Created rule with ID: {rule.id}")
        elif args.action == "list":
            for rule in repo.list_rules():
                state = "on" if rule.is_active else "off"
                print(
                    f"{rule.id}: [{state}] {rule.rule_name} {rule.rule_type} "
                    f"{rule.percent_change_threshold:+}% cooldown {rule.cooldown_minutes}m"
                )
        elif args.action == "toggle":
            repo.set_rule_active(args.id, not args.off)
            print(f"Rule {args.id} {'disabled' if args.off else 'enabled'}")
        elif args.action == "delete":
            deleted = delete_rule(db, args.id)
            print("Deleted" if deleted else "Rule not found")

    elif args.command == "alerts":
        app = MarketPulseApp(db=db, config=config)
        if args.action == "add":
            asset = app.asset_repo.get_by_symbol(args.symbol.upper())
            if asset is None:
                print(f"Unknown asset: {args.symbol}")
            else:
                alert = app.user_alerts.create_alert(
                    args.user, asset.id, args.type, args.target, args.repeating, args.note
                )
                print(f"Created alert with ID: {alert.id}")
        elif args.action == "list":
            for alert in app.user_alerts.get_user_alerts(args.user):
                state = "active" if alert.is_active else "inactive"
                print(
                    f"{alert.id}: {alert.asset_symbol} {alert.alert_type} "
                    f"{alert.target_price} ({state}, fired {alert.trigger_count}x)"
                )
        elif args.action == "delete":
            deleted = app.user_alerts.delete_alert(args.user, args.id)
            print("Deleted" if deleted else "Alert not found")
        elif args.action == "history":
            for h in app.user_alerts.get_user_history(args.user, args.limit):
                print(
                    f"{h.triggered_at:%Y-%m-%d %H:%M} {h.asset_symbol} {h.alert_type} "
                    f"target {h.target_price:.2f} actual {h.actual_price:.2f} "
                    f"via {h.notification_method}"
                )

    elif args.command == "prices":
        if args.action == "add":
            point = add_price(db, args.symbol, args.price, args.volume)
            print(f"Recorded {point.price} at {point.timestamp_utc.isoformat()}")
        elif args.action == "sample":
            sampler = PriceSampler(AssetRepository(db), PriceRepository(db))
            points = sampler.sample_all()
            print(f"Sampled {len(points)} assets")

    elif args.command == "events":
        if args.action == "recent":
            for event, seen in recent_events(db, args.hours, args.user):
                marker = "* " if seen is False else "  "
                print(
                    f"{marker}{event.triggered_at:%Y-%m-%d %H:%M} [{event.severity}] "
                    f"{event.message} ({event.notification_status})"
                )

    elif args.command == "cycle":
        app = MarketPulseApp(db=db, config=config)
        if args.action == "run":
            report = app.orchestrator.execute_alert_detection_cycle()
        else:
            report = app.orchestrator.monitor_all_watchlist_prices()
        print(report)

    elif args.command == "healthcheck":
        run_healthcheck(db, config.notifications.discord.global_webhook_url)

    db.close()


if __name__ == "__main__":
    main()
